from dataclasses import asdict, fields
from typing import Optional

import pandas as pd

from services.entities import ENTITY_CLASSES, EventRecord
from services.store.base import EntityStore
from utils.normalizers import normalize_bytes_columns


def entities_frame(store: EntityStore, kind: str) -> pd.DataFrame:
    """All entities of one kind as a DataFrame, one column per entity field, ordered by id."""
    columns = [f.name for f in fields(ENTITY_CLASSES[kind])]
    df = pd.DataFrame([asdict(entity) for entity in store.find(kind)], columns=columns)
    return normalize_bytes_columns(df)


def records_frame(store: EntityStore, record_type: Optional[str] = None) -> pd.DataFrame:
    """
    Derived records as a DataFrame in replay order.

    Record-specific payload keys are flattened into `data.<key>` columns.
    """
    columns = [f.name for f in fields(EventRecord) if f.name != "data"]
    records = store.find_records(record_type)
    if not records:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame([asdict(record) for record in records])
    data = pd.json_normalize(df.pop("data").tolist()).add_prefix("data.")
    df = pd.concat([df[columns], data], axis=1)
    return normalize_bytes_columns(df)
