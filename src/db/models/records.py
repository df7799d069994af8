# APPEND-ONLY RECORDS AND PIPELINE BOOKKEEPING
from sqlalchemy import BigInteger, Column, DateTime, Index, Integer, String

from .base import Base, JSONType, TimestampMixin


class EventRecordRow(Base, TimestampMixin):
    __tablename__ = "event_records"

    id = Column(String, primary_key=True)  # "<txHash>-<logIndex>[-<key>]"
    record_type = Column(String(50), nullable=False, index=True)
    event_type = Column(String(80), nullable=False)

    # Position
    block_number = Column(BigInteger, nullable=False)
    log_index = Column(Integer, nullable=False)
    block_timestamp = Column(BigInteger, nullable=False)
    transaction_hash = Column(String, nullable=False)
    contract_address = Column(String, nullable=False)

    # Resolved foreign keys
    operator_id = Column(String, index=True)
    staker_id = Column(String, index=True)
    avs_id = Column(String, index=True)
    operator_set_id = Column(String, index=True)
    strategy_id = Column(String)
    pod_id = Column(String)

    data = Column(JSONType, nullable=False, default=dict)

    __table_args__ = (Index("idx_event_records_position", "block_number", "log_index"),)


class InvariantAnomalyRow(Base, TimestampMixin):
    __tablename__ = "invariant_anomalies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String, nullable=False, index=True)
    category = Column(String(50), nullable=False, index=True)
    detail = Column(String, nullable=False)
    entity_kind = Column(String(50))
    entity_id = Column(String)
    field_name = Column(String(80))
    severity = Column(String(20), nullable=False)


class PipelineCheckpoint(Base, TimestampMixin):
    __tablename__ = "pipeline_checkpoints"

    pipeline_name = Column(String(100), primary_key=True)
    last_processed_at = Column(DateTime(timezone=True), nullable=False)
    last_processed_block = Column(BigInteger)
    last_processed_log_index = Column(Integer)
    total_events_processed = Column(Integer, default=0)
    run_duration_seconds = Column(Integer)
    run_metadata = Column(JSONType)
