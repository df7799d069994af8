from typing import Any

import pandas as pd
from web3 import Web3

BYTES_TYPES = (bytes, bytearray, memoryview)


def normalize_address(value: Any) -> str:
    """Validate an address (checksum enforced when mixed case) and lower-case it."""
    if isinstance(value, BYTES_TYPES):
        value = Web3.to_hex(bytes(value))
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError(f"Invalid address: {value!r}")
    return value.lower()


def normalize_hex(value: Any) -> str:
    """Bytes or a 0x hex string to a lower-case 0x hex string."""
    if isinstance(value, BYTES_TYPES):
        return Web3.to_hex(bytes(value))
    if isinstance(value, str) and value.startswith(("0x", "0X")):
        return Web3.to_hex(Web3.to_bytes(hexstr=value))
    raise ValueError(f"Invalid hex value: {value!r}")


def normalize_bytes_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Convert all bytes-like columns in a DataFrame to hex strings using Web3.to_hex."""
    for col in df.columns:
        df[col] = df[col].apply(
            lambda x: Web3.to_hex(bytes(x)) if isinstance(x, BYTES_TYPES) else x
        )
    return df
