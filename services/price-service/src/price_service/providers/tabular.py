from __future__ import annotations

import io
import zipfile
from typing import Dict, List, Sequence

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException


_ZIP_MAGIC = b"PK\x03\x04"
_OLE_MAGIC = b"\xd0\xcf\x11\xe0"


def read_table(content: bytes) -> List[Dict[str, str]]:
    """First sheet of a CSV or Excel export as string-valued records.

    Every decoding failure surfaces as ValueError.
    """
    if not content.strip():
        return []
    if content.startswith(_OLE_MAGIC):
        raise ValueError("legacy .xls workbooks are not supported; export as .xlsx or .csv")
    if content.startswith(_ZIP_MAGIC):
        frame = _read_workbook(content)
    else:
        frame = _read_csv(content)
    frame.columns = [str(column).strip() for column in frame.columns]
    return frame.fillna("").to_dict("records")


def _read_workbook(content: bytes) -> pd.DataFrame:
    try:
        return pd.read_excel(io.BytesIO(content), sheet_name=0, dtype=str, engine="openpyxl")
    except (zipfile.BadZipFile, InvalidFileException, ImportError) as exc:
        raise ValueError(f"workbook could not be decoded ({type(exc).__name__})") from exc


def _read_csv(content: bytes) -> pd.DataFrame:
    try:
        return pd.read_csv(
            io.BytesIO(content), dtype=str, skipinitialspace=True, encoding="utf-8-sig"
        )
    except UnicodeDecodeError:
        # latin-1 decodes any byte sequence
        return pd.read_csv(
            io.BytesIO(content), dtype=str, skipinitialspace=True, encoding="latin-1"
        )


def pick(row: Dict[str, str], keys: Sequence[str], fallback: str | None = None) -> str | None:
    for key in keys:
        value = row.get(key)
        if value is not None and str(value).strip() != "":
            return str(value).strip()
    return fallback
