"""Reading CPF lists from uploaded .xlsx spreadsheets."""

import io
import logging
from typing import List

from openpyxl import load_workbook

from lhamascred.core.exceptions import BadRequestException
from lhamascred.batches.models import CpfRecord

logger = logging.getLogger(__name__)

KNOWN_COLUMNS = ("cpf", "nome", "data_nascimento", "telefone_ddd", "telefone_numero")


def _header_key(value) -> str:
    return str(value or "").strip().lower().replace(" ", "_")


def parse_cpf_workbook(content: bytes) -> List[CpfRecord]:
    """
    Rows of the first sheet as CpfRecords.

    The header row is the first row containing a `cpf` column; blank rows are
    skipped. CPF validation happens at submission.
    """
    try:
        wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        logger.warning(f"Unreadable spreadsheet upload: {type(e).__name__}: {e}")
        raise BadRequestException("The file is not a valid .xlsx spreadsheet.")

    try:
        rows = wb.worksheets[0].iter_rows(values_only=True)
        columns = None
        for row in rows:
            keys = [_header_key(v) for v in row]
            if "cpf" in keys:
                columns = {key: i for i, key in enumerate(keys) if key in KNOWN_COLUMNS}
                break
        if columns is None:
            raise BadRequestException("No 'cpf' column found in the spreadsheet.")

        records: List[CpfRecord] = []
        for row in rows:
            values = {key: row[i] if i < len(row) else None for key, i in columns.items()}
            if values.get("cpf") in (None, "") or not str(values["cpf"]).strip():
                continue
            records.append(CpfRecord(**values))
    finally:
        wb.close()

    if not records:
        raise BadRequestException("The spreadsheet has no CPF rows.")
    return records
