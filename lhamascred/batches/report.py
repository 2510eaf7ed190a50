"""Excel report of a batch's results."""

from __future__ import annotations

import io
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

NO_RESULT = "Nenhum resultado encontrado."
PROCESSING_ERROR = "Erro no processamento."
CURRENCY_FORMAT = '"R$"#,##0.00'
REPAYMENT_SLOTS = 12

FGTS_COLUMNS = ["CPF", "SALDO", "MENSAGEM"]
FACTA_COLUMNS = FGTS_COLUMNS + ["DATA_SALDO"] + [
    col for i in range(1, REPAYMENT_SLOTS + 1) for col in (f"DATA_REPASSE_{i}", f"VALOR_{i}")
]
C6_COLUMNS = [
    "CPF", "STATUS", "MENSAGEM", "LINK_AUTORIZACAO",
    "ID_OFERTA", "PRODUTO_OFERTA", "VALOR_FINANCIADO", "VALOR_PARCELA",
    "QTD_PARCELAS", "TAXA_MES", "STATUS_OFERTA",
]
CURRENCY_COLUMNS = {"SALDO", "VALOR_FINANCIADO", "VALOR_PARCELA"} | {
    f"VALOR_{i}" for i in range(1, REPAYMENT_SLOTS + 1)
}

PROVIDER_LABELS = {"v8": "V8DIGITAL", "facta": "FACTA", "c6": "C6"}


def report_file_name(provider: str, created_at: datetime) -> str:
    label = PROVIDER_LABELS.get(provider, provider.upper())
    return f"{label}_{created_at.strftime('%d-%m-%Y')}_{created_at.strftime('%H-%M-%S')}.xlsx"


def _money(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _error_text(item: Dict[str, Any]) -> str:
    body = item.get("response_body") or {}
    return body.get("errorMessage") or body.get("error") or item.get("message") or PROCESSING_ERROR


def _latest_by_cpf(items: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Per CPF, the item with a result (success beats error beats received)."""
    rank = {"success": 2, "error": 1, "received": 0}
    by_cpf: Dict[str, Dict[str, Any]] = {}
    for item in items:
        cpf = item.get("cpf")
        if not cpf:
            continue
        current = by_cpf.get(cpf)
        if current is None or rank.get(item.get("status"), 0) >= rank.get(current.get("status"), 0):
            by_cpf[cpf] = item
    return by_cpf


def _fgts_row(cpf: str, item: Optional[Dict[str, Any]], provider: str) -> Dict[str, Any]:
    if item is None or item.get("status") == "received":
        return {"CPF": cpf, "SALDO": 0.0, "MENSAGEM": NO_RESULT}
    if item.get("status") != "success":
        return {"CPF": cpf, "SALDO": 0.0, "MENSAGEM": _error_text(item)}

    body = item.get("response_body") or {}
    row = {"CPF": cpf, "SALDO": _money(body.get("balance")), "MENSAGEM": body.get("msg") or "Sucesso"}
    if provider == "facta":
        row["DATA_SALDO"] = body.get("data_saldo")
        for i in range(1, REPAYMENT_SLOTS + 1):
            if body.get(f"dataRepasse_{i}"):
                row[f"DATA_REPASSE_{i}"] = body[f"dataRepasse_{i}"]
                row[f"VALOR_{i}"] = _money(body.get(f"valor_{i}"))
    return row


def _c6_rows(cpf: str, item: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if item is None or item.get("status") == "received":
        return [{"CPF": cpf, "STATUS": "", "MENSAGEM": NO_RESULT}]

    body = item.get("response_body") or {}
    base = {
        "CPF": cpf,
        "STATUS": body.get("authorizationStatus") or item.get("status"),
        "MENSAGEM": _error_text(item) if item.get("status") == "error" else (body.get("detail") or "Sucesso"),
        "LINK_AUTORIZACAO": body.get("authorizationLink") or "",
    }
    offers = body.get("offers") or []
    if not offers:
        return [base]
    return [
        {
            **base,
            "ID_OFERTA": offer.get("id_oferta"),
            "PRODUTO_OFERTA": offer.get("nome_produto"),
            "VALOR_FINANCIADO": _money(offer.get("valor_financiado")),
            "VALOR_PARCELA": _money(offer.get("valor_parcela")),
            "QTD_PARCELAS": offer.get("qtd_parcelas"),
            "TAXA_MES": offer.get("taxa_mes"),
            "STATUS_OFERTA": offer.get("status"),
        }
        for offer in offers
        if isinstance(offer, dict)
    ]


def build_rows(batch: Dict[str, Any], items: Iterable[Dict[str, Any]]) -> Tuple[List[str], List[Dict[str, Any]]]:
    """Columns and rows in CPF submission order."""
    provider = batch["provider"]
    by_cpf = _latest_by_cpf(items)
    rows: List[Dict[str, Any]] = []

    if provider == "c6":
        for cpf in batch.get("cpfs") or []:
            rows.extend(_c6_rows(cpf, by_cpf.get(cpf)))
        return C6_COLUMNS, rows

    for cpf in batch.get("cpfs") or []:
        rows.append(_fgts_row(cpf, by_cpf.get(cpf), provider))
    return (FACTA_COLUMNS if provider == "facta" else FGTS_COLUMNS), rows


def build_report(batch: Dict[str, Any], items: Iterable[Dict[str, Any]]) -> Tuple[str, bytes]:
    """Render the batch results as an .xlsx file. Returns (file name, content)."""
    columns, rows = build_rows(batch, items)

    wb = Workbook()
    ws = wb.active
    ws.title = "Resultados"
    ws.append(columns)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for row in rows:
        ws.append([row.get(col) for col in columns])

    for idx, col in enumerate(columns, start=1):
        letter = get_column_letter(idx)
        ws.column_dimensions[letter].width = max(15, len(col) + 2)
        if col in CURRENCY_COLUMNS:
            for cell in ws[letter][1:]:
                if isinstance(cell.value, (int, float)):
                    cell.number_format = CURRENCY_FORMAT

    buffer = io.BytesIO()
    wb.save(buffer)
    created_at = batch.get("created_at") or datetime.utcnow()
    return report_file_name(batch["provider"], created_at), buffer.getvalue()
