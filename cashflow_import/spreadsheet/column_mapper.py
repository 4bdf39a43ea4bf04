from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from ..models.sheet import ColumnMapping
from .locale_parsers import clean_text

"""Header -> canonical field detection.

Every header cell is scored against every synonym of every field:

- exact match (case-insensitive, trimmed): 1000
- header contains synonym: ``len(synonym) * 10``
- synonym contains header (header at least 3 chars): ``len(header) * 5``

A field keeps the single column with the highest score over the whole
header row; on ties the leftmost column wins. Fields that never score
above zero are left out of the mapping.
"""

__all__ = [
    "COLUMN_SYNONYMS",
    "EXACT_MATCH_SCORE",
    "detect_columns",
    "score_header",
]

EXACT_MATCH_SCORE = 1000

COLUMN_SYNONYMS: dict[str, tuple[str, ...]] = {
    # contracts
    "clientName": ("cliente", "client", "nome cliente", "nome do cliente"),
    "projectName": ("projeto", "project", "nome projeto", "nome do projeto"),
    "totalValue": ("valor total", "valor do projeto", "value", "total"),
    "signedDate": ("data inicio", "data início", "data assinatura", "data contrato", "date"),
    "category": ("categoria", "category", "tipo", "type"),
    "description": ("descrição", "descricao", "description", "observações", "obs"),
    "status": ("status", "situação", "situacao"),
    # receivables
    "expectedDate": ("data esperada", "data recebimento", "data vencimento", "vencimento", "due date"),
    "amount": ("valor a receber", "valor", "amount", "quantia"),
    "invoiceNumber": ("nota fiscal", "invoice", "nf", "numero nota"),
    # expenses
    "dueDate": ("data vencimento", "vencimento", "data pagamento", "due date"),
    "vendor": ("fornecedor", "vendor", "supplier", "pagamento para"),
    "notes": ("observações", "obs", "notes", "nota", "comentários"),
}


def score_header(header: str, synonyms: Sequence[str]) -> int:
    """Best score of ``header`` (already normalized) against ``synonyms``."""
    if not header:
        return 0
    best = 0
    for synonym in synonyms:
        if header == synonym:
            return EXACT_MATCH_SCORE
        if synonym in header:
            score = len(synonym) * 10
        elif len(header) >= 3 and header in synonym:
            score = len(header) * 5
        else:
            continue
        best = max(best, score)
    return best


def detect_columns(
    headers: Sequence[Any],
    synonyms: dict[str, tuple[str, ...]] | None = None,
) -> ColumnMapping:
    synonyms = synonyms or COLUMN_SYNONYMS
    normalized = [clean_text(h).lower() for h in headers]

    columns: dict[str, int] = {}
    scores: dict[str, int] = {}
    for field_name, field_synonyms in synonyms.items():
        for index, header in enumerate(normalized):
            score = score_header(header, field_synonyms)
            if score > scores.get(field_name, 0):
                columns[field_name] = index
                scores[field_name] = score
    return ColumnMapping(columns=columns, scores=scores)
