from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

import pandas as pd

"""Brazilian-format value parsers.

All functions are pure and total: unparseable input yields ``None`` (or an
empty string for text), never an exception. They run once per mapped cell,
so they avoid anything heavier than a few regex matches.
"""

__all__ = [
    "ProjectClient",
    "parse_currency",
    "parse_date",
    "parse_project_client",
    "clean_text",
    "normalize_status",
]

_CURRENCY_STRIP = re.compile(r"[R$\s]")
_PLAIN_NUMBER = re.compile(r"[-+]?(?:\d+(?:\.\d*)?|\.\d+)")

_DATE_MONTH_ABBR = re.compile(r"(\d{1,2})/([a-z]{3})/(\d{2})", re.IGNORECASE)
_DATE_BR = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")
_DATE_ISO = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")

# pt-BR first, English spellings only where they differ
MONTHS = {
    "jan": 1, "fev": 2, "feb": 2, "mar": 3, "abr": 4, "apr": 4,
    "mai": 5, "may": 5, "jun": 6, "jul": 7, "ago": 8, "aug": 8,
    "set": 9, "sep": 9, "out": 10, "oct": 10, "nov": 11, "dez": 12, "dec": 12,
}

_WHITESPACE = re.compile(r"\s+")


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return value is pd.NaT


def parse_currency(value: Any) -> float | None:
    """Parse ``R$ 1.234,56`` style amounts.

    Separator disambiguation:
    - ``.`` and ``,`` both present: ``.`` groups thousands, ``,`` is decimal.
    - only ``,``: decimal when it is the single separator and at most two
      digits follow it, otherwise a thousands separator (``3,500`` -> 3500).
    - only ``.``: decimal when it is the single separator, at most two
      digits follow it and the integer part is below 1000.
    """
    if _is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None

    cleaned = _CURRENCY_STRIP.sub("", str(value))
    if not cleaned:
        return None

    has_dot = "." in cleaned
    has_comma = "," in cleaned
    if has_dot and has_comma:
        cleaned = cleaned.replace(".", "").replace(",", ".", 1)
    elif has_comma:
        parts = cleaned.split(",")
        if len(parts) == 2 and len(parts[1]) <= 2:
            cleaned = cleaned.replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif has_dot:
        parts = cleaned.split(".")
        if not (len(parts) == 2 and len(parts[1]) <= 2 and _int_below(parts[0], 1000)):
            cleaned = cleaned.replace(".", "")

    if not _PLAIN_NUMBER.fullmatch(cleaned):
        return None
    return float(cleaned)


def _int_below(text: str, limit: int) -> bool:
    try:
        return int(text) < limit
    except ValueError:
        return False


def _iso(year: int, month: int, day: int) -> str | None:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def parse_date(value: Any) -> str | None:
    """Return an ISO ``YYYY-MM-DD`` string.

    Accepted inputs, first match wins: ``DD/MMM/YY`` (pt/en month
    abbreviation, years above 50 land in the 1900s), ``DD/MM/YYYY`` and
    ``YYYY-MM-DD``. Native date objects from spreadsheet engines are
    converted directly.
    """
    if _is_missing(value):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    if not text:
        return None

    m = _DATE_MONTH_ABBR.search(text)
    month = MONTHS.get(m.group(2).lower()) if m else None
    if m and month is not None:
        yy = int(m.group(3))
        year = 1900 + yy if yy > 50 else 2000 + yy
        return _iso(year, month, int(m.group(1)))

    m = _DATE_BR.search(text)
    if m:
        return _iso(int(m.group(3)), int(m.group(2)), int(m.group(1)))

    m = _DATE_ISO.search(text)
    if m:
        return _iso(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    return None


@dataclass(frozen=True)
class ProjectClient:
    client: str
    project: str


def parse_project_client(value: Any) -> ProjectClient:
    """Split ``"LF - Livia Assan"`` style labels.

    A short uppercase alphanumeric left part is a project code and the right
    part the client; otherwise the left part is the client.
    """
    text = clean_text(value)
    if " - " not in text:
        return ProjectClient(client="", project=text)

    left, right = (part.strip() for part in text.split(" - ", 1))
    if len(left) <= 5 and left.isalnum() and left.upper() == left:
        return ProjectClient(client=right, project=left)
    return ProjectClient(client=left, project=right)


def clean_text(value: Any) -> str:
    if _is_missing(value):
        return ""
    return _WHITESPACE.sub(" ", str(value)).strip()


_STATUS_LABELS: dict[str, dict[str, str]] = {
    "contract": {
        "ativo": "active",
        "em andamento": "active",
        "pausado": "active",
        "concluído": "completed",
        "concluido": "completed",
        "completo": "completed",
        "finalizado": "completed",
        "cancelado": "cancelled",
        "rascunho": "draft",
    },
    "receivable": {
        "recebido": "received",
        "pago": "received",
        "sim": "received",
        "pendente": "pending",
        "a receber": "pending",
        "não": "pending",
        "nao": "pending",
        "atrasado": "overdue",
        "vencido": "overdue",
        "cancelado": "cancelled",
    },
    "expense": {
        "pago": "paid",
        "sim": "paid",
        "pendente": "pending",
        "a pagar": "pending",
        "não": "pending",
        "nao": "pending",
        "atrasado": "overdue",
        "vencido": "overdue",
        "cancelado": "cancelled",
    },
}

_CANONICAL_STATUSES: dict[str, frozenset[str]] = {
    "contract": frozenset({"draft", "active", "completed", "cancelled"}),
    "receivable": frozenset({"pending", "received", "overdue", "cancelled"}),
    "expense": frozenset({"pending", "paid", "overdue", "cancelled"}),
}


def normalize_status(value: Any, entity_type: str) -> str | None:
    """Map a free-text status label to the canonical value for ``entity_type``."""
    label = clean_text(value).lower()
    if not label:
        return None
    if label in _CANONICAL_STATUSES.get(entity_type, ()):
        return label
    return _STATUS_LABELS.get(entity_type, {}).get(label)
