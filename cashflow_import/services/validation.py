from __future__ import annotations

from datetime import date
from typing import Any

from jsonschema import Draft7Validator, FormatChecker

from ..ai.prompts import get_profession
from ..models.entities import EntityType, ExtractedEntity
from ..spreadsheet.locale_parsers import clean_text, normalize_status, parse_currency, parse_date

"""Entity normalization and validation before commit.

``normalize_entity`` coerces values (dates to ISO, amounts to numbers,
status labels to canonical values) and fills the defaults a person would
assume when a sheet leaves them blank. ``validate_entity`` then checks the
result against a JSON Schema per entity type; anything reported there keeps
the entity out of the insert batch.
"""

__all__ = [
    "DEFAULT_CATEGORY",
    "UNKNOWN_CLIENT",
    "normalize_entity",
    "validate_entity",
]

DEFAULT_CATEGORY = "Outros"
UNKNOWN_CLIENT = "Cliente não especificado"

META_KEYS = ("confidence", "sourceRow")
DATE_KEYS = ("signedDate", "expectedDate", "dueDate", "receivedDate", "paidDate")
AMOUNT_KEYS = ("totalValue", "amount", "receivedAmount", "paidAmount")
TEXT_KEYS = (
    "clientName", "projectName", "description", "category", "notes",
    "vendor", "invoiceNumber", "contractId",
)

_ISO_DATE = {"type": "string", "pattern": r"^\d{4}-\d{2}-\d{2}$", "format": "date"}
_OPTIONAL_DATE = {"anyOf": [{"type": "null"}, _ISO_DATE]}
_POSITIVE = {"type": "number", "exclusiveMinimum": 0}
_OPTIONAL_POSITIVE = {"anyOf": [{"type": "null"}, _POSITIVE]}
_TEXT = {"type": "string", "minLength": 1}
_OPTIONAL_TEXT = {"type": ["string", "null"]}


def _schema(entity_type: EntityType, *, value_required: bool = True, date_required: bool = True) -> dict:
    if entity_type is EntityType.CONTRACT:
        required = ["clientName", "projectName", "status"]
        if value_required:
            required.append("totalValue")
        if date_required:
            required.append("signedDate")
        properties = {
            "clientName": _TEXT,
            "projectName": _TEXT,
            "totalValue": _POSITIVE if value_required else _OPTIONAL_POSITIVE,
            "signedDate": _ISO_DATE if date_required else _OPTIONAL_DATE,
            "status": {"enum": ["draft", "active", "completed", "cancelled"]},
            "description": _OPTIONAL_TEXT,
            "category": _OPTIONAL_TEXT,
            "notes": _OPTIONAL_TEXT,
        }
    elif entity_type is EntityType.RECEIVABLE:
        required = ["clientName", "amount", "expectedDate", "status"]
        properties = {
            "contractId": _OPTIONAL_TEXT,
            "clientName": _TEXT,
            "amount": _POSITIVE,
            "expectedDate": _ISO_DATE,
            "status": {"enum": ["pending", "received", "overdue", "cancelled"]},
            "receivedDate": _OPTIONAL_DATE,
            "receivedAmount": _OPTIONAL_POSITIVE,
            "invoiceNumber": _OPTIONAL_TEXT,
            "description": _OPTIONAL_TEXT,
            "category": _OPTIONAL_TEXT,
            "notes": _OPTIONAL_TEXT,
        }
    else:
        required = ["description", "amount", "dueDate", "category", "status"]
        properties = {
            "description": _TEXT,
            "amount": _POSITIVE,
            "dueDate": _ISO_DATE,
            "category": _TEXT,
            "status": {"enum": ["pending", "paid", "overdue", "cancelled"]},
            "paidDate": _OPTIONAL_DATE,
            "paidAmount": _OPTIONAL_POSITIVE,
            "vendor": _OPTIONAL_TEXT,
            "invoiceNumber": _OPTIONAL_TEXT,
            "contractId": _OPTIONAL_TEXT,
            "notes": _OPTIONAL_TEXT,
        }
    return {"type": "object", "required": required, "properties": properties}


_FORMAT_CHECKER = FormatChecker()
_VALIDATORS: dict[tuple[EntityType, bool, bool], Draft7Validator] = {}


def _validator(entity_type: EntityType, profession: str | None) -> Draft7Validator:
    prof = get_profession(profession)
    key = (entity_type, prof.contract_value_required, prof.contract_date_required)
    if key not in _VALIDATORS:
        schema = _schema(
            entity_type,
            value_required=prof.contract_value_required,
            date_required=prof.contract_date_required,
        )
        _VALIDATORS[key] = Draft7Validator(schema, format_checker=_FORMAT_CHECKER)
    return _VALIDATORS[key]


def _coerce(data: dict[str, Any], entity_type: EntityType) -> None:
    for key in META_KEYS:
        data.pop(key, None)
    for key in DATE_KEYS:
        if data.get(key) is not None:
            parsed = parse_date(data[key])
            if parsed is not None:
                data[key] = parsed
    for key in AMOUNT_KEYS:
        if data.get(key) is not None:
            parsed_amount = parse_currency(data[key])
            if parsed_amount is not None:
                data[key] = round(parsed_amount, 2)
    for key in TEXT_KEYS:
        if key in data and data[key] is not None:
            text = clean_text(data[key])
            data[key] = text or None
    if data.get("status") is not None:
        status = normalize_status(data["status"], entity_type.value)
        if status is not None:
            data["status"] = status


def _is_iso(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _settle_payment(
    data: dict[str, Any], date_key: str, done_status: str, done_date_key: str, done_amount_key: str, today: str
) -> None:
    if data.get(date_key) is None:
        data[date_key] = today
    if data.get("status") is None and _is_iso(data[date_key]):
        data["status"] = "pending" if data[date_key] >= today else done_status
    if data.get("status") == done_status:
        data.setdefault(done_date_key, None)
        data.setdefault(done_amount_key, None)
        if data[done_date_key] is None:
            data[done_date_key] = data[date_key]
        if data[done_amount_key] is None:
            data[done_amount_key] = data.get("amount")


def normalize_entity(entity: ExtractedEntity, today: date) -> ExtractedEntity:
    """Return a copy of ``entity`` with coerced values and inferred defaults.

    Contracts: client and project names fill each other, status defaults to
    ``active``. Receivables/expenses: missing dates default to ``today``;
    a missing status is ``pending`` for future dates and settled
    (``received``/``paid``, with settlement date and amount) for past ones.
    """
    data = dict(entity.data)
    _coerce(data, entity.type)
    today_iso = today.isoformat()

    if entity.type is EntityType.CONTRACT:
        client, project = data.get("clientName"), data.get("projectName")
        if not client and project:
            data["clientName"] = project
        if not project and client:
            data["projectName"] = client
        data["status"] = data.get("status") or "active"
    elif entity.type is EntityType.RECEIVABLE:
        _settle_payment(data, "expectedDate", "received", "receivedDate", "receivedAmount", today_iso)
        if not data.get("clientName"):
            data["clientName"] = data.get("contractId") or data.get("description") or UNKNOWN_CLIENT
    else:
        data["category"] = data.get("category") or DEFAULT_CATEGORY
        _settle_payment(data, "dueDate", "paid", "paidDate", "paidAmount", today_iso)

    return entity.with_data(data)


def _describe(error: Any) -> str:
    path = ".".join(str(p) for p in error.path)
    if error.validator == "required":
        return error.message
    if error.validator == "exclusiveMinimum":
        return f"{path} must be positive (got {error.instance!r})"
    if error.validator in ("format", "pattern") or (error.validator == "anyOf" and path.endswith("Date")):
        return f"{path} is not a valid date (got {error.instance!r})"
    return f"{path}: {error.message}" if path else error.message


def validate_entity(entity: ExtractedEntity, profession: str | None = None) -> list[str]:
    """Schema/business-rule violations of a normalized entity; empty when valid."""
    validator = _validator(entity.type, profession)
    errors = sorted(validator.iter_errors(dict(entity.data)), key=lambda e: [str(p) for p in e.path])
    return [_describe(e) for e in errors]
