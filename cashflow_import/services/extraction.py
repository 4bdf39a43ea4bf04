from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any

import pandas as pd
from jsonschema import Draft7Validator

from ..ai.json_tools import ENTITY_ARRAYS, extract_arrays_incrementally, extract_json
from ..ai.prompts import (
    ROW_NUMBER_COLUMN,
    build_document_prompt,
    build_sheet_chunk_prompt,
    estimate_tokens,
    get_profession,
)
from ..ai.providers import BaseProvider, DocumentPayload, ProviderError, ProviderRateLimitError, ProviderResult
from ..config.loader import ImportConfig
from ..models.entities import EntityOrigin, EntitySource, EntityType, ExtractedEntity
from ..models.error_record import ErrorRecord, ErrorType
from ..models.sheet import ProcessedRow, ProcessedSheet, SheetTable
from ..spreadsheet.processor import is_complete_contract, process_file
from ..spreadsheet.reader import FileKind, decode_text, detect_file_type, image_media_type

logger = logging.getLogger(__name__)

"""Extraction orchestrator: file bytes -> entity candidates.

Spreadsheets go through the deterministic processor first, one sheet table
at a time. Tables with data but no recognizable row (odd layouts, free-form
reports) are split into row chunks and sent to the AI provider, a few at a
time. PDFs, images and text files are sent to the provider as one request.

Failures stay inside their unit. A provider error or an unreadable response
fails that chunk/document (systematic error) while entities from the other
units are kept; a malformed entity is dropped on its own.
"""

__all__ = [
    "ExtractionResponseError",
    "ExtractionOutcome",
    "Extractor",
    "CANDIDATE_SCHEMAS",
]

_TEXT = {"type": ["string", "null"]}
_NUMBER_LIKE = {"type": ["number", "string", "null"]}
_META = {
    "confidence": {"type": ["number", "null"]},
    "sourceRow": {"type": ["integer", "null"]},
}

# shape check of AI items; business rules are enforced at commit
CANDIDATE_SCHEMAS: dict[EntityType, dict] = {
    EntityType.CONTRACT: {
        "type": "object",
        "anyOf": [{"required": ["clientName"]}, {"required": ["projectName"]}],
        "properties": {
            "clientName": _TEXT, "projectName": _TEXT, "totalValue": _NUMBER_LIKE,
            "signedDate": _TEXT, "status": _TEXT, "description": _TEXT,
            "category": _TEXT, "notes": _TEXT, **_META,
        },
    },
    EntityType.RECEIVABLE: {
        "type": "object",
        "required": ["amount"],
        "properties": {
            "contractId": _TEXT, "clientName": _TEXT, "expectedDate": _TEXT,
            "amount": _NUMBER_LIKE, "status": _TEXT, "receivedDate": _TEXT,
            "receivedAmount": _NUMBER_LIKE, "invoiceNumber": _TEXT,
            "description": _TEXT, "category": _TEXT, "notes": _TEXT, **_META,
        },
    },
    EntityType.EXPENSE: {
        "type": "object",
        "required": ["description", "amount"],
        "properties": {
            "description": _TEXT, "amount": _NUMBER_LIKE, "dueDate": _TEXT,
            "category": _TEXT, "status": _TEXT, "paidDate": _TEXT,
            "paidAmount": _NUMBER_LIKE, "vendor": _TEXT, "invoiceNumber": _TEXT,
            "contractId": _TEXT, "notes": _TEXT, **_META,
        },
    },
}
_CANDIDATE_VALIDATORS = {t: Draft7Validator(s) for t, s in CANDIDATE_SCHEMAS.items()}
_ARRAY_TYPES = dict(zip(ENTITY_ARRAYS, (EntityType.CONTRACT, EntityType.RECEIVABLE, EntityType.EXPENSE)))


class ExtractionResponseError(Exception):
    """The AI response held no usable JSON payload."""


@dataclass
class ExtractionOutcome:
    filename: str
    kind: FileKind
    entities: list[ExtractedEntity] = field(default_factory=list)
    error_records: list[ErrorRecord] = field(default_factory=list)
    sheets_processed: int = 0
    ai_requests: int = 0

    @property
    def errors(self) -> list[str]:
        return [r.describe() for r in self.error_records]

    @property
    def systematic_errors(self) -> list[ErrorRecord]:
        return [r for r in self.error_records if r.is_systematic]

    def count_by_type(self) -> dict[str, int]:
        counts = {t.plural: 0 for t in EntityType}
        for e in self.entities:
            counts[e.type.plural] += 1
        return counts


@dataclass(frozen=True)
class _Unit:
    """One AI request: a whole document or a row range of one sheet."""
    label: str
    prompt: str
    document: DocumentPayload | None = None
    sheet: str | None = None
    first_row: int | None = None
    last_row: int | None = None


@dataclass
class _UnitResult:
    entities: list[ExtractedEntity] = field(default_factory=list)
    error_records: list[ErrorRecord] = field(default_factory=list)


def _row_entity(filename: str, sheet_name: str, row: ProcessedRow, fallback_confidence: float) -> ExtractedEntity:
    entity_type = row.detected_type.as_entity_type()
    data = dict(row.parsed)
    confidence = 1.0
    if entity_type is EntityType.CONTRACT:
        if not is_complete_contract(row.parsed):
            confidence = fallback_confidence
    else:
        # payment rows name their project; commit resolves it to a contract id
        project = data.pop("projectName", None)
        if project and not data.get("contractId"):
            data["contractId"] = project
    return ExtractedEntity.create(
        entity_type,
        data,
        EntitySource(filename, sheet_name, row.row_number),
        confidence=confidence,
        origin=EntityOrigin.HEURISTIC,
    )


def _chunk_csv(table: SheetTable, rows: Sequence[ProcessedRow]) -> str:
    width = max([len(table.headers), *(len(r.raw) for r in rows)])
    headers = [*table.headers, *[""] * (width - len(table.headers))]
    records = [
        [row.row_number, *row.raw, *[None] * (width - len(row.raw))]
        for row in rows
    ]
    frame = pd.DataFrame(records, columns=[ROW_NUMBER_COLUMN, *headers])
    return frame.to_csv(index=False)


class Extractor:
    """Turns one uploaded file into ``ExtractedEntity`` candidates.

    ``provider`` None disables the AI path: documents then fail with an
    upstream error and unmapped sheets are skipped.
    """

    def __init__(
        self,
        config: ImportConfig,
        provider: BaseProvider | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.provider = provider
        self._sleep = sleep

    def extract(
        self,
        data: bytes,
        filename: str,
        hint: str | None = None,
        profession: str | None = None,
    ) -> ExtractionOutcome:
        kind = detect_file_type(filename, data)
        outcome = ExtractionOutcome(filename=filename, kind=kind)
        profession_key = profession or self.config.profession

        if kind in (FileKind.SPREADSHEET, FileKind.UNKNOWN):
            # process_file reports unsupported types itself
            self._extract_spreadsheet(data, filename, hint, profession_key, outcome)
        else:
            unit = self._document_unit(data, filename, kind, hint, profession_key)
            self._run_units([unit], filename, outcome)

        self._apply_confidence_floor(outcome)
        outcome.entities = [replace(e, sequence=i) for i, e in enumerate(outcome.entities, start=1)]
        logger.info(
            "extracted file=%s kind=%s entities=%s errors=%d",
            filename, kind.value, outcome.count_by_type(), len(outcome.error_records),
        )
        return outcome

    def _extract_spreadsheet(
        self, data: bytes, filename: str, hint: str | None, profession: str, outcome: ExtractionOutcome
    ) -> None:
        read = process_file(data, filename)
        outcome.error_records.extend(read.error_records)
        outcome.sheets_processed = len(read.sheets)
        fallback = self.config.extraction.fallback_contract_confidence

        units: list[_Unit] = []
        for sheet in read.sheets:
            for table in sheet.tables:
                typed = table.typed_rows()
                if typed:
                    outcome.entities.extend(_row_entity(filename, sheet.name, row, fallback) for row in typed)
                    continue
                if not table.rows:
                    continue
                if self.provider is None or not self.config.extraction.ai_fallback_for_unmapped_sheets:
                    logger.info(
                        "sheet=%s header_row=%d has no recognizable rows, skipped", sheet.name, table.header_row
                    )
                    continue
                units.extend(self._table_units(filename, sheet, table, hint, profession))

        if units:
            self._run_units(units, filename, outcome)

    def _table_units(
        self, filename: str, sheet: ProcessedSheet, table: SheetTable, hint: str | None, profession: str
    ) -> list[_Unit]:
        size = self.config.extraction.chunk_rows
        prof = get_profession(profession)
        # several tables on one sheet: tell their chunks apart by header row
        name = sheet.name if len(sheet.tables) == 1 else f"{sheet.name}:{table.header_row}"
        units = []
        total = math.ceil(len(table.rows) / size)
        for n, start in enumerate(range(0, len(table.rows), size), start=1):
            rows = table.rows[start:start + size]
            first, last = rows[0].row_number, rows[-1].row_number
            prompt = build_sheet_chunk_prompt(
                filename, sheet.name, _chunk_csv(table, rows), prof, hint,
                first_row=first, last_row=last,
            )
            units.append(_Unit(
                label=f"{name} chunk {n}/{total}",
                prompt=prompt,
                sheet=sheet.name,
                first_row=first,
                last_row=last,
            ))
        return units

    def _document_unit(
        self, data: bytes, filename: str, kind: FileKind, hint: str | None, profession: str
    ) -> _Unit:
        prompt = build_document_prompt(filename, get_profession(profession), hint)
        if kind is FileKind.PDF:
            return _Unit(label=filename, prompt=prompt, document=DocumentPayload(data, "application/pdf"))
        if kind is FileKind.IMAGE:
            return _Unit(
                label=filename, prompt=prompt, document=DocumentPayload(data, image_media_type(filename, data))
            )
        return _Unit(label=filename, prompt=f"{prompt}\n\nConteúdo do documento:\n{decode_text(data)}")

    def _run_units(self, units: list[_Unit], filename: str, outcome: ExtractionOutcome) -> None:
        workers = max(1, min(self.config.extraction.max_parallel_chunks, len(units)))
        if workers == 1:
            results = [self._run_unit(u, filename) for u in units]
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="extract") as pool:
                results = list(pool.map(lambda u: self._run_unit(u, filename), units))
        outcome.ai_requests += len(units)
        for result in results:
            outcome.entities.extend(result.entities)
            outcome.error_records.extend(result.error_records)

    def _call(self, unit: _Unit) -> ProviderResult:
        ai = self.config.ai
        kwargs: dict[str, Any] = {
            "document": unit.document,
            "model": ai.model,
            "temperature": ai.temperature,
            "max_tokens": ai.max_tokens,
            "timeout_seconds": ai.timeout_seconds,
        }
        try:
            return self.provider.generate(unit.prompt, **kwargs)
        except ProviderRateLimitError:
            logger.warning("rate limited on %s, retrying in %.1fs", unit.label, ai.rate_limit_retry_seconds)
            self._sleep(ai.rate_limit_retry_seconds)
            return self.provider.generate(unit.prompt, **kwargs)

    def _run_unit(self, unit: _Unit, filename: str) -> _UnitResult:
        result = _UnitResult()
        if self.provider is None:
            result.error_records.append(ErrorRecord.create(
                filename, unit.sheet, None, ErrorType.AI_UPSTREAM_ERROR,
                f"{unit.label}: AI extraction is disabled",
            ))
            return result

        logger.debug("AI request %s (~%d tokens)", unit.label, estimate_tokens(unit.prompt))
        try:
            response = self._call(unit)
            payload = self._parse(response.raw_text)
        except ProviderError as e:
            logger.error("AI call failed for %s: %s", unit.label, e)
            result.error_records.append(ErrorRecord.create(
                filename, unit.sheet, None, ErrorType.AI_UPSTREAM_ERROR, f"{unit.label}: AI call failed: {e}"
            ))
            return result
        except ExtractionResponseError as e:
            logger.error("unusable AI response for %s: %s", unit.label, e)
            result.error_records.append(ErrorRecord.create(
                filename, unit.sheet, None, ErrorType.AI_RESPONSE_ERROR, f"{unit.label}: {e}"
            ))
            return result

        logger.debug(
            "AI response %s model=%s latency_ms=%.0f tokens=%d/%d",
            unit.label, response.model, response.latency_ms,
            response.prompt_tokens, response.completion_tokens,
        )
        self._collect(payload, unit, filename, result)
        return result

    @staticmethod
    def _parse(text: str) -> dict[str, Any]:
        payload = extract_json(text)
        if isinstance(payload, dict) and any(name in payload for name in ENTITY_ARRAYS):
            return payload
        recovered = extract_arrays_incrementally(text)
        if recovered:
            logger.warning("AI response was damaged, recovered arrays: %s", sorted(recovered))
            return recovered
        raise ExtractionResponseError("could not parse AI response as JSON")

    def _source_row(self, value: Any, unit: _Unit) -> int | None:
        if unit.first_row is None or isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        if not math.isfinite(value) or value != int(value) or not unit.first_row <= value <= unit.last_row:
            return None
        return int(value)

    def _confidence(self, value: Any) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
            return self.config.ai.default_confidence
        return min(1.0, max(0.0, float(value)))

    def _collect(self, payload: Mapping[str, Any], unit: _Unit, filename: str, result: _UnitResult) -> None:
        for array_name, entity_type in _ARRAY_TYPES.items():
            items = payload.get(array_name) or []
            if not isinstance(items, list):
                result.error_records.append(ErrorRecord.create(
                    filename, unit.sheet, None, ErrorType.VALIDATION_ERROR,
                    f"{unit.label}: '{array_name}' is not a list, ignored",
                ))
                continue
            validator = _CANDIDATE_VALIDATORS[entity_type]
            for position, item in enumerate(items, start=1):
                problem = next(iter(sorted(validator.iter_errors(item), key=str)), None)
                if problem is not None:
                    logger.warning(
                        "dropped %s #%d from %s: %s", entity_type.value, position, unit.label, problem.message
                    )
                    result.error_records.append(ErrorRecord.create(
                        filename, unit.sheet, None, ErrorType.VALIDATION_ERROR,
                        f"{unit.label}: dropped {entity_type.value} #{position}: {problem.message}",
                    ))
                    continue
                row = self._source_row(item.get("sourceRow"), unit)
                data = {k: v for k, v in item.items() if k not in ("confidence", "sourceRow")}
                result.entities.append(ExtractedEntity.create(
                    entity_type,
                    data,
                    EntitySource(filename, unit.sheet, row),
                    confidence=self._confidence(item.get("confidence")),
                    origin=EntityOrigin.AI,
                ))

    def _apply_confidence_floor(self, outcome: ExtractionOutcome) -> None:
        floor = self.config.extraction.min_confidence
        kept = []
        for entity in outcome.entities:
            if entity.confidence >= floor:
                kept.append(entity)
                continue
            src = entity.source
            outcome.error_records.append(ErrorRecord.create(
                src.file, src.sheet, src.row, ErrorType.LOW_CONFIDENCE,
                f"{entity.type.value} skipped: confidence {entity.confidence:.2f} below {floor:.2f}",
            ))
        outcome.entities = kept
