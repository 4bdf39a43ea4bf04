from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date
from typing import Any

from ..config.loader import ReconciliationConfig
from ..db.store import StoreError, TeamScope
from ..models.entities import EntityType, ExtractedEntity
from ..models.error_record import ErrorRecord, ErrorType
from ..models.processing_result import CommitResult
from .reconciliation import Reconciler
from .validation import normalize_entity, validate_entity

logger = logging.getLogger(__name__)

"""Bulk commit of extracted entities.

Steps:
1. normalize and validate every candidate; invalid ones are reported and
   never reach the store
2. per type, contracts first so receivables/expenses can reference the
   contracts created from the same file: resolve contract references,
   skip duplicates, then one create_many per type
3. rows rejected by the store become INSERT_ERRORs; a StoreError fails the
   whole type batch (PERSISTENCE_ERROR) and marks the commit unsuccessful
"""

__all__ = ["COMMIT_ORDER", "commit"]

COMMIT_ORDER = (EntityType.CONTRACT, EntityType.RECEIVABLE, EntityType.EXPENSE)


def _error(entity: ExtractedEntity, error_type: str, message: str) -> ErrorRecord:
    src = entity.source
    return ErrorRecord.create(src.file, src.sheet, src.row, error_type, message)


def _name(entity: ExtractedEntity) -> str:
    if entity.type is EntityType.CONTRACT:
        return entity.get("projectName") or entity.get("clientName") or "?"
    return entity.get("description") or entity.get("clientName") or "?"


def _commit_type(
    entity_type: EntityType,
    batch: list[ExtractedEntity],
    scope: TeamScope,
    reconciler: Reconciler,
    result: CommitResult,
) -> None:
    records: list[dict[str, Any]] = []
    accepted: list[ExtractedEntity] = []
    for entity in batch:
        data = dict(entity.data)
        if entity_type is not EntityType.CONTRACT and data.get("contractId"):
            data["contractId"] = reconciler.resolve_contract_reference(
                data["contractId"], data.get("clientName")
            )
        if reconciler.find_duplicate(entity_type, data, records) is not None:
            result.duplicates.append(entity.label())
            continue
        records.append(data)
        accepted.append(entity)

    if not records:
        return

    outcome = scope.create_many(entity_type, records)
    for failure in outcome.failures:
        entity = accepted[failure.index]
        result.record_error(_error(
            entity, ErrorType.INSERT_ERROR, f"{entity.type.value} '{_name(entity)}': {failure.message}"
        ))
    result.add_created(entity_type.value, [r.get("id") for r in outcome.created])
    reconciler.remember(entity_type, outcome.created)
    logger.info(
        "created %d %s (%d rejected, %d duplicates so far)",
        len(outcome.created), entity_type.plural, len(outcome.failures), len(result.duplicates),
    )


def commit(
    entities: Iterable[ExtractedEntity],
    scope: TeamScope,
    *,
    config: ReconciliationConfig | None = None,
    today: date | None = None,
    profession: str | None = None,
    reconciler: Reconciler | None = None,
) -> CommitResult:
    """Persist ``entities`` for the scope's team and report what happened.

    Per-entity problems (validation, rejected rows) are collected and never
    abort the commit; N candidates with K rejected yield N-K created
    records minus skipped duplicates.
    """
    today = today or date.today()
    reconciler = reconciler or Reconciler(scope, config)
    result = CommitResult()

    valid: dict[EntityType, list[ExtractedEntity]] = {t: [] for t in COMMIT_ORDER}
    for entity in entities:
        normalized = normalize_entity(entity, today)
        problems = validate_entity(normalized, profession)
        if problems:
            result.record_error(_error(
                entity,
                ErrorType.VALIDATION_ERROR,
                f"{entity.type.value} '{_name(normalized)}': {'; '.join(problems)}",
            ))
            continue
        valid[normalized.type].append(normalized)

    for entity_type in COMMIT_ORDER:
        batch = valid[entity_type]
        if not batch:
            continue
        try:
            _commit_type(entity_type, batch, scope, reconciler, result)
        except StoreError as e:
            logger.error("persisting %s failed: %s", entity_type.plural, e)
            src = batch[0].source
            result.record_error(ErrorRecord.create(
                src.file, None, None, ErrorType.PERSISTENCE_ERROR,
                f"failed to save {len(batch)} {entity_type.plural}: {e}",
            ))
    return result
