from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from ..config.loader import ReconciliationConfig
from ..db.store import TeamScope
from ..matching.fuzzy import find_best_match, fuzzy_match
from ..models.entities import EntityType

logger = logging.getLogger(__name__)

"""Duplicate detection and contract reference resolution.

A ``Reconciler`` works against one team's existing records, loaded lazily
(once per entity type) through ``TeamScope``. Records created during the
current commit are added with ``remember`` so later files or types see them.
"""

__all__ = ["Reconciler"]

# text fields compared fuzzily, per type
_TEXT_KEYS: dict[EntityType, tuple[str, ...]] = {
    EntityType.CONTRACT: ("clientName", "projectName"),
    EntityType.RECEIVABLE: ("clientName", "description"),
    EntityType.EXPENSE: ("description",),
}
_DATE_KEY = {
    EntityType.RECEIVABLE: "expectedDate",
    EntityType.EXPENSE: "dueDate",
}


class Reconciler:
    def __init__(self, scope: TeamScope, config: ReconciliationConfig | None = None) -> None:
        self.scope = scope
        self.config = config or ReconciliationConfig()
        self._known: dict[EntityType, list[dict[str, Any]]] = {}

    def known(self, entity_type: EntityType) -> list[dict[str, Any]]:
        if entity_type not in self._known:
            records = self.scope.find_many(entity_type)
            logger.debug("loaded %d existing %s", len(records), entity_type.plural)
            self._known[entity_type] = list(records)
        return self._known[entity_type]

    def remember(self, entity_type: EntityType, records: Iterable[Mapping[str, Any]]) -> None:
        self.known(entity_type).extend(dict(r) for r in records)

    def _close(self, a: Any, b: Any) -> bool:
        if a is None or b is None:
            return a is None and b is None
        a, b = float(a), float(b)
        return abs(a - b) <= self.config.value_tolerance * max(abs(a), abs(b))

    def _similar(self, entity_type: EntityType, data: Mapping[str, Any], record: Mapping[str, Any]) -> bool:
        threshold = self.config.duplicate_threshold
        if entity_type is EntityType.CONTRACT:
            return all(
                fuzzy_match(data.get(k), record.get(k)) >= threshold for k in _TEXT_KEYS[entity_type]
            )
        scores = [
            fuzzy_match(data.get(k), record.get(k))
            for k in _TEXT_KEYS[entity_type]
            if data.get(k) and record.get(k)
        ]
        # same date and amount with nothing to compare counts as the same entry
        return max(scores) >= threshold if scores else True

    def matches(self, entity_type: EntityType, data: Mapping[str, Any], record: Mapping[str, Any]) -> bool:
        if entity_type is EntityType.CONTRACT:
            if not self._close(data.get("totalValue"), record.get("totalValue")):
                return False
        else:
            key = _DATE_KEY[entity_type]
            if data.get(key) != record.get(key):
                return False
            if not self._close(data.get("amount"), record.get("amount")):
                return False
        return self._similar(entity_type, data, record)

    def find_duplicate(
        self,
        entity_type: EntityType,
        data: Mapping[str, Any],
        pending: Sequence[Mapping[str, Any]] = (),
    ) -> Mapping[str, Any] | None:
        """First existing (or pending, same batch) record that ``data`` duplicates."""
        for record in [*self.known(entity_type), *pending]:
            if self.matches(entity_type, data, record):
                return record
        return None

    def resolve_contract_reference(self, ref: Any, client: str | None = None) -> str | None:
        """Map a contract reference (id, project name or client name) to a contract id.

        When ``client`` matches some contracts, only those are considered.
        Returns None when nothing reaches ``contract_match_threshold``.
        """
        if ref is None or not str(ref).strip():
            return None
        contracts = [c for c in self.known(EntityType.CONTRACT) if c.get("id") is not None]
        for contract in contracts:
            if str(contract["id"]) == str(ref):
                return contract["id"]

        threshold = self.config.contract_match_threshold
        if client:
            same_client = [c for c in contracts if fuzzy_match(client, c.get("clientName")) >= threshold]
            contracts = same_client or contracts

        for key in ("projectName", "clientName"):
            best = find_best_match(ref, contracts, key=lambda c, k=key: c.get(k), threshold=threshold)
            if best is not None:
                return best.item["id"]
        logger.debug("contract reference %r not resolved", ref)
        return None
