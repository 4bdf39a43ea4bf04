from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

"""Entity candidate models.

An ``ExtractedEntity`` is produced by the extraction stage (spreadsheet
heuristics or the AI completion path) and consumed by reconciliation and
commit. Instances are frozen and their payload is a read-only mapping;
every transformation returns a new instance.
"""

__all__ = [
    "EntityType",
    "RowType",
    "EntityOrigin",
    "EntitySource",
    "ExtractedEntity",
]


class EntityType(str, Enum):
    CONTRACT = "contract"
    RECEIVABLE = "receivable"
    EXPENSE = "expense"

    @property
    def plural(self) -> str:
        return f"{self.value}s"


class RowType(str, Enum):
    """Classification of a spreadsheet row (``EntityType`` plus ``unknown``)."""
    CONTRACT = "contract"
    RECEIVABLE = "receivable"
    EXPENSE = "expense"
    UNKNOWN = "unknown"

    def as_entity_type(self) -> EntityType | None:
        if self is RowType.UNKNOWN:
            return None
        return EntityType(self.value)


class EntityOrigin(str, Enum):
    HEURISTIC = "heuristic"
    AI = "ai"


@dataclass(frozen=True)
class EntitySource:
    """Where a candidate came from. ``row`` is the 1-based sheet row, or None."""
    file: str
    sheet: str | None = None
    row: int | None = None

    def describe(self) -> str:
        parts = [self.file]
        if self.sheet:
            parts.append(f"sheet '{self.sheet}'")
        if self.row is not None:
            parts.append(f"row {self.row}")
        return ", ".join(parts)


def _freeze(data: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(data))


@dataclass(frozen=True)
class ExtractedEntity:
    type: EntityType
    confidence: float
    data: Mapping[str, Any]
    source: EntitySource
    origin: EntityOrigin = EntityOrigin.HEURISTIC
    # 1-based position within the extraction run, stable across stages
    sequence: int = field(default=0, compare=False)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")
        if not isinstance(self.data, MappingProxyType):
            object.__setattr__(self, "data", _freeze(self.data))

    @classmethod
    def create(
        cls,
        entity_type: EntityType,
        data: Mapping[str, Any],
        source: EntitySource,
        *,
        confidence: float = 1.0,
        origin: EntityOrigin = EntityOrigin.HEURISTIC,
        sequence: int = 0,
    ) -> ExtractedEntity:
        cleaned = {k: v for k, v in data.items() if v is not None}
        return cls(
            type=entity_type,
            confidence=confidence,
            data=_freeze(cleaned),
            source=source,
            origin=origin,
            sequence=sequence,
        )

    def with_data(self, data: Mapping[str, Any]) -> ExtractedEntity:
        return replace(self, data=_freeze(data))

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def label(self) -> str:
        """Short human label used in error and duplicate messages."""
        if self.type is EntityType.CONTRACT:
            name = self.get("projectName") or self.get("clientName") or "?"
        elif self.type is EntityType.RECEIVABLE:
            name = self.get("clientName") or self.get("description") or "?"
        else:
            name = self.get("description") or self.get("vendor") or "?"
        return f"{self.type.value} '{name}' ({self.source.describe()})"
