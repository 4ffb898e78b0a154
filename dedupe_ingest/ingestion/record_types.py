"""Shared ingestion data types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol


class HasFields(Protocol):
    """Anything exposing named fields through `get` (a plain dict qualifies)."""

    def get(self, name: str, default: Any = None) -> Any:
        ...


@dataclass(frozen=True)
class CandidateRecord:
    """One upstream record for the current cycle.

    Only the configured key fields are ever inspected; everything else is passed
    through to the sink writer untouched.
    """

    fields: Dict[str, Any] = field(default_factory=dict)
    ingestion_source: str = "unknown"

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def __getitem__(self, name: str) -> Any:
        return self.fields[name]

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], *, ingestion_source: Optional[str] = None) -> "CandidateRecord":
        return cls(fields=dict(mapping), ingestion_source=ingestion_source or "unknown")


def record_fields(record: HasFields) -> Dict[str, Any]:
    """Field bag of a record, for sinks that persist every field."""
    if isinstance(record, CandidateRecord):
        return dict(record.fields)
    if isinstance(record, Mapping):
        return dict(record)
    raise TypeError(f"cannot extract fields from {type(record).__name__}")


def record_source(record: HasFields) -> str:
    return getattr(record, "ingestion_source", None) or "unknown"
