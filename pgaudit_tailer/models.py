"""Record types flowing from the tailers to the sinks."""

from dataclasses import dataclass, field
from typing import Any, Union

# One parsed JSON log line.
LogEntry = dict[str, Any]


@dataclass(frozen=True)
class AuditLine:
    entry: LogEntry
    line: str


@dataclass(frozen=True)
class PassthroughLine:
    line: str


@dataclass(frozen=True)
class InvalidLine:
    excerpt: str
    error: str


Classified = Union[AuditLine, PassthroughLine, InvalidLine]


@dataclass
class AuditRecord:
    """An audit entry ready for delivery: original payload plus labels."""
    payload: LogEntry
    labels: dict[str, str] = field(default_factory=dict)
