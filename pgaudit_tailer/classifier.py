"""Line classification and audit label extraction (pure functions)."""

import json
import logging

from pgaudit_tailer.models import (
    AuditLine,
    AuditRecord,
    Classified,
    InvalidLine,
    LogEntry,
    PassthroughLine,
)

logger = logging.getLogger(__name__)

AUDIT_MARKER = "AUDIT:"
AUDIT_PREFIX = "AUDIT: "
TRUNCATED_LENGTH = 200

# Positions inside "AUDIT: SESSION,15,1,READ,SELECT,,,SELECT 1"
_AUDIT_FIELDS = (
    (0, "auditType"),
    (3, "auditClass"),
    (4, "command"),
)

_ENTRY_FIELDS = (
    ("user", "user"),
    ("dbname", "databaseName"),
    ("backend_type", "backendType"),
)


def truncate(line: str, length: int = TRUNCATED_LENGTH) -> str:
    return line[:length]


def classify(line: str) -> Classified:
    """Parse one line and tag it as audit, passthrough or invalid.

    Invalid lines are logged here with a truncated excerpt so callers can
    simply skip them.
    """
    try:
        entry = json.loads(line)
    except json.JSONDecodeError as e:
        return _invalid(line, str(e))

    if not isinstance(entry, dict):
        return _invalid(line, f"expected JSON object, got {type(entry).__name__}")

    if is_audit(entry):
        return AuditLine(entry=entry, line=line)
    return PassthroughLine(line=line)


def _invalid(line: str, error: str) -> InvalidLine:
    excerpt = truncate(line)
    logger.warning("Failed to parse JSON log line: %s (truncated_line=%r)", error, excerpt)
    return InvalidLine(excerpt=excerpt, error=error)


def is_audit(entry: LogEntry) -> bool:
    message = entry.get("message")
    return isinstance(message, str) and message.startswith(AUDIT_MARKER)


def parse_audit_message(message: str) -> dict[str, str]:
    """Pull auditType, auditClass and command out of a pgaudit message.

    Short field lists and empty fields are tolerated; missing labels are
    simply left out.
    """
    if not message.startswith(AUDIT_PREFIX):
        return {}

    parts = message[len(AUDIT_PREFIX):].split(",")
    labels = {}
    for index, name in _AUDIT_FIELDS:
        if index < len(parts) and parts[index]:
            labels[name] = parts[index]
    return labels


def extract_labels(entry: LogEntry, database_id: str) -> dict[str, str]:
    """Build the Cloud Logging label set for an audit entry."""
    labels = {"databaseId": database_id}

    for key, label in _ENTRY_FIELDS:
        value = entry.get(key)
        if isinstance(value, str) and value:
            labels[label] = value

    message = entry.get("message")
    if isinstance(message, str):
        labels.update(parse_audit_message(message))

    return labels


def build_audit_record(entry: LogEntry, database_id: str) -> AuditRecord:
    return AuditRecord(payload=entry, labels=extract_labels(entry, database_id))
