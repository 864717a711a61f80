"""Terminal consumers: Cloud Logging delivery for audit entries, stdout for the rest."""

import json
import logging
import queue
import sys
import threading

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import logging as cloud_logging
from google.cloud.logging import Resource

from pgaudit_tailer.classifier import build_audit_record
from pgaudit_tailer.config import Config
from pgaudit_tailer.dispatch import get_until_shutdown
from pgaudit_tailer.identity import Identity
from pgaudit_tailer.models import AuditRecord, LogEntry

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "generic_node"
RESOURCE_NAMESPACE = "postgres-audit"
DRY_RUN_AUDIT_PREFIX = "[DRY-RUN AUDIT] "
DRY_RUN_STDOUT_PREFIX = "[DRY-RUN STDOUT] "


class SinkError(Exception):
    """A sink could not be constructed."""


def build_resource(identity: Identity, location: str) -> Resource:
    return Resource(
        type=RESOURCE_TYPE,
        labels={
            "location": location,
            "namespace": RESOURCE_NAMESPACE,
            "node_id": identity.database_id,
            "project_id": identity.project_id,
        },
    )


class AuditSink(threading.Thread):
    """Single serial consumer of the audit channel."""

    def __init__(self, q: queue.Queue, shutdown_event: threading.Event):
        super().__init__(daemon=True, name=type(self).__name__)
        self._queue = q
        self._shutdown = shutdown_event
        self._delivered = 0
        self._failed = 0

    @property
    def delivered(self) -> int:
        return self._delivered

    @property
    def failed(self) -> int:
        return self._failed

    def run(self):
        logger.info("Starting %s", self.name)
        while True:
            entry = get_until_shutdown(self._queue, self._shutdown)
            if entry is None:
                break
            try:
                ok = self.deliver(entry)
            except Exception:
                # Sole consumer of the audit channel: keep draining.
                logger.exception("Unexpected error delivering audit entry")
                ok = False
            if ok:
                self._delivered += 1
            else:
                self._failed += 1
        logger.info("%s stopped: delivered=%d, failed=%d", self.name, self._delivered, self._failed)

    def deliver(self, entry: LogEntry) -> bool:
        raise NotImplementedError


class CloudAuditSink(AuditSink):
    """Writes each audit entry to Cloud Logging and commits before the next one.

    Committing per entry keeps the loss window to a single entry if the
    process dies. Failed writes are logged and not retried.
    """

    def __init__(
        self,
        q: queue.Queue,
        shutdown_event: threading.Event,
        cloud_logger,
        identity: Identity,
        location: str = "europe-north1",
    ):
        super().__init__(q, shutdown_event)
        self._cloud_logger = cloud_logger
        self._identity = identity
        self._resource = build_resource(identity, location)

    def build_record(self, entry: LogEntry) -> AuditRecord:
        return build_audit_record(entry, self._identity.database_id)

    def deliver(self, entry: LogEntry) -> bool:
        record = self.build_record(entry)
        try:
            payload = json.dumps(record.payload)
        except (TypeError, ValueError) as e:
            logger.error("Failed to serialize audit entry: %s", e)
            return False

        try:
            batch = self._cloud_logger.batch()
            batch.log_text(
                payload,
                severity="INFO",
                labels=record.labels,
                resource=self._resource,
            )
            batch.commit()
        except (GoogleAPIError, GoogleAuthError) as e:
            logger.error("Error sending audit log to Cloud Logging: %s", e)
            return False
        return True


class DryRunAuditSink(AuditSink):
    """Prints audit entries to stdout instead of sending them."""

    def __init__(self, q: queue.Queue, shutdown_event: threading.Event, out=None):
        super().__init__(q, shutdown_event)
        self._out = out

    def deliver(self, entry: LogEntry) -> bool:
        out = self._out or sys.stdout
        try:
            out.write(f"{DRY_RUN_AUDIT_PREFIX}{json.dumps(entry)}\n")
            out.flush()
        except (OSError, TypeError, ValueError) as e:
            logger.error("Error printing audit log: %s", e)
            return False
        return True


class PassthroughSink(threading.Thread):
    """Writes non-audit lines to stdout, optionally with a fixed prefix."""

    def __init__(self, q: queue.Queue, shutdown_event: threading.Event, prefix: str = "", out=None):
        super().__init__(daemon=True, name="PassthroughSink")
        self._queue = q
        self._shutdown = shutdown_event
        self._prefix = prefix
        self._out = out
        self._written = 0
        self._failed = 0

    @property
    def written(self) -> int:
        return self._written

    @property
    def failed(self) -> int:
        return self._failed

    def run(self):
        logger.info("Starting passthrough output")
        while True:
            line = get_until_shutdown(self._queue, self._shutdown)
            if line is None:
                break
            out = self._out or sys.stdout
            try:
                out.write(f"{self._prefix}{line}\n")
                out.flush()
            except OSError as e:
                logger.error("Error writing passthrough line: %s", e)
                self._failed += 1
                continue
            except Exception:
                logger.exception("Unexpected error writing passthrough line")
                self._failed += 1
                continue
            self._written += 1
        logger.info("Passthrough output stopped: written=%d, failed=%d", self._written, self._failed)


def build_audit_sink(
    config: Config,
    identity: Identity,
    q: queue.Queue,
    shutdown_event: threading.Event,
    client_factory=cloud_logging.Client,
) -> AuditSink:
    """Pick the dry-run or Cloud Logging variant once, at startup."""
    if config.dry_run:
        return DryRunAuditSink(q, shutdown_event)

    try:
        client = client_factory(project=identity.project_id)
        cloud_logger = client.logger(config.log_name)
    except (GoogleAPIError, GoogleAuthError, OSError) as e:
        raise SinkError(f"failed to create logging client: {e}") from e
    return CloudAuditSink(q, shutdown_event, cloud_logger, identity, config.location)


def build_passthrough_sink(config: Config, q: queue.Queue, shutdown_event: threading.Event) -> PassthroughSink:
    prefix = DRY_RUN_STDOUT_PREFIX if config.dry_run else ""
    return PassthroughSink(q, shutdown_event, prefix=prefix)
