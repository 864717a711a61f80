#!/usr/bin/env python3
"""pgaudit log tailer entry point."""

import glob
import logging
import queue
import signal
import sys
import threading

from pgaudit_tailer.config import Config, load_config
from pgaudit_tailer.dispatch import make_channels
from pgaudit_tailer.identity import IdentityError, local_identity, resolve_identity
from pgaudit_tailer.inspector import format_entries, read_last_entries
from pgaudit_tailer.sinks import SinkError, build_audit_sink, build_passthrough_sink
from pgaudit_tailer.watcher import GlobWatcher

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_BAD_ARGS = 2
EXIT_IDENTITY = 3
EXIT_SINK = 4
EXIT_RUNTIME = 5

DRY_RUN_PROJECT = "dry-run"
JOIN_TIMEOUT = 5.0


def configure_logging(level: str):
    # stdout carries passthrough lines, so diagnostics go to stderr.
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def inspect_files(config: Config) -> int:
    """Print the last entries of every matching file (--test-last-n)."""
    paths = sorted(glob.glob(config.log_file))
    if not paths:
        logger.error("No files match %s", config.log_file)
        return EXIT_RUNTIME

    for path in paths:
        try:
            entries = read_last_entries(path, config.test_last_n)
        except OSError as e:
            logger.error("Failed to read %s: %s", path, e)
            return EXIT_RUNTIME
        print(f"### {path} ({len(entries)} entries)")
        if entries:
            print(format_entries(entries))
    return EXIT_OK


def run(config: Config, shutdown_event: threading.Event, client_factory=None) -> int:
    """Wire watcher, tailers and sinks together and block until shutdown or a fatal error."""
    try:
        if config.dry_run and not config.project_id:
            identity = local_identity(DRY_RUN_PROJECT)
        else:
            identity = resolve_identity(config.project_id)
    except IdentityError as e:
        logger.error("Failed to resolve identity: %s", e)
        return EXIT_IDENTITY

    channels = make_channels(config.queue_size)
    sink_kwargs = {"client_factory": client_factory} if client_factory else {}
    try:
        audit_sink = build_audit_sink(config, identity, channels.audit, shutdown_event, **sink_kwargs)
    except SinkError as e:
        logger.error("Failed to create audit sink: %s", e)
        return EXIT_SINK
    passthrough_sink = build_passthrough_sink(config, channels.lines, shutdown_event)

    errors: queue.Queue = queue.Queue()
    watcher = GlobWatcher(
        config.log_file,
        channels,
        shutdown_event,
        errors,
        from_beginning=config.from_beginning,
        read_interval=config.read_interval,
        rotation_check_interval=config.rotation_check_interval,
        retry_interval=config.retry_interval,
        rescan_interval=config.rescan_interval,
    )

    audit_sink.start()
    passthrough_sink.start()
    watcher.start()
    logger.info("Log tailer running (pattern=%s, dry_run=%s)", config.log_file, config.dry_run)

    sinks = (audit_sink, passthrough_sink)
    exit_code = EXIT_OK
    while not shutdown_event.is_set():
        try:
            err = errors.get(timeout=1.0)
        except queue.Empty:
            dead = [sink.name for sink in sinks if not sink.is_alive()]
            if dead and not shutdown_event.is_set():
                logger.error("Sink %s stopped unexpectedly, shutting down", ", ".join(dead))
                exit_code = EXIT_RUNTIME
                break
            continue
        logger.error("Fatal error, shutting down: %s", err)
        exit_code = EXIT_RUNTIME
        break

    logger.info("Shutting down...")
    shutdown_event.set()
    watcher.join(timeout=JOIN_TIMEOUT)
    audit_sink.join(timeout=JOIN_TIMEOUT)
    passthrough_sink.join(timeout=JOIN_TIMEOUT)
    logger.info("Log tailer stopped.")
    return exit_code


def main(argv: list[str] | None = None) -> int:
    config = load_config(argv)
    configure_logging(config.log_level)

    if config.test_last_n > 0:
        return inspect_files(config)

    shutdown_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info("Received signal %d, shutting down gracefully...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    return run(config, shutdown_event)


if __name__ == "__main__":
    sys.exit(main())
