"""Configuration: frozen dataclass built from defaults, YAML, env vars and CLI args."""

import argparse
import logging
import os
from dataclasses import dataclass, fields

import yaml

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Config:
    log_file: str = ""
    project_id: str = ""
    from_beginning: bool = False
    dry_run: bool = False
    test_last_n: int = 0
    log_level: str = "INFO"
    queue_size: int = 100
    read_interval: float = 0.1
    rotation_check_interval: float = 5.0
    retry_interval: float = 5.0
    rescan_interval: float = 60.0
    location: str = "europe-north1"
    log_name: str = "postgres-audit-log"


_ENV_VARS = {
    "log_file": "LOG_FILE",
    "project_id": "PROJECT_ID",
    "from_beginning": "FROM_BEGINNING",
    "dry_run": "DRY_RUN",
    "test_last_n": "TEST_LAST_N",
    "log_level": "LOG_LEVEL",
    "queue_size": "QUEUE_SIZE",
    "read_interval": "READ_INTERVAL",
    "rotation_check_interval": "ROTATION_CHECK_INTERVAL",
    "retry_interval": "RETRY_INTERVAL",
    "rescan_interval": "RESCAN_INTERVAL",
    "location": "LOCATION",
    "log_name": "LOG_NAME",
}


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    logger.info("Loaded YAML config from %s", path)
    return data


def _coerce(name: str, value):
    kind = type(getattr(Config, name))
    if kind is bool:
        return _parse_bool(value)
    if name == "log_level":
        return str(value).strip().upper()
    return kind(value)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Tail PostgreSQL JSON logs and ship pgaudit entries to Cloud Logging",
    )
    parser.add_argument("--log-file", default=None,
                        help="Glob pattern of log files to tail (required)")
    parser.add_argument("--project-id", default=None,
                        help="GCP project ID; skips Kubernetes lookup (local testing)")
    parser.add_argument("--from-beginning", action="store_true", default=None,
                        help="Read existing content instead of skipping to end of file")
    parser.add_argument("--dry-run", action="store_true", default=None,
                        help="Print audit entries to stdout instead of sending them")
    parser.add_argument("--test-last-n", type=int, default=None,
                        help="Print the last N entries of each matching file and exit")
    parser.add_argument("--log-level", default=None, type=str.upper, choices=LOG_LEVELS)
    parser.add_argument("--config", default=os.environ.get("CONFIG_PATH"),
                        help="Optional YAML file with tuning settings")
    return parser


def load_config(argv: list[str] | None = None) -> Config:
    """Build Config: defaults <- YAML file <- env vars <- CLI args (highest priority).

    Pass argv for testability; when None, argparse reads sys.argv. Bad
    arguments exit with status 2 through argparse.
    """
    parser = build_cli_parser()
    args = parser.parse_args(argv)

    known = {f.name for f in fields(Config)}
    kwargs: dict = {}

    try:
        yaml_data = load_yaml_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        parser.error(f"invalid config file: {e}")

    for key, value in yaml_data.items():
        key = str(key).replace("-", "_")
        if key not in known:
            logger.warning("Ignoring unknown config key %r", key)
            continue
        if value is None:
            continue
        kwargs[key] = value

    for name, env_var in _ENV_VARS.items():
        if env_var in os.environ:
            kwargs[name] = os.environ[env_var]

    for name in ("log_file", "project_id", "from_beginning", "dry_run",
                 "test_last_n", "log_level"):
        value = getattr(args, name)
        if value is not None:
            kwargs[name] = value

    try:
        config = Config(**{k: _coerce(k, v) for k, v in kwargs.items()})
    except (TypeError, ValueError) as e:
        parser.error(str(e))

    if not config.log_file:
        parser.error("--log-file is required")
    if config.log_level not in LOG_LEVELS:
        parser.error(f"invalid log level {config.log_level!r}")
    if config.queue_size < 1:
        parser.error("queue_size must be at least 1")
    return config
