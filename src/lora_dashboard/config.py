"""Configuration loading, environment-variable interpolation, and validation.

Resolution order for ``${VAR}`` placeholders:
    CLI overrides → environment variables → raw config value.

``${VAR}`` (no default) raises if unresolvable.
``${VAR:-default}`` falls back to *default*.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import orjson

logger = logging.getLogger(__name__)

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*?))?\}")

_SCHEMA_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "config.schema.json"


@dataclass
class SourceConfig:
    """One polled resource."""

    location: str = ""
    interval_s: float = 1.0
    timeout_s: float = 5.0
    cache_bust: bool = False
    auth_token: str = ""


def _latest_default() -> SourceConfig:
    return SourceConfig(location="latest.txt", interval_s=1.0, cache_bust=True)


def _bulk_default() -> SourceConfig:
    return SourceConfig(location="data.txt", interval_s=5.0, cache_bust=False)


@dataclass
class SourcesConfig:
    """Latest-reading and bulk-alert sources."""

    latest: SourceConfig = field(default_factory=_latest_default)
    bulk: SourceConfig = field(default_factory=_bulk_default)


@dataclass
class DevicesConfig:
    """Tracked devices and the placement fallback."""

    recognized_ids: list[str] = field(default_factory=lambda: ["p1", "p2"])
    fallback_latitude: float = 12.9238
    fallback_longitude: float = 77.4988


@dataclass
class AlertLogConfig:
    """Persisted alert log settings."""

    store_path: str = "/var/lib/lora-dashboard/store.json"
    key: str = "lora_alert_log"
    max_entries: int = 50
    timestamp_format: str = "%Y-%m-%d %H:%M:%S"
    persist_alert_state: bool = False
    state_key: str = "lora_alert_state"


@dataclass
class OutputConfig:
    """Presentation output settings."""

    mode: str = "stdout"
    file_path: str = "/var/lib/lora-dashboard/dashboard.json"


@dataclass
class LogFileConfig:
    """Optional log file output settings.

    When ``enabled`` is True the application writes operational logs to a
    rotating file in addition to stderr.
    """

    enabled: bool = False
    path: str = "/var/log/lora-dashboard/app.log"
    max_size_bytes: int = 10485760   # 10 MB
    backup_count: int = 5


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    file: LogFileConfig = field(default_factory=LogFileConfig)
    redact_patterns: list[str] = field(
        default_factory=lambda: ["*token*", "*secret*", "*password*"]
    )


@dataclass
class AppConfig:
    """Top-level application configuration."""

    instance_id: str = "dashboard-01"
    sources: SourcesConfig = field(default_factory=SourcesConfig)
    devices: DevicesConfig = field(default_factory=DevicesConfig)
    alert_log: AlertLogConfig = field(default_factory=AlertLogConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _interpolate_value(value: str, overrides: dict[str, str] | None = None) -> str:
    """Replace ``${VAR}`` / ``${VAR:-default}`` in *value*."""

    def _replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)  # None when no ``:-`` present

        if overrides and var_name in overrides:
            return overrides[var_name]
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        if default is not None:
            return default

        raise ValueError(
            f"Required variable ${{{var_name}}} is not set in environment "
            f"or CLI overrides"
        )

    return _VAR_RE.sub(_replacer, value)


def _walk_and_interpolate(obj: Any, overrides: dict[str, str] | None = None) -> Any:
    """Recursively interpolate all string values in a JSON-like structure."""
    if isinstance(obj, str):
        return _interpolate_value(obj, overrides)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v, overrides) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(item, overrides) for item in obj]
    return obj


def _known(cls: type, raw: dict[str, Any]) -> dict[str, Any]:
    """Keep only the keys of *raw* that are fields of dataclass *cls*."""
    return {k: raw[k] for k in raw if k in cls.__dataclass_fields__}


def _source(raw: dict[str, Any], default: SourceConfig) -> SourceConfig:
    merged = {**default.__dict__, **_known(SourceConfig, raw)}
    return SourceConfig(**merged)


def _dict_to_config(raw: dict[str, Any]) -> AppConfig:
    """Convert a raw dict into a typed :class:`AppConfig`."""
    sources_raw = raw.get("sources", {})
    logging_raw = raw.get("logging", {})
    defaults = LoggingConfig()

    return AppConfig(
        instance_id=raw.get("instance_id", "dashboard-01"),
        sources=SourcesConfig(
            latest=_source(sources_raw.get("latest", {}), _latest_default()),
            bulk=_source(sources_raw.get("bulk", {}), _bulk_default()),
        ),
        devices=DevicesConfig(**_known(DevicesConfig, raw.get("devices", {}))),
        alert_log=AlertLogConfig(**_known(AlertLogConfig, raw.get("alert_log", {}))),
        output=OutputConfig(**_known(OutputConfig, raw.get("output", {}))),
        logging=LoggingConfig(
            level=logging_raw.get("level", defaults.level),
            file=LogFileConfig(**_known(LogFileConfig, logging_raw.get("file", {}))),
            redact_patterns=logging_raw.get("redact_patterns", defaults.redact_patterns),
        ),
    )


def load_config(
    path: str | Path,
    overrides: dict[str, str] | None = None,
    schema_path: str | Path | None = None,
) -> AppConfig:
    """Load, interpolate, validate, and return the application config.

    Parameters
    ----------
    path:
        Filesystem path to ``config.json``.
    overrides:
        CLI-supplied variable overrides.
    schema_path:
        Path to the JSON Schema file.  Defaults to
        ``config/config.schema.json`` relative to the project root.

    Returns
    -------
    AppConfig
        Fully resolved and validated configuration.

    Raises
    ------
    ValueError
        If a required ``${VAR}`` cannot be resolved.
    jsonschema.ValidationError
        If the config fails schema validation.
    """
    raw_bytes = Path(path).read_bytes()
    raw: dict[str, Any] = orjson.loads(raw_bytes)

    interpolated = _walk_and_interpolate(raw, overrides=overrides)

    sp = Path(schema_path) if schema_path else _SCHEMA_PATH
    if sp.exists():
        schema = orjson.loads(sp.read_bytes())
        jsonschema.validate(instance=interpolated, schema=schema)
        logger.debug("Config passed schema validation")
    else:
        logger.warning("Schema file not found at %s, skipping validation", sp)

    return _dict_to_config(interpolated)
