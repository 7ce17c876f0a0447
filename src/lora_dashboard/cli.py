"""Click CLI for the LoRa telemetry dashboard.

Entry point registered in ``pyproject.toml`` as ``lora-dashboard``.

Subcommands::

    lora-dashboard               # poll until SIGINT/SIGTERM
    lora-dashboard --once        # one tick of each poll, then exit
    lora-dashboard log show      # print the persisted alert log, newest first
    lora-dashboard log clear     # delete the persisted alert log
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from dataclasses import asdict
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import aiohttp
import click
import orjson

from lora_dashboard import __version__
from lora_dashboard.alerts import AlertEdgeDetector
from lora_dashboard.config import AppConfig, LogFileConfig, load_config
from lora_dashboard.output import DashboardFileSink, StdoutSink
from lora_dashboard.redactor import SecretRedactingFilter, collect_secret_values
from lora_dashboard.registry import DeviceRegistry
from lora_dashboard.scheduler import PollScheduler
from lora_dashboard.session import DashboardSession
from lora_dashboard.sources import PollSource, is_http
from lora_dashboard.store import AlertLogStore, JsonFileStore

logger = logging.getLogger("lora_dashboard")

DEFAULT_CONFIG = "/etc/lora-dashboard/config.json"


# ── structured JSON log formatter ───────────────────────────────────


class _JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON to stderr."""

    def format(self, record: logging.LogRecord) -> str:
        obj = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj).decode()


def _setup_logging(
    level: str,
    secret_values: list[str] | None = None,
    log_file_config: Optional[LogFileConfig] = None,
) -> None:
    """Configure the root logger with JSON output on stderr + optional file + redaction."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    redactor = SecretRedactingFilter(secret_values)

    # Always log to stderr (journald picks this up)
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_JsonFormatter())
    stderr_handler.addFilter(redactor)
    root.addHandler(stderr_handler)

    if log_file_config and log_file_config.enabled:
        Path(log_file_config.path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=log_file_config.path,
            maxBytes=log_file_config.max_size_bytes,
            backupCount=log_file_config.backup_count,
        )
        file_handler.setFormatter(_JsonFormatter())
        file_handler.addFilter(redactor)
        root.addHandler(file_handler)


def _resolve_config(config_path: Optional[str]) -> AppConfig:
    """Load the config file, or built-in defaults when the default path is absent."""
    cfg_path = config_path or os.environ.get("LORA_CONFIG")
    if cfg_path is None:
        if not Path(DEFAULT_CONFIG).exists():
            return AppConfig()
        cfg_path = DEFAULT_CONFIG
    try:
        return load_config(cfg_path)
    except Exception as exc:
        click.echo(f"Config error: {exc}", err=True)
        raise SystemExit(1) from exc


def _build_log_store(cfg: AppConfig) -> tuple[JsonFileStore, AlertLogStore]:
    store = JsonFileStore(cfg.alert_log.store_path)
    log_store = AlertLogStore(
        store,
        key=cfg.alert_log.key,
        max_entries=cfg.alert_log.max_entries,
        timestamp_format=cfg.alert_log.timestamp_format,
    )
    return store, log_store


def build_session(cfg: AppConfig, output_mode: str) -> DashboardSession:
    """Wire a :class:`DashboardSession` from configuration."""
    store, log_store = _build_log_store(cfg)
    ids = cfg.devices.recognized_ids
    registry = DeviceRegistry(
        recognized_ids=ids,
        fallback=(cfg.devices.fallback_latitude, cfg.devices.fallback_longitude),
    )
    detector = AlertEdgeDetector(
        log_store,
        recognized_ids=ids,
        state_store=store if cfg.alert_log.persist_alert_state else None,
        state_key=cfg.alert_log.state_key,
    )
    if output_mode == "file":
        sink = DashboardFileSink(cfg.output.file_path)
    else:
        sink = StdoutSink()
    return DashboardSession(registry, log_store, detector, sink)


# ── main CLI group ──────────────────────────────────────────────────


@click.group(invoke_without_command=True)
@click.option("-o", "--output", "output_mode", type=click.Choice(["stdout", "file"]),
              default=None, help="Presentation output (default: from config).")
@click.option("-f", "--output-file", default=None, help="Override dashboard file path.")
@click.option("-c", "--config", "config_path", default=None,
              help="Config file path.")
@click.option("--log-level", default=None,
              type=click.Choice(["debug", "info", "warn", "error"]),
              help="Log verbosity.")
@click.option("--once", is_flag=True, help="Run one tick of each poll, then exit.")
@click.option("--validate-config", "validate_only", is_flag=True,
              help="Validate config and exit.")
@click.version_option(__version__)
@click.pass_context
def main(
    ctx: click.Context,
    output_mode: Optional[str],
    output_file: Optional[str],
    config_path: Optional[str],
    log_level: Optional[str],
    once: bool,
    validate_only: bool,
) -> None:
    """LoRa telemetry dashboard: poll readings, log alert edges, render state."""
    cfg = _resolve_config(config_path)
    ctx.obj = cfg

    effective_level = (
        log_level
        or os.environ.get("LORA_LOG_LEVEL")
        or cfg.logging.level
    )
    effective_output = (
        output_mode
        or os.environ.get("LORA_OUTPUT")
        or cfg.output.mode
    )
    if output_file:
        cfg.output.file_path = output_file
    elif os.environ.get("LORA_OUTPUT_FILE"):
        cfg.output.file_path = os.environ["LORA_OUTPUT_FILE"]
    cfg.output.mode = effective_output

    secret_values = collect_secret_values(asdict(cfg), cfg.logging.redact_patterns)
    _setup_logging(effective_level, secret_values, cfg.logging.file)

    if ctx.invoked_subcommand is not None:
        return  # defer to subcommand

    if validate_only:
        click.echo("Configuration is valid.", err=True)
        raise SystemExit(0)

    logger.info(
        "Starting lora-dashboard %s (instance=%s, output=%s)",
        __version__,
        cfg.instance_id,
        effective_output,
    )

    session = build_session(cfg, effective_output)
    asyncio.run(_run_dashboard(cfg, session, once))


# ── async runner ────────────────────────────────────────────────────


async def _run_dashboard(cfg: AppConfig, session: DashboardSession, once: bool) -> None:
    """Start the session and drive both polls on this event loop."""
    loop = asyncio.get_running_loop()
    latest_cfg = cfg.sources.latest
    bulk_cfg = cfg.sources.bulk

    http: Optional[aiohttp.ClientSession] = None
    if is_http(latest_cfg.location) or is_http(bulk_cfg.location):
        http = aiohttp.ClientSession()

    scheduler = PollScheduler(
        session,
        latest=PollSource(
            latest_cfg.location,
            timeout_s=latest_cfg.timeout_s,
            cache_bust=latest_cfg.cache_bust,
            auth_token=latest_cfg.auth_token,
            http=http,
        ),
        bulk=PollSource(
            bulk_cfg.location,
            timeout_s=bulk_cfg.timeout_s,
            cache_bust=bulk_cfg.cache_bust,
            auth_token=bulk_cfg.auth_token,
            http=http,
        ),
        latest_interval_s=latest_cfg.interval_s,
        bulk_interval_s=bulk_cfg.interval_s,
    )

    # --- signal handling ---
    def _handle_signal() -> None:
        logger.info("Received shutdown signal")
        scheduler.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            pass  # Windows

    try:
        session.start()
        if once:
            await scheduler.poll_latest()
            await scheduler.poll_bulk()
        else:
            await scheduler.run()
    except BrokenPipeError:
        logger.warning("Output consumer went away; stopping")
    finally:
        if http is not None:
            await http.close()
        close = getattr(session.sink, "close", None)
        if close is not None:
            close()
        logger.info(
            "Dashboard shut down (alerting=%s)",
            sorted(session.detector.alerting),
        )


# ── log subcommand group ────────────────────────────────────────────


@main.group("log")
def log_group() -> None:
    """Inspect or clear the persisted alert log."""


@log_group.command("show")
@click.pass_obj
def log_show(cfg: AppConfig) -> None:
    """Print the alert log, newest first."""
    _, log_store = _build_log_store(cfg)
    entries = log_store.load()
    if not entries:
        click.echo("No alerts logged.", err=True)
        return
    for entry in reversed(entries):
        click.echo(entry)


@log_group.command("clear")
@click.pass_obj
def log_clear(cfg: AppConfig) -> None:
    """Delete the persisted alert log and redraw the output empty."""
    session = build_session(cfg, cfg.output.mode)
    session.clear_log()
    click.echo("Alert log cleared.", err=True)
