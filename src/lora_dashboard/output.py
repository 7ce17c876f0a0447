"""Presentation sinks: NDJSON on stdout and an atomically rewritten dashboard file.

Both sinks implement :class:`PresentationSink`, the three calls the session
makes whenever something visible changes.

StdoutSink
    Writes one NDJSON line per call to ``sys.stdout.buffer``, for piping
    into a UI process or for debugging.

DashboardFileSink
    Keeps the whole dashboard (markers, cards, log, map bounds) as one JSON
    document and rewrites it on every call: write ``.tmp``, ``fsync``,
    atomic ``os.replace``.  A static page can poll it.  The write is
    synchronous, like the alert log store, and blocks the loop only for one
    small file.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

import orjson

from lora_dashboard.models import DeviceSnapshot, parse_flag

logger = logging.getLogger(__name__)

# How long a freshly rendered card stays highlighted.
HIGHLIGHT_MS = 3000

# Padding applied on each side when fitting the map to all markers.
BOUNDS_PADDING = 0.1


class PresentationSink(Protocol):
    """Display surface driven by the dashboard session."""

    def place_or_move_marker(
        self, device_id: str, lat: float, lon: float, popup: dict[str, Any]
    ) -> None:
        ...

    def render_device_card(self, snapshot: DeviceSnapshot) -> None:
        ...

    def render_log_list(self, entries: list[str]) -> None:
        ...


# ── display payloads ────────────────────────────────────────────────


def battery_level(battery: Any) -> str:
    """Bucket a battery percentage into ``high``/``medium``/``low``."""
    try:
        value = float(battery)
    except (TypeError, ValueError):
        return "low"
    if value > 60:
        return "high"
    if value > 30:
        return "medium"
    return "low"


def popup_payload(snapshot: DeviceSnapshot, lat: float, lon: float) -> dict[str, Any]:
    """Marker popup content for *snapshot* placed at ``(lat, lon)``."""
    return {
        "title": f"Device {snapshot.id.upper()}",
        "temperature": f"{snapshot.temperature}°C",
        "pressure": f"{snapshot.pressure} hPa",
        "altitude": f"{snapshot.altitude} m",
        "battery": f"{snapshot.battery}%",
        "coords": f"{lat:.6f}, {lon:.6f}",
        "alert": "ACTIVE" if parse_flag(snapshot.alert) == 1 else "Normal",
    }


def card_payload(snapshot: DeviceSnapshot) -> dict[str, Any]:
    """Status card content for *snapshot*."""
    return {
        "id": snapshot.id.upper(),
        "temperature": f"{snapshot.temperature}°C",
        "pressure": f"{snapshot.pressure}hPa",
        "altitude": f"{snapshot.altitude}m",
        "battery": f"{snapshot.battery}%",
        "battery_level": battery_level(snapshot.battery),
        "alert_visible": parse_flag(snapshot.alert) == 1,
        "last_updated": snapshot.last_updated,
        "highlight_ms": HIGHLIGHT_MS,
    }


def fit_bounds(
    points: Iterable[tuple[float, float]], padding: float = BOUNDS_PADDING
) -> Optional[list[list[float]]]:
    """``[[south, west], [north, east]]`` around *points*, padded by a ratio."""
    points = list(points)
    if not points:
        return None
    lats = [p[0] for p in points]
    lons = [p[1] for p in points]
    lat_pad = (max(lats) - min(lats)) * padding
    lon_pad = (max(lons) - min(lons)) * padding
    return [
        [min(lats) - lat_pad, min(lons) - lon_pad],
        [max(lats) + lat_pad, max(lons) + lon_pad],
    ]


# ── sinks ───────────────────────────────────────────────────────────


class StdoutSink:
    """Write presentation calls as NDJSON to stdout."""

    def place_or_move_marker(
        self, device_id: str, lat: float, lon: float, popup: dict[str, Any]
    ) -> None:
        self._emit({
            "event": "marker",
            "device_id": device_id.upper(),
            "lat": lat,
            "lon": lon,
            "popup": popup,
        })

    def render_device_card(self, snapshot: DeviceSnapshot) -> None:
        self._emit({"event": "card", "card": card_payload(snapshot)})

    def render_log_list(self, entries: list[str]) -> None:
        self._emit({"event": "log", "entries": list(reversed(entries))})

    def close(self) -> None:
        """No-op for stdout."""

    def _emit(self, obj: dict[str, Any]) -> None:
        """Write one line to ``sys.stdout.buffer``.

        Raises
        ------
        BrokenPipeError
            If the stdout consumer has gone away.
        """
        try:
            sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_APPEND_NEWLINE))
            sys.stdout.buffer.flush()
        except BrokenPipeError:
            logger.warning("stdout broken, consumer likely exited")
            raise


class DashboardFileSink:
    """Maintain the dashboard document at *path*.

    Parameters
    ----------
    path:
        Location of the JSON document.  Parent directories are created.
    padding:
        Bounds padding ratio once at least two markers are placed.
    """

    def __init__(self, path: str | Path, padding: float = BOUNDS_PADDING) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._padding = padding
        self._markers: dict[str, dict[str, Any]] = {}
        self._cards: dict[str, dict[str, Any]] = {}
        self._snapshots: dict[str, dict[str, Any]] = {}
        self._log: list[str] = []

    @property
    def path(self) -> Path:
        return self._path

    def place_or_move_marker(
        self, device_id: str, lat: float, lon: float, popup: dict[str, Any]
    ) -> None:
        key = device_id.lower()
        if key not in self._markers:
            logger.info("Placing marker for %s at %.6f, %.6f", device_id.upper(), lat, lon)
        self._markers[key] = {"lat": lat, "lon": lon, "popup": popup}
        self._write()

    def render_device_card(self, snapshot: DeviceSnapshot) -> None:
        key = snapshot.id.lower()
        self._cards[key] = card_payload(snapshot)
        self._snapshots[key] = asdict(snapshot)
        self._write()

    def render_log_list(self, entries: list[str]) -> None:
        self._log = list(reversed(entries))
        self._write()

    def close(self) -> None:
        """Nothing buffered; every call is already on disk."""

    # ── internal ────────────────────────────────────────────────────

    def _document(self) -> dict[str, Any]:
        bounds = None
        if len(self._markers) >= 2:
            bounds = fit_bounds(
                ((m["lat"], m["lon"]) for m in self._markers.values()),
                self._padding,
            )
        return {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "markers": self._markers,
            "cards": self._cards,
            "devices": self._snapshots,
            "log": self._log,
            "log_empty": not self._log,
            "bounds": bounds,
        }

    def _write(self) -> None:
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        with open(tmp_path, "wb") as fh:
            fh.write(orjson.dumps(self._document(), option=orjson.OPT_INDENT_2))
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, self._path)
