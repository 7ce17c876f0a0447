"""The dashboard session: all state owned by one running dashboard.

Control flow per poll::

    latest payload → ChangeDetector → decode → DeviceRegistry.merge → sink
    bulk payload   → AlertEdgeDetector.sweep → AlertLogStore → sink

The session is created at startup and passed to the scheduler; nothing is
module-global.
"""

from __future__ import annotations

import logging
from typing import Optional

from lora_dashboard.alerts import AlertEdgeDetector
from lora_dashboard.change import ChangeDetector
from lora_dashboard.decoder import LATEST_REQUIRED, decode_reading
from lora_dashboard.models import MalformedReading
from lora_dashboard.output import PresentationSink, popup_payload
from lora_dashboard.registry import DeviceRegistry
from lora_dashboard.store import AlertLogStore

logger = logging.getLogger(__name__)


class DashboardSession:
    """Reconciles polled payloads into device state, alerts and display calls."""

    def __init__(
        self,
        registry: DeviceRegistry,
        log_store: AlertLogStore,
        detector: AlertEdgeDetector,
        sink: PresentationSink,
        change_detector: Optional[ChangeDetector] = None,
    ) -> None:
        self.registry = registry
        self.log_store = log_store
        self.detector = detector
        self.sink = sink
        self.change_detector = change_detector or ChangeDetector()

    def start(self) -> None:
        """Render the persisted log and a placeholder card per device."""
        self.sink.render_log_list(self.log_store.load())
        for snapshot in self.registry.snapshots():
            self.sink.render_device_card(snapshot)

    def ingest_latest(self, raw: str) -> bool:
        """Handle one latest-reading payload.

        Returns ``True`` when a device was merged and redrawn; ``False``
        for unchanged, malformed or unrecognized payloads.
        """
        if not self.change_detector.has_changed(raw):
            return False

        result = decode_reading(raw, require=LATEST_REQUIRED)
        if isinstance(result, MalformedReading):
            logger.debug("Ignoring latest payload (%s): %s", result.code, result.message)
            return False
        if not self.registry.is_recognized(result.device_id):
            logger.debug("Ignoring latest payload for unknown device %r", result.device_id)
            return False

        snapshot = self.registry.merge(result)
        lat, lon = self.registry.placement(result.key)
        self.sink.place_or_move_marker(result.key, lat, lon, popup_payload(snapshot, lat, lon))
        self.sink.render_device_card(snapshot)
        return True

    def ingest_bulk(self, raw: str) -> list[str]:
        """Sweep a bulk payload for alert edges; redraw the log if it changed."""
        appended = self.detector.sweep(raw)
        if appended:
            self.sink.render_log_list(self.log_store.load())
        return appended

    def clear_log(self) -> None:
        """Delete the persisted log and redraw it empty."""
        self.log_store.clear()
        self.sink.render_log_list([])
