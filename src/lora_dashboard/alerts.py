"""Edge-triggered alert logging.

Each recognized device is either ``CLEAR`` or ``ALERTING``::

    CLEAR    → (alert == 1) → ALERTING   log "ALERT detected"
    ALERTING → (alert != 1) → CLEAR      log "Alert CLEARED"

Repeated observations of the current state are no-ops, so a sustained
alert is logged exactly once.  The set of alerting devices lives in memory
and, unless a ``state_store`` is supplied, starts empty on every restart.
"""

from __future__ import annotations

import enum
import logging
from typing import Iterable, Optional

from lora_dashboard.decoder import ALERT_REQUIRED, decode_reading, iter_lines
from lora_dashboard.models import DeviceReading, MalformedReading
from lora_dashboard.store import AlertLogStore, JsonFileStore, StoreCorruptError

logger = logging.getLogger(__name__)

DEFAULT_STATE_KEY = "lora_alert_state"


class AlertState(enum.Enum):
    """Per-device alert state."""

    CLEAR = "CLEAR"
    ALERTING = "ALERTING"


class AlertEdgeDetector:
    """Tracks alert state per device and logs only on transitions.

    Parameters
    ----------
    log_store:
        Destination for onset/clearance entries.
    recognized_ids:
        Devices considered by the sweep; readings for any other id are
        ignored.
    state_store:
        When given, the alerting set is persisted under ``state_key`` and
        restored at construction, so a restart during a sustained alert
        does not log a second onset.
    """

    def __init__(
        self,
        log_store: AlertLogStore,
        recognized_ids: Iterable[str] = ("p1", "p2"),
        state_store: Optional[JsonFileStore] = None,
        state_key: str = DEFAULT_STATE_KEY,
    ) -> None:
        self._log = log_store
        self._recognized = frozenset(device_id.lower() for device_id in recognized_ids)
        self._state_store = state_store
        self._state_key = state_key
        self._alerting: set[str] = self._restore()

    @property
    def alerting(self) -> frozenset[str]:
        """Lower-cased ids of devices currently in ``ALERTING``."""
        return frozenset(self._alerting)

    def state(self, device_id: str) -> AlertState:
        if device_id.lower() in self._alerting:
            return AlertState.ALERTING
        return AlertState.CLEAR

    def sweep(self, raw: str) -> list[str]:
        """Evaluate every line of a bulk payload in order.

        Malformed lines are skipped without affecting the rest of the
        batch.

        Returns
        -------
        list[str]
            Messages that were actually appended to the log.
        """
        appended: list[str] = []
        skipped = 0
        for line in iter_lines(raw):
            result = decode_reading(line, require=ALERT_REQUIRED)
            if isinstance(result, MalformedReading):
                skipped += 1
                logger.debug("Skipping bulk line (%s): %s", result.code, result.message)
                continue
            message = self.observe(result)
            if message is not None:
                appended.append(message)

        if skipped:
            logger.debug("Sweep skipped %d malformed line(s)", skipped)
        return appended

    def observe(self, reading: DeviceReading) -> Optional[str]:
        """Apply one reading; return the appended message on a logged edge.

        The log entry is written before the state changes, so a failed
        write leaves the device in its previous state and the edge is
        retried on the next sweep.
        """
        key = reading.key
        if key not in self._recognized:
            return None

        values = reading.values
        onset = reading.alert_flag == 1
        if onset == (key in self._alerting):
            return None

        if onset:
            message = (
                f"{key.upper()} ALERT detected - "
                f"Temp: {values.get('temperature')}°C, "
                f"Pressure: {values.get('pressure')}hPa, "
                f"Battery: {values.get('battery')}%"
            )
        else:
            message = f"{key.upper()} Alert CLEARED"

        appended = self._log.append(key, message)

        if onset:
            self._alerting.add(key)
        else:
            self._alerting.discard(key)
        self._persist()

        return message if appended else None

    # ── persistence ─────────────────────────────────────────────────

    def _restore(self) -> set[str]:
        if self._state_store is None:
            return set()
        try:
            value = self._state_store.get(self._state_key)
        except StoreCorruptError as exc:
            logger.warning("Alert state unreadable, starting clear: %s", exc)
            return set()
        if not isinstance(value, list):
            return set()
        restored = {v.lower() for v in value if isinstance(v, str)} & self._recognized
        if restored:
            logger.info("Restored alerting devices: %s", sorted(restored))
        return restored

    def _persist(self) -> None:
        if self._state_store is not None:
            self._state_store.set(self._state_key, sorted(self._alerting))
