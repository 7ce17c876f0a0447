"""In-memory registry of the latest known snapshot per device.

Devices are indexed by lower-cased id and displayed upper-cased.  Merging is
a shallow overwrite: fields a reading does not carry keep their previous
values.  Coordinates are stored exactly as received; only
:meth:`DeviceRegistry.placement` substitutes the fallback coordinate.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from lora_dashboard.models import DeviceReading, DeviceSnapshot

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK = (12.9238, 77.4988)


class DeviceRegistry:
    """Latest snapshot per recognized device.

    Parameters
    ----------
    recognized_ids:
        Device ids the dashboard tracks (case-insensitive).
    fallback:
        ``(lat, lon)`` used for placement when a device's position is
        missing or invalid.
    clock:
        Returns the current local time; injectable for tests.
    """

    def __init__(
        self,
        recognized_ids: Iterable[str] = ("p1", "p2"),
        fallback: tuple[float, float] = DEFAULT_FALLBACK,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._fallback = fallback
        self._clock = clock or datetime.now
        self._snapshots: dict[str, DeviceSnapshot] = {
            device_id.lower(): DeviceSnapshot(id=device_id.upper())
            for device_id in recognized_ids
        }

    def is_recognized(self, device_id: Any) -> bool:
        return isinstance(device_id, str) and device_id.lower() in self._snapshots

    def get(self, device_id: str) -> DeviceSnapshot:
        """Return the current snapshot for *device_id* (any case)."""
        return self._snapshots[device_id.lower()]

    def snapshots(self) -> list[DeviceSnapshot]:
        """All snapshots, in registration order."""
        return list(self._snapshots.values())

    def merge(self, reading: DeviceReading) -> DeviceSnapshot:
        """Overlay *reading* onto the stored snapshot and return the result.

        Raises
        ------
        KeyError
            If the reading's device is not recognized.
        """
        key = reading.key
        if key not in self._snapshots:
            raise KeyError(reading.device_id)

        merged = dataclasses.replace(
            self._snapshots[key],
            **reading.values,
            id=key.upper(),
            last_updated=self._clock().isoformat(timespec="seconds"),
        )
        self._snapshots[key] = merged
        logger.debug("Merged %s: %s", merged.id, sorted(reading.values))
        return merged

    def placement(self, device_id: str) -> tuple[float, float]:
        """Map position for *device_id*, falling back when invalid."""
        snapshot = self.get(device_id)
        coords = valid_coordinates(snapshot.latitude, snapshot.longitude)
        if coords is None:
            return self._fallback
        return coords


def valid_coordinates(latitude: Any, longitude: Any) -> Optional[tuple[float, float]]:
    """Return ``(lat, lon)`` as floats, or ``None`` if the pair is unusable.

    A pair is unusable when either value is not a finite number (numeric
    strings are accepted) or either is exactly zero.
    """
    lat = _to_float(latitude)
    lon = _to_float(longitude)
    if lat is None or lon is None or lat == 0 or lon == 0:
        return None
    return lat, lon


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None
