"""Dataclass models for device readings and dashboard state.

All models are designed to be serializable via ``dataclasses.asdict()``
followed by ``orjson.dumps()``.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

PLACEHOLDER = "--"

# Snapshot fields a reading may carry (``id`` is handled separately).
READING_FIELDS = (
    "temperature",
    "pressure",
    "altitude",
    "battery",
    "alert",
    "latitude",
    "longitude",
)


@dataclass
class DeviceSnapshot:
    """Latest known state of one device.

    Metric values are stored exactly as received (number or numeric
    string); units are a display concern.
    """

    id: str = ""
    temperature: Any = PLACEHOLDER
    pressure: Any = PLACEHOLDER
    altitude: Any = PLACEHOLDER
    battery: Any = PLACEHOLDER
    alert: Any = 0
    latitude: Any = None
    longitude: Any = None
    last_updated: Optional[str] = None


@dataclass
class DeviceReading:
    """A decoded, possibly partial, device payload.

    ``values`` only contains the snapshot fields present in the payload, so
    merging it never clobbers fields the device did not send.
    """

    device_id: str = ""
    values: dict = field(default_factory=dict)

    @property
    def key(self) -> str:
        """Registry key: the lower-cased device id."""
        return self.device_id.lower()

    @property
    def alert_flag(self) -> int:
        """Integer value of ``alert``; anything unparseable reads as 0."""
        return parse_flag(self.values.get("alert"))


@dataclass
class MalformedReading:
    """A payload that failed to decode into a :class:`DeviceReading`."""

    code: str = ""
    message: str = ""
    raw_payload: str = ""
    raw_payload_truncated: bool = False


def parse_flag(value: Any) -> int:
    """Integer-parse an alert flag: ``1``, ``"1"``, ``1.0`` and ``"1.7"`` give 1."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        try:
            return int(value)
        except (OverflowError, ValueError):
            return 0
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except (OverflowError, ValueError):
            return 0
    return 0
