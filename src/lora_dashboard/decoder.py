"""Decode raw device payloads into readings or malformed records.

Decoding pipeline::

    raw string
      │
      ├─ JSON parse failure        → MalformedReading(code="parse_error")
      ├─ not an object / bad types → MalformedReading(code="schema_mismatch")
      ├─ required field missing    → MalformedReading(code="missing_fields")
      └─ valid                     → DeviceReading
"""

from __future__ import annotations

from typing import Iterator, Union

import jsonschema
from jsonschema.exceptions import best_match
import orjson

from lora_dashboard.models import READING_FIELDS, DeviceReading, MalformedReading

# Maximum bytes of raw payload preserved in malformed records.
MAX_RAW_PAYLOAD_BYTES = 4096

_METRIC = {"type": ["number", "string", "boolean", "null"]}

READING_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "minLength": 1},
        **{name: _METRIC for name in READING_FIELDS},
    },
}

# Fields a payload must carry to be usable on the latest-reading path.
LATEST_REQUIRED = ("id",)

# Fields a bulk line must carry to be evaluated for alerts.
ALERT_REQUIRED = ("id", "alert", "temperature", "pressure", "battery")

_VALIDATOR = jsonschema.Draft7Validator(READING_SCHEMA)


def decode_reading(
    raw: str | bytes,
    require: tuple[str, ...] = LATEST_REQUIRED,
) -> Union[DeviceReading, MalformedReading]:
    """Decode a single JSON payload.

    Parameters
    ----------
    raw:
        One JSON object, as text or bytes.
    require:
        Field names that must be present for the reading to be accepted.

    Returns
    -------
    DeviceReading
        When the payload is a well-formed device object.
    MalformedReading
        When the payload cannot be parsed or fails validation.
    """
    try:
        obj = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        return _malformed("parse_error", str(exc), raw)

    error = best_match(_VALIDATOR.iter_errors(obj))
    if error is not None:
        return _malformed("schema_mismatch", error.message, raw)

    missing = [name for name in require if name not in obj]
    if missing:
        return _malformed(
            "missing_fields",
            f"Reading missing required field(s): {', '.join(missing)}",
            raw,
        )

    return DeviceReading(
        device_id=obj.get("id", ""),
        values={name: obj[name] for name in READING_FIELDS if name in obj},
    )


def iter_lines(raw: str) -> Iterator[str]:
    """Yield the non-blank lines of a newline-delimited payload."""
    for line in raw.splitlines():
        line = line.strip()
        if line:
            yield line


# ── helpers ─────────────────────────────────────────────────────────


def _malformed(code: str, message: str, raw: str | bytes) -> MalformedReading:
    """Build a :class:`MalformedReading` with truncation handling."""
    raw_str = raw if isinstance(raw, str) else raw.decode("utf-8", errors="replace")
    truncated = len(raw_str.encode("utf-8")) > MAX_RAW_PAYLOAD_BYTES
    if truncated:
        raw_str = raw_str[:MAX_RAW_PAYLOAD_BYTES]

    return MalformedReading(
        code=code,
        message=message,
        raw_payload=raw_str,
        raw_payload_truncated=truncated,
    )
