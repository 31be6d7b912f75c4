"""Durable observation record codec.

Records use the protobuf wire format (varints and length-delimited fields)
so that readers stay compatible across versions: fields are identified by
number and unknown fields are skipped on decode.

ObservationRecord
    1  elapsed_ms       varint
    2  report           Report
    3  observation id   string
    4  created_at       varint, unix milliseconds

Report
    1  target           TargetReference
    2  state            varint, PulseState wire number
    3  message          string
    4  error            string, optional

TargetReference
    1  group            string
    2  name             string
    3  location         string
    4  kind             varint, CheckKind index
    5  timeout          varint, milliseconds
    6  degradation      varint, milliseconds, optional
    7  enabled          varint, bool
    8  ignore_tls       varint, bool
    9  id               string
    10 comparison       string, optional
    11 headers          string, "k:v;k:v" (read only, older records)
    12 header           HeaderEntry, repeated

HeaderEntry
    1  key              string
    2  value            string
"""

from __future__ import annotations

from collections.abc import Iterator

from pydantic import BaseModel, ConfigDict, ValidationError

from pulsewatch.core.types import CheckKind, Observation, PulseState, TargetConfiguration
from pulsewatch.pipeline.exceptions import RecordDecodeError

_VARINT = 0
_FIXED64 = 1
_LENGTH_DELIMITED = 2
_FIXED32 = 5

_KIND_ORDER: list[CheckKind] = [
    CheckKind.HEALTH_API,
    CheckKind.STATUS_CODE,
    CheckKind.JSON,
    CheckKind.CONTAINS,
    CheckKind.HEALTH_CHECK,
    CheckKind.STATUS_API,
]


class ObservationRecord(BaseModel):
    """An observation together with the target configuration it was taken with."""

    model_config = ConfigDict(frozen=True)

    observation: Observation
    target: TargetConfiguration


# ── Wire primitives ─────────────────────────────────────────────


def _write_varint(out: bytearray, value: int) -> None:
    if value < 0:
        raise ValueError(f"Negative varint: {value}")
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise RecordDecodeError("Truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7
        if shift >= 64:
            raise RecordDecodeError("Varint too long")


def _write_tag(out: bytearray, field: int, wire_type: int) -> None:
    _write_varint(out, (field << 3) | wire_type)


def _write_uint(out: bytearray, field: int, value: int) -> None:
    _write_tag(out, field, _VARINT)
    _write_varint(out, value)


def _write_bytes(out: bytearray, field: int, value: bytes) -> None:
    _write_tag(out, field, _LENGTH_DELIMITED)
    _write_varint(out, len(value))
    out += value


def _write_str(out: bytearray, field: int, value: str) -> None:
    _write_bytes(out, field, value.encode("utf-8"))


def _iter_fields(data: bytes) -> Iterator[tuple[int, int, int | bytes]]:
    """Yield ``(field, wire_type, value)``; fixed-width fields come back as raw bytes."""
    pos = 0
    while pos < len(data):
        key, pos = _read_varint(data, pos)
        field, wire_type = key >> 3, key & 0x07
        if field == 0:
            raise RecordDecodeError("Invalid field number 0")
        if wire_type == _VARINT:
            value, pos = _read_varint(data, pos)
            yield field, wire_type, value
        elif wire_type == _LENGTH_DELIMITED:
            length, pos = _read_varint(data, pos)
            end = pos + length
            if end > len(data):
                raise RecordDecodeError(f"Field {field} overruns the buffer")
            yield field, wire_type, bytes(data[pos:end])
            pos = end
        elif wire_type in (_FIXED64, _FIXED32):
            width = 8 if wire_type == _FIXED64 else 4
            if pos + width > len(data):
                raise RecordDecodeError(f"Field {field} overruns the buffer")
            yield field, wire_type, bytes(data[pos:pos + width])
            pos += width
        else:
            raise RecordDecodeError(f"Unsupported wire type {wire_type}")


def _expect(field: int, wire_type: int, expected: int) -> None:
    if wire_type != expected:
        raise RecordDecodeError(f"Field {field} has wire type {wire_type}, expected {expected}")


def _as_str(field: int, wire_type: int, value: int | bytes) -> str:
    _expect(field, wire_type, _LENGTH_DELIMITED)
    assert isinstance(value, bytes)
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise RecordDecodeError(f"Field {field} is not valid UTF-8") from exc


def _as_int(field: int, wire_type: int, value: int | bytes) -> int:
    _expect(field, wire_type, _VARINT)
    assert isinstance(value, int)
    return value


# ── Headers ─────────────────────────────────────────────────────


def _encode_header(key: str, value: str) -> bytes:
    out = bytearray()
    _write_str(out, 1, key)
    _write_str(out, 2, value)
    return bytes(out)


def _decode_header(data: bytes) -> tuple[str, str]:
    key: str | None = None
    value = ""
    for field, wire_type, raw in _iter_fields(data):
        if field == 1:
            key = _as_str(field, wire_type, raw)
        elif field == 2:
            value = _as_str(field, wire_type, raw)
    if key is None:
        raise RecordDecodeError("Header entry is missing its key")
    return key, value


def parse_legacy_headers(raw: str) -> dict[str, str]:
    """Parse the ``k:v;k:v`` header string written by older records."""
    headers: dict[str, str] = {}
    for pair in raw.split(";"):
        if not pair:
            continue
        key, sep, value = pair.partition(":")
        if not sep:
            raise RecordDecodeError(f"Malformed header entry: {pair!r}")
        headers[key] = value
    return headers


# ── Messages ────────────────────────────────────────────────────


def _to_ms(seconds: float) -> int:
    return int(round(seconds * 1000))


def _encode_target(target: TargetConfiguration) -> bytes:
    out = bytearray()
    _write_str(out, 1, target.group)
    _write_str(out, 2, target.name)
    _write_str(out, 3, target.location)
    _write_uint(out, 4, _KIND_ORDER.index(target.kind))
    _write_uint(out, 5, _to_ms(target.timeout))
    if target.degradation_timeout is not None:
        _write_uint(out, 6, _to_ms(target.degradation_timeout))
    _write_uint(out, 7, int(target.enabled))
    _write_uint(out, 8, int(target.ignore_tls_errors))
    _write_str(out, 9, target.id)
    if target.comparison_value is not None:
        _write_str(out, 10, target.comparison_value)
    for key, value in target.headers.items():
        _write_bytes(out, 12, _encode_header(key, value))
    return bytes(out)


def _decode_target(data: bytes) -> TargetConfiguration:
    values: dict[str, object] = {}
    headers: dict[str, str] = {}
    for field, wire_type, value in _iter_fields(data):
        if field == 1:
            values["group"] = _as_str(field, wire_type, value)
        elif field == 2:
            values["name"] = _as_str(field, wire_type, value)
        elif field == 3:
            values["location"] = _as_str(field, wire_type, value)
        elif field == 4:
            index = _as_int(field, wire_type, value)
            if index >= len(_KIND_ORDER):
                raise RecordDecodeError(f"Unknown check kind index {index}")
            values["kind"] = _KIND_ORDER[index]
        elif field == 5:
            values["timeout"] = _as_int(field, wire_type, value) / 1000
        elif field == 6:
            values["degradation_timeout"] = _as_int(field, wire_type, value) / 1000
        elif field == 7:
            values["enabled"] = bool(_as_int(field, wire_type, value))
        elif field == 8:
            values["ignore_tls_errors"] = bool(_as_int(field, wire_type, value))
        elif field == 9:
            values["id"] = _as_str(field, wire_type, value)
        elif field == 10:
            values["comparison_value"] = _as_str(field, wire_type, value)
        elif field == 11:
            headers.update(parse_legacy_headers(_as_str(field, wire_type, value)))
        elif field == 12:
            _expect(field, wire_type, _LENGTH_DELIMITED)
            assert isinstance(value, bytes)
            key, header_value = _decode_header(value)
            headers[key] = header_value
    values["headers"] = headers
    try:
        return TargetConfiguration.model_validate(values)
    except ValidationError as exc:
        raise RecordDecodeError(f"Invalid target reference: {exc}") from exc


def encode_record(record: ObservationRecord) -> bytes:
    """Serialize *record* to its durable byte form."""
    obs = record.observation
    report = bytearray()
    _write_bytes(report, 1, _encode_target(record.target))
    _write_uint(report, 2, obs.state.wire_number)
    _write_str(report, 3, obs.message)
    if obs.error is not None:
        _write_str(report, 4, obs.error)

    out = bytearray()
    _write_uint(out, 1, obs.elapsed_ms)
    _write_bytes(out, 2, bytes(report))
    _write_str(out, 3, obs.id)
    _write_uint(out, 4, _to_ms(obs.created_at))
    return bytes(out)


def decode_record(data: bytes) -> ObservationRecord:
    """Parse a durable record. Unknown fields are ignored.

    Raises:
        RecordDecodeError: if the bytes are malformed or required fields are missing.
    """
    elapsed_ms = 0
    obs_id: str | None = None
    created_ms: int | None = None
    report: bytes | None = None
    for field, wire_type, value in _iter_fields(data):
        if field == 1:
            elapsed_ms = _as_int(field, wire_type, value)
        elif field == 2:
            _expect(field, wire_type, _LENGTH_DELIMITED)
            assert isinstance(value, bytes)
            report = value
        elif field == 3:
            obs_id = _as_str(field, wire_type, value)
        elif field == 4:
            created_ms = _as_int(field, wire_type, value)

    if report is None or obs_id is None or created_ms is None:
        raise RecordDecodeError("Record is missing required fields")

    target: TargetConfiguration | None = None
    state = PulseState.UNKNOWN
    message = ""
    error: str | None = None
    for field, wire_type, value in _iter_fields(report):
        if field == 1:
            _expect(field, wire_type, _LENGTH_DELIMITED)
            assert isinstance(value, bytes)
            target = _decode_target(value)
        elif field == 2:
            try:
                state = PulseState.from_wire_number(_as_int(field, wire_type, value))
            except ValueError as exc:
                raise RecordDecodeError(str(exc)) from exc
        elif field == 3:
            message = _as_str(field, wire_type, value)
        elif field == 4:
            error = _as_str(field, wire_type, value)

    if target is None:
        raise RecordDecodeError("Report is missing its target reference")

    observation = Observation(
        id=obs_id,
        target_id=target.id,
        elapsed_ms=elapsed_ms,
        state=state,
        message=message,
        error=error,
        created_at=created_ms / 1000,
    )
    return ObservationRecord(observation=observation, target=target)
