# License Core - Payload Codec
"""
Wire format of a license payload.

The payload travels as standard base64 (strict alphabet, padding required)
of UTF-8 text. The text is a list of fields:

    payload = field *( ";" field )
    field   = name "=" value            (split on the first "=")
    name    = [A-Za-z_][A-Za-z0-9_]*

A backslash escapes exactly one of  \\ ; , |  and nothing else. "=" is never
escaped. On encode, scalar values escape "\\" and ";", list items also
escape ",", and the parts of an activated machine entry also escape "|".

    allowed_machines   = code *( "," code )          (empty value = no codes)
    activated_machines = entry *( "," entry )        (empty value = no machines)
    entry              = id "|" ip "|" time "|" machine_code

Integers are -?[0-9]+ with at most MAX_INT_DIGITS digits, timestamps are
integer epoch seconds (UTC) and booleans are exactly "true" or "false".
Unknown names are kept, raw and in order, as extension fields.
"""
import base64
import binascii
import logging
import re
from datetime import datetime, timezone
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple, Union

from pydantic import ValidationError

from .errors import DecodeError
from .models import FEATURE_COUNT, ActivatedMachine, LicenseRecord

logger = logging.getLogger(__name__)

MAX_FIELD_LENGTH = 4096
# Longest integer field value, sign excluded
MAX_INT_DIGITS = 64

ESCAPE = "\\"
FIELD_SEP = ";"
ITEM_SEP = ","
PART_SEP = "|"
RESERVED = ESCAPE + FIELD_SEP + ITEM_SEP + PART_SEP

_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")
_INT_RE = re.compile(r"-?[0-9]+\Z")

_TRUE = "true"
_FALSE = "false"

# ============================================================================
# Escaping
# ============================================================================

def escape(value: str, specials: str = FIELD_SEP) -> str:
    """Escape the backslash and every character of `specials`."""
    reserved = ESCAPE + specials
    return "".join(ESCAPE + c if c in reserved else c for c in value)


def unescape(raw: str, field: Optional[str] = None) -> str:
    out = []
    chars = iter(raw)
    for c in chars:
        if c == ESCAPE:
            nxt = next(chars, None)
            if nxt is None:
                raise DecodeError("dangling escape character", field)
            if nxt not in RESERVED:
                raise DecodeError(f"invalid escape sequence '\\{nxt}'", field)
            out.append(nxt)
        else:
            out.append(c)
    return "".join(out)


def split_escaped(text: str, sep: str, field: Optional[str] = None) -> List[str]:
    """Split on unescaped `sep`, leaving escape pairs in place for unescape()."""
    parts = []
    current = []
    i = 0
    while i < len(text):
        c = text[i]
        if c == ESCAPE:
            if i + 1 >= len(text):
                raise DecodeError("dangling escape character", field)
            current.append(text[i:i + 2])
            i += 2
            continue
        if c == sep:
            parts.append("".join(current))
            current = []
        else:
            current.append(c)
        i += 1
    parts.append("".join(current))
    return parts


def split_fields(text: str, max_field_length: int = MAX_FIELD_LENGTH) -> List[Tuple[str, str]]:
    """Split decoded payload text into ordered (name, raw value) pairs."""
    if not text:
        raise DecodeError("empty payload")

    fields = []
    seen = set()
    for segment in split_escaped(text, FIELD_SEP):
        if "=" not in segment:
            raise DecodeError(f"field without '=': {segment[:32]!r}")
        name, raw = segment.split("=", 1)
        if not _NAME_RE.match(name):
            raise DecodeError(f"invalid field name {name[:32]!r}")
        if name in seen:
            raise DecodeError("duplicate field", name)
        if len(raw) > max_field_length:
            raise DecodeError(f"value longer than {max_field_length} characters", name)
        seen.add(name)
        fields.append((name, raw))
    return fields

# ============================================================================
# Value parsers / renderers
# ============================================================================

def _parse_int(raw: str, field: str) -> int:
    value = unescape(raw, field)
    if not _INT_RE.match(value):
        raise DecodeError(f"not an integer: {value[:32]!r}", field)
    if len(value.lstrip("-")) > MAX_INT_DIGITS:
        raise DecodeError(f"integer too large ({len(value)} digits)", field)
    return int(value)


def _parse_text(raw: str, field: str) -> str:
    return unescape(raw, field)


def _parse_bool(raw: str, field: str) -> bool:
    value = unescape(raw, field)
    if value == _TRUE:
        return True
    if value == _FALSE:
        return False
    raise DecodeError(f"not a boolean: {value[:32]!r}", field)


def _parse_timestamp(raw: str, field: str) -> datetime:
    seconds = _parse_int(raw, field)
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        raise DecodeError(f"timestamp out of range: {seconds}", field)


def _parse_codes(raw: str, field: str) -> Tuple[str, ...]:
    if raw == "":
        return ()
    codes = []
    for item in split_escaped(raw, ITEM_SEP, field):
        code = unescape(item, field)
        if not code:
            raise DecodeError("empty machine code", field)
        codes.append(code)
    return tuple(codes)


def _parse_machines(raw: str, field: str) -> Tuple[ActivatedMachine, ...]:
    if raw == "":
        return ()
    machines = []
    for entry in split_escaped(raw, ITEM_SEP, field):
        parts = split_escaped(entry, PART_SEP, field)
        if len(parts) != 4:
            raise DecodeError(f"machine entry needs 4 parts, got {len(parts)}", field)
        machine_code = unescape(parts[3], field)
        if not machine_code:
            raise DecodeError("empty machine code", field)
        machines.append(ActivatedMachine(
            id=_parse_int(parts[0], field),
            ip=unescape(parts[1], field),
            time=_parse_timestamp(parts[2], field),
            machine_code=machine_code,
        ))
    return tuple(machines)


def _render_int(value: int) -> str:
    return str(value)


def _render_text(value: str) -> str:
    return escape(value, FIELD_SEP)


def _render_bool(value: bool) -> str:
    return _TRUE if value else _FALSE


def _render_timestamp(value: datetime) -> str:
    return str(int(value.timestamp()))


def _render_codes(codes: Tuple[str, ...]) -> str:
    return ITEM_SEP.join(escape(code, FIELD_SEP + ITEM_SEP) for code in codes)


def _render_machines(machines: Tuple[ActivatedMachine, ...]) -> str:
    specials = FIELD_SEP + ITEM_SEP + PART_SEP
    return ITEM_SEP.join(
        PART_SEP.join((
            str(m.id),
            escape(m.ip, specials),
            _render_timestamp(m.time),
            escape(m.machine_code, specials),
        ))
        for m in machines
    )

# ============================================================================
# Field table (canonical order)
# ============================================================================

class FieldSpec(NamedTuple):
    name: str
    slot: str
    parse: Callable[[str, str], object]
    render: Callable[[object], str]
    required: bool = False


_FEATURE_NAMES = tuple(f"f{n}" for n in range(1, FEATURE_COUNT + 1))

FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("id", "id", _parse_int, _render_int, required=True),
    FieldSpec("key", "key", _parse_text, _render_text, required=True),
    FieldSpec("product_id", "product_id", _parse_int, _render_int),
    FieldSpec("created", "created_at", _parse_timestamp, _render_timestamp),
    FieldSpec("expires", "expires_at", _parse_timestamp, _render_timestamp),
    FieldSpec("period", "period_days", _parse_int, _render_int),
) + tuple(
    FieldSpec(name, name, _parse_bool, _render_bool, required=True)
    for name in _FEATURE_NAMES
) + (
    FieldSpec("notes", "notes", _parse_text, _render_text),
    FieldSpec("block", "block", _parse_bool, _render_bool, required=True),
    FieldSpec("global_id", "global_id", _parse_int, _render_int),
    FieldSpec("trial_activation", "trial_activation", _parse_bool, _render_bool),
    FieldSpec("activated_machines", "activated_machines", _parse_machines, _render_machines),
    FieldSpec("max_no_of_machines", "max_no_of_machines", _parse_int, _render_int),
    FieldSpec("allowed_machines", "allowed_machines", _parse_codes, _render_codes),
    FieldSpec("sign_date", "sign_date", _parse_timestamp, _render_timestamp),
)

KNOWN_FIELDS: Dict[str, FieldSpec] = {spec.name: spec for spec in FIELDS}

# ============================================================================
# Decode / encode
# ============================================================================

def decode_text(payload: Union[bytes, str]) -> str:
    """Strict base64 + UTF-8 decoding of the wire payload."""
    if isinstance(payload, str):
        try:
            payload = payload.encode("ascii")
        except UnicodeEncodeError:
            raise DecodeError("payload is not base64 text")
    if not payload:
        raise DecodeError("empty payload")
    try:
        data = base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise DecodeError(f"invalid base64: {e}")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        raise DecodeError("payload is not valid UTF-8")


def record_from_fields(fields: List[Tuple[str, str]]) -> LicenseRecord:
    values: Dict[str, object] = {}
    extensions = []
    for name, raw in fields:
        spec = KNOWN_FIELDS.get(name)
        if spec is None:
            unescape(raw, name)  # validates escapes; the value stays raw
            extensions.append((name, raw))
            continue
        values[spec.slot] = spec.parse(raw, name)

    for spec in FIELDS:
        if spec.required and spec.slot not in values:
            raise DecodeError("required field missing", spec.name)

    values["feature_flags"] = tuple(values.pop(name) for name in _FEATURE_NAMES)
    values["extension_fields"] = tuple(extensions)
    try:
        return LicenseRecord(**values)
    except ValidationError as e:
        raise DecodeError(f"invalid license record: {e.errors()[0]['msg']}")


def decode_payload(payload: Union[bytes, str], max_field_length: int = MAX_FIELD_LENGTH) -> LicenseRecord:
    """Decode an authenticated payload into a LicenseRecord.

    Only call this on bytes whose signature has already been checked.
    Raises DecodeError; never returns a partially populated record.
    """
    fields = split_fields(decode_text(payload), max_field_length)
    record = record_from_fields(fields)
    logger.debug("Decoded license %s (%d fields, %d extensions)",
                 record.key, len(fields), len(record.extension_fields))
    return record


def encode_fields(record: LicenseRecord) -> str:
    """Render a record as field-list text in canonical order."""
    segments = []
    for spec in FIELDS:
        if spec.name in _FEATURE_NAMES:
            value = record.has_feature(int(spec.name[1:]))
        else:
            value = getattr(record, spec.slot)
        if value is None:
            continue
        segments.append(f"{spec.name}={spec.render(value)}")

    for name, raw in record.extension_fields:
        if name in KNOWN_FIELDS or not _NAME_RE.match(name):
            raise ValueError(f"invalid extension field name {name!r}")
        # raw values are stored still escaped; re-validate before writing them back
        unescape(raw, name)
        if len(split_escaped(raw, FIELD_SEP, name)) != 1:
            raise ValueError(f"extension field {name!r} contains an unescaped ';'")
        segments.append(f"{name}={raw}")
    return FIELD_SEP.join(segments)


def encode_payload(record: LicenseRecord) -> bytes:
    """Inverse of decode_payload for canonically ordered payloads."""
    return base64.b64encode(encode_fields(record).encode("utf-8"))
