# License Core - Pydantic Models
import base64
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from .errors import LicenseError

FEATURE_COUNT = 8


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SignatureEnvelope(BaseModel):
    """The (payload, signature) pair handed over by the transport layer."""
    model_config = ConfigDict(frozen=True, strict=True)

    payload: bytes
    signature: bytes

    @classmethod
    def from_transport(cls, license_key: str, signature: str) -> "SignatureEnvelope":
        """Build from the two base64 strings of an activation response.

        The payload is kept exactly as received since the signature covers
        those bytes. Raises ValueError when the signature is not valid base64.
        """
        return cls(
            payload=license_key.encode("ascii"),
            signature=base64.b64decode(signature, validate=True),
        )


class ActivatedMachine(BaseModel):
    model_config = ConfigDict(frozen=True, strict=True)

    id: int
    ip: str
    time: datetime
    machine_code: str

    @field_validator("machine_code")
    @classmethod
    def machine_code_not_empty(cls, v):
        if not v:
            raise ValueError("machine code must not be empty")
        return v

    @field_validator("time")
    @classmethod
    def time_in_utc(cls, v):
        return as_utc(v)


class LicenseRecord(BaseModel):
    """Verified license fields. Read-only once built."""
    model_config = ConfigDict(frozen=True, strict=True)

    id: int
    key: str
    product_id: Optional[int] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    period_days: Optional[int] = None
    feature_flags: Tuple[bool, ...]
    notes: Optional[str] = None
    block: bool
    global_id: Optional[int] = None
    trial_activation: Optional[bool] = None
    activated_machines: Tuple[ActivatedMachine, ...] = ()
    max_no_of_machines: Optional[int] = None
    allowed_machines: Optional[Tuple[str, ...]] = None
    sign_date: Optional[datetime] = None
    extension_fields: Tuple[Tuple[str, str], ...] = ()

    @field_validator("created_at", "expires_at", "sign_date")
    @classmethod
    def timestamps_in_utc(cls, v):
        if v is None:
            return v
        return as_utc(v)

    @field_validator("feature_flags")
    @classmethod
    def fixed_feature_count(cls, v):
        if len(v) != FEATURE_COUNT:
            raise ValueError(f"expected {FEATURE_COUNT} feature flags, got {len(v)}")
        return v

    @model_validator(mode="after")
    def unique_extension_names(self):
        names = [name for name, _ in self.extension_fields]
        if len(names) != len(set(names)):
            raise ValueError("extension field names must be unique")
        return self

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def extensions(self) -> Mapping[str, str]:
        return MappingProxyType(dict(self.extension_fields))

    @property
    def machine_codes(self) -> Tuple[str, ...]:
        return tuple(m.machine_code for m in self.activated_machines)

    def has_feature(self, n: int) -> bool:
        """Feature flags are numbered 1..FEATURE_COUNT, like f1..f8 on the wire."""
        if not 1 <= n <= FEATURE_COUNT:
            raise ValueError(f"feature number must be in 1..{FEATURE_COUNT}, got {n}")
        return self.feature_flags[n - 1]

    def expiry(self) -> Optional[datetime]:
        """Effective expiry, or None when the key never expires.

        A period too large for a datetime clamps to the far end of the
        calendar: the latest instant for a positive period, the earliest
        for a negative one.
        """
        if self.expires_at is not None:
            return self.expires_at
        if self.period_days is not None and self.created_at is not None:
            try:
                return self.created_at + timedelta(days=self.period_days)
            except OverflowError:
                bound = datetime.max if self.period_days > 0 else datetime.min
                return bound.replace(tzinfo=timezone.utc)
        return None

    def narrow(self, *fields: str) -> Dict[str, Any]:
        """Plain dict holding only the requested fields."""
        unknown = [f for f in fields if f not in type(self).model_fields]
        if unknown:
            raise ValueError(f"unknown license fields: {', '.join(unknown)}")
        return self.model_dump(include=set(fields))


class ValidationResult(BaseModel):
    """Outcome of validate_license: either a record or an error, never both."""
    model_config = ConfigDict(frozen=True)

    record: Optional[LicenseRecord] = None
    error: Optional[LicenseError] = None

    @model_validator(mode="after")
    def exactly_one_outcome(self):
        if (self.record is None) == (self.error is None):
            raise ValueError("result must carry either a record or an error")
        return self

    @property
    def valid(self) -> bool:
        return self.error is None

    def view(self, *fields: str) -> Dict[str, Any]:
        if self.record is None:
            raise ValueError("no record available on a failed validation")
        return self.record.narrow(*fields)
