# License Core - Error Taxonomy
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ViolationReason(str, Enum):
    EXPIRED = "expired"
    NOT_EXPIRED = "not_expired"
    BLOCKED = "blocked"
    FEATURE_DISABLED = "feature_disabled"
    FEATURE_ENABLED = "feature_enabled"
    MACHINE_NOT_ALLOWED = "machine_not_allowed"
    MACHINE_LIMIT_EXCEEDED = "machine_limit_exceeded"


# ============================================================================
# Result errors (returned, never raised)
# ============================================================================

class VerificationFailed(BaseModel):
    """Signature did not match, or the envelope itself was malformed."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["verification_failed"] = "verification_failed"
    detail: str = "Signature verification failed"


class DecodeFailed(BaseModel):
    """Authenticated payload could not be turned into a record."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["decode_failed"] = "decode_failed"
    reason: str
    field: Optional[str] = None


class PolicyViolation(BaseModel):
    """A requested policy check rejected the record."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["policy_violation"] = "policy_violation"
    check_name: str
    reason: ViolationReason
    detail: str = ""
    feature: Optional[int] = None


LicenseError = Annotated[
    Union[VerificationFailed, DecodeFailed, PolicyViolation],
    Field(discriminator="kind"),
]


# ============================================================================
# Exceptions
# ============================================================================

class DecodeError(ValueError):
    """Raised by the codec; converted to DecodeFailed at the pipeline boundary."""

    def __init__(self, reason: str, field: Optional[str] = None):
        super().__init__(f"{field}: {reason}" if field else reason)
        self.reason = reason
        self.field = field

    def to_error(self) -> DecodeFailed:
        return DecodeFailed(reason=self.reason, field=self.field)


class LicenseRejected(Exception):
    """Raised by require_license; carries the discriminated error."""

    def __init__(self, error: Union[VerificationFailed, DecodeFailed, PolicyViolation]):
        super().__init__(describe(error))
        self.error = error

    @property
    def kind(self) -> str:
        return self.error.kind


def describe(error: Union[VerificationFailed, DecodeFailed, PolicyViolation]) -> str:
    """Human-readable one-liner for an error value."""
    if isinstance(error, VerificationFailed):
        return error.detail
    if isinstance(error, DecodeFailed):
        if error.field:
            return f"Invalid license payload ({error.field}): {error.reason}"
        return f"Invalid license payload: {error.reason}"
    return f"{error.check_name} failed: {error.detail or error.reason.value}"
