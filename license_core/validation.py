# License Core - Validation Pipeline
import logging
from typing import Iterable, Optional, Union

from .checks import Check, evaluate
from .codec import MAX_FIELD_LENGTH, decode_payload
from .errors import DecodeError, LicenseRejected, VerificationFailed
from .models import LicenseRecord, SignatureEnvelope, ValidationResult
from .verifier import SignatureVerifier, VerifyFunction, as_verifier

logger = logging.getLogger(__name__)

# Status names used in log lines
STATUS_VALID = "valid"
STATUS_BAD_SIGNATURE = "bad_signature"
STATUS_DECODE_FAILED = "decode_failed"


def _log_validation(key: Optional[str], status: str, message: str = ""):
    """Single audit line per validation attempt."""
    if status == STATUS_VALID:
        logger.info("✅ License %s: %s", key or "<unknown>", status)
    else:
        logger.warning("❌ License %s: %s %s", key or "<unknown>", status, message)


def validate_license(
    envelope: SignatureEnvelope,
    verifier: Union[SignatureVerifier, VerifyFunction],
    checks: Union[Check, Iterable[Check]] = (),
    max_field_length: Optional[int] = None,
) -> ValidationResult:
    """Verify, decode and check a license envelope.

    `checks` is a single check (e.g. a Policy) or an ordered list of them.
    Every stage fails closed: the first failure is returned as the result's
    error and nothing after it runs.
    """
    if hasattr(checks, "evaluate"):
        checks = (checks,)

    # 1. Signature over the payload exactly as delivered
    if not as_verifier(verifier).verify(envelope.payload, envelope.signature):
        _log_validation(None, STATUS_BAD_SIGNATURE)
        return ValidationResult(error=VerificationFailed())

    # 2. Decode the authenticated payload
    try:
        record = decode_payload(
            envelope.payload,
            max_field_length if max_field_length is not None else MAX_FIELD_LENGTH,
        )
    except DecodeError as e:
        _log_validation(None, STATUS_DECODE_FAILED, str(e))
        return ValidationResult(error=e.to_error())

    # 3. Policy checks, in the order given
    report = evaluate(record, checks)
    if not report.passed:
        violation = report.violation
        _log_validation(record.key, violation.reason.value, f"({violation.check_name})")
        return ValidationResult(error=violation)

    _log_validation(record.key, STATUS_VALID)
    return ValidationResult(record=record)


def validate_transport(
    license_key: str,
    signature: str,
    verifier: Union[SignatureVerifier, VerifyFunction],
    checks: Union[Check, Iterable[Check]] = (),
    max_field_length: Optional[int] = None,
) -> ValidationResult:
    """Same as validate_license, starting from the two base64 response strings."""
    try:
        envelope = SignatureEnvelope.from_transport(license_key, signature)
    except ValueError:
        _log_validation(None, STATUS_BAD_SIGNATURE, "malformed envelope")
        return ValidationResult(error=VerificationFailed(detail="Malformed signature envelope"))
    return validate_license(envelope, verifier, checks, max_field_length)


def require_license(
    envelope: SignatureEnvelope,
    verifier: Union[SignatureVerifier, VerifyFunction],
    checks: Union[Check, Iterable[Check]] = (),
    max_field_length: Optional[int] = None,
) -> LicenseRecord:
    """Like validate_license but raises LicenseRejected instead of returning an error."""
    result = validate_license(envelope, verifier, checks, max_field_length)
    if result.error is not None:
        raise LicenseRejected(result.error)
    return result.record
