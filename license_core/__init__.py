"""Offline verification of signed license payloads."""

from .checks import (
    ActivatedOn, AllOf, AllowedOn, Check, CheckReport, HasExpired, HasFeature,
    HasNotFeature, NotBlocked, NotExpired, Policy, WithinMachineLimit, evaluate,
)
from .codec import decode_payload, encode_payload
from .errors import (
    DecodeError, DecodeFailed, LicenseError, LicenseRejected, PolicyViolation,
    VerificationFailed, ViolationReason,
)
from .models import (
    FEATURE_COUNT, ActivatedMachine, LicenseRecord, SignatureEnvelope, ValidationResult,
)
from .config import Settings, load_settings, load_verifier
from .validation import require_license, validate_license, validate_transport
from .verifier import Ed25519Verifier, RSAVerifier, SignatureVerifier, as_verifier

__version__ = "1.0.0"
