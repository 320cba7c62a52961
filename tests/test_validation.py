"""Tests for the verify -> decode -> check pipeline"""

import base64
import logging
from datetime import timedelta

import pytest

from license_core import (
    ActivatedMachine, ActivatedOn, DecodeFailed, LicenseRejected, NotBlocked, NotExpired,
    Policy, PolicyViolation, SignatureEnvelope, VerificationFailed, ViolationReason, encode_payload,
    require_license, validate_license, validate_transport,
)
from license_core import validation
from payloads import FLAGS_OFF, MINIMAL, NOW


@pytest.fixture
def activated_record(make_record):
    machine = ActivatedMachine(id=1, ip="10.0.0.1", time=NOW - timedelta(days=3), machine_code="M1")
    return make_record(
        expires_at=NOW + timedelta(days=30),
        activated_machines=(machine,),
        notes="Issued; renewed yearly",
    )


class TestValidLicense:
    """Matching key pair, valid payload."""

    def test_fields_survive_the_pipeline(self, seal, rsa_verifier, activated_record):
        result = validate_license(seal(activated_record), rsa_verifier)
        assert result.valid
        assert result.record.model_dump() == activated_record.model_dump()

    def test_checks_pass(self, seal, rsa_verifier, activated_record):
        checks = [NotBlocked(), NotExpired(NOW), ActivatedOn("M1")]
        result = validate_license(seal(activated_record), rsa_verifier, checks)
        assert result.valid
        assert result.view("key", "expires_at") == {
            "key": activated_record.key,
            "expires_at": activated_record.expires_at,
        }

    def test_function_verifier(self, seal, rsa_verifier, activated_record):
        result = validate_license(seal(activated_record), rsa_verifier.verify)
        assert result.valid

    def test_unknown_field_kept(self, seal, rsa_verifier):
        result = validate_license(seal(MINIMAL + ";seats_hint=5"), rsa_verifier)
        assert result.record.extensions == {"seats_hint": "5"}


class TestVerificationFailure:
    """Nothing is decoded until the signature checks out."""

    def test_payload_bit_flip(self, seal, rsa_verifier, activated_record):
        envelope = seal(activated_record)
        payload = bytearray(envelope.payload)
        payload[5] ^= 0x01
        result = validate_license(
            SignatureEnvelope(payload=bytes(payload), signature=envelope.signature), rsa_verifier,
        )
        assert isinstance(result.error, VerificationFailed)

    def test_signature_bit_flip(self, seal, rsa_verifier, activated_record):
        envelope = seal(activated_record)
        signature = bytearray(envelope.signature)
        signature[-1] ^= 0x80
        result = validate_license(
            SignatureEnvelope(payload=envelope.payload, signature=bytes(signature)), rsa_verifier,
        )
        assert result.error.kind == "verification_failed"
        assert result.record is None

    def test_decoder_not_reached(self, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("decoded before verification")

        monkeypatch.setattr(validation, "decode_payload", fail)
        envelope = SignatureEnvelope(payload=b"%%garbage%%", signature=b"x")
        result = validate_license(envelope, lambda message, signature: False)
        assert isinstance(result.error, VerificationFailed)

    def test_malformed_transport_signature(self, rsa_verifier):
        result = validate_transport(base64.b64encode(MINIMAL.encode()).decode(), "***", rsa_verifier)
        assert isinstance(result.error, VerificationFailed)
        assert "Malformed" in result.error.detail

    def test_transport_strings(self, seal, rsa_verifier, activated_record):
        envelope = seal(activated_record)
        result = validate_transport(
            envelope.payload.decode("ascii"),
            base64.b64encode(envelope.signature).decode("ascii"),
            rsa_verifier,
        )
        assert result.valid


class TestDecodeFailure:
    """Authentic but malformed payloads."""

    def test_missing_id(self, seal, rsa_verifier):
        result = validate_license(seal(f"key=K;{FLAGS_OFF};block=false"), rsa_verifier)
        assert isinstance(result.error, DecodeFailed)
        assert result.error.field == "id"

    def test_empty_payload(self, seal, rsa_verifier):
        result = validate_license(seal(b""), rsa_verifier)
        assert result.error.kind == "decode_failed"

    def test_bad_base64(self, seal, rsa_verifier):
        result = validate_license(seal(b"@@@@"), rsa_verifier)
        assert result.error.kind == "decode_failed"

    def test_max_field_length_passed_through(self, seal, rsa_verifier):
        result = validate_license(seal(MINIMAL.replace("key=K", "key=KKKK")), rsa_verifier,
                                  max_field_length=3)
        assert result.error.field == "key"

    def test_checks_not_run_on_decode_failure(self, seal, rsa_verifier):
        class Boom:
            name = "boom"

            def evaluate(self, record):
                raise AssertionError("checked an undecoded payload")

        result = validate_license(seal("id=1"), rsa_verifier, [Boom()])
        assert result.error.kind == "decode_failed"

    def test_oversized_integer_is_decode_failure(self, seal, rsa_verifier):
        text = MINIMAL.replace("id=1", "id=" + "7" * 5000)
        result = validate_license(seal(text), rsa_verifier, max_field_length=10000)
        assert isinstance(result.error, DecodeFailed)
        assert result.error.field == "id"


class TestPolicyFailure:
    """Checks report exactly which predicate failed."""

    def test_expired(self, seal, rsa_verifier, make_record):
        record = make_record(expires_at=NOW - timedelta(seconds=1))
        result = validate_license(seal(record), rsa_verifier, [NotExpired(NOW)])
        assert isinstance(result.error, PolicyViolation)
        assert result.error.reason == ViolationReason.EXPIRED

    def test_blocked(self, seal, rsa_verifier, activated_record):
        record = activated_record.model_copy(update={"block": True})
        checks = [NotExpired(NOW), ActivatedOn("M1"), NotBlocked()]
        result = validate_license(seal(record), rsa_verifier, checks)
        assert result.error.reason == ViolationReason.BLOCKED
        assert result.error.check_name == "not_blocked"

    def test_wrong_machine(self, seal, rsa_verifier, activated_record):
        result = validate_license(seal(activated_record), rsa_verifier, [ActivatedOn("M2")])
        assert result.error.reason == ViolationReason.MACHINE_NOT_ALLOWED

    def test_policy_object_as_checks(self, seal, rsa_verifier, activated_record):
        policy = Policy().not_blocked().not_expired(NOW).has_feature(4)
        result = validate_license(seal(activated_record), rsa_verifier, policy)
        assert result.error.check_name == "has_feature_4"
        assert result.error.feature == 4

    @pytest.mark.parametrize("period, valid", [(3000000, True), (99999999999, True), (-99999999999, False)])
    def test_period_beyond_calendar(self, seal, rsa_verifier, period, valid):
        text = MINIMAL + f";created=1700000000;period={period}"
        result = validate_license(seal(text), rsa_verifier, [NotExpired(NOW)])
        assert result.valid is valid
        if not valid:
            assert result.error.reason == ViolationReason.EXPIRED


class TestRequireLicense:
    """Raising variant."""

    def test_returns_record(self, seal, rsa_verifier, activated_record):
        record = require_license(seal(activated_record), rsa_verifier, [ActivatedOn("M1")])
        assert record.key == activated_record.key

    def test_raises_with_discriminant(self, seal, rsa_verifier, activated_record):
        with pytest.raises(LicenseRejected) as exc:
            require_license(seal(activated_record), rsa_verifier, [ActivatedOn("M2")])
        assert exc.value.kind == "policy_violation"
        assert exc.value.error.reason == ViolationReason.MACHINE_NOT_ALLOWED
        assert "activated_on" in str(exc.value)

    def test_raises_on_bad_signature(self, activated_record):
        envelope = SignatureEnvelope(payload=encode_payload(activated_record), signature=b"sig")
        with pytest.raises(LicenseRejected) as exc:
            require_license(envelope, lambda message, signature: False)
        assert exc.value.kind == "verification_failed"

    def test_period_beyond_calendar_returns_record(self, seal, rsa_verifier):
        text = MINIMAL + ";created=1700000000;period=99999999999"
        record = require_license(seal(text), rsa_verifier, [NotExpired(NOW)])
        assert record.period_days == 99999999999


class TestLogging:
    """One audit line per validation."""

    def test_rejection_logged(self, seal, rsa_verifier, activated_record, caplog):
        with caplog.at_level(logging.WARNING, logger="license_core.validation"):
            validate_license(seal(activated_record), rsa_verifier, [ActivatedOn("M2")])
        assert "machine_not_allowed" in caplog.text
        assert activated_record.key in caplog.text

    def test_success_logged(self, seal, rsa_verifier, activated_record, caplog):
        with caplog.at_level(logging.INFO, logger="license_core.validation"):
            validate_license(seal(activated_record), rsa_verifier)
        assert "valid" in caplog.text
