import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ed25519, padding, rsa

from license_core import FEATURE_COUNT, LicenseRecord, RSAVerifier, SignatureEnvelope, encode_payload
from payloads import b64


@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_verifier(rsa_private_key):
    return RSAVerifier(rsa_private_key.public_key())


@pytest.fixture(scope="session")
def ed25519_private_key():
    return ed25519.Ed25519PrivateKey.generate()


@pytest.fixture
def make_record():
    def _make(**overrides):
        fields = dict(
            id=42,
            key="ABCDE-FGHIJ-KLMNO-PQRST",
            feature_flags=(False,) * FEATURE_COUNT,
            block=False,
        )
        fields.update(overrides)
        return LicenseRecord(**fields)
    return _make


@pytest.fixture
def seal(rsa_private_key):
    """Sign a record, payload text or wire bytes the way the issuer does."""
    def _seal(payload):
        if isinstance(payload, LicenseRecord):
            payload = encode_payload(payload)
        elif isinstance(payload, str):
            payload = b64(payload)
        signature = rsa_private_key.sign(payload, padding.PKCS1v15(), hashes.SHA256())
        return SignatureEnvelope(payload=payload, signature=signature)
    return _seal
