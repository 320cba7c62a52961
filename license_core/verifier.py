# License Core - Signature Verifiers
import base64
from typing import Callable, Protocol, Union, runtime_checkable

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey, RSAPublicNumbers


@runtime_checkable
class SignatureVerifier(Protocol):
    """Anything that can check a signature over a message with a baked-in public key."""

    def verify(self, message: bytes, signature: bytes) -> bool:
        ...


VerifyFunction = Callable[[bytes, bytes], bool]


class _FunctionVerifier:
    def __init__(self, fn: VerifyFunction):
        self._fn = fn

    def verify(self, message: bytes, signature: bytes) -> bool:
        return bool(self._fn(message, signature))


def as_verifier(verifier: Union[SignatureVerifier, VerifyFunction]) -> SignatureVerifier:
    """Accept either a verifier object or a bare verify(message, signature) function."""
    if isinstance(verifier, SignatureVerifier):
        return verifier
    if callable(verifier):
        return _FunctionVerifier(verifier)
    raise TypeError(f"not a signature verifier: {type(verifier).__name__}")


# ============================================================================
# RSA (PKCS#1 v1.5 / SHA-256)
# ============================================================================

class RSAVerifier:
    """RSASSA-PKCS1-v1_5 with SHA-256."""

    def __init__(self, public_key: RSAPublicKey):
        if not isinstance(public_key, RSAPublicKey):
            raise TypeError("RSAVerifier needs an RSA public key")
        self._public_key = public_key

    @classmethod
    def from_pem(cls, pem: bytes) -> "RSAVerifier":
        return cls(serialization.load_pem_public_key(pem))

    @classmethod
    def from_modulus_exponent(cls, modulus_b64: str, exponent_b64: str) -> "RSAVerifier":
        """Build from the base64 <Modulus>/<Exponent> pair of an RSAKeyValue."""
        n = int.from_bytes(base64.b64decode(modulus_b64, validate=True), "big")
        e = int.from_bytes(base64.b64decode(exponent_b64, validate=True), "big")
        return cls(RSAPublicNumbers(e, n).public_key())

    def verify(self, message: bytes, signature: bytes) -> bool:
        try:
            self._public_key.verify(signature, message, padding.PKCS1v15(), hashes.SHA256())
            return True
        except InvalidSignature:
            return False


# ============================================================================
# Ed25519
# ============================================================================

class Ed25519Verifier:
    """Ed25519 (RFC 8032) signatures."""

    def __init__(self, public_key: Ed25519PublicKey):
        if not isinstance(public_key, Ed25519PublicKey):
            raise TypeError("Ed25519Verifier needs an Ed25519 public key")
        self._public_key = public_key

    @classmethod
    def from_public_bytes(cls, raw: bytes) -> "Ed25519Verifier":
        return cls(Ed25519PublicKey.from_public_bytes(raw))

    @classmethod
    def from_pem(cls, pem: bytes) -> "Ed25519Verifier":
        return cls(serialization.load_pem_public_key(pem))

    def verify(self, message: bytes, signature: bytes) -> bool:
        try:
            self._public_key.verify(signature, message)
            return True
        except InvalidSignature:
            return False
