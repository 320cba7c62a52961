# License Core - Configuration
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

from .codec import MAX_FIELD_LENGTH
from .verifier import Ed25519Verifier, RSAVerifier, SignatureVerifier

logger = logging.getLogger(__name__)

SIGN_METHODS = ("rsa", "ed25519")


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    sign_method: str = "rsa"
    public_key_pem: Optional[Path] = None
    rsa_modulus: Optional[str] = None
    rsa_exponent: Optional[str] = None
    max_field_length: int = MAX_FIELD_LENGTH


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Read settings from a .env file (if any) and the environment.

    The .env file never overrides variables already set in the process
    environment, so the host application keeps control of its own
    configuration.
    """
    load_dotenv(env_file)

    sign_method = os.getenv("LICENSE_SIGN_METHOD", "rsa").lower()
    if sign_method not in SIGN_METHODS:
        raise ValueError(f"LICENSE_SIGN_METHOD must be one of {SIGN_METHODS}, got {sign_method!r}")

    pem_path = os.getenv("LICENSE_PUBLIC_KEY_PEM")
    max_len_raw = os.getenv("LICENSE_MAX_FIELD_LENGTH", str(MAX_FIELD_LENGTH))
    try:
        max_field_length = int(max_len_raw)
        if max_field_length <= 0:
            raise ValueError
    except ValueError:
        raise ValueError(f"LICENSE_MAX_FIELD_LENGTH must be a positive integer, got {max_len_raw!r}")

    return Settings(
        sign_method=sign_method,
        public_key_pem=Path(pem_path) if pem_path else None,
        rsa_modulus=os.getenv("LICENSE_RSA_MODULUS") or None,
        rsa_exponent=os.getenv("LICENSE_RSA_EXPONENT") or None,
        max_field_length=max_field_length,
    )


def load_verifier(settings: Settings) -> SignatureVerifier:
    """Build the configured verifier. Raises ValueError if no public key is configured."""
    if settings.public_key_pem is not None:
        pem = settings.public_key_pem.read_bytes()
        logger.info("🔑 Loading %s public key from %s", settings.sign_method, settings.public_key_pem)
        if settings.sign_method == "ed25519":
            return Ed25519Verifier.from_pem(pem)
        return RSAVerifier.from_pem(pem)

    if settings.sign_method == "rsa" and settings.rsa_modulus and settings.rsa_exponent:
        logger.info("🔑 Using RSA public key from modulus/exponent")
        return RSAVerifier.from_modulus_exponent(settings.rsa_modulus, settings.rsa_exponent)

    raise ValueError("No license public key configured (set LICENSE_PUBLIC_KEY_PEM "
                     "or LICENSE_RSA_MODULUS and LICENSE_RSA_EXPONENT)")
