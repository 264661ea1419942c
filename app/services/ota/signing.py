# app/services/ota/signing.py
import base64
import hashlib
import logging
from typing import Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

logger = logging.getLogger(__name__)


class SignatureError(Exception):
    """Raised when a signature cannot be produced or does not verify"""


def compute_hash(data: bytes) -> str:
    """Compute SHA256 hex digest of firmware data"""
    return hashlib.sha256(data).hexdigest()


def generate_key_pair(bits: int = 2048) -> Tuple[bytes, bytes]:
    """Generate an RSA key pair, returned as (private PEM, public PEM)"""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


class Signer:
    """RSA-PSS (SHA256) signing and verification of firmware binaries"""

    def __init__(self, private_key_pem: Optional[bytes] = None, public_key_pem: Optional[bytes] = None):
        self._private_key = None
        self._public_key = None

        if private_key_pem:
            key = serialization.load_pem_private_key(private_key_pem, password=None)
            if not isinstance(key, rsa.RSAPrivateKey):
                raise SignatureError("Private key is not an RSA key")
            self._private_key = key

        if public_key_pem:
            key = serialization.load_pem_public_key(public_key_pem)
            if not isinstance(key, rsa.RSAPublicKey):
                raise SignatureError("Public key is not an RSA key")
            self._public_key = key
        elif self._private_key is not None:
            self._public_key = self._private_key.public_key()

    @classmethod
    def from_files(cls, private_key_path: Optional[str], public_key_path: Optional[str]) -> "Signer":
        private_pem = None
        public_pem = None
        if private_key_path:
            with open(private_key_path, "rb") as f:
                private_pem = f.read()
        if public_key_path:
            with open(public_key_path, "rb") as f:
                public_pem = f.read()
        return cls(private_pem, public_pem)

    @staticmethod
    def _padding() -> padding.PSS:
        return padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH)

    def sign(self, data: bytes) -> str:
        """Sign binary data, returning a base64 signature"""
        if self._private_key is None:
            raise SignatureError("Private key not configured")
        signature = self._private_key.sign(data, self._padding(), hashes.SHA256())
        return base64.b64encode(signature).decode("ascii")

    def verify(self, data: bytes, signature: str) -> None:
        """Raise SignatureError unless ``signature`` is valid for ``data``"""
        if self._public_key is None:
            raise SignatureError("Public key not configured")
        try:
            raw = base64.b64decode(signature, validate=True)
        except ValueError as e:
            raise SignatureError(f"Failed to decode signature: {e}") from e
        try:
            self._public_key.verify(raw, data, self._padding(), hashes.SHA256())
        except InvalidSignature as e:
            raise SignatureError("Signature verification failed") from e
