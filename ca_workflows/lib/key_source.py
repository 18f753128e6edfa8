"""Key material sources: software keys on disk and hardware-token slots."""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ed448, ed25519
from cryptography.hazmat.primitives.asymmetric.types import (
    CertificateIssuerPrivateKeyTypes,
    PublicKeyTypes,
)

from .cert_utils import deserialize_private_key, generate_private_key, serialize_private_key
from .errors import KeyUnavailableError, TokenBusyError
from .storage import write_atomic

logger = logging.getLogger(__name__)

Builder = (
    x509.CertificateBuilder
    | x509.CertificateSigningRequestBuilder
    | x509.CertificateRevocationListBuilder
)


def signing_algorithm(key: CertificateIssuerPrivateKeyTypes) -> hashes.HashAlgorithm | None:
    """EdDSA keys sign without a separate digest; everything else uses SHA-256."""
    if isinstance(key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
        return None
    return hashes.SHA256()


class TokenBackend(Protocol):
    """External hardware-token capability (PIV, PKCS#11, ...).

    Implementations raise KeyUnavailableError when the token or slot is
    absent. Token protocol details stay behind this interface.
    """

    def public_key(self, slot: str) -> PublicKeyTypes: ...

    def sign(self, slot: str, builder: Builder) -> Any: ...


class KeySource(ABC):
    """A key handle usable for signing plus its public key."""

    kind: str = ""

    @abstractmethod
    def public_key(self) -> PublicKeyTypes:
        """Return the public half of the key."""

    @abstractmethod
    def sign(self, builder: Builder) -> Any:
        """Sign a certificate, CSR or CRL builder with this key."""

    @abstractmethod
    def reference(self, base_dir: Path | None = None) -> dict[str, str]:
        """Return the persisted description of this key (never raw key bytes for tokens)."""


class SoftwareKeySource(KeySource):
    """Private key held in a PEM file readable by its owner only."""

    kind = "file"

    def __init__(self, private_key: CertificateIssuerPrivateKeyTypes, path: Path | None = None) -> None:
        self.private_key = private_key
        self.path = path

    @classmethod
    def generate(cls, path: Path, key_size: int = 4096) -> "SoftwareKeySource":
        """Generate an RSA key locally and place it at path with mode 0600."""
        key = generate_private_key(key_size)
        write_atomic(path, serialize_private_key(key), mode=0o600)
        logger.info("Generated %d-bit RSA key at %s", key_size, path)
        return cls(key, path)

    @classmethod
    def from_file(cls, path: Path) -> "SoftwareKeySource":
        """Load an existing PEM private key.

        Raises:
            KeyUnavailableError: If the file is missing, unreadable or not a usable key
        """
        try:
            pem = path.read_bytes()
        except OSError as e:
            raise KeyUnavailableError(f"cannot read key file {path}: {e}") from e
        try:
            key = deserialize_private_key(pem)
        except (ValueError, TypeError) as e:
            raise KeyUnavailableError(f"invalid private key in {path}: {e}") from e
        return cls(key, path)

    def public_key(self) -> PublicKeyTypes:
        return self.private_key.public_key()

    def sign(self, builder: Builder) -> Any:
        return builder.sign(self.private_key, signing_algorithm(self.private_key))

    def reference(self, base_dir: Path | None = None) -> dict[str, str]:
        if self.path is None:
            raise KeyUnavailableError("in-memory key has no file reference")
        path = self.path
        if base_dir is not None and path.is_relative_to(base_dir):
            path = path.relative_to(base_dir)
        return {"type": self.kind, "path": str(path)}


class HardwareTokenKeySource(KeySource):
    """Key resident in a hardware-token slot.

    Only one signing operation may hold a given slot of a given token at a
    time; a second caller gets TokenBusyError instead of waiting on a
    partial signature.
    """

    kind = "token"

    _slot_locks: dict[tuple[int, str], threading.Lock] = {}
    _registry_lock = threading.Lock()

    def __init__(self, slot: str, backend: TokenBackend) -> None:
        self.slot = slot
        self.backend = backend
        with self._registry_lock:
            self._lock = self._slot_locks.setdefault((id(backend), slot), threading.Lock())

    @contextmanager
    def session(self) -> Iterator[None]:
        """Hold the token slot exclusively.

        Raises:
            TokenBusyError: If another operation holds the slot
        """
        if not self._lock.acquire(blocking=False):
            raise TokenBusyError(f"token slot {self.slot} is busy")
        try:
            yield
        finally:
            self._lock.release()

    def public_key(self) -> PublicKeyTypes:
        return self.backend.public_key(self.slot)

    def sign(self, builder: Builder) -> Any:
        with self.session():
            logger.info("Signing with token slot %s", self.slot)
            return self.backend.sign(self.slot, builder)

    def reference(self, base_dir: Path | None = None) -> dict[str, str]:
        return {"type": self.kind, "slot": self.slot}


def load_key_source(
    reference: dict[str, str],
    base_dir: Path,
    token_backend: TokenBackend | None = None,
) -> KeySource:
    """Rebuild a key source from its persisted reference.

    Args:
        reference: Output of KeySource.reference()
        base_dir: Directory relative file paths are resolved against
        token_backend: Backend for token references

    Raises:
        KeyUnavailableError: If the key cannot be loaded, or a token key is
            referenced but no backend was supplied
    """
    kind = reference.get("type")
    if kind == SoftwareKeySource.kind:
        path = Path(reference["path"])
        if not path.is_absolute():
            path = base_dir / path
        return SoftwareKeySource.from_file(path)
    if kind == HardwareTokenKeySource.kind:
        if token_backend is None:
            raise KeyUnavailableError(
                f"key lives in token slot {reference.get('slot')} but no token backend is configured"
            )
        return HardwareTokenKeySource(reference["slot"], token_backend)
    raise KeyUnavailableError(f"unknown key reference type: {kind!r}")
