"""Certificate request lifecycle: DRAFT -> PENDING -> SIGNED | REJECTED."""

import json
import logging
import shutil
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.types import PublicKeyTypes
from cryptography.hazmat.primitives.serialization import load_pem_public_key

from .ca_directory import CADirectory
from .cert_utils import (
    deserialize_csr,
    serialize_csr,
    serialize_private_key,
    serialize_public_key,
    ssh_public_key,
)
from .config import SubjectOverrides, resolve_subject
from .errors import (
    AlreadyExistsError,
    InputValidationError,
    KeyUnavailableError,
    NotFoundError,
)
from .index_store import CertStatus
from .key_source import HardwareTokenKeySource, KeySource, SoftwareKeySource
from .models import RequestResult
from .naming import safe_name
from .storage import write_atomic, write_text_atomic

logger = logging.getLogger(__name__)

REQUEST_FILE = "request.json"
KEY_FILE = "key.pem"
PUBLIC_KEY_FILE = "public.pem"
CSR_FILE = "request.csr"
CERT_FILE = "cert.pem"
SSH_PUBLIC_KEY_FILE = "ssh.pub"


class RequestType(StrEnum):
    CLIENT = "client"
    SERVER = "server"


class RequestState(StrEnum):
    DRAFT = "draft"
    PENDING = "pending"
    SIGNED = "signed"
    REJECTED = "rejected"


class KeyChoice(StrEnum):
    GENERATE = "generate"
    FILE = "file"
    TOKEN = "token"


_TRANSITIONS = {
    RequestState.DRAFT: {RequestState.PENDING},
    RequestState.PENDING: {RequestState.SIGNED, RequestState.REJECTED},
    RequestState.SIGNED: set(),
    RequestState.REJECTED: set(),
}


@dataclass
class CertificateRequest:
    """A client or server certificate request against one CA.

    The safe name is the collision key within the CA for a given type.
    """

    ca: CADirectory
    name: str
    kind: RequestType
    safe_name: str
    email: str | None = None
    overrides: SubjectOverrides = field(default_factory=SubjectOverrides)
    key_file: Path | None = None
    token_slot: str | None = None
    state: RequestState = RequestState.DRAFT
    serial: int | None = None
    rejection_reason: str | None = None
    _key_source: KeySource | None = field(default=None, repr=False)

    @property
    def directory(self) -> Path:
        return self.ca.request_dir(self.kind.value, self.safe_name)

    @property
    def key_choice(self) -> KeyChoice:
        if self.token_slot:
            return KeyChoice.TOKEN
        if self.key_file:
            return KeyChoice.FILE
        return KeyChoice.GENERATE

    @property
    def cert_path(self) -> Path:
        return self.directory / CERT_FILE

    @classmethod
    def draft(
        cls,
        ca: CADirectory,
        name: str,
        kind: RequestType | str,
        email: str | None = None,
        key_file: Path | None = None,
        token_slot: str | None = None,
        overrides: SubjectOverrides | None = None,
        forced_safe_name: str | None = None,
    ) -> "CertificateRequest":
        """Create a DRAFT request from a requested identity.

        Args:
            ca: Target CA
            name: Requested identity, used as the subject CN
            kind: client or server
            email: Email for the client SAN
            key_file: Existing private key to use instead of generating one
            token_slot: Hardware-token slot holding the key
            overrides: Subject fields overriding the CA defaults
            forced_safe_name: Safe name to use instead of the one derived from name

        Raises:
            InputValidationError: If name or type is invalid, or both key sources are given
        """
        name = (name or "").strip()
        if not name:
            raise InputValidationError("no name supplied")
        try:
            kind = RequestType(kind)
        except ValueError:
            raise InputValidationError(f"unknown request type: {kind!r}") from None
        if key_file and token_slot:
            raise InputValidationError("choose either an external key file or a token slot")

        normalized = safe_name(forced_safe_name or name)
        if not normalized.strip("-"):
            raise InputValidationError(f"name {name!r} has no usable characters")

        return cls(
            ca=ca,
            name=name,
            kind=kind,
            safe_name=normalized,
            email=(email or "").strip() or None,
            overrides=overrides or SubjectOverrides(),
            key_file=key_file,
            token_slot=token_slot,
        )

    @classmethod
    def load(cls, ca: CADirectory, kind: RequestType | str, name: str) -> "CertificateRequest":
        """Reopen a persisted request by type and name.

        Raises:
            NotFoundError: If no request exists under that name
        """
        try:
            kind = RequestType(kind)
        except ValueError:
            raise InputValidationError(f"unknown request type: {kind!r}") from None
        directory = ca.request_dir(kind.value, safe_name(name))
        try:
            data = json.loads((directory / REQUEST_FILE).read_text())
        except FileNotFoundError:
            raise NotFoundError(f"no {kind.value} request named {safe_name(name)}") from None
        return cls.from_dict(ca, data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.kind.value,
            "safe_name": self.safe_name,
            "email": self.email,
            "subject": self.overrides.to_dict(),
            "key": self.key_choice.value,
            "key_file": str(self.key_file) if self.key_file else None,
            "token_slot": self.token_slot,
            "state": self.state.value,
            "serial": self.serial,
            "rejection_reason": self.rejection_reason,
        }

    @classmethod
    def from_dict(cls, ca: CADirectory, data: dict[str, Any]) -> "CertificateRequest":
        return cls(
            ca=ca,
            name=data["name"],
            kind=RequestType(data["type"]),
            safe_name=data["safe_name"],
            email=data.get("email"),
            overrides=SubjectOverrides(**data.get("subject", {})),
            key_file=Path(data["key_file"]) if data.get("key_file") else None,
            token_slot=data.get("token_slot"),
            state=RequestState(data["state"]),
            serial=data.get("serial"),
            rejection_reason=data.get("rejection_reason"),
        )

    def save(self) -> None:
        write_text_atomic(self.directory / REQUEST_FILE, json.dumps(self.to_dict(), indent=2) + "\n")

    def _transition(self, new_state: RequestState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InputValidationError(
                f"request {self.safe_name} cannot move from {self.state} to {new_state}"
            )
        self.state = new_state

    def submit(self) -> RequestResult:
        """Move DRAFT -> PENDING and write the request artifacts.

        Writes request.json, the key (owner-only, unless token-resident), the
        public key, the CSR and an OpenSSH public key under
        ``<type>/<safe_name>/``. No Index Store entry is created. A rejected
        request under the same name is moved aside first.

        Raises:
            AlreadyExistsError: If the safe name is taken for this type
            InputValidationError: If a client request has no email
            KeyUnavailableError: If the supplied key or token cannot be used
        """
        if self.state is not RequestState.DRAFT:
            raise InputValidationError(f"request {self.safe_name} is already {self.state}")

        self._check_collision()
        if self.kind is RequestType.CLIENT and not self.email:
            raise InputValidationError(f"no email supplied for client request {self.name}")
        key_source = self._acquire_key()

        directory = self.directory
        if directory.exists():
            self._set_aside_rejected(directory)
        try:
            directory.mkdir(parents=True)
        except FileExistsError:
            raise AlreadyExistsError(
                f"{self.kind.value} request {self.safe_name} already exists"
            ) from None

        try:
            key_path: Path | None = directory / KEY_FILE
            if key_source is None:
                key_source = SoftwareKeySource.generate(key_path, self.ca.config.key_size)
            elif isinstance(key_source, SoftwareKeySource):
                write_atomic(key_path, serialize_private_key(key_source.private_key), mode=0o600)
            else:
                key_path = None
            self._key_source = key_source

            subject = resolve_subject(self.ca.config, self.overrides, self.name)
            csr = key_source.sign(
                x509.CertificateSigningRequestBuilder().subject_name(subject.to_x509_name())
            )
            public_key = key_source.public_key()
            write_atomic(directory / PUBLIC_KEY_FILE, serialize_public_key(public_key))
            write_atomic(directory / CSR_FILE, serialize_csr(csr))
            write_atomic(
                directory / SSH_PUBLIC_KEY_FILE, ssh_public_key(public_key, self.name)
            )

            self._transition(RequestState.PENDING)
            self.save()
        except BaseException:
            shutil.rmtree(directory, ignore_errors=True)
            self.state = RequestState.DRAFT
            raise

        logger.info(
            "Request %s/%s pending",
            self.kind.value,
            self.safe_name,
            extra={"ca": self.ca.config.label},
        )
        return RequestResult(
            request_dir=directory,
            safe_name=self.safe_name,
            csr_path=directory / CSR_FILE,
            key_path=key_path,
            ssh_public_key_path=directory / SSH_PUBLIC_KEY_FILE,
        )

    def reject(self, reason: str) -> None:
        """Move PENDING -> REJECTED. The Index Store is never touched."""
        self._transition(RequestState.REJECTED)
        self.rejection_reason = reason
        self.save()
        logger.warning(
            "Request rejected: %s",
            reason,
            extra={
                "ca": self.ca.config.label,
                "request": f"{self.kind.value}/{self.safe_name}",
            },
        )

    def mark_signed(self, serial: int) -> None:
        self._transition(RequestState.SIGNED)
        self.serial = serial
        self.save()

    @property
    def csr(self) -> x509.CertificateSigningRequest:
        try:
            return deserialize_csr((self.directory / CSR_FILE).read_bytes())
        except FileNotFoundError:
            raise NotFoundError(f"CSR missing for request {self.safe_name}") from None

    @property
    def key_source(self) -> KeySource:
        """Key the request was created with (generated, supplied or token)."""
        if self._key_source is None:
            if self.token_slot:
                self._key_source = self._token_key_source(self.token_slot)
            else:
                self._key_source = SoftwareKeySource.from_file(self.directory / KEY_FILE)
        return self._key_source

    def public_key(self) -> PublicKeyTypes:
        path = self.directory / PUBLIC_KEY_FILE
        try:
            return load_pem_public_key(path.read_bytes())
        except FileNotFoundError:
            raise NotFoundError(f"public key missing for request {self.safe_name}") from None

    def _check_collision(self) -> None:
        if self.directory.exists() and self._persisted_state() is not RequestState.REJECTED:
            raise AlreadyExistsError(
                f"{self.kind.value} request or certificate {self.safe_name} already exists"
            )
        issued = [
            e
            for e in self.ca.index.find(self.safe_name, self.kind.value)
            if e.status is CertStatus.VALID
        ]
        if issued:
            raise AlreadyExistsError(
                f"{self.kind.value} certificate {self.safe_name} already issued "
                f"(serial {issued[0].serial_hex})"
            )

    def _persisted_state(self) -> RequestState | None:
        try:
            data = json.loads((self.directory / REQUEST_FILE).read_text())
        except FileNotFoundError:
            return None
        return RequestState(data["state"])

    def _set_aside_rejected(self, directory: Path) -> None:
        """Move a rejected request out of the way, keeping it for audit.

        The new name contains a dot, which no safe name can.
        """
        stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")
        moved = directory.rename(directory.with_name(f"{self.safe_name}.rejected-{stamp}"))
        logger.info(
            "Moved rejected request aside to %s",
            moved,
            extra={"ca": self.ca.config.label, "request": f"{self.kind.value}/{self.safe_name}"},
        )

    def _acquire_key(self) -> KeySource | None:
        if self.token_slot:
            source = self._token_key_source(self.token_slot)
            source.public_key()
            return source
        if self.key_file:
            return SoftwareKeySource.from_file(self.key_file)
        return None

    def _token_key_source(self, slot: str) -> HardwareTokenKeySource:
        if self.ca.token_backend is None:
            raise KeyUnavailableError(
                f"request key lives in token slot {slot} but no token backend is configured"
            )
        return HardwareTokenKeySource(slot, self.ca.token_backend)
