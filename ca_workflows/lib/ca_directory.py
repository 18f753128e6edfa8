"""CA directory model: layout, key material and the CA's own certificate."""

import json
import logging
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from cryptography import x509

from .cert_utils import (
    create_chain_bundle,
    deserialize_certificate,
    format_subject,
    get_common_name,
    keys_match,
    read_subject_fields,
    serialize_certificate,
    serialize_csr,
    serialize_private_key,
    ssh_public_key,
)
from .certificate_builder import CertificateBuilder
from .config import CAConfig, DistinguishedName
from .errors import AlreadyExistsError, InputValidationError, NotFoundError
from .index_store import IndexStore
from .key_source import KeySource, SoftwareKeySource, TokenBackend, load_key_source
from .models import InitResult
from .naming import format_serial
from .storage import ensure_private_dir, write_atomic, write_text_atomic

logger = logging.getLogger(__name__)

CONFIG_FILE = "ca.json"
CERT_FILE = "ca.pem"
CSR_FILE = "ca.csr"
CHAIN_FILE = "ca-chain.pem"
SSH_PUBLIC_KEY_FILE = "ca.ssh.pub"
PRIVATE_DIR = "private"
KEY_FILE = "ca.key"
KEY_REFERENCE_FILE = "key.json"
ARCHIVE_DIR = "archive"
CRL_DIR = "crl"
REQUEST_KINDS = ("client", "server")


class CADirectory:
    """One CA instance (root, signing or imported) stored under a directory."""

    def __init__(
        self,
        path: Path,
        config: CAConfig,
        token_backend: TokenBackend | None = None,
        key_source: KeySource | None = None,
    ) -> None:
        self.path = path
        self.config = config
        self.token_backend = token_backend
        self.index = IndexStore(path)
        self.parent_serial: int | None = None
        self._key_source = key_source

    @property
    def cert_path(self) -> Path:
        return self.path / CERT_FILE

    @property
    def archive_dir(self) -> Path:
        return self.path / ARCHIVE_DIR

    @property
    def crl_dir(self) -> Path:
        return self.path / CRL_DIR

    @property
    def certificate(self) -> x509.Certificate:
        try:
            return deserialize_certificate(self.cert_path.read_bytes())
        except FileNotFoundError:
            raise NotFoundError(f"CA certificate not found: {self.cert_path}") from None

    @property
    def key_source(self) -> KeySource:
        """CA signing key, loaded on first use so read-only commands work without a token."""
        if self._key_source is None:
            reference_path = self.path / PRIVATE_DIR / KEY_REFERENCE_FILE
            try:
                reference = json.loads(reference_path.read_text())
            except FileNotFoundError:
                raise NotFoundError(f"CA key reference not found: {reference_path}") from None
            self._key_source = load_key_source(reference, self.path, self.token_backend)
        return self._key_source

    def request_dir(self, kind: str, name: str) -> Path:
        if kind not in REQUEST_KINDS:
            raise InputValidationError(f"unknown request type: {kind!r}")
        return self.path / kind / name

    def archive_path(self, serial: int) -> Path:
        return self.archive_dir / f"{format_serial(serial)}.pem"

    def summary(self) -> InitResult:
        return InitResult(
            ca_dir=self.path,
            cert_path=self.cert_path,
            key_reference=self.key_source.reference(self.path),
            serial=format_serial(self.certificate.serial_number),
            parent_serial=self.parent_serial,
        )

    @classmethod
    def open(cls, path: Path, token_backend: TokenBackend | None = None) -> "CADirectory":
        """Open an existing CA directory.

        Raises:
            NotFoundError: If path holds no CA
        """
        try:
            data = json.loads((path / CONFIG_FILE).read_text())
        except FileNotFoundError:
            raise NotFoundError(f"no CA directory at {path}") from None
        return cls(path, CAConfig.from_dict(data), token_backend=token_backend)

    @classmethod
    def initialize(
        cls,
        path: Path,
        config: CAConfig,
        key_source: KeySource | None = None,
    ) -> "CADirectory":
        """Create a root CA with a self-signed certificate.

        Args:
            path: Target directory; must not exist or be empty
            config: CA identity and subject defaults
            key_source: Existing key (file or token); a software key is
                generated when omitted

        Returns:
            The new CA directory

        Raises:
            AlreadyExistsError: If path exists and is not empty
            InputValidationError: If config lacks a domain or label
        """
        config.validate()
        with cls._creating(path):
            ca = cls._create_skeleton(path, config, key_source)
            subject = ca._own_subject()
            cert = CertificateBuilder.build_root_ca(
                subject_dn=subject,
                signer=ca.key_source,
                validity_years=config.root_validity_years,
            )
            ca._write_certificate(cert)
        logger.info("Initialized root CA %s at %s", config.label, path)
        return ca

    @classmethod
    def initialize_intermediate(
        cls,
        path: Path,
        config: CAConfig,
        parent: "CADirectory",
        key_source: KeySource | None = None,
    ) -> "CADirectory":
        """Create a signing CA whose certificate is issued by parent.

        The issuance consumes the parent's next serial and is recorded in the
        parent's Index Store.

        Raises:
            AlreadyExistsError: If path exists and is not empty
            InputValidationError: If config lacks a domain or label
        """
        config.validate()
        with cls._creating(path):
            ca = cls._create_skeleton(path, config, key_source)
            csr = ca.key_source.sign(
                x509.CertificateSigningRequestBuilder().subject_name(
                    ca._own_subject().to_x509_name()
                )
            )
            write_atomic(path / CSR_FILE, serialize_csr(csr))

            parent_cert = parent.certificate
            with parent.index.transaction() as state:
                serial = state.next_cert_serial
                cert = CertificateBuilder.build_intermediate_ca(
                    csr=csr,
                    issuer_cert=parent_cert,
                    signer=parent.key_source,
                    serial=serial,
                    validity_years=config.intermediate_validity_years,
                    crl_url=parent.config.crl_url,
                )
                write_atomic(parent.archive_path(serial), serialize_certificate(cert))
                state.record_issued(
                    serial=serial,
                    subject=format_subject(cert.subject),
                    not_before=cert.not_valid_before_utc,
                    not_after=cert.not_valid_after_utc,
                    name=config.label,
                    kind="ca",
                )

            ca._write_certificate(cert)
            parent_chain = parent.path / CHAIN_FILE
            chain_tail = (
                parent_chain.read_bytes()
                if parent_chain.exists()
                else serialize_certificate(parent_cert)
            )
            write_atomic(
                path / CHAIN_FILE, create_chain_bundle(serialize_certificate(cert), chain_tail)
            )
        logger.info(
            "Initialized signing CA %s at %s (parent %s, serial %s)",
            config.label,
            path,
            parent.config.label,
            format_serial(serial),
        )
        ca.parent_serial = serial
        return ca

    @classmethod
    def import_ca(
        cls,
        path: Path,
        certificate_pem: bytes,
        key_source: KeySource,
        domain: str,
        label: str | None = None,
        chain_pem: bytes | None = None,
    ) -> "CADirectory":
        """Create a CA directory around an externally issued CA certificate.

        Subject defaults are read back from the certificate.

        Raises:
            AlreadyExistsError: If path exists and is not empty
            InputValidationError: If the certificate is not a CA certificate
                or does not match the key
        """
        try:
            cert = deserialize_certificate(certificate_pem)
        except ValueError as e:
            raise InputValidationError(f"invalid CA certificate: {e}") from e

        try:
            constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
        except x509.ExtensionNotFound:
            constraints = None
        if constraints is None or not constraints.ca:
            raise InputValidationError("certificate is not a CA certificate")
        if not keys_match(cert.public_key(), key_source.public_key()):
            raise InputValidationError("private key does not match CA certificate")

        config = CAConfig(
            label=label or get_common_name(cert.subject),
            domain=domain,
            **read_subject_fields(cert),
        )
        config.validate()
        with cls._creating(path):
            ca = cls._create_skeleton(path, config, key_source)
            ca._write_certificate(cert)
            if chain_pem:
                write_atomic(path / CHAIN_FILE, create_chain_bundle(certificate_pem, chain_pem))
        logger.info("Imported CA %s at %s", config.label, path)
        return ca

    @staticmethod
    @contextmanager
    def _creating(path: Path) -> Iterator[None]:
        """Refuse non-empty targets; remove what we created if creation fails."""
        if path.exists() and (not path.is_dir() or any(path.iterdir())):
            raise AlreadyExistsError(f"CA location already exists: {path}")
        existed = path.exists()
        try:
            yield
        except BaseException:
            if existed:
                for child in path.iterdir():
                    if child.is_dir():
                        shutil.rmtree(child)
                    else:
                        child.unlink()
            else:
                shutil.rmtree(path, ignore_errors=True)
            raise

    @classmethod
    def _create_skeleton(
        cls,
        path: Path,
        config: CAConfig,
        key_source: KeySource | None,
    ) -> "CADirectory":
        path.mkdir(parents=True, exist_ok=True)
        private_dir = ensure_private_dir(path / PRIVATE_DIR)
        for name in (ARCHIVE_DIR, CRL_DIR, *REQUEST_KINDS):
            (path / name).mkdir()

        key_path = private_dir / KEY_FILE
        if key_source is None:
            key_source = SoftwareKeySource.generate(key_path, config.key_size)
        elif isinstance(key_source, SoftwareKeySource):
            write_atomic(key_path, serialize_private_key(key_source.private_key), mode=0o600)
            key_source = SoftwareKeySource(key_source.private_key, key_path)

        write_text_atomic(
            private_dir / KEY_REFERENCE_FILE,
            json.dumps(key_source.reference(path), indent=2) + "\n",
            mode=0o600,
        )
        IndexStore.initialize(path)
        write_text_atomic(path / CONFIG_FILE, json.dumps(config.to_dict(), indent=2) + "\n")
        return cls(path, config, key_source=key_source)

    def _own_subject(self) -> DistinguishedName:
        return DistinguishedName(
            country=self.config.country,
            state=self.config.state,
            locality=self.config.locality,
            organization=self.config.organization,
            organizational_unit=self.config.organizational_unit,
            common_name=f"{self.config.label} CA",
        )

    def _write_certificate(self, cert: x509.Certificate) -> None:
        write_atomic(self.cert_path, serialize_certificate(cert))
        write_atomic(
            self.path / SSH_PUBLIC_KEY_FILE,
            ssh_public_key(cert.public_key(), f"{self.config.label}@{self.config.domain}"),
        )
