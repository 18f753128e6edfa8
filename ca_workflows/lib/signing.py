"""Signing engine: policy checks, serial assignment and certificate issuance."""

import logging
import re

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa

from .ca_directory import CADirectory
from .cert_request import SSH_PUBLIC_KEY_FILE, CertificateRequest, RequestState, RequestType
from .cert_utils import (
    format_subject,
    keys_match,
    serialize_certificate,
    ssh_public_key,
    validate_csr_signature,
)
from .certificate_builder import CertificateBuilder
from .config import resolve_subject
from .errors import InputValidationError, PolicyViolationError
from .extensions import ClientProfile, ExtensionProfile, ServerProfile
from .index_store import CertStatus, IndexState
from .models import SignResult
from .naming import format_serial
from .storage import write_atomic

logger = logging.getLogger(__name__)

MIN_RSA_KEY_SIZE = 2048

_LABEL = r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
_HOSTNAME = re.compile(rf"^(?:\*\.)?{_LABEL}(?:\.{_LABEL})*$")
_EMAIL = re.compile(rf"^[^@\s]+@{_LABEL}(?:\.{_LABEL})+$")


def check_policy(request: CertificateRequest, csr: x509.CertificateSigningRequest) -> None:
    """Validate a pending request against the issuing policy.

    Raises:
        PolicyViolationError: With the first rule the request breaks
    """
    if not validate_csr_signature(csr):
        raise PolicyViolationError("CSR signature validation failed")
    if not keys_match(csr.public_key(), request.public_key()):
        raise PolicyViolationError("CSR public key does not match the request key")

    public_key = csr.public_key()
    if isinstance(public_key, rsa.RSAPublicKey):
        if public_key.key_size < MIN_RSA_KEY_SIZE:
            raise PolicyViolationError(
                f"RSA key of {public_key.key_size} bits is below the {MIN_RSA_KEY_SIZE}-bit minimum"
            )
    elif not isinstance(
        public_key, (ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey, ed448.Ed448PublicKey)
    ):
        raise PolicyViolationError(f"unsupported key type: {type(public_key).__name__}")

    if request.kind is RequestType.CLIENT:
        if not request.email or not _EMAIL.match(request.email):
            raise PolicyViolationError(f"invalid email address: {request.email!r}")
    elif not _HOSTNAME.match(request.name):
        raise PolicyViolationError(f"server name {request.name!r} is not a valid DNS name")


def profile_for(request: CertificateRequest) -> ExtensionProfile:
    """Pick the extension profile for the request type."""
    if request.kind is RequestType.CLIENT:
        if not request.email:
            raise PolicyViolationError(f"no email for client request {request.safe_name}")
        return ClientProfile(email=request.email)
    return ServerProfile(dns_names=(request.name,))


def _ensure_unsigned(request: CertificateRequest, state: IndexState) -> None:
    """Re-check under the CA lock that no other handle signed this request.

    Raises:
        InputValidationError: If the persisted request is no longer pending,
            or a valid certificate already carries its name and type
    """
    persisted = CertificateRequest.load(request.ca, request.kind, request.safe_name)
    if persisted.state is not RequestState.PENDING:
        raise InputValidationError(
            f"request {request.safe_name} is {persisted.state}, not pending"
        )
    for entry in state.entries.values():
        if (
            entry.status is CertStatus.VALID
            and entry.name == request.safe_name
            and entry.kind == request.kind.value
        ):
            raise InputValidationError(
                f"{request.kind.value} certificate {request.safe_name} already issued "
                f"(serial {entry.serial_hex})"
            )


def sign(request: CertificateRequest, ca: CADirectory | None = None) -> SignResult:
    """Sign a pending request and record it in the CA's Index Store.

    Serial assignment is transactional: the serial is read, the certificate
    signed and archived, and the entry committed under the CA's exclusive
    lock. The counter only advances in the commit that records the entry,
    so a failed signature neither reuses nor skips a serial.

    Args:
        request: Request in PENDING state
        ca: Issuing CA; defaults to the CA the request was created against

    Returns:
        SignResult with serial and artifact paths

    Raises:
        InputValidationError: If the request is not pending
        PolicyViolationError: If the request breaks policy; it moves to REJECTED
        KeyUnavailableError: If the CA key cannot be used; the request stays PENDING
    """
    ca = ca or request.ca
    if request.state is not RequestState.PENDING:
        raise InputValidationError(f"request {request.safe_name} is {request.state}, not pending")

    csr = request.csr
    try:
        check_policy(request, csr)
    except PolicyViolationError as e:
        request.reject(str(e))
        raise

    subject = resolve_subject(ca.config, request.overrides, request.name).to_x509_name()
    profile = profile_for(request)
    validity_days = (
        ca.config.client_validity_days
        if request.kind is RequestType.CLIENT
        else ca.config.server_validity_days
    )
    issuer_cert = ca.certificate
    signer = ca.key_source

    with ca.index.transaction() as state:
        _ensure_unsigned(request, state)
        serial = state.next_cert_serial
        cert = CertificateBuilder.build_certificate(
            csr=csr,
            issuer_cert=issuer_cert,
            signer=signer,
            serial=serial,
            profile=profile,
            validity_days=validity_days,
            crl_url=ca.config.crl_url,
            subject=subject,
        )
        cert_pem = serialize_certificate(cert)
        archive_path = write_atomic(ca.archive_path(serial), cert_pem)
        entry = state.record_issued(
            serial=serial,
            subject=format_subject(cert.subject),
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            name=request.safe_name,
            kind=request.kind.value,
        )

    write_atomic(request.cert_path, cert_pem)
    write_atomic(
        request.directory / SSH_PUBLIC_KEY_FILE, ssh_public_key(cert.public_key(), request.name)
    )
    request.mark_signed(serial)
    logger.info(
        "Signed %s certificate %s with serial %s",
        request.kind.value,
        request.safe_name,
        format_serial(serial),
        extra={
            "ca": ca.config.label,
            "serial": format_serial(serial),
            "request": f"{request.kind.value}/{request.safe_name}",
        },
    )
    return SignResult(
        serial=serial,
        serial_hex=entry.serial_hex,
        cert_path=request.cert_path,
        archive_path=archive_path,
        subject=entry.subject,
    )
