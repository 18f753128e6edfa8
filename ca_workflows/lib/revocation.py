"""Revocation and CRL generation."""

import logging
from datetime import UTC, datetime

from .ca_directory import CADirectory
from .cert_utils import serialize_crl
from .certificate_builder import CertificateBuilder
from .errors import NotFoundError
from .index_store import CertStatus
from .models import CRLResult, RevokeResult
from .naming import format_serial, safe_name
from .storage import write_atomic

logger = logging.getLogger(__name__)


def revoke(ca: CADirectory, serial: int, when: datetime | None = None) -> RevokeResult:
    """Mark a certificate revoked in the CA's Index Store.

    Does not build a CRL; call build_crl when the result should be published.

    Raises:
        NotFoundError: If serial was never issued by this CA
        AlreadyRevokedError: If the certificate is already revoked
    """
    when = when or datetime.now(UTC)
    with ca.index.transaction() as state:
        entry = state.revoke(serial, when)
    logger.info(
        "Revoked certificate %s (%s)",
        entry.serial_hex,
        entry.subject,
        extra={"ca": ca.config.label, "serial": entry.serial_hex},
    )
    return RevokeResult(
        serial=entry.serial,
        serial_hex=entry.serial_hex,
        revoked_at=when.isoformat(),
    )


def revoke_by_name(ca: CADirectory, kind: str, name: str) -> RevokeResult:
    """Revoke the valid certificate issued under a request name.

    Raises:
        NotFoundError: If no valid certificate carries that name
    """
    normalized = safe_name(name)
    valid = [e for e in ca.index.find(normalized, kind) if e.status is CertStatus.VALID]
    if not valid:
        raise NotFoundError(f"no valid {kind} certificate named {normalized}")
    return revoke(ca, valid[-1].serial)


def build_crl(ca: CADirectory) -> CRLResult:
    """Build, sign and write a CRL of every revoked certificate.

    Each call consumes a new CRL number, even when the revoked set is
    unchanged, so only build a CRL that is going to be published.

    Writes ``crl/<label>-<number>.pem`` (kept), plus ``crl/<label>.crl.pem``
    and ``crl/<label>.crl`` (DER) as the current CRL.
    """
    issuer_cert = ca.certificate
    signer = ca.key_source
    label = ca.config.label

    with ca.index.transaction() as state:
        revoked = state.revoked_entries()
        crl_number = state.take_crl_serial()
        crl = CertificateBuilder.build_crl(
            issuer_cert=issuer_cert,
            signer=signer,
            revoked=[(e.serial, e.revoked_at) for e in revoked if e.revoked_at is not None],
            crl_number=crl_number,
            validity_days=ca.config.crl_validity_days,
        )
        archive_path = write_atomic(
            ca.crl_dir / f"{label}-{format_serial(crl_number)}.pem", serialize_crl(crl)
        )

    pem_path = write_atomic(ca.crl_dir / f"{label}.crl.pem", serialize_crl(crl))
    der_path = write_atomic(ca.crl_dir / f"{label}.crl", serialize_crl(crl, der=True))
    logger.info(
        "Built CRL %s with %d revoked certificates",
        format_serial(crl_number),
        len(revoked),
        extra={"ca": label},
    )
    return CRLResult(
        crl_number=crl_number,
        revoked_serials=[e.serial for e in revoked],
        pem_path=pem_path,
        der_path=der_path,
        archive_path=archive_path,
    )
