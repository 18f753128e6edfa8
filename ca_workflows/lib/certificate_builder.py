"""Certificate builder for X.509 certificate and CRL construction."""

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from cryptography import x509

from .cert_utils import generate_serial_number, validate_csr_signature
from .config import DistinguishedName
from .errors import PolicyViolationError
from .extensions import (
    ExtensionProfile,
    IntermediateCAProfile,
    RootCAProfile,
    build_extensions,
)
from .key_source import KeySource


def _add_extensions(
    builder: x509.CertificateBuilder,
    extensions: list[tuple[x509.ExtensionType, bool]],
) -> x509.CertificateBuilder:
    for extension, critical in extensions:
        builder = builder.add_extension(extension, critical=critical)
    return builder


class CertificateBuilder:
    """Builds X.509 certificates for the CA hierarchy, end entities and CRLs."""

    @staticmethod
    def build_root_ca(
        subject_dn: DistinguishedName,
        signer: KeySource,
        validity_years: int,
    ) -> x509.Certificate:
        """Build self-signed Root CA certificate.

        The root's own serial is random; the Index Store only tracks
        certificates the CA issues.

        Args:
            subject_dn: Distinguished name for certificate subject
            signer: Key source holding the root private key
            validity_years: Certificate validity period in years

        Returns:
            Self-signed X.509 certificate with CA extensions
        """
        subject = subject_dn.to_x509_name()
        public_key = signer.public_key()
        not_before = datetime.now(UTC)
        not_after = not_before + timedelta(days=validity_years * 365)

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(public_key)
            .serial_number(generate_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
        )
        builder = _add_extensions(
            builder,
            build_extensions(RootCAProfile(), public_key, issuer_public_key=public_key),
        )
        return signer.sign(builder)

    @staticmethod
    def build_intermediate_ca(
        csr: x509.CertificateSigningRequest,
        issuer_cert: x509.Certificate,
        signer: KeySource,
        serial: int,
        validity_years: int,
        crl_url: str | None = None,
    ) -> x509.Certificate:
        """Build signing CA certificate from CSR, signed by its parent.

        Args:
            csr: Certificate signing request from the new CA
            issuer_cert: Parent CA certificate
            signer: Parent CA key source
            serial: Serial assigned by the parent's Index Store
            validity_years: Certificate validity period in years
            crl_url: Parent CRL distribution point

        Returns:
            X.509 certificate with pathlen:0 constraint

        Raises:
            PolicyViolationError: If CSR signature is invalid
        """
        return CertificateBuilder.build_certificate(
            csr=csr,
            issuer_cert=issuer_cert,
            signer=signer,
            serial=serial,
            profile=IntermediateCAProfile(),
            validity_days=validity_years * 365,
            crl_url=crl_url,
        )

    @staticmethod
    def build_certificate(
        csr: x509.CertificateSigningRequest,
        issuer_cert: x509.Certificate,
        signer: KeySource,
        serial: int,
        profile: ExtensionProfile,
        validity_days: int,
        crl_url: str | None = None,
        subject: x509.Name | None = None,
    ) -> x509.Certificate:
        """Build certificate from CSR, signed by issuer.

        The CA never sees the subject private key: the CSR proves possession
        and carries the public key.

        Args:
            csr: Certificate signing request
            issuer_cert: Issuing CA certificate
            signer: Issuing CA key source
            serial: Serial number assigned by the issuer's Index Store
            profile: Extension profile for the certificate type
            validity_days: Certificate validity period in days
            crl_url: Issuer CRL distribution point
            subject: Effective subject; defaults to the CSR subject

        Returns:
            Signed X.509 certificate

        Raises:
            PolicyViolationError: If CSR signature is invalid
        """
        if not validate_csr_signature(csr):
            raise PolicyViolationError("CSR signature validation failed")

        public_key = csr.public_key()
        not_before = datetime.now(UTC)
        not_after = not_before + timedelta(days=validity_days)

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject if subject is not None else csr.subject)
            .issuer_name(issuer_cert.subject)
            .public_key(public_key)
            .serial_number(serial)
            .not_valid_before(not_before)
            .not_valid_after(not_after)
        )
        builder = _add_extensions(
            builder,
            build_extensions(
                profile,
                public_key,
                issuer_public_key=issuer_cert.public_key(),
                crl_url=crl_url,
            ),
        )
        return signer.sign(builder)

    @staticmethod
    def build_crl(
        issuer_cert: x509.Certificate,
        signer: KeySource,
        revoked: Iterable[tuple[int, datetime]],
        crl_number: int,
        validity_days: int,
    ) -> x509.CertificateRevocationList:
        """Build CRL listing revoked serials.

        Args:
            issuer_cert: CA certificate the CRL is issued under
            signer: CA key source
            revoked: (serial, revocation time) pairs
            crl_number: Value of the CRLNumber extension
            validity_days: Days until nextUpdate

        Returns:
            Signed CRL
        """
        last_update = datetime.now(UTC)
        builder = (
            x509.CertificateRevocationListBuilder()
            .issuer_name(issuer_cert.subject)
            .last_update(last_update)
            .next_update(last_update + timedelta(days=validity_days))
            .add_extension(x509.CRLNumber(crl_number), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_cert.public_key()),
                critical=False,
            )
        )
        for serial, revoked_at in revoked:
            builder = builder.add_revoked_certificate(
                x509.RevokedCertificateBuilder()
                .serial_number(serial)
                .revocation_date(revoked_at)
                .build()
            )
        return signer.sign(builder)
