"""Certificate utility functions for key generation, serialization, and subject handling."""

import uuid

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.asymmetric.types import (
    CertificateIssuerPrivateKeyTypes,
    PublicKeyTypes,
)
from cryptography.x509.oid import NameOID

SUBJECT_FIELDS = {
    "country": NameOID.COUNTRY_NAME,
    "state": NameOID.STATE_OR_PROVINCE_NAME,
    "locality": NameOID.LOCALITY_NAME,
    "organization": NameOID.ORGANIZATION_NAME,
    "organizational_unit": NameOID.ORGANIZATIONAL_UNIT_NAME,
}

ISSUER_KEY_TYPES = (
    rsa.RSAPrivateKey,
    ec.EllipticCurvePrivateKey,
    ed25519.Ed25519PrivateKey,
    ed448.Ed448PrivateKey,
)


def generate_private_key(key_size: int = 4096) -> RSAPrivateKey:
    """Generate RSA private key with specified size."""
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def serialize_private_key(key: CertificateIssuerPrivateKeyTypes) -> bytes:
    """Serialize private key to PEM format (PKCS8, no encryption)."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def deserialize_private_key(pem_data: bytes) -> CertificateIssuerPrivateKeyTypes:
    """Deserialize signing-capable private key from PEM bytes.

    Raises:
        ValueError: If the PEM is malformed or the key cannot sign certificates
    """
    key = serialization.load_pem_private_key(pem_data, password=None)
    if not isinstance(key, ISSUER_KEY_TYPES):
        raise ValueError(f"unsupported private key type: {type(key).__name__}")
    return key


def serialize_public_key(key: PublicKeyTypes) -> bytes:
    """Serialize public key to PEM SubjectPublicKeyInfo."""
    return key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def serialize_certificate(cert: x509.Certificate) -> bytes:
    """Serialize certificate to PEM format."""
    return cert.public_bytes(serialization.Encoding.PEM)


def deserialize_certificate(pem_data: bytes) -> x509.Certificate:
    """Deserialize certificate from PEM bytes."""
    return x509.load_pem_x509_certificate(pem_data)


def serialize_csr(csr: x509.CertificateSigningRequest) -> bytes:
    """Serialize CSR to PEM format."""
    return csr.public_bytes(serialization.Encoding.PEM)


def deserialize_csr(pem_data: bytes) -> x509.CertificateSigningRequest:
    """Deserialize CSR from PEM bytes."""
    return x509.load_pem_x509_csr(pem_data)


def serialize_crl(crl: x509.CertificateRevocationList, der: bool = False) -> bytes:
    """Serialize CRL to PEM, or DER for publication."""
    encoding = serialization.Encoding.DER if der else serialization.Encoding.PEM
    return crl.public_bytes(encoding)


def deserialize_crl(pem_data: bytes) -> x509.CertificateRevocationList:
    """Deserialize CRL from PEM bytes."""
    return x509.load_pem_x509_crl(pem_data)


def generate_serial_number() -> int:
    """Generate a random 128-bit serial number from UUID4.

    Used only for self-signed and imported CA certificates, which are not
    tracked by any Index Store.
    """
    return uuid.uuid4().int


def format_subject(name: x509.Name) -> str:
    """Render name in OpenSSL one-line form, e.g. ``/C=GB/O=Acme/CN=alice``."""
    parts = []
    for attribute in name:
        value = attribute.value
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        parts.append(f"{attribute.rfc4514_attribute_name}={value}")
    return "/" + "/".join(parts)


def get_common_name(name: x509.Name) -> str:
    """Return the first CN of name, or an empty string."""
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attrs:
        return ""
    value = attrs[0].value
    return value if isinstance(value, str) else value.decode("utf-8")


def read_subject_fields(cert: x509.Certificate) -> dict[str, str]:
    """Read subject template fields back from a certificate.

    Used when importing an externally issued CA certificate so its subject
    becomes the default for certificates it signs.

    Returns:
        Mapping of CAConfig field names to values, empty when absent
    """
    result: dict[str, str] = {}
    for field_name, name_oid in SUBJECT_FIELDS.items():
        attrs = cert.subject.get_attributes_for_oid(name_oid)
        value = attrs[0].value if attrs else ""
        result[field_name] = value if isinstance(value, str) else value.decode("utf-8")
    return result


def ssh_public_key(public_key: PublicKeyTypes, comment: str = "") -> bytes:
    """Return OpenSSH ``authorized_keys`` form of public_key.

    Raises:
        ValueError: If the key type has no OpenSSH encoding
    """
    line = public_key.public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    )
    if comment:
        line += b" " + comment.encode("utf-8")
    return line + b"\n"


def keys_match(first: PublicKeyTypes, second: PublicKeyTypes) -> bool:
    """Compare two public keys by their SubjectPublicKeyInfo encoding."""
    return serialize_public_key(first) == serialize_public_key(second)


def create_chain_bundle(*cert_pems: bytes) -> bytes:
    """Concatenate PEM certificates, leaf-most first."""
    return b"\n".join(pem.strip() for pem in cert_pems) + b"\n"


def validate_certificate_chain(*chain: x509.Certificate) -> bool:
    """Verify each certificate is directly issued by the next one.

    Returns True if chain is valid, False otherwise.
    """
    try:
        for cert, issuer in zip(chain, chain[1:]):
            cert.verify_directly_issued_by(issuer)
        return True
    except (InvalidSignature, ValueError, TypeError):
        return False


def validate_csr_signature(csr: x509.CertificateSigningRequest) -> bool:
    """Verify CSR self-signature to prove private key possession.

    Returns:
        True if signature is valid, False otherwise
    """
    try:
        return csr.is_signature_valid
    except Exception:
        return False
