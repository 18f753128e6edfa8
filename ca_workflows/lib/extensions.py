"""Extension profiles for CA, client and server certificates."""

from dataclasses import dataclass, field

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.types import PublicKeyTypes
from cryptography.x509.oid import ExtendedKeyUsageOID


@dataclass(frozen=True)
class RootCAProfile:
    """Self-signed root: unlimited path length."""


@dataclass(frozen=True)
class IntermediateCAProfile:
    """Signing CA issued by a parent: may only sign end-entity certificates."""


@dataclass(frozen=True)
class ClientProfile:
    """TLS client auth; email embedded as subjectAltName."""

    email: str


@dataclass(frozen=True)
class ServerProfile:
    """TLS server auth; DNS names embedded as subjectAltName."""

    dns_names: tuple[str, ...] = field(default_factory=tuple)


ExtensionProfile = RootCAProfile | IntermediateCAProfile | ClientProfile | ServerProfile


def _key_usage(*, ca: bool) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=not ca,
        content_commitment=False,
        key_encipherment=not ca,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=ca,
        crl_sign=ca,
        encipher_only=False,
        decipher_only=False,
    )


def build_extensions(
    profile: ExtensionProfile,
    public_key: PublicKeyTypes,
    issuer_public_key: PublicKeyTypes | None = None,
    crl_url: str | None = None,
) -> list[tuple[x509.ExtensionType, bool]]:
    """Build the typed extension set for a profile.

    Args:
        profile: Which kind of certificate is being issued
        public_key: Subject public key (for SubjectKeyIdentifier)
        issuer_public_key: Issuer public key (for AuthorityKeyIdentifier)
        crl_url: CRL distribution point of the issuing CA

    Returns:
        List of (extension, critical) pairs in the order they are added
    """
    extensions: list[tuple[x509.ExtensionType, bool]] = []

    match profile:
        case RootCAProfile():
            extensions.append((x509.BasicConstraints(ca=True, path_length=None), True))
            extensions.append((_key_usage(ca=True), True))
        case IntermediateCAProfile():
            extensions.append((x509.BasicConstraints(ca=True, path_length=0), True))
            extensions.append((_key_usage(ca=True), True))
        case ClientProfile(email=email):
            extensions.append((x509.BasicConstraints(ca=False, path_length=None), True))
            extensions.append((_key_usage(ca=False), True))
            extensions.append((x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CLIENT_AUTH]), False))
            extensions.append((x509.SubjectAlternativeName([x509.RFC822Name(email)]), False))
        case ServerProfile(dns_names=dns_names):
            extensions.append((x509.BasicConstraints(ca=False, path_length=None), True))
            extensions.append((_key_usage(ca=False), True))
            extensions.append((x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), False))
            if dns_names:
                extensions.append(
                    (x509.SubjectAlternativeName([x509.DNSName(n) for n in dns_names]), False)
                )
        case _:
            raise TypeError(f"unknown extension profile: {profile!r}")

    extensions.append((x509.SubjectKeyIdentifier.from_public_key(public_key), False))
    if issuer_public_key is not None:
        extensions.append(
            (x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_public_key), False)
        )
    if crl_url:
        extensions.append(
            (
                x509.CRLDistributionPoints(
                    [
                        x509.DistributionPoint(
                            full_name=[x509.UniformResourceIdentifier(crl_url)],
                            relative_name=None,
                            reasons=None,
                            crl_issuer=None,
                        )
                    ]
                ),
                False,
            )
        )
    return extensions
