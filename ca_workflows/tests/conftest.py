"""Test fixtures for ca_workflows tests."""

from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from ca_workflows.lib.ca_directory import CADirectory
from ca_workflows.lib.cert_request import CertificateRequest
from ca_workflows.lib.cert_utils import generate_private_key, serialize_private_key
from ca_workflows.lib.certificate_builder import CertificateBuilder
from ca_workflows.lib.config import CAConfig, DistinguishedName
from ca_workflows.lib.key_source import SoftwareKeySource
from ca_workflows.tests.fakes import FakeTokenBackend


@pytest.fixture
def temp_output_dir(tmp_path: Path) -> Path:
    """Scratch directory holding CA directories and key files."""
    return tmp_path


@pytest.fixture
def ca_config() -> CAConfig:
    """CA settings for label acme with short lifetimes."""
    return CAConfig(
        label="acme",
        domain="acme.example.com",
        country="GB",
        state="London",
        locality="London",
        organization="Test Org",
        organizational_unit="Test Unit",
        root_validity_years=1,
        intermediate_validity_years=1,
        client_validity_days=30,
        server_validity_days=30,
        crl_validity_days=7,
        key_size=2048,
    )


@pytest.fixture
def root_key() -> RSAPrivateKey:
    """Issuer key for builder-level tests."""
    return generate_private_key(key_size=2048)


@pytest.fixture
def root_signer(root_key: RSAPrivateKey) -> SoftwareKeySource:
    """Wrap the root key as an in-memory key source."""
    return SoftwareKeySource(root_key)


@pytest.fixture
def root_dn() -> DistinguishedName:
    """Subject used for the standalone root certificate."""
    return DistinguishedName(
        country="GB",
        state="London",
        locality="London",
        organization="Test Org",
        organizational_unit="Test Unit",
        common_name="Test Root CA",
    )


@pytest.fixture
def root_cert(root_signer: SoftwareKeySource, root_dn: DistinguishedName) -> x509.Certificate:
    """Self-signed root built without a CA directory."""
    return CertificateBuilder.build_root_ca(
        subject_dn=root_dn,
        signer=root_signer,
        validity_years=1,
    )


@pytest.fixture
def client_key() -> RSAPrivateKey:
    """Key pair behind the client CSR."""
    return generate_private_key(key_size=2048)


@pytest.fixture
def client_dn() -> DistinguishedName:
    """Subject for alice@example.com."""
    return DistinguishedName(
        country="GB",
        state="London",
        locality="London",
        organization="Test Org",
        organizational_unit="Test Unit",
        common_name="alice@example.com",
    )


@pytest.fixture
def client_csr(
    client_key: RSAPrivateKey,
    client_dn: DistinguishedName,
) -> x509.CertificateSigningRequest:
    """CSR for alice signed with her own key."""
    return (
        x509.CertificateSigningRequestBuilder()
        .subject_name(client_dn.to_x509_name())
        .sign(client_key, hashes.SHA256())
    )


@pytest.fixture
def root_ca(temp_output_dir: Path, ca_config: CAConfig) -> CADirectory:
    """Initialize root CA 'acme' on disk."""
    return CADirectory.initialize(temp_output_dir / "acme", ca_config)


@pytest.fixture
def key_file(temp_output_dir: Path) -> Path:
    """Write an externally supplied RSA key to disk."""
    path = temp_output_dir / "external.key"
    path.write_bytes(serialize_private_key(generate_private_key(key_size=2048)))
    return path


@pytest.fixture
def token_backend() -> FakeTokenBackend:
    """Return token backend with a key in slot 9c."""
    backend = FakeTokenBackend()
    backend.add_slot("9c")
    return backend


@pytest.fixture
def pending_client(root_ca: CADirectory) -> CertificateRequest:
    """Client request for alice@example.com moved to PENDING."""
    request = CertificateRequest.draft(
        root_ca, name="alice@example.com", kind="client", email="alice@example.com"
    )
    request.submit()
    return request


@pytest.fixture
def pending_server(root_ca: CADirectory) -> CertificateRequest:
    """Server request for *.example.com moved to PENDING."""
    request = CertificateRequest.draft(root_ca, name="*.example.com", kind="server")
    request.submit()
    return request
