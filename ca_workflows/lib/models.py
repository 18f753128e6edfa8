"""Result models for CA operations."""

from dataclasses import dataclass
from pathlib import Path


@dataclass
class InitResult:
    """Result from CA initialization or import.

    Contains the CA directory, its certificate path and serial.
    """

    ca_dir: Path
    cert_path: Path
    key_reference: dict[str, str]
    serial: str
    parent_serial: int | None = None


@dataclass
class RequestResult:
    """Result from moving a request to PENDING."""

    request_dir: Path
    safe_name: str
    csr_path: Path
    key_path: Path | None
    ssh_public_key_path: Path


@dataclass
class SignResult:
    """Result from signing a request.

    Contains paths to the issued certificate and its archive copy.
    """

    serial: int
    serial_hex: str
    cert_path: Path
    archive_path: Path
    subject: str


@dataclass
class RevokeResult:
    serial: int
    serial_hex: str
    revoked_at: str


@dataclass
class CRLResult:
    """Result from building a CRL."""

    crl_number: int
    revoked_serials: list[int]
    pem_path: Path
    der_path: Path
    archive_path: Path
