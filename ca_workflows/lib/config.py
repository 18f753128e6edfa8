"""CA configuration dataclasses."""

from dataclasses import asdict, dataclass, fields
from typing import Any

from cryptography import x509
from cryptography.x509 import oid

from .errors import InputValidationError
from .naming import normalize_label


@dataclass
class CAConfig:
    """CA identity, subject template defaults and validity settings.

    Persisted as ``ca.json`` in the CA directory and passed explicitly to
    every request and signing operation.
    """

    label: str
    domain: str
    country: str = "GB"
    state: str = "London"
    locality: str = "London"
    organization: str = "Example Org"
    organizational_unit: str = "Engineering"
    root_validity_years: int = 10
    intermediate_validity_years: int = 5
    client_validity_days: int = 395
    server_validity_days: int = 395
    crl_validity_days: int = 30
    key_size: int = 4096

    def validate(self) -> "CAConfig":
        """Check required identity fields and normalize the label.

        Returns:
            Self, with the label normalized

        Raises:
            InputValidationError: If domain or label is missing
        """
        if not self.domain or not self.domain.strip():
            raise InputValidationError("no domain supplied")
        self.domain = self.domain.strip().lower()
        self.label = normalize_label(self.label or "")
        return self

    @property
    def crl_url(self) -> str:
        """CRL distribution point embedded in every certificate this CA issues."""
        return f"http://{self.domain}/crl/{self.label}.crl"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CAConfig":
        """Build config from persisted JSON, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class SubjectOverrides:
    """Per-request subject fields; unset fields inherit the CA default."""

    country: str | None = None
    state: str | None = None
    locality: str | None = None
    organization: str | None = None
    organizational_unit: str | None = None

    def to_dict(self) -> dict[str, str]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class DistinguishedName:
    """X.509 Subject Distinguished Name."""

    country: str
    state: str
    locality: str
    organization: str
    organizational_unit: str
    common_name: str

    def to_x509_name(self) -> x509.Name:
        """Convert to cryptography x509.Name, skipping empty fields."""
        pairs = [
            (oid.NameOID.COUNTRY_NAME, self.country),
            (oid.NameOID.STATE_OR_PROVINCE_NAME, self.state),
            (oid.NameOID.LOCALITY_NAME, self.locality),
            (oid.NameOID.ORGANIZATION_NAME, self.organization),
            (oid.NameOID.ORGANIZATIONAL_UNIT_NAME, self.organizational_unit),
            (oid.NameOID.COMMON_NAME, self.common_name),
        ]
        return x509.Name([x509.NameAttribute(o, v) for o, v in pairs if v])


def resolve_subject(
    config: CAConfig,
    overrides: SubjectOverrides | None,
    common_name: str,
) -> DistinguishedName:
    """Merge request overrides onto the CA subject defaults field by field.

    Args:
        config: CA configuration holding the defaults
        overrides: Request-specific fields, or None
        common_name: CN for the certificate subject

    Returns:
        Effective distinguished name
    """
    overrides = overrides or SubjectOverrides()

    def pick(field_name: str) -> str:
        value = getattr(overrides, field_name)
        return value if value is not None else getattr(config, field_name)

    return DistinguishedName(
        country=pick("country"),
        state=pick("state"),
        locality=pick("locality"),
        organization=pick("organization"),
        organizational_unit=pick("organizational_unit"),
        common_name=common_name,
    )
