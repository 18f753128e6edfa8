"""Name normalization and serial formatting helpers."""

import re

from .errors import InputValidationError

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9-]")


def safe_name(name: str) -> str:
    """Return the filesystem-safe form of a requested identity.

    Every literal ``*`` becomes ``star``, then every character outside
    ``[A-Za-z0-9-]`` becomes ``-``. The result is the collision key for
    requests, so lookups must go through this function too.

    Examples:
        >>> safe_name("*.example.com")
        'star-example-com'
        >>> safe_name("alice@example.com")
        'alice-example-com'
    """
    return _UNSAFE_CHARS.sub("-", name.replace("*", "star"))


def normalize_label(label: str) -> str:
    """Normalize a CA label to lower-case alphanumerics and hyphens.

    Raises:
        InputValidationError: If nothing usable remains
    """
    normalized = safe_name(label.strip()).lower().strip("-")
    if not normalized:
        raise InputValidationError(f"invalid CA label: {label!r}")
    return normalized


def format_serial(serial: int) -> str:
    """Format serial as OpenSSL does: upper-case hex, even length, min two digits."""
    if serial < 0:
        raise ValueError("serial must be non-negative")
    serial_hex = f"{serial:X}"
    if len(serial_hex) % 2 != 0:
        serial_hex = "0" + serial_hex
    return serial_hex


def parse_serial(text: str) -> int:
    """Parse a hex serial such as ``01``, ``0x1F`` or ``3A:F2``.

    Raises:
        InputValidationError: If text is not a hex serial
    """
    cleaned = text.strip().replace(":", "")
    if cleaned.lower().startswith("0x"):
        cleaned = cleaned[2:]
    try:
        return int(cleaned, 16)
    except ValueError:
        raise InputValidationError(f"invalid serial number: {text!r}") from None
