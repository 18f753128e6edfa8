"""Test doubles shared across test modules."""

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.asymmetric.types import PublicKeyTypes

from ca_workflows.lib.cert_utils import generate_private_key
from ca_workflows.lib.errors import KeyUnavailableError


class FakeTokenBackend:
    """In-memory token: slot -> private key, with a record of signing calls."""

    def __init__(self) -> None:
        self.keys: dict[str, RSAPrivateKey] = {}
        self.sign_calls: list[str] = []

    def add_slot(self, slot: str, key_size: int = 2048) -> RSAPrivateKey:
        key = generate_private_key(key_size)
        self.keys[slot] = key
        return key

    def public_key(self, slot: str) -> PublicKeyTypes:
        if slot not in self.keys:
            raise KeyUnavailableError(f"no key in slot {slot}")
        return self.keys[slot].public_key()

    def sign(self, slot: str, builder):
        if slot not in self.keys:
            raise KeyUnavailableError(f"no key in slot {slot}")
        self.sign_calls.append(slot)
        return builder.sign(self.keys[slot], hashes.SHA256())
