"""Base58 public keys and keypair files."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from os import PathLike
from typing import Union

_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_INDEX = {char: value for value, char in enumerate(_ALPHABET)}

PUBKEY_LENGTH = 32
KEYPAIR_LENGTH = 64
_MAX_PUBKEY_TEXT = 44


def b58encode(data: bytes) -> str:
    """Encode bytes as base58 text, keeping leading zero bytes as '1'."""
    data = bytes(data)
    number = int.from_bytes(data, "big")
    digits = []
    while number:
        number, remainder = divmod(number, 58)
        digits.append(_ALPHABET[remainder])
    padding = len(data) - len(data.lstrip(b"\x00"))
    return "1" * padding + "".join(reversed(digits))


def b58decode(text: str) -> bytes:
    """Decode base58 text into bytes; raise ValueError on a bad character."""
    number = 0
    for char in text:
        try:
            number = number * 58 + _INDEX[char]
        except KeyError:
            raise ValueError(f"invalid base58 character: {char!r}") from None
    padding = len(text) - len(text.lstrip("1"))
    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    return b"\x00" * padding + body


@dataclass(frozen=True, order=True)
class Pubkey:
    """A 32-byte account address."""

    raw: bytes

    def __post_init__(self) -> None:
        if len(self.raw) != PUBKEY_LENGTH:
            raise ValueError(
                f"public key must be {PUBKEY_LENGTH} bytes, got {len(self.raw)}"
            )
        object.__setattr__(self, "raw", bytes(self.raw))

    @classmethod
    def from_string(cls, text: str) -> "Pubkey":
        """Parse a base58 address."""
        if len(text) > _MAX_PUBKEY_TEXT:
            raise ValueError("public key text is too long")
        return cls(b58decode(text))

    def __str__(self) -> str:
        return b58encode(self.raw)

    def __bytes__(self) -> bytes:
        return self.raw


@dataclass(frozen=True)
class Keypair:
    """A 64-byte signing keypair: the private half followed by the public half."""

    raw: bytes = field(repr=False)

    def __post_init__(self) -> None:
        if len(self.raw) != KEYPAIR_LENGTH:
            raise ValueError(
                f"keypair must be {KEYPAIR_LENGTH} bytes, got {len(self.raw)}"
            )
        object.__setattr__(self, "raw", bytes(self.raw))

    def pubkey(self) -> Pubkey:
        """The public key of this keypair."""
        return Pubkey(self.raw[PUBKEY_LENGTH:])


def read_keypair_file(path: Union[str, "PathLike[str]"]) -> Keypair:
    """Read a keypair stored as a JSON array of 64 byte values."""
    with open(path, encoding="utf-8") as handle:
        try:
            values = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ValueError(f"keypair file is not valid JSON: {exc}") from exc
    if not isinstance(values, list):
        raise ValueError("keypair file must hold a JSON array")
    if not all(isinstance(v, int) and not isinstance(v, bool) and 0 <= v <= 255
               for v in values):
        raise ValueError("keypair file must hold byte values 0-255")
    return Keypair(bytes(values))