"""Helpers for the fixed-width values exchanged with the gateway contract."""

from __future__ import annotations

import re
from typing import Union

from ..recovery.errors import ValidationError
from .constants import ZERO_ADDRESS, ZERO_BYTES32

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_BYTES32_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


def normalize_address(address: str) -> str:
    """Lower-case a 0x-prefixed EVM address, rejecting malformed input."""
    value = (address or "").strip()
    if not _ADDRESS_RE.match(value):
        raise ValidationError(f"Invalid EVM address: {address!r}", code="INVALID_ADDRESS")
    return value.lower()


def is_zero_address(address: str | None) -> bool:
    return not address or address.lower() == ZERO_ADDRESS


def to_bytes32_hex(value: Union[str, bytes]) -> str:
    """Return ``value`` as a lower-case ``0x``-prefixed 32-byte hex string."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise ValidationError(
                f"Expected 32 bytes, got {len(value)}", code="INVALID_BYTES32"
            )
        return "0x" + bytes(value).hex()

    text = (value or "").strip()
    if not _BYTES32_RE.match(text):
        raise ValidationError(f"Invalid 32-byte hex value: {value!r}", code="INVALID_BYTES32")
    if not text.startswith("0x"):
        text = "0x" + text
    return text.lower()


def is_zero_bytes32(value: str | None) -> bool:
    return not value or value.lower() == ZERO_BYTES32


def encode_bytes32_string(text: str) -> str:
    """Pack a short UTF-8 string into a NUL-padded bytes32 hex value."""
    raw = text.encode("utf-8")
    if len(raw) > 31:
        raise ValidationError("String too long for bytes32", code="INVALID_BYTES32")
    return "0x" + raw.hex().ljust(64, "0")


def decode_bytes32_string(value: str) -> str:
    """Inverse of :func:`encode_bytes32_string`."""
    hex_value = to_bytes32_hex(value)[2:]
    return bytes.fromhex(hex_value).rstrip(b"\x00").decode("utf-8")


__all__ = [
    "normalize_address",
    "is_zero_address",
    "to_bytes32_hex",
    "is_zero_bytes32",
    "encode_bytes32_string",
    "decode_bytes32_string",
]
