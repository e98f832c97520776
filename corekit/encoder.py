"""Repeating-key XOR encoding with a base64 text form."""

from __future__ import annotations

import base64
import binascii

from corekit.errors import CodedError


class Base64DecodeError(CodedError, ValueError):
    """Raised when encoded text is not valid base64."""

    def __init__(self, message: str = "base64 decode error", *, cause: BaseException | None = None) -> None:
        super().__init__("encoder.base64_decode", message, cause=cause)


def _xor(key: bytes, data: bytes) -> bytes:
    key_len = len(key)
    return bytes(byte ^ key[index % key_len] for index, byte in enumerate(data))


class Encoder:
    """Encodes bytes by XOR with a repeating key."""

    def __init__(self, key: bytes) -> None:
        if not key:
            raise ValueError("encoder key must not be empty")
        self.key = bytes(key)

    def encode(self, data: bytes) -> bytes:
        return _xor(self.key, data)

    def decode(self, data: bytes) -> bytes:
        return _xor(self.key, data)

    def encode_string(self, data: str) -> str:
        """Encode text and return it as base64."""
        encrypted = self.encode(data.encode("utf-8"))
        return base64.b64encode(encrypted).decode("ascii")

    def decode_string(self, data: str) -> str:
        """Decode base64 text produced by :meth:`encode_string`."""
        try:
            raw = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as err:
            raise Base64DecodeError(f"base64 decode error: {err}", cause=err) from err
        return self.decode(raw).decode("utf-8", errors="surrogateescape")