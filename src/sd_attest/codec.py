"""
Binary encodings for attestation payloads and accounts.

Two payload layouts exist in published records:

- variant A (canonical, written by this package):
  ``u32-LE len || merkle_root || u32-LE len || credential_reference``
- variant B (legacy, read only):
  ``merkle_root[32] || u32-LE len || credential_reference``

Addresses are base58 strings of 32 raw bytes.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

import base58

from sd_attest.errors import AttestError

ADDRESS_SIZE = 32
MERKLE_ROOT_SIZE = 32
ATTESTATION_DISCRIMINATOR = 2

_U32 = struct.Struct("<I")
_I64 = struct.Struct("<q")


class CodecError(AttestError, ValueError):
    """Raised when bytes or addresses do not fit the expected layout."""

    code = "codec_error"


@dataclass(frozen=True)
class AttestationData:
    merkle_root: str
    credential_reference: str

    def to_dict(self) -> dict[str, str]:
        return {
            "merkleRoot": self.merkle_root,
            "credentialReference": self.credential_reference,
        }


@dataclass(frozen=True)
class AttestationAccount:
    address: str
    nonce: str
    credential: str
    schema: str
    data: bytes
    expiry: int

    def attestation_data(self) -> AttestationData:
        return decode_attestation_data(self.data)


def address_bytes(address: str) -> bytes:
    """Decode a base58 address to its 32 raw bytes."""
    try:
        raw = base58.b58decode(address)
    except ValueError as e:
        raise CodecError(f"Address is not base58: {address!r}") from e
    if len(raw) != ADDRESS_SIZE:
        raise CodecError(f"Address must be {ADDRESS_SIZE} bytes, got {len(raw)}: {address!r}")
    return raw


def encode_address(raw: bytes) -> str:
    return base58.b58encode(raw).decode("ascii")


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise CodecError(
                f"Truncated data: need {size} bytes at offset {self.offset}, have {len(self.data)}"
            )
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def u32(self) -> int:
        return _U32.unpack(self.take(_U32.size))[0]

    def i64(self) -> int:
        return _I64.unpack(self.take(_I64.size))[0]

    def sized(self) -> bytes:
        return self.take(self.u32())

    def done(self) -> bool:
        return self.offset == len(self.data)


def _sized(chunk: bytes) -> bytes:
    return _U32.pack(len(chunk)) + chunk


def encode_attestation_data(data: AttestationData) -> bytes:
    """Encode a payload in the canonical variant A layout."""
    try:
        root = bytes.fromhex(data.merkle_root)
    except ValueError as e:
        raise CodecError(f"Merkle root is not hex: {data.merkle_root!r}") from e
    return _sized(root) + _sized(data.credential_reference.encode("utf-8"))


def _decode_variant_a(raw: bytes) -> AttestationData:
    reader = _Reader(raw)
    root = reader.sized()
    reference = reader.sized()
    if not reader.done():
        raise CodecError("Trailing bytes after variant A payload")
    return AttestationData(root.hex(), reference.decode("utf-8"))


def decode_legacy_attestation_data(raw: bytes) -> AttestationData:
    """Decode a variant B payload (fixed 32-byte root)."""
    reader = _Reader(raw)
    root = reader.take(MERKLE_ROOT_SIZE)
    reference = reader.sized()
    if not reader.done():
        raise CodecError("Trailing bytes after variant B payload")
    return AttestationData(root.hex(), reference.decode("utf-8"))


def decode_attestation_data(raw: bytes) -> AttestationData:
    """Decode a payload, falling back to the legacy layout.

    Variant A is tried first and must consume the input exactly; only if
    it does not is the input read as variant B.

    Raises:
        CodecError: If neither layout fits.
    """
    try:
        return _decode_variant_a(raw)
    except (CodecError, UnicodeDecodeError):
        pass
    try:
        return decode_legacy_attestation_data(raw)
    except UnicodeDecodeError as e:
        raise CodecError("Credential reference is not UTF-8") from e


def encode_attestation_account(account: AttestationAccount) -> bytes:
    try:
        expiry = _I64.pack(account.expiry)
    except struct.error as e:
        raise CodecError(f"Expiry must be a 64-bit integer: {account.expiry!r}") from e
    return b"".join(
        [
            bytes([ATTESTATION_DISCRIMINATOR]),
            address_bytes(account.nonce),
            address_bytes(account.credential),
            address_bytes(account.schema),
            _sized(account.data),
            expiry,
        ]
    )


def decode_attestation_account(address: str, raw: bytes) -> AttestationAccount:
    """Decode the raw bytes of an attestation account.

    Raises:
        CodecError: If the bytes are not an attestation account.
    """
    reader = _Reader(raw)
    discriminator = reader.take(1)[0]
    if discriminator != ATTESTATION_DISCRIMINATOR:
        raise CodecError(f"Not an attestation account (discriminator {discriminator})")
    nonce = encode_address(reader.take(ADDRESS_SIZE))
    credential = encode_address(reader.take(ADDRESS_SIZE))
    schema = encode_address(reader.take(ADDRESS_SIZE))
    data = reader.sized()
    expiry = reader.i64()
    return AttestationAccount(
        address=address,
        nonce=nonce,
        credential=credential,
        schema=schema,
        data=data,
        expiry=expiry,
    )
