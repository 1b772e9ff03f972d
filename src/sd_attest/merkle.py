"""
Merkle commitment over disclosure digests.

The root is what gets published on-chain in place of the disclosed claims.
The tree shape must stay bit-for-bit compatible with attestations that are
already published:

- no digests      -> ""
- one digest      -> that digest's bytes, hex encoded (not hashed)
- several digests -> SHA-256 over adjacent pairs, level by level. An
  unpaired last node is promoted to the next level unchanged; it is
  neither duplicated nor hashed on its own.
"""

from __future__ import annotations

import binascii
import hashlib
from collections.abc import Sequence

from sd_attest.errors import MalformedToken
from sd_attest.token import b64url_decode


def strip_algorithm_tag(digest: str) -> str:
    """Remove an ``<alg>:`` prefix such as ``sha-256:``."""
    _, sep, value = digest.partition(":")
    return value if sep else digest


def digest_bytes(digest: str) -> bytes:
    try:
        return b64url_decode(strip_algorithm_tag(digest))
    except (ValueError, binascii.Error) as e:
        raise MalformedToken(f"Disclosure digest is not base64url: {digest!r}") from e


def hash_pair(left: bytes, right: bytes) -> bytes:
    return hashlib.sha256(left + right).digest()


def next_level(level: Sequence[bytes]) -> list[bytes]:
    """Fold one tree level into the next."""
    parent: list[bytes] = []
    for i in range(0, len(level), 2):
        if i + 1 < len(level):
            parent.append(hash_pair(level[i], level[i + 1]))
        else:
            parent.append(level[i])
    return parent


def compute_merkle_root(digests: Sequence[str]) -> str:
    """Compute the hex Merkle root of an ordered list of disclosure digests.

    Raises:
        MalformedToken: If a digest is not valid base64url.
    """
    if not digests:
        return ""

    level = [digest_bytes(d) for d in digests]
    while len(level) > 1:
        level = next_level(level)

    return level[0].hex()
