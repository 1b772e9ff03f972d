"""
Selective-disclosure token parsing.

A token has the compact form ``<jwt>~<disclosure_1>~...~<disclosure_n>``.
The JWT is the issuer-signed envelope; each disclosure is a base64url
encoded JSON array ``[salt, claim_name, claim_value]`` whose digest the
envelope commits to under ``vc.credentialSubject._sd``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any

from sd_attest.errors import MalformedToken

DISCLOSURE_SEPARATOR = "~"

# Attestation expiry is stored as a signed 64-bit integer
I64_MIN = -(2**63)
I64_MAX = 2**63 - 1


def b64url_decode(data: str) -> bytes:
    """Decode base64url with or without padding.

    Raises:
        ValueError: If the input is not valid base64url.
    """
    padding = 4 - (len(data) % 4)
    if padding != 4:
        data += "=" * padding
    return base64.b64decode(data, altchars=b"-_", validate=True)


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def _decode_json_segment(segment: str, what: str) -> Any:
    try:
        return json.loads(b64url_decode(segment))
    except (ValueError, binascii.Error) as e:
        raise MalformedToken(f"Invalid {what} segment: {e}") from e


def numeric_date(payload: dict[str, Any], claim: str) -> int | None:
    """Read a NumericDate claim as whole seconds.

    Fractional values are truncated.

    Raises:
        MalformedToken: If the claim is not a number or does not fit in an i64.
    """
    value = payload.get(claim)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedToken(f"{claim} must be a NumericDate, got {value!r}")
    if not I64_MIN <= value <= I64_MAX:
        raise MalformedToken(f"{claim} is out of range: {value!r}")
    return int(value)


def _check_claim_types(payload: dict[str, Any]) -> None:
    """Reject claims whose JSON type the verifier cannot use. null counts as absent."""
    for claim in ("iss", "sub"):
        if payload.get(claim) is not None and not isinstance(payload[claim], str):
            raise MalformedToken(f"{claim} must be a string")
    numeric_date(payload, "exp")
    numeric_date(payload, "iat")

    vc = payload.get("vc")
    if vc is None:
        return
    if not isinstance(vc, dict):
        raise MalformedToken("vc must be a JSON object")
    if vc.get("id") is not None and not isinstance(vc["id"], str):
        raise MalformedToken("vc.id must be a string")

    subject = vc.get("credentialSubject")
    if subject is None:
        return
    if not isinstance(subject, dict):
        raise MalformedToken("vc.credentialSubject must be a JSON object")
    digests = subject.get("_sd")
    if digests is not None and (
        not isinstance(digests, list) or not all(isinstance(d, str) for d in digests)
    ):
        raise MalformedToken("_sd must be an array of strings")


@dataclass(frozen=True)
class Disclosure:
    """One revealable claim of a selective-disclosure token."""

    raw: str
    salt: str
    name: str
    value: Any

    @classmethod
    def decode(cls, raw: str) -> Disclosure:
        decoded = _decode_json_segment(raw, "disclosure")
        if not isinstance(decoded, list) or len(decoded) != 3:
            raise MalformedToken(
                "Disclosure must decode to a [salt, claim_name, claim_value] array"
            )
        salt, name, value = decoded
        if not isinstance(salt, str) or not isinstance(name, str):
            raise MalformedToken("Disclosure salt and claim name must be strings")
        return cls(raw=raw, salt=salt, name=name, value=value)

    def digest(self) -> str:
        """base64url(SHA-256(disclosure)), the value referenced from ``_sd``."""
        return b64url_encode(hashlib.sha256(self.raw.encode("ascii")).digest())


@dataclass(frozen=True)
class SelectiveDisclosureToken:
    """A parsed token: signed envelope, disclosures and decoded envelope parts."""

    envelope: str
    disclosures: tuple[str, ...]
    header: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def _vc(self) -> dict[str, Any]:
        vc = self.payload.get("vc")
        return vc if isinstance(vc, dict) else {}

    @property
    def credential_subject(self) -> dict[str, Any]:
        subject = self._vc.get("credentialSubject")
        return subject if isinstance(subject, dict) else {}

    @property
    def holder_id(self) -> str:
        return self.payload.get("sub") or ""

    @property
    def issuer_id(self) -> str:
        return self.payload.get("iss") or ""

    @property
    def credential_reference(self) -> str:
        return self._vc.get("id") or ""

    @property
    def credential_types(self) -> list[str]:
        types = self._vc.get("type", [])
        if isinstance(types, str):
            return [types]
        return list(types)

    @property
    def disclosure_digests(self) -> list[str]:
        return list(self.credential_subject.get("_sd") or [])

    @property
    def expiry(self) -> int | None:
        return numeric_date(self.payload, "exp")

    @property
    def issued_at(self) -> int | None:
        return numeric_date(self.payload, "iat")

    @property
    def algorithm(self) -> str | None:
        return self.header.get("alg")

    @property
    def key_id(self) -> str | None:
        return self.header.get("kid")

    def disclosed_claims(self) -> list[Disclosure]:
        return [Disclosure.decode(raw) for raw in self.disclosures]


def split_envelope(envelope: str) -> list[str]:
    """Split a compact JWT into its dot-separated segments.

    Raises:
        MalformedToken: If there are fewer than two segments.
    """
    segments = envelope.split(".")
    if len(segments) < 2:
        raise MalformedToken("Signed envelope must have at least header and payload segments")
    return segments


def decode_envelope(envelope: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """Decode the header and payload of a compact JWT without verifying it."""
    segments = split_envelope(envelope)
    header = _decode_json_segment(segments[0], "header")
    payload = _decode_json_segment(segments[1], "payload")
    if not isinstance(header, dict) or not isinstance(payload, dict):
        raise MalformedToken("JWT header and payload must be JSON objects")
    return header, payload


def parse_token(token: str) -> SelectiveDisclosureToken:
    """Parse a selective-disclosure token.

    Pure transform: nothing is verified here beyond structure.

    Args:
        token: ``<jwt>~<disclosure>~...`` compact token.

    Returns:
        The parsed SelectiveDisclosureToken.

    Raises:
        MalformedToken: If the envelope or any disclosure cannot be decoded.
    """
    if not isinstance(token, str) or not token.strip():
        raise MalformedToken("Token is empty")

    parts = token.strip().split(DISCLOSURE_SEPARATOR)
    envelope = parts[0]
    # A terminating "~" leaves an empty trailing segment
    disclosures = tuple(p for p in parts[1:] if p)

    header, payload = decode_envelope(envelope)
    _check_claim_types(payload)

    for raw in disclosures:
        Disclosure.decode(raw)

    return SelectiveDisclosureToken(
        envelope=envelope,
        disclosures=disclosures,
        header=header,
        payload=payload,
    )
