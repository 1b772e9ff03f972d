"""
Selective-disclosure token verifier.

Verifies the issuer signature on the token envelope and turns a presented
token into a ``VerificationOutcome`` carrying everything an attestation
needs.

Supported:
- Algorithm: ES256 (ECDSA P-256 / SHA-256), raw r||s signature encoding
- DID Method: did:web
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from sd_attest.did_resolver import DIDResolver, PublicKeyJWK
from sd_attest.errors import (
    AttestError,
    IssuerMismatch,
    MalformedToken,
    SignatureInvalid,
    TokenExpired,
    TokenNotYetValid,
    UnsupportedAlgorithm,
)
from sd_attest.issuers import IssuerRegistry
from sd_attest.merkle import compute_merkle_root
from sd_attest.token import (
    b64url_decode,
    decode_envelope,
    numeric_date,
    parse_token,
    split_envelope,
)

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHM = "ES256"
P256_SIGNATURE_SIZE = 64


class VerificationStatus(Enum):
    """Overall verification status."""

    VALID = "valid"
    INVALID = "invalid"


@dataclass
class SignatureCheck:
    """Result of checking the envelope signature."""

    valid: bool
    key_id: str | None = None
    error: AttestError | None = None


@dataclass
class VerificationOutcome:
    """Outcome of verifying a presented token.

    Valid outcomes carry the fields needed to publish an attestation;
    invalid ones carry the error that stopped verification.
    """

    status: VerificationStatus
    holder_id: str = ""
    issuer_id: str = ""
    merkle_root: str = ""
    credential_reference: str = ""
    expiry: int = 0
    error: AttestError | None = None

    @classmethod
    def invalid(cls, error: AttestError) -> VerificationOutcome:
        return cls(status=VerificationStatus.INVALID, error=error)

    @property
    def is_valid(self) -> bool:
        return self.status == VerificationStatus.VALID and self.error is None

    @property
    def reason(self) -> str | None:
        return str(self.error) if self.error else None


class SDJWTVerifier:
    """Verifier for selective-disclosure tokens signed by did:web issuers."""

    def __init__(
        self,
        registry: IssuerRegistry,
        did_resolver: DIDResolver | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the verifier.

        Args:
            registry: Allow-list of accepted issuers.
            did_resolver: Custom DID resolver. Created if not provided.
            clock: Returns the current time in epoch seconds.
        """
        self.registry = registry
        self.did_resolver = did_resolver or DIDResolver()
        self.clock = clock

    def verify(self, token: str) -> VerificationOutcome:
        """Verify a presented token.

        Performs:
        1. Parsing
        2. Issuer allow-list check
        3. Signature verification against the issuer's did:web key
        4. Merkle commitment over the disclosure digests

        Returns:
            VerificationOutcome; never raises for token problems.
        """
        try:
            parsed = parse_token(token)
            self.registry.get(parsed.issuer_id)

            check = self.verify_signature(parsed.envelope, parsed.issuer_id)
            if not check.valid:
                return VerificationOutcome.invalid(check.error)

            merkle_root = compute_merkle_root(parsed.disclosure_digests)
        except AttestError as e:
            logger.warning("Token verification failed: %s: %s", type(e).__name__, e)
            return VerificationOutcome.invalid(e)

        return VerificationOutcome(
            status=VerificationStatus.VALID,
            holder_id=parsed.holder_id,
            issuer_id=parsed.issuer_id,
            merkle_root=merkle_root,
            credential_reference=parsed.credential_reference,
            expiry=parsed.expiry or 0,
        )

    def verify_signature(self, envelope: str, issuer_id: str) -> SignatureCheck:
        """Verify the envelope's header, time claims, issuer and signature.

        Checks short-circuit on the first failure, which is logged and
        returned in the SignatureCheck.
        """
        try:
            key_id = self._check_envelope(envelope, issuer_id)
        except AttestError as e:
            logger.warning("Signature check failed for %s: %s: %s", issuer_id, type(e).__name__, e)
            return SignatureCheck(valid=False, error=e)

        return SignatureCheck(valid=True, key_id=key_id)

    def _check_envelope(self, envelope: str, issuer_id: str) -> str:
        header, payload = decode_envelope(envelope)

        alg = header.get("alg")
        if alg != SUPPORTED_ALGORITHM:
            raise UnsupportedAlgorithm(f"Unsupported algorithm: {alg}")

        now = self.clock()
        exp = numeric_date(payload, "exp")
        if exp is not None and exp < now:
            raise TokenExpired(f"Token expired at {exp}")
        iat = numeric_date(payload, "iat")
        if iat is not None and iat > now:
            raise TokenNotYetValid(f"Token issued in the future at {iat}")

        if payload.get("iss") != issuer_id:
            raise IssuerMismatch(
                f"Token issuer {payload.get('iss')} does not match {issuer_id}"
            )

        kid = header.get("kid")
        if kid is not None and not isinstance(kid, str):
            raise MalformedToken("kid must be a string")

        vm, public_key = self.did_resolver.resolve_key(issuer_id, kid)

        segments = split_envelope(envelope)
        if len(segments) < 3 or not segments[2]:
            raise SignatureInvalid("Token has no signature segment")

        signing_input = f"{segments[0]}.{segments[1]}".encode("ascii")
        try:
            signature = b64url_decode(segments[2])
        except ValueError as e:
            raise MalformedToken("Signature segment is not base64url") from e

        if not self._verify_signature(signing_input, signature, public_key):
            raise SignatureInvalid(f"Signature does not verify against {vm.id}")

        return vm.id

    def _verify_signature(
        self,
        message: bytes,
        signature: bytes,
        public_key: PublicKeyJWK,
    ) -> bool:
        """Verify a raw r||s ECDSA P-256 signature.

        JWS carries the fixed-size encoding; cryptography expects DER, so the
        two halves are re-encoded before verifying. DER input is rejected.
        """
        if len(signature) != P256_SIGNATURE_SIZE:
            return False

        r = int.from_bytes(signature[:32], byteorder="big")
        s = int.from_bytes(signature[32:], byteorder="big")
        der_sig = encode_dss_signature(r, s)

        try:
            self._jwk_to_ec_public_key(public_key).verify(
                der_sig,
                message,
                ec.ECDSA(hashes.SHA256()),
            )
        except InvalidSignature:
            return False
        return True

    def _jwk_to_ec_public_key(self, jwk: PublicKeyJWK) -> ec.EllipticCurvePublicKey:
        """Convert a P-256 JWK to an EC public key object."""
        try:
            x = int.from_bytes(b64url_decode(jwk.x), byteorder="big")
            y = int.from_bytes(b64url_decode(jwk.y), byteorder="big")
            public_numbers = ec.EllipticCurvePublicNumbers(x, y, ec.SECP256R1())
            return public_numbers.public_key()
        except ValueError as e:
            raise SignatureInvalid(f"Issuer key is not a valid P-256 point: {e}") from e
