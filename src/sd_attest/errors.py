"""
Error taxonomy for token verification, sessions and attestations.

Every failure a request can hit is an ``AttestError`` subclass with a stable
``code``. Errors are raised where they are detected and mapped to a failure
object only at the request-handling boundary (``VerificationService``).
"""

from __future__ import annotations


class AttestError(Exception):
    """Base class for all sd-attest errors."""

    code = "attest_error"


class MalformedToken(AttestError):
    """Raised when a selective-disclosure token cannot be parsed."""

    code = "malformed_token"


class DIDResolutionError(AttestError):
    """Raised when an issuer's key material cannot be resolved."""

    code = "did_resolution_error"


class UnsupportedIssuerMethod(DIDResolutionError):
    """Raised for issuer identifiers that are not did:web."""

    code = "unsupported_issuer_method"


class KeyResolutionFailed(DIDResolutionError):
    """Raised when the DID document cannot be fetched or decoded."""

    code = "key_resolution_failed"


class NoVerificationMethod(DIDResolutionError):
    """Raised when the DID document lists no verification methods."""

    code = "no_verification_method"


class UnsupportedKeyType(DIDResolutionError):
    """Raised when the selected key is not an EC P-256 JWK."""

    code = "unsupported_key_type"


class UnsupportedAlgorithm(AttestError):
    code = "unsupported_algorithm"


class TokenExpired(AttestError):
    code = "token_expired"


class TokenNotYetValid(AttestError):
    code = "token_not_yet_valid"


class IssuerMismatch(AttestError):
    code = "issuer_mismatch"


class SignatureInvalid(AttestError):
    code = "signature_invalid"


class UnsupportedIssuer(AttestError):
    """Raised when an issuer is not in the known-issuer allow-list."""

    code = "unsupported_issuer"


class SessionNotFound(AttestError):
    code = "session_not_found"


class InvalidState(AttestError):
    code = "invalid_state"


class HolderMismatch(AttestError):
    code = "holder_mismatch"


class LedgerUnavailable(AttestError):
    """Raised by ledger collaborators when a read or write cannot complete."""

    code = "ledger_unavailable"


class AttestationExists(AttestError):
    """Raised by ``Ledger.create`` when the attestation address is already taken."""

    code = "attestation_exists"
