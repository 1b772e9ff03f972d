"""
sd-attest - verify selective-disclosure credentials and publish attestations.

Supports:
- Selective-disclosure JWT tokens (<jwt>~<disclosure>~...)
- ES256 (ECDSA P-256) signatures with did:web issuer keys
- Merkle commitments over disclosure digests
- Idempotent on-ledger attestations with singleton and multi-instance issuers
"""

from sd_attest.did_resolver import DIDResolver
from sd_attest.errors import AttestError, DIDResolutionError
from sd_attest.issuers import IssuerClass, IssuerPolicy, IssuerRegistry
from sd_attest.merkle import compute_merkle_root
from sd_attest.publisher import AttestationPublisher, PublishResult, PublishStatus
from sd_attest.service import VerificationService
from sd_attest.sessions import SessionStore
from sd_attest.token import SelectiveDisclosureToken, parse_token
from sd_attest.verifier import SDJWTVerifier, VerificationOutcome, VerificationStatus

__version__ = "0.1.0"

__all__ = [
    "AttestError",
    "AttestationPublisher",
    "DIDResolutionError",
    "DIDResolver",
    "IssuerClass",
    "IssuerPolicy",
    "IssuerRegistry",
    "PublishResult",
    "PublishStatus",
    "SDJWTVerifier",
    "SelectiveDisclosureToken",
    "SessionStore",
    "VerificationOutcome",
    "VerificationService",
    "VerificationStatus",
    "compute_merkle_root",
    "parse_token",
]
