"""
Deterministic attestation addresses.

An attestation lives at ``derive(b"attestation", credential, schema, nonce)``.
The nonce decides how many attestations a holder can have under a schema:

- singleton issuers use the holder address itself, so a holder has at most
  one attestation;
- multi-instance issuers use base58(SHA-256(holder_address + credential_reference)),
  one attestation per credential the holder owns.

Changing either rule moves every published attestation, so both are fixed.
"""

from __future__ import annotations

import hashlib

import base58

from sd_attest.codec import address_bytes
from sd_attest.issuers import IssuerRegistry
from sd_attest.ledger import Ledger

HOLDER_DID_PREFIX = "did:pkh:sol:"


def holder_address(holder_id: str) -> str:
    """Strip the did:pkh:sol: prefix from a holder DID."""
    if holder_id.startswith(HOLDER_DID_PREFIX):
        return holder_id[len(HOLDER_DID_PREFIX):]
    return holder_id


def multi_instance_nonce(holder_id: str, credential_reference: str) -> str:
    digest = hashlib.sha256(
        (holder_address(holder_id) + credential_reference).encode("utf-8")
    ).digest()
    return base58.b58encode(digest).decode("ascii")


def derive_credential_address(ledger: Ledger, authority: str, name: str) -> str:
    return ledger.derive_address(b"credential", address_bytes(authority), name.encode("utf-8"))


def derive_schema_address(ledger: Ledger, credential: str, name: str, version: int) -> str:
    return ledger.derive_address(
        b"schema", address_bytes(credential), name.encode("utf-8"), bytes([version])
    )


class AttestationAddressDeriver:
    """Computes attestation nonces and addresses from the issuer's class."""

    def __init__(self, ledger: Ledger, registry: IssuerRegistry) -> None:
        self.ledger = ledger
        self.registry = registry

    def nonce_for(self, holder_id: str, issuer_id: str, credential_reference: str = "") -> str:
        """Return the address-derivation nonce.

        Raises:
            UnsupportedIssuer: If the issuer is not registered.
        """
        policy = self.registry.get(issuer_id)
        if policy.is_singleton:
            return holder_address(holder_id)
        return multi_instance_nonce(holder_id, credential_reference)

    def derive_for_nonce(self, credential: str, schema: str, nonce: str) -> str:
        return self.ledger.derive_address(
            b"attestation",
            address_bytes(credential),
            address_bytes(schema),
            address_bytes(nonce),
        )

    def derive(
        self,
        credential: str,
        schema: str,
        holder_id: str,
        issuer_id: str,
        credential_reference: str = "",
    ) -> str:
        """Derive the attestation address for a holder's credential."""
        nonce = self.nonce_for(holder_id, issuer_id, credential_reference)
        return self.derive_for_nonce(credential, schema, nonce)
