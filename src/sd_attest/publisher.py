"""
Attestation publishing and status reads.

Writes are at most once per derived address: the address is read before
every create, and an existing record short-circuits to ``ALREADY_EXISTS``.

Multi-instance issuers have no index from holder to attestations, so their
status read scans every account of the attestation program and keeps the
records whose address re-derives from this holder and the record's own
credential reference. The cost is linear in the program's account count,
and a record published during the scan may be missed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sd_attest.addressing import (
    AttestationAddressDeriver,
    derive_credential_address,
    derive_schema_address,
)
from sd_attest.codec import (
    AttestationAccount,
    AttestationData,
    CodecError,
    decode_attestation_account,
    encode_attestation_data,
)
from sd_attest.errors import AttestationExists, AttestError
from sd_attest.issuers import IssuerPolicy, IssuerRegistry
from sd_attest.ledger import CreateAttestation, Ledger
from sd_attest.verifier import VerificationOutcome

logger = logging.getLogger(__name__)


class PublishStatus(Enum):
    CREATED = "created"
    ALREADY_EXISTS = "exists"


@dataclass
class PublishResult:
    status: PublishStatus
    address: str
    signature: str | None = None

    @property
    def handle(self) -> str:
        """Confirmation handle, or ``"exists"`` when nothing was written."""
        return self.signature if self.signature else self.status.value


@dataclass
class AttestationView:
    address: str
    data: AttestationData
    expiry: int

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "data": self.data.to_dict(), "expiry": self.expiry}


@dataclass
class SingletonStatus:
    exists: bool
    address: str
    data: AttestationData | None = None
    expiry: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "exists": self.exists,
            "address": self.address,
            "data": self.data.to_dict() if self.data else None,
            "expiry": self.expiry,
        }


@dataclass
class MultiInstanceStatus:
    attestations: list[AttestationView] = field(default_factory=list)

    @property
    def exists(self) -> bool:
        return bool(self.attestations)

    @property
    def count(self) -> int:
        return len(self.attestations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "exists": self.exists,
            "attestations": [a.to_dict() for a in self.attestations],
            "count": self.count,
        }


@dataclass
class UserPermissions:
    has_citizen_credential: bool
    has_property_credential: bool
    property_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "hasCitizenCredential": self.has_citizen_credential,
            "hasPropertyCredential": self.has_property_credential,
            "propertyCount": self.property_count,
        }


class AttestationPublisher:
    """Publishes and reads attestations through a Ledger."""

    def __init__(
        self,
        ledger: Ledger,
        registry: IssuerRegistry,
        authority: str,
        credential_name: str,
    ) -> None:
        self.ledger = ledger
        self.registry = registry
        self.deriver = AttestationAddressDeriver(ledger, registry)
        self.credential = derive_credential_address(ledger, authority, credential_name)

    def schema_address(self, policy: IssuerPolicy) -> str:
        return derive_schema_address(
            self.ledger, self.credential, policy.schema_name, policy.schema_version
        )

    def publish(self, outcome: VerificationOutcome) -> PublishResult:
        """Write the attestation for a valid verification outcome.

        Returns:
            CREATED with the confirmation handle, or ALREADY_EXISTS when the
            derived address is taken; in that case nothing is written.

        Raises:
            AttestError: If the outcome is invalid or the issuer unknown.
            LedgerUnavailable: If the ledger read or write fails.
        """
        if not outcome.is_valid:
            raise outcome.error or AttestError("Cannot publish an invalid verification")

        policy = self.registry.get(outcome.issuer_id)
        schema = self.schema_address(policy)
        nonce = self.deriver.nonce_for(
            outcome.holder_id, outcome.issuer_id, outcome.credential_reference
        )
        address = self.deriver.derive_for_nonce(self.credential, schema, nonce)

        if self.ledger.read(address) is not None:
            logger.info("Attestation %s already exists, skipping write", address)
            return PublishResult(status=PublishStatus.ALREADY_EXISTS, address=address)

        data = encode_attestation_data(
            AttestationData(outcome.merkle_root, outcome.credential_reference)
        )
        try:
            signature = self.ledger.create(
                CreateAttestation(
                    attestation=address,
                    credential=self.credential,
                    schema=schema,
                    nonce=nonce,
                    data=data,
                    expiry=outcome.expiry,
                )
            )
        except AttestationExists:
            # A concurrent publish won between the read and the create
            logger.info("Attestation %s created concurrently, skipping write", address)
            return PublishResult(status=PublishStatus.ALREADY_EXISTS, address=address)
        logger.info("Created attestation %s for %s under %s", address, outcome.holder_id, policy.key)
        return PublishResult(status=PublishStatus.CREATED, address=address, signature=signature)

    def read_singleton(self, holder_id: str, issuer_id: str) -> SingletonStatus:
        policy = self.registry.get(issuer_id)
        address = self.deriver.derive(
            self.credential, self.schema_address(policy), holder_id, issuer_id
        )
        account = self.ledger.read(address)
        if account is None:
            return SingletonStatus(exists=False, address=address)
        return SingletonStatus(
            exists=True,
            address=address,
            data=account.attestation_data(),
            expiry=account.expiry,
        )

    def read_multi_instance(
        self, holder_id: str, issuer_id: str, schema: str | None = None
    ) -> MultiInstanceStatus:
        """Find every attestation a holder has under a multi-instance issuer."""
        policy = self.registry.get(issuer_id)
        if schema is None:
            schema = self.schema_address(policy)

        status = MultiInstanceStatus()
        for address, raw in self.ledger.list_program_accounts(self.ledger.program_id):
            try:
                account = decode_attestation_account(address, raw)
                if account.schema != schema:
                    continue
                data = account.attestation_data()
            except CodecError as e:
                logger.debug("Skipping account %s: %s", address, e)
                continue

            if self._belongs_to(account, data, holder_id, issuer_id, schema):
                status.attestations.append(
                    AttestationView(address=address, data=data, expiry=account.expiry)
                )
        return status

    def _belongs_to(
        self,
        account: AttestationAccount,
        data: AttestationData,
        holder_id: str,
        issuer_id: str,
        schema: str,
    ) -> bool:
        expected = self.deriver.derive(
            self.credential, schema, holder_id, issuer_id, data.credential_reference
        )
        return expected == account.address

    def status(self, holder_id: str) -> dict[str, dict[str, Any]]:
        """Per-issuer attestation status for a holder, keyed by issuer key."""
        results: dict[str, dict[str, Any]] = {}
        for policy in self.registry:
            if policy.is_singleton:
                results[policy.key] = self.read_singleton(holder_id, policy.did).to_dict()
            else:
                results[policy.key] = self.read_multi_instance(holder_id, policy.did).to_dict()
        return results

    def permissions(self, holder_id: str) -> UserPermissions:
        citizen = self.registry.for_credential_type("CitizenCredential")
        land = self.registry.for_credential_type("PropertyCredential")
        has_citizen = citizen is not None and self.read_singleton(holder_id, citizen.did).exists
        property_count = self.read_multi_instance(holder_id, land.did).count if land else 0
        return UserPermissions(
            has_citizen_credential=has_citizen,
            has_property_credential=property_count > 0,
            property_count=property_count,
        )
