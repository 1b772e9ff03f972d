"""
Ledger collaborator contract.

The attestation program lives on an external ledger. This package only needs
four operations from it: deterministic address derivation, single-account
reads, attestation creation and a full scan of the program's accounts.
Concrete clients implement ``Ledger``; ``InMemoryLedger`` is a complete
in-process implementation for tests and local runs.
"""

from __future__ import annotations

import abc
import hashlib
import threading
from dataclasses import dataclass

from sd_attest.codec import (
    AttestationAccount,
    address_bytes,
    decode_attestation_account,
    encode_address,
    encode_attestation_account,
)
from sd_attest.errors import AttestationExists

PDA_MARKER = b"ProgramDerivedAddress"


@dataclass(frozen=True)
class CreateAttestation:
    """Instruction data for creating one attestation account."""

    attestation: str
    credential: str
    schema: str
    nonce: str
    data: bytes
    expiry: int


class Ledger(abc.ABC):
    program_id: str

    @abc.abstractmethod
    def derive_address(self, *seeds: bytes) -> str:
        """Deterministically derive a program address from seeds."""

    @abc.abstractmethod
    def read(self, address: str) -> AttestationAccount | None:
        """Read the attestation at ``address``; None if there is none.

        Raises:
            LedgerUnavailable: If the ledger cannot be reached.
        """

    @abc.abstractmethod
    def create(self, instruction: CreateAttestation) -> str:
        """Submit a create and return its confirmation handle.

        Raises:
            AttestationExists: If an account already lives at the address.
            LedgerUnavailable: If the write cannot be confirmed.
        """

    @abc.abstractmethod
    def list_program_accounts(self, program_id: str) -> list[tuple[str, bytes]]:
        """Return ``(address, raw_bytes)`` for every account of a program.

        Raises:
            LedgerUnavailable: If the ledger cannot be reached.
        """


def derive_program_address(program_id: str, *seeds: bytes) -> str:
    """SHA-256 over the seeds, the program id and a fixed marker."""
    digest = hashlib.sha256()
    for seed in seeds:
        digest.update(seed)
    digest.update(address_bytes(program_id))
    digest.update(PDA_MARKER)
    return encode_address(digest.digest())


class InMemoryLedger(Ledger):
    """Thread-safe, process-local ledger holding raw account bytes."""

    def __init__(self, program_id: str) -> None:
        address_bytes(program_id)
        self.program_id = program_id
        self._accounts: dict[str, bytes] = {}
        self._lock = threading.Lock()
        self.writes = 0

    def derive_address(self, *seeds: bytes) -> str:
        return derive_program_address(self.program_id, *seeds)

    def read(self, address: str) -> AttestationAccount | None:
        with self._lock:
            raw = self._accounts.get(address)
        if raw is None:
            return None
        return decode_attestation_account(address, raw)

    def create(self, instruction: CreateAttestation) -> str:
        account = AttestationAccount(
            address=instruction.attestation,
            nonce=instruction.nonce,
            credential=instruction.credential,
            schema=instruction.schema,
            data=instruction.data,
            expiry=instruction.expiry,
        )
        raw = encode_attestation_account(account)
        with self._lock:
            if instruction.attestation in self._accounts:
                raise AttestationExists(f"Account {instruction.attestation} already in use")
            self._accounts[instruction.attestation] = raw
            self.writes += 1
        return encode_address(hashlib.sha256(instruction.attestation.encode() + raw).digest())

    def list_program_accounts(self, program_id: str) -> list[tuple[str, bytes]]:
        if program_id != self.program_id:
            return []
        with self._lock:
            return list(self._accounts.items())

    def put_raw(self, address: str, raw: bytes) -> None:
        """Store arbitrary account bytes, e.g. records written by older releases."""
        with self._lock:
            self._accounts[address] = raw
