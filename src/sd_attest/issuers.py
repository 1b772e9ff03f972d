"""
Known issuers.

The registry is the allow-list of issuers whose tokens are accepted, and
records for each one the schema its attestations are written under and
whether a holder may hold one attestation (singleton) or many
(multi-instance).
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum

from sd_attest.config import Settings
from sd_attest.errors import UnsupportedIssuer


class IssuerClass(Enum):
    SINGLETON = "singleton"
    MULTI_INSTANCE = "multi_instance"


@dataclass(frozen=True)
class IssuerPolicy:
    key: str
    did: str
    issuer_class: IssuerClass
    schema_name: str
    schema_version: int
    credential_type: str

    @property
    def is_singleton(self) -> bool:
        return self.issuer_class is IssuerClass.SINGLETON


class IssuerRegistry:
    """Allow-list of issuers, looked up by DID."""

    def __init__(self, policies: Iterable[IssuerPolicy]) -> None:
        self._by_did: dict[str, IssuerPolicy] = {}
        for policy in policies:
            self._by_did[policy.did] = policy

    @classmethod
    def from_settings(cls, settings: Settings) -> IssuerRegistry:
        return cls(
            [
                IssuerPolicy(
                    key="twfido",
                    did=settings.twfido_issuer,
                    issuer_class=IssuerClass.SINGLETON,
                    schema_name=settings.twfido_schema_name,
                    schema_version=settings.twfido_schema_version,
                    credential_type="CitizenCredential",
                ),
                IssuerPolicy(
                    key="twland",
                    did=settings.twland_issuer,
                    issuer_class=IssuerClass.MULTI_INSTANCE,
                    schema_name=settings.twland_schema_name,
                    schema_version=settings.twland_schema_version,
                    credential_type="PropertyCredential",
                ),
            ]
        )

    def __iter__(self) -> Iterator[IssuerPolicy]:
        return iter(self._by_did.values())

    def __contains__(self, did: object) -> bool:
        return did in self._by_did

    @property
    def dids(self) -> list[str]:
        return list(self._by_did)

    @property
    def credential_types(self) -> list[str]:
        return [p.credential_type for p in self]

    def get(self, did: str) -> IssuerPolicy:
        """Look up an issuer.

        Raises:
            UnsupportedIssuer: If the issuer is not in the allow-list.
        """
        try:
            return self._by_did[did]
        except KeyError:
            raise UnsupportedIssuer(f"Unsupported issuer: {did}") from None

    def for_credential_type(self, credential_type: str) -> IssuerPolicy | None:
        for policy in self:
            if policy.credential_type == credential_type:
                return policy
        return None
