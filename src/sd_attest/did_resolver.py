"""
Issuer key resolution for the did:web method.

An issuer identifier ``did:web:<host>[:<path>...]`` names a DID Document
served over HTTPS; the document lists the issuer's public keys. Only EC
P-256 keys in JWK form are accepted, since tokens are signed with ES256.
https://w3c-ccg.github.io/did-method-web/
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from sd_attest.errors import (
    KeyResolutionFailed,
    NoVerificationMethod,
    UnsupportedIssuerMethod,
    UnsupportedKeyType,
)

logger = logging.getLogger(__name__)

DID_WEB_PREFIX = "did:web:"
DEFAULT_TIMEOUT = 5.0
DEFAULT_CACHE_TTL = 300.0
DID_JSON_ACCEPT = "application/did+ld+json, application/json"


def did_web_url(did: str) -> str:
    """Map a did:web identifier to the URL of its DID Document.

    did:web:issuer.example -> https://issuer.example/.well-known/did.json
    did:web:issuer.example:keys:v2 -> https://issuer.example/keys/v2/did.json
    did:web:issuer.example%3A8443 -> https://issuer.example:8443/.well-known/did.json

    Raises:
        UnsupportedIssuerMethod: If ``did`` is not a did:web identifier.
    """
    if not did.startswith(DID_WEB_PREFIX):
        raise UnsupportedIssuerMethod(f"Unsupported DID method: {did}")

    host, *segments = did[len(DID_WEB_PREFIX):].partition("#")[0].split(":")
    if not host:
        raise UnsupportedIssuerMethod(f"Invalid did:web identifier: {did}")

    host = host.replace("%3A", ":").replace("%3a", ":")
    if not segments:
        return f"https://{host}/.well-known/did.json"
    return f"https://{host}/{'/'.join(quote(s, safe='') for s in segments)}/did.json"


def _fragment(method_id: str) -> str:
    return method_id.partition("#")[2]


@dataclass
class PublicKeyJWK:
    """EC public key in JWK format."""

    kty: str
    crv: str
    x: str
    y: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PublicKeyJWK:
        return cls(
            kty=data.get("kty", ""),
            crv=data.get("crv", ""),
            x=data.get("x", ""),
            y=data.get("y", ""),
        )

    def is_valid_p256(self) -> bool:
        return (
            self.kty == "EC"
            and self.crv == "P-256"
            and isinstance(self.x, str)
            and isinstance(self.y, str)
            and bool(self.x)
            and bool(self.y)
        )


@dataclass
class VerificationMethod:
    id: str
    type: str = ""
    controller: str = ""
    public_key_jwk: PublicKeyJWK | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VerificationMethod:
        jwk = data.get("publicKeyJwk")
        return cls(
            id=data.get("id", ""),
            type=data.get("type", ""),
            controller=data.get("controller", ""),
            public_key_jwk=PublicKeyJWK.from_dict(jwk) if isinstance(jwk, dict) else None,
        )

    @property
    def fragment(self) -> str:
        return _fragment(self.id)


@dataclass
class DIDDocument:
    """The parts of a DID Document needed to pick an issuer key."""

    id: str
    verification_methods: list[VerificationMethod] = field(default_factory=list)
    assertion_method: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DIDDocument:
        """Parse a DID Document.

        ``assertionMethod`` entries may be references or embedded methods;
        only their ids are kept. Non-object verification methods are skipped.
        """
        methods = [
            VerificationMethod.from_dict(vm)
            for vm in data.get("verificationMethod") or []
            if isinstance(vm, dict)
        ]
        refs: list[str] = []
        for item in data.get("assertionMethod") or []:
            if isinstance(item, str):
                refs.append(item)
            elif isinstance(item, dict) and "id" in item:
                refs.append(item["id"])
        return cls(id=data.get("id", ""), verification_methods=methods, assertion_method=refs)

    def get_verification_method(self, method_id: str) -> VerificationMethod | None:
        """Find a method by full id, or by fragment when only a fragment matches."""
        wanted = _fragment(method_id) or method_id
        for vm in self.verification_methods:
            if vm.id == method_id or vm.fragment == wanted:
                return vm
        return None

    def select_signing_method(self, key_id: str | None = None) -> VerificationMethod:
        """Pick the method an issuer signs with.

        Order: the method named by ``key_id``, then the first assertionMethod
        reference, then the first verification method.

        Raises:
            NoVerificationMethod: If the document has no verification methods.
        """
        if not self.verification_methods:
            raise NoVerificationMethod(f"DID Document {self.id} has no verification methods")

        for candidate in ([key_id] if key_id else []) + self.assertion_method:
            vm = self.get_verification_method(candidate)
            if vm is not None:
                return vm

        return self.verification_methods[0]


class DIDResolver:
    """Fetches and caches issuer DID Documents."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        verify_ssl: bool = True,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the DID resolver.

        Args:
            timeout: HTTP request timeout in seconds.
            verify_ssl: Whether to verify SSL certificates.
            cache_ttl: Seconds a resolved document is reused before refetching.
            clock: Monotonic time source for cache ages.
        """
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.cache_ttl = cache_ttl
        self.clock = clock
        self._cache: dict[str, tuple[float, DIDDocument]] = {}
        self._lock = threading.Lock()

    def _cached(self, issuer: str) -> DIDDocument | None:
        with self._lock:
            entry = self._cache.get(issuer)
            if entry is None:
                return None
            fetched_at, doc = entry
            if self.clock() - fetched_at >= self.cache_ttl:
                del self._cache[issuer]
                return None
            return doc

    def resolve(self, did: str, use_cache: bool = True) -> DIDDocument:
        """Fetch the DID Document for a did:web issuer.

        Args:
            did: The issuer identifier; a ``#fragment`` is ignored.
            use_cache: Whether to reuse an earlier resolution.

        Raises:
            UnsupportedIssuerMethod: If the DID is not did:web.
            KeyResolutionFailed: If the document cannot be fetched or parsed,
                or names a different DID.
        """
        issuer = did.partition("#")[0]
        if use_cache:
            doc = self._cached(issuer)
            if doc is not None:
                return doc

        url = did_web_url(issuer)
        logger.debug("Resolving %s via %s", issuer, url)

        try:
            with httpx.Client(timeout=self.timeout, verify=self.verify_ssl) as client:
                response = client.get(url, headers={"Accept": DID_JSON_ACCEPT})
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise KeyResolutionFailed(
                f"HTTP {e.response.status_code} fetching DID Document for {issuer}"
            ) from e
        except httpx.RequestError as e:
            raise KeyResolutionFailed(f"Could not reach {url}: {e}") from e
        except ValueError as e:
            raise KeyResolutionFailed(f"DID Document for {issuer} is not valid JSON") from e

        if not isinstance(data, dict):
            raise KeyResolutionFailed(f"DID Document for {issuer} is not a JSON object")

        doc = DIDDocument.from_dict(data)
        if doc.id != issuer:
            raise KeyResolutionFailed(f"DID Document id mismatch: expected {issuer}, got {doc.id}")

        if use_cache:
            with self._lock:
                self._cache[issuer] = (self.clock(), doc)
        return doc

    def resolve_key(
        self, did: str, key_id: str | None = None
    ) -> tuple[VerificationMethod, PublicKeyJWK]:
        """Resolve the issuer's P-256 signing key.

        Args:
            did: The issuer's did:web identifier.
            key_id: The ``kid`` from the token header, if any.

        Raises:
            DIDResolutionError: Any of its subclasses, depending on the failure.
        """
        vm = self.resolve(did).select_signing_method(key_id)

        if vm.public_key_jwk is None or not vm.public_key_jwk.is_valid_p256():
            raise UnsupportedKeyType(f"Verification method {vm.id} is not an EC P-256 key")

        return vm, vm.public_key_jwk

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
