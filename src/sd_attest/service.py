"""
Request-handling boundary for the verification and data-request flows.

Each public method backs one HTTP route. Errors raised below this layer are
caught here and turned into ``{"success": False, "error": ...}``; nothing is
retried. A failed callback leaves its session in place until it is swept,
and the holder restarts from ``start_verification``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sd_attest.config import Settings
from sd_attest.did_resolver import DIDResolver
from sd_attest.errors import AttestError, HolderMismatch, MalformedToken
from sd_attest.issuers import IssuerRegistry
from sd_attest.ledger import Ledger
from sd_attest.merkle import strip_algorithm_tag
from sd_attest.publisher import AttestationPublisher
from sd_attest.sessions import (
    DataRequestConfig,
    DataRequestSession,
    SessionStore,
    VerificationSession,
)
from sd_attest.token import parse_token
from sd_attest.verifier import SDJWTVerifier

logger = logging.getLogger(__name__)

CREDENTIAL_LABELS = {
    "CitizenCredential": "Citizen credential",
    "PropertyCredential": "Property credential",
}


@dataclass
class ExtractedData:
    fields: dict[str, Any] = field(default_factory=dict)
    attestation_ref: str = ""
    credential_id: str = ""
    verification_timestamp: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "fields": self.fields,
            "attestationRef": self.attestation_ref,
            "credentialId": self.credential_id,
            "verificationTimestamp": self.verification_timestamp,
        }


def _failure(error: Exception) -> dict[str, Any]:
    return {"success": False, "error": str(error)}


def _vp_token(payload: Mapping[str, Any]) -> str:
    token = payload.get("vp_token") or payload.get("token")
    if not isinstance(token, str):
        raise MalformedToken("Callback payload has no vp_token")
    return token


class VerificationService:
    """Drives the OID4VP request/callback flows and attestation queries."""

    def __init__(
        self,
        settings: Settings,
        verifier: SDJWTVerifier,
        publisher: AttestationPublisher,
        sessions: SessionStore,
        data_sessions: SessionStore,
    ) -> None:
        self.settings = settings
        self.verifier = verifier
        self.publisher = publisher
        self.registry = verifier.registry
        self.sessions = sessions
        self.data_sessions = data_sessions

    @classmethod
    def from_settings(cls, settings: Settings, ledger: Ledger) -> VerificationService:
        registry = IssuerRegistry.from_settings(settings)
        resolver = DIDResolver(
            timeout=settings.did_timeout,
            verify_ssl=settings.verify_ssl,
            cache_ttl=settings.did_cache_ttl,
        )

        def store() -> SessionStore:
            return SessionStore(
                ttl=settings.session_ttl_seconds,
                sweep_interval=settings.sweep_interval_seconds,
                strict_expiry=settings.strict_session_expiry,
            )

        return cls(
            settings=settings,
            verifier=SDJWTVerifier(registry, did_resolver=resolver),
            publisher=AttestationPublisher(
                ledger,
                registry,
                authority=settings.authority_address,
                credential_name=settings.credential_name,
            ),
            sessions=store(),
            data_sessions=store(),
        )

    def start(self) -> None:
        self.sessions.start()
        self.data_sessions.start()

    def stop(self) -> None:
        self.sessions.stop()
        self.data_sessions.stop()

    def _url(self, path: str) -> str:
        return f"https://{self.settings.domain}/api/{path}"

    # ------------------------------------------------------------------
    # Verification flow
    # ------------------------------------------------------------------

    def start_verification(self, holder_id: str) -> dict[str, Any]:
        if not holder_id:
            return {"success": False, "requestId": "", "error": "holderId is required"}
        session = self.sessions.open(holder_id)
        return {
            "success": True,
            "requestId": session.request_id,
            "requestUri": self._url(f"verify/request/{session.request_id}"),
        }

    def presentation_request(self, request_id: str) -> dict[str, Any] | None:
        """The OID4VP request object for a pending verification, or None."""
        session = self.sessions.get(request_id)
        if session is None:
            return None

        return self._request_object(
            session,
            definition={
                "id": f"sd-attest-vp-request-{request_id}",
                "input_descriptors": [
                    {
                        "id": "supported-credential",
                        "name": "Identity or property credential",
                        "purpose": "Your credential is needed to create an on-chain attestation",
                        "constraints": {
                            "fields": [
                                {
                                    "path": ["$.vc.type"],
                                    "filter": {
                                        "type": "array",
                                        "contains": {
                                            "type": "string",
                                            "pattern": "(" + "|".join(self.registry.credential_types) + ")",
                                        },
                                    },
                                },
                                {
                                    "path": ["$.iss"],
                                    "filter": {
                                        "type": "string",
                                        "pattern": "(" + "|".join(self.registry.dids) + ")",
                                    },
                                },
                            ]
                        },
                    }
                ],
            },
            client_id=self.settings.client_id,
            redirect_uri=self._url(f"verify/callback/{request_id}"),
            response_uri=self._url(f"verify/presentation/{request_id}"),
        )

    def handle_callback(self, request_id: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Verify the presented token and publish its attestation."""
        try:
            session = self.sessions.require(request_id)
            SessionStore.check_state(session, payload.get("state"))

            outcome = self.verifier.verify(_vp_token(payload))
            if not outcome.is_valid:
                raise outcome.error

            if outcome.holder_id != session.holder_id:
                raise HolderMismatch("Holder DID mismatch")

            result = self.publisher.publish(outcome)
            self.sessions.consume(request_id)
        except AttestError as e:
            logger.warning("Callback for %s failed: %s: %s", request_id, type(e).__name__, e)
            return _failure(e)

        return {
            "success": True,
            "message": "Verification completed and attestation created",
            "signature": result.handle,
        }

    def attestation_status(self, holder_id: str) -> dict[str, Any]:
        try:
            return self.publisher.status(holder_id)
        except AttestError as e:
            logger.warning("Status query for %s failed: %s", holder_id, e)
            return {"error": str(e)}

    # ------------------------------------------------------------------
    # Data-request flow
    # ------------------------------------------------------------------

    def check_permissions(self, holder_id: str) -> dict[str, Any]:
        try:
            return self.publisher.permissions(holder_id).to_dict()
        except AttestError as e:
            logger.warning("Permission check for %s failed: %s", holder_id, e)
            return {
                "hasCitizenCredential": False,
                "hasPropertyCredential": False,
                "propertyCount": 0,
            }

    def request_credential_data(self, config: DataRequestConfig) -> dict[str, Any]:
        session = self.data_sessions.open_data_request(config)
        return {
            "requestId": session.request_id,
            "requestUri": self._url(f"sdk/data-request/{session.request_id}"),
            "expiresIn": int(self.data_sessions.ttl),
        }

    def data_request(self, request_id: str) -> dict[str, Any] | None:
        session = self.data_sessions.get(request_id)
        if not isinstance(session, DataRequestSession):
            return None

        fields: list[dict[str, Any]] = [
            {
                "path": ["$.vc.type"],
                "filter": {
                    "type": "array",
                    "contains": {"type": "string", "pattern": session.credential_type},
                },
            }
        ]
        fields.extend(
            {"path": [f"$.vc.credentialSubject.{name}"], "filter": {"type": "string"}}
            for name in session.required_fields
        )
        label = CREDENTIAL_LABELS.get(session.credential_type, session.credential_type)

        return self._request_object(
            session,
            definition={
                "id": f"sd-attest-data-request-{request_id}",
                "input_descriptors": [
                    {
                        "id": "credential-data",
                        "name": f"{label} data",
                        "purpose": session.purpose,
                        "constraints": {"fields": fields},
                    }
                ],
            },
            client_id=session.requester_domain,
            redirect_uri=self._url(f"sdk/callback/{request_id}"),
            response_uri=self._url(f"sdk/data/{request_id}"),
        )

    def extract_data(self, request_id: str, payload: Mapping[str, Any]) -> ExtractedData:
        """Verify a presented token and return the requested claims.

        Raises:
            AttestError: On a missing session, bad state, invalid token or
                holder mismatch.
        """
        session = self.data_sessions.require(request_id)
        if not isinstance(session, DataRequestSession):
            raise AttestError("Session is not a data request")
        SessionStore.check_state(session, payload.get("state"))

        token = _vp_token(payload)
        outcome = self.verifier.verify(token)
        if not outcome.is_valid:
            raise outcome.error
        if session.holder_id and outcome.holder_id != session.holder_id:
            raise HolderMismatch("Holder DID mismatch")

        parsed = parse_token(token)
        wanted = set(session.required_fields)

        fields = {
            name: value
            for name, value in parsed.credential_subject.items()
            if name in wanted and value
        }
        committed = {strip_algorithm_tag(d) for d in parsed.disclosure_digests}
        for disclosure in parsed.disclosed_claims():
            if disclosure.name not in wanted:
                continue
            if disclosure.digest() not in committed:
                logger.warning("Ignoring disclosure %r not committed to by the issuer", disclosure.name)
                continue
            fields[disclosure.name] = disclosure.value

        self.data_sessions.consume(request_id)
        return ExtractedData(
            fields=fields,
            credential_id=parsed.credential_reference,
            verification_timestamp=int(time.time() * 1000),
        )

    def data_callback(self, request_id: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        try:
            data = self.extract_data(request_id, payload)
        except AttestError as e:
            logger.warning("Data callback for %s failed: %s: %s", request_id, type(e).__name__, e)
            return _failure(e)
        return {"success": True, "data": data.to_dict()}

    def _request_object(
        self,
        session: VerificationSession,
        definition: dict[str, Any],
        client_id: str,
        redirect_uri: str,
        response_uri: str,
    ) -> dict[str, Any]:
        return {
            "presentation_definition": definition,
            "response_type": "vp_token",
            "response_mode": "direct_post",
            "client_id": client_id,
            "nonce": session.nonce,
            "state": session.state,
            "redirect_uri": redirect_uri,
            "response_uri": response_uri,
        }
