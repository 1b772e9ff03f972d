from __future__ import annotations

import os
from dataclasses import dataclass


def _get_str(name: str, default: str) -> str:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return val


def _get_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return int(val)


def _get_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return float(val)


def _get_bool(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return val.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass
class Settings:
    # Public host the wallet talks to, used to build request/callback URIs
    domain: str = "localhost"
    client_id: str = ""

    # Attestation program and the authority that owns the credential account
    program_id: str = ""
    authority_address: str = ""
    credential_name: str = "sd-attest"

    twfido_issuer: str = "did:web:twfido.ddns.net"
    twfido_schema_name: str = "Twfido Identity Verification"
    twfido_schema_version: int = 1

    twland_issuer: str = "did:web:twland.ddns.net"
    twland_schema_name: str = "Twland Property Verification"
    twland_schema_version: int = 1

    did_timeout: float = 5.0
    did_cache_ttl: float = 300.0
    verify_ssl: bool = True

    session_ttl_seconds: int = 300
    sweep_interval_seconds: int = 60
    strict_session_expiry: bool = False

    @classmethod
    def from_env(cls) -> Settings:
        defaults = cls()
        return cls(
            domain=_get_str("DOMAIN", defaults.domain),
            client_id=_get_str("CLIENT_ID", _get_str("ISSUER_DID", defaults.client_id)),
            program_id=_get_str("SAS_PROGRAM_ID", defaults.program_id),
            authority_address=_get_str("AUTHORITY_ADDRESS", defaults.authority_address),
            credential_name=_get_str("CREDENTIAL_NAME", defaults.credential_name),
            twfido_issuer=_get_str("TWFIDO_ISSUER_DID", defaults.twfido_issuer),
            twfido_schema_name=_get_str("SCHEMA_NAME_TWFIDO", defaults.twfido_schema_name),
            twfido_schema_version=_get_int("SCHEMA_VERSION_TWFIDO", defaults.twfido_schema_version),
            twland_issuer=_get_str("TWLAND_ISSUER_DID", defaults.twland_issuer),
            twland_schema_name=_get_str("SCHEMA_NAME_TWLAND", defaults.twland_schema_name),
            twland_schema_version=_get_int("SCHEMA_VERSION_TWLAND", defaults.twland_schema_version),
            did_timeout=_get_float("SD_ATTEST_DID_TIMEOUT", defaults.did_timeout),
            did_cache_ttl=_get_float("SD_ATTEST_DID_CACHE_TTL", defaults.did_cache_ttl),
            verify_ssl=_get_bool("SD_ATTEST_VERIFY_SSL", defaults.verify_ssl),
            session_ttl_seconds=_get_int("SD_ATTEST_SESSION_TTL", defaults.session_ttl_seconds),
            sweep_interval_seconds=_get_int(
                "SD_ATTEST_SWEEP_INTERVAL", defaults.sweep_interval_seconds
            ),
            strict_session_expiry=_get_bool(
                "SD_ATTEST_STRICT_SESSION_EXPIRY", defaults.strict_session_expiry
            ),
        )
