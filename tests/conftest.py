"""Shared fixtures: issuer keys, DID documents, token signing and a ledger."""

import base64
import hashlib
import json

import pytest
import respx
from httpx import Response

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from sd_attest.codec import encode_address
from sd_attest.issuers import IssuerClass, IssuerPolicy, IssuerRegistry
from sd_attest.ledger import InMemoryLedger


SINGLETON_ISSUER = "did:web:twfido.example"
MULTI_ISSUER = "did:web:twland.example"
NOW = 1_750_000_000


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def b64url_json(obj) -> str:
    return b64url(json.dumps(obj, separators=(",", ":")).encode())


def address(label: str) -> str:
    """A deterministic 32-byte base58 address."""
    return encode_address(hashlib.sha256(label.encode()).digest())


def make_disclosure(salt: str, name: str, value) -> str:
    return b64url_json([salt, name, value])


def disclosure_digest(disclosure: str) -> str:
    return b64url(hashlib.sha256(disclosure.encode("ascii")).digest())


@pytest.fixture
def ec_key_pair():
    """Generate a test EC P-256 key pair."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    return private_key, private_key.public_key()


@pytest.fixture
def public_key_jwk(ec_key_pair):
    """Get the public key as JWK."""
    _, public_key = ec_key_pair
    numbers = public_key.public_numbers()
    return {
        "kty": "EC",
        "crv": "P-256",
        "x": b64url(numbers.x.to_bytes(32, byteorder="big")),
        "y": b64url(numbers.y.to_bytes(32, byteorder="big")),
    }


def build_did_document(did: str, jwk: dict) -> dict:
    return {
        "@context": [
            "https://www.w3.org/ns/did/v1",
            "https://w3id.org/security/jwk/v1",
        ],
        "id": did,
        "verificationMethod": [
            {
                "id": f"{did}#key-1",
                "type": "JsonWebKey",
                "controller": did,
                "publicKeyJwk": jwk,
            }
        ],
        "assertionMethod": [f"{did}#key-1"],
    }


@pytest.fixture
def did_document(public_key_jwk):
    return build_did_document(SINGLETON_ISSUER, public_key_jwk)


@pytest.fixture
def mock_issuers(public_key_jwk):
    """Serve did.json for both test issuers."""
    with respx.mock(assert_all_called=False) as router:
        for did in (SINGLETON_ISSUER, MULTI_ISSUER):
            domain = did.split(":")[2]
            router.get(f"https://{domain}/.well-known/did.json").mock(
                return_value=Response(200, json=build_did_document(did, public_key_jwk))
            )
        yield router


@pytest.fixture
def sign_envelope(ec_key_pair):
    """Return a function producing an ES256 compact JWT with a raw r||s signature."""
    private_key, _ = ec_key_pair

    def _sign(payload: dict, header: dict | None = None, key=None) -> str:
        header = header if header is not None else {"alg": "ES256", "typ": "vc+sd-jwt"}
        signing_input = f"{b64url_json(header)}.{b64url_json(payload)}"
        der = (key or private_key).sign(signing_input.encode("ascii"), ec.ECDSA(hashes.SHA256()))
        r, s = decode_dss_signature(der)
        raw = r.to_bytes(32, byteorder="big") + s.to_bytes(32, byteorder="big")
        return f"{signing_input}.{b64url(raw)}"

    return _sign


@pytest.fixture
def holder_id():
    return f"did:pkh:sol:{address('holder-1')}"


@pytest.fixture
def make_token(sign_envelope, holder_id):
    """Return a function producing a signed token carrying the given disclosures."""

    def _make(
        issuer: str = SINGLETON_ISSUER,
        claims: dict | None = None,
        subject: str | None = None,
        credential_id: str = "urn:uuid:cred-1",
        credential_type: str = "CitizenCredential",
        exp: int | None = NOW + 3600,
        iat: int | None = NOW - 60,
        extra_subject: dict | None = None,
        header: dict | None = None,
    ) -> str:
        disclosures = [
            make_disclosure(f"salt-{name}", name, value)
            for name, value in (claims or {}).items()
        ]
        credential_subject = dict(extra_subject or {})
        credential_subject["_sd"] = [disclosure_digest(d) for d in disclosures]
        payload = {
            "iss": issuer,
            "sub": subject or holder_id,
            "vc": {
                "id": credential_id,
                "type": ["VerifiableCredential", credential_type],
                "credentialSubject": credential_subject,
            },
        }
        if exp is not None:
            payload["exp"] = exp
        if iat is not None:
            payload["iat"] = iat
        envelope = sign_envelope(payload, header)
        return "~".join([envelope, *disclosures]) + "~"

    return _make


@pytest.fixture
def registry():
    return IssuerRegistry(
        [
            IssuerPolicy(
                key="twfido",
                did=SINGLETON_ISSUER,
                issuer_class=IssuerClass.SINGLETON,
                schema_name="Identity Verification",
                schema_version=1,
                credential_type="CitizenCredential",
            ),
            IssuerPolicy(
                key="twland",
                did=MULTI_ISSUER,
                issuer_class=IssuerClass.MULTI_INSTANCE,
                schema_name="Property Verification",
                schema_version=1,
                credential_type="PropertyCredential",
            ),
        ]
    )


@pytest.fixture
def ledger():
    return InMemoryLedger(program_id=address("attestation-program"))


@pytest.fixture
def authority():
    return address("authority")


@pytest.fixture
def fixed_clock():
    return lambda: float(NOW)
