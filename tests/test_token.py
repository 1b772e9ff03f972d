"""Tests for token parsing."""

import pytest

from sd_attest.errors import MalformedToken
from sd_attest.token import Disclosure, parse_token

from conftest import b64url, b64url_json, disclosure_digest, make_disclosure


def unsigned(payload: dict, *disclosures: str) -> str:
    envelope = f"{b64url_json({'alg': 'ES256'})}.{b64url_json(payload)}.c2ln"
    return "~".join([envelope, *disclosures])


class TestParseToken:
    """Tests for splitting and decoding tokens."""

    def test_extracts_fields(self):
        d1 = make_disclosure("s1", "name", "Alice")
        payload = {
            "iss": "did:web:issuer.example",
            "sub": "did:pkh:sol:holder",
            "exp": 1900000000,
            "vc": {
                "id": "urn:uuid:123",
                "type": ["VerifiableCredential", "CitizenCredential"],
                "credentialSubject": {"_sd": [disclosure_digest(d1)]},
            },
        }
        token = parse_token(unsigned(payload, d1))

        assert token.holder_id == "did:pkh:sol:holder"
        assert token.issuer_id == "did:web:issuer.example"
        assert token.credential_reference == "urn:uuid:123"
        assert token.disclosure_digests == [disclosure_digest(d1)]
        assert token.expiry == 1900000000
        assert token.disclosures == (d1,)
        assert token.algorithm == "ES256"
        assert token.credential_types == ["VerifiableCredential", "CitizenCredential"]

    def test_zero_disclosures(self):
        token = parse_token(unsigned({"iss": "did:web:a", "sub": "h"}))
        assert token.disclosures == ()

    def test_missing_optional_claims_default(self):
        token = parse_token(unsigned({"iss": "did:web:a", "sub": "h"}))
        assert token.credential_reference == ""
        assert token.disclosure_digests == []
        assert token.expiry is None

    def test_trailing_separator_ignored(self):
        d1 = make_disclosure("s1", "age", 30)
        token = parse_token(unsigned({"sub": "h"}, d1) + "~")
        assert token.disclosures == (d1,)

    def test_envelope_with_two_segments_accepted(self):
        envelope = f"{b64url_json({'alg': 'ES256'})}.{b64url_json({'sub': 'h'})}"
        assert parse_token(envelope).holder_id == "h"

    def test_single_segment_rejected(self):
        with pytest.raises(MalformedToken):
            parse_token(b64url_json({"alg": "ES256"}))

    def test_invalid_json_payload_rejected(self):
        envelope = f"{b64url_json({'alg': 'ES256'})}.{b64url(b'not json')}.sig"
        with pytest.raises(MalformedToken):
            parse_token(envelope)

    def test_non_object_payload_rejected(self):
        envelope = f"{b64url_json({'alg': 'ES256'})}.{b64url_json([1, 2])}.sig"
        with pytest.raises(MalformedToken):
            parse_token(envelope)

    def test_empty_token_rejected(self):
        with pytest.raises(MalformedToken):
            parse_token("")

    def test_disclosure_must_be_triple(self):
        bad = b64url_json(["salt", "name"])
        with pytest.raises(MalformedToken):
            parse_token(unsigned({"sub": "h"}, bad))

    @pytest.mark.parametrize(
        "claims",
        [
            {"iss": ["did:web:a"]},
            {"sub": 42},
            {"exp": "tomorrow"},
            {"exp": True},
            {"iat": 2**63},
            {"vc": ["urn:uuid:1"]},
            {"vc": {"id": 7}},
            {"vc": {"credentialSubject": "x"}},
            {"vc": {"credentialSubject": {"_sd": [1, 2]}}},
            {"vc": {"credentialSubject": {"_sd": "digest"}}},
        ],
    )
    def test_wrongly_typed_claims_rejected(self, claims):
        with pytest.raises(MalformedToken):
            parse_token(unsigned(claims))

    def test_null_claims_treated_as_absent(self):
        token = parse_token(unsigned({"iss": None, "sub": None, "exp": None, "vc": None}))
        assert token.issuer_id == ""
        assert token.expiry is None

    def test_fractional_exp_truncated(self):
        token = parse_token(unsigned({"sub": "h", "exp": 1900000000.75, "iat": 1800000000.2}))
        assert token.expiry == 1900000000
        assert isinstance(token.expiry, int)
        assert token.issued_at == 1800000000

    def test_disclosure_name_must_be_string(self):
        with pytest.raises(MalformedToken):
            parse_token(unsigned({"sub": "h"}, make_disclosure("s", 5, "x")))


class TestDisclosure:
    """Tests for disclosure decoding and digests."""

    def test_decode(self):
        raw = make_disclosure("salt", "given_name", "Bob")
        disclosure = Disclosure.decode(raw)
        assert disclosure.salt == "salt"
        assert disclosure.name == "given_name"
        assert disclosure.value == "Bob"

    def test_digest_matches_sd_hash(self):
        raw = make_disclosure("salt", "given_name", "Bob")
        assert Disclosure.decode(raw).digest() == disclosure_digest(raw)

    def test_disclosed_claims(self):
        d1 = make_disclosure("s1", "a", 1)
        d2 = make_disclosure("s2", "b", 2)
        token = parse_token(unsigned({"sub": "h"}, d1, d2))
        assert [(c.name, c.value) for c in token.disclosed_claims()] == [("a", 1), ("b", 2)]
