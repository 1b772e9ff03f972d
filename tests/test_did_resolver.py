"""Tests for did:web issuer key resolution."""

from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest
import respx
from httpx import Response

from sd_attest.did_resolver import DIDDocument, DIDResolver, did_web_url
from sd_attest.errors import (
    KeyResolutionFailed,
    NoVerificationMethod,
    UnsupportedIssuerMethod,
    UnsupportedKeyType,
)

DID = "did:web:twfido.example"
URL = "https://twfido.example/.well-known/did.json"


def method(fragment: str, jwk: dict | None) -> dict:
    vm = {"id": f"{DID}#{fragment}", "type": "JsonWebKey", "controller": DID}
    if jwk is not None:
        vm["publicKeyJwk"] = jwk
    return vm


class TestDidWebUrl:
    """Tests for did:web to URL conversion."""

    def test_simple(self):
        assert did_web_url("did:web:example.com") == "https://example.com/.well-known/did.json"

    def test_with_path(self):
        assert did_web_url("did:web:example.com:users:alice") == "https://example.com/users/alice/did.json"

    def test_with_port(self):
        assert did_web_url("did:web:example.com%3A8080") == "https://example.com:8080/.well-known/did.json"

    def test_with_fragment(self):
        assert did_web_url("did:web:example.com#key-1") == "https://example.com/.well-known/did.json"

    @pytest.mark.parametrize("did", ["did:key:z6Mk", "did:pkh:sol:abc", "web:example.com", "did:web:"])
    def test_unsupported_method(self, did):
        with pytest.raises(UnsupportedIssuerMethod):
            did_web_url(did)


class TestDIDDocument:
    def test_embedded_assertion_methods_reduced_to_ids(self):
        doc = DIDDocument.from_dict(
            {
                "id": DID,
                "verificationMethod": [method("key-1", None), "not-a-method"],
                "assertionMethod": [f"{DID}#key-1", {"id": f"{DID}#key-2"}, 7],
            }
        )
        assert [vm.id for vm in doc.verification_methods] == [f"{DID}#key-1"]
        assert doc.assertion_method == [f"{DID}#key-1", f"{DID}#key-2"]


class TestResolve:
    """Tests for fetching DID documents."""

    @respx.mock
    def test_resolve_did(self, did_document):
        respx.get(URL).mock(return_value=Response(200, json=did_document))

        doc = DIDResolver().resolve(DID)

        assert doc.id == DID
        assert len(doc.verification_methods) == 1
        assert doc.verification_methods[0].id == f"{DID}#key-1"
        assert doc.assertion_method == [f"{DID}#key-1"]

    @respx.mock
    def test_resolve_is_cached(self, did_document):
        route = respx.get(URL).mock(return_value=Response(200, json=did_document))

        resolver = DIDResolver()
        resolver.resolve(DID)
        resolver.resolve(f"{DID}#key-1")

        assert route.call_count == 1

        resolver.clear_cache()
        resolver.resolve(DID)
        assert route.call_count == 2

    @respx.mock
    def test_cache_entries_expire(self, did_document):
        route = respx.get(URL).mock(return_value=Response(200, json=did_document))
        now = [1000.0]
        resolver = DIDResolver(cache_ttl=10, clock=lambda: now[0])

        resolver.resolve(DID)
        now[0] += 5
        resolver.resolve(DID)
        assert route.call_count == 1

        now[0] += 5
        resolver.resolve(DID)
        assert route.call_count == 2

    @respx.mock
    def test_use_cache_false_always_fetches(self, did_document):
        route = respx.get(URL).mock(return_value=Response(200, json=did_document))
        resolver = DIDResolver()

        resolver.resolve(DID, use_cache=False)
        resolver.resolve(DID, use_cache=False)

        assert route.call_count == 2

    @respx.mock
    def test_concurrent_resolves_share_cache(self, did_document):
        route = respx.get(URL).mock(return_value=Response(200, json=did_document))
        resolver = DIDResolver()
        resolver.resolve(DID)

        with ThreadPoolExecutor(max_workers=8) as pool:
            docs = list(pool.map(lambda _: resolver.resolve(DID), range(32)))

        assert route.call_count == 1
        assert all(doc.id == DID for doc in docs)

    @respx.mock
    def test_http_error(self):
        respx.get(URL).mock(return_value=Response(404))
        with pytest.raises(KeyResolutionFailed):
            DIDResolver().resolve(DID)

    @respx.mock
    def test_timeout(self):
        respx.get(URL).mock(side_effect=httpx.ConnectTimeout)
        with pytest.raises(KeyResolutionFailed):
            DIDResolver().resolve(DID)

    @respx.mock
    def test_invalid_json(self):
        respx.get(URL).mock(return_value=Response(200, content=b"<html>"))
        with pytest.raises(KeyResolutionFailed):
            DIDResolver().resolve(DID)

    @respx.mock
    def test_id_mismatch(self, did_document):
        did_document["id"] = "did:web:other.example"
        respx.get(URL).mock(return_value=Response(200, json=did_document))
        with pytest.raises(KeyResolutionFailed):
            DIDResolver().resolve(DID)

    def test_default_timeout_is_five_seconds(self):
        assert DIDResolver().timeout == 5.0


class TestResolveKey:
    """Tests for signing key selection."""

    @pytest.fixture
    def other_jwk(self, public_key_jwk):
        return dict(public_key_jwk, x=public_key_jwk["y"], y=public_key_jwk["x"])

    def serve(self, doc):
        respx.get(URL).mock(return_value=Response(200, json=doc))

    @respx.mock
    def test_selects_kid(self, public_key_jwk, other_jwk):
        self.serve(
            {
                "id": DID,
                "verificationMethod": [method("key-1", other_jwk), method("key-2", public_key_jwk)],
                "assertionMethod": [f"{DID}#key-1"],
            }
        )
        vm, jwk = DIDResolver().resolve_key(DID, key_id=f"{DID}#key-2")
        assert vm.id == f"{DID}#key-2"
        assert jwk.x == public_key_jwk["x"]

    @respx.mock
    def test_selects_kid_by_fragment(self, public_key_jwk, other_jwk):
        self.serve(
            {
                "id": DID,
                "verificationMethod": [method("key-1", other_jwk), method("key-2", public_key_jwk)],
            }
        )
        vm, _ = DIDResolver().resolve_key(DID, key_id="key-2")
        assert vm.id == f"{DID}#key-2"

    @respx.mock
    def test_falls_back_to_assertion_method(self, public_key_jwk, other_jwk):
        self.serve(
            {
                "id": DID,
                "verificationMethod": [method("key-1", other_jwk), method("key-2", public_key_jwk)],
                "assertionMethod": [f"{DID}#key-2"],
            }
        )
        vm, _ = DIDResolver().resolve_key(DID, key_id="#unknown")
        assert vm.id == f"{DID}#key-2"

    @respx.mock
    def test_falls_back_to_first_method(self, public_key_jwk, other_jwk):
        self.serve(
            {
                "id": DID,
                "verificationMethod": [method("key-1", public_key_jwk), method("key-2", other_jwk)],
            }
        )
        vm, _ = DIDResolver().resolve_key(DID)
        assert vm.id == f"{DID}#key-1"

    @respx.mock
    def test_no_verification_method(self):
        self.serve({"id": DID, "verificationMethod": []})
        with pytest.raises(NoVerificationMethod):
            DIDResolver().resolve_key(DID)

    @respx.mock
    def test_rejects_non_p256_key(self):
        self.serve(
            {
                "id": DID,
                "verificationMethod": [method("key-1", {"kty": "OKP", "crv": "Ed25519", "x": "abc"})],
            }
        )
        with pytest.raises(UnsupportedKeyType):
            DIDResolver().resolve_key(DID)

    @respx.mock
    def test_rejects_method_without_jwk(self):
        self.serve({"id": DID, "verificationMethod": [method("key-1", None)]})
        with pytest.raises(UnsupportedKeyType):
            DIDResolver().resolve_key(DID)
