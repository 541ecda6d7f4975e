"""Tests for the holder and verifier HTTP services."""

import pytest
from httpx import ASGITransport, AsyncClient

from walette_sdr.errors import StoreQueryFailed
from walette_sdr.holder import main as holder_main
from walette_sdr.presentation import create_vp_jwt
from walette_sdr.storage import MemoryCredentialStore
from walette_sdr.tokens import decode_sdr, normalize_credential
from walette_sdr.verifier import main as verifier_main

AUDIENCE = "https://verifier.example.org"


@pytest.fixture(autouse=True)
def reset_apps():
    yield
    holder_main.app.dependency_overrides.clear()
    verifier_main.app.dependency_overrides.clear()
    verifier_main.sdr_requests.clear()


@pytest.fixture
def verifier_app(verifier_keys):
    resolver, signer = verifier_keys
    verifier_main.app.dependency_overrides[verifier_main.get_identity_resolver] = lambda: resolver
    verifier_main.app.dependency_overrides[verifier_main.get_signer] = lambda: signer
    return verifier_main.app


def returning_for(keypairs):
    async def lookup(label):
        return keypairs.get(label)

    return lookup


def client_for(app, base_url):
    return AsyncClient(transport=ASGITransport(app=app), base_url=base_url)


SDR = {
    "claims": [
        {"claimType": "name", "essential": True},
        {"claimType": "email"},
    ],
}


@pytest.mark.asyncio
async def test_validate_endpoint():
    async with client_for(verifier_main.app, "http://verifier") as client:
        r = await client.post("/sdr/validate", json={
            "sdr": {"claims": [{"claimType": "name", "essential": True}]},
            "presentation": {"verifiableCredential": [
                {"credentialSubject": {"name": "Alice"}, "issuer": {"id": "did:x"}, "@context": [], "type": []},
            ]},
        })

    assert r.status_code == 200
    body = r.json()
    assert body["valid"] is True
    assert body["claims"][0]["credentials"][0]["credentialSubject"] == {"name": "Alice"}


@pytest.mark.asyncio
async def test_initiate_signs_and_stores_request(verifier_app, verifier_did):
    async with client_for(verifier_app, "http://verifier") as client:
        r = await client.post("/sdr/initiate", json={"sdr": {"issuer": verifier_did["did"], **SDR}})
        assert r.status_code == 200
        data = r.json()

        fetched = await client.get(data["request_uri"])

    assert data["request_uri"] == f"http://verifier/sdr/request/{data['request_id']}"
    assert fetched.json() == {"sdr_jwt": data["sdr_jwt"]}

    manifest = decode_sdr(data["sdr_jwt"])
    assert manifest.issuer == verifier_did["did"]
    assert manifest.reply_url == f"http://verifier/sdr/callback/{data['request_id']}"
    assert [c.claim_type for c in manifest.claims] == ["name", "email"]


@pytest.mark.asyncio
async def test_initiate_with_unknown_issuer(verifier_app):
    async with client_for(verifier_app, "http://verifier") as client:
        r = await client.post("/sdr/initiate", json={"sdr": {"issuer": "did:unknown", **SDR}})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_unknown_request(verifier_app):
    async with client_for(verifier_app, "http://verifier") as client:
        assert (await client.get("/sdr/request/nope")).status_code == 404
        assert (await client.post("/sdr/callback/nope", json={"vp_jwt": "x"})).status_code == 404


@pytest.mark.asyncio
async def test_callback_validates_presentation(verifier_app, verifier_did, holder_did, make_vc_jwt):
    vc_jwt = make_vc_jwt(holder_did["did"], {"email": "alice@example.org"})
    vp_jwt = create_vp_jwt(holder_did["did"], holder_did["private_jwk"], [vc_jwt], audience=AUDIENCE)

    async with client_for(verifier_app, "http://verifier") as client:
        data = (await client.post("/sdr/initiate", json={"sdr": {"issuer": verifier_did["did"], **SDR}})).json()
        bad = await client.post(f"/sdr/callback/{data['request_id']}", json={"vp_jwt": "not.a.jwt"})
        r = await client.post(f"/sdr/callback/{data['request_id']}", json={"vp_jwt": vp_jwt})

    assert r.status_code == 200
    body = r.json()
    assert body["valid"] is False
    assert body["claims"][0]["credentials"] == []
    assert body["claims"][1]["credentials"][0]["proof"]["jwt"] == vc_jwt
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_answered_request_is_discarded(verifier_app, verifier_did, holder_did, make_vc_jwt):
    vc_jwt = make_vc_jwt(holder_did["did"], {"name": "Alice"})
    vp_jwt = create_vp_jwt(holder_did["did"], holder_did["private_jwk"], [vc_jwt], audience=AUDIENCE)

    async with client_for(verifier_app, "http://verifier") as client:
        data = (await client.post("/sdr/initiate", json={"sdr": {"issuer": verifier_did["did"], **SDR}})).json()
        first = await client.post(f"/sdr/callback/{data['request_id']}", json={"vp_jwt": vp_jwt})
        replay = await client.post(f"/sdr/callback/{data['request_id']}", json={"vp_jwt": vp_jwt})
        fetch = await client.get(f"/sdr/request/{data['request_id']}")

    assert first.status_code == 200
    assert replay.status_code == 404
    assert fetch.status_code == 404
    assert data["request_id"] not in verifier_main.sdr_requests


@pytest.mark.asyncio
async def test_holder_gathers_credentials(verifier_app, verifier_did, holder_did, make_vc_jwt):
    name_jwt = make_vc_jwt(holder_did["did"], {"name": "Alice"})
    other_jwt = make_vc_jwt("did:someone-else", {"name": "Eve"})
    store = MemoryCredentialStore([normalize_credential(name_jwt), normalize_credential(other_jwt)])
    holder_main.app.dependency_overrides[holder_main.get_credential_store] = lambda: store

    async with client_for(verifier_app, "http://verifier") as verifier:
        sdr_jwt = (await verifier.post("/sdr/initiate", json={"sdr": {"issuer": verifier_did["did"], **SDR}})).json()["sdr_jwt"]

    async with client_for(holder_main.app, "http://holder") as client:
        r = await client.post("/sdr/credentials", json={"sdr_jwt": sdr_jwt, "did": holder_did["did"]})
        everyone = await client.post("/sdr/credentials", json={"sdr_jwt": sdr_jwt})
        bad = await client.post("/sdr/credentials", json={"sdr_jwt": "garbage"})

    assert r.status_code == 200
    claims = r.json()
    assert [c["claimType"] for c in claims] == ["name", "email"]
    assert [c["proof"]["jwt"] for c in claims[0]["credentials"]] == [name_jwt]
    assert claims[1]["credentials"] == []
    assert len(everyone.json()[0]["credentials"]) == 2
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_holder_store_failure(verifier_app, verifier_did):
    class DownStore:
        async def query_by_claim_filter(self, claim_filter):
            raise StoreQueryFailed("database down")

    holder_main.app.dependency_overrides[holder_main.get_credential_store] = lambda: DownStore()

    async with client_for(verifier_app, "http://verifier") as verifier:
        sdr_jwt = (await verifier.post("/sdr/initiate", json={"sdr": {"issuer": verifier_did["did"], **SDR}})).json()["sdr_jwt"]

    async with client_for(holder_main.app, "http://holder") as client:
        r = await client.post("/sdr/credentials", json={"sdr_jwt": sdr_jwt})

    assert r.status_code == 503


@pytest.mark.asyncio
async def test_holder_responds_to_verifier(verifier_app, verifier_did, holder_did, make_vc_jwt):
    name_jwt = make_vc_jwt(holder_did["did"], {"name": "Alice"})
    email_jwt = make_vc_jwt(holder_did["did"], {"email": "alice@example.org"})
    store = MemoryCredentialStore([normalize_credential(name_jwt), normalize_credential(email_jwt)])

    async with client_for(verifier_app, "http://verifier") as verifier:
        async def _verifier_client():
            yield verifier

        holder_main.app.dependency_overrides[holder_main.get_credential_store] = lambda: store
        holder_main.app.dependency_overrides[holder_main.get_http_client] = _verifier_client
        holder_main.app.dependency_overrides[holder_main.get_keypair_lookup] = lambda: (
            returning_for({"me": holder_did})
        )

        request_uri = (await verifier.post(
            "/sdr/initiate", json={"sdr": {"issuer": verifier_did["did"], **SDR}},
        )).json()["request_uri"]

        async with client_for(holder_main.app, "http://holder") as client:
            r = await client.post("/sdr/respond", json={"request_uri": request_uri, "holder_label": "me"})
            unknown = await client.post("/sdr/respond", json={"request_uri": request_uri, "holder_label": "nobody"})

    assert r.status_code == 200
    result = r.json()
    assert result["valid"] is True
    assert [c["credentials"][0]["proof"]["jwt"] for c in result["claims"]] == [name_jwt, email_jwt]
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_holder_refuses_when_essential_claim_missing(verifier_app, verifier_did, holder_did, make_vc_jwt):
    store = MemoryCredentialStore([normalize_credential(make_vc_jwt(holder_did["did"], {"email": "a@example.org"}))])

    async with client_for(verifier_app, "http://verifier") as verifier:
        async def _verifier_client():
            yield verifier

        holder_main.app.dependency_overrides[holder_main.get_credential_store] = lambda: store
        holder_main.app.dependency_overrides[holder_main.get_http_client] = _verifier_client
        holder_main.app.dependency_overrides[holder_main.get_keypair_lookup] = lambda: returning_for({"me": holder_did})

        request_uri = (await verifier.post(
            "/sdr/initiate", json={"sdr": {"issuer": verifier_did["did"], **SDR}},
        )).json()["request_uri"]

        async with client_for(holder_main.app, "http://holder") as client:
            r = await client.post("/sdr/respond", json={"request_uri": request_uri, "holder_label": "me"})

    assert r.status_code == 409
