import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, HTTPException
from jwcrypto.common import JWException

from walette_sdr.config import LOG_LEVEL, SDR_STORE_TIMEOUT, VERIFIER_AUDIENCE
from walette_sdr.dids import generate_jwk_did
from walette_sdr.errors import InvalidToken, StoreQueryFailed
from walette_sdr.gather import CredentialStore, get_credentials_for_sdr
from walette_sdr.holder.models import AddCredentialRequest, CreateDIDRequest, GatherRequest, RespondRequest
from walette_sdr.models import dump
from walette_sdr.presentation import create_vp_jwt, select_credential_jwts
from walette_sdr.storage import (
    PostgresCredentialStore,
    get_did_keypair_by_label,
    init_db,
    init_did_table,
    list_credentials,
    list_dids,
    store_credential_with_label,
    store_did,
)
from walette_sdr.tokens import decode_sdr

logging.basicConfig(level=LOG_LEVEL)
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    init_did_table()
    yield


app = FastAPI(lifespan=lifespan)


def get_credential_store() -> CredentialStore:
    return PostgresCredentialStore()


def get_keypair_lookup():
    return get_did_keypair_by_label


async def get_http_client():
    async with httpx.AsyncClient() as client:
        yield client


def _decode(sdr_jwt: str):
    try:
        return decode_sdr(sdr_jwt)
    except InvalidToken as e:
        raise HTTPException(status_code=400, detail=f"Invalid SDR: {e}")


async def _gather(manifest, store, did=None):
    try:
        return await get_credentials_for_sdr(manifest, store, did=did, timeout=SDR_STORE_TIMEOUT)
    except StoreQueryFailed as e:
        log.error("Gathering credentials failed: %s", e)
        raise HTTPException(status_code=503, detail=str(e))


@app.post("/sdr/credentials")
async def gather_credentials(req: GatherRequest, store: CredentialStore = Depends(get_credential_store)):
    manifest = _decode(req.sdr_jwt)
    gathered = await _gather(manifest, store, did=req.did)
    return [dump(claim) for claim in gathered]


@app.post("/sdr/respond")
async def respond_to_sdr(
    req: RespondRequest,
    store: CredentialStore = Depends(get_credential_store),
    keypair_lookup=Depends(get_keypair_lookup),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    # Fetch the SDR from the verifier
    r = await client.get(req.request_uri)
    if r.status_code != 200:
        raise HTTPException(status_code=400, detail="Failed to fetch request_uri")
    req_data = r.json()

    manifest = _decode(req_data.get("sdr_jwt", ""))
    if not manifest.reply_url:
        raise HTTPException(status_code=400, detail="Missing replyUrl in SDR")

    holder = await keypair_lookup(req.holder_label)
    if not holder:
        raise HTTPException(status_code=404, detail=f"Unknown holder DID {req.holder_label}")

    gathered = await _gather(manifest, store, did=holder["did"])
    vc_jwts = select_credential_jwts(gathered)
    missing = [claim.claim_type for claim in gathered if claim.essential and not claim.credentials]
    if missing:
        raise HTTPException(status_code=409, detail=f"No credentials for essential claims: {missing}")

    vp_jwt = create_vp_jwt(
        holder_did=holder["did"],
        private_jwk=holder["private_jwk"],
        vc_jwts=vc_jwts,
        audience=VERIFIER_AUDIENCE,
        nonce=req_data.get("nonce"),
        kid=holder.get("kid"),
    )

    # Send to the verifier callback named in the SDR
    resp = await client.post(manifest.reply_url, json={"vp_jwt": vp_jwt})
    if resp.status_code != 200:
        raise HTTPException(status_code=401, detail=f"Verifier rejected presentation {resp.text}")
    return resp.json()


@app.post("/dids")
def create_did(req: CreateDIDRequest):
    try:
        result = generate_jwk_did(kty=req.kty, crv=req.crv)
    except (JWException, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Unsupported key type: {str(e)}")
    try:
        store_did(req.label, result["did"], result["kid"], result["public_jwk"], result["private_jwk"])
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Failed to store DID: {str(e)}")
    return {
        "label": req.label,
        "did": result["did"],
        "kid": result["kid"],
        "public_jwk": result["public_jwk"],
    }


@app.get("/dids")
def get_dids():
    return list_dids()


@app.post("/credentials")
def add_credential(req: AddCredentialRequest):
    try:
        cred_id = store_credential_with_label(req.label, req.jwt)
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Failed to store: {str(e)}")
    return {"status": "stored", "id": cred_id}


@app.get("/credentials")
def get_credentials():
    return list_credentials()
