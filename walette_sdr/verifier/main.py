import logging
from typing import Dict
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Path
from pydantic import BaseModel
from starlette.requests import Request

from walette_sdr.config import LOG_LEVEL
from walette_sdr.errors import InvalidToken, SigningFailed, SigningKeyUnavailable
from walette_sdr.models import Presentation, SDRManifest, dump
from walette_sdr.presentation import verify_vp
from walette_sdr.request import create_selective_disclosure_request
from walette_sdr.signing import IdentityResolver, JwkSigner, KeyStoreIdentityResolver, Signer
from walette_sdr.storage import get_keys_for_did, get_private_jwk
from walette_sdr.validate import validate_presentation_against_sdr

logging.basicConfig(level=LOG_LEVEL)
log = logging.getLogger(__name__)

app = FastAPI()

# Outstanding requests, kept in memory
sdr_requests: Dict[str, dict] = {}


def get_identity_resolver() -> IdentityResolver:
    return KeyStoreIdentityResolver(get_keys_for_did)


def get_signer() -> Signer:
    return JwkSigner(get_private_jwk)


class InitiateRequest(BaseModel):
    sdr: SDRManifest


class InitiateResponse(BaseModel):
    request_id: str
    request_uri: str
    sdr_jwt: str


class VPRequest(BaseModel):
    vp_jwt: str


class ValidateRequest(BaseModel):
    sdr: SDRManifest
    presentation: Presentation


@app.post("/sdr/initiate", response_model=InitiateResponse)
async def initiate_sdr(
    request: Request,
    req: InitiateRequest,
    resolver: IdentityResolver = Depends(get_identity_resolver),
    signer: Signer = Depends(get_signer),
):
    request_id = str(uuid4())
    base_url = str(request.base_url).rstrip("/")

    manifest = req.sdr
    if not manifest.reply_url:
        manifest = manifest.model_copy(update={"reply_url": f"{base_url}/sdr/callback/{request_id}"})

    try:
        sdr_jwt = await create_selective_disclosure_request(manifest, resolver, signer)
    except SigningKeyUnavailable as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SigningFailed as e:
        log.error("Signing SDR %s failed: %s", request_id, e)
        raise HTTPException(status_code=502, detail=str(e))

    sdr_requests[request_id] = {"sdr": manifest, "sdr_jwt": sdr_jwt}
    log.info("Created SDR %s with %d claims", request_id, len(manifest.claims))

    return {
        "request_id": request_id,
        "request_uri": f"{base_url}/sdr/request/{request_id}",
        "sdr_jwt": sdr_jwt,
    }


@app.get("/sdr/request/{request_id}")
def get_sdr_request(request_id: str = Path(...)):
    if request_id not in sdr_requests:
        raise HTTPException(status_code=404, detail="Request not found")

    return {"sdr_jwt": sdr_requests[request_id]["sdr_jwt"]}


@app.post("/sdr/callback/{request_id}")
def sdr_callback(req: VPRequest, request_id: str = Path(...)):
    if request_id not in sdr_requests:
        raise HTTPException(status_code=404, detail="Request not found")

    try:
        presentation = verify_vp(req.vp_jwt)
    except InvalidToken as e:
        raise HTTPException(status_code=400, detail=str(e))

    # a request is answered at most once
    entry = sdr_requests.pop(request_id, None)
    if entry is None:
        raise HTTPException(status_code=404, detail="Request not found")

    result = validate_presentation_against_sdr(entry["sdr"], presentation)
    log.info("SDR %s answered by %s: valid=%s", request_id, presentation.holder, result.valid)
    return dump(result)


@app.post("/sdr/validate")
def validate_sdr(req: ValidateRequest):
    return dump(validate_presentation_against_sdr(req.sdr, req.presentation))
