from typing import Optional

from pydantic import BaseModel


class CreateDIDRequest(BaseModel):
    label: str
    # secp256k1 keys can also sign SDRs; holders default to Ed25519
    kty: str = "OKP"
    crv: str = "Ed25519"


class AddCredentialRequest(BaseModel):
    label: str
    jwt: str


class GatherRequest(BaseModel):
    sdr_jwt: str
    did: Optional[str] = None  # overrides the SDR subject


class RespondRequest(BaseModel):
    request_uri: str
    holder_label: str
