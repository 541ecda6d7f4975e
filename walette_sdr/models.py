from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# Decoded W3C credential, passed around as received and never mutated
Credential = Dict[str, Any]


class Issuer(BaseModel):
    model_config = ConfigDict(frozen=True)

    did: str
    url: Optional[str] = None


class ClaimRequest(BaseModel):
    """One line item of a selective disclosure request."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    claim_type: Optional[str] = Field(None, alias="claimType")
    claim_value: Optional[str] = Field(None, alias="claimValue")
    reason: Optional[str] = None
    issuers: Optional[List[Issuer]] = None
    credential_type: Optional[str] = Field(None, alias="credentialType")
    credential_context: Optional[str] = Field(None, alias="credentialContext")
    essential: bool = False


class SDRManifest(BaseModel):
    """The request a verifier sends; unknown fields pass through to the token."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    issuer: Optional[str] = None
    subject: Optional[str] = None
    reply_url: Optional[str] = Field(None, alias="replyUrl")
    tag: Optional[str] = None
    claims: List[ClaimRequest] = Field(default_factory=list)
    credentials: Optional[List[str]] = None


class Presentation(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    holder: Optional[str] = None
    verifiable_credential: List[Credential] = Field(default_factory=list, alias="verifiableCredential")


class CredentialsForClaim(ClaimRequest):
    credentials: List[Credential] = Field(default_factory=list)

    @classmethod
    def from_claim(cls, claim: ClaimRequest, credentials: List[Credential]) -> "CredentialsForClaim":
        return cls(**claim.model_dump(), credentials=credentials)


class ValidationResult(BaseModel):
    valid: bool
    claims: List[CredentialsForClaim]


class IdentityKey(BaseModel):
    kid: str
    type: str


class Identity(BaseModel):
    did: str
    keys: List[IdentityKey] = Field(default_factory=list)


class Where(BaseModel):
    """A single condition on a stored claim row."""

    column: Literal["type", "value", "issuer", "credentialType", "context", "subject"]
    value: List[str]
    op: Literal["In", "Like"] = "In"


class ClaimFilter(BaseModel):
    where: List[Where] = Field(default_factory=list)


def dump(model: BaseModel) -> dict:
    """Wire representation: camelCase keys, unset fields omitted."""
    return model.model_dump(by_alias=True, exclude_none=True)
