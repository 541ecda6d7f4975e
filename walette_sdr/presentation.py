import logging
import uuid
import time

from jwcrypto import jwk, jwt

from walette_sdr.config import VERIFIER_AUDIENCE
from walette_sdr.errors import InvalidToken
from walette_sdr.models import CredentialsForClaim, Presentation
from walette_sdr.tokens import normalize_credential, parse_jwt_unverified, verify_did_jwk_token

log = logging.getLogger(__name__)

VC_CONTEXT = "https://www.w3.org/2018/credentials/v1"

ALG_FOR_KEY = {
    ("OKP", "Ed25519"): "EdDSA",
    ("EC", "secp256k1"): "ES256K",
    ("EC", "P-256"): "ES256",
}


def select_credential_jwts(claims: list[CredentialsForClaim]) -> list[str]:
    """JWTs of every gathered credential, in claim order, without duplicates."""
    seen = []
    for claim in claims:
        for credential in claim.credentials:
            vc_jwt = credential.get("proof", {}).get("jwt")
            if vc_jwt and vc_jwt not in seen:
                seen.append(vc_jwt)
    return seen


def create_vp_jwt(holder_did, private_jwk, vc_jwts, audience=None, nonce=None, kid=None):
    alg = ALG_FOR_KEY.get((private_jwk.get("kty"), private_jwk.get("crv")))
    if alg is None:
        raise ValueError(f"Unsupported holder key type {private_jwk.get('kty')}")
    key = jwk.JWK(**private_jwk)
    now = int(time.time())

    claims = {
        "iss": holder_did,
        "sub": holder_did,
        "jti": str(uuid.uuid4()),
        "iat": now,
        "exp": now + 600,
        "vp": {
            "@context": [VC_CONTEXT],
            "type": ["VerifiablePresentation"],
            "verifiableCredential": list(vc_jwts)
        }
    }

    if audience:
        claims["aud"] = audience
    if nonce:
        claims["nonce"] = nonce

    header = {"alg": alg, "typ": "JWT"}
    if kid:
        header["kid"] = kid
    token = jwt.JWT(header=header, claims=claims, algs=[alg])
    token.make_signed_token(key)
    return token.serialize()


def validate_vp_structure(vp: dict):
    if not isinstance(vp, dict):
        raise InvalidToken("VP must be a JSON object")

    ctx = vp.get("@context")
    if not ctx or VC_CONTEXT not in ctx:
        raise InvalidToken("VP missing @context or incorrect context")

    types = vp.get("type", [])
    if isinstance(types, str):
        types = [types]
    if "VerifiablePresentation" not in types:
        raise InvalidToken("VP type must include 'VerifiablePresentation'")

    creds = vp.get("verifiableCredential", [])
    if not isinstance(creds, list):
        raise InvalidToken("VP verifiableCredential must be a list")


def verify_vp(token, expected_audience=VERIFIER_AUDIENCE) -> Presentation:
    """Verify a presentation JWT and every credential JWT inside it.

    Holder and credential issuers must be did:jwk identifiers. Returns the
    presentation with its credentials decoded to W3C form.
    """
    _, payload = parse_jwt_unverified(token)

    aud = payload.get("aud")
    if expected_audience and aud != expected_audience:
        raise InvalidToken(f"Invalid audience: got '{aud}', expected '{expected_audience}'")

    claims = verify_did_jwk_token(token, name="Verifiable Presentation")
    if "vp" not in claims:
        raise InvalidToken("Missing 'vp' field in presentation")

    vp_data = claims["vp"]
    validate_vp_structure(vp_data)

    credentials = []
    for vc_jwt in vp_data.get("verifiableCredential", []):
        if not isinstance(vc_jwt, str):
            raise InvalidToken("Each verifiableCredential must be a JWT string")
        verify_did_jwk_token(vc_jwt, name="Verifiable Credential")
        credentials.append(normalize_credential(vc_jwt))

    log.info("Verified presentation from %s with %d credentials", claims["iss"], len(credentials))
    return Presentation(holder=claims["iss"], verifiable_credential=credentials)
