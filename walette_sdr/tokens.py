import base64
import json
import logging
import time

from jwcrypto import jwk, jwt
from jwcrypto.common import JWException

from walette_sdr.dids import extract_did_jwk
from walette_sdr.errors import InvalidToken
from walette_sdr.models import Credential, SDRManifest

log = logging.getLogger(__name__)

ALLOWED_ALGS = ["ES256K", "ES256", "EdDSA"]


def parse_jwt_unverified(token):
    parts = token.split('.')
    if len(parts) != 3:
        raise InvalidToken("Invalid JWT format")
    try:
        header = json.loads(base64.urlsafe_b64decode(parts[0] + '=' * (-len(parts[0]) % 4)))
        payload = json.loads(base64.urlsafe_b64decode(parts[1] + '=' * (-len(parts[1]) % 4)))
    except ValueError as e:
        raise InvalidToken(f"Invalid JWT encoding: {e}") from e
    return header, payload


def check_standard_claims(claims, name="JWT"):
    now = int(time.time())
    if "exp" in claims and now > claims["exp"]:
        raise InvalidToken(f"{name} expired (exp) {claims['exp']}  {now}")
    if "nbf" in claims and now < claims["nbf"]:
        raise InvalidToken(f"{name} not valid yet (nbf)")
    if "iat" in claims and now < claims["iat"] - 10:
        raise InvalidToken(f"{name} issued in the future (iat)")


def verify_jwt(token: str, key_data: dict, name="JWT") -> dict:
    try:
        key = jwk.JWK(**key_data)
        verified = jwt.JWT(jwt=token, key=key, algs=ALLOWED_ALGS, check_claims=False)
    except (JWException, ValueError, TypeError) as e:
        raise InvalidToken(f"Failed to verify {name} signature: {e}") from e
    claims = json.loads(verified.claims)
    check_standard_claims(claims, name=name)
    return claims


def verify_did_jwk_token(token: str, name="JWT") -> dict:
    """Verify a token signed by the did:jwk named in its ``iss`` claim."""
    _, payload = parse_jwt_unverified(token)
    issuer = payload.get("iss")
    if not isinstance(issuer, str):
        raise InvalidToken(f"{name} missing 'iss'")
    try:
        key_data = extract_did_jwk(issuer)
    except ValueError as e:
        raise InvalidToken(f"Unsupported {name} issuer {issuer}: {e}") from e
    return verify_jwt(token, key_data, name=name)


def decode_sdr(token: str) -> SDRManifest:
    """Verify an SDR token and restore the manifest, with ``issuer`` taken from ``iss``."""
    claims = verify_did_jwk_token(token, name="SDR")
    if claims.get("type") != "sdr":
        raise InvalidToken(f"Not an SDR token (type={claims.get('type')!r})")

    body = {k: v for k, v in claims.items() if k not in ("type", "iss", "iat", "exp", "nbf")}
    body["issuer"] = claims["iss"]
    log.debug("Decoded SDR from %s with %d claims", claims["iss"], len(body.get("claims", [])))
    try:
        return SDRManifest.model_validate(body)
    except ValueError as e:
        raise InvalidToken(f"Malformed SDR payload: {e}") from e


def normalize_credential(vc_jwt: str) -> Credential:
    """Turn a JWT-encoded credential into its W3C JSON form."""
    _, payload = parse_jwt_unverified(vc_jwt)
    vc = payload.get("vc")
    if not isinstance(vc, dict):
        raise InvalidToken("Credential JWT missing 'vc' claim")

    subject = vc.get("credentialSubject", {})
    if isinstance(subject, list):
        subject = subject[0] if subject else {}
    subject = dict(subject) if isinstance(subject, dict) else {}
    if "sub" in payload:
        subject.setdefault("id", payload["sub"])

    credential = {k: v for k, v in vc.items() if k != "credentialSubject"}
    credential["credentialSubject"] = subject
    credential["issuer"] = {"id": payload.get("iss")}
    if "jti" in payload:
        credential.setdefault("id", payload["jti"])
    credential["proof"] = {"type": "JwtProof2020", "jwt": vc_jwt}
    return credential
