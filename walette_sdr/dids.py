from jwcrypto import jwk
import base64
import json

# Key types as reported by the identity resolver
KEY_TYPES = {
    ("EC", "secp256k1"): "Secp256k1",
    ("EC", "P-256"): "Secp256r1",
    ("OKP", "Ed25519"): "Ed25519",
}

DID_JWK_PREFIX = "did:jwk:"


def generate_jwk_did(kty="EC", crv="secp256k1"):
    key = jwk.JWK.generate(kty=kty, crv=crv)
    pub = key.export(private_key=False, as_dict=True)

    # Base64URL-encode the public JWK
    pub_str = json.dumps(pub, separators=(",", ":")).encode("utf-8")
    pub_b64url = base64.urlsafe_b64encode(pub_str).decode("utf-8").rstrip("=")

    did = f"{DID_JWK_PREFIX}{pub_b64url}"
    return {
        "did": did,
        "kid": f"{did}#0",
        "private_jwk": key.export(private_key=True, as_dict=True),
        "public_jwk": pub,
    }


def extract_did_jwk(did: str) -> dict:
    # did:jwk:{base64url(jwk)}, optionally followed by a fragment
    if not did.startswith(DID_JWK_PREFIX):
        raise ValueError("Not a did:jwk")
    b64 = did[len(DID_JWK_PREFIX):].split("#", 1)[0]
    padded = b64 + "=" * (-len(b64) % 4)
    jwk_json = base64.urlsafe_b64decode(padded.encode()).decode()
    return json.loads(jwk_json)


def key_type(jwk_data: dict) -> str:
    return KEY_TYPES.get((jwk_data.get("kty"), jwk_data.get("crv")), jwk_data.get("kty", "?"))
