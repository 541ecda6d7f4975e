"""Pytest fixtures for walette SDR tests."""
import time
import uuid

import pytest
from jwcrypto import jwk, jwt

from walette_sdr.dids import generate_jwk_did
from walette_sdr.signing import JwkSigner, KeyStoreIdentityResolver

VC_CONTEXT = "https://www.w3.org/2018/credentials/v1"


@pytest.fixture
def issuer_did():
    """An Ed25519 did:jwk acting as credential issuer."""
    return generate_jwk_did(kty="OKP", crv="Ed25519")


@pytest.fixture
def holder_did():
    return generate_jwk_did(kty="OKP", crv="Ed25519")


@pytest.fixture
def verifier_did():
    """A secp256k1 did:jwk able to sign SDRs."""
    return generate_jwk_did()


@pytest.fixture
def make_vc_jwt(issuer_did):
    """Issue a JWT credential the way the walette issuer does."""

    def _make(subject_id, claims, types=("VerifiableCredential",), contexts=(VC_CONTEXT,), issuer=None):
        issuer = issuer or issuer_did
        now = int(time.time())
        token = jwt.JWT(
            header={"alg": "EdDSA", "kid": issuer["kid"], "typ": "JWT"},
            claims={
                "iss": issuer["did"],
                "sub": subject_id,
                "nbf": now,
                "exp": now + 3600,
                "jti": f"urn:uuid:{uuid.uuid4()}",
                "vc": {
                    "@context": list(contexts),
                    "type": list(types),
                    "credentialSubject": dict(claims),
                },
            },
        )
        token.make_signed_token(jwk.JWK(**issuer["private_jwk"]))
        return token.serialize()

    return _make


def keystore(*dids):
    """Resolver and signer over an in-memory set of generated DIDs."""
    by_kid = {d["kid"]: d for d in dids}

    async def keys_for_did(did):
        return [(d["kid"], d["public_jwk"]) for d in dids if d["did"] == did]

    async def private_jwk(kid):
        return by_kid[kid]["private_jwk"] if kid in by_kid else None

    return KeyStoreIdentityResolver(keys_for_did), JwkSigner(private_jwk)


@pytest.fixture
def verifier_keys(verifier_did):
    return keystore(verifier_did)
