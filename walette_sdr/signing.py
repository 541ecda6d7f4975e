"""Signing collaborators used to issue SDR tokens.

Private keys never leave the wallet's key table: the resolver only reports
which key ids a DID controls and the signer looks the private JWK up by kid.
"""
import logging
import time
from typing import Awaitable, Callable, List, Optional, Protocol, Tuple

from jwcrypto import jwk, jwt
from jwcrypto.common import JWException

from walette_sdr.dids import key_type
from walette_sdr.errors import SigningFailed, SigningKeyUnavailable
from walette_sdr.models import Identity, IdentityKey

log = logging.getLogger(__name__)


class Signer(Protocol):
    async def sign(self, payload: dict, *, alg: str, issuer: str, kid: str) -> str:
        ...


class IdentityResolver(Protocol):
    async def resolve(self, did: str) -> Identity:
        ...


class JwkSigner:
    """Signs compact JWTs with private JWKs looked up by kid.

    ``key_lookup`` is a coroutine function returning the private JWK, or None.
    """

    def __init__(self, key_lookup: Callable[[str], Awaitable[Optional[dict]]]):
        self._key_lookup = key_lookup

    async def sign(self, payload: dict, *, alg: str, issuer: str, kid: str) -> str:
        private_jwk = await self._key_lookup(kid)
        if private_jwk is None:
            raise SigningKeyUnavailable(f"No private key for {kid}")

        claims = dict(payload)
        claims["iss"] = issuer
        claims.setdefault("iat", int(time.time()))

        try:
            key = jwk.JWK(**private_jwk)
            token = jwt.JWT(header={"alg": alg, "kid": kid, "typ": "JWT"}, claims=claims, algs=[alg])
            token.make_signed_token(key)
            return token.serialize()
        except (JWException, ValueError, TypeError) as e:
            raise SigningFailed(f"Failed to sign with {kid}: {e}") from e


class KeyStoreIdentityResolver:
    """Resolves DIDs managed by this wallet.

    ``keys_for_did`` is a coroutine function returning ``(kid, public_jwk)``
    pairs for a DID, or an empty list when the wallet does not control it.
    """

    def __init__(self, keys_for_did: Callable[[str], Awaitable[List[Tuple[str, dict]]]]):
        self._keys_for_did = keys_for_did

    async def resolve(self, did: str) -> Identity:
        keys = await self._keys_for_did(did)
        if not keys:
            raise SigningKeyUnavailable(f"Identity not managed by this wallet: {did}")
        return Identity(did=did, keys=[IdentityKey(kid=kid, type=key_type(public_jwk)) for kid, public_jwk in keys])
