import logging

from walette_sdr.config import SDR_SIGNING_ALG
from walette_sdr.errors import SDRError, SigningFailed, SigningKeyUnavailable
from walette_sdr.models import SDRManifest, dump
from walette_sdr.signing import IdentityResolver, Signer

log = logging.getLogger(__name__)

# Curve each signing algorithm needs, as reported by the identity resolver
KEY_TYPE_FOR_ALG = {
    "ES256K": "Secp256k1",
    "ES256": "Secp256r1",
    "EdDSA": "Ed25519",
}


async def create_selective_disclosure_request(
    manifest: SDRManifest,
    resolver: IdentityResolver,
    signer: Signer,
    alg: str = SDR_SIGNING_ALG,
) -> str:
    """Sign a selective disclosure request as a compact JWT.

    ``manifest.issuer`` becomes the token's ``iss`` and is left out of the
    body; the manifest itself is not modified.

    Raises:
        SigningKeyUnavailable: the issuer is unknown or holds no key for ``alg``.
        SigningFailed: the signer failed.
    """
    if not manifest.issuer:
        raise SigningKeyUnavailable("SDR has no issuer to sign with")

    identity = await resolver.resolve(manifest.issuer)
    wanted = KEY_TYPE_FOR_ALG.get(alg)
    key = next((k for k in identity.keys if k.type == wanted), None)
    if key is None:
        raise SigningKeyUnavailable(f"Signing key not found for {identity.did} ({alg})")

    body = dump(manifest)
    body.pop("issuer", None)
    payload = {"type": "sdr", **body}

    log.debug("Signing SDR with %s", identity.did)
    try:
        return await signer.sign(payload, alg=alg, issuer=identity.did, kid=key.kid)
    except SDRError:
        raise
    except Exception as e:
        raise SigningFailed(f"Signer error for {identity.did}: {e}") from e
