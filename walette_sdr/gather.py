"""Collects the stored credentials that could answer a selective disclosure request.

Store-side filters compare ``credentialType`` and ``credentialContext`` as
substrings of the serialized columns, unlike presentation validation which
checks element membership in the decoded lists.
"""
import asyncio
import logging
from typing import List, Optional, Protocol

from walette_sdr.errors import StoreQueryFailed
from walette_sdr.matching import filter_credentials
from walette_sdr.models import ClaimFilter, ClaimRequest, Credential, CredentialsForClaim, SDRManifest, Where

log = logging.getLogger(__name__)


class CredentialStore(Protocol):
    async def query_by_claim_filter(self, claim_filter: ClaimFilter) -> List[Credential]:
        ...


def build_claim_filter(claim: ClaimRequest, subject: Optional[str] = None) -> ClaimFilter:
    where = []
    if claim.claim_type:
        where.append(Where(column="type", value=[claim.claim_type]))

    if claim.claim_value:
        where.append(Where(column="value", value=[claim.claim_value]))

    if claim.issuers is not None:
        where.append(Where(column="issuer", value=[issuer.did for issuer in claim.issuers]))

    if claim.credential_type:
        where.append(Where(column="credentialType", value=[f"%{claim.credential_type}%"], op="Like"))

    if claim.credential_context:
        where.append(Where(column="context", value=[f"%{claim.credential_context}%"], op="Like"))

    if subject:
        where.append(Where(column="subject", value=[subject]))

    return ClaimFilter(where=where)


async def _query(store: CredentialStore, claim_filter: ClaimFilter) -> List[Credential]:
    try:
        return await store.query_by_claim_filter(claim_filter)
    except StoreQueryFailed:
        raise
    except Exception as e:
        raise StoreQueryFailed(f"Credential query failed: {e}") from e


async def get_credentials_for_sdr(
    manifest: SDRManifest,
    store: CredentialStore,
    did: Optional[str] = None,
    post_filter: bool = False,
    timeout: Optional[float] = None,
) -> List[CredentialsForClaim]:
    """Query the store once per claim request, preserving manifest order.

    ``did`` overrides ``manifest.subject`` as the required credential subject.
    With ``post_filter`` the store results are also run through the matching
    predicate used for presentation validation.

    Raises:
        StoreQueryFailed: a query failed or the call exceeded ``timeout``.
            No partial result is returned.
    """
    subject = did or manifest.subject
    filters = [build_claim_filter(claim, subject) for claim in manifest.claims]
    log.debug("Gathering credentials for %d claims (subject=%s)", len(filters), subject)

    try:
        async with asyncio.timeout(timeout):
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(_query(store, claim_filter)) for claim_filter in filters]
    except TimeoutError as e:
        raise StoreQueryFailed(f"Credential query timed out after {timeout}s") from e
    except ExceptionGroup as group_error:
        # every failure is a StoreQueryFailed; surface the first one
        raise group_error.exceptions[0]

    gathered = []
    for claim, task in zip(manifest.claims, tasks):
        credentials = task.result()
        if post_filter:
            credentials = filter_credentials(claim, credentials)
        gathered.append(CredentialsForClaim.from_claim(claim, credentials))
    return gathered
