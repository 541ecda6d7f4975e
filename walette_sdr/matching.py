"""Decides whether a single credential satisfies a single claim request.

The same predicate backs presentation validation and the optional post-filter
applied to gathered credentials, so both sides agree on what "satisfied" means.

Request-side string constraints are considered set only when non-empty, while
``issuers`` is set whenever present (an empty list admits no issuer).
Credential-side presence is key presence: ``""``, ``0``, ``False`` and ``None``
are all present values.
"""
from collections.abc import Mapping, Sequence
from typing import Any, List

from walette_sdr.models import ClaimRequest, Credential


def _subject(credential: Credential) -> Mapping:
    subject = credential.get("credentialSubject")
    if isinstance(subject, Mapping):
        return subject
    return {}


def _issuer_id(credential: Credential) -> Any:
    issuer = credential.get("issuer")
    if isinstance(issuer, Mapping):
        return issuer.get("id")
    return None


def as_list(value: Any) -> List[Any]:
    """Coerce ``@context`` / ``type`` values into a list; missing means empty."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return list(value)
    return []


def _same_value(actual: Any, expected: str) -> bool:
    # no coercion: 1 never equals "1"
    return type(actual) is type(expected) and actual == expected


def credential_matches(claim: ClaimRequest, credential: Credential) -> bool:
    if not isinstance(credential, Mapping):
        return False

    if claim.claim_type and claim.claim_value:
        subject = _subject(credential)
        if claim.claim_type not in subject or not _same_value(subject[claim.claim_type], claim.claim_value):
            return False
    elif claim.claim_type and claim.claim_type not in _subject(credential):
        return False

    if claim.issuers is not None:
        if _issuer_id(credential) not in [issuer.did for issuer in claim.issuers]:
            return False

    if claim.credential_context and claim.credential_context not in as_list(credential.get("@context")):
        return False

    if claim.credential_type and claim.credential_type not in as_list(credential.get("type")):
        return False

    return True


def filter_credentials(claim: ClaimRequest, credentials: Sequence[Credential]) -> List[Credential]:
    return [credential for credential in credentials if credential_matches(claim, credential)]
