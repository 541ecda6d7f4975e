import logging

from walette_sdr.matching import filter_credentials
from walette_sdr.models import CredentialsForClaim, Presentation, SDRManifest, ValidationResult

log = logging.getLogger(__name__)


def validate_presentation_against_sdr(manifest: SDRManifest, presentation: Presentation) -> ValidationResult:
    """Check a presentation against the request it answers.

    Every claim request is evaluated, even after an essential one has already
    failed, so the result always carries the matches for each claim in
    manifest order. The presentation is valid unless an essential claim ended
    up with no matching credential.
    """
    valid = True
    claims = []
    for claim in manifest.claims:
        credentials = filter_credentials(claim, presentation.verifiable_credential)

        if claim.essential and not credentials:
            log.info("Essential claim %r not satisfied by presentation", claim.claim_type)
            valid = False

        claims.append(CredentialsForClaim.from_claim(claim, credentials))

    return ValidationResult(valid=valid, claims=claims)
