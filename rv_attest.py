#!/usr/bin/env python3
"""Verify the provenance and SBOM attestations of a fetched release."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from rv_backends import OutcomeKind, VerificationOutcome
from rv_errors import PreconditionError
from rv_fetch import FetchedResources

PROVENANCE_TYPE = "slsaprovenance"
SBOM_TYPE = "https://cyclonedx.org/bom"


@dataclass(frozen=True)
class AttestationResults:
    provenance: VerificationOutcome
    sbom: VerificationOutcome

    @property
    def passed(self) -> bool:
        return self.provenance.verified and self.sbom.verified

    def outcomes(self) -> Tuple[VerificationOutcome, VerificationOutcome]:
        return self.provenance, self.sbom


def verify_attestation(
    backend,
    artifact: Path,
    bundle: Path,
    attestation_type: str,
    want_payload: bool = False,
) -> VerificationOutcome:
    """Run one verification. Backend errors become a FAILED outcome."""
    try:
        return backend.verify_blob_attestation(
            bundle, attestation_type, artifact, want_payload=want_payload
        )
    except PreconditionError:
        raise
    except Exception as e:
        return VerificationOutcome(OutcomeKind.FAILED, attestation_type, detail=str(e))


def verify_release(backend, fetched: FetchedResources, fail_fast: bool = True, progress=None):
    """Verify provenance, then SBOM.

    With fail_fast, a provenance failure means SBOM is never invoked and is
    reported as SKIPPED. Without it both run and both outcomes are kept.
    """
    if progress is not None:
        progress(PROVENANCE_TYPE)
    provenance = verify_attestation(
        backend, fetched.binary, fetched.provenance, PROVENANCE_TYPE, want_payload=True
    )

    if fail_fast and not provenance.verified:
        sbom = VerificationOutcome.skipped(SBOM_TYPE, "provenance verification failed")
        return AttestationResults(provenance, sbom)

    if progress is not None:
        progress(SBOM_TYPE)
    sbom = verify_attestation(backend, fetched.binary, fetched.sbom, SBOM_TYPE)
    return AttestationResults(provenance, sbom)
