#!/usr/bin/env python3
"""Error taxonomy for release verification.

Every error is terminal for the current session. The orchestrator in
rv_verify.py is the only place that turns these into exit codes.
"""

from __future__ import annotations

from typing import Optional


class ReleaseVerifyError(Exception):
    """Base class for all pipeline errors."""

    rule_id = "RV-000"

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class PreconditionError(ReleaseVerifyError):
    """Missing external capability or invalid operator input."""

    rule_id = "INPUT-001"


class EnvironmentCheckError(PreconditionError):
    rule_id = "ENV-001"


class FetchError(ReleaseVerifyError):
    """A remote resource could not be retrieved."""

    rule_id = "FETCH-001"

    def __init__(self, kind: str, url: str, reason: str):
        super().__init__(f"Failed to download {kind} from {url}", reason)
        self.kind = kind
        self.url = url


class VerificationError(ReleaseVerifyError):
    """An attestation failed its cryptographic or structural check."""

    rule_id = "ATTEST-001"

    def __init__(self, attestation_type: str, message: str, details: Optional[str] = None):
        super().__init__(message, details)
        self.attestation_type = attestation_type


class DecodeError(ReleaseVerifyError):
    """The verified payload could not be decoded into a predicate."""

    rule_id = "DECODE-001"
