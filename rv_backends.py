#!/usr/bin/env python3
"""Attestation verification backends.

Two implementations of verify-blob-attestation are provided:

- ``cosign``: shells out to the cosign CLI (must be on PATH).
- ``sigstore``: uses the sigstore Python library, then checks the in-toto
  statement's predicateType and subject digest against the artifact.

Both return a VerificationOutcome; neither makes trust-policy decisions
beyond passing the configured identity/issuer through.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import shutil
import subprocess
from dataclasses import dataclass
from enum import Enum
from importlib.util import find_spec
from pathlib import Path
from typing import Any, Dict, List, Optional

from rv_errors import EnvironmentCheckError, PreconditionError

DSSE_PAYLOAD_TYPE = "application/vnd.in-toto+json"

PREDICATE_TYPES = {
    "slsaprovenance": "https://slsa.dev/provenance/v0.2",
    "slsaprovenance02": "https://slsa.dev/provenance/v0.2",
    "slsaprovenance1": "https://slsa.dev/provenance/v1",
    "cyclonedx": "https://cyclonedx.org/bom",
}

COSIGN_INSTALL_HINT = "go install github.com/sigstore/cosign/v2/cmd/cosign@latest"


def predicate_type_uri(attestation_type: str) -> str:
    return PREDICATE_TYPES.get(attestation_type, attestation_type)


# =============================================================================
# Outcomes
# =============================================================================


class OutcomeKind(Enum):
    VERIFIED = "verified"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class VerificationOutcome:
    kind: OutcomeKind
    attestation_type: str
    payload: Optional[bytes] = None
    detail: Optional[str] = None

    @property
    def verified(self) -> bool:
        return self.kind is OutcomeKind.VERIFIED

    @classmethod
    def failed(cls, attestation_type: str, detail: str) -> "VerificationOutcome":
        return cls(OutcomeKind.FAILED, attestation_type, detail=detail)

    @classmethod
    def skipped(cls, attestation_type: str, detail: str) -> "VerificationOutcome":
        return cls(OutcomeKind.SKIPPED, attestation_type, detail=detail)


@dataclass(frozen=True)
class TrustPolicy:
    identity: Optional[str] = None
    identity_regexp: Optional[str] = None
    issuer: Optional[str] = None


# =============================================================================
# Bundle helpers
# =============================================================================


def _load_bundle_json(bundle_path: Path) -> Dict[str, Any]:
    data = json.loads(bundle_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Bundle is not a JSON object")
    return data


def read_envelope(bundle_path: Path) -> Optional[bytes]:
    """Locate the DSSE envelope inside a bundle file.

    Understands sigstore bundles (dsseEnvelope), bare DSSE envelopes and
    legacy cosign bundles whose base64Signature holds the envelope.
    """
    data = _load_bundle_json(bundle_path)

    if isinstance(data.get("dsseEnvelope"), dict):
        return json.dumps(data["dsseEnvelope"]).encode("utf-8")

    if "payloadType" in data and "payload" in data:
        return bundle_path.read_bytes()

    legacy = data.get("base64Signature")
    if isinstance(legacy, str):
        try:
            decoded = base64.b64decode(legacy, validate=True)
            envelope = json.loads(decoded.decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return None
        if isinstance(envelope, dict) and "payload" in envelope:
            return decoded
    return None


def _load_x509():
    try:
        from cryptography import x509
    except Exception as exc:  # pragma: no cover - depends on optional dependency
        raise RuntimeError(
            "cryptography is required to inspect signing certificates. "
            "Install with: pip install cryptography"
        ) from exc
    return x509


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _certificate_from_bundle(data: Dict[str, Any]):
    x509 = _load_x509()
    material = _as_dict(data.get("verificationMaterial"))
    raw = _as_dict(material.get("certificate")).get("rawBytes")
    if not raw:
        chain = _as_dict(material.get("x509CertificateChain")).get("certificates")
        if isinstance(chain, list) and chain:
            raw = _as_dict(chain[0]).get("rawBytes")
    if isinstance(raw, str) and raw:
        return x509.load_der_x509_certificate(base64.b64decode(raw))

    legacy_cert = data.get("cert")
    if isinstance(legacy_cert, str) and legacy_cert:
        pem = base64.b64decode(legacy_cert)
        return x509.load_pem_x509_certificate(pem)
    return None


def signer_identity(bundle_path: Path) -> Optional[str]:
    """Return the signing certificate's SAN (URI or email), if any."""
    x509 = _load_x509()
    try:
        cert = _certificate_from_bundle(_load_bundle_json(bundle_path))
    except (OSError, ValueError, binascii.Error):
        return None
    if cert is None:
        return None
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return None
    for general_name in (x509.UniformResourceIdentifier, x509.RFC822Name):
        values = san.get_values_for_type(general_name)
        if values:
            return values[0]
    return None


def _sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(1 << 16), b""):
            digest.update(chunk)
    return digest.hexdigest()


# =============================================================================
# cosign CLI backend
# =============================================================================


class CosignBackend:
    name = "cosign"

    def __init__(self, policy: Optional[TrustPolicy] = None, executable: str = "cosign"):
        self.policy = policy or TrustPolicy()
        self.executable = executable

    def check_available(self) -> None:
        if shutil.which(self.executable) is None:
            raise EnvironmentCheckError(
                f"{self.executable} is not installed. Please install it first:",
                f"  {COSIGN_INSTALL_HINT}",
            )

    def _policy_args(self) -> List[str]:
        args: List[str] = []
        if self.policy.identity:
            args += ["--certificate-identity", self.policy.identity]
        if self.policy.identity_regexp:
            args += ["--certificate-identity-regexp", self.policy.identity_regexp]
        if self.policy.issuer:
            args += ["--certificate-oidc-issuer", self.policy.issuer]
        return args

    def command(self, bundle: Path, attestation_type: str, subject: Path) -> List[str]:
        return [
            self.executable,
            "verify-blob-attestation",
            "--bundle",
            str(bundle),
            "--type",
            attestation_type,
            *self._policy_args(),
            str(subject),
        ]

    def verify_blob_attestation(
        self,
        bundle: Path,
        attestation_type: str,
        subject: Path,
        want_payload: bool = False,
    ) -> VerificationOutcome:
        try:
            result = subprocess.run(
                self.command(bundle, attestation_type, subject),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise EnvironmentCheckError(
                f"{self.executable} is not installed", COSIGN_INSTALL_HINT
            ) from exc

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            return VerificationOutcome.failed(
                attestation_type, detail or f"cosign exited with {result.returncode}"
            )

        detail = (result.stderr or "").strip() or None
        payload = None
        if want_payload:
            # an unreadable envelope is left for the decode stage to report
            try:
                payload = read_envelope(bundle)
            except (OSError, ValueError) as e:
                detail = f"Cannot read envelope from bundle: {e}"
        return VerificationOutcome(
            OutcomeKind.VERIFIED,
            attestation_type,
            payload=payload,
            detail=detail,
        )


# =============================================================================
# sigstore-python backend
# =============================================================================


class SigstoreBackend:
    name = "sigstore"

    def __init__(self, policy: Optional[TrustPolicy] = None, offline: bool = False):
        self.policy = policy or TrustPolicy()
        self.offline = offline

    def check_available(self) -> None:
        if find_spec("sigstore") is None:
            raise EnvironmentCheckError(
                "sigstore library not installed; cannot verify bundles",
                "Install with: pip install sigstore",
            )
        if self.policy.identity_regexp:
            raise PreconditionError(
                "--certificate-identity-regexp is only supported by the cosign backend"
            )

    def _policy(self):
        from sigstore.verify import policy

        if self.policy.identity:
            return policy.Identity(identity=self.policy.identity, issuer=self.policy.issuer)
        if self.policy.issuer:
            return policy.OIDCIssuer(self.policy.issuer)
        return policy.UnsafeNoOp()

    def verify_blob_attestation(
        self,
        bundle: Path,
        attestation_type: str,
        subject: Path,
        want_payload: bool = False,
    ) -> VerificationOutcome:
        from sigstore.models import Bundle
        from sigstore.verify import Verifier

        try:
            parsed = Bundle.from_json(bundle.read_bytes())
        except Exception as e:
            return VerificationOutcome.failed(attestation_type, f"Failed to parse bundle: {e}")

        try:
            verifier = Verifier.production(offline=self.offline)
            payload_type, payload = verifier.verify_dsse(parsed, self._policy())
        except Exception as e:
            return VerificationOutcome.failed(
                attestation_type, f"Sigstore bundle verification failed: {e}"
            )

        problem = check_statement(payload_type, payload, attestation_type, _sha256_file(subject))
        if problem:
            return VerificationOutcome.failed(attestation_type, problem)

        envelope = None
        if want_payload:
            envelope = json.dumps(
                {
                    "payloadType": payload_type,
                    "payload": base64.b64encode(payload).decode("ascii"),
                }
            ).encode("utf-8")
        return VerificationOutcome(OutcomeKind.VERIFIED, attestation_type, payload=envelope)


def check_statement(
    payload_type: str, payload: bytes, attestation_type: str, subject_sha256: str
) -> Optional[str]:
    """Structural checks on a verified in-toto statement. Returns a problem or None."""
    if payload_type != DSSE_PAYLOAD_TYPE:
        return f"Unexpected DSSE payloadType: {payload_type}"
    try:
        statement = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        return f"Failed to decode statement: {e}"
    if not isinstance(statement, dict):
        return "Statement is not a JSON object"

    expected_type = predicate_type_uri(attestation_type)
    if statement.get("predicateType") != expected_type:
        return (
            f"predicateType mismatch: expected {expected_type}, "
            f"got {statement.get('predicateType')}"
        )

    subjects = statement.get("subject") or []
    digests = {
        s.get("digest", {}).get("sha256") for s in subjects if isinstance(s, dict)
    }
    if subject_sha256 not in digests:
        return f"No statement subject matches artifact digest sha256:{subject_sha256}"
    return None


# =============================================================================
# Factory
# =============================================================================

BACKENDS = ("cosign", "sigstore")


def get_backend(name: str, policy: Optional[TrustPolicy] = None, offline: bool = False):
    if name == "cosign":
        return CosignBackend(policy)
    if name == "sigstore":
        return SigstoreBackend(policy, offline=offline)
    raise PreconditionError(f"Unknown backend: {name}. Must be one of: {', '.join(BACKENDS)}")
