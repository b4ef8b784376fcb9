#!/usr/bin/env python3
"""Verify the SLSA provenance and SBOM attestations of a release artifact.

The pipeline resolves the release to its download URLs, fetches the binary
and both attestation bundles, verifies each bundle against the binary and
prints the build metadata from the provenance predicate. Every file staged
during the run is removed before exit, whatever the outcome.

Usage:
    python rv_verify.py <version> [platform] [arch]
    python rv_verify.py 2.7.6
    python rv_verify.py 2.7.6 darwin arm64
    python rv_verify.py 2.7.6 windows amd64 --json

Exit codes:
    0 = Verification passed
    1 = Verification failed, or invalid input / missing dependency
"""

from __future__ import annotations

import argparse
import json
import os
import pathlib
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import rv_fetch
from rv_attest import PROVENANCE_TYPE, SBOM_TYPE, AttestationResults, verify_release
from rv_backends import BACKENDS, OutcomeKind, TrustPolicy, get_backend, signer_identity
from rv_decode import BuildPredicate, decode, render_lines
from rv_errors import (
    PreconditionError,
    ReleaseVerifyError,
    VerificationError,
)
from rv_fetch import FetchedResources
from rv_identity import (
    Architecture,
    Platform,
    ReleaseIdentity,
    ReleaseTemplate,
    ResourceSet,
    parse_identity,
    resolve,
)
from rv_session import Session

USAGE_EXAMPLES = """\
  version: release version (e.g., 2.7.6)
  platform: linux, darwin, windows (default: linux)
  arch: amd64, arm64, arm (default: amd64)

Examples:
  release-verify 2.7.6
  release-verify 2.7.6 darwin arm64
  release-verify 2.7.6 windows amd64
"""

ATTESTATION_LABELS = {
    PROVENANCE_TYPE: "SLSA provenance",
    SBOM_TYPE: "SBOM",
}


class Stage(Enum):
    INIT = "init"
    VALIDATE_ENVIRONMENT = "validate-environment"
    VALIDATE_INPUT = "validate-input"
    RESOLVE = "resolve"
    FETCH = "fetch"
    VERIFY_PROVENANCE = "verify-provenance"
    VERIFY_SBOM = "verify-sbom"
    DECODE = "decode"
    DISPLAY = "display"
    CLEANUP = "cleanup"
    DONE = "done"
    FAILED = "failed"


# =============================================================================
# Report
# =============================================================================


class Severity(Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"


@dataclass
class ReportEntry:
    rule_id: str
    passed: bool
    severity: Severity
    message: str
    details: Optional[str] = None


class VerificationReport:
    def __init__(self):
        self.results: List[ReportEntry] = []
        self.stage = Stage.INIT
        self.failed_stage: Optional[Stage] = None
        self.artifact: Optional[str] = None
        self.resources: Optional[ResourceSet] = None
        self.attestations: Optional[AttestationResults] = None
        self.predicate: Optional[BuildPredicate] = None
        self.signer: Optional[str] = None
        self.removed: List[pathlib.Path] = []

    def add_pass(self, rule_id: str, message: str):
        self.results.append(ReportEntry(rule_id, True, Severity.INFO, message))

    def add_error(self, rule_id: str, message: str, details: Optional[str] = None):
        self.results.append(ReportEntry(rule_id, False, Severity.ERROR, message, details))

    def add_warning(self, rule_id: str, message: str, details: Optional[str] = None):
        self.results.append(ReportEntry(rule_id, False, Severity.WARNING, message, details))

    def fail(self, exc: ReleaseVerifyError):
        self.failed_stage = self.stage
        self.add_error(exc.rule_id, exc.message, exc.details)

    @property
    def passed(self) -> bool:
        return not any(r.severity == Severity.ERROR and not r.passed for r in self.results)

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def print_report(self, verbose: bool = False):
        errors = [r for r in self.results if r.severity == Severity.ERROR and not r.passed]
        warnings = [r for r in self.results if r.severity == Severity.WARNING and not r.passed]

        if self.predicate is not None:
            print("Build Information:")
            for line in render_lines(self.predicate):
                print(f"  {line}")
            if verbose and self.signer:
                print(f"  Signer: {self.signer}")

        for r in errors:
            print(f"❌ [{r.rule_id}] {r.message}", file=sys.stderr)
            if r.details:
                print(f"      {r.details}", file=sys.stderr)
        if verbose:
            for r in warnings:
                print(f"⚠️  [{r.rule_id}] {r.message}", file=sys.stderr)

        if self.passed:
            print("🎉 All verifications completed successfully!")

    def to_dict(self) -> Dict[str, Any]:
        output: Dict[str, Any] = {
            "passed": self.passed,
            "stage": (self.failed_stage or self.stage).value,
            "artifact": self.artifact,
            "resources": None,
            "attestations": [],
            "predicate": self.predicate.to_dict() if self.predicate else None,
            "signer": self.signer,
            "results": [
                {
                    "rule_id": r.rule_id,
                    "passed": r.passed,
                    "severity": r.severity.value,
                    "message": r.message,
                    "details": r.details,
                }
                for r in self.results
            ],
        }
        if self.resources is not None:
            output["resources"] = {kind: url for kind, url, _ in self.resources.items()}
        if self.attestations is not None:
            output["attestations"] = [
                {"type": o.attestation_type, "outcome": o.kind.value, "detail": o.detail}
                for o in self.attestations.outcomes()
            ]
        return output


# =============================================================================
# Pipeline
# =============================================================================


@dataclass(frozen=True)
class PipelineResult:
    artifact: str
    resources: ResourceSet
    fetched: FetchedResources
    attestations: AttestationResults
    predicate: BuildPredicate


def _quiet(*_args, **_kwargs) -> None:
    return None


def _record_outcomes(results: AttestationResults, report: VerificationReport, say) -> None:
    for rule_id, outcome in (("ATTEST-001", results.provenance), ("ATTEST-002", results.sbom)):
        label = ATTESTATION_LABELS[outcome.attestation_type]
        if outcome.kind is OutcomeKind.VERIFIED:
            report.add_pass(rule_id, f"{label} verification successful")
            say(f"✅ {label} verification successful")
        elif outcome.kind is OutcomeKind.SKIPPED:
            report.add_warning(rule_id, f"{label} verification not attempted", outcome.detail)
        else:
            report.add_error(rule_id, f"{label} verification failed", outcome.detail)


def run_pipeline(
    identity: ReleaseIdentity,
    backend,
    session: Session,
    report: VerificationReport,
    http=None,
    template: Optional[ReleaseTemplate] = None,
    fail_fast: bool = True,
    timeout: Optional[float] = None,
    say=print,
) -> PipelineResult:
    """Resolve, fetch, verify and decode. Raises on the first failure."""
    template = template or ReleaseTemplate()

    report.stage = Stage.RESOLVE
    artifact, resources = resolve(identity, template)
    report.artifact = artifact
    report.resources = resources
    say(
        f"Verifying release: {identity.version} for "
        f"{identity.platform.value}/{identity.architecture.value}"
    )

    report.stage = Stage.FETCH
    say(f"Downloading artifact: {artifact}")
    fetched = rv_fetch.fetch(resources, artifact, session, http=http, timeout=timeout)
    report.add_pass("FETCH-001", "Downloaded binary, provenance and SBOM bundles")

    def on_verify(attestation_type: str) -> None:
        if attestation_type == PROVENANCE_TYPE:
            report.stage = Stage.VERIFY_PROVENANCE
        else:
            report.stage = Stage.VERIFY_SBOM
        say(f"Verifying {ATTESTATION_LABELS[attestation_type]}...")

    attestations = verify_release(backend, fetched, fail_fast=fail_fast, progress=on_verify)
    report.attestations = attestations
    _record_outcomes(attestations, report, say)
    if not attestations.provenance.verified:
        report.stage = Stage.VERIFY_PROVENANCE
        raise VerificationError(PROVENANCE_TYPE, "SLSA provenance verification failed")
    if not attestations.sbom.verified:
        report.stage = Stage.VERIFY_SBOM
        raise VerificationError(SBOM_TYPE, "SBOM verification failed")

    report.signer = signer_identity(fetched.provenance)

    report.stage = Stage.DECODE
    say("Extracting provenance information...")
    predicate = decode(attestations.provenance, session)
    report.predicate = predicate
    report.add_pass("DECODE-001", "Provenance predicate decoded")

    return PipelineResult(artifact, resources, fetched, attestations, predicate)


def verify_release_artifact(
    identity: ReleaseIdentity,
    backend,
    session: Session,
    http=None,
    template: Optional[ReleaseTemplate] = None,
    fail_fast: bool = True,
    timeout: Optional[float] = None,
    say=print,
) -> VerificationReport:
    """Run the pipeline and always clean up. Never raises pipeline errors."""
    report = VerificationReport()
    try:
        run_pipeline(
            identity,
            backend,
            session,
            report,
            http=http,
            template=template,
            fail_fast=fail_fast,
            timeout=timeout,
            say=say,
        )
        report.stage = Stage.DISPLAY
    except VerificationError:
        # outcomes were already recorded individually
        report.failed_stage = report.stage
    except ReleaseVerifyError as exc:
        report.fail(exc)
    finally:
        report.stage = Stage.CLEANUP
        report.removed = session.cleanup()
    report.stage = Stage.DONE if report.passed else Stage.FAILED
    return report


# =============================================================================
# CLI
# =============================================================================


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="release-verify",
        description="Verify SLSA provenance and SBOM attestations for a release",
        epilog=USAGE_EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("version", nargs="?", help="Release version (e.g., 2.7.6)")
    parser.add_argument("platform", nargs="?", default=Platform.LINUX.value)
    parser.add_argument("arch", nargs="?", default=Architecture.AMD64.value)
    parser.add_argument(
        "--backend",
        choices=BACKENDS,
        default=os.environ.get("RV_BACKEND", "cosign"),
        help="Attestation verification backend (default: cosign)",
    )
    parser.add_argument("--base-url", help="Release download base URL")
    parser.add_argument("--artifact-prefix", help="Artifact name prefix (default: caddy)")
    parser.add_argument("--certificate-identity", help="Expected signer identity")
    parser.add_argument(
        "--certificate-identity-regexp", help="Expected signer identity pattern (cosign only)"
    )
    parser.add_argument("--certificate-oidc-issuer", help="Expected signer OIDC issuer")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Use Sigstore TUF cache only (sigstore backend)",
    )
    parser.add_argument("--timeout", type=float, help="Download timeout in seconds")
    parser.add_argument(
        "--workdir",
        type=pathlib.Path,
        help="Directory to stage downloads in (default: current directory)",
    )
    parser.add_argument(
        "--isolated",
        action="store_true",
        help="Stage downloads in a private temporary directory",
    )
    parser.add_argument(
        "--keep-going",
        action="store_true",
        help="Verify the SBOM even if provenance verification fails",
    )
    parser.add_argument("--json", action="store_true", help="Output report as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show warnings and signer")
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress progress output")
    return parser


def _parse_args(parser: argparse.ArgumentParser, argv: Optional[List[str]]):
    try:
        return parser.parse_args(argv), None
    except SystemExit as exc:
        return None, 0 if exc.code in (0, None) else 1


def _print_failure(exc: ReleaseVerifyError, stage: Stage, as_json: bool) -> None:
    if as_json:
        print(
            json.dumps(
                {
                    "passed": False,
                    "stage": stage.value,
                    "results": [
                        {
                            "rule_id": exc.rule_id,
                            "passed": False,
                            "severity": "ERROR",
                            "message": exc.message,
                            "details": exc.details,
                        }
                    ],
                },
                indent=2,
            )
        )
        return
    print(f"❌ {exc.message}", file=sys.stderr)
    if exc.details:
        print(exc.details, file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args, code = _parse_args(parser, argv)
    if args is None:
        return code

    say = _quiet if (args.quiet or args.json) else print
    say("Release Provenance Verification Tool")
    say("====================================")

    policy = TrustPolicy(
        identity=args.certificate_identity,
        identity_regexp=args.certificate_identity_regexp,
        issuer=args.certificate_oidc_issuer,
    )
    try:
        backend = get_backend(args.backend, policy, offline=args.offline)
        backend.check_available()
    except PreconditionError as exc:
        _print_failure(exc, Stage.VALIDATE_ENVIRONMENT, args.json)
        return 1

    if not args.version:
        print(parser.format_usage().rstrip(), file=sys.stderr)
        print(USAGE_EXAMPLES, file=sys.stderr)
        return 1

    try:
        identity = parse_identity(args.version, args.platform, args.arch)
    except PreconditionError as exc:
        _print_failure(exc, Stage.VALIDATE_INPUT, args.json)
        return 1

    template = ReleaseTemplate.from_env(args.base_url, args.artifact_prefix)
    options = dict(
        template=template,
        fail_fast=not args.keep_going,
        timeout=args.timeout,
        say=say,
    )
    if args.isolated:
        with Session.temporary() as session:
            report = verify_release_artifact(identity, backend, session, **options)
    else:
        report = verify_release_artifact(identity, backend, Session(args.workdir), **options)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        report.print_report(verbose=args.verbose)
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
