#!/usr/bin/env python3
"""Decode build metadata from a verified SLSA provenance envelope.

The envelope's ``payload`` is base64-encoded JSON (an in-toto Statement);
its ``predicate`` carries the build facts displayed to the operator.

Usage:
    # Decode an envelope or bundle saved on disk
    python rv_decode.py caddy_2.7.6_linux_amd64.intoto.bundle
    python rv_decode.py envelope.json --json
"""

from __future__ import annotations

import argparse
import base64
import binascii
import json
import pathlib
import sys
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple

from rv_backends import VerificationOutcome, read_envelope
from rv_errors import DecodeError
from rv_session import Session

MISSING = "null"
PREDICATE_FILENAME = "provenance.json"

# (field, path within predicate, display label)
FIELDS: Tuple[Tuple[str, Tuple[str, ...], str], ...] = (
    ("build_type", ("buildType",), "Version"),
    ("builder_id", ("builder", "id"), "Builder"),
    ("build_invocation_id", ("metadata", "buildInvocationId"), "Build ID"),
    ("build_started_on", ("metadata", "buildStartedOn"), "Build Time"),
    ("config_source_uri", ("invocation", "configSource", "uri"), "Repository"),
    ("config_source_digest_sha1", ("invocation", "configSource", "digest", "sha1"), "Commit"),
)


@dataclass(frozen=True)
class BuildPredicate:
    build_type: Optional[str] = None
    builder_id: Optional[str] = None
    build_invocation_id: Optional[str] = None
    build_started_on: Optional[str] = None
    config_source_uri: Optional[str] = None
    config_source_digest_sha1: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)


def _lookup(data: Any, path: Tuple[str, ...]) -> Optional[str]:
    for key in path:
        if not isinstance(data, dict) or key not in data:
            return None
        data = data[key]
    if data is None:
        return None
    if isinstance(data, str):
        return data
    return json.dumps(data, sort_keys=True)


def extract_predicate(envelope_bytes: bytes) -> Dict[str, Any]:
    """envelope JSON -> base64 payload -> statement JSON -> predicate."""
    try:
        envelope = json.loads(envelope_bytes)
    except (UnicodeDecodeError, ValueError) as exc:
        raise DecodeError("Envelope is not valid JSON", str(exc)) from exc
    if not isinstance(envelope, dict) or not isinstance(envelope.get("payload"), str):
        raise DecodeError("Envelope has no payload field")

    try:
        statement_bytes = base64.b64decode(envelope["payload"], validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError("Invalid base64 payload in envelope", str(exc)) from exc

    try:
        statement = json.loads(statement_bytes.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise DecodeError("Payload is not valid JSON", str(exc)) from exc
    if not isinstance(statement, dict):
        raise DecodeError("Payload is not a JSON object")

    predicate = statement.get("predicate", {})
    if predicate is None:
        return {}
    if not isinstance(predicate, dict):
        raise DecodeError("Statement predicate is not a JSON object")
    return predicate


def project(predicate: Dict[str, Any]) -> BuildPredicate:
    """Pick the six displayed fields; absent ones stay None."""
    return BuildPredicate(**{name: _lookup(predicate, path) for name, path, _ in FIELDS})


def decode(outcome: VerificationOutcome, session: Optional[Session] = None) -> BuildPredicate:
    """Decode a verified provenance outcome.

    With a session, the raw predicate is also written to provenance.json as a
    staged file so the session's cleanup removes it.
    """
    if not outcome.verified:
        raise DecodeError(f"Cannot decode unverified {outcome.attestation_type} attestation")
    if outcome.payload is None:
        raise DecodeError(
            "Verification did not return an attestation payload", outcome.detail
        )
    predicate = extract_predicate(outcome.payload)
    if session is not None:
        write_predicate(predicate, session)
    return project(predicate)


def write_predicate(predicate: Dict[str, Any], session: Session) -> pathlib.Path:
    path = session.stage_path("predicate", PREDICATE_FILENAME)
    path.write_text(json.dumps(predicate, indent=2), encoding="utf-8")
    return path


def render_lines(predicate: BuildPredicate) -> List[str]:
    values = predicate.to_dict()
    lines = []
    for name, _, label in FIELDS:
        value = values[name]
        lines.append(f"{label}: {MISSING if value is None else value}")
    return lines


# =============================================================================
# CLI
# =============================================================================


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Decode build metadata from a provenance envelope or bundle"
    )
    parser.add_argument("envelope", type=pathlib.Path, help="DSSE envelope or bundle file")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    args = parser.parse_args()

    try:
        envelope = read_envelope(args.envelope)
    except (OSError, ValueError) as exc:
        print(f"Error: cannot read {args.envelope}: {exc}", file=sys.stderr)
        return 1
    if envelope is None:
        print(f"Error: no DSSE envelope found in {args.envelope}", file=sys.stderr)
        return 1

    try:
        predicate = project(extract_predicate(envelope))
    except DecodeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(predicate.to_dict(), indent=2))
    else:
        for line in render_lines(predicate):
            print(f"  {line}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
