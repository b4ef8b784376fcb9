from __future__ import annotations

import base64
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import requests

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rv_backends import OutcomeKind, VerificationOutcome  # noqa: E402

SAMPLE_PREDICATE: Dict[str, Any] = {
    "buildType": "https://github.com/slsa-framework/slsa-github-generator/go@v1",
    "builder": {
        "id": "https://github.com/slsa-framework/slsa-github-generator/"
        ".github/workflows/builder_go_slsa3.yml@refs/tags/v1.9.0"
    },
    "metadata": {
        "buildInvocationId": "7321045912-1",
        "buildStartedOn": "2023-12-31T18:04:12Z",
    },
    "invocation": {
        "configSource": {
            "uri": "git+https://github.com/caddyserver/caddy@refs/tags/v2.7.6",
            "digest": {"sha1": "6d9a83376b5e19b3c0368541ee46044ab284038b"},
        }
    },
}


def make_envelope(predicate: Optional[Dict[str, Any]] = None, **statement_extra) -> bytes:
    statement: Dict[str, Any] = {
        "_type": "https://in-toto.io/Statement/v0.1",
        "predicateType": "https://slsa.dev/provenance/v0.2",
        "subject": [{"name": "caddy", "digest": {"sha256": "00" * 32}}],
    }
    if predicate is not None:
        statement["predicate"] = predicate
    statement.update(statement_extra)
    payload = base64.b64encode(json.dumps(statement).encode("utf-8")).decode("ascii")
    envelope = {
        "payloadType": "application/vnd.in-toto+json",
        "payload": payload,
        "signatures": [{"keyid": "", "sig": "c2ln"}],
    }
    return json.dumps(envelope).encode("utf-8")


class FakeResponse:
    def __init__(self, status: int = 200, body: bytes = b""):
        self.status_code = status
        self.body = body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.body), chunk_size):
            yield self.body[i : i + chunk_size]


class FakeHttp:
    """Stands in for requests.Session; unknown URLs answer 404."""

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes = routes or {}
        self.calls: List[str] = []
        self.closed = False

    def close(self) -> None:
        self.closed = True

    def get(self, url: str, **kwargs):
        self.calls.append(url)
        route = self.routes.get(url)
        if isinstance(route, Exception):
            raise route
        if route is None:
            return FakeResponse(404)
        if isinstance(route, FakeResponse):
            return route
        return FakeResponse(200, route)


class FakeBackend:
    name = "fake"

    def __init__(self, fail: tuple = (), payload: Optional[bytes] = None):
        self.fail = set(fail)
        self.payload = payload if payload is not None else make_envelope(SAMPLE_PREDICATE)
        self.calls: List[tuple] = []

    def check_available(self) -> None:
        return None

    def verify_blob_attestation(self, bundle, attestation_type, subject, want_payload=False):
        self.calls.append((attestation_type, Path(bundle).name, Path(subject).name, want_payload))
        if attestation_type in self.fail:
            return VerificationOutcome.failed(attestation_type, "signature mismatch")
        return VerificationOutcome(
            OutcomeKind.VERIFIED,
            attestation_type,
            payload=self.payload if want_payload else None,
        )


def release_routes(artifact: str, version: str) -> Dict[str, bytes]:
    base = f"https://github.com/caddyserver/caddy/releases/download/v{version}/{artifact}"
    return {
        base: b"\x7fELF binary",
        base + ".intoto.bundle": b'{"bundle": "provenance"}',
        base + ".sbom.bundle": b'{"bundle": "sbom"}',
    }


@pytest.fixture(scope="session")
def repo_root() -> Path:
    return ROOT


@pytest.fixture
def envelope() -> bytes:
    return make_envelope(SAMPLE_PREDICATE)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()
