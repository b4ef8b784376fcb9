from __future__ import annotations

import base64
import copy
import json
import sys
from pathlib import Path

import pytest
from conftest import SAMPLE_PREDICATE, make_envelope

import rv_decode
from rv_backends import OutcomeKind, VerificationOutcome
from rv_decode import MISSING, BuildPredicate, decode, extract_predicate, render_lines
from rv_errors import DecodeError
from rv_session import Session


def _verified(payload: bytes) -> VerificationOutcome:
    return VerificationOutcome(OutcomeKind.VERIFIED, "slsaprovenance", payload=payload)


def test_decode_recovers_fields(envelope: bytes) -> None:
    predicate = decode(_verified(envelope))
    assert predicate == BuildPredicate(
        build_type=SAMPLE_PREDICATE["buildType"],
        builder_id=SAMPLE_PREDICATE["builder"]["id"],
        build_invocation_id="7321045912-1",
        build_started_on="2023-12-31T18:04:12Z",
        config_source_uri="git+https://github.com/caddyserver/caddy@refs/tags/v2.7.6",
        config_source_digest_sha1="6d9a83376b5e19b3c0368541ee46044ab284038b",
    )


def test_partial_predicate_renders_missing() -> None:
    partial = copy.deepcopy(SAMPLE_PREDICATE)
    del partial["metadata"]["buildStartedOn"]
    predicate = decode(_verified(make_envelope(partial)))

    assert predicate.build_started_on is None
    assert "Build Time: null" in render_lines(predicate)
    assert predicate.build_invocation_id == "7321045912-1"


def test_statement_without_predicate() -> None:
    predicate = decode(_verified(make_envelope(None)))
    assert predicate == BuildPredicate()
    assert all(line.endswith(f": {MISSING}") for line in render_lines(predicate))


def test_non_dict_intermediate_is_missing() -> None:
    predicate = decode(_verified(make_envelope({"buildType": "X", "builder": "just-a-string"})))
    assert predicate.build_type == "X"
    assert predicate.builder_id is None


def test_non_string_values_are_rendered_as_json() -> None:
    predicate = decode(_verified(make_envelope({"metadata": {"buildInvocationId": 42}})))
    assert predicate.build_invocation_id == "42"


def test_render_lines_order(envelope: bytes) -> None:
    lines = render_lines(decode(_verified(envelope)))
    labels = [line.split(":", 1)[0] for line in lines]
    assert labels == ["Version", "Builder", "Build ID", "Build Time", "Repository", "Commit"]
    assert lines[0] == f"Version: {SAMPLE_PREDICATE['buildType']}"


def test_invalid_base64_is_fatal() -> None:
    envelope = json.dumps({"payloadType": "application/vnd.in-toto+json", "payload": "%%%"})
    with pytest.raises(DecodeError, match="Invalid base64"):
        extract_predicate(envelope.encode("utf-8"))


def test_invalid_inner_json_is_fatal() -> None:
    payload = base64.b64encode(b"{not json").decode("ascii")
    with pytest.raises(DecodeError, match="not valid JSON"):
        extract_predicate(json.dumps({"payload": payload}).encode("utf-8"))


def test_invalid_envelope_json_is_fatal() -> None:
    with pytest.raises(DecodeError, match="Envelope is not valid JSON"):
        extract_predicate(b"Verified OK")


def test_envelope_without_payload() -> None:
    with pytest.raises(DecodeError, match="no payload"):
        extract_predicate(b'{"payloadType": "application/vnd.in-toto+json"}')


def test_decode_requires_verified_outcome(envelope: bytes) -> None:
    with pytest.raises(DecodeError, match="unverified"):
        decode(VerificationOutcome(OutcomeKind.FAILED, "slsaprovenance", payload=envelope))


def test_decode_requires_payload() -> None:
    with pytest.raises(DecodeError, match="did not return"):
        decode(VerificationOutcome(OutcomeKind.VERIFIED, "slsaprovenance"))


def test_write_predicate_is_cleaned_up(tmp_path: Path) -> None:
    session = Session(tmp_path)
    path = rv_decode.write_predicate(SAMPLE_PREDICATE, session)
    assert path == tmp_path / "provenance.json"
    assert json.loads(path.read_text(encoding="utf-8")) == SAMPLE_PREDICATE
    session.cleanup()
    assert not path.exists()


def test_decode_cli(tmp_path: Path, monkeypatch, capsys, envelope: bytes) -> None:
    path = tmp_path / "envelope.json"
    path.write_bytes(envelope)
    monkeypatch.setattr(sys, "argv", ["rv_decode.py", str(path), "--json"])
    assert rv_decode.main() == 0
    output = json.loads(capsys.readouterr().out)
    assert output["build_type"] == SAMPLE_PREDICATE["buildType"]


def test_decode_cli_rejects_bundle_without_envelope(tmp_path: Path, monkeypatch, capsys) -> None:
    path = tmp_path / "empty.bundle"
    path.write_text("{}", encoding="utf-8")
    monkeypatch.setattr(sys, "argv", ["rv_decode.py", str(path)])
    assert rv_decode.main() == 1
    assert "no DSSE envelope" in capsys.readouterr().err


def test_decode_with_session_stages_predicate(tmp_path: Path, envelope: bytes) -> None:
    session = Session(tmp_path)
    predicate = decode(_verified(envelope), session)
    assert predicate.build_type == SAMPLE_PREDICATE["buildType"]
    assert session.path_for("predicate") == tmp_path / "provenance.json"
    session.cleanup()
    assert list(tmp_path.iterdir()) == []


def test_decode_missing_payload_carries_detail() -> None:
    outcome = VerificationOutcome(
        OutcomeKind.VERIFIED, "slsaprovenance", detail="Cannot read envelope from bundle"
    )
    with pytest.raises(DecodeError) as excinfo:
        decode(outcome)
    assert excinfo.value.details == "Cannot read envelope from bundle"
