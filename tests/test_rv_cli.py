from __future__ import annotations

import rv


def test_rv_help(capsys):
    assert rv.main(["--help"]) == 0
    captured = capsys.readouterr()
    assert "Usage:" in captured.out
    assert "verify" in captured.out


def test_rv_unknown_command(capsys):
    assert rv.main(["nope"]) == 2
    captured = capsys.readouterr()
    assert "Unknown command" in captured.err
    assert "Usage:" in captured.out


def test_rv_dispatch_resolve(capsys):
    assert rv.main(["resolve", "2.7.6", "darwin", "arm64"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "caddy_2.7.6_mac_arm64"
    assert lines[2].endswith(".intoto.bundle")


def test_rv_dispatch_help(capsys):
    assert rv.main(["decode", "--help"]) == 0
    assert "provenance envelope" in capsys.readouterr().out
