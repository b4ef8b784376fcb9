#!/usr/bin/env python3
"""Unified CLI wrapper for release verification tools."""

from __future__ import annotations

import importlib
import sys
from typing import List, Optional, Tuple

_COMMANDS: dict[str, Tuple[str, str]] = {
    "verify": ("rv_verify", "Download a release and verify its provenance and SBOM"),
    "resolve": ("rv_identity", "Print the artifact name and download URLs"),
    "decode": ("rv_decode", "Decode build metadata from a provenance envelope"),
}

_BANNER = "release-verify: SLSA provenance and SBOM verification"


def _render_help() -> str:
    lines = [
        _BANNER,
        "",
        "Usage:",
        "  rv <command> [options]",
        "",
        "Commands:",
    ]
    for name, (_, description) in _COMMANDS.items():
        lines.append(f"  {name:<8} {description}")
    lines.extend(
        [
            "",
            "Run: rv <command> --help for command-specific options.",
        ]
    )
    return "\n".join(lines)


def _dispatch(command: str, argv: List[str]) -> int:
    module_name, _ = _COMMANDS[command]
    module = importlib.import_module(module_name)

    old_argv = sys.argv
    sys.argv = [f"rv {command}", *argv]
    try:
        result = module.main()
        return int(result) if result is not None else 0
    except SystemExit as exc:
        code = exc.code
        if code is None:
            return 0
        return code if isinstance(code, int) else 1
    finally:
        sys.argv = old_argv


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if not argv or argv[0] in {"-h", "--help"}:
        print(_render_help())
        return 0

    command, *rest = argv
    if command not in _COMMANDS:
        print(f"Unknown command: {command}", file=sys.stderr)
        print(_render_help())
        return 2

    return _dispatch(command, rest)


if __name__ == "__main__":
    sys.exit(main())
