#!/usr/bin/env python3
"""Resolve a release identity to its artifact name and remote resources.

Usage:
    python rv_identity.py 2.7.6 darwin arm64
    python rv_identity.py 2.7.6 --json

Output is the artifact name followed by the binary, provenance and SBOM URLs.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, Mapping, Optional, Tuple

from rv_errors import PreconditionError

# =============================================================================
# Constants
# =============================================================================

DEFAULT_BASE_URL = "https://github.com/caddyserver/caddy/releases/download"
DEFAULT_ARTIFACT_PREFIX = "caddy"

SUFFIXES: Dict[str, str] = {
    "binary": "",
    "provenance": ".intoto.bundle",
    "sbom": ".sbom.bundle",
}


class Platform(Enum):
    LINUX = "linux"
    DARWIN = "darwin"
    WINDOWS = "windows"


class Architecture(Enum):
    AMD64 = "amd64"
    ARM64 = "arm64"
    ARM = "arm"


# =============================================================================
# Value types
# =============================================================================


@dataclass(frozen=True)
class ReleaseIdentity:
    version: str
    platform: Platform = Platform.LINUX
    architecture: Architecture = Architecture.AMD64


@dataclass(frozen=True)
class ResourceSet:
    binary_url: str
    provenance_url: str
    sbom_url: str

    def items(self) -> Iterator[Tuple[str, str, str]]:
        """Yield (kind, url, suffix) in fetch order."""
        yield "binary", self.binary_url, SUFFIXES["binary"]
        yield "provenance", self.provenance_url, SUFFIXES["provenance"]
        yield "sbom", self.sbom_url, SUFFIXES["sbom"]


def _default_aliases() -> Mapping[Platform, str]:
    return {Platform.DARWIN: "mac"}


@dataclass(frozen=True)
class ReleaseTemplate:
    """Where release assets live and how their names are spelled."""

    base_url: str = DEFAULT_BASE_URL
    artifact_prefix: str = DEFAULT_ARTIFACT_PREFIX
    platform_aliases: Mapping[Platform, str] = field(default_factory=_default_aliases)

    @classmethod
    def from_env(
        cls,
        base_url: Optional[str] = None,
        artifact_prefix: Optional[str] = None,
    ) -> "ReleaseTemplate":
        return cls(
            base_url=(base_url or os.environ.get("RV_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
            artifact_prefix=(
                artifact_prefix or os.environ.get("RV_ARTIFACT_PREFIX") or DEFAULT_ARTIFACT_PREFIX
            ),
        )


DEFAULT_TEMPLATE = ReleaseTemplate()


# =============================================================================
# Input validation
# =============================================================================


def _allowed(enum_cls) -> str:
    return ", ".join(member.value for member in enum_cls)


def parse_identity(
    version: Optional[str],
    platform: str = Platform.LINUX.value,
    architecture: str = Architecture.AMD64.value,
) -> ReleaseIdentity:
    """Validate operator input and build a ReleaseIdentity.

    Raises PreconditionError before anything touches the network.
    """
    version = (version or "").strip()
    if version.startswith("v"):
        version = version[1:]
    if not version:
        raise PreconditionError("Version is required")

    try:
        platform_value = Platform(platform)
    except ValueError:
        raise PreconditionError(
            f"Invalid platform: {platform}. Must be one of: {_allowed(Platform)}"
        ) from None

    try:
        arch_value = Architecture(architecture)
    except ValueError:
        raise PreconditionError(
            f"Invalid architecture: {architecture}. Must be one of: {_allowed(Architecture)}"
        ) from None

    return ReleaseIdentity(version, platform_value, arch_value)


# =============================================================================
# Resolution
# =============================================================================


def artifact_name(identity: ReleaseIdentity, template: ReleaseTemplate = DEFAULT_TEMPLATE) -> str:
    platform = template.platform_aliases.get(identity.platform, identity.platform.value)
    return (
        f"{template.artifact_prefix}_{identity.version}_{platform}_{identity.architecture.value}"
    )


def resolve(
    identity: ReleaseIdentity, template: ReleaseTemplate = DEFAULT_TEMPLATE
) -> Tuple[str, ResourceSet]:
    """Map an identity to its artifact name and the three resource URLs."""
    name = artifact_name(identity, template)
    prefix = f"{template.base_url}/v{identity.version}/{name}"
    return name, ResourceSet(
        binary_url=prefix + SUFFIXES["binary"],
        provenance_url=prefix + SUFFIXES["provenance"],
        sbom_url=prefix + SUFFIXES["sbom"],
    )


# =============================================================================
# CLI
# =============================================================================


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Resolve a release to its artifact name and download URLs"
    )
    parser.add_argument("version", help="Release version (e.g., 2.7.6)")
    parser.add_argument("platform", nargs="?", default=Platform.LINUX.value)
    parser.add_argument("arch", nargs="?", default=Architecture.AMD64.value)
    parser.add_argument("--base-url", help="Release download base URL")
    parser.add_argument("--artifact-prefix", help="Artifact name prefix")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    args = parser.parse_args()

    try:
        identity = parse_identity(args.version, args.platform, args.arch)
    except PreconditionError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    template = ReleaseTemplate.from_env(args.base_url, args.artifact_prefix)
    name, resources = resolve(identity, template)

    if args.json:
        output = {"artifact": name}
        output.update({kind: url for kind, url, _ in resources.items()})
        print(json.dumps(output, indent=2))
    else:
        print(name)
        for _, url, _ in resources.items():
            print(url)
    return 0


if __name__ == "__main__":
    sys.exit(main())
