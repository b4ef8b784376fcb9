#!/usr/bin/env python3
"""Download release resources into a verification session.

Resources are fetched one at a time in the order binary, provenance, SBOM.
The first failure stops the run; anything already written stays registered
on the session so cleanup still removes it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import requests

from rv_errors import FetchError
from rv_identity import ResourceSet
from rv_session import Session

TOOL_NAME = "release-verify"
TOOL_VERSION = "1.0.0"

DEFAULT_TIMEOUT = 60.0
CHUNK_SIZE = 1 << 16


@dataclass(frozen=True)
class FetchedResources:
    binary: Path
    provenance: Path
    sbom: Path


def resolve_timeout(value: Optional[float] = None) -> float:
    if value is not None:
        return float(value)
    raw = os.environ.get("RV_TIMEOUT", "").strip()
    if not raw:
        return DEFAULT_TIMEOUT
    try:
        return float(raw)
    except ValueError:
        return DEFAULT_TIMEOUT


def new_http_session() -> requests.Session:
    http = requests.Session()
    http.headers["User-Agent"] = f"{TOOL_NAME}/{TOOL_VERSION}"
    return http


def _download(http, kind: str, url: str, target: Path, timeout: float) -> None:
    try:
        with http.get(url, stream=True, timeout=timeout, allow_redirects=True) as response:
            response.raise_for_status()
            with target.open("wb") as fh:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        fh.write(chunk)
    except requests.TooManyRedirects as exc:
        raise FetchError(kind, url, f"redirect loop: {exc}") from exc
    except requests.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else "?"
        raise FetchError(kind, url, f"HTTP {status}") from exc
    except requests.RequestException as exc:
        raise FetchError(kind, url, str(exc)) from exc
    except OSError as exc:
        raise FetchError(kind, url, f"cannot write {target}: {exc}") from exc


def fetch(
    resources: ResourceSet,
    artifact: str,
    session: Session,
    http=None,
    timeout: Optional[float] = None,
) -> FetchedResources:
    """Fetch all three resources, failing fast on the first error."""
    owned = http is None
    if owned:
        http = new_http_session()
    timeout = resolve_timeout(timeout)
    paths = {}
    try:
        for kind, url, suffix in resources.items():
            target = session.stage_path(kind, artifact + suffix)
            _download(http, kind, url, target, timeout)
            paths[kind] = target
    finally:
        if owned:
            http.close()
    return FetchedResources(**paths)
