#!/usr/bin/env python3
"""Verification session: owns every file staged on disk and removes them.

A Session is passed explicitly through fetch, verify and decode so cleanup
has a concrete list to work from instead of globbing the working directory.
"""

from __future__ import annotations

import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Union


@dataclass(frozen=True)
class StagedFile:
    kind: str
    path: Path


class Session:
    def __init__(self, workdir: Optional[Union[str, Path]] = None):
        self.workdir = Path(workdir) if workdir is not None else Path.cwd()
        self.staged: List[StagedFile] = []

    def stage_path(self, kind: str, filename: str) -> Path:
        """Register a file before it is written; returns the path to write to."""
        path = self.workdir / filename
        for previous in self.staged:
            if previous.kind == kind and previous.path != path:
                previous.path.unlink(missing_ok=True)
        self.staged = [s for s in self.staged if s.kind != kind]
        self.staged.append(StagedFile(kind, path))
        return path

    def path_for(self, kind: str) -> Optional[Path]:
        for staged in self.staged:
            if staged.kind == kind:
                return staged.path
        return None

    def cleanup(self) -> List[Path]:
        """Delete all staged files. Missing files are ignored."""
        removed: List[Path] = []
        for staged in self.staged:
            try:
                staged.path.unlink()
            except FileNotFoundError:
                continue
            removed.append(staged.path)
        self.staged = []
        return removed

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    @classmethod
    @contextmanager
    def temporary(cls, prefix: str = "release-verify-") -> Iterator["Session"]:
        """Session in a private directory, removed with its contents on exit."""
        workdir = Path(tempfile.mkdtemp(prefix=prefix))
        session = cls(workdir)
        try:
            yield session
        finally:
            session.staged = []
            shutil.rmtree(workdir, ignore_errors=True)
