"""
VCS revision lookup - best effort, never blocking.

The ledger links each record to "the revision the workspace was on". Any
failure (no git, not a repo, slow disk, timeout) yields "unknown".
"""

import subprocess
from pathlib import Path
from typing import Optional, Union

from governance_logger import log_debug
from orchestration_paths import DEFAULT_VCS_TIMEOUT_SECONDS

UNKNOWN_REVISION = "unknown"


class RevisionProvider:
    """Source of the current revision id. Must never raise."""

    def current_revision_id(self) -> str:
        return UNKNOWN_REVISION


class StaticRevisionProvider(RevisionProvider):
    """Fixed revision id (tests, hosts that already know the revision)."""

    def __init__(self, revision_id: str = UNKNOWN_REVISION):
        self.revision_id = revision_id or UNKNOWN_REVISION

    def current_revision_id(self) -> str:
        return self.revision_id


class GitRevisionProvider(RevisionProvider):
    """Short HEAD sha via `git rev-parse --short HEAD`, bounded by a timeout."""

    def __init__(self, cwd: Union[str, Path], timeout: Optional[float] = None):
        self.cwd = str(cwd)
        self.timeout = timeout if timeout is not None else DEFAULT_VCS_TIMEOUT_SECONDS

    def current_revision_id(self) -> str:
        try:
            result = subprocess.run(
                ["git", "rev-parse", "--short", "HEAD"],
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            log_debug(f"git revision lookup failed in {self.cwd}: {e}")
            return UNKNOWN_REVISION

        if result.returncode != 0:
            return UNKNOWN_REVISION
        return result.stdout.strip() or UNKNOWN_REVISION
