"""
Orchestration Paths - configuration and file layout
====================================================

Every governance file lives under one subdirectory of the workspace root:

    <root>/.orchestration/
        active_intents.yaml   intent source (human-edited, read-only here)
        agent_trace.jsonl     trace ledger (append-only)
        intent_map.md         human-maintained map of intents to code
        sessions.sqlite       session store used by the CLI hook

All path resolution goes through these helpers. No magic strings elsewhere.

Configuration:
- ORCHESTRATION_ROOT env var: default workspace root (default: cwd)
- ORCHESTRATION_DIR env var: subdirectory name (default: .orchestration)
- ORCHESTRATION_VCS_TIMEOUT env var: seconds for revision lookup (default: 2)
- ORCHESTRATION_MODEL_ID env var: default model identifier in trace records
- ORCHESTRATION_SESSION_DB env var: SQLite session store path
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from governance_logger import log_warn


# === CONFIGURATION ===

ROOT_ENV = "ORCHESTRATION_ROOT"
DIR_ENV = "ORCHESTRATION_DIR"
VCS_TIMEOUT_ENV = "ORCHESTRATION_VCS_TIMEOUT"
MODEL_ID_ENV = "ORCHESTRATION_MODEL_ID"
SESSION_DB_ENV = "ORCHESTRATION_SESSION_DB"

ORCHESTRATION_DIR = ".orchestration"
ACTIVE_INTENTS_FILE = "active_intents.yaml"
TRACE_LEDGER_FILE = "agent_trace.jsonl"
INTENT_MAP_FILE = "intent_map.md"
SESSION_DB_FILE = "sessions.sqlite"

DEFAULT_VCS_TIMEOUT_SECONDS = 2.0
DEFAULT_MODEL_ID = "unknown"

PathLike = Union[str, Path]


@dataclass
class GovernanceConfig:
    """Resolved governance configuration."""
    root: Path
    dir_name: str = ORCHESTRATION_DIR
    vcs_timeout: float = DEFAULT_VCS_TIMEOUT_SECONDS
    model_id: str = DEFAULT_MODEL_ID
    session_db: Optional[Path] = None
    loaded_from: str = "default"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": str(self.root),
            "dir_name": self.dir_name,
            "vcs_timeout": self.vcs_timeout,
            "model_id": self.model_id,
            "session_db": str(self.session_db) if self.session_db else None,
            "loaded_from": self.loaded_from,
        }

    @property
    def orchestration_dir(self) -> Path:
        return self.root / self.dir_name

    @property
    def session_db_path(self) -> Path:
        """SQLite session store: ORCHESTRATION_SESSION_DB, else inside the orchestration dir."""
        return self.session_db or self.orchestration_dir / SESSION_DB_FILE


def load_governance_config(root: Optional[PathLike] = None) -> GovernanceConfig:
    """
    Load configuration from defaults and environment.

    Priority:
    1. Explicit root argument
    2. ORCHESTRATION_* environment variables
    3. Defaults
    """
    loaded_from = "default"

    env_root = os.environ.get(ROOT_ENV, "").strip()
    if root is not None:
        resolved_root = Path(root)
    elif env_root:
        resolved_root = Path(env_root).expanduser()
        loaded_from = "environment"
    else:
        resolved_root = Path.cwd()

    config = GovernanceConfig(root=resolved_root, loaded_from=loaded_from)

    if os.environ.get(DIR_ENV, "").strip():
        config.dir_name = orchestration_dir_name()
        config.loaded_from = "environment"

    timeout = os.environ.get(VCS_TIMEOUT_ENV, "").strip()
    if timeout:
        try:
            config.vcs_timeout = max(0.1, float(timeout))
            config.loaded_from = "environment"
        except ValueError:
            log_warn(f"Ignoring invalid {VCS_TIMEOUT_ENV}={timeout!r}")

    model_id = os.environ.get(MODEL_ID_ENV, "").strip()
    if model_id:
        config.model_id = model_id
        config.loaded_from = "environment"

    session_db = os.environ.get(SESSION_DB_ENV, "").strip()
    if session_db:
        config.session_db = Path(session_db).expanduser()
        config.loaded_from = "environment"

    return config


# === PATH HELPERS ===

def orchestration_dir_name() -> str:
    """Subdirectory name under the workspace root (ORCHESTRATION_DIR or .orchestration)."""
    return os.environ.get(DIR_ENV, "").strip() or ORCHESTRATION_DIR


def intents_source() -> str:
    """Workspace-relative location of the intent file, for messages shown to the agent."""
    return f"{orchestration_dir_name()}/{ACTIVE_INTENTS_FILE}"


def get_orchestration_dir(cwd: PathLike) -> Path:
    return Path(cwd) / orchestration_dir_name()


def get_active_intents_path(cwd: PathLike) -> Path:
    return get_orchestration_dir(cwd) / ACTIVE_INTENTS_FILE


def get_trace_ledger_path(cwd: PathLike) -> Path:
    return get_orchestration_dir(cwd) / TRACE_LEDGER_FILE


def get_intent_map_path(cwd: PathLike) -> Path:
    return get_orchestration_dir(cwd) / INTENT_MAP_FILE


def get_session_db_path(cwd: PathLike) -> Path:
    env_db = os.environ.get(SESSION_DB_ENV, "").strip()
    if env_db:
        return Path(env_db).expanduser()
    return get_orchestration_dir(cwd) / SESSION_DB_FILE


def ensure_orchestration_dir(cwd: PathLike) -> Path:
    """Create the orchestration directory if absent. Safe to call repeatedly."""
    path = get_orchestration_dir(cwd)
    path.mkdir(parents=True, exist_ok=True)
    return path
