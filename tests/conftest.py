"""
Pytest fixtures for the intent governance tests.
"""

import sys
from pathlib import Path

import pytest

# Add src to path (flat modules, same as an installed checkout)
SRC_PATH = Path(__file__).parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

import governance_logger
from intent_gate import AuthorizationEngine
from intent_store import IntentStore
from orchestration_paths import get_active_intents_path
from trace_ledger import TraceLedger
from vcs import StaticRevisionProvider


INTENTS_YAML = """\
active_intents:
  - id: INT-001
    name: JWT authentication
    status: IN_PROGRESS
    owned_scope:
      - src/auth/**
    constraints:
      - Keep the public login API stable
    acceptance_criteria:
      - All auth tests pass
  - id: INT-002
    name: Legacy billing cleanup
    status: COMPLETED
    owned_scope:
      - src/billing/**
  - id: INT-003
    name: Middleware tidy-up
    status: PENDING
    owned_scope:
      - src/mw/*
  - id: INT-004
    name: Free-form exploration
    status: IN_PROGRESS
    owned_scope: []
  - id: INT-005
    name: Dropped experiment
    status: ABANDONED
    owned_scope:
      - experiments/**
"""


def write_intents(root: Path, text: str) -> Path:
    path = get_active_intents_path(root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def isolated_env(tmp_path_factory, monkeypatch):
    """Keep logs and env-driven config out of the developer's home directory."""
    log_dir = tmp_path_factory.mktemp("logs")
    monkeypatch.setenv("ORCHESTRATION_LOG_DIR", str(log_dir))
    for name in ("ORCHESTRATION_ROOT", "ORCHESTRATION_DIR", "ORCHESTRATION_VCS_TIMEOUT",
                 "ORCHESTRATION_MODEL_ID", "ORCHESTRATION_SESSION_DB"):
        monkeypatch.delenv(name, raising=False)
    governance_logger.reset_logger()
    yield log_dir
    governance_logger.reset_logger()


@pytest.fixture
def workspace(tmp_path):
    """A workspace root with a populated .orchestration/active_intents.yaml."""
    write_intents(tmp_path, INTENTS_YAML)
    return tmp_path


@pytest.fixture
def intent_store(workspace):
    return IntentStore(workspace)


@pytest.fixture
def engine(intent_store):
    return AuthorizationEngine(intent_store)


@pytest.fixture
def ledger(workspace):
    return TraceLedger(workspace, revision_provider=StaticRevisionProvider("abc1234"),
                       default_model_id="test-model")
