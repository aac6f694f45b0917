"""
Intent Store - the source of truth for authorized work
=======================================================

Reads <root>/.orchestration/active_intents.yaml:

    active_intents:
      - id: INT-001
        name: JWT authentication
        status: IN_PROGRESS
        owned_scope:
          - src/auth/**
        constraints:
          - Do not change the public login API
        acceptance_criteria:
          - All auth tests pass

The file is maintained by humans. Nothing in this layer ever writes it.

Design principles:
- FAIL-OPEN TO NOTHING: a missing or broken file yields zero intents. The
  gate then denies every mutating call, which is the safe outcome.
- NO CACHE: every lookup re-reads the file, so scope edits take effect on
  the very next guard check.
- FIRST MATCH WINS: duplicate ids are an integrity warning, not an error.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from governance_logger import log_warn
from orchestration_paths import get_active_intents_path

INTENTS_KEY = "active_intents"


class IntentStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    BLOCKED = "BLOCKED"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"


# CANCELLED is what older intent files call ABANDONED
TERMINAL_STATUSES = {IntentStatus.COMPLETED.value, IntentStatus.ABANDONED.value, "CANCELLED"}


def _as_str_list(value: Any) -> List[str]:
    """Coerce a YAML value into a list of strings (None -> [], scalar -> [scalar])."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None]
    return [str(value)]


@dataclass
class Intent:
    """A single intent as declared in active_intents.yaml."""
    id: str
    name: str
    status: str
    owned_scope: List[str] = field(default_factory=list)
    constraints: List[str] = field(default_factory=list)
    acceptance_criteria: List[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.upper() in TERMINAL_STATUSES

    @property
    def is_unrestricted(self) -> bool:
        return not self.owned_scope

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Intent":
        """Build from a parsed YAML mapping. Unknown keys are ignored."""
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            status=str(data.get("status") or IntentStatus.PENDING.value).strip().upper(),
            owned_scope=_as_str_list(data.get("owned_scope")),
            constraints=_as_str_list(data.get("constraints")),
            acceptance_criteria=_as_str_list(data.get("acceptance_criteria")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "owned_scope": list(self.owned_scope),
            "constraints": list(self.constraints),
            "acceptance_criteria": list(self.acceptance_criteria),
        }


# ============================================================
# PARSING
# ============================================================

def parse_intents(raw: str, source: str = "<string>") -> List[Intent]:
    """
    Parse intent YAML text.

    Returns an empty list for invalid YAML or an unexpected shape. Entries
    that are not mappings or have no id are skipped with a warning.
    """
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        log_warn(f"StoreLoadFailure: invalid YAML in {source}: {e}")
        return []

    if parsed is None:
        return []

    if not isinstance(parsed, dict):
        log_warn(f"StoreLoadFailure: {source} must be a mapping with '{INTENTS_KEY}'")
        return []

    entries = parsed.get(INTENTS_KEY) or []
    if not isinstance(entries, list):
        log_warn(f"StoreLoadFailure: '{INTENTS_KEY}' in {source} is not a list")
        return []

    intents: List[Intent] = []
    seen: Dict[str, int] = {}
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or entry.get("id") in (None, ""):
            log_warn(f"Skipping malformed intent entry #{index} in {source}")
            continue

        intent = Intent.from_dict(entry)
        if intent.id in seen:
            log_warn(
                f"Duplicate intent id '{intent.id}' at entry #{index} in {source}; "
                f"entry #{seen[intent.id]} takes precedence"
            )
        else:
            seen[intent.id] = index
        intents.append(intent)

    return intents


def load_active_intents(cwd: Union[str, Path]) -> List[Intent]:
    """
    Load all intents from the workspace's active_intents.yaml.

    Returns an empty list if the file does not exist or cannot be read.
    """
    file_path = get_active_intents_path(cwd)
    try:
        raw = file_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    except (OSError, UnicodeDecodeError) as e:
        log_warn(f"StoreLoadFailure: cannot read {file_path}: {e}")
        return []

    return parse_intents(raw, source=str(file_path))


def find_intent_by_id(cwd: Union[str, Path], intent_id: str) -> Optional[Intent]:
    """Find an intent by id. First match in source order wins."""
    for intent in load_active_intents(cwd):
        if intent.id == intent_id:
            return intent
    return None


class IntentStore:
    """
    Injectable view over one workspace's intent file.

    The engine holds one of these instead of calling the module functions,
    so tests can swap in a store with fixed contents.
    """

    def __init__(self, cwd: Union[str, Path]):
        self.cwd = Path(cwd)

    @property
    def source_path(self) -> Path:
        return get_active_intents_path(self.cwd)

    def load_all(self) -> List[Intent]:
        return load_active_intents(self.cwd)

    def find_by_id(self, intent_id: str) -> Optional[Intent]:
        return find_intent_by_id(self.cwd, intent_id)

    def list_ids(self) -> List[str]:
        """Distinct ids in source order."""
        ids: List[str] = []
        for intent in self.load_all():
            if intent.id not in ids:
                ids.append(intent.id)
        return ids


class StaticIntentStore(IntentStore):
    """Intent store with fixed in-memory contents."""

    def __init__(self, intents: Optional[List[Intent]] = None):
        super().__init__(Path("."))
        self.intents: List[Intent] = list(intents or [])

    def load_all(self) -> List[Intent]:
        return list(self.intents)

    def find_by_id(self, intent_id: str) -> Optional[Intent]:
        for intent in self.intents:
            if intent.id == intent_id:
                return intent
        return None
