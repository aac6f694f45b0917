"""
Intent Gate - Authorization for mutating tool calls
====================================================

No intent, no mutation. Every mutating tool call passes two checks, in
this order:

1. GATE:  is the tool mutating? If so, has this session declared an intent?
2. GUARD: does the target file fall inside that intent's owned_scope?
          The intent is re-read from active_intents.yaml here, never taken
          from the session snapshot, because humans edit scope mid-session.

Declaring an intent (select_active_intent) is its own entry point and is
exempt from both checks.

Every outcome is a GateDecision value. Nothing here raises on a denial: the
caller is an agent that must read the reason and self-correct.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from governance_logger import log_info, log_warn
from intent_store import Intent, IntentStore
from orchestration_paths import intents_source
from scope_matcher import is_path_in_scope
from session_state import InMemorySessionStore, IntentState, SessionStore
from time_utils import utc_now_iso


# ============================================================
# TOOL CLASSIFICATION
# ============================================================

# Tools that mutate the workspace and REQUIRE an active intent
MUTATING_TOOLS: FrozenSet[str] = frozenset({
    "write_to_file",
    "apply_diff",
    "edit",
    "search_and_replace",
    "search_replace",
    "edit_file",
    "apply_patch",
    "execute_command",
})

# Tools that write to a specific file (their "path" param is scope-checked)
FILE_WRITE_TOOLS: FrozenSet[str] = MUTATING_TOOLS - {"execute_command"}

# Side effects cannot be scoped to a path
DESTRUCTIVE_TOOLS: FrozenSet[str] = frozenset({"execute_command"})

# Tools that set intent (exempt from gate and guard)
INTENT_TOOLS: FrozenSet[str] = frozenset({"select_active_intent"})

TARGET_PATH_PARAMS = ("path", "file_path")


class DenialReason(str, Enum):
    NO_ACTIVE_INTENT = "NoActiveIntent"
    INTENT_NOT_FOUND = "IntentNotFound"
    INTENT_TERMINAL = "IntentTerminal"
    SCOPE_VIOLATION = "ScopeViolation"


def extract_target_path(tool_params: Optional[Dict[str, Any]]) -> str:
    """Pull the target file path out of tool params ("" if none)."""
    if not tool_params:
        return ""
    for key in TARGET_PATH_PARAMS:
        value = tool_params.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


# ============================================================
# DECISIONS
# ============================================================

@dataclass
class GateDecision:
    """Result of the gate/guard pipeline."""
    allowed: bool
    tool_name: str = ""
    reason_code: Optional[DenialReason] = None
    reason: str = ""
    intent_id: Optional[str] = None
    target_path: Optional[str] = None
    authorized_scope: List[str] = field(default_factory=list)
    stage: str = "none"  # "gate", "guard", "declare", "none"
    decided_at: str = field(default_factory=utc_now_iso)

    @property
    def blocked(self) -> bool:
        return not self.allowed

    @classmethod
    def allow(cls, tool_name: str, intent_id: Optional[str] = None, stage: str = "none",
              reason: str = "Allowed") -> "GateDecision":
        return cls(allowed=True, tool_name=tool_name, intent_id=intent_id, stage=stage, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "allowed": self.allowed,
            "tool": self.tool_name,
            "decision": "ALLOW" if self.allowed else "DENY",
            "reason_code": self.reason_code.value if self.reason_code else None,
            "reason": self.reason,
            "intent_id": self.intent_id,
            "stage": self.stage,
            "decided_at": self.decided_at,
        }
        if self.target_path is not None:
            d["target_path"] = self.target_path
        if self.reason_code == DenialReason.SCOPE_VIOLATION:
            d["authorized_scope"] = list(self.authorized_scope)
        return d

    def to_block_message(self) -> str:
        """Format the denial for the agent. Empty for allowed decisions."""
        if self.allowed:
            return ""
        label = "Intent Gate" if self.stage == "gate" else "Scope Guard"
        if self.stage == "declare":
            label = "select_active_intent"
        return f"[{label}] BLOCKED ({self.reason_code.value}): {self.reason}"


@dataclass
class DeclareResult:
    """Result of declaring an intent for a session."""
    ok: bool
    session_id: str
    intent_id: str
    reason_code: Optional[DenialReason] = None
    reason: str = ""
    intent: Optional[Intent] = None
    state: Optional[IntentState] = None

    def to_payload(self) -> Dict[str, Any]:
        """
        Structured data for the calling layer to render.

        On success: the resolved intent plus the activation timestamp.
        """
        if not self.ok or self.intent is None or self.state is None:
            return {
                "ok": False,
                "intent_id": self.intent_id,
                "reason_code": self.reason_code.value if self.reason_code else None,
                "reason": self.reason,
            }
        return {
            "ok": True,
            "intent_id": self.intent.id,
            "name": self.intent.name,
            "status": self.intent.status,
            "owned_scope": list(self.state.owned_scope),
            "constraints": list(self.state.constraints),
            "acceptance_criteria": list(self.state.acceptance_criteria),
            "activated_at": self.state.activated_at,
        }


# ============================================================
# ENGINE
# ============================================================

class AuthorizationEngine:
    """
    Gate + guard + declare over one intent store and one session store.

    Construct one per host and pass it where it is needed:

        engine = AuthorizationEngine(IntentStore(root))
        engine.declare_intent("task-1", "INT-001")
        decision = engine.check("task-1", "write_to_file", {"path": "src/auth/login.ts"})
    """

    def __init__(
        self,
        intent_store: IntentStore,
        session_store: Optional[SessionStore] = None,
        mutating_tools: Optional[FrozenSet[str]] = None,
        file_write_tools: Optional[FrozenSet[str]] = None,
        intent_tools: Optional[FrozenSet[str]] = None,
    ):
        self.intent_store = intent_store
        self.sessions = session_store if session_store is not None else InMemorySessionStore()
        self.mutating_tools = frozenset(mutating_tools) if mutating_tools is not None else MUTATING_TOOLS
        self.file_write_tools = frozenset(file_write_tools) if file_write_tools is not None else FILE_WRITE_TOOLS
        self.intent_tools = frozenset(intent_tools) if intent_tools is not None else INTENT_TOOLS

    # --- Classification ---

    def is_mutating(self, tool_name: str) -> bool:
        return tool_name in self.mutating_tools and tool_name not in self.intent_tools

    def is_file_write(self, tool_name: str) -> bool:
        return tool_name in self.file_write_tools and tool_name not in self.intent_tools

    def is_destructive(self, tool_name: str) -> bool:
        return tool_name in DESTRUCTIVE_TOOLS and self.is_mutating(tool_name)

    # --- Session state ---

    def get_intent_state(self, session_id: str) -> Optional[IntentState]:
        return self.sessions.get(session_id)

    def get_active_intent_id(self, session_id: str) -> Optional[str]:
        state = self.sessions.get(session_id)
        return state.intent_id if state else None

    def clear_intent(self, session_id: str) -> bool:
        """Drop the session's authorization. Effective for the next check."""
        cleared = self.sessions.delete(session_id)
        if cleared:
            log_info(f"Cleared active intent for session {session_id}")
        return cleared

    # --- Declare ---

    def declare_intent(self, session_id: str, intent_id: str) -> DeclareResult:
        """
        Activate an intent for a session.

        Fails with IntentNotFound for unknown ids and IntentTerminal for
        COMPLETED/ABANDONED intents. Re-declaring replaces the previous
        authorization and refreshes activated_at.
        """
        intent_id = (intent_id or "").strip()
        if not intent_id:
            return DeclareResult(
                ok=False,
                session_id=session_id,
                intent_id="",
                reason_code=DenialReason.INTENT_NOT_FOUND,
                reason=(
                    "'intent_id' is required. "
                    f"Provide a valid intent ID from {intents_source()}."
                ),
            )

        intent = self.intent_store.find_by_id(intent_id)
        if intent is None:
            log_warn(f"Declare failed for session {session_id}: intent '{intent_id}' not found")
            return DeclareResult(
                ok=False,
                session_id=session_id,
                intent_id=intent_id,
                reason_code=DenialReason.INTENT_NOT_FOUND,
                reason=(
                    f"Intent '{intent_id}' not found in {intents_source()}. "
                    f"Available intent IDs can be found by reading {intents_source()}."
                ),
            )

        if intent.is_terminal:
            log_warn(f"Declare failed for session {session_id}: intent '{intent_id}' is {intent.status}")
            return DeclareResult(
                ok=False,
                session_id=session_id,
                intent_id=intent_id,
                reason_code=DenialReason.INTENT_TERMINAL,
                reason=(
                    f"Intent '{intent_id}' has status '{intent.status}' and cannot be activated. "
                    "Only IN_PROGRESS or PENDING intents can be selected."
                ),
                intent=intent,
            )

        state = IntentState(
            intent_id=intent.id,
            intent_name=intent.name,
            owned_scope=list(intent.owned_scope),
            constraints=list(intent.constraints),
            acceptance_criteria=list(intent.acceptance_criteria),
            activated_at=utc_now_iso(),
        )
        self.sessions.set(session_id, state)
        log_info(f"Session {session_id} declared intent {intent.id} ({intent.status})")

        return DeclareResult(
            ok=True,
            session_id=session_id,
            intent_id=intent.id,
            intent=intent,
            state=state,
        )

    # --- Pre-check pipeline ---

    def run_intent_gate(self, session_id: str, tool_name: str) -> GateDecision:
        """Stage 1: mutating tools require a declared intent."""
        if not self.is_mutating(tool_name):
            return GateDecision.allow(tool_name, stage="gate", reason="Tool is not mutating")

        intent_id = self.get_active_intent_id(session_id)
        if not intent_id:
            return GateDecision(
                allowed=False,
                tool_name=tool_name,
                reason_code=DenialReason.NO_ACTIVE_INTENT,
                stage="gate",
                reason=(
                    f"You attempted to call '{tool_name}' without a declared intent. "
                    f"You MUST first call 'select_active_intent' with a valid intent ID from "
                    f"{intents_source()} before modifying any files. "
                    'Example: select_active_intent({ intent_id: "INT-001" })'
                ),
            )

        return GateDecision.allow(tool_name, intent_id=intent_id, stage="gate", reason="Intent declared")

    def run_scope_guard(self, session_id: str, tool_name: str, target_path: str) -> GateDecision:
        """
        Stage 2: the target must be inside the intent's current owned_scope.

        Only file-writing tools with a target path are scope-checked.
        """
        if not self.is_file_write(tool_name):
            return GateDecision.allow(tool_name, stage="guard", reason="Tool has no file target")

        intent_id = self.get_active_intent_id(session_id)
        if not intent_id:
            # The gate already denied this call
            return GateDecision.allow(tool_name, stage="guard", reason="No intent to scope")

        if not target_path:
            return GateDecision.allow(tool_name, intent_id=intent_id, stage="guard", reason="No target path")

        intent = self.intent_store.find_by_id(intent_id)
        if intent is None:
            return GateDecision(
                allowed=False,
                tool_name=tool_name,
                reason_code=DenialReason.INTENT_NOT_FOUND,
                intent_id=intent_id,
                target_path=target_path,
                stage="guard",
                reason=(
                    f"Active intent '{intent_id}' not found in {intents_source()}. "
                    "The intent may have been removed or renamed. "
                    "Call select_active_intent again with a valid ID."
                ),
            )

        if intent.is_unrestricted:
            return GateDecision.allow(tool_name, intent_id=intent_id, stage="guard", reason="Intent scope is unrestricted")

        if not is_path_in_scope(target_path, intent.owned_scope):
            scope_lines = "\n".join(f"  - {pattern}" for pattern in intent.owned_scope)
            return GateDecision(
                allowed=False,
                tool_name=tool_name,
                reason_code=DenialReason.SCOPE_VIOLATION,
                intent_id=intent_id,
                target_path=target_path,
                authorized_scope=list(intent.owned_scope),
                stage="guard",
                reason=(
                    f"Scope Violation. Intent '{intent_id}' ({intent.name}) is NOT authorized "
                    f"to edit: {target_path}\n"
                    f"Authorized scope:\n{scope_lines}\n"
                    "To modify this file, either:\n"
                    "  1. Switch to a different intent that owns this file, or\n"
                    f"  2. Request a scope expansion for intent {intent_id}."
                ),
            )

        return GateDecision.allow(tool_name, intent_id=intent_id, stage="guard", reason="Target within scope")

    def check(self, session_id: str, tool_name: str, tool_params: Optional[Dict[str, Any]] = None) -> GateDecision:
        """
        Run gate then guard. Returns the first denial, or an allow.

        Intent tools (select_active_intent) always pass.
        """
        if tool_name in self.intent_tools:
            return GateDecision.allow(tool_name, stage="none", reason="Intent declaration tool")

        gate = self.run_intent_gate(session_id, tool_name)
        if gate.blocked:
            log_warn(f"Gate denied {tool_name} for session {session_id}: {gate.reason_code.value}")
            return gate

        guard = self.run_scope_guard(session_id, tool_name, extract_target_path(tool_params))
        if guard.blocked:
            log_warn(
                f"Guard denied {tool_name} on {guard.target_path} for session {session_id}: "
                f"{guard.reason_code.value}"
            )
            return guard

        reason = guard.reason if self.is_file_write(tool_name) else gate.reason
        if self.is_destructive(tool_name):
            reason = "Intent declared; command side effects are not scope-checked"
            log_info(f"Allowed destructive tool {tool_name} for session {session_id} under {gate.intent_id}")

        return GateDecision.allow(
            tool_name,
            intent_id=self.get_active_intent_id(session_id),
            stage="none",
            reason=reason,
        )
