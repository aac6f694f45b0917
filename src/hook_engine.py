"""
Hook Engine - the governance middleware between an agent and its tools
=======================================================================

    Pre-hooks  run BEFORE a tool executes and can BLOCK it
    Post-hooks run AFTER a tool executes and only RECORD

The host owns one HookEngine (no module singleton) and calls it around
every tool execution:

    hooks = HookEngine.for_workspace(root)
    decision = hooks.run_pre_hook("write_to_file", params, task_id)
    if decision.blocked:
        return decision.to_block_message()
    ... execute the tool ...
    hooks.run_post_hook("write_to_file", params, task_id, model_id="...")

An allowed file write leaves a snapshot in the session store saying
whether its target existed. The post-hook consumes it, so classification
works even when pre and post run in different processes.

Post-hooks never raise and never block.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

from governance_logger import log_debug, log_error
from intent_gate import (
    AuthorizationEngine, DeclareResult, GateDecision, INTENT_TOOLS, extract_target_path,
)
from intent_store import IntentStore
from orchestration_paths import load_governance_config
from session_state import SessionStore
from trace_ledger import MutationClass, RecordResult, TraceLedger
from vcs import GitRevisionProvider


class HookEngine:
    """Pre-hook chain (declare, gate, guard) and post-hook chain (trace ledger)."""

    def __init__(self, engine: AuthorizationEngine, ledger: TraceLedger):
        self.engine = engine
        self.ledger = ledger

    @property
    def sessions(self) -> SessionStore:
        return self.engine.sessions

    @classmethod
    def for_workspace(
        cls,
        root: Optional[Union[str, Path]] = None,
        session_store: Optional[SessionStore] = None,
    ) -> "HookEngine":
        """Wire the default collaborators for one workspace root."""
        config = load_governance_config(root)
        engine = AuthorizationEngine(IntentStore(config.root), session_store)
        ledger = TraceLedger(
            config.root,
            revision_provider=GitRevisionProvider(config.root, timeout=config.vcs_timeout),
            default_model_id=config.model_id,
        )
        return cls(engine, ledger)

    # --- Intent declaration ---

    def select_active_intent(self, session_id: str, intent_id: str) -> DeclareResult:
        return self.engine.declare_intent(session_id, intent_id)

    def clear_intent(self, session_id: str) -> bool:
        self.sessions.forget_target(session_id)
        return self.engine.clear_intent(session_id)

    # --- Pre-hook chain ---

    def run_pre_hook(
        self,
        tool_name: str,
        tool_params: Optional[Dict[str, Any]],
        session_id: str,
    ) -> GateDecision:
        """
        Run all pre-hooks for a tool call.

        Intent tools are handled here too: select_active_intent declares the
        intent and the decision reflects whether the declaration succeeded.
        """
        tool_params = tool_params or {}

        if tool_name in INTENT_TOOLS:
            result = self.select_active_intent(session_id, str(tool_params.get("intent_id") or ""))
            if result.ok:
                return GateDecision.allow(tool_name, intent_id=result.intent_id, stage="declare",
                                          reason=f"Intent '{result.intent_id}' is now active")
            return GateDecision(
                allowed=False,
                tool_name=tool_name,
                reason_code=result.reason_code,
                reason=result.reason,
                intent_id=result.intent_id or None,
                stage="declare",
            )

        decision = self.engine.check(session_id, tool_name, tool_params)

        if self.engine.is_file_write(tool_name):
            target = extract_target_path(tool_params)
            if decision.allowed and target:
                # Replaces the snapshot of any earlier write whose tool never reported back
                self.sessions.remember_target(session_id, target, self.ledger.target_exists(target))
            else:
                self.sessions.forget_target(session_id)

        return decision

    # --- Post-hook chain ---

    def run_post_hook(
        self,
        tool_name: str,
        tool_params: Optional[Dict[str, Any]],
        session_id: str,
        model_id: Optional[str] = None,
        existed_before: Optional[bool] = None,
        mutation_class: Optional[MutationClass] = None,
    ) -> Optional[RecordResult]:
        """
        Record a completed file write. Returns None for untraced tools.

        Only file-writing tools with a target path are traced. The hash covers
        the "content" param, or the target file as it is now when the tool
        (a diff or patch) carries no content.

        existed_before overrides the pre-hook snapshot; without either the
        ledger probes the filesystem, which already sees the written file.
        """
        if not self.engine.is_file_write(tool_name):
            return None

        tool_params = tool_params or {}
        file_path = extract_target_path(tool_params)
        if not file_path:
            return None

        snapshot = self.sessions.take_target(session_id, file_path)
        if existed_before is None:
            existed_before = snapshot
        if existed_before is None:
            log_debug(f"No pre-hook snapshot for {file_path}; classifying from current filesystem")

        content = tool_params.get("content")
        if not isinstance(content, (str, bytes)):
            try:
                content = self.ledger.read_target(file_path)
            except OSError as e:
                log_error(f"LedgerWriteFailure: cannot read written content of {file_path}: {e}")
                return RecordResult(recorded=False, error=f"{type(e).__name__}: {e}")

        return self.ledger.record(
            intent_id=self.engine.get_active_intent_id(session_id),
            relative_path=file_path,
            content=content,
            model_id=model_id,
            mutation_class=mutation_class,
            existed_before=existed_before,
        )
