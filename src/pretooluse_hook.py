#!/usr/bin/env python3
"""Tool-use hook executor for intent governance.

Called by the agent host around every tool call, one process per call:

    intent-governance-hook pre  < payload.json   # before the tool runs
    intent-governance-hook post < payload.json   # after it succeeded

Payload (stdin, JSON):
    session_id   task/session identifier
    tool_name    e.g. "write_to_file", "select_active_intent"
    tool_input   tool params ("path", "content", "intent_id", ...)
    cwd          workspace root (optional, defaults to ORCHESTRATION_ROOT or cwd)
    model_id     model identifier for the trace ledger (post only, optional)

Session authorization lives in a SQLite store under .orchestration/ so it
survives between hook processes.

Output (stdout, JSON): {} to allow, or a deny payload with a
systemMessage the agent can read. The hook ALWAYS exits 0; errors are
reported in systemMessage, never as a crash.
"""

import argparse
import json
import os
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional, TextIO

from governance_logger import log_error
from hook_engine import HookEngine
from intent_gate import GateDecision, INTENT_TOOLS, MUTATING_TOOLS
from orchestration_paths import load_governance_config
from session_state import SqliteSessionStore

DEBUG_ENV = "ORCHESTRATION_HOOK_DEBUG"

PRE_EVENT = "PreToolUse"
POST_EVENT = "PostToolUse"


def debug_log(msg: str) -> None:
    """Log debug message to stderr if ORCHESTRATION_HOOK_DEBUG is set."""
    if os.environ.get(DEBUG_ENV, "").lower() in ("1", "true", "yes"):
        timestamp = datetime.now().strftime('%H:%M:%S.%f')[:-3]
        print(f"[intent-hook {timestamp}] {msg}", file=sys.stderr)


def make_block_response(decision: GateDecision) -> Dict[str, Any]:
    """Create a blocking response."""
    return {
        "hookSpecificOutput": {
            "hookEventName": PRE_EVENT,
            "permissionDecision": "deny",
        },
        "systemMessage": decision.to_block_message(),
        "decision": decision.to_dict(),
    }


def make_declare_response(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Allow response for select_active_intent, carrying the structured intent context."""
    return {
        "hookSpecificOutput": {
            "hookEventName": PRE_EVENT,
            "permissionDecision": "allow",
        },
        "intentContext": payload,
    }


def build_hook_engine(input_data: Dict[str, Any]) -> HookEngine:
    config = load_governance_config(input_data.get("cwd") or None)
    store = SqliteSessionStore(config.session_db_path)
    return HookEngine.for_workspace(config.root, session_store=store)


def handle_pre(hooks: HookEngine, input_data: Dict[str, Any]) -> Dict[str, Any]:
    session_id = str(input_data.get("session_id") or "")
    tool_name = str(input_data.get("tool_name") or "")
    tool_input = input_data.get("tool_input") or {}

    debug_log(f"pre: session={session_id} tool={tool_name}")

    decision = hooks.run_pre_hook(tool_name, tool_input, session_id)
    if decision.blocked:
        return make_block_response(decision)

    if tool_name in INTENT_TOOLS:
        state = hooks.engine.get_intent_state(session_id)
        intent = hooks.engine.intent_store.find_by_id(decision.intent_id) if decision.intent_id else None
        payload = {
            "intent_id": decision.intent_id,
            "name": state.intent_name if state else None,
            "status": intent.status if intent else None,
            "owned_scope": state.owned_scope if state else [],
            "constraints": state.constraints if state else [],
            "acceptance_criteria": state.acceptance_criteria if state else [],
            "activated_at": state.activated_at if state else None,
        }
        return make_declare_response(payload)

    return {}


def handle_post(hooks: HookEngine, input_data: Dict[str, Any]) -> Dict[str, Any]:
    session_id = str(input_data.get("session_id") or "")
    tool_name = str(input_data.get("tool_name") or "")
    tool_input = input_data.get("tool_input") or {}
    model_id = input_data.get("model_id") or None

    debug_log(f"post: session={session_id} tool={tool_name}")

    result = hooks.run_post_hook(tool_name, tool_input, session_id, model_id=model_id)
    if result is not None and result.failed:
        # Visible to the operator, but the write already happened
        debug_log(f"trace not recorded: {result.error}")
    return {}


def main(argv: Optional[List[str]] = None, stdin: Optional[TextIO] = None,
         stdout: Optional[TextIO] = None) -> int:
    """Main entry point. Always returns 0."""
    parser = argparse.ArgumentParser(description="Intent governance tool-use hook")
    parser.add_argument("event", choices=["pre", "post"], nargs="?", default="pre",
                        help="pre: gate the call, post: record it in the trace ledger")
    args = parser.parse_args(argv)

    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    tool_name = ""

    try:
        input_data = json.load(stdin)
        if not isinstance(input_data, dict):
            raise ValueError("hook payload must be a JSON object")
        tool_name = str(input_data.get("tool_name") or "")

        hooks = build_hook_engine(input_data)
        if args.event == "pre":
            output = handle_pre(hooks, input_data)
        else:
            output = handle_post(hooks, input_data)

    except Exception as e:
        debug_log(f"ERROR: {type(e).__name__}: {e}")
        log_error(f"Hook error ({args.event}): {type(e).__name__}: {e}")
        output = {"systemMessage": f"Intent governance hook error: {e}"}
        # Fail closed: a broken gate must not let mutating tools through
        if args.event == "pre" and tool_name in MUTATING_TOOLS:
            output["hookSpecificOutput"] = {
                "hookEventName": PRE_EVENT,
                "permissionDecision": "deny",
            }

    print(json.dumps(output), file=stdout)
    return 0


if __name__ == '__main__':
    sys.exit(main())
