"""
Trace Ledger - the witness for every AI-authored mutation
==========================================================

After a file write succeeds, one JSON line is appended to
<root>/.orchestration/agent_trace.jsonl linking:

    business intent -> AI action -> content hash

Design principles:
- WITNESS, NEVER GATE: the ledger runs after the mutation. It cannot
  authorize, and a broken ledger must never undo or block the write.
- APPEND-ONLY: records are never rewritten or deleted.
- SPATIALLY INDEPENDENT: ranges carry a content hash, so evidence survives
  line drift from unrelated edits.
- ONE LINE, ONE WRITE: each record is serialized first, then written with a
  single call under an in-process lock and an OS file lock. A failed call
  appends nothing.

Record shape:

    {"id": "...", "timestamp": "...", "intent_id": "INT-001" | null,
     "vcs": {"revision_id": "abc1234"},
     "files": [{"relative_path": "src/auth/login.ts",
                "contributor": {"entity_type": "AI", "model_identifier": "..."},
                "ranges": [{"start_line": 1, "end_line": 45, "content_hash": "sha256:..."}],
                "mutation_class": "INTENT_EVOLUTION",
                "related": [{"type": "specification", "value": "INT-001"}]}]}
"""

import json
import os
import sys
import threading
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from content_hash import compute_content_hash, count_lines, is_content_hash
from governance_logger import log_debug, log_error
from orchestration_paths import DEFAULT_MODEL_ID, ensure_orchestration_dir, get_trace_ledger_path
from time_utils import utc_now_iso
from vcs import GitRevisionProvider, RevisionProvider, UNKNOWN_REVISION

# Cross-platform file locking
# Windows: a sibling lockfile created with O_EXCL
# Unix: fcntl.flock on the ledger file itself
if sys.platform == "win32":
    import time

    LOCK_RETRIES = 50
    LOCK_RETRY_DELAY = 0.1
    STALE_LOCK_SECONDS = 30

    def _lock_file(f, path: Path):
        """Acquire cross-process lock via lockfile."""
        lockfile = path.with_name(path.name + ".lock")
        for attempt in range(LOCK_RETRIES):
            try:
                lock_fd = os.open(str(lockfile), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.write(lock_fd, str(os.getpid()).encode())
                os.close(lock_fd)
                f._ledger_lockfile = lockfile
                return
            except FileExistsError:
                try:
                    if time.time() - lockfile.stat().st_mtime > STALE_LOCK_SECONDS:
                        lockfile.unlink()
                        continue
                except OSError:
                    continue
                time.sleep(LOCK_RETRY_DELAY)
        raise OSError(f"Failed to acquire ledger lock after {LOCK_RETRIES} attempts")

    def _unlock_file(f):
        lockfile = getattr(f, "_ledger_lockfile", None)
        if lockfile is not None:
            try:
                lockfile.unlink()
            except FileNotFoundError:
                pass
else:
    import fcntl

    def _lock_file(f, path: Path):
        fcntl.flock(f.fileno(), fcntl.LOCK_EX)

    def _unlock_file(f):
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)


# Thread lock for concurrent appends
_append_lock = threading.Lock()

REQUIRED_RECORD_FIELDS = ("id", "timestamp", "intent_id", "vcs", "files")
SPECIFICATION_LINK = "specification"


# ============================================================
# RECORD SCHEMA
# ============================================================

class MutationClass(str, Enum):
    AST_REFACTOR = "AST_REFACTOR"
    INTENT_EVOLUTION = "INTENT_EVOLUTION"
    BUG_FIX = "BUG_FIX"
    UNKNOWN = "UNKNOWN"


class EntityType(str, Enum):
    AI = "AI"
    HUMAN = "HUMAN"


@dataclass
class Contributor:
    entity_type: str = EntityType.AI.value
    model_identifier: str = DEFAULT_MODEL_ID


@dataclass
class LineRange:
    start_line: int
    end_line: int
    content_hash: str


@dataclass
class RelatedLink:
    type: str
    value: str


@dataclass
class FileTrace:
    relative_path: str
    contributor: Contributor
    ranges: List[LineRange]
    mutation_class: str = MutationClass.UNKNOWN.value
    related: List[RelatedLink] = field(default_factory=list)


@dataclass
class TraceRecord:
    """One ledger line. Immutable once appended."""
    id: str
    timestamp: str
    intent_id: Optional[str]
    revision_id: str
    files: List[FileTrace]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "intent_id": self.intent_id,
            "vcs": {"revision_id": self.revision_id},
            "files": [asdict(f) for f in self.files],
        }

    def to_json_line(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":")) + "\n"


@dataclass
class RecordResult:
    """
    Outcome of a record() call.

    Only observability consumes the failure variant. The mutation that was
    witnessed already succeeded and stays succeeded.
    """
    recorded: bool
    record_id: Optional[str] = None
    record: Optional[TraceRecord] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return not self.recorded


def classify_mutation(is_new_file: bool) -> MutationClass:
    """
    Heuristic classification (not semantic diffing).

    - INTENT_EVOLUTION: file is new, i.e. new capability
    - AST_REFACTOR: file existed, i.e. a change to existing code
    """
    if is_new_file:
        return MutationClass.INTENT_EVOLUTION
    return MutationClass.AST_REFACTOR


# ============================================================
# LEDGER
# ============================================================

class TraceLedger:
    """
    Append-only trace ledger for one workspace root.

    Collaborators are injected:
        revision_provider  current VCS revision (default: git, "unknown" on failure)
        target_exists      "did this relative path exist?" (default: filesystem probe)
    """

    def __init__(
        self,
        cwd: Union[str, Path],
        revision_provider: Optional[RevisionProvider] = None,
        target_exists: Optional[Callable[[str], bool]] = None,
        default_model_id: str = DEFAULT_MODEL_ID,
    ):
        self.cwd = Path(cwd)
        self.revision_provider = revision_provider if revision_provider is not None else GitRevisionProvider(self.cwd)
        self.target_exists = target_exists if target_exists is not None else self._file_exists
        self.default_model_id = default_model_id

    @property
    def ledger_path(self) -> Path:
        return get_trace_ledger_path(self.cwd)

    def _file_exists(self, relative_path: str) -> bool:
        return (self.cwd / relative_path).exists()

    def read_target(self, relative_path: str) -> bytes:
        """Current bytes of a workspace file. Raises OSError if unreadable."""
        return (self.cwd / relative_path.replace("\\", "/")).read_bytes()

    def _revision_id(self) -> str:
        try:
            return self.revision_provider.current_revision_id() or UNKNOWN_REVISION
        except Exception as e:
            log_debug(f"Revision provider failed: {e}")
            return UNKNOWN_REVISION

    # --- Build ---

    def build_record(
        self,
        intent_id: Optional[str],
        relative_path: str,
        content: Union[str, bytes],
        model_id: Optional[str] = None,
        mutation_class: Optional[Union[MutationClass, str]] = None,
        existed_before: Optional[bool] = None,
        entity_type: Union[EntityType, str] = EntityType.AI,
    ) -> TraceRecord:
        """Build (but do not append) the record for one completed write."""
        if mutation_class is None:
            existed = existed_before if existed_before is not None else self.target_exists(relative_path)
            mutation_class = classify_mutation(is_new_file=not existed)

        mutation_value = mutation_class.value if isinstance(mutation_class, MutationClass) else str(mutation_class)
        entity_value = entity_type.value if isinstance(entity_type, EntityType) else str(entity_type)

        file_trace = FileTrace(
            relative_path=relative_path.replace("\\", "/"),
            contributor=Contributor(
                entity_type=entity_value,
                model_identifier=model_id or self.default_model_id,
            ),
            ranges=[LineRange(
                start_line=1,
                end_line=count_lines(content),
                content_hash=compute_content_hash(content),
            )],
            mutation_class=mutation_value,
            related=[RelatedLink(type=SPECIFICATION_LINK, value=intent_id)] if intent_id else [],
        )

        return TraceRecord(
            id=str(uuid.uuid4()),
            timestamp=utc_now_iso(),
            intent_id=intent_id,
            revision_id=self._revision_id(),
            files=[file_trace],
        )

    # --- Append ---

    def append(self, record: TraceRecord) -> None:
        """
        Append one record as one line. Raises on I/O failure.

        Serialization happens before the file is opened so a bad record
        never leaves a partial line behind.
        """
        line = record.to_json_line()
        ensure_orchestration_dir(self.cwd)
        path = self.ledger_path

        with _append_lock:
            with open(path, "a", encoding="utf-8") as f:
                _lock_file(f, path)
                try:
                    f.write(line)
                    f.flush()
                finally:
                    _unlock_file(f)

    def record(
        self,
        intent_id: Optional[str],
        relative_path: str,
        content: Union[str, bytes],
        model_id: Optional[str] = None,
        mutation_class: Optional[Union[MutationClass, str]] = None,
        existed_before: Optional[bool] = None,
        entity_type: Union[EntityType, str] = EntityType.AI,
    ) -> RecordResult:
        """
        Witness a completed write. Never raises.

        Returns RecordResult(recorded=False, error=...) on any failure; the
        failure is logged as LedgerWriteFailure.
        """
        try:
            record = self.build_record(
                intent_id=intent_id,
                relative_path=relative_path,
                content=content,
                model_id=model_id,
                mutation_class=mutation_class,
                existed_before=existed_before,
                entity_type=entity_type,
            )
            self.append(record)
        except Exception as e:
            log_error(f"LedgerWriteFailure: failed to append trace record for {relative_path}: {e}")
            return RecordResult(recorded=False, error=f"{type(e).__name__}: {e}")

        log_debug(f"Traced {relative_path} -> {record.files[0].ranges[0].content_hash} ({record.id})")
        return RecordResult(recorded=True, record_id=record.id, record=record)

    # --- Read ---

    def iter_records(self) -> Iterator[Tuple[int, Optional[Dict[str, Any]]]]:
        """Yield (line_number, parsed record or None) for every non-empty line."""
        path = self.ledger_path
        if not path.exists():
            return
        with open(path, "r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield line_num, json.loads(line)
                except json.JSONDecodeError:
                    yield line_num, None

    def query_ledger(
        self,
        intent_id: Optional[str] = None,
        relative_path: Optional[str] = None,
        content_hash: Optional[str] = None,
        since: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """
        Query the ledger with filters.

        Returns records newest first. Unparseable lines are skipped.
        """
        records = []
        for _, record in self.iter_records():
            if not isinstance(record, dict):
                continue
            if intent_id and record.get("intent_id") != intent_id:
                continue
            if since and record.get("timestamp", "") < since:
                continue
            files = record.get("files") or []
            if relative_path:
                wanted = relative_path.replace("\\", "/")
                if not any(f.get("relative_path") == wanted for f in files):
                    continue
            if content_hash:
                if not any(
                    r.get("content_hash") == content_hash
                    for f in files for r in (f.get("ranges") or [])
                ):
                    continue
            records.append(record)

        records.sort(key=lambda r: r.get("timestamp", ""), reverse=True)
        return records[:limit]

    def find_by_content_hash(self, content_hash: str) -> List[Dict[str, Any]]:
        """Every record that witnessed this exact content, wherever it now sits."""
        return self.query_ledger(content_hash=content_hash, limit=sys.maxsize)

    def verify_ledger(self) -> "LedgerVerifyResult":
        """Check that every line is a well-formed trace record."""
        total = 0
        for line_num, record in self.iter_records():
            total += 1
            error = _record_error(record)
            if error:
                return LedgerVerifyResult(
                    valid=False,
                    total_records=total,
                    verified_records=total - 1,
                    first_broken_line=line_num,
                    first_broken_record_id=record.get("id") if isinstance(record, dict) else None,
                    error=f"Line {line_num}: {error}",
                )
        return LedgerVerifyResult(valid=True, total_records=total, verified_records=total)

    def get_ledger_stats(self) -> Dict[str, Any]:
        """Ledger statistics."""
        path = self.ledger_path
        stats: Dict[str, Any] = {
            "ledger_file": str(path),
            "ledger_exists": path.exists(),
            "ledger_size_bytes": path.stat().st_size if path.exists() else 0,
            "total_records": 0,
            "unparseable_lines": 0,
            "by_intent": {},
            "by_mutation_class": {},
            "by_path": {},
        }

        for _, record in self.iter_records():
            if not isinstance(record, dict):
                stats["unparseable_lines"] += 1
                continue
            stats["total_records"] += 1

            intent = record.get("intent_id") or "none"
            stats["by_intent"][intent] = stats["by_intent"].get(intent, 0) + 1

            for f in record.get("files") or []:
                mc = f.get("mutation_class", MutationClass.UNKNOWN.value)
                stats["by_mutation_class"][mc] = stats["by_mutation_class"].get(mc, 0) + 1
                rp = f.get("relative_path", "")
                stats["by_path"][rp] = stats["by_path"].get(rp, 0) + 1

        return stats


# ============================================================
# VERIFY
# ============================================================

@dataclass
class LedgerVerifyResult:
    """Result of ledger verification."""
    valid: bool
    total_records: int
    verified_records: int
    first_broken_line: Optional[int] = None
    first_broken_record_id: Optional[str] = None
    error: Optional[str] = None


def _record_error(record: Optional[Dict[str, Any]]) -> Optional[str]:
    """Describe what is wrong with a parsed record, or None if it is well formed."""
    if not isinstance(record, dict):
        return "invalid JSON"

    for key in REQUIRED_RECORD_FIELDS:
        if key not in record:
            return f"missing '{key}'"

    if not isinstance(record.get("vcs"), dict) or "revision_id" not in record["vcs"]:
        return "missing 'vcs.revision_id'"

    files = record.get("files")
    if not isinstance(files, list) or not files:
        return "'files' must be a non-empty list"

    for f in files:
        if not isinstance(f, dict) or not f.get("relative_path"):
            return "file entry missing 'relative_path'"
        if f.get("mutation_class") not in {m.value for m in MutationClass}:
            return f"unknown mutation_class {f.get('mutation_class')!r}"
        contributor = f.get("contributor") or {}
        if contributor.get("entity_type") not in {e.value for e in EntityType}:
            return f"unknown entity_type {contributor.get('entity_type')!r}"
        for r in f.get("ranges") or []:
            if not is_content_hash(r.get("content_hash", "")):
                return f"malformed content_hash {r.get('content_hash')!r}"
            start, end = r.get("start_line"), r.get("end_line")
            if not isinstance(start, int) or not isinstance(end, int) or not 1 <= start <= end:
                return "invalid line range"

    return None
