"""
Scope Matcher - does a path fall inside an intent's owned_scope?
=================================================================

Pure functions, no I/O.

Pattern rules (a path matches if ANY pattern matches):
- "src/auth/**"  the prefix itself, or anything below "src/auth/"
- "src/mw/*"     direct children of "src/mw/" only
- anything else  exact string equality

A bare directory pattern never matches its contents: "src/auth" does NOT
match "src/auth/login.ts". Write "src/auth/**" for that.

Candidates are collapsed before matching ("src/auth/../billing/x.ts" is
"src/billing/x.ts"). A candidate that is absolute or still climbs above
the workspace root never matches a non-empty scope.

An empty pattern list means the intent does not restrict scope.
"""

import posixpath
from typing import Iterable, List, Sequence

SEPARATOR = "/"
PARENT_DIR = ".."
RECURSIVE_SUFFIX = "/**"
SINGLE_LEVEL_SUFFIX = "/*"


def normalize_path(path: str) -> str:
    """Forward slashes, with "." and ".." segments collapsed."""
    path = path.replace("\\", SEPARATOR)
    if not path:
        return path
    return posixpath.normpath(path)


def escapes_root(path: str) -> bool:
    """True for absolute paths and paths that climb above the workspace root."""
    normalized = normalize_path(path)
    if normalized.startswith(SEPARATOR) or (len(normalized) > 1 and normalized[1] == ":"):
        return True
    return normalized == PARENT_DIR or normalized.startswith(PARENT_DIR + SEPARATOR)


def _pattern_matches(normalized: str, pattern: str) -> bool:
    pattern = pattern.replace("\\", SEPARATOR)

    if pattern.endswith(RECURSIVE_SUFFIX):
        prefix = pattern[:-len(RECURSIVE_SUFFIX)]
        return normalized == prefix or normalized.startswith(prefix + SEPARATOR)

    if pattern.endswith(SINGLE_LEVEL_SUFFIX):
        prefix = pattern[:-len(SINGLE_LEVEL_SUFFIX)]
        if not normalized.startswith(prefix + SEPARATOR):
            return False
        rest = normalized[len(prefix) + 1:]
        return SEPARATOR not in rest

    return normalized == pattern


def is_path_in_scope(file_path: str, owned_scope: Sequence[str]) -> bool:
    """
    Check whether a file path falls within any of the scope patterns.

    Returns True for an empty scope (unrestricted).
    """
    if not owned_scope:
        return True

    if escapes_root(file_path):
        return False

    normalized = normalize_path(file_path)
    return any(_pattern_matches(normalized, pattern) for pattern in owned_scope)


# Short name used by callers that think of this as "the matcher"
matches = is_path_in_scope


def matching_patterns(file_path: str, owned_scope: Iterable[str]) -> List[str]:
    """Return every pattern that admits the path (for diagnostics)."""
    if escapes_root(file_path):
        return []
    normalized = normalize_path(file_path)
    return [p for p in owned_scope if _pattern_matches(normalized, p)]
