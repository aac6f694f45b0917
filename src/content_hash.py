"""
Content hashing for spatial independence.

Line numbers shift when code is refactored or moved. A SHA-256 of the
content itself does not, so a hash recorded against lines 1-45 still
identifies the same block after it moves to lines 80-124.
"""

import hashlib
import re
from typing import Union

HASH_ALGORITHM = "sha256"
HASH_PREFIX = f"{HASH_ALGORITHM}:"

_HASH_RE = re.compile(r"^sha256:[0-9a-f]{64}$")


def compute_content_hash(content: Union[str, bytes]) -> str:
    """Return "sha256:<hex>" over the exact content (str is UTF-8 encoded)."""
    data = content.encode("utf-8") if isinstance(content, str) else bytes(content)
    return HASH_PREFIX + hashlib.sha256(data).hexdigest()


def count_lines(content: Union[str, bytes]) -> int:
    """Number of newline-delimited segments (1-based end line of the whole content)."""
    if isinstance(content, bytes):
        return content.count(b"\n") + 1
    return content.count("\n") + 1


def is_content_hash(value: str) -> bool:
    return isinstance(value, str) and bool(_HASH_RE.match(value))
