"""Environment allowlist for sandboxed runtime children.

The orchestrator holds secrets that a child must not inherit, so a sandboxed
spawn starts from an empty environment plus only these variables.
"""

from __future__ import annotations

import os
from typing import List, Mapping, Optional, Tuple

SANDBOX_ENV_ALLOWLIST = ("PATH", "HOME", "TMPDIR", "LANG", "LC_ALL", "LC_CTYPE", "TERM")


def scrubbed_env(environ: Optional[Mapping[str, str]] = None) -> List[Tuple[str, str]]:
    """The allowlisted variables present in ``environ`` (default: this process)."""
    source = os.environ if environ is None else environ
    return [(key, source[key]) for key in SANDBOX_ENV_ALLOWLIST if key in source]