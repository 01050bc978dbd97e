"""Home-directory expansion for capability specs before they reach the runtime."""

from __future__ import annotations

import dataclasses
import os
from typing import Optional

from october.models import CapabilitySpec, DirGrant, FileGrant

_FROM_ENVIRONMENT = object()


def expand_home(path: str, home: Optional[str]) -> str:
    """Expand a leading ``~/``, a bare ``~``, or embedded ``$HOME``/``${HOME}``.

    With no home directory the path is returned unchanged.
    """
    if home is None:
        return path
    home = home.rstrip("/")
    if path == "~":
        return home
    if path.startswith("~/"):
        return f"{home}/{path[2:]}"
    return path.replace("${HOME}", home).replace("$HOME", home)


def resolve_user_paths(spec: CapabilitySpec, home=_FROM_ENVIRONMENT) -> CapabilitySpec:
    """Expand home-relative paths in every directory and file grant.

    ``home`` defaults to ``$HOME`` from the environment; pass ``None`` for no home.
    Working-dir grants hold no path and pass through.
    """
    if home is _FROM_ENVIRONMENT:
        home = os.environ.get("HOME")
    grants = tuple(
        dataclasses.replace(g, path=expand_home(g.path, home))
        if isinstance(g, (DirGrant, FileGrant))
        else g
        for g in spec.grants
    )
    return CapabilitySpec(network=spec.network, grants=grants)