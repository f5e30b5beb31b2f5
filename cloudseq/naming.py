"""Unique resource names for a run."""

import re
import secrets

_INVALID = re.compile(r"[^a-z0-9-]+")


def resource_prefix(base: str, random_bytes: int = 4) -> str:
    """
    Build a run-unique prefix such as ``elb-demo-3f9a0c1e``.

    The base is lower-cased and anything outside [a-z0-9-] becomes '-'.
    """
    cleaned = _INVALID.sub("-", base.lower()).strip("-")
    if not cleaned:
        raise ValueError(f"Invalid resource prefix base: {base!r}")
    return f"{cleaned}-{secrets.token_hex(random_bytes)}"


def resource_name(prefix: str, suffix: str) -> str:
    """Join a run prefix and a per-resource suffix."""
    return f"{prefix}-{suffix}" if suffix else prefix
