"""
Per-resource-kind readiness polling policies.

Supports two configuration sources with priority:
1. Environment variables (highest priority)
   POLL_<KIND>_MAX_ATTEMPTS / POLL_<KIND>_INTERVAL_SECONDS
2. Config file (config/poll_policies.yaml, or POLL_POLICY_FILE)

There is no universal default: asking for a kind that neither source
defines raises KeyError.

Usage:
    from config.poll_policies import get_policies, get_policy

    policy = get_policy("nat-gateway")
    step = Step.from_provider("nat-gateway", provider, params, policy=policy)

    # Force refresh (after config file or environment change)
    get_policies().refresh()
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from cloudseq.provisioning.steps import PollPolicy

logger = logging.getLogger(__name__)

DEFAULT_POLICY_FILE = Path(__file__).parent / "poll_policies.yaml"


def env_key(kind: str, setting: str) -> str:
    """Environment variable name for a kind's setting."""
    normalized = kind.upper().replace("-", "_").replace(".", "_")
    return f"POLL_{normalized}_{setting.upper()}"


@dataclass
class PollPolicies:
    """
    Registry of PollPolicy objects keyed by resource kind.

    Priority order:
    1. Environment variables (POLL_<KIND>_MAX_ATTEMPTS, ..._INTERVAL_SECONDS)
    2. Config file

    Thread-safe for reads, refresh() should be called sparingly.
    """

    _config_path: Optional[Path] = None
    _cache: Dict[str, PollPolicy] = field(default_factory=dict)
    _loaded: bool = False

    def __post_init__(self):
        """Resolve config path from settings when not given explicitly."""
        if self._config_path is None:
            from config.settings import get_settings

            configured = get_settings().poll_policy_file
            self._config_path = Path(configured) if configured else DEFAULT_POLICY_FILE

    def _load_config_file(self) -> Dict[str, Dict[str, Any]]:
        """Load raw policy definitions from the YAML file."""
        if self._config_path is None or not self._config_path.exists():
            logger.warning(f"Poll policy file not found: {self._config_path}")
            return {}

        with open(self._config_path) as f:
            config = yaml.safe_load(f) or {}
        raw = config.get("poll_policies", {}) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"'poll_policies' in {self._config_path} must be a mapping")
        return raw

    def _refresh_cache(self):
        """Rebuild cache from all sources."""
        from config.settings import get_settings

        default_check_errors = get_settings().poller.max_check_errors
        cache: Dict[str, PollPolicy] = {}

        for kind, raw in self._load_config_file().items():
            raw = dict(raw or {})

            # Priority: env var > config file
            for setting, cast in (("max_attempts", int), ("interval_seconds", float)):
                key = env_key(kind, setting)
                if key in os.environ:
                    raw[setting] = cast(os.environ[key])

            try:
                cache[kind] = PollPolicy(
                    success_states=frozenset(raw.get("success_states") or ()),
                    failure_states=frozenset(raw.get("failure_states") or ()),
                    max_attempts=int(raw["max_attempts"]),
                    interval_seconds=float(raw["interval_seconds"]),
                    max_check_errors=int(raw.get("max_check_errors", default_check_errors)),
                )
            except KeyError as e:
                raise ValueError(f"Poll policy for '{kind}' is missing {e}") from e

        self._cache = cache
        self._loaded = True
        logger.debug(f"Poll policies loaded for kinds: {sorted(cache)}")

    def get(self, kind: str) -> PollPolicy:
        """
        Get the policy for a resource kind.

        Raises:
            KeyError: No policy configured for the kind
        """
        if not self._loaded:
            self._refresh_cache()

        if kind not in self._cache:
            raise KeyError(f"No poll policy configured for resource kind '{kind}'")
        return self._cache[kind]

    def register(self, kind: str, policy: PollPolicy) -> None:
        """Add or replace a policy at runtime (kept until next refresh)."""
        if not self._loaded:
            self._refresh_cache()
        self._cache[kind] = policy

    def refresh(self):
        """Force reload from the config file and environment."""
        self._loaded = False
        self._refresh_cache()

    def all_policies(self) -> Dict[str, PollPolicy]:
        """Every configured policy, keyed by kind."""
        if not self._loaded:
            self._refresh_cache()
        return dict(self._cache)

    def __contains__(self, kind: str) -> bool:
        if not self._loaded:
            self._refresh_cache()
        return kind in self._cache


_policies: Optional[PollPolicies] = None


def get_policies() -> PollPolicies:
    """Get or create the process-wide policy registry."""
    global _policies
    if _policies is None:
        _policies = PollPolicies()
    return _policies


def get_policy(kind: str) -> PollPolicy:
    """Convenience wrapper around get_policies().get(kind)."""
    return get_policies().get(kind)
