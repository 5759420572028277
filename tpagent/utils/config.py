"""
Environment-driven configuration.

Values are resolved from the process environment, optionally seeded from a
`.env` file in the working directory (never overriding variables that are
already set).

Usage:
    from tpagent.utils.config import AgentConfig

    config = AgentConfig.from_env()
    config.agent_url      # "http://localhost:8585" unless TP_AGENT_URL is set
"""

import logging
import os
from dataclasses import dataclass
from importlib import metadata
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_AGENT_URL = "TP_AGENT_URL"
ENV_DEV_TOKEN = "TP_DEV_TOKEN"
ENV_MAX_BATCH_SIZE = "TP_MAX_REPORTS_BATCH_SIZE"
ENV_DEBUG_SDK_VERSION = "TP_DEBUG_SDK_VERSION"
ENV_DISABLE_AUTO_REPORTS = "TP_DISABLE_AUTO_REPORTS"

DEFAULT_AGENT_URL = "http://localhost:8585"
DEFAULT_MAX_BATCH_SIZE = 10
DISTRIBUTION_NAME = "tpagent-sdk"

_dotenv_loaded = False


def _ensure_dotenv():
    """Load `.env` once per process."""
    global _dotenv_loaded
    if not _dotenv_loaded:
        load_dotenv(override=False)
        _dotenv_loaded = True


def _is_truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _parse_batch_size(raw: Optional[str]) -> int:
    if raw is None or raw == "":
        return DEFAULT_MAX_BATCH_SIZE
    try:
        size = int(raw)
        if size <= 0:
            raise ValueError(f"batch size must be positive, got {size}")
        return size
    except ValueError:
        logger.info(
            f"Failed to parse {ENV_MAX_BATCH_SIZE}={raw!r}. "
            f"Maximum reports batch size is set to the default value: {DEFAULT_MAX_BATCH_SIZE}."
        )
        return DEFAULT_MAX_BATCH_SIZE


def sdk_version() -> Optional[str]:
    """
    Resolve the SDK version sent to the Agent.

    Installed package metadata wins; when running from a source checkout the
    TP_DEBUG_SDK_VERSION variable is used instead.
    """
    try:
        return metadata.version(DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        _ensure_dotenv()
        debug_version = os.environ.get(ENV_DEBUG_SDK_VERSION)
        logger.debug(f"Using value [{debug_version}] from {ENV_DEBUG_SDK_VERSION} environment variable")
        return debug_version


@dataclass(frozen=True)
class AgentConfig:
    """Resolved SDK configuration."""
    agent_url: str = DEFAULT_AGENT_URL
    token: Optional[str] = None
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE
    disable_auto_reports: bool = False

    @classmethod
    def from_env(cls) -> "AgentConfig":
        _ensure_dotenv()
        return cls(
            agent_url=os.environ.get(ENV_AGENT_URL) or DEFAULT_AGENT_URL,
            token=os.environ.get(ENV_DEV_TOKEN) or None,
            max_batch_size=_parse_batch_size(os.environ.get(ENV_MAX_BATCH_SIZE)),
            disable_auto_reports=_is_truthy(os.environ.get(ENV_DISABLE_AUTO_REPORTS)),
        )
