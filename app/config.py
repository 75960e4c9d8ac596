"""Service configuration read from the environment."""

import os
from dataclasses import dataclass

DEFAULT_TAIGA_API_URL = "https://api.taiga.io/api/v1"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass
class ChatSettings:
    """Timeouts and limits for one chat request."""

    turn_timeout: float = 120.0
    history_timeout: float = 120.0
    max_tool_hops: int = 10

    @classmethod
    def from_env(cls) -> "ChatSettings":
        """Build settings from CHAT_* environment variables."""
        return cls(
            turn_timeout=_env_float("CHAT_TURN_TIMEOUT_SECONDS", cls.turn_timeout),
            history_timeout=_env_float("CHAT_HISTORY_TIMEOUT_SECONDS", cls.history_timeout),
            max_tool_hops=_env_int("CHAT_MAX_TOOL_HOPS", cls.max_tool_hops),
        )
