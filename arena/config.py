"""Bot configuration utilities."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .constants import (
    DEFAULT_CHALLENGE_TIMEOUT,
    DEFAULT_MAX_ROUNDS,
    DEFAULT_ROUND_TIMEOUT,
    DEFAULT_SWEEP_INTERVAL,
)
from .storage import resolve_state_dir


def env(name: str, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if value is None:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(slots=True)
class ArenaConfig:
    token: str
    channel_id: int | None = None
    challenge_timeout: int = DEFAULT_CHALLENGE_TIMEOUT
    round_timeout: int = DEFAULT_ROUND_TIMEOUT
    max_rounds: int = DEFAULT_MAX_ROUNDS
    sweep_interval: int = DEFAULT_SWEEP_INTERVAL
    state_dir: Path = Path(".state")

    @classmethod
    def from_env(cls) -> "ArenaConfig":
        token = env("DISCORD_TOKEN")
        channel_raw = os.getenv("ARENA_CHANNEL_ID")
        channel_id = _int_env("ARENA_CHANNEL_ID", 0) if channel_raw else None
        challenge_timeout = max(
            1, _int_env("ARENA_CHALLENGE_TIMEOUT", DEFAULT_CHALLENGE_TIMEOUT)
        )
        round_timeout = max(1, _int_env("ARENA_ROUND_TIMEOUT", DEFAULT_ROUND_TIMEOUT))
        max_rounds = max(1, _int_env("ARENA_MAX_ROUNDS", DEFAULT_MAX_ROUNDS))
        sweep_interval = max(
            1, _int_env("ARENA_SWEEP_INTERVAL", DEFAULT_SWEEP_INTERVAL)
        )

        return cls(
            token=token,
            channel_id=channel_id or None,
            challenge_timeout=challenge_timeout,
            round_timeout=round_timeout,
            max_rounds=max_rounds,
            sweep_interval=sweep_interval,
            state_dir=resolve_state_dir(),
        )


__all__ = ["ArenaConfig", "env"]
