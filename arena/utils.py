"""Formatting helpers and an administrative CLI for the arena state files."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Sequence, SupportsInt

from .storage import ArenaStore, resolve_state_dir
from .tracking import leaderboard, recent_battles, server_summary


def format_number(value: SupportsInt) -> str:
    """Return ``value`` with ``'`` as the thousands separator."""

    integer = int(value)
    sign = "-" if integer < 0 else ""
    formatted = f"{abs(integer):,}".replace(",", "'")
    return f"{sign}{formatted}"


def progress_bar(current: float, maximum: float, width: int = 10) -> str:
    if maximum <= 0 or width <= 0:
        return "░" * max(width, 0)
    ratio = max(0.0, min(1.0, current / maximum))
    filled = round(ratio * width)
    return "█" * filled + "░" * (width - filled)


def hp_line(name: str, hp: int, max_hp: int) -> str:
    return f"{name}: {progress_bar(hp, max_hp)} {hp}/{max_hp} HP"


def format_win_rate(wins: int, battles: int) -> str:
    if battles <= 0:
        return "0%"
    return f"{wins / battles:.0%}"


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _store(args: argparse.Namespace) -> ArenaStore:
    return ArenaStore(resolve_state_dir(args.state_dir))


def _command_battles(args: argparse.Namespace) -> int:
    battles = asyncio.run(_store(args).load_battles())
    if not battles:
        print("No saved battles.")
        return 0
    for battle in battles:
        names = " vs ".join(fighter.name for fighter in battle.fighters)
        print(
            f"{battle.battle_id}  {battle.phase.value:<9}  round {battle.round_number}/"
            f"{battle.max_rounds}  {names}"
        )
    return 0


def _command_leaderboard(args: argparse.Namespace) -> int:
    stats = asyncio.run(_store(args).load_stats())
    ranked = leaderboard(stats, args.limit)
    if not ranked:
        print("No battles recorded yet.")
        return 0
    for position, entry in enumerate(ranked, start=1):
        print(
            f"{position:>2}. {entry.username or entry.user_id}  "
            f"{format_number(entry.wins)}W/{format_number(entry.losses)}L  "
            f"best streak {entry.best_streak}"
        )
    summary = server_summary(stats)
    print(
        f"\n{format_number(summary.total_battles)} battles, "
        f"{format_number(summary.total_rounds)} rounds, "
        f"{summary.epic_victories} epic victories"
    )
    return 0


def _command_history(args: argparse.Namespace) -> int:
    stats = asyncio.run(_store(args).load_stats())
    records = recent_battles(stats, args.limit)
    if not records:
        print("No battles recorded yet.")
        return 0
    for record in records:
        epic = " (epic)" if record.epic_victory else ""
        print(
            f"{record.battle_id}  {record.winner_name} defeated {record.loser_name} "
            f"in {record.rounds} round(s){epic}"
        )
    return 0


def _command_clear(args: argparse.Namespace) -> int:
    store = _store(args)
    path: Path = store.state_path
    if not path.exists():
        print(f"Nothing to clear at {path}")
        return 0
    if not args.force:
        answer = input(f"Delete saved battles at {path}? [y/N] ").strip().lower()
        if answer not in {"y", "yes"}:
            print("Aborted.")
            return 1
    path.unlink()
    print(f"Removed {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and manage saved arena state.")
    parser.add_argument(
        "--state-dir",
        help="Directory holding the arena documents (default: $ARENA_STATE_DIR or .state)",
    )

    subparsers = parser.add_subparsers(dest="command")

    battles_parser = subparsers.add_parser("battles", help="List battles saved on disk")
    battles_parser.set_defaults(func=_command_battles)

    leaderboard_parser = subparsers.add_parser("leaderboard", help="Show the top fighters")
    leaderboard_parser.add_argument("--limit", type=int, default=10)
    leaderboard_parser.set_defaults(func=_command_leaderboard)

    history_parser = subparsers.add_parser("history", help="Show the most recent results")
    history_parser.add_argument("--limit", type=int, default=10)
    history_parser.set_defaults(func=_command_history)

    clear_parser = subparsers.add_parser(
        "clear-battles",
        help="Delete the saved battle document so the bot starts with an empty arena",
    )
    clear_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip the confirmation prompt",
    )
    clear_parser.set_defaults(func=_command_clear)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "command", None):
        parser.print_help()
        return 0
    return args.func(args)


__all__ = [
    "build_parser",
    "format_number",
    "format_win_rate",
    "hp_line",
    "main",
    "progress_bar",
]


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
