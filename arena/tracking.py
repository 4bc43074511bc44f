"""Win/loss statistics for arena fighters and their bots."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional

from .constants import MAX_BATTLE_HISTORY
from .models import Battle, Fighter, Side
from .models._validation import FieldSpec, ModelValidator, is_id, load_model

log = logging.getLogger(__name__)


@dataclass(slots=True)
class UserArenaStats:
    user_id: str
    username: str = ""
    wins: int = 0
    losses: int = 0
    current_streak: int = 0
    best_streak: int = 0
    epic_victories: int = 0
    total_rounds: int = 0
    last_battle_at: Optional[float] = None

    @property
    def battles(self) -> int:
        return self.wins + self.losses

    @property
    def win_rate(self) -> float:
        return self.wins / self.battles if self.battles else 0.0

    def to_mapping(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "UserArenaStats":
        last = data.get("last_battle_at")
        return cls(
            user_id=str(data["user_id"]),
            username=str(data.get("username", "")),
            wins=int(data.get("wins", 0)),
            losses=int(data.get("losses", 0)),
            current_streak=int(data.get("current_streak", 0)),
            best_streak=int(data.get("best_streak", 0)),
            epic_victories=int(data.get("epic_victories", 0)),
            total_rounds=int(data.get("total_rounds", 0)),
            last_battle_at=float(last) if last is not None else None,
        )


class UserArenaStatsValidator(ModelValidator):
    model = UserArenaStats
    fields = {
        "user_id": FieldSpec(is_id, "a user identifier"),
        "wins": FieldSpec(int, "an integer win count", required=False),
        "losses": FieldSpec(int, "an integer loss count", required=False),
        "best_streak": FieldSpec(int, "an integer streak", required=False),
    }


UserArenaStats.validator = UserArenaStatsValidator


@dataclass(slots=True)
class BotCombatStats:
    token_id: str
    name: str = ""
    wins: int = 0
    losses: int = 0
    total_damage_dealt: int = 0
    total_damage_taken: int = 0
    critical_hits: int = 0
    battles_participated: int = 0

    def to_mapping(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BotCombatStats":
        return cls(
            token_id=str(data["token_id"]),
            name=str(data.get("name", "")),
            wins=int(data.get("wins", 0)),
            losses=int(data.get("losses", 0)),
            total_damage_dealt=int(data.get("total_damage_dealt", 0)),
            total_damage_taken=int(data.get("total_damage_taken", 0)),
            critical_hits=int(data.get("critical_hits", 0)),
            battles_participated=int(data.get("battles_participated", 0)),
        )


class BotCombatStatsValidator(ModelValidator):
    model = BotCombatStats
    fields = {
        "token_id": FieldSpec(is_id, "a token identifier"),
        "wins": FieldSpec(int, "an integer win count", required=False),
        "total_damage_dealt": FieldSpec(int, "integer damage", required=False),
    }


BotCombatStats.validator = BotCombatStatsValidator


@dataclass(frozen=True, slots=True)
class BattleRecord:
    battle_id: str
    finished_at: float
    red_user_id: str
    red_username: str
    red_bot_id: str
    red_bot_name: str
    blue_user_id: str
    blue_username: str
    blue_bot_id: str
    blue_bot_name: str
    winner_id: str
    rounds: int
    epic_victory: bool

    @property
    def winner_name(self) -> str:
        return self.red_username if self.winner_id == self.red_user_id else self.blue_username

    @property
    def loser_name(self) -> str:
        return self.blue_username if self.winner_id == self.red_user_id else self.red_username

    def to_mapping(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BattleRecord":
        return cls(
            battle_id=str(data["battle_id"]),
            finished_at=float(data.get("finished_at", 0.0)),
            red_user_id=str(data["red_user_id"]),
            red_username=str(data.get("red_username", "")),
            red_bot_id=str(data.get("red_bot_id", "")),
            red_bot_name=str(data.get("red_bot_name", "")),
            blue_user_id=str(data["blue_user_id"]),
            blue_username=str(data.get("blue_username", "")),
            blue_bot_id=str(data.get("blue_bot_id", "")),
            blue_bot_name=str(data.get("blue_bot_name", "")),
            winner_id=str(data["winner_id"]),
            rounds=int(data.get("rounds", 0)),
            epic_victory=bool(data.get("epic_victory", False)),
        )


class BattleRecordValidator(ModelValidator):
    model = BattleRecord
    fields = {
        "battle_id": FieldSpec(str, "a battle identifier"),
        "red_user_id": FieldSpec(is_id, "the red user id"),
        "blue_user_id": FieldSpec(is_id, "the blue user id"),
        "winner_id": FieldSpec(is_id, "the winner's user id"),
        "rounds": FieldSpec(int, "an integer round count", required=False),
        "finished_at": FieldSpec(float, "a timestamp", required=False),
    }


BattleRecord.validator = BattleRecordValidator


@dataclass(slots=True)
class ArenaStats:
    users: Dict[str, UserArenaStats] = field(default_factory=dict)
    bots: Dict[str, BotCombatStats] = field(default_factory=dict)
    history: List[BattleRecord] = field(default_factory=list)

    def user(self, user_id: Any, username: str = "") -> UserArenaStats:
        key = str(user_id)
        entry = self.users.get(key)
        if entry is None:
            entry = UserArenaStats(key, username)
            self.users[key] = entry
        elif username:
            entry.username = username
        return entry

    def bot(self, token_id: Any, name: str = "") -> BotCombatStats:
        key = str(token_id)
        entry = self.bots.get(key)
        if entry is None:
            entry = BotCombatStats(key, name)
            self.bots[key] = entry
        elif name:
            entry.name = name
        return entry

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "users": [entry.to_mapping() for entry in self.users.values()],
            "bots": [entry.to_mapping() for entry in self.bots.values()],
            "history": [record.to_mapping() for record in self.history],
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ArenaStats":
        """Rebuild stats, skipping entries that fail validation."""

        stats = cls()
        for entry in _load_each(UserArenaStats, data.get("users", ())):
            stats.users[entry.user_id] = entry
        for entry in _load_each(BotCombatStats, data.get("bots", ())):
            stats.bots[entry.token_id] = entry
        stats.history = list(_load_each(BattleRecord, data.get("history", ())))
        return stats


def _load_each(model: type, entries: Any) -> List[Any]:
    loaded: List[Any] = []
    if not isinstance(entries, list):
        return loaded
    for index, raw in enumerate(entries):
        try:
            loaded.append(load_model(model, raw))
        except (ValueError, TypeError, KeyError) as exc:
            log.error("Skipping invalid %s entry %d: %s", model.__name__, index, exc)
    return loaded


def record_battle_result(
    stats: ArenaStats,
    battle: Battle,
    winner: Fighter,
    loser: Fighter,
    epic: bool,
    *,
    now: Optional[float] = None,
) -> BattleRecord:
    now = time.time() if now is None else now
    engagement = battle.engagement()
    rounds = battle.round_number

    winning = stats.user(winner.user_id, winner.username)
    winning.wins += 1
    winning.current_streak += 1
    winning.best_streak = max(winning.best_streak, winning.current_streak)
    winning.total_rounds += rounds
    winning.last_battle_at = now
    if epic:
        winning.epic_victories += 1

    losing = stats.user(loser.user_id, loser.username)
    losing.losses += 1
    losing.current_streak = 0
    losing.total_rounds += rounds
    losing.last_battle_at = now

    bots = {
        Side.RED: stats.bot(engagement.red.profile.token_id, engagement.red.name),
        Side.BLUE: stats.bot(engagement.blue.profile.token_id, engagement.blue.name),
    }
    winner_side = Side.RED if winner.user_id == engagement.red.user_id else Side.BLUE
    bots[winner_side].wins += 1
    bots[winner_side.opposite].losses += 1
    for bot in bots.values():
        bot.battles_participated += 1

    for entry in battle.round_log:
        bots[Side.RED].total_damage_dealt += entry.red_damage
        bots[Side.RED].total_damage_taken += entry.blue_damage
        bots[Side.BLUE].total_damage_dealt += entry.blue_damage
        bots[Side.BLUE].total_damage_taken += entry.red_damage
        if entry.red_critical:
            bots[Side.RED].critical_hits += 1
        if entry.blue_critical:
            bots[Side.BLUE].critical_hits += 1

    red, blue = engagement.red, engagement.blue
    record = BattleRecord(
        battle_id=battle.battle_id,
        finished_at=now,
        red_user_id=red.user_id,
        red_username=red.username,
        red_bot_id=red.profile.token_id,
        red_bot_name=red.name,
        blue_user_id=blue.user_id,
        blue_username=blue.username,
        blue_bot_id=blue.profile.token_id,
        blue_bot_name=blue.name,
        winner_id=winner.user_id,
        rounds=rounds,
        epic_victory=epic,
    )
    stats.history.append(record)
    if len(stats.history) > MAX_BATTLE_HISTORY:
        del stats.history[: len(stats.history) - MAX_BATTLE_HISTORY]

    log.info(
        "Recorded battle %s: %s (%s) defeated %s (%s)",
        battle.battle_id,
        winner.username,
        winner.name,
        loser.username,
        loser.name,
    )
    return record


def leaderboard(stats: ArenaStats, limit: int = 10) -> List[UserArenaStats]:
    ranked = sorted(
        stats.users.values(), key=lambda entry: (-entry.wins, -entry.best_streak)
    )
    return ranked[:limit]


def recent_battles(stats: ArenaStats, limit: int = 10) -> List[BattleRecord]:
    if limit <= 0:
        return []
    return list(reversed(stats.history[-limit:]))


class ServerSummary(NamedTuple):
    total_battles: int
    total_rounds: int
    epic_victories: int
    unique_fighters: int
    unique_bots: int


def server_summary(stats: ArenaStats) -> ServerSummary:
    users = stats.users.values()
    return ServerSummary(
        total_battles=len(stats.history),
        # Both fighters count every round.
        total_rounds=sum(entry.total_rounds for entry in users) // 2,
        epic_victories=sum(entry.epic_victories for entry in users),
        unique_fighters=len(stats.users),
        unique_bots=len(stats.bots),
    )


__all__ = [
    "ArenaStats",
    "BattleRecord",
    "BotCombatStats",
    "ServerSummary",
    "UserArenaStats",
    "leaderboard",
    "recent_battles",
    "record_battle_result",
    "server_summary",
]
