"""Battle domain models.

A battle moves through four phases.  While a challenge is open only the
challenger exists, so the two-fighter state is modelled as a separate lineup
variant: :class:`OpenChallenge` holds the red fighter alone and
:class:`Engagement` holds both.  Everything past the challenge phase can rely on
``battle.engagement()`` succeeding.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Set, Union

from ..constants import (
    BASE_MAX_HP,
    DEFAULT_MAX_HP,
    DEFAULT_MAX_ROUNDS,
    DEFAULT_STAT,
    MAX_HP_PER_ENDURANCE,
)
from ._validation import (
    FieldSpec,
    ListOf,
    ModelValidator,
    is_id,
    is_non_empty_str,
    load_model,
)


class BattleStateError(RuntimeError):
    """Raised when engine code is called on a battle in an impossible state."""


class Phase(str, Enum):
    CHALLENGE = "challenge"
    PREBATTLE = "prebattle"
    COMBAT = "combat"
    FINISHED = "finished"

    @classmethod
    def from_value(cls, value: "Phase | str") -> "Phase":
        return value if isinstance(value, cls) else cls(str(value).strip().lower())


class Stance(str, Enum):
    """Tactical posture chosen before combat."""

    AGGRESSIVE = "aggressive"
    DEFENSIVE = "defensive"
    DECEPTIVE = "deceptive"

    @classmethod
    def from_value(cls, value: "Stance | str | None") -> Optional["Stance"]:
        if value is None or isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        return None

    @property
    def beats(self) -> "Stance":
        """The stance this one has the advantage over."""

        return _STANCE_ADVANTAGE[self]


_STANCE_ADVANTAGE = {
    Stance.AGGRESSIVE: Stance.DECEPTIVE,
    Stance.DEFENSIVE: Stance.AGGRESSIVE,
    Stance.DECEPTIVE: Stance.DEFENSIVE,
}


class Side(str, Enum):
    RED = "red"
    BLUE = "blue"

    @property
    def opposite(self) -> "Side":
        return Side.BLUE if self is Side.RED else Side.RED

    @classmethod
    def from_value(cls, value: "Side | str | None") -> Optional["Side"]:
        if value is None or isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        if normalized in ("", "none"):
            return None
        return cls(normalized)


class CrowdBias(str, Enum):
    RED = "red"
    BLUE = "blue"
    NEUTRAL = "neutral"

    @classmethod
    def from_value(cls, value: "CrowdBias | str | None") -> "CrowdBias":
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.NEUTRAL
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.NEUTRAL


class BuffKind(str, Enum):
    DAMAGE = "damage"
    DEFENSE = "defense"
    CRIT = "crit"
    SPEED = "speed"

    @classmethod
    def from_value(cls, value: "BuffKind | str") -> "BuffKind":
        return value if isinstance(value, cls) else cls(str(value).strip().lower())


@dataclass(frozen=True, slots=True)
class Buff:
    """A timed modifier.  Debuffs share the shape with a negative magnitude."""

    kind: BuffKind
    magnitude: float
    rounds_remaining: int
    source: str

    def __post_init__(self) -> None:
        if self.rounds_remaining < 1:
            raise ValueError("rounds_remaining must be at least 1")

    def tick(self) -> Optional["Buff"]:
        """Return the buff one round older, or ``None`` once it expires."""

        if self.rounds_remaining <= 1:
            return None
        return replace(self, rounds_remaining=self.rounds_remaining - 1)

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "magnitude": float(self.magnitude),
            "rounds_remaining": self.rounds_remaining,
            "source": self.source,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Buff":
        return cls(
            kind=BuffKind.from_value(data["kind"]),
            magnitude=float(data["magnitude"]),
            rounds_remaining=int(data["rounds_remaining"]),
            source=str(data.get("source", "")),
        )


class BuffValidator(ModelValidator):
    model = Buff
    fields = {
        "kind": FieldSpec((BuffKind, str), "a buff kind"),
        "magnitude": FieldSpec(float, "a numeric magnitude"),
        "rounds_remaining": FieldSpec(int, "an integer round count"),
        "source": FieldSpec(str, "a source label", required=False),
    }


Buff.validator = BuffValidator


@dataclass(slots=True)
class Spectator:
    spectator_id: str
    cheered_for: Optional[Side] = None
    last_action_at: float = 0.0

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "cheered_for": self.cheered_for.value if self.cheered_for else "none",
            "last_action_at": float(self.last_action_at),
        }

    @classmethod
    def from_pair(cls, spectator_id: Any, data: Mapping[str, Any]) -> "Spectator":
        return cls(
            spectator_id=str(spectator_id),
            cheered_for=Side.from_value(data.get("cheered_for")),
            last_action_at=float(data.get("last_action_at", 0.0)),
        )


@dataclass(frozen=True, slots=True)
class RoundResult:
    round_number: int
    red_action: str
    blue_action: str
    red_damage: int
    blue_damage: int
    narrative: str
    critical_hit: bool
    red_critical: bool = False
    blue_critical: bool = False
    image_url: Optional[str] = None

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "round_number": self.round_number,
            "red_action": self.red_action,
            "blue_action": self.blue_action,
            "red_damage": self.red_damage,
            "blue_damage": self.blue_damage,
            "narrative": self.narrative,
            "critical_hit": self.critical_hit,
            "red_critical": self.red_critical,
            "blue_critical": self.blue_critical,
            "image_url": self.image_url,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RoundResult":
        return cls(
            round_number=int(data["round_number"]),
            red_action=str(data.get("red_action", "")),
            blue_action=str(data.get("blue_action", "")),
            red_damage=int(data.get("red_damage", 0)),
            blue_damage=int(data.get("blue_damage", 0)),
            narrative=str(data.get("narrative", "")),
            critical_hit=bool(data.get("critical_hit", False)),
            red_critical=bool(data.get("red_critical", False)),
            blue_critical=bool(data.get("blue_critical", False)),
            image_url=data.get("image_url"),
        )


class RoundResultValidator(ModelValidator):
    model = RoundResult
    fields = {
        "round_number": FieldSpec(int, "an integer round number"),
        "red_damage": FieldSpec(int, "red damage", required=False),
        "blue_damage": FieldSpec(int, "blue damage", required=False),
        "narrative": FieldSpec(str, "narrative text", required=False),
        "critical_hit": FieldSpec(bool, "a critical flag", required=False),
        "image_url": FieldSpec(str, "an image url", required=False, allow_none=True),
    }


RoundResult.validator = RoundResultValidator


@dataclass(frozen=True, slots=True)
class StoryAbility:
    name: str
    effect: str = ""


@dataclass(frozen=True, slots=True)
class Story:
    """Narrative game data attached to a bot: faction, base stats, abilities."""

    faction: Optional[str] = None
    stats: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    abilities: tuple[StoryAbility, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.stats, MappingProxyType):
            normalized = {str(k).lower(): float(v) for k, v in dict(self.stats).items()}
            object.__setattr__(self, "stats", MappingProxyType(normalized))
        if not isinstance(self.abilities, tuple):
            object.__setattr__(self, "abilities", tuple(self.abilities))

    def stat(self, name: str, default: float = DEFAULT_STAT) -> float:
        return float(self.stats.get(name, default))

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "faction": self.faction,
            "stats": dict(self.stats),
            "abilities": [
                {"name": ability.name, "effect": ability.effect}
                for ability in self.abilities
            ],
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Story":
        abilities = tuple(
            StoryAbility(str(entry["name"]), str(entry.get("effect", "")))
            for entry in data.get("abilities", ())
            if isinstance(entry, Mapping) and entry.get("name")
        )
        stats = data.get("stats") or {}
        return cls(
            faction=data.get("faction"),
            stats=stats,
            abilities=abilities,
        )


@dataclass(frozen=True, slots=True)
class BotProfile:
    """The bot a participant fights with."""

    token_id: str
    name: str
    story: Optional[Story] = None
    image_url: Optional[str] = None

    def stat(self, name: str, default: float = DEFAULT_STAT) -> float:
        if self.story is None:
            return default
        return self.story.stat(name, default)

    def has_stat(self, name: str) -> bool:
        return self.story is not None and name in self.story.stats

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "token_id": self.token_id,
            "name": self.name,
            "image_url": self.image_url,
            "story": self.story.to_mapping() if self.story else None,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BotProfile":
        story = data.get("story")
        return cls(
            token_id=str(data["token_id"]),
            name=str(data.get("name") or data["token_id"]),
            story=Story.from_mapping(story) if isinstance(story, Mapping) else None,
            image_url=data.get("image_url"),
        )


class BotProfileValidator(ModelValidator):
    model = BotProfile
    fields = {
        "token_id": FieldSpec(is_id, "a token identifier"),
        "name": FieldSpec(str, "a display name", required=False),
        "story": FieldSpec(Mapping, "a story table", required=False, allow_none=True),
        "image_url": FieldSpec(str, "an image url", required=False, allow_none=True),
    }


BotProfile.validator = BotProfileValidator


def compute_max_hp(profile: BotProfile) -> int:
    if not profile.has_stat("endurance"):
        return DEFAULT_MAX_HP
    return BASE_MAX_HP + math.floor(profile.stat("endurance") * MAX_HP_PER_ENDURANCE)


@dataclass(slots=True)
class Fighter:
    user_id: str
    username: str
    profile: BotProfile
    hp: int
    max_hp: int
    stance: Optional[Stance] = None
    selected_action: Optional[str] = None
    buffs: List[Buff] = field(default_factory=list)
    debuffs: List[Buff] = field(default_factory=list)

    @classmethod
    def create(cls, user_id: Any, username: str, profile: BotProfile) -> "Fighter":
        max_hp = compute_max_hp(profile)
        return cls(str(user_id), username, profile, hp=max_hp, max_hp=max_hp)

    @property
    def name(self) -> str:
        return self.profile.name

    @property
    def is_down(self) -> bool:
        return self.hp <= 0

    def stat(self, name: str) -> float:
        return self.profile.stat(name)

    def set_hp(self, value: int) -> None:
        self.hp = max(0, min(self.max_hp, int(value)))

    def take_damage(self, amount: int) -> None:
        self.set_hp(self.hp - amount)

    def all_modifiers(self) -> Iterable[Buff]:
        yield from self.buffs
        yield from self.debuffs

    def modifier_total(self, kind: BuffKind) -> float:
        return sum(buff.magnitude for buff in self.all_modifiers() if buff.kind is kind)

    def tick_modifiers(self) -> None:
        self.buffs = [b for b in (buff.tick() for buff in self.buffs) if b is not None]
        self.debuffs = [
            b for b in (buff.tick() for buff in self.debuffs) if b is not None
        ]

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "profile": self.profile.to_mapping(),
            "hp": self.hp,
            "max_hp": self.max_hp,
            "stance": self.stance.value if self.stance else None,
            "selected_action": self.selected_action,
            "buffs": [buff.to_mapping() for buff in self.buffs],
            "debuffs": [buff.to_mapping() for buff in self.debuffs],
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Fighter":
        max_hp = int(data["max_hp"])
        return cls(
            user_id=str(data["user_id"]),
            username=str(data.get("username", "")),
            profile=load_model(BotProfile, data["profile"]),
            hp=max(0, min(max_hp, int(data["hp"]))),
            max_hp=max_hp,
            stance=Stance.from_value(data.get("stance")),
            selected_action=data.get("selected_action"),
            buffs=[load_model(Buff, entry) for entry in data.get("buffs", ())],
            debuffs=[load_model(Buff, entry) for entry in data.get("debuffs", ())],
        )


class FighterValidator(ModelValidator):
    model = Fighter
    fields = {
        "user_id": FieldSpec(is_id, "a user identifier"),
        "username": FieldSpec(str, "a username", required=False),
        "profile": FieldSpec(Mapping, "a bot profile table"),
        "hp": FieldSpec(int, "integer hit points"),
        "max_hp": FieldSpec(int, "integer maximum hit points"),
        "stance": FieldSpec(str, "a stance", required=False, allow_none=True),
        "selected_action": FieldSpec(
            str, "an ability name", required=False, allow_none=True
        ),
        "buffs": FieldSpec(ListOf(Mapping), "a list of buffs", required=False),
        "debuffs": FieldSpec(ListOf(Mapping), "a list of debuffs", required=False),
    }


Fighter.validator = FighterValidator


@dataclass(slots=True)
class OpenChallenge:
    """Lineup while a challenge waits for an opponent."""

    red: Fighter

    @property
    def fighters(self) -> tuple[Fighter, ...]:
        return (self.red,)


@dataclass(slots=True)
class Engagement:
    """Lineup once both fighters are present."""

    red: Fighter
    blue: Fighter

    @property
    def fighters(self) -> tuple[Fighter, ...]:
        return (self.red, self.blue)

    def fighter(self, side: Side) -> Fighter:
        return self.red if side is Side.RED else self.blue

    def side_of(self, user_id: Any) -> Optional[Side]:
        key = str(user_id)
        if self.red.user_id == key:
            return Side.RED
        if self.blue.user_id == key:
            return Side.BLUE
        return None


Lineup = Union[OpenChallenge, Engagement]


@dataclass(slots=True)
class Battle:
    battle_id: str
    channel_id: str
    lineup: Lineup
    phase: Phase = Phase.CHALLENGE
    round_number: int = 0
    max_rounds: int = DEFAULT_MAX_ROUNDS
    announcement_message_id: Optional[str] = None
    thread_id: Optional[str] = None
    thread_message_id: Optional[str] = None
    pending_spectators: Set[str] = field(default_factory=set)
    spectators: Dict[str, Spectator] = field(default_factory=dict)
    crowd_energy: int = 0
    crowd_bias: CrowdBias = CrowdBias.NEUTRAL
    round_log: List[RoundResult] = field(default_factory=list)
    generated_images: List[str] = field(default_factory=list)
    created_at: float = 0.0
    expires_at: float = 0.0
    round_started_at: Optional[float] = None

    @property
    def red_fighter(self) -> Fighter:
        return self.lineup.red

    @property
    def blue_fighter(self) -> Optional[Fighter]:
        if isinstance(self.lineup, Engagement):
            return self.lineup.blue
        return None

    @property
    def fighters(self) -> tuple[Fighter, ...]:
        return self.lineup.fighters

    @property
    def is_finished(self) -> bool:
        return self.phase is Phase.FINISHED

    def engagement(self) -> Engagement:
        if not isinstance(self.lineup, Engagement):
            raise BattleStateError(
                f"battle {self.battle_id} has no opponent in phase {self.phase.value}"
            )
        return self.lineup

    def side_of(self, user_id: Any) -> Optional[Side]:
        if isinstance(self.lineup, Engagement):
            return self.lineup.side_of(user_id)
        return Side.RED if self.lineup.red.user_id == str(user_id) else None

    def fighter_for(self, user_id: Any) -> Optional[Fighter]:
        side = self.side_of(user_id)
        if side is None:
            return None
        if side is Side.RED:
            return self.lineup.red
        return self.engagement().blue

    def participant_ids(self) -> tuple[str, ...]:
        return tuple(fighter.user_id for fighter in self.fighters)

    def to_mapping(self) -> Dict[str, Any]:
        blue = self.blue_fighter
        return {
            "battle_id": self.battle_id,
            "channel_id": self.channel_id,
            "phase": self.phase.value,
            "round_number": self.round_number,
            "max_rounds": self.max_rounds,
            "announcement_message_id": self.announcement_message_id,
            "thread_id": self.thread_id,
            "thread_message_id": self.thread_message_id,
            "red": self.red_fighter.to_mapping(),
            "blue": blue.to_mapping() if blue is not None else None,
            "pending_spectators": sorted(self.pending_spectators),
            "spectators": [
                [spectator_id, spectator.to_mapping()]
                for spectator_id, spectator in sorted(self.spectators.items())
            ],
            "crowd_energy": self.crowd_energy,
            "crowd_bias": self.crowd_bias.value,
            "round_log": [entry.to_mapping() for entry in self.round_log],
            "generated_images": list(self.generated_images),
            "created_at": float(self.created_at),
            "expires_at": float(self.expires_at),
            "round_started_at": self.round_started_at,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Battle":
        phase = Phase.from_value(data["phase"])
        red = load_model(Fighter, data["red"])
        blue_data = data.get("blue")
        if phase is Phase.CHALLENGE:
            lineup: Lineup = OpenChallenge(red)
        else:
            if not isinstance(blue_data, Mapping):
                raise ValueError(
                    f"battle in phase {phase.value} is missing its blue fighter"
                )
            lineup = Engagement(red, load_model(Fighter, blue_data))

        spectators: Dict[str, Spectator] = {}
        for pair in data.get("spectators", ()):
            spectator_id, state = _unpack_pair(pair)
            spectators[spectator_id] = Spectator.from_pair(spectator_id, state)

        started = data.get("round_started_at")
        return cls(
            battle_id=str(data["battle_id"]),
            channel_id=str(data["channel_id"]),
            lineup=lineup,
            phase=phase,
            round_number=int(data.get("round_number", 0)),
            max_rounds=int(data.get("max_rounds", DEFAULT_MAX_ROUNDS)),
            announcement_message_id=_optional_id(data.get("announcement_message_id")),
            thread_id=_optional_id(data.get("thread_id")),
            thread_message_id=_optional_id(data.get("thread_message_id")),
            pending_spectators={str(item) for item in data.get("pending_spectators", ())},
            spectators=spectators,
            crowd_energy=max(0, min(100, int(data.get("crowd_energy", 0)))),
            crowd_bias=CrowdBias.from_value(data.get("crowd_bias")),
            round_log=[load_model(RoundResult, entry) for entry in data.get("round_log", ())],
            generated_images=[str(url) for url in data.get("generated_images", ())],
            created_at=float(data.get("created_at", 0.0)),
            expires_at=float(data.get("expires_at", 0.0)),
            round_started_at=float(started) if started is not None else None,
        )


def _optional_id(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _unpack_pair(pair: Any) -> tuple[str, Mapping[str, Any]]:
    if not isinstance(pair, Sequence) or isinstance(pair, str) or len(pair) != 2:
        raise ValueError(f"spectator entry must be an [id, state] pair, got {pair!r}")
    spectator_id, state = pair
    if not isinstance(state, Mapping):
        raise ValueError(f"spectator {spectator_id!r} state must be a table")
    return str(spectator_id), state


class BattleValidator(ModelValidator):
    model = Battle
    fields = {
        "battle_id": FieldSpec(is_non_empty_str, "a battle identifier"),
        "channel_id": FieldSpec(is_id, "a channel identifier"),
        "phase": FieldSpec((Phase, str), "a battle phase"),
        "round_number": FieldSpec(int, "an integer round number"),
        "max_rounds": FieldSpec(int, "an integer round limit", required=False),
        "red": FieldSpec(Mapping, "the red fighter"),
        "blue": FieldSpec(Mapping, "the blue fighter", required=False, allow_none=True),
        "pending_spectators": FieldSpec(
            ListOf(is_id), "a list of spectator ids", required=False
        ),
        "spectators": FieldSpec(
            ListOf(list), "a list of [id, state] pairs", required=False
        ),
        "crowd_energy": FieldSpec(int, "integer crowd energy", required=False),
        "crowd_bias": FieldSpec(str, "a crowd bias", required=False),
        "round_log": FieldSpec(ListOf(Mapping), "a list of round results", required=False),
        "created_at": FieldSpec(float, "a creation timestamp", required=False),
        "expires_at": FieldSpec(float, "an expiry timestamp", required=False),
        "round_started_at": FieldSpec(
            float, "a round start timestamp", required=False, allow_none=True
        ),
    }


Battle.validator = BattleValidator


__all__ = [
    "BattleStateError",
    "Phase",
    "Stance",
    "Side",
    "CrowdBias",
    "BuffKind",
    "Buff",
    "Spectator",
    "RoundResult",
    "StoryAbility",
    "Story",
    "BotProfile",
    "Fighter",
    "OpenChallenge",
    "Engagement",
    "Lineup",
    "Battle",
    "compute_max_hp",
]
