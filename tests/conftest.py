from __future__ import annotations

import random
import sys
from pathlib import Path
from typing import Callable, Iterable, Optional

import pytest

PROJECT_BASE = Path(__file__).resolve().parents[1]
if str(PROJECT_BASE) not in sys.path:
    sys.path.insert(0, str(PROJECT_BASE))

from arena.models import Battle, BotProfile, Fighter, Stance, Story, StoryAbility
from arena.registry import BattleRegistry
from arena.state import accept_challenge, set_stance


class QueuedRandom:
    """Deterministic stand-in for ``random.Random`` that replays fixed draws."""

    def __init__(self, values: Iterable[float] = (), default: Optional[float] = None):
        self.values = list(values)
        self.default = default
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        if self.values:
            return self.values.pop(0)
        if self.default is None:
            raise AssertionError("random source exhausted")
        return self.default


@pytest.fixture
def queued_rng() -> Callable[..., QueuedRandom]:
    return QueuedRandom


def build_profile(
    token_id: str = "1",
    name: str = "Alpha",
    *,
    abilities: Iterable[str] = (),
    faction: Optional[str] = None,
    **stats: float,
) -> BotProfile:
    story = None
    ability_list = tuple(StoryAbility(entry, f"{entry} effect") for entry in abilities)
    if stats or ability_list or faction:
        story = Story(faction=faction, stats=stats, abilities=ability_list)
    return BotProfile(token_id=token_id, name=name, story=story)


def build_fighter(
    user_id: str = "100", name: str = "Alpha", token_id: str = "1", **kwargs
) -> Fighter:
    return Fighter.create(user_id, f"user-{user_id}", build_profile(token_id, name, **kwargs))


@pytest.fixture
def make_fighter() -> Callable[..., Fighter]:
    return build_fighter


@pytest.fixture
def registry() -> BattleRegistry:
    return BattleRegistry(rng=random.Random(7))


@pytest.fixture
def open_battle(registry: BattleRegistry) -> Battle:
    challenger = build_fighter("100", "Alpha", "1")
    return registry.create("555", challenger, 5, now=1000.0)


@pytest.fixture
def engaged_battle(registry: BattleRegistry, open_battle: Battle) -> Battle:
    opponent = build_fighter("200", "Beta", "2")
    assert accept_challenge(registry, open_battle, opponent, now=1000.0).success
    return open_battle


@pytest.fixture
def combat_battle(registry: BattleRegistry, engaged_battle: Battle) -> Battle:
    set_stance(registry, engaged_battle, "100", Stance.AGGRESSIVE, now=1000.0)
    set_stance(registry, engaged_battle, "200", Stance.DEFENSIVE, now=1000.0)
    return engaged_battle
