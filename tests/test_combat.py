"""Damage formula, attack order and round resolution."""

from __future__ import annotations

import itertools

import pytest

from arena.combat import (
    DEFAULT_ABILITIES,
    DamageKind,
    calculate_damage,
    find_ability,
    fighter_abilities,
    random_ability,
    resolve_combat,
    round_half_up,
    stance_multiplier,
)
from arena.models import Battle, Buff, BuffKind, CrowdBias, Engagement, Phase, Side, Stance
from arena.spectators import crowd_bonuses

from conftest import QueuedRandom, build_fighter

SCENARIO_STATS = dict(strength=70, agility=60, endurance=50, luck=30)


def _ability(name: str):
    return next(ability for ability in DEFAULT_ABILITIES if ability.name == name)


def _scenario_battle() -> Battle:
    red = build_fighter("100", "Alpha", **SCENARIO_STATS)
    blue = build_fighter("200", "Beta", "2", **SCENARIO_STATS)
    red.stance = Stance.AGGRESSIVE
    blue.stance = Stance.DEFENSIVE
    red.selected_action = "Strike"
    blue.selected_action = "Defend"
    return Battle("b1", "555", Engagement(red, blue), phase=Phase.COMBAT, round_number=1)


def test_round_half_up() -> None:
    assert round_half_up(7.5) == 8
    assert round_half_up(7.49) == 7
    assert round_half_up(0.5) == 1


def test_stance_multiplier_table() -> None:
    stances = [None, *Stance]
    for attacker, defender in itertools.product(stances, repeat=2):
        value = stance_multiplier(attacker, defender)
        assert value in (1.2, 0.8, 1.0)
        if attacker is None or defender is None:
            assert value == 1.0
    assert stance_multiplier(Stance.AGGRESSIVE, Stance.DECEPTIVE) == 1.2
    assert stance_multiplier(Stance.AGGRESSIVE, Stance.DEFENSIVE) == 0.8
    assert stance_multiplier(Stance.DECEPTIVE, Stance.DECEPTIVE) == 1.0


def test_defensive_stance_against_aggressive_strike() -> None:
    battle = _scenario_battle()
    red, blue = battle.red_fighter, battle.blue_fighter

    red_hit = calculate_damage(
        red, blue, _ability("Strike"), 0.0, QueuedRandom([0.99]),
        defender_ability=_ability("Defend"),
    )
    blue_hit = calculate_damage(
        blue, red, _ability("Defend"), 0.0, QueuedRandom([0.99]),
        defender_ability=_ability("Strike"),
    )

    assert red_hit.damage == 8
    assert blue_hit.damage == 5
    assert not red_hit.critical and not blue_hit.critical
    assert red_hit.blocked == pytest.approx(26.0)
    assert blue_hit.blocked == pytest.approx(20.0)
    assert red_hit.blocked > blue_hit.blocked


def test_crowd_energy_raises_favoured_damage() -> None:
    battle = _scenario_battle()
    red, blue = battle.red_fighter, battle.blue_fighter
    red.stance = blue.stance = None
    battle.crowd_bias = CrowdBias.RED

    battle.crowd_energy = 0
    quiet = calculate_damage(
        red, blue, _ability("Strike"), crowd_bonuses(battle).red, QueuedRandom([0.99])
    )
    battle.crowd_energy = 100
    roaring = calculate_damage(
        red, blue, _ability("Strike"), crowd_bonuses(battle).red, QueuedRandom([0.99])
    )

    assert quiet.damage == 22
    assert roaring.damage == 28
    assert roaring.damage > quiet.damage


def test_critical_hit_multiplies_damage() -> None:
    attacker = build_fighter("100", strength=50, luck=40)
    defender = build_fighter("200", endurance=0)

    # luck 40 gives a 20% chance; 0.19 * 100 is under it.
    hit = calculate_damage(attacker, defender, _ability("Strike"), 0.0, QueuedRandom([0.19]))
    miss = calculate_damage(attacker, defender, _ability("Strike"), 0.0, QueuedRandom([0.2]))

    assert hit.critical and hit.damage == 45
    assert not miss.critical and miss.damage == 30


def test_deceptive_stance_adds_crit_chance() -> None:
    attacker = build_fighter("100", luck=0)
    defender = build_fighter("200")
    attacker.stance = Stance.DECEPTIVE

    hit = calculate_damage(attacker, defender, _ability("Strike"), 0.0, QueuedRandom([0.19]))

    assert hit.critical


def test_damage_never_drops_below_one() -> None:
    attacker = build_fighter("100", strength=1, luck=0)
    defender = build_fighter("200", endurance=500)
    defender.buffs.append(Buff(BuffKind.DEFENSE, 80.0, 2, "chaos_field"))

    hit = calculate_damage(
        attacker, defender, _ability("Defend"), 0.0, QueuedRandom([0.99]),
        defender_ability=_ability("Defend"),
    )

    assert hit.damage == 1


def test_damage_buffs_and_debuffs_both_count() -> None:
    attacker = build_fighter("100", strength=100, luck=0)
    defender = build_fighter("200", endurance=0)
    attacker.buffs.append(Buff(BuffKind.DAMAGE, 20.0, 2, "power_surge"))
    attacker.debuffs.append(Buff(BuffKind.DAMAGE, -10.0, 1, "curse"))
    attacker.buffs.append(Buff(BuffKind.SPEED, 30.0, 2, "chaos_field"))

    hit = calculate_damage(attacker, defender, _ability("Strike"), 0.0, QueuedRandom([0.99]))

    assert hit.damage == 66


def test_story_abilities_replace_defaults() -> None:
    fighter = build_fighter("100", abilities=["Plasma Lance", "Ion Storm"])
    abilities = fighter_abilities(fighter)

    assert [ability.name for ability in abilities] == ["Plasma Lance", "Ion Storm"]
    assert all(ability.damage_kind is DamageKind.MAGICAL for ability in abilities)
    assert all(ability.power == 1.1 for ability in abilities)
    assert find_ability(fighter, "Strike").name == "Strike"
    assert find_ability(fighter, None) is DEFAULT_ABILITIES[0]
    assert random_ability(fighter, QueuedRandom([0.99])).name == "Ion Storm"
    assert fighter_abilities(build_fighter()) == DEFAULT_ABILITIES


def test_magical_abilities_use_intellect() -> None:
    attacker = build_fighter("100", abilities=["Plasma Lance"], intellect=100, strength=0, luck=0)
    defender = build_fighter("200", endurance=0)

    hit = calculate_damage(
        attacker, defender, fighter_abilities(attacker)[0], 0.0, QueuedRandom([0.99])
    )

    assert hit.damage == 66


def test_resolve_combat_draw_order_and_events() -> None:
    battle = _scenario_battle()
    rng = QueuedRandom([0.0, 0.0, 0.99, 0.99])

    resolution = resolve_combat(battle, rng)

    assert rng.calls == 4
    assert resolution.first is Side.RED
    assert resolution.red_damage == 8
    assert resolution.blue_damage == 5
    assert not resolution.critical_hit
    assert resolution.red_action == "Strike" and resolution.blue_action == "Defend"
    assert resolution.events == (
        "Alpha used Strike for 8 damage",
        "Beta used Defend for 5 damage",
    )
    # Resolution alone never mutates hit points.
    assert battle.red_fighter.hp == battle.red_fighter.max_hp


def test_faster_side_acts_first() -> None:
    battle = _scenario_battle()
    faster = build_fighter("200", "Beta", "2", **{**SCENARIO_STATS, "agility": 70})
    faster.stance = Stance.DEFENSIVE
    faster.selected_action = "Defend"
    battle.lineup = Engagement(battle.red_fighter, faster)

    resolution = resolve_combat(battle, QueuedRandom([0.99, 0.0, 0.99, 0.99]))

    assert resolution.first is Side.BLUE


def test_knockout_skips_the_counter_attack() -> None:
    battle = _scenario_battle()
    battle.blue_fighter.set_hp(5)

    resolution = resolve_combat(battle, QueuedRandom([0.0, 0.0, 0.99, 0.0]))

    assert resolution.first is Side.RED
    assert resolution.red_damage == 8
    assert resolution.blue_damage == 0
    assert not resolution.blue_critical
    assert resolution.events == ("Alpha used Strike for 8 damage",)


def test_stale_action_falls_back_to_strike() -> None:
    battle = _scenario_battle()
    battle.red_fighter.selected_action = "Forgotten Move"

    resolution = resolve_combat(battle, QueuedRandom([0.0, 0.0, 0.99, 0.99]))

    assert resolution.red_action == "Strike"
