from __future__ import annotations

import pytest

from arena.combat import CombatResolution
from arena.models import (
    Battle,
    BattleStateError,
    Buff,
    BuffKind,
    Engagement,
    Phase,
    Side,
    Stance,
)
from arena.registry import BattleRegistry
from arena.state import (
    NOT_PARTICIPANT,
    accept_challenge,
    attach_narrative,
    both_actions_ready,
    both_stances_ready,
    cancel_challenge,
    forfeit,
    is_epic_victory,
    loser,
    resolve_round,
    set_action,
    set_stance,
    winner,
    winning_side,
)

from conftest import build_fighter


def _resolution(red_damage: int, blue_damage: int, **overrides) -> CombatResolution:
    values = dict(
        red_damage=red_damage,
        blue_damage=blue_damage,
        red_critical=False,
        blue_critical=False,
        first=Side.RED,
        red_action="Strike",
        blue_action="Defend",
        events=("Alpha used Strike", "Beta used Defend"),
    )
    values.update(overrides)
    return CombatResolution(**values)


def test_accept_moves_to_prebattle(registry: BattleRegistry, open_battle: Battle) -> None:
    registry.round_timeout = 30
    opponent = build_fighter("200", "Beta", "2")

    result = accept_challenge(registry, open_battle, opponent, now=5000.0)

    assert result.success
    assert open_battle.phase is Phase.PREBATTLE
    assert open_battle.blue_fighter is opponent
    assert open_battle.expires_at == 5030.0
    assert registry.lookup_by_user("200") is open_battle


def test_accept_rejections(registry: BattleRegistry, open_battle: Battle) -> None:
    own = accept_challenge(registry, open_battle, build_fighter("100"))
    assert not own.success
    assert own.reason == "You cannot accept your own challenge."

    registry.create("555", build_fighter("300"), now=1001.0)
    busy = accept_challenge(registry, open_battle, build_fighter("300"))
    assert busy.reason == "You are already in another battle."

    assert accept_challenge(registry, open_battle, build_fighter("200")).success
    again = accept_challenge(registry, open_battle, build_fighter("400"))
    assert again.reason == "This challenge is no longer open."
    assert open_battle.phase is Phase.PREBATTLE


def test_stances_start_combat_once_both_are_set(
    registry: BattleRegistry, engaged_battle: Battle
) -> None:
    assert set_stance(registry, engaged_battle, "100", Stance.AGGRESSIVE).success
    assert engaged_battle.phase is Phase.PREBATTLE
    assert not both_stances_ready(engaged_battle)

    assert set_stance(registry, engaged_battle, 200, Stance.DECEPTIVE, now=7000.0).success

    assert both_stances_ready(engaged_battle)
    assert engaged_battle.phase is Phase.COMBAT
    assert engaged_battle.round_number == 1
    assert engaged_battle.round_started_at == 7000.0
    assert engaged_battle.expires_at == 7000.0 + registry.round_timeout


def test_stance_rejections(registry: BattleRegistry, open_battle: Battle) -> None:
    early = set_stance(registry, open_battle, "100", Stance.DEFENSIVE)
    assert early.reason == "Stances can only be chosen before combat begins."

    accept_challenge(registry, open_battle, build_fighter("200"))
    stranger = set_stance(registry, open_battle, "999", Stance.DEFENSIVE)
    assert stranger.reason == NOT_PARTICIPANT
    assert open_battle.red_fighter.stance is None


def test_set_action_records_choice(combat_battle: Battle) -> None:
    assert set_action(combat_battle, "100", "Power Attack").success
    assert not both_actions_ready(combat_battle)
    assert set_action(combat_battle, "200", "Defend").success
    assert both_actions_ready(combat_battle)
    assert combat_battle.red_fighter.selected_action == "Power Attack"

    assert set_action(combat_battle, "999", "Strike").reason == NOT_PARTICIPANT


def test_set_action_outside_combat(engaged_battle: Battle) -> None:
    result = set_action(engaged_battle, "100", "Strike")
    assert not result.success
    assert result.reason == "Actions can only be chosen during combat."


def test_resolve_round_applies_damage_and_advances(
    registry: BattleRegistry, combat_battle: Battle
) -> None:
    red, blue = combat_battle.red_fighter, combat_battle.blue_fighter
    red.selected_action = "Strike"
    blue.selected_action = "Defend"
    red.buffs.append(Buff(BuffKind.DAMAGE, 10.0, 1, "bloodlust"))
    blue.buffs.append(Buff(BuffKind.DAMAGE, 20.0, 2, "power_surge"))

    result = resolve_round(
        registry, combat_battle, _resolution(8, 5, blue_critical=True), now=9000.0
    )

    assert blue.hp == 92
    assert red.hp == 95
    assert result.round_number == 1
    assert result.critical_hit and result.blue_critical and not result.red_critical
    assert result.narrative == "Alpha used Strike\nBeta used Defend"
    assert combat_battle.round_log == [result]
    assert red.selected_action is None and blue.selected_action is None
    assert red.buffs == []
    assert blue.buffs[0].rounds_remaining == 1
    assert combat_battle.phase is Phase.COMBAT
    assert combat_battle.round_number == 2
    assert combat_battle.expires_at == 9000.0 + registry.round_timeout


def test_knockout_finishes_battle(registry: BattleRegistry, combat_battle: Battle) -> None:
    resolve_round(registry, combat_battle, _resolution(150, 0), narrative="Boom")

    assert combat_battle.phase is Phase.FINISHED
    assert combat_battle.blue_fighter.hp == 0
    assert combat_battle.round_log[-1].narrative == "Boom"
    assert winner(combat_battle) is combat_battle.red_fighter
    assert loser(combat_battle) is combat_battle.blue_fighter


def test_round_limit_finishes_battle(registry: BattleRegistry, combat_battle: Battle) -> None:
    combat_battle.max_rounds = 2
    resolve_round(registry, combat_battle, _resolution(4, 3))
    assert combat_battle.phase is Phase.COMBAT
    resolve_round(registry, combat_battle, _resolution(4, 3))

    assert combat_battle.phase is Phase.FINISHED
    assert combat_battle.round_number == 2
    assert winning_side(combat_battle) is Side.RED
    assert combat_battle.red_fighter.hp == 94
    assert combat_battle.blue_fighter.hp == 92


def test_resolve_round_requires_combat(
    registry: BattleRegistry, engaged_battle: Battle
) -> None:
    with pytest.raises(BattleStateError):
        resolve_round(registry, engaged_battle, _resolution(1, 1))


def test_attach_narrative_replaces_log_entry(
    registry: BattleRegistry, combat_battle: Battle
) -> None:
    resolve_round(registry, combat_battle, _resolution(3, 4))

    updated = attach_narrative(combat_battle, 1, "Sparks fly.", image_url="http://img")

    assert updated is not None
    assert combat_battle.round_log[0].narrative == "Sparks fly."
    assert combat_battle.round_log[0].image_url == "http://img"
    assert attach_narrative(combat_battle, 7, "missing") is None


def test_forfeit_awards_the_other_fighter(combat_battle: Battle) -> None:
    combat_battle.red_fighter.set_hp(0)

    result = forfeit(combat_battle, "100")

    assert result.success
    assert combat_battle.phase is Phase.FINISHED
    assert winner(combat_battle) is combat_battle.blue_fighter
    assert forfeit(combat_battle, "200").reason == "This battle is already over."


def test_forfeit_during_prebattle(engaged_battle: Battle) -> None:
    assert forfeit(engaged_battle, "200").success
    assert engaged_battle.blue_fighter.hp == 0
    assert winner(engaged_battle) is engaged_battle.red_fighter


def test_forfeit_open_challenge_has_no_winner(open_battle: Battle) -> None:
    assert forfeit(open_battle, "999").reason == NOT_PARTICIPANT

    assert forfeit(open_battle, "100").success
    assert open_battle.phase is Phase.FINISHED
    assert open_battle.blue_fighter is None
    with pytest.raises(BattleStateError):
        winner(open_battle)


def test_cancel_challenge(registry: BattleRegistry, open_battle: Battle) -> None:
    stranger = cancel_challenge(registry, open_battle, "200")
    assert stranger.reason == "Only the challenger can cancel this challenge."
    assert registry.count() == 1

    assert cancel_challenge(registry, open_battle, 100).success
    assert registry.count() == 0
    assert not registry.is_user_busy("100")


def test_cancel_after_accept_is_rejected(
    registry: BattleRegistry, engaged_battle: Battle
) -> None:
    result = cancel_challenge(registry, engaged_battle, "100")
    assert result.reason == "Only an unanswered challenge can be cancelled."
    assert registry.lookup_by_id(engaged_battle.battle_id) is engaged_battle


def _finished(red_hp: int, blue_hp: int, red_agility: float, blue_agility: float) -> Battle:
    red = build_fighter("100", "Alpha", agility=red_agility)
    blue = build_fighter("200", "Beta", "2", agility=blue_agility)
    red.set_hp(red_hp)
    blue.set_hp(blue_hp)
    return Battle(
        "b1", "555", Engagement(red, blue), phase=Phase.FINISHED, round_number=5
    )


def test_winner_by_remaining_hp() -> None:
    assert winning_side(_finished(40, 60, 90, 10)) is Side.BLUE
    assert winning_side(_finished(61, 60, 10, 90)) is Side.RED


def test_winner_tie_break_on_agility() -> None:
    assert winning_side(_finished(50, 50, 40, 60)) is Side.BLUE
    assert winning_side(_finished(50, 50, 60, 40)) is Side.RED
    assert winning_side(_finished(50, 50, 55, 55)) is Side.RED


def test_epic_victory_conditions() -> None:
    battle = _finished(80, 30, 50, 50)
    battle.crowd_energy = 0
    assert is_epic_victory(battle)

    battle.round_number = 3
    assert not is_epic_victory(battle)

    battle.crowd_energy = 100
    assert is_epic_victory(battle)

    close_call = _finished(9, 0, 50, 50)
    close_call.round_number = 1
    assert is_epic_victory(close_call)
