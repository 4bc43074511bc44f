from __future__ import annotations

import asyncio

from arena.combat import CombatResolution
from arena.models import Battle, Side
from arena.narrative import (
    ROUND_NARRATIVE_LIMIT,
    critical_hit_narrative,
    fallback_round_narrative,
    fallback_victory_narrative,
    illustrate,
    narrate_round,
    narrate_victory,
    round_summary,
    truncate_narrative,
    victory_image_prompt,
)


def _resolution(first: Side, red=(8, False), blue=(5, False)) -> CombatResolution:
    return CombatResolution(
        red_damage=red[0],
        blue_damage=blue[0],
        red_critical=red[1],
        blue_critical=blue[1],
        first=first,
        red_action="Strike",
        blue_action="Defend",
        events=(),
    )


class StubNarrator:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error

    async def round_narrative(self, battle, resolution):
        if self.error is not None:
            raise self.error
        return self.text

    async def victory_narrative(self, battle, winner, loser, epic):
        if self.error is not None:
            raise self.error
        return self.text


class StubPainter:
    def __init__(self, payload=b"png", error=None):
        self.payload = payload
        self.error = error
        self.references = None

    async def illustrate(self, prompt, references):
        if self.error is not None:
            raise self.error
        self.references = references
        return self.payload


def test_truncate_prefers_sentence_boundary() -> None:
    assert truncate_narrative("  short text  ", 500) == "short text"

    text = "A" * 300 + ". " + "B" * 300
    assert truncate_narrative(text, 500) == "A" * 300 + "."


def test_truncate_without_boundary_adds_ellipsis() -> None:
    text = "word " * 200

    result = truncate_narrative(text, 500)

    assert result.endswith("word...")
    assert len(result) <= 503


def test_fallback_round_with_red_first(combat_battle: Battle) -> None:
    text = fallback_round_narrative(
        combat_battle, _resolution(Side.RED, red=(8, True), blue=(5, False))
    )

    assert text == (
        "Alpha strikes first, dealing 8 damage with a critical hit!\n"
        "Beta counters for 5 damage."
    )


def test_fallback_round_with_blue_first(combat_battle: Battle) -> None:
    text = fallback_round_narrative(
        combat_battle, _resolution(Side.BLUE, red=(8, True), blue=(5, True))
    )

    assert text == (
        "Beta acts first, landing 5 damage with a critical strike!\n"
        "Alpha responds with 8 damage, a devastating hit!"
    )


def test_fallback_round_omits_counter_after_knockout(combat_battle: Battle) -> None:
    text = fallback_round_narrative(combat_battle, _resolution(Side.RED, blue=(0, False)))

    assert text == "Alpha strikes first, dealing 8 damage."


def test_fallback_round_without_opponent(open_battle: Battle) -> None:
    assert fallback_round_narrative(open_battle, _resolution(Side.RED)) == (
        "The battle continues..."
    )


def test_fixed_texts(combat_battle: Battle) -> None:
    red, blue = combat_battle.red_fighter, combat_battle.blue_fighter

    assert fallback_victory_narrative(red, blue).startswith(
        "In the end, **Alpha** stood victorious over the fallen Beta."
    )
    assert critical_hit_narrative(red, blue, "Strike", 45) == (
        "**CRITICAL HIT!** Alpha's Strike deals 45 devastating damage to Beta!"
    )
    assert "epic" in victory_image_prompt(red, blue, True)
    assert "epic" not in victory_image_prompt(red, blue, False)


def test_round_summary_lists_both_attacks(combat_battle: Battle) -> None:
    combat_battle.crowd_energy = 40

    summary = round_summary(combat_battle, _resolution(Side.BLUE, blue=(5, True)))

    lines = summary.splitlines()
    assert lines[0] == "ROUND 1 of 5"
    assert lines[1].startswith("Beta [Unknown] used Defend on Alpha [Unknown]")
    assert lines[1].endswith("(CRITICAL)")
    assert lines[2].startswith("Alpha [Unknown] used Strike")
    assert lines[3] == "CROWD ENERGY: 40%"


def test_narrate_round_falls_back(combat_battle: Battle) -> None:
    resolution = _resolution(Side.RED)
    fallback = fallback_round_narrative(combat_battle, resolution)

    for service in (None, StubNarrator(text="   "), StubNarrator(error=RuntimeError("boom"))):
        assert asyncio.run(narrate_round(service, combat_battle, resolution)) == fallback


def test_narrate_round_truncates_service_text(combat_battle: Battle) -> None:
    service = StubNarrator(text="Steel meets steel. " * 60)

    text = asyncio.run(narrate_round(service, combat_battle, _resolution(Side.RED)))

    assert len(text) <= ROUND_NARRATIVE_LIMIT
    assert text.endswith(".")


def test_narrate_victory(combat_battle: Battle) -> None:
    red, blue = combat_battle.red_fighter, combat_battle.blue_fighter

    told = asyncio.run(
        narrate_victory(StubNarrator(text="Alpha triumphs."), combat_battle, red, blue, False)
    )
    failed = asyncio.run(
        narrate_victory(StubNarrator(error=ValueError()), combat_battle, red, blue, True)
    )

    assert told == "Alpha triumphs."
    assert failed == fallback_victory_narrative(red, blue)


def test_illustrate_never_raises() -> None:
    painter = StubPainter()

    assert asyncio.run(illustrate(None, "prompt")) is None
    assert asyncio.run(illustrate(StubPainter(error=OSError("offline")), "prompt")) is None
    assert asyncio.run(illustrate(painter, "prompt", ("a.png",))) == b"png"
    assert painter.references == ["a.png"]
