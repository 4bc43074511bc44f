from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
import tomllib

from arena.combat import CombatResolution
from arena.models import Battle, Buff, BuffKind, Side, Spectator
from arena.registry import BattleRegistry
from arena.state import resolve_round
from arena.storage import (
    SCHEMA_VERSION,
    ArenaStore,
    _toml_dumps,
    _write_toml,
    resolve_state_dir,
)
from arena.tracking import ArenaStats, record_battle_result

from conftest import build_fighter


def _played(registry: BattleRegistry, battle: Battle) -> Battle:
    battle.spectators["300"] = Spectator("300", Side.RED, 50.0)
    battle.pending_spectators.add("301")
    battle.crowd_energy = 35
    battle.red_fighter.buffs.append(Buff(BuffKind.DAMAGE, 20.0, 2, "power_surge"))
    resolve_round(
        registry,
        battle,
        CombatResolution(8, 5, True, False, Side.RED, "Strike", "Defend", ()),
        narrative="Alpha lunges.\nBeta \"blocks\".",
        now=1500.0,
    )
    return battle


def test_write_toml_preserves_original_on_replace_failure(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    target = tmp_path / "data.toml"
    _write_toml(target, {"alpha": 1})
    original_contents = target.read_text(encoding="utf8")

    def _boom(src: Path, dst: Path) -> None:
        raise RuntimeError("simulated failure")

    monkeypatch.setattr("arena.storage.os.replace", _boom)

    with pytest.raises(RuntimeError):
        _write_toml(target, {"alpha": 2})

    assert target.read_text(encoding="utf8") == original_contents
    leftovers = [p for p in target.parent.iterdir() if p.name != "data.toml"]
    assert leftovers == []


def test_toml_dumps_is_readable_back() -> None:
    text = _toml_dumps(
        {
            "name": "Zoë \"the\" bot",
            "skipped": None,
            "pairs": [["300", {"cheered_for": "red"}]],
            "nested": {"rows": [{"a": 1}, {"a": 2}]},
        }
    )

    data = tomllib.loads(text)

    assert data == {
        "name": "Zoë \"the\" bot",
        "pairs": [["300", {"cheered_for": "red"}]],
        "nested": {"rows": [{"a": 1}, {"a": 2}]},
    }


def test_battles_survive_a_restart(
    tmp_path: Path, registry: BattleRegistry, combat_battle: Battle
) -> None:
    _played(registry, combat_battle)
    waiting = registry.create(
        "556",
        build_fighter("400", "Gamma", "3", strength=70, abilities=["Ion Storm"], faction="Iron"),
        now=2000.0,
    )
    store = ArenaStore(tmp_path)

    assert asyncio.run(store.save_battles([combat_battle, waiting], now=2100.0))
    loaded = asyncio.run(ArenaStore(tmp_path).load_battles())

    assert [battle.to_mapping() for battle in loaded] == [
        combat_battle.to_mapping(),
        waiting.to_mapping(),
    ]
    assert loaded[0].round_log[0].narrative == "Alpha lunges.\nBeta \"blocks\"."
    assert loaded[0].spectators["300"].cheered_for is Side.RED
    assert loaded[1].blue_fighter is None

    restored = BattleRegistry()
    assert restored.restore(loaded) == 2
    assert restored.lookup_by_user("200") is loaded[0]


def test_invalid_battles_are_skipped(
    tmp_path: Path, registry: BattleRegistry, combat_battle: Battle
) -> None:
    store = ArenaStore(tmp_path)
    asyncio.run(store.save_battles([combat_battle]))
    with store.state_path.open("a", encoding="utf8") as handle:
        handle.write('\n[[battles]]\nbattle_id = "broken"\nphase = "combat"\n')

    loaded = asyncio.run(store.load_battles())

    assert [battle.battle_id for battle in loaded] == [combat_battle.battle_id]


def test_missing_corrupt_or_newer_documents_load_empty(tmp_path: Path) -> None:
    store = ArenaStore(tmp_path)
    assert asyncio.run(store.load_battles()) == []

    store.state_path.write_text("battles = [", encoding="utf8")
    assert asyncio.run(store.load_battles()) == []

    store.state_path.write_text(
        f"schema_version = {SCHEMA_VERSION + 1}\nbattles = []\n", encoding="utf8"
    )
    assert asyncio.run(store.load_battles()) == []


def test_failed_save_is_reported(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, open_battle: Battle
) -> None:
    def _boom(src: Path, dst: Path) -> None:
        raise OSError("disk full")

    monkeypatch.setattr("arena.storage.os.replace", _boom)

    assert asyncio.run(ArenaStore(tmp_path).save_battles([open_battle])) is False
    assert not (tmp_path / "arena-state.toml").exists()


def test_stats_round_trip(
    tmp_path: Path, registry: BattleRegistry, combat_battle: Battle
) -> None:
    _played(registry, combat_battle)
    stats = ArenaStats()
    record_battle_result(
        stats, combat_battle, combat_battle.red_fighter, combat_battle.blue_fighter,
        False, now=3000.0,
    )
    store = ArenaStore(tmp_path)

    assert asyncio.run(store.save_stats(stats))
    loaded = asyncio.run(store.load_stats())

    assert loaded.to_mapping() == stats.to_mapping()
    assert asyncio.run(ArenaStore(tmp_path / "empty").load_stats()).users == {}


def test_resolve_state_dir_precedence(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("ARENA_STATE_DIR", str(tmp_path / "arena"))
    monkeypatch.setenv("STATE_DIR", str(tmp_path / "generic"))

    assert resolve_state_dir(tmp_path / "explicit") == (tmp_path / "explicit").resolve()
    assert resolve_state_dir() == (tmp_path / "arena").resolve()

    monkeypatch.delenv("ARENA_STATE_DIR")
    assert resolve_state_dir() == (tmp_path / "generic").resolve()

    monkeypatch.delenv("STATE_DIR")
    monkeypatch.chdir(tmp_path)
    assert resolve_state_dir() == (tmp_path / ".state").resolve()
