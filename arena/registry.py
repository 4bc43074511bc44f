"""In-memory lifecycle store for arena battles.

One :class:`BattleRegistry` is built by the hosting process and handed to every
engine call.  It owns the battle id, participant and thread indexes together with
the phase timeouts, so tests can build as many isolated registries as they like.
"""

from __future__ import annotations

import logging
import string
import time
from typing import Dict, Iterable, List, Optional

from .constants import DEFAULT_MAX_ROUNDS, DEFAULT_PHASE_TIMEOUT
from .models import Battle, Fighter, OpenChallenge, Phase, Spectator
from .randomness import RandomSource, default_source, pick

log = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase
_ID_SUFFIX_LENGTH = 6


def _to_base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits: List[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_ID_ALPHABET[remainder])
    return "".join(reversed(digits))


class BattleRegistry:
    def __init__(
        self,
        *,
        challenge_timeout: float = DEFAULT_PHASE_TIMEOUT,
        round_timeout: float = DEFAULT_PHASE_TIMEOUT,
        rng: Optional[RandomSource] = None,
    ) -> None:
        self.challenge_timeout = float(challenge_timeout)
        self.round_timeout = float(round_timeout)
        self._rng = rng or default_source()
        self._battles: Dict[str, Battle] = {}
        self._by_user: Dict[str, str] = {}
        self._by_thread: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    def _new_battle_id(self, now: float) -> str:
        while True:
            suffix = "".join(pick(self._rng, _ID_ALPHABET) for _ in range(_ID_SUFFIX_LENGTH))
            battle_id = f"battle_{_to_base36(int(now * 1000))}_{suffix}"
            if battle_id not in self._battles:
                return battle_id

    def create(
        self,
        channel_id: str | int,
        challenger: Fighter,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        *,
        now: Optional[float] = None,
    ) -> Battle:
        now = time.time() if now is None else now
        battle = Battle(
            battle_id=self._new_battle_id(now),
            channel_id=str(channel_id),
            lineup=OpenChallenge(challenger),
            phase=Phase.CHALLENGE,
            round_number=0,
            max_rounds=max(1, int(max_rounds)),
            created_at=now,
            expires_at=now + self.challenge_timeout,
        )
        self._battles[battle.battle_id] = battle
        self._by_user[challenger.user_id] = battle.battle_id
        log.info(
            "Created battle %s: %s (%s) challenges in channel %s",
            battle.battle_id,
            challenger.username,
            challenger.name,
            battle.channel_id,
        )
        return battle

    def lookup_by_id(self, battle_id: str) -> Optional[Battle]:
        return self._battles.get(battle_id)

    def lookup_by_user(self, user_id: str | int) -> Optional[Battle]:
        battle_id = self._by_user.get(str(user_id))
        return self._battles.get(battle_id) if battle_id is not None else None

    def lookup_by_thread(self, thread_id: str | int) -> Optional[Battle]:
        battle_id = self._by_thread.get(str(thread_id))
        return self._battles.get(battle_id) if battle_id is not None else None

    def is_user_busy(self, user_id: str | int) -> bool:
        return str(user_id) in self._by_user

    def all_battles(self) -> List[Battle]:
        return list(self._battles.values())

    def count(self) -> int:
        return len(self._battles)

    def phase_counts(self) -> Dict[str, int]:
        """Summary used by status displays."""

        battles = self._battles.values()
        return {
            "active": sum(1 for b in battles if b.phase is not Phase.FINISHED),
            "in_combat": sum(1 for b in battles if b.phase is Phase.COMBAT),
            "waiting": sum(1 for b in battles if b.phase is Phase.CHALLENGE),
        }

    # ------------------------------------------------------------------
    # Bookkeeping used by the state machine and the command layer
    # ------------------------------------------------------------------

    def index_participant(self, battle: Battle, fighter: Fighter) -> None:
        self._by_user[fighter.user_id] = battle.battle_id

    def reset_timeout(self, battle: Battle, *, now: Optional[float] = None) -> None:
        now = time.time() if now is None else now
        timeout = (
            self.challenge_timeout
            if battle.phase is Phase.CHALLENGE
            else self.round_timeout
        )
        battle.expires_at = now + timeout

    def attach_thread(self, battle: Battle, thread_id: str | int) -> None:
        if battle.thread_id is not None:
            self._by_thread.pop(battle.thread_id, None)
        battle.thread_id = str(thread_id)
        self._by_thread[battle.thread_id] = battle.battle_id

    def set_announcement(self, battle: Battle, message_id: str | int) -> None:
        battle.announcement_message_id = str(message_id)

    def add_pending_spectator(self, battle: Battle, user_id: str | int) -> bool:
        """Queue a spectator until the fight thread exists.

        Fighters cannot watch their own battle; returns ``False`` for them and for
        repeat requests.
        """

        key = str(user_id)
        if key in battle.participant_ids():
            return False
        if key in battle.pending_spectators or key in battle.spectators:
            return False
        battle.pending_spectators.add(key)
        return True

    def activate_spectators(
        self, battle: Battle, *, now: Optional[float] = None
    ) -> List[str]:
        now = time.time() if now is None else now
        admitted = sorted(battle.pending_spectators)
        for spectator_id in admitted:
            battle.spectators[spectator_id] = Spectator(
                spectator_id, cheered_for=None, last_action_at=now
            )
        battle.pending_spectators.clear()
        if admitted:
            log.info(
                "Admitted %d spectator(s) to battle %s", len(admitted), battle.battle_id
            )
        return admitted

    # ------------------------------------------------------------------
    # Removal and restore
    # ------------------------------------------------------------------

    def remove(self, battle_id: str) -> Optional[Battle]:
        battle = self._battles.pop(battle_id, None)
        if battle is None:
            return None
        for user_id in battle.participant_ids():
            if self._by_user.get(user_id) == battle_id:
                del self._by_user[user_id]
        if battle.thread_id is not None and self._by_thread.get(battle.thread_id) == battle_id:
            del self._by_thread[battle.thread_id]
        log.info("Cleaned up battle %s", battle_id)
        return battle

    def restore(self, battles: Iterable[Battle]) -> int:
        restored = 0
        for battle in battles:
            if battle.battle_id in self._battles:
                log.warning("Skipping duplicate battle %s during restore", battle.battle_id)
                continue
            self._battles[battle.battle_id] = battle
            for user_id in battle.participant_ids():
                self._by_user[user_id] = battle.battle_id
            if battle.thread_id is not None:
                self._by_thread[battle.thread_id] = battle.battle_id
            restored += 1
        if restored:
            log.info("Restored %d battle(s)", restored)
        return restored


__all__ = ["BattleRegistry"]
