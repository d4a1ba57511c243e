"""
Participant ledger: verified participants and their reward scores.

In-memory state is authoritative. It is dumped wholesale into two documents
per campaign environment, `/{env}/score` and `/{env}/state`, whenever the bot
persists a snapshot. A failed write is logged and simply retried by the next
persist call.
"""
from dataclasses import fields
from datetime import datetime, timezone
from typing import Dict, Optional, List, Any
import traceback
from loguru import logger
from relaytools.configuration.constants import ScoreReward
from relaytools.models.models import Participant, LedgerSnapshot, VerificationState
from relaytools.protocols.key_value_store import KeyValueStore
from relaytools.utilities.exceptions import PersistenceError

def score_key(environment: str) -> str:
    return f"/{environment}/score"

def state_key(environment: str) -> str:
    return f"/{environment}/state"

class ParticipantLedger:
    """Owns participant records and scores for one campaign environment"""

    MERGEABLE_FIELDS = {f.name for f in fields(Participant)} - {'address', 'score'}

    def __init__(self, store: KeyValueStore, environment: str):
        self.store = store
        self.environment = environment
        self.participants: Dict[str, Participant] = {}
        self.scores: Dict[str, int] = {}
        self.loaded = False
        self.scores_restored = False

    @property
    def score_key(self) -> str:
        return score_key(self.environment)

    @property
    def state_key(self) -> str:
        return state_key(self.environment)

    def get(self, address: str) -> Optional[Participant]:
        return self.participants.get(address)

    def score_of(self, address: str) -> int:
        return self.scores.get(address, 0)

    def verified_addresses(self) -> List[str]:
        return [
            address for address, participant in self.participants.items()
            if participant.state == VerificationState.VERIFIED
        ]

    def upsert(self, address: str, **updates) -> Participant:
        """Create or merge a participant record. Scores are never touched here"""
        unknown = set(updates) - self.MERGEABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot upsert fields {sorted(unknown)} on a participant")

        participant = self.participants.get(address)
        if participant is None:
            participant = Participant(address=address, score=self.score_of(address))
            self.participants[address] = participant
            logger.debug(f"ParticipantLedger.upsert: Added participant {address}")

        for name, value in updates.items():
            setattr(participant, name, value)
        return participant

    def add_reward(self, address: str, amount: int) -> int:
        """Increase a participant's score. Returns the new score"""
        amount = int(amount)
        if amount <= 0:
            raise ValueError(f"Reward amount must be positive, got {amount}")

        new_score = self.score_of(address) + amount
        self.scores[address] = new_score
        if address in self.participants:
            self.participants[address].score = new_score
        logger.info(f"ParticipantLedger.add_reward: New score {new_score} for {address} (+{amount})")
        return new_score

    def snapshot(self, metadata: Optional[Dict[str, Any]] = None) -> LedgerSnapshot:
        return LedgerSnapshot(
            scores=dict(self.scores),
            connected=[self.participants[a].to_dict() for a in self.verified_addresses()],
            metadata=dict(metadata or {}),
            refreshed=datetime.now(timezone.utc),
        )

    async def persist(self, snapshot: Optional[LedgerSnapshot] = None) -> bool:
        """Write a snapshot to storage. Returns False if the write failed"""
        if not self.loaded:
            logger.warning("ParticipantLedger.persist: Ledger not loaded yet, not overwriting storage")
            return False
        snapshot = snapshot or self.snapshot()
        try:
            await self.store.set(self.score_key, snapshot.scores)
            await self.store.set(self.state_key, snapshot.state_record())
        except Exception as e:
            error = e if isinstance(e, PersistenceError) else PersistenceError(self.environment, str(e))
            logger.error(f"ParticipantLedger.persist: {error}. Will retry on next persist")
            logger.error(traceback.format_exc())
            return False

        logger.debug(f"ParticipantLedger.persist: Saved ledger at {snapshot.refreshed.isoformat()}")
        return True

    async def load(self):
        """
        Load participants and scores from storage, merging with anything already in memory.

        Raises:
            PersistenceError: If storage cannot be read
        """
        logger.info(f"ParticipantLedger.load: Loading ledger for {self.environment}")
        state = await self.store.get(self.state_key)
        scores = await self.store.get(self.score_key) or {}

        # Scores never decrease, so a stored score can only raise the in-memory one
        for address, score in scores.items():
            self.scores[address] = max(self.score_of(address), int(score))

        if not state:
            logger.info("ParticipantLedger.load: No state found, starting with an empty ledger")
        else:
            for record in state.get('connected') or []:
                if record['id'] not in self.participants:
                    self.participants[record['id']] = Participant.from_dict(record)
            logger.info(f"ParticipantLedger.load: Loaded {len(state.get('connected') or [])} verified participants")

        for address, participant in self.participants.items():
            participant.score = self.score_of(address)
        self.loaded = True

    async def persist_scores(self) -> bool:
        """Write only the score document. Returns False if the write failed"""
        if not self.loaded:
            logger.warning("ParticipantLedger.persist_scores: Ledger not loaded yet, not overwriting storage")
            return False
        try:
            await self.store.set(self.score_key, dict(self.scores))
        except Exception as e:
            logger.error(f"ParticipantLedger.persist_scores: {e}. Will retry on next persist")
            logger.error(traceback.format_exc())
            return False
        return True

    async def restore_scores(self, source_environment: str) -> int:
        """
        Seed this environment's scores from another environment, once.

        Every participant of the source gets the verified reward, prior amounts are discarded.
        Skipped if scores already exist here. Returns the number of restored scores.
        """
        if self.scores_restored:
            return 0

        if await self.store.exists(self.score_key):
            logger.info("ParticipantLedger.restore_scores: Scores found, will not restore scores")
            self.scores_restored = True
            return 0

        previous_scores = await self.store.get(score_key(source_environment))
        if not previous_scores:
            logger.info(f"ParticipantLedger.restore_scores: No scores found in {source_environment}")
            self.scores_restored = True
            return 0

        scores = {address: int(ScoreReward.VERIFIED) for address in previous_scores}
        await self.store.set(self.score_key, scores)
        self.scores_restored = True
        for address, score in scores.items():
            self.scores[address] = max(self.score_of(address), score)
            if address in self.participants:
                self.participants[address].score = self.scores[address]

        logger.info(
            f"ParticipantLedger.restore_scores: Added {len(scores)} scores with value {int(ScoreReward.VERIFIED)} "
            f"from {source_environment}"
        )
        return len(scores)
