import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class LedgerVote:
    user_id: str
    display_name: str
    value: str
    confidence: int
    round_number: int
    submitted_at: float = field(default_factory=time.time)
    reasoning: Optional[str] = None

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'display_name': self.display_name,
            'value': self.value,
            'confidence': self.confidence,
            'round_number': self.round_number,
            'submitted_at': self.submitted_at,
            'reasoning': self.reasoning,
        }


@dataclass
class _RoundVotes:
    round_number: int
    votes: Dict[str, LedgerVote] = field(default_factory=dict)


class VoteLedger:
    """In-flight votes, one entry per participant for a session's open round.

    A resubmission replaces the participant's previous vote in place, so the
    first-seen order of participants is kept. Writing a vote for a newer
    round drops whatever the session held for the older one.
    """

    def __init__(self):
        self._rounds: Dict[str, _RoundVotes] = {}
        self._lock = threading.Lock()

    def upsert(self, session_id: str, vote: LedgerVote) -> int:
        with self._lock:
            entry = self._rounds.get(session_id)
            if entry is None or entry.round_number != vote.round_number:
                entry = _RoundVotes(round_number=vote.round_number)
                self._rounds[session_id] = entry
            entry.votes[vote.user_id] = vote
            return len(entry.votes)

    def votes(self, session_id: str, round_number: int) -> List[LedgerVote]:
        with self._lock:
            entry = self._rounds.get(session_id)
            if entry is None or entry.round_number != round_number:
                return []
            return list(entry.votes.values())

    def count(self, session_id: str, round_number: int) -> int:
        return len(self.votes(session_id, round_number))

    def voters(self, session_id: str, round_number: int) -> List[str]:
        return [v.user_id for v in self.votes(session_id, round_number)]

    def get(self, session_id: str, user_id: str, round_number: int) -> Optional[LedgerVote]:
        with self._lock:
            entry = self._rounds.get(session_id)
            if entry is None or entry.round_number != round_number:
                return None
            return entry.votes.get(user_id)

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._rounds.pop(session_id, None)

    def sessions(self) -> List[str]:
        with self._lock:
            return list(self._rounds)
