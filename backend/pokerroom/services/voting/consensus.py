from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

DEFAULT_THRESHOLD = 66.7
DEFAULT_CONFIDENCE = 3


@dataclass(frozen=True)
class ConsensusResult:
    achieved: bool
    percentage: float
    final_estimate: Optional[str]
    confidence: Optional[float]
    agreeing_voters: List[str] = field(default_factory=list)
    outlier_voters: List[str] = field(default_factory=list)
    vote_counts: Dict[str, int] = field(default_factory=dict)
    total_votes: int = 0

    @property
    def is_empty(self):
        return self.total_votes == 0

    def to_dict(self):
        return {
            'achieved': self.achieved,
            'percentage': self.percentage,
            'final_estimate': self.final_estimate,
            'confidence': self.confidence,
            'agreeing_voters': list(self.agreeing_voters),
            'outlier_voters': list(self.outlier_voters),
            'vote_counts': dict(self.vote_counts),
            'total_votes': self.total_votes,
        }


EMPTY_CONSENSUS = ConsensusResult(achieved=False, percentage=0.0, final_estimate=None, confidence=None)


def calculate_consensus(votes: Iterable, threshold: float = DEFAULT_THRESHOLD,
                        default_confidence: int = DEFAULT_CONFIDENCE) -> ConsensusResult:
    """Measure agreement among one round's votes.

    ``votes`` is any iterable of objects with ``user_id``, ``value`` and
    ``confidence`` attributes. The majority value is the most frequent one;
    on a tie the value seen first in ``votes`` wins. ``percentage`` is
    rounded to one decimal and ``achieved`` compares that rounded figure
    with ``threshold``. ``confidence`` is the mean submitted confidence,
    counting ``default_confidence`` for votes without one.
    """
    votes = list(votes)
    if not votes:
        return EMPTY_CONSENSUS

    # Counter keeps first-encountered order for equal counts
    counts = Counter(v.value for v in votes)
    majority, majority_count = counts.most_common(1)[0]
    percentage = round(majority_count / len(votes) * 100, 1)

    confidences = [v.confidence if v.confidence is not None else default_confidence for v in votes]
    confidence = round(sum(confidences) / len(confidences), 1)

    return ConsensusResult(
        achieved=percentage >= threshold,
        percentage=percentage,
        final_estimate=majority,
        confidence=confidence,
        agreeing_voters=[v.user_id for v in votes if v.value == majority],
        outlier_voters=[v.user_id for v in votes if v.value != majority],
        vote_counts=dict(counts),
        total_votes=len(votes),
    )
