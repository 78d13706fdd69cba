"""Group candidate building and scoring."""

from .builder import GreedyGroupBuilder, GroupCandidateBuilder, materialize_group
from .models import GroupCandidate, GroupingPolicy, GroupingResult
from .scoring import score_group

__all__ = [
    "GroupCandidateBuilder",
    "GreedyGroupBuilder",
    "GroupCandidate",
    "GroupingPolicy",
    "GroupingResult",
    "materialize_group",
    "score_group",
]
