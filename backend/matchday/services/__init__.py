"""Domain services; each takes an ``AsyncSession`` from its caller."""

from .identity import GroupMemberRepository, MemberLookup
from .match_recorder import MatchRecorder
from .migration import IdentityDeduplicationEngine
from .mvp_voting import MvpVotingStateMachine, tally_winner
from .stats import final_scores, match_deltas, mvp_delta

__all__ = [
    "GroupMemberRepository",
    "MemberLookup",
    "MatchRecorder",
    "IdentityDeduplicationEngine",
    "MvpVotingStateMachine",
    "tally_winner",
    "final_scores",
    "match_deltas",
    "mvp_delta",
]
