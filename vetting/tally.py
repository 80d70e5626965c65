"""Board vote tally engine.

Pure functions only: no I/O and no session access, so the decision rule can be
checked exhaustively over small vote multisets.

Tie handling is a named policy:

* ``no_position`` (default): a tie for the highest count among the substantive
  choices resolves to ``no_position``. This is the behaviour the board has
  always seen from the finalize endpoint.
* ``priority``: ties are broken by the fixed order
  ``do_not_endorse > no_position > endorse``.
* ``refuse``: a tie is not a decision; :class:`TiedVote` is raised and the
  board has to re-vote.
"""
from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from enum import StrEnum

from vetting.errors import InsufficientVotes, TiedVote
from vetting.models import EndorsementResult, VoteChoice


class TiePolicy(StrEnum):
    NO_POSITION = "no_position"
    PRIORITY = "priority"
    REFUSE = "refuse"


# Earlier wins under TiePolicy.PRIORITY
TIE_PRIORITY = (
    EndorsementResult.DO_NOT_ENDORSE,
    EndorsementResult.NO_POSITION,
    EndorsementResult.ENDORSE,
)


@dataclass(frozen=True)
class Tally:
    endorse: int = 0
    do_not_endorse: int = 0
    no_position: int = 0
    abstain: int = 0

    @property
    def substantive(self) -> int:
        return self.endorse + self.do_not_endorse + self.no_position

    @property
    def total(self) -> int:
        return self.substantive + self.abstain

    def count(self, result: EndorsementResult) -> int:
        return getattr(self, result.value)

    def to_dict(self) -> dict[str, int]:
        return {**asdict(self), "total": self.total}


def tally_votes(votes: Iterable[str | VoteChoice]) -> Tally:
    """Count vote values. Unknown values raise ``ValueError``."""
    counts = Counter(VoteChoice(v) for v in votes)
    return Tally(
        endorse=counts[VoteChoice.ENDORSE],
        do_not_endorse=counts[VoteChoice.DO_NOT_ENDORSE],
        no_position=counts[VoteChoice.NO_POSITION],
        abstain=counts[VoteChoice.ABSTAIN],
    )


def endorsement_result(tally: Tally, policy: TiePolicy = TiePolicy.NO_POSITION) -> EndorsementResult:
    """Decide the board outcome for *tally*.

    Raises :class:`InsufficientVotes` when nobody cast a substantive vote and
    :class:`TiedVote` for a tie under ``TiePolicy.REFUSE``.
    """
    if tally.substantive == 0:
        raise InsufficientVotes(
            "At least one non-abstain vote is required to finalize",
            details={"tally": tally.to_dict()},
        )

    top = max(tally.count(r) for r in EndorsementResult)
    leaders = [r for r in EndorsementResult if tally.count(r) == top]
    if len(leaders) == 1:
        return leaders[0]

    if policy is TiePolicy.REFUSE:
        raise TiedVote(
            "Vote is tied between " + " and ".join(r.value for r in leaders),
            details={"tally": tally.to_dict(), "tied": [r.value for r in leaders]},
        )
    if policy is TiePolicy.PRIORITY:
        return next(r for r in TIE_PRIORITY if r in leaders)
    return EndorsementResult.NO_POSITION


def decide(votes: Iterable[str | VoteChoice], policy: TiePolicy = TiePolicy.NO_POSITION) -> tuple[Tally, EndorsementResult]:
    tally = tally_votes(votes)
    return tally, endorsement_result(tally, policy)
