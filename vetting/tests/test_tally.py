"""Tests for the board vote tally engine."""
from __future__ import annotations

from itertools import permutations

import pytest

from vetting.errors import InsufficientVotes, TiedVote
from vetting.models import EndorsementResult
from vetting.tally import Tally, TiePolicy, decide, endorsement_result, tally_votes


class TestTallyVotes:
    def test_counts_each_choice(self):
        tally = tally_votes(["endorse", "endorse", "do_not_endorse", "abstain"])
        assert tally == Tally(endorse=2, do_not_endorse=1, no_position=0, abstain=1)
        assert tally.substantive == 3
        assert tally.total == 4

    def test_empty(self):
        assert tally_votes([]) == Tally()

    def test_unknown_vote_raises(self):
        with pytest.raises(ValueError):
            tally_votes(["maybe"])

    def test_to_dict_includes_total(self):
        assert tally_votes(["endorse", "abstain"]).to_dict() == {
            "endorse": 1, "do_not_endorse": 0, "no_position": 0, "abstain": 1, "total": 2,
        }


class TestEndorsementResult:
    def test_clear_majority(self):
        assert endorsement_result(Tally(endorse=2, do_not_endorse=1, abstain=1)) is EndorsementResult.ENDORSE

    def test_plurality_do_not_endorse(self):
        tally = Tally(endorse=1, do_not_endorse=3, no_position=2)
        assert endorsement_result(tally) is EndorsementResult.DO_NOT_ENDORSE

    def test_only_abstentions_is_insufficient(self):
        with pytest.raises(InsufficientVotes):
            endorsement_result(Tally(abstain=2))

    def test_no_votes_is_insufficient(self):
        with pytest.raises(InsufficientVotes):
            endorsement_result(Tally())

    def test_abstain_does_not_affect_winner(self):
        base = Tally(endorse=2, do_not_endorse=1)
        assert endorsement_result(base) == endorsement_result(Tally(endorse=2, do_not_endorse=1, abstain=5))

    def test_tie_defaults_to_no_position(self):
        assert endorsement_result(Tally(endorse=1, do_not_endorse=1)) is EndorsementResult.NO_POSITION

    def test_tie_priority_policy(self):
        tally = Tally(endorse=2, do_not_endorse=2)
        assert endorsement_result(tally, TiePolicy.PRIORITY) is EndorsementResult.DO_NOT_ENDORSE
        tally = Tally(endorse=2, no_position=2)
        assert endorsement_result(tally, TiePolicy.PRIORITY) is EndorsementResult.NO_POSITION

    def test_tie_refuse_policy(self):
        with pytest.raises(TiedVote) as exc_info:
            endorsement_result(Tally(endorse=1, no_position=1), TiePolicy.REFUSE)
        assert exc_info.value.details["tied"] == ["endorse", "no_position"]

    def test_tied_vote_is_insufficient_votes(self):
        assert issubclass(TiedVote, InsufficientVotes)


class TestDecide:
    def test_order_independent(self):
        votes = ["endorse", "do_not_endorse", "endorse", "abstain", "no_position"]
        outcomes = {decide(p) for p in permutations(votes)}
        assert len(outcomes) == 1
        assert outcomes.pop()[1] is EndorsementResult.ENDORSE

    def test_deterministic(self):
        votes = ["endorse", "do_not_endorse"]
        assert decide(votes) == decide(votes)

    def test_returns_tally(self):
        tally, result = decide(["no_position", "no_position", "endorse"])
        assert tally.no_position == 2
        assert result is EndorsementResult.NO_POSITION
