from __future__ import annotations

import pytest

from vetting.errors import Forbidden, Unauthorized
from vetting.permissions import (
    ActorContext, can_edit_section, require_board_member, require_chair, require_committee, require_national,
    require_section_editor, require_viewer,
)


class TestFromRoles:
    def test_parses_header_value(self):
        actor = ActorContext.from_roles(" m-1 ", "Committee_Member, chair")
        assert actor.member_id == "m-1"
        assert actor.is_committee_member and actor.is_chair
        assert not actor.is_board_member

    def test_accepts_list(self):
        assert ActorContext.from_roles("m-1", ["board_member"]).can_vote

    @pytest.mark.parametrize("member_id", [None, "", "   "])
    def test_missing_identity(self, member_id):
        with pytest.raises(Unauthorized):
            ActorContext.from_roles(member_id, "chair")

    def test_unknown_roles_ignored(self):
        actor = ActorContext.from_roles("m-1", "donor,,")
        assert not actor.can_view


class TestGuards:
    def test_board_member(self, board):
        assert require_viewer(board) is board
        assert require_board_member(board) is board
        with pytest.raises(Forbidden):
            require_committee(board)

    def test_chair(self, chair):
        assert require_chair(chair) is chair
        with pytest.raises(Forbidden):
            require_board_member(chair)
        with pytest.raises(Forbidden):
            require_national(chair)

    def test_national_can_do_everything(self, national):
        for guard in (require_viewer, require_committee, require_chair, require_board_member, require_national):
            assert guard(national) is national

    def test_outsider(self, outsider):
        with pytest.raises(Forbidden):
            require_viewer(outsider)


class TestSectionEditors:
    def test_assigned_member(self, committee):
        assert can_edit_section(committee, ["member-1"])
        assert not can_edit_section(committee, ["member-2"])
        assert require_section_editor(committee, ["member-1"]) is committee

    def test_leads_need_no_assignment(self, chair, national):
        assert can_edit_section(chair, [])
        assert can_edit_section(national, [])

    def test_unassigned_member_forbidden(self, committee):
        with pytest.raises(Forbidden):
            require_section_editor(committee, [])

    def test_board_member_assignment_does_not_grant_edit(self, board):
        with pytest.raises(Forbidden):
            require_section_editor(board, ["board-1"])
