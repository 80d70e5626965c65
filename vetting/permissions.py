"""Actor context and role guards.

Roles are resolved upstream by the authorization gateway; this module only
checks the flags it was handed.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from vetting.errors import Forbidden, Unauthorized

ROLE_COMMITTEE = "committee_member"
ROLE_CHAIR = "chair"
ROLE_NATIONAL = "national"
ROLE_BOARD = "board_member"


@dataclass(frozen=True)
class ActorContext:
    member_id: str
    is_committee_member: bool = False
    is_chair: bool = False
    is_national: bool = False
    is_board_member: bool = False

    @classmethod
    def from_roles(cls, member_id: str | None, roles: str | list[str] | None) -> ActorContext:
        """Build a context from a member id and comma-separated (or listed) role names."""
        if not member_id or not member_id.strip():
            raise Unauthorized()
        if isinstance(roles, str):
            roles = roles.split(",")
        names = {r.strip().lower() for r in roles or [] if r.strip()}
        return cls(
            member_id=member_id.strip(),
            is_committee_member=ROLE_COMMITTEE in names,
            is_chair=ROLE_CHAIR in names,
            is_national=ROLE_NATIONAL in names,
            is_board_member=ROLE_BOARD in names,
        )

    @property
    def can_view(self) -> bool:
        return self.is_committee_member or self.is_chair or self.is_national or self.is_board_member

    @property
    def can_edit(self) -> bool:
        return self.is_committee_member or self.is_chair or self.is_national

    @property
    def can_lead(self) -> bool:
        return self.is_chair or self.is_national

    @property
    def can_vote(self) -> bool:
        return self.is_board_member or self.is_national


def require_viewer(actor: ActorContext) -> ActorContext:
    if not actor.can_view:
        raise Forbidden("Vetting committee or board membership required")
    return actor


def require_committee(actor: ActorContext) -> ActorContext:
    if not actor.can_edit:
        raise Forbidden("Vetting committee membership required")
    return actor


def require_chair(actor: ActorContext) -> ActorContext:
    if not actor.can_lead:
        raise Forbidden("Committee chair or national admin required")
    return actor


def require_board_member(actor: ActorContext) -> ActorContext:
    if not actor.can_vote:
        raise Forbidden("Board membership required to vote")
    return actor


def require_national(actor: ActorContext) -> ActorContext:
    if not actor.is_national:
        raise Forbidden("National admin required")
    return actor


def can_edit_section(actor: ActorContext, assigned_member_ids: Iterable[str]) -> bool:
    """Chairs and national admins edit any section; committee members only those assigned to them."""
    if actor.can_lead:
        return True
    return actor.is_committee_member and actor.member_id in set(assigned_member_ids)


def require_section_editor(actor: ActorContext, assigned_member_ids: Iterable[str]) -> ActorContext:
    require_committee(actor)
    if not can_edit_section(actor, assigned_member_ids):
        raise Forbidden("Only members assigned to this section may edit it")
    return actor
