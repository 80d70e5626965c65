"""Shared business logic for the vetting API and MCP server."""
from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vetting.errors import Conflict, InsufficientVotes, InvalidStage, NotFound, ValidationFailed
from vetting.models import (
    AuditPlatform, BoardVote, CandidateResponse, DigitalAudit, EndorsementResult, ReportSection,
    SectionAssignment, SectionType, Stage, Vetting, VoteChoice,
)
from vetting.permissions import (
    ActorContext, require_board_member, require_chair, require_committee, require_section_editor,
)
from vetting.scoring import confidence_level
from vetting.sections import (
    accept_draft, apply_section_update, election_urgency, new_sections, parse_section_type, primary_date_of,
    review_section, section_progress, section_statuses,
)
from vetting.stages import LINEAR_TRACK, allowed_manual_targets, check_advance
from vetting.tally import TiePolicy, endorsement_result, tally_votes
from vetting.utils import json_parse, utc_now

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

CANDIDATE_FIELDS = (
    "candidate_name", "candidate_office", "candidate_state", "candidate_district", "candidate_party",
)

VETTING_FIELDS = (
    "id", "candidate_response_id", "stage", *CANDIDATE_FIELDS,
    "interview_notes", "recommendation", "recommendation_notes",
    "endorsement_result", "press_release_post_id",
)

PLATFORM_FIELDS = (
    "id", "entity_type", "entity_name", "platform_name", "platform_url", "category",
    "confidence_score", "discovery_method", "activity_status", "score_presence",
    "score_consistency", "score_quality", "score_accessibility", "total_score", "grade",
)

# Stages at which the committee may still record interview and recommendation data
_COMMITTEE_STAGES = tuple(s.value for s in LINEAR_TRACK if s is not Stage.BOARD_VOTE)

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def vetting_summary(v: Vetting) -> dict[str, Any]:
    return {
        **{f: getattr(v, f) for f in VETTING_FIELDS},
        "interview_date": _iso(v.interview_date),
        "interviewers": json_parse(v.interviewers_json, []),
        "recommended_at": _iso(v.recommended_at),
        "endorsed_at": _iso(v.endorsed_at),
        "created_at": _iso(v.created_at),
        "updated_at": _iso(v.updated_at),
        "urgency": election_urgency(primary_date_of(v.sections)),
    }


def vetting_detail(v: Vetting) -> dict[str, Any]:
    base = vetting_summary(v)
    base["sections"] = [section_dict(s) for s in v.sections]
    base["progress"] = section_progress(v.sections)
    base["allowed_stages"] = [s.value for s in allowed_manual_targets(v.stage)]
    return base


def section_dict(s: ReportSection) -> dict[str, Any]:
    return {
        "id": s.id,
        "vetting_id": s.vetting_id,
        "section_type": s.section_type,
        "status": s.status,
        "data": json_parse(s.data_json),
        "ai_draft_data": json_parse(s.ai_draft_json) or None,
        "notes": s.notes,
        "assigned_member_ids": [a.member_id for a in s.assignments],
        "review_status": s.review_status,
        "review_notes": s.review_notes,
        "reviewed_by": s.reviewed_by,
        "reviewed_at": _iso(s.reviewed_at),
        "updated_at": _iso(s.updated_at),
    }


def vote_dict(v: BoardVote) -> dict[str, Any]:
    return {
        "id": v.id, "voter_id": v.voter_id, "vote": v.vote, "notes": v.notes,
        "voted_at": _iso(v.voted_at),
    }


def platform_dict(p: AuditPlatform) -> dict[str, Any]:
    out = {f: getattr(p, f) for f in PLATFORM_FIELDS}
    out["contact_methods"] = json_parse(p.contact_methods_json)
    out["confidence_level"] = confidence_level(p.confidence_score or 0.0)
    return out


def audit_dict(a: DigitalAudit, platforms: Iterable[AuditPlatform] | None = None) -> dict[str, Any]:
    out = {
        "id": a.id,
        "vetting_id": a.vetting_id,
        "status": a.status,
        "triggered_by": a.triggered_by,
        "error_message": a.error_message,
        "overall_score": a.overall_score,
        "grade": a.grade,
        "score_breakdown": json_parse(a.score_breakdown_json),
        "risks": json_parse(a.risks_json, []),
        "opponent_audits": json_parse(a.opponent_audits_json, []),
        "discovery_log": json_parse(a.discovery_log_json),
        "created_at": _iso(a.created_at),
        "started_at": _iso(a.started_at),
        "completed_at": _iso(a.completed_at),
    }
    if platforms is not None:
        out["platforms"] = [platform_dict(p) for p in platforms]
    return out


# ---------------------------------------------------------------------------
# Mutation helpers
# ---------------------------------------------------------------------------


def apply_updates(obj, updates: dict[str, Any], fields: tuple[str, ...]) -> None:
    """Apply the listed keys present in *updates* (including explicit None) to an ORM object."""
    for field in fields:
        if field in updates:
            setattr(obj, field, updates[field])


def get_vetting(session: Session, vetting_id: str) -> Vetting:
    vetting = session.get(Vetting, vetting_id)
    if vetting is None:
        raise NotFound("Vetting not found")
    return vetting


def get_section(session: Session, vetting_id: str, section_type: str) -> ReportSection:
    stype = parse_section_type(section_type)
    get_vetting(session, vetting_id)
    section = session.scalars(
        select(ReportSection).where(
            ReportSection.vetting_id == vetting_id, ReportSection.section_type == stype.value,
        )
    ).first()
    if section is None:
        raise NotFound(f"Section {stype.value} not found")
    return section


# ---------------------------------------------------------------------------
# Vetting lifecycle
# ---------------------------------------------------------------------------


def create_vetting(
    session: Session,
    actor: ActorContext,
    *,
    candidate_response_id: str | None = None,
    **candidate: str | None,
) -> Vetting:
    """Open a vetting from a submitted candidate response or explicit candidate fields.

    All report sections are created as ``not_started`` in the same transaction.
    """
    require_chair(actor)
    if candidate_response_id:
        response = session.get(CandidateResponse, candidate_response_id)
        if response is None:
            raise NotFound("Candidate response not found")
        if response.status != "submitted":
            raise ValidationFailed("Candidate response must be submitted before vetting")
        fields = {
            "candidate_name": response.candidate_name,
            "candidate_office": response.candidate_office,
            "candidate_state": response.candidate_state,
            "candidate_district": response.candidate_district,
            "candidate_party": response.candidate_party,
        }
    else:
        fields = {f: candidate.get(f) for f in CANDIDATE_FIELDS}
        if not (fields["candidate_name"] or "").strip():
            raise ValidationFailed("candidate_name is required when no candidate response is given")
    if fields.get("candidate_state"):
        fields["candidate_state"] = fields["candidate_state"].upper()

    vetting = Vetting(candidate_response_id=candidate_response_id, stage=Stage.INTAKE.value, **fields)
    vetting.sections = new_sections()
    session.add(vetting)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise Conflict("A vetting already exists for this candidate response") from None
    log.info("Vetting %s opened for %s by %s", vetting.id, vetting.candidate_name, actor.member_id)
    return vetting


def list_vettings(session: Session, *, stage: str | None = None, state: str | None = None) -> list[Vetting]:
    stmt = select(Vetting)
    if stage:
        stages = [s.strip() for s in stage.split(",") if s.strip()]
        unknown = []
        for s in stages:
            try:
                Stage(s)
            except ValueError:
                unknown.append(s)
        if unknown:
            raise ValidationFailed(f"Unknown stage filter: {', '.join(unknown)}")
        stmt = stmt.where(Vetting.stage.in_(stages))
    if state:
        stmt = stmt.where(Vetting.candidate_state == state.strip().upper())
    return list(session.scalars(stmt.order_by(Vetting.created_at.desc())))


def _require_committee_stage(vetting: Vetting, what: str) -> None:
    if vetting.stage not in _COMMITTEE_STAGES:
        raise InvalidStage(f"Cannot record {what} once the vetting reached {vetting.stage}")


def record_interview(
    session: Session, actor: ActorContext, vetting_id: str, updates: dict[str, Any],
) -> Vetting:
    """Record interview date, notes and interviewers. Only keys present in *updates* change."""
    require_committee(actor)
    vetting = get_vetting(session, vetting_id)
    _require_committee_stage(vetting, "an interview")
    if not updates:
        raise ValidationFailed("No fields to update")
    apply_updates(vetting, updates, ("interview_date", "interview_notes"))
    if "interviewers" in updates:
        vetting.interviewers_json = json.dumps(list(updates["interviewers"] or []))
    session.commit()
    return vetting


def record_recommendation(
    session: Session, actor: ActorContext, vetting_id: str, recommendation: str, notes: str | None = None,
) -> Vetting:
    require_chair(actor)
    try:
        value = EndorsementResult(recommendation)
    except ValueError:
        raise ValidationFailed(f"Unknown recommendation: {recommendation}") from None
    vetting = get_vetting(session, vetting_id)
    _require_committee_stage(vetting, "a recommendation")
    vetting.recommendation = value.value
    vetting.recommendation_notes = notes
    vetting.recommended_at = utc_now()
    session.commit()
    log.info("Recommendation %s recorded on vetting %s by %s", value.value, vetting_id, actor.member_id)
    return vetting


def advance_stage(
    session: Session,
    actor: ActorContext,
    vetting_id: str,
    target: str,
    *,
    required_sections: Iterable[str | SectionType] = (),
) -> Vetting:
    """Move a vetting one stage forward along the committee track.

    The write is conditioned on the stage observed here, so two concurrent
    advances cannot both succeed.
    """
    require_committee(actor)
    vetting = get_vetting(session, vetting_id)
    observed = vetting.stage
    new_stage = check_advance(
        actor, observed, target,
        recommendation=vetting.recommendation,
        section_statuses=section_statuses(vetting.sections),
        required_sections=required_sections,
    )
    affected = session.execute(
        update(Vetting)
        .where(Vetting.id == vetting_id, Vetting.stage == observed)
        .values(stage=new_stage.value, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    ).rowcount
    if affected != 1:
        session.rollback()
        raise Conflict("Stage was changed by another user; reload and try again")
    session.commit()
    session.refresh(vetting)
    log.info("Vetting %s advanced %s -> %s by %s", vetting_id, observed, new_stage.value, actor.member_id)
    return vetting


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def update_section(
    session: Session,
    actor: ActorContext,
    vetting_id: str,
    section_type: str,
    updates: dict[str, Any],
) -> ReportSection:
    require_committee(actor)
    section = get_section(session, vetting_id, section_type)
    require_section_editor(actor, _assigned(section))
    apply_section_update(
        section,
        data=updates.get("data"),
        status=updates.get("status"),
        notes=updates.get("notes"),
        fields_set=set(updates),
    )
    session.commit()
    return section


def review(
    session: Session, actor: ActorContext, vetting_id: str, section_type: str, decision: str, notes: str | None,
) -> ReportSection:
    section = get_section(session, vetting_id, section_type)
    review_section(section, actor, decision, notes)
    session.commit()
    return section


def accept_section_draft(
    session: Session, actor: ActorContext, vetting_id: str, section_type: str, strategy: str = "replace",
) -> ReportSection:
    require_committee(actor)
    section = get_section(session, vetting_id, section_type)
    require_section_editor(actor, _assigned(section))
    accept_draft(section, strategy)
    session.commit()
    return section


def _assigned(section: ReportSection) -> list[str]:
    return [a.member_id for a in section.assignments]


def assign_section(
    session: Session, actor: ActorContext, vetting_id: str, section_type: str, member_id: str,
) -> SectionAssignment:
    """Give a committee member edit rights on one section."""
    require_chair(actor)
    member_id = (member_id or "").strip()
    if not member_id:
        raise ValidationFailed("member_id is required")
    section = get_section(session, vetting_id, section_type)
    assignment = SectionAssignment(section_id=section.id, member_id=member_id, assigned_by=actor.member_id)
    session.add(assignment)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise Conflict("Member is already assigned to this section") from None
    session.refresh(section)
    log.info(
        "Section %s of vetting %s assigned to %s by %s", section.section_type, vetting_id, member_id, actor.member_id,
    )
    return assignment


def unassign_section(
    session: Session, actor: ActorContext, vetting_id: str, section_type: str, member_id: str,
) -> None:
    require_chair(actor)
    section = get_section(session, vetting_id, section_type)
    assignment = next((a for a in section.assignments if a.member_id == member_id), None)
    if assignment is None:
        raise NotFound(f"{member_id} is not assigned to this section")
    section.assignments.remove(assignment)
    session.commit()


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------


def cast_vote(
    session: Session, actor: ActorContext, vetting_id: str, vote: str, notes: str | None = None,
) -> BoardVote:
    """Insert or replace the acting board member's vote."""
    require_board_member(actor)
    try:
        choice = VoteChoice(vote)
    except ValueError:
        raise ValidationFailed(f"Unknown vote: {vote}") from None
    vetting = get_vetting(session, vetting_id)
    if vetting.stage != Stage.BOARD_VOTE or vetting.endorsed_at is not None:
        raise InvalidStage(f"Votes can only be cast during board_vote (stage is {vetting.stage})")

    try:
        return _upsert_vote(session, vetting_id, actor.member_id, choice, notes)
    except IntegrityError:
        # Same voter raced us with a first vote; the retry updates that row.
        session.rollback()
        return _upsert_vote(session, vetting_id, actor.member_id, choice, notes)


def _upsert_vote(session: Session, vetting_id: str, voter_id: str, choice: VoteChoice, notes: str | None) -> BoardVote:
    vote = session.scalars(
        select(BoardVote).where(BoardVote.vetting_id == vetting_id, BoardVote.voter_id == voter_id)
    ).first()
    if vote is None:
        vote = BoardVote(vetting_id=vetting_id, voter_id=voter_id)
        session.add(vote)
    vote.vote = choice.value
    vote.notes = notes
    vote.voted_at = utc_now()
    session.commit()
    return vote


def vote_summary(session: Session, vetting_id: str, tie_policy: TiePolicy = TiePolicy.NO_POSITION) -> dict[str, Any]:
    """Votes plus a live tally preview. Nothing is persisted."""
    vetting = get_vetting(session, vetting_id)
    votes = list(session.scalars(
        select(BoardVote).where(BoardVote.vetting_id == vetting_id).order_by(BoardVote.voted_at)
    ))
    tally = tally_votes(v.vote for v in votes)
    try:
        projected: str | None = endorsement_result(tally, tie_policy).value
    except InsufficientVotes:
        projected = None
    return {
        "votes": [vote_dict(v) for v in votes],
        "tally": tally.to_dict(),
        "projected_result": projected,
        "endorsement_result": vetting.endorsement_result,
        "finalized": vetting.endorsed_at is not None,
    }


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def compute_stats(session: Session) -> dict[str, Any]:
    vettings = session.scalars(select(Vetting)).all()
    by_stage = {s.value: 0 for s in Stage}
    for v in vettings:
        by_stage[v.stage] = by_stage.get(v.stage, 0) + 1
    audits = session.scalars(select(DigitalAudit.status)).all()
    return {
        "total": len(vettings),
        "by_stage": by_stage,
        "audits": {status: audits.count(status) for status in sorted(set(audits))},
    }
