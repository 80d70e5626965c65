"""Report sections: per-type data schemas, status transitions, review and drafts.

Section data is an open JSON document. Each section type has a schema that
validates the fields the pipeline itself understands (the opponent list used by
the digital audit, district identifiers, ...) while keeping any additional keys
the committee chooses to record.
"""
from __future__ import annotations

import json
from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vetting.errors import InvalidStage, ValidationFailed
from vetting.models import ReportSection, SectionStatus, SectionType
from vetting.permissions import ActorContext, require_national
from vetting.utils import json_parse, utc_now


# ---------------------------------------------------------------------------
# Per-type data schemas
# ---------------------------------------------------------------------------


class _SectionData(BaseModel):
    model_config = ConfigDict(extra="allow")


class Opponent(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = Field(min_length=1, max_length=200)
    party: str | None = None
    is_incumbent: bool = False


class DigitalPresenceAuditData(_SectionData):
    overall_score: int | None = Field(default=None, ge=0, le=100)
    grade: str | None = None
    audit_id: str | None = None
    platforms: list[dict[str, Any]] = []
    risks: list[dict[str, Any]] = []


class ExecutiveSummaryData(_SectionData):
    summary: str | None = None
    recommendation_rationale: str | None = None


class ElectionScheduleData(_SectionData):
    primary_date: str | None = None
    general_date: str | None = None
    filing_deadline: str | None = None


class VotingRulesData(_SectionData):
    primary_type: str | None = None
    runoff: bool | None = None


class CandidateBackgroundData(_SectionData):
    biography: str | None = None
    occupation: str | None = None
    prior_offices: list[str] = []


class IncumbentRecordData(_SectionData):
    incumbent_name: str | None = None
    key_votes: list[dict[str, Any]] = []


class OpponentResearchData(_SectionData):
    opponents: list[Opponent] = []


class ElectoralResultsData(_SectionData):
    results: list[dict[str, Any]] = []


class DistrictDataData(_SectionData):
    state_code: str | None = Field(default=None, min_length=2, max_length=2)
    district_id: str | None = None
    cook_pvi: str | None = None
    population: int | None = Field(default=None, gt=0)
    counties: list[str] = []


SECTION_SCHEMAS: dict[SectionType, type[_SectionData]] = {
    SectionType.DIGITAL_PRESENCE_AUDIT: DigitalPresenceAuditData,
    SectionType.EXECUTIVE_SUMMARY: ExecutiveSummaryData,
    SectionType.ELECTION_SCHEDULE: ElectionScheduleData,
    SectionType.VOTING_RULES: VotingRulesData,
    SectionType.CANDIDATE_BACKGROUND: CandidateBackgroundData,
    SectionType.INCUMBENT_RECORD: IncumbentRecordData,
    SectionType.OPPONENT_RESEARCH: OpponentResearchData,
    SectionType.ELECTORAL_RESULTS: ElectoralResultsData,
    SectionType.DISTRICT_DATA: DistrictDataData,
}


def parse_section_type(value: str) -> SectionType:
    try:
        return SectionType(value)
    except ValueError:
        raise ValidationFailed(
            f"Unknown section type: {value}",
            details={"allowed": [t.value for t in SectionType]},
        ) from None


def validate_section_data(section_type: str | SectionType, data: dict[str, Any]) -> dict[str, Any]:
    """Validate *data* against the schema for *section_type* and return it normalized."""
    schema = SECTION_SCHEMAS[parse_section_type(section_type)]
    try:
        model = schema.model_validate(data)
    except ValidationError as exc:
        raise ValidationFailed(
            f"Invalid data for section {section_type}",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from None
    return model.model_dump(mode="json", exclude_unset=True)


def opponents_from(data: dict[str, Any]) -> list[dict[str, Any]]:
    """Opponent entries (name + party) recorded in an opponent_research section."""
    raw = data.get("opponents") or []
    out = []
    for entry in raw:
        if isinstance(entry, dict) and str(entry.get("name") or "").strip():
            out.append({"name": entry["name"].strip(), "party": entry.get("party")})
    return out


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------

_STATUS_TRANSITIONS: dict[SectionStatus, frozenset[SectionStatus]] = {
    SectionStatus.NOT_STARTED: frozenset({SectionStatus.IN_PROGRESS}),
    SectionStatus.IN_PROGRESS: frozenset({SectionStatus.COMPLETED}),
    SectionStatus.COMPLETED: frozenset({SectionStatus.IN_PROGRESS}),
}


def can_change_status(current: str, target: str) -> bool:
    try:
        return SectionStatus(target) in _STATUS_TRANSITIONS[SectionStatus(current)]
    except ValueError:
        return False


def apply_section_update(
    section: ReportSection,
    *,
    data: dict[str, Any] | None = None,
    status: str | None = None,
    notes: str | None = None,
    fields_set: set[str] | None = None,
) -> ReportSection:
    """Apply a committee edit to *section* in place.

    *fields_set* names the fields the caller actually sent, so an explicit
    ``notes=None`` clears notes while an omitted one leaves them alone.
    """
    fields_set = fields_set if fields_set is not None else {
        k for k, v in (("data", data), ("status", status), ("notes", notes)) if v is not None
    }
    if not fields_set:
        raise ValidationFailed("No fields to update")

    if "status" in fields_set and status is not None and status != section.status:
        if not can_change_status(section.status, status):
            raise ValidationFailed(f"Invalid status transition from {section.status} to {status}")
        section.status = status
        if status == SectionStatus.IN_PROGRESS and section.review_status:
            # Reopened work invalidates an earlier review
            section.review_status = None

    if "data" in fields_set and data is not None:
        section.data_json = json.dumps(validate_section_data(section.section_type, data))
        if section.status == SectionStatus.NOT_STARTED:
            section.status = SectionStatus.IN_PROGRESS.value

    if "notes" in fields_set:
        section.notes = notes
    section.updated_at = utc_now()
    return section


def review_section(
    section: ReportSection,
    actor: ActorContext,
    decision: Literal["approved", "rejected"],
    notes: str | None = None,
) -> ReportSection:
    """Approve or reject a completed section. Rejection reopens it for edits."""
    require_national(actor)
    if section.status != SectionStatus.COMPLETED:
        raise InvalidStage(f"Only completed sections can be reviewed (status is {section.status})")
    if decision not in ("approved", "rejected"):
        raise ValidationFailed(f"Unknown review decision: {decision}")
    section.review_status = decision
    section.review_notes = notes
    section.reviewed_by = actor.member_id
    section.reviewed_at = utc_now()
    if decision == "rejected":
        section.status = SectionStatus.IN_PROGRESS.value
    return section


def accept_draft(section: ReportSection, strategy: Literal["replace", "merge"] = "replace") -> ReportSection:
    """Copy the machine-generated draft into the section's data."""
    draft = json_parse(section.ai_draft_json)
    if not draft:
        raise ValidationFailed("Section has no draft to accept")
    if strategy == "merge":
        data = {**json_parse(section.data_json), **draft}
    elif strategy == "replace":
        data = dict(draft)
    else:
        raise ValidationFailed(f"Unknown merge strategy: {strategy}")
    return apply_section_update(section, data=data, fields_set={"data"})


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


def section_statuses(sections: list[ReportSection]) -> dict[str, str]:
    return {s.section_type: s.status for s in sections}


def section_progress(sections: list[ReportSection]) -> dict[str, Any]:
    total = len(SectionType)
    statuses = section_statuses(sections)
    completed = sum(1 for s in statuses.values() if s == SectionStatus.COMPLETED)
    return {
        "completed": completed,
        "total": total,
        "percentage": round(completed / total * 100) if total else 0,
        "incomplete_sections": [
            t.value for t in SectionType if statuses.get(t.value) != SectionStatus.COMPLETED
        ],
    }


def new_sections() -> list[ReportSection]:
    return [
        ReportSection(section_type=t.value, status=SectionStatus.NOT_STARTED.value)
        for t in SectionType
    ]


# ---------------------------------------------------------------------------
# Urgency
# ---------------------------------------------------------------------------

URGENCY_RED_DAYS = 14
URGENCY_AMBER_DAYS = 30


def primary_date_of(sections: list[ReportSection]) -> date | None:
    """Primary election date recorded in the election_schedule section, if parseable."""
    for s in sections:
        if s.section_type == SectionType.ELECTION_SCHEDULE:
            raw = json_parse(s.data_json).get("primary_date")
            try:
                return date.fromisoformat(str(raw)[:10]) if raw else None
            except ValueError:
                return None
    return None


def election_urgency(primary: date | None, today: date | None = None) -> str:
    """``red`` inside two weeks of the primary, ``amber`` inside thirty days, else ``normal``."""
    if primary is None:
        return "normal"
    days = (primary - (today or utc_now().date())).days
    if days < URGENCY_RED_DAYS:
        return "red"
    if days < URGENCY_AMBER_DAYS:
        return "amber"
    return "normal"
