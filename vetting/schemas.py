"""Pydantic request/response schemas for the vetting API."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from vetting.models import EndorsementResult, SectionStatus, Stage, VoteChoice


class VettingCreate(BaseModel):
    candidate_response_id: str | None = None
    candidate_name: str | None = Field(default=None, max_length=300)
    candidate_office: str | None = Field(default=None, max_length=200)
    candidate_state: str | None = Field(default=None, min_length=2, max_length=2)
    candidate_district: str | None = Field(default=None, max_length=100)
    candidate_party: str | None = Field(default=None, max_length=100)

    @field_validator("candidate_state")
    @classmethod
    def _upper_state(cls, v: str | None) -> str | None:
        return v.upper() if v else v


class InterviewUpdate(BaseModel):
    interview_date: datetime | None = None
    interview_notes: str | None = Field(default=None, max_length=10_000)
    interviewers: list[str] | None = Field(default=None, max_length=50)


class RecommendationIn(BaseModel):
    recommendation: EndorsementResult
    notes: str | None = Field(default=None, max_length=5000)


class StageAdvance(BaseModel):
    stage: str


class SectionUpdate(BaseModel):
    data: dict[str, Any] | None = None
    status: SectionStatus | None = None
    notes: str | None = Field(default=None, max_length=5000)


class SectionAssign(BaseModel):
    member_id: str = Field(min_length=1, max_length=36)


class SectionReview(BaseModel):
    decision: Literal["approved", "rejected"]
    notes: str | None = Field(default=None, max_length=5000)


class AcceptDraft(BaseModel):
    merge_strategy: Literal["replace", "merge"] = "replace"


class VoteIn(BaseModel):
    vote: VoteChoice
    notes: str | None = Field(default=None, max_length=2000)


class AuditTrigger(BaseModel):
    force: bool = False


class AuditAccepted(BaseModel):
    audit_id: str
    status: str = "running"


class TallyOut(BaseModel):
    endorse: int
    do_not_endorse: int
    no_position: int
    abstain: int
    total: int


class FinalizeOut(BaseModel):
    vetting: dict[str, Any]
    tally: TallyOut
    endorsement_result: EndorsementResult
    press_release_post_id: str | None = None


class PressReleaseOut(BaseModel):
    press_release_post_id: str
    stage: Stage


class StatsOut(BaseModel):
    total: int
    by_stage: dict[str, int]
    audits: dict[str, int]

