from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import (
    DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func, text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from vetting.utils import utc_now


class Base(DeclarativeBase):
    pass


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Enumerations (stored as plain strings)
# ---------------------------------------------------------------------------


class Stage(StrEnum):
    INTAKE = "intake"
    COMMITTEE_REVIEW = "committee_review"
    INTERVIEW = "interview"
    RECOMMENDATION = "recommendation"
    BOARD_VOTE = "board_vote"
    ENDORSED = "endorsed"
    REJECTED = "rejected"
    NO_POSITION = "no_position"
    PRESS_RELEASE_CREATED = "press_release_created"


class EndorsementResult(StrEnum):
    ENDORSE = "endorse"
    DO_NOT_ENDORSE = "do_not_endorse"
    NO_POSITION = "no_position"


class VoteChoice(StrEnum):
    ENDORSE = "endorse"
    DO_NOT_ENDORSE = "do_not_endorse"
    NO_POSITION = "no_position"
    ABSTAIN = "abstain"


class SectionType(StrEnum):
    DIGITAL_PRESENCE_AUDIT = "digital_presence_audit"
    EXECUTIVE_SUMMARY = "executive_summary"
    ELECTION_SCHEDULE = "election_schedule"
    VOTING_RULES = "voting_rules"
    CANDIDATE_BACKGROUND = "candidate_background"
    INCUMBENT_RECORD = "incumbent_record"
    OPPONENT_RESEARCH = "opponent_research"
    ELECTORAL_RESULTS = "electoral_results"
    DISTRICT_DATA = "district_data"


class SectionStatus(StrEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AuditStatus(StrEnum):
    PENDING = "audit_pending"
    RUNNING = "running"
    COMPLETED = "audit_completed"
    FAILED = "audit_failed"


ACTIVE_AUDIT_STATUSES = (AuditStatus.PENDING, AuditStatus.RUNNING)

# Stage reached by a vetting once the board decision is committed
OUTCOME_STAGES: dict[EndorsementResult, Stage] = {
    EndorsementResult.ENDORSE: Stage.ENDORSED,
    EndorsementResult.DO_NOT_ENDORSE: Stage.REJECTED,
    EndorsementResult.NO_POSITION: Stage.NO_POSITION,
}


# ---------------------------------------------------------------------------
# Collaborator tables
# ---------------------------------------------------------------------------


class CandidateResponse(Base):
    """A member-submitted candidate survey response (owned by the survey system)."""
    __tablename__ = "candidate_responses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    candidate_first_name: Mapped[str] = mapped_column(String(200), nullable=False)
    candidate_last_name: Mapped[str] = mapped_column(String(200), nullable=False)
    candidate_email: Mapped[str | None] = mapped_column(String(300), nullable=True)
    candidate_party: Mapped[str | None] = mapped_column(String(100), nullable=True)
    candidate_office: Mapped[str | None] = mapped_column(String(200), nullable=True)
    candidate_district: Mapped[str | None] = mapped_column(String(100), nullable=True)
    candidate_state: Mapped[str | None] = mapped_column(String(2), nullable=True)
    status: Mapped[str] = mapped_column(String(30), default="submitted")  # draft | submitted
    endorsement_result: Mapped[str | None] = mapped_column(String(30), nullable=True)
    endorsed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    @property
    def candidate_name(self) -> str:
        return f"{self.candidate_first_name} {self.candidate_last_name}".strip()


class Post(Base):
    """CMS post; press releases are created here in draft status."""
    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    slug: Mapped[str] = mapped_column(String(300), nullable=False, unique=True)
    content: Mapped[str] = mapped_column(Text, default="")
    excerpt: Mapped[str] = mapped_column(Text, default="")
    content_type: Mapped[str] = mapped_column(String(50), default="post")
    status: Mapped[str] = mapped_column(String(30), default="draft")
    categories_json: Mapped[str] = mapped_column(Text, default="[]")
    tags_json: Mapped[str] = mapped_column(Text, default="[]")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


# ---------------------------------------------------------------------------
# Vetting pipeline
# ---------------------------------------------------------------------------


class Vetting(Base):
    __tablename__ = "vettings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    candidate_response_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("candidate_responses.id"), nullable=True, unique=True,
    )
    stage: Mapped[str] = mapped_column(String(40), nullable=False, default=Stage.INTAKE.value)

    candidate_name: Mapped[str] = mapped_column(String(300), nullable=False)
    candidate_office: Mapped[str | None] = mapped_column(String(200), nullable=True)
    candidate_state: Mapped[str | None] = mapped_column(String(2), nullable=True)
    candidate_district: Mapped[str | None] = mapped_column(String(100), nullable=True)
    candidate_party: Mapped[str | None] = mapped_column(String(100), nullable=True)

    interview_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    interview_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    interviewers_json: Mapped[str] = mapped_column(Text, default="[]")

    recommendation: Mapped[str | None] = mapped_column(String(30), nullable=True)
    recommendation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    recommended_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Written once by the finalization CAS; endorsed_at doubles as the guard column.
    endorsement_result: Mapped[str | None] = mapped_column(String(30), nullable=True)
    endorsed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    press_release_post_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("posts.id"), nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    sections: Mapped[list[ReportSection]] = relationship(
        "ReportSection", back_populates="vetting", cascade="all, delete-orphan",
        order_by="ReportSection.id",
    )
    votes: Mapped[list[BoardVote]] = relationship(
        "BoardVote", back_populates="vetting", cascade="all, delete-orphan",
        order_by="BoardVote.voted_at",
    )
    audits: Mapped[list[DigitalAudit]] = relationship(
        "DigitalAudit", back_populates="vetting", cascade="all, delete-orphan",
    )


class ReportSection(Base):
    __tablename__ = "report_sections"
    __table_args__ = (UniqueConstraint("vetting_id", "section_type", name="uq_section_per_vetting"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vetting_id: Mapped[str] = mapped_column(String(36), ForeignKey("vettings.id"), nullable=False)
    section_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default=SectionStatus.NOT_STARTED.value)
    data_json: Mapped[str] = mapped_column(Text, default="{}")
    ai_draft_json: Mapped[str] = mapped_column(Text, default="{}")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    review_status: Mapped[str | None] = mapped_column(String(30), nullable=True)  # approved | rejected
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    vetting: Mapped[Vetting] = relationship("Vetting", back_populates="sections")
    assignments: Mapped[list[SectionAssignment]] = relationship(
        "SectionAssignment", back_populates="section", cascade="all, delete-orphan",
        order_by="SectionAssignment.assigned_at",
    )


class SectionAssignment(Base):
    __tablename__ = "section_assignments"
    __table_args__ = (UniqueConstraint("section_id", "member_id", name="uq_assignment_per_member"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    section_id: Mapped[int] = mapped_column(Integer, ForeignKey("report_sections.id"), nullable=False, index=True)
    member_id: Mapped[str] = mapped_column(String(36), nullable=False)
    assigned_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    section: Mapped[ReportSection] = relationship("ReportSection", back_populates="assignments")


class BoardVote(Base):
    __tablename__ = "board_votes"
    __table_args__ = (UniqueConstraint("vetting_id", "voter_id", name="uq_vote_per_voter"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vetting_id: Mapped[str] = mapped_column(String(36), ForeignKey("vettings.id"), nullable=False)
    voter_id: Mapped[str] = mapped_column(String(36), nullable=False)
    vote: Mapped[str] = mapped_column(String(30), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    voted_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    vetting: Mapped[Vetting] = relationship("Vetting", back_populates="votes")


class DigitalAudit(Base):
    __tablename__ = "digital_audits"
    __table_args__ = (
        # Backstop for the orchestrator's duplicate pre-check: one active run per vetting.
        Index(
            "ix_one_active_audit_per_vetting", "vetting_id", unique=True,
            sqlite_where=text("status IN ('audit_pending', 'running')"),
            postgresql_where=text("status IN ('audit_pending', 'running')"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    vetting_id: Mapped[str] = mapped_column(String(36), ForeignKey("vettings.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default=AuditStatus.PENDING.value)
    triggered_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    overall_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    grade: Mapped[str | None] = mapped_column(String(5), nullable=True)
    score_breakdown_json: Mapped[str] = mapped_column(Text, default="{}")
    risks_json: Mapped[str] = mapped_column(Text, default="[]")
    opponent_audits_json: Mapped[str] = mapped_column(Text, default="[]")
    discovery_log_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    vetting: Mapped[Vetting] = relationship("Vetting", back_populates="audits")
    platforms: Mapped[list[AuditPlatform]] = relationship(
        "AuditPlatform", back_populates="audit", cascade="all, delete-orphan",
    )


class AuditPlatform(Base):
    __tablename__ = "audit_platforms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    audit_id: Mapped[str] = mapped_column(String(36), ForeignKey("digital_audits.id"), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)  # candidate | opponent
    entity_name: Mapped[str] = mapped_column(String(300), nullable=False)
    platform_name: Mapped[str] = mapped_column(String(200), nullable=False)
    platform_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    category: Mapped[str] = mapped_column(String(50), default="other")
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    discovery_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    activity_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    score_presence: Mapped[float | None] = mapped_column(Float, nullable=True)
    score_consistency: Mapped[float | None] = mapped_column(Float, nullable=True)
    score_quality: Mapped[float | None] = mapped_column(Float, nullable=True)
    score_accessibility: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    grade: Mapped[str | None] = mapped_column(String(5), nullable=True)
    contact_methods_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    audit: Mapped[DigitalAudit] = relationship("DigitalAudit", back_populates="platforms")
