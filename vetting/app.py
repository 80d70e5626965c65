from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import UTC, timedelta
from typing import Generator, Literal

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vetting import services
from vetting.auditor import AuditOrchestrator, DigitalPresenceResearch
from vetting.config import Settings, get_settings
from vetting.db import get_session, init_db, session_factory
from vetting.discovery import SearchClient, SearchRateLimiter
from vetting.errors import InternalError, NotFound, VettingError
from vetting.finalize import FinalizationCoordinator
from vetting.permissions import ActorContext, require_chair, require_viewer
from vetting.schemas import (
    AcceptDraft,
    AuditAccepted,
    AuditTrigger,
    FinalizeOut,
    InterviewUpdate,
    PressReleaseOut,
    RecommendationIn,
    SectionAssign,
    SectionReview,
    SectionUpdate,
    StageAdvance,
    StatsOut,
    VettingCreate,
    VoteIn,
)

log = logging.getLogger(__name__)


def build_orchestrator(settings: Settings) -> AuditOrchestrator:
    factory = session_factory()
    search = None
    if settings.tavily_api_key:
        search = SearchClient(
            settings.tavily_api_key,
            limiter=SearchRateLimiter(settings.search_min_delay, settings.search_max_delay),
            timeout=settings.request_timeout_seconds,
        )
    return AuditOrchestrator(factory, DigitalPresenceResearch(factory, search=search))


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    init_db(settings.database_path)
    app.state.orchestrator = build_orchestrator(settings)
    yield
    await app.state.orchestrator.runner.drain(timeout=30)


app = FastAPI(
    title="Vetting Pipeline",
    version="0.1.0",
    description=(
        "Candidate vetting and endorsement pipeline: committee report sections, "
        "stage workflow, board votes and finalization, and digital presence audits. "
        "Callers are identified by the X-Member-Id and X-Member-Roles headers set by the auth gateway."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Vettings", "description": "Open, browse and advance vettings."},
        {"name": "Sections", "description": "Committee report sections, review and drafts."},
        {"name": "Votes", "description": "Board votes, finalization and press releases."},
        {"name": "Audits", "description": "Background digital presence audits."},
        {"name": "Stats", "description": "Pipeline statistics."},
    ],
)


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@app.exception_handler(VettingError)
async def vetting_error_handler(request: Request, exc: VettingError):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"error": "Invalid input", "code": "VALIDATION_ERROR", "details": {"errors": jsonable_encoder(exc.errors())}},
        status_code=400,
    )


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    log.error("Storage error on %s %s: %s", request.method, request.url.path, exc)
    error = InternalError("An unexpected error occurred")
    return JSONResponse(error.to_dict(), status_code=error.status_code)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def current_actor(
    x_member_id: str | None = Header(default=None),
    x_member_roles: str | None = Header(default=None),
) -> ActorContext:
    return ActorContext.from_roles(x_member_id, x_member_roles)


def viewer(actor: ActorContext = Depends(current_actor)) -> ActorContext:
    return require_viewer(actor)


def get_orchestrator(request: Request) -> AuditOrchestrator:
    return request.app.state.orchestrator


def get_coordinator(
    session: Session = Depends(db_session), settings: Settings = Depends(get_settings),
) -> FinalizationCoordinator:
    return FinalizationCoordinator(
        session,
        tie_policy=settings.tie_policy,
        org_name=settings.organization_name,
        org_short_name=settings.organization_short_name,
    )


# ---------------------------------------------------------------------------
# Routes: Vettings
# ---------------------------------------------------------------------------


@app.post("/api/vettings", tags=["Vettings"], status_code=201,
          summary="Open a vetting for a candidate")
async def create_vetting(body: VettingCreate, session: Session = Depends(db_session),
                         actor: ActorContext = Depends(current_actor)):
    vetting = services.create_vetting(session, actor, **body.model_dump())
    return services.vetting_detail(vetting)


@app.get("/api/vettings", tags=["Vettings"], summary="List vettings in the pipeline")
async def list_vettings(
    stage: str | None = Query(None, description="Comma-separated stages"),
    state: str | None = Query(None, description="Two-letter state code"),
    session: Session = Depends(db_session),
    actor: ActorContext = Depends(viewer),
):
    return [services.vetting_summary(v) for v in services.list_vettings(session, stage=stage, state=state)]


@app.get("/api/vettings/{vetting_id}", tags=["Vettings"],
         summary="Vetting detail with sections and progress")
async def get_vetting(vetting_id: str, session: Session = Depends(db_session),
                      actor: ActorContext = Depends(viewer)):
    return services.vetting_detail(services.get_vetting(session, vetting_id))


@app.patch("/api/vettings/{vetting_id}/interview", tags=["Vettings"],
           summary="Record interview date, notes and interviewers")
async def update_interview(vetting_id: str, body: InterviewUpdate, session: Session = Depends(db_session),
                           actor: ActorContext = Depends(current_actor)):
    updates = body.model_dump(exclude_unset=True)
    when = updates.get("interview_date")
    if when is not None and when.tzinfo is not None:
        updates["interview_date"] = when.astimezone(UTC).replace(tzinfo=None)
    vetting = services.record_interview(session, actor, vetting_id, updates)
    return services.vetting_summary(vetting)


@app.patch("/api/vettings/{vetting_id}/recommendation", tags=["Vettings"],
           summary="Record the committee recommendation")
async def update_recommendation(vetting_id: str, body: RecommendationIn, session: Session = Depends(db_session),
                                actor: ActorContext = Depends(current_actor)):
    vetting = services.record_recommendation(session, actor, vetting_id, body.recommendation.value, body.notes)
    return services.vetting_summary(vetting)


@app.patch("/api/vettings/{vetting_id}/stage", tags=["Vettings"],
           summary="Advance the vetting to the next committee stage")
async def advance_stage(vetting_id: str, body: StageAdvance, session: Session = Depends(db_session),
                        actor: ActorContext = Depends(current_actor),
                        settings: Settings = Depends(get_settings)):
    vetting = services.advance_stage(
        session, actor, vetting_id, body.stage,
        required_sections=settings.required_sections_for_board_vote,
    )
    return services.vetting_detail(vetting)


# ---------------------------------------------------------------------------
# Routes: Sections
# ---------------------------------------------------------------------------


@app.get("/api/vettings/{vetting_id}/sections", tags=["Sections"], summary="List report sections")
async def list_sections(vetting_id: str, session: Session = Depends(db_session),
                        actor: ActorContext = Depends(viewer)):
    vetting = services.get_vetting(session, vetting_id)
    return [services.section_dict(s) for s in vetting.sections]


@app.get("/api/vettings/{vetting_id}/sections/{section_type}", tags=["Sections"],
         summary="Get one report section")
async def get_section(vetting_id: str, section_type: str, session: Session = Depends(db_session),
                      actor: ActorContext = Depends(viewer)):
    return services.section_dict(services.get_section(session, vetting_id, section_type))


@app.patch("/api/vettings/{vetting_id}/sections/{section_type}", tags=["Sections"],
           summary="Edit section data, status or notes")
async def update_section(vetting_id: str, section_type: str, body: SectionUpdate,
                         session: Session = Depends(db_session),
                         actor: ActorContext = Depends(current_actor)):
    updates = body.model_dump(exclude_unset=True, mode="json")
    section = services.update_section(session, actor, vetting_id, section_type, updates)
    return services.section_dict(section)


@app.post("/api/vettings/{vetting_id}/sections/{section_type}/assignments", status_code=201, tags=["Sections"],
          summary="Assign a committee member to a section")
async def assign_section(vetting_id: str, section_type: str, body: SectionAssign,
                         session: Session = Depends(db_session),
                         actor: ActorContext = Depends(current_actor)):
    services.assign_section(session, actor, vetting_id, section_type, body.member_id)
    return services.section_dict(services.get_section(session, vetting_id, section_type))


@app.delete("/api/vettings/{vetting_id}/sections/{section_type}/assignments/{member_id}", tags=["Sections"],
            summary="Remove a committee member from a section")
async def unassign_section(vetting_id: str, section_type: str, member_id: str,
                           session: Session = Depends(db_session),
                           actor: ActorContext = Depends(current_actor)):
    services.unassign_section(session, actor, vetting_id, section_type, member_id)
    return services.section_dict(services.get_section(session, vetting_id, section_type))


@app.post("/api/vettings/{vetting_id}/sections/{section_type}/review", tags=["Sections"],
          summary="Approve or reject a completed section")
async def review_section(vetting_id: str, section_type: str, body: SectionReview,
                         session: Session = Depends(db_session),
                         actor: ActorContext = Depends(current_actor)):
    section = services.review(session, actor, vetting_id, section_type, body.decision, body.notes)
    return services.section_dict(section)


@app.post("/api/vettings/{vetting_id}/sections/{section_type}/accept-draft", tags=["Sections"],
          summary="Copy the generated draft into the section data")
async def accept_draft(vetting_id: str, section_type: str, body: AcceptDraft | None = None,
                       session: Session = Depends(db_session),
                       actor: ActorContext = Depends(current_actor)):
    strategy = body.merge_strategy if body else "replace"
    section = services.accept_section_draft(session, actor, vetting_id, section_type, strategy)
    return services.section_dict(section)


# ---------------------------------------------------------------------------
# Routes: Votes
# ---------------------------------------------------------------------------


@app.get("/api/vettings/{vetting_id}/votes", tags=["Votes"], summary="List votes with a live tally preview")
async def list_votes(vetting_id: str, session: Session = Depends(db_session),
                     actor: ActorContext = Depends(viewer),
                     settings: Settings = Depends(get_settings)):
    return services.vote_summary(session, vetting_id, settings.tie_policy)


@app.post("/api/vettings/{vetting_id}/votes", tags=["Votes"], summary="Cast or change your board vote")
async def cast_vote(vetting_id: str, body: VoteIn, session: Session = Depends(db_session),
                    actor: ActorContext = Depends(current_actor)):
    vote = services.cast_vote(session, actor, vetting_id, body.vote.value, body.notes)
    return services.vote_dict(vote)


@app.post("/api/vettings/{vetting_id}/votes/finalize", response_model=FinalizeOut, tags=["Votes"],
          summary="Tally the board vote and record the endorsement decision")
async def finalize_votes(vetting_id: str, actor: ActorContext = Depends(current_actor),
                         coordinator: FinalizationCoordinator = Depends(get_coordinator)):
    outcome = coordinator.finalize(vetting_id, actor)
    return {
        "vetting": services.vetting_summary(outcome.vetting),
        "tally": outcome.tally.to_dict(),
        "endorsement_result": outcome.endorsement_result,
        "press_release_post_id": outcome.press_release_post_id,
    }


@app.post("/api/vettings/{vetting_id}/press-release", response_model=PressReleaseOut, tags=["Votes"],
          summary="Retry press release creation for a finalized vetting")
async def retry_press_release(vetting_id: str, actor: ActorContext = Depends(current_actor),
                              coordinator: FinalizationCoordinator = Depends(get_coordinator)):
    post_id = coordinator.retry_press_release(vetting_id, actor)
    vetting = services.get_vetting(coordinator.session, vetting_id)
    return {"press_release_post_id": post_id, "stage": vetting.stage}


# ---------------------------------------------------------------------------
# Routes: Audits
# ---------------------------------------------------------------------------


@app.post("/api/vettings/{vetting_id}/audit", response_model=AuditAccepted, status_code=202, tags=["Audits"],
          summary="Start a digital presence audit in the background")
async def trigger_audit(vetting_id: str, body: AuditTrigger | None = None,
                        session: Session = Depends(db_session),
                        actor: ActorContext = Depends(current_actor),
                        orchestrator: AuditOrchestrator = Depends(get_orchestrator)):
    audit = orchestrator.trigger(session, vetting_id, actor, force=body.force if body else False)
    orchestrator.dispatch(audit)
    return {"audit_id": audit.id, "status": "running"}


@app.get("/api/vettings/{vetting_id}/audit", tags=["Audits"],
         summary="Latest audit with its platforms, or null")
async def get_audit(vetting_id: str, session: Session = Depends(db_session),
                    actor: ActorContext = Depends(viewer),
                    orchestrator: AuditOrchestrator = Depends(get_orchestrator)):
    services.get_vetting(session, vetting_id)
    found = orchestrator.latest(session, vetting_id)
    if found is None:
        return {"audit": None}
    audit, platforms = found
    return {"audit": services.audit_dict(audit, platforms)}


@app.get("/api/vettings/{vetting_id}/audit/platforms", tags=["Audits"],
         summary="Platforms of the latest audit")
async def get_audit_platforms(
    vetting_id: str,
    entity_type: Literal["candidate", "opponent"] | None = Query(None),
    session: Session = Depends(db_session),
    actor: ActorContext = Depends(viewer),
    orchestrator: AuditOrchestrator = Depends(get_orchestrator),
):
    services.get_vetting(session, vetting_id)
    if orchestrator.latest(session, vetting_id) is None:
        raise NotFound("No audit found for this vetting")
    return [services.platform_dict(p) for p in orchestrator.platforms(session, vetting_id, entity_type)]


@app.get("/api/audits/orphaned", tags=["Audits"],
         summary="Audits stuck in audit_pending or running")
async def list_orphaned_audits(
    older_than_minutes: int | None = Query(None, ge=0),
    session: Session = Depends(db_session),
    actor: ActorContext = Depends(current_actor),
    settings: Settings = Depends(get_settings),
    orchestrator: AuditOrchestrator = Depends(get_orchestrator),
):
    require_chair(actor)
    minutes = settings.orphan_after_minutes if older_than_minutes is None else older_than_minutes
    return [services.audit_dict(a) for a in orchestrator.orphaned(session, timedelta(minutes=minutes))]


# ---------------------------------------------------------------------------
# Routes: Stats
# ---------------------------------------------------------------------------


@app.get("/api/stats", response_model=StatsOut, tags=["Stats"], summary="Vettings per stage and audit counts")
async def get_stats(session: Session = Depends(db_session), actor: ActorContext = Depends(viewer)):
    return services.compute_stats(session)


def main():
    import uvicorn
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("vetting.app:app", host="127.0.0.1", port=8002)
