"""Digital audit orchestrator.

An audit row is created in ``audit_pending`` inside the triggering request;
the research itself runs as a detached asyncio task owned by a
:class:`BackgroundRunner`, never by the request. Every run ends in
``audit_completed`` or ``audit_failed``. If even the failure cannot be
recorded, the audit is logged as orphaned and shows up in
:meth:`AuditOrchestrator.orphaned` once it is old enough.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Coroutine
from datetime import timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vetting.discovery import (
    DiscoveredUrl, SearchClient, discover_opponent_platforms, discover_platforms, probe_page,
)
from vetting.errors import Conflict, NotFound
from vetting.models import (
    ACTIVE_AUDIT_STATUSES, AuditPlatform, AuditStatus, DigitalAudit, ReportSection, SectionType, Vetting,
)
from vetting.permissions import ActorContext, require_chair
from vetting.scoring import (
    OpponentAudit, PlatformResult, assess_risks, calculate_confidence, classify_url,
    score_discovered, score_overall,
)
from vetting.sections import opponents_from
from vetting.utils import json_parse, utc_now

log = logging.getLogger(__name__)

ResearchFn = Callable[[str, str, "str | None"], Awaitable[None]]
SessionFactory = Callable[[], Session]

_ACTIVE = [s.value for s in ACTIVE_AUDIT_STATUSES]


class BackgroundRunner:
    """Owns detached tasks so they outlive the request that started them."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for outstanding tasks (used on shutdown)."""
        if not self._tasks:
            return
        done, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        if still_running:
            log.warning("%d background task(s) still running at shutdown", len(still_running))


class AuditOrchestrator:
    def __init__(
        self,
        session_factory: SessionFactory,
        research: ResearchFn | None = None,
        *,
        runner: BackgroundRunner | None = None,
        logger: logging.Logger | None = None,
    ):
        self.session_factory = session_factory
        self.research = research or DigitalPresenceResearch(session_factory)
        self.runner = runner or BackgroundRunner()
        self.log = logger or log

    # -- trigger ------------------------------------------------------------

    def trigger(self, session: Session, vetting_id: str, actor: ActorContext, *, force: bool = False) -> DigitalAudit:
        """Create a pending audit row, rejecting duplicates with :class:`Conflict`."""
        require_chair(actor)
        if session.get(Vetting, vetting_id) is None:
            raise NotFound("Vetting not found")

        active = self._active(session, vetting_id)
        if active is not None:
            raise Conflict("Audit already running", audit_id=active.id)
        if not force:
            latest = self._latest(session, vetting_id)
            if latest is not None and latest.status == AuditStatus.COMPLETED:
                raise Conflict(
                    "Audit already completed. Use force=true to re-run.", audit_id=latest.id,
                )

        audit = DigitalAudit(vetting_id=vetting_id, status=AuditStatus.PENDING.value, triggered_by=actor.member_id)
        session.add(audit)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            existing = self._active(session, vetting_id)
            raise Conflict(
                "Audit already running", audit_id=existing.id if existing else None,
            ) from None
        self.log.info("Audit %s queued for vetting %s by %s", audit.id, vetting_id, actor.member_id)
        return audit

    def dispatch(self, audit: DigitalAudit) -> asyncio.Task:
        return self.runner.spawn(
            self.run(audit.vetting_id, audit.id, audit.triggered_by), name=f"audit-{audit.id}",
        )

    # -- background job -----------------------------------------------------

    async def run(self, vetting_id: str, audit_id: str, triggered_by: str | None = None) -> None:
        """Run research for one audit. Never raises."""
        try:
            self._set_status(audit_id, AuditStatus.RUNNING, started_at=utc_now())
            self.log.info("Audit %s started for vetting %s", audit_id, vetting_id)
            await self.research(vetting_id, audit_id, triggered_by)
            self._set_status(audit_id, AuditStatus.COMPLETED, completed_at=utc_now())
            self.log.info("Audit %s completed for vetting %s", audit_id, vetting_id)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self.log.error("Audit %s failed for vetting %s: %s", audit_id, vetting_id, message)
            try:
                self._set_status(
                    audit_id, AuditStatus.FAILED, error_message=message[:2000], completed_at=utc_now(),
                )
            except Exception as status_exc:
                self.log.error(
                    "Audit %s is orphaned: could not record failure (%s); original error: %s",
                    audit_id, status_exc, message,
                )

    def _set_status(self, audit_id: str, status: AuditStatus, **values: Any) -> None:
        with self.session_factory() as session:
            session.execute(
                update(DigitalAudit)
                .where(DigitalAudit.id == audit_id)
                .values(status=status.value, **values)
                .execution_options(synchronize_session=False)
            )
            session.commit()

    # -- reads --------------------------------------------------------------

    @staticmethod
    def _latest(session: Session, vetting_id: str) -> DigitalAudit | None:
        return session.scalars(
            select(DigitalAudit)
            .where(DigitalAudit.vetting_id == vetting_id)
            .order_by(DigitalAudit.created_at.desc())
            .limit(1)
        ).first()

    @staticmethod
    def _active(session: Session, vetting_id: str) -> DigitalAudit | None:
        return session.scalars(
            select(DigitalAudit)
            .where(DigitalAudit.vetting_id == vetting_id, DigitalAudit.status.in_(_ACTIVE))
            .order_by(DigitalAudit.created_at.desc())
            .limit(1)
        ).first()

    @classmethod
    def latest(cls, session: Session, vetting_id: str) -> tuple[DigitalAudit, list[AuditPlatform]] | None:
        """Most recent audit and its platforms, or None if no audit has run."""
        audit = cls._latest(session, vetting_id)
        if audit is None:
            return None
        return audit, cls._platforms(session, audit.id)

    def platforms(
        self, session: Session, vetting_id: str, entity_type: str | None = None,
    ) -> list[AuditPlatform]:
        audit = self._latest(session, vetting_id)
        if audit is None:
            return []
        return self._platforms(session, audit.id, entity_type)

    @staticmethod
    def _platforms(session: Session, audit_id: str, entity_type: str | None = None) -> list[AuditPlatform]:
        stmt = select(AuditPlatform).where(AuditPlatform.audit_id == audit_id)
        if entity_type:
            stmt = stmt.where(AuditPlatform.entity_type == entity_type)
        stmt = stmt.order_by(AuditPlatform.entity_type.asc(), AuditPlatform.total_score.desc(), AuditPlatform.id)
        return list(session.scalars(stmt))

    @staticmethod
    def orphaned(session: Session, older_than: timedelta) -> list[DigitalAudit]:
        """Audits still pending or running that started longer than *older_than* ago."""
        cutoff = utc_now() - older_than
        audits = session.scalars(
            select(DigitalAudit)
            .where(DigitalAudit.status.in_(_ACTIVE))
            .order_by(DigitalAudit.created_at)
        ).all()
        return [a for a in audits if (a.started_at or a.created_at) < cutoff]


# ---------------------------------------------------------------------------
# Default research: digital presence audit
# ---------------------------------------------------------------------------


class DigitalPresenceResearch:
    """Discover, classify and score a candidate's (and opponents') online presence.

    Writes one AuditPlatform row per platform found, the summary fields on the
    audit row, and a draft into the vetting's ``digital_presence_audit``
    section. Raises on any storage failure so the orchestrator records it.
    """

    probed_categories = ("campaign_website", "website")

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        search: SearchClient | None = None,
        probe: Callable[[str], Awaitable[Any]] | None = probe_page,
        probe_limit: int = 5,
    ):
        self.session_factory = session_factory
        self.search = search
        self.probe = probe
        self.probe_limit = probe_limit

    async def __call__(self, vetting_id: str, audit_id: str, triggered_by: str | None = None) -> None:
        with self.session_factory() as session:
            vetting = session.get(Vetting, vetting_id)
            if vetting is None:
                raise NotFound(f"Vetting {vetting_id} no longer exists")
            name = vetting.candidate_name
            state, office = vetting.candidate_state, vetting.candidate_office
            opp_section = session.scalars(
                select(ReportSection).where(
                    ReportSection.vetting_id == vetting_id,
                    ReportSection.section_type == SectionType.OPPONENT_RESEARCH.value,
                )
            ).first()
            opponents = opponents_from(json_parse(opp_section.data_json)) if opp_section else []

        log.info("Starting discovery for %r", name)
        discovery = await discover_platforms(self.search, name, state=state, office=office)
        log.info("Discovered %d URLs across %d searches", len(discovery.urls), discovery.total_searches)
        candidate_platforms = await self._process(discovery.urls, "candidate", name, office, state)

        opponent_audits: list[OpponentAudit] = []
        for opp in opponents:
            try:
                urls = await discover_opponent_platforms(self.search, opp["name"], state=state, office=office)
                platforms = await self._process(urls, "opponent", opp["name"], office, state, probe=False)
                avg = round(sum(p.total_score or 0 for p in platforms) / len(platforms)) if platforms else None
                opponent_audits.append(OpponentAudit(
                    name=opp["name"], party=opp.get("party"), platform_count=len(platforms),
                    overall_score=avg, platforms=platforms,
                ))
            except Exception as exc:
                log.warning("Opponent audit failed for %r: %s", opp["name"], exc)
                opponent_audits.append(OpponentAudit(
                    name=opp["name"], party=opp.get("party"), audit_failed=True, failure_reason=str(exc),
                ))

        breakdown = score_overall(candidate_platforms, opponent_audits)
        risks = assess_risks(candidate_platforms)
        all_platforms = candidate_platforms + [p for o in opponent_audits for p in o.platforms]

        draft = {
            "overall_score": breakdown.total,
            "grade": breakdown.grade,
            "audit_id": audit_id,
            "score_breakdown": breakdown.to_dict(),
            "risk_assessment": {
                "overall_score": risks.overall_score,
                "overall_severity": risks.overall_severity,
            },
            "risks": risks.to_dict()["risks"],
            "platforms": [
                {"platform_name": p.platform_name, "platform_url": p.platform_url, "grade": p.grade}
                for p in candidate_platforms
            ],
            "platform_count": len(candidate_platforms),
            "opponent_count": len(opponent_audits),
            "generated_at": utc_now().isoformat(),
        }

        with self.session_factory() as session:
            for p in all_platforms:
                session.add(_platform_row(audit_id, p))
            audit = session.get(DigitalAudit, audit_id)
            if audit is None:
                raise NotFound(f"Audit {audit_id} no longer exists")
            audit.overall_score = breakdown.total
            audit.grade = breakdown.grade
            audit.score_breakdown_json = json.dumps(breakdown.to_dict())
            audit.risks_json = json.dumps(risks.to_dict()["risks"])
            audit.opponent_audits_json = json.dumps([o.to_dict() for o in opponent_audits])
            audit.discovery_log_json = json.dumps(discovery.to_dict())

            section = session.scalars(
                select(ReportSection).where(
                    ReportSection.vetting_id == vetting_id,
                    ReportSection.section_type == SectionType.DIGITAL_PRESENCE_AUDIT.value,
                )
            ).first()
            if section is None:
                raise RuntimeError("digital_presence_audit section is missing")
            section.ai_draft_json = json.dumps(draft)
            session.commit()
        log.info("Audit %s scored %r: %d (%s)", audit_id, name, breakdown.total, breakdown.grade)

    async def _process(
        self,
        urls: list[DiscoveredUrl],
        entity_type: str,
        name: str,
        office: str | None,
        state: str | None,
        *,
        probe: bool = True,
    ) -> list[PlatformResult]:
        results = []
        probes_left = self.probe_limit if (probe and self.probe is not None) else 0
        for found in urls:
            classification = classify_url(found.url)
            if classification is None:
                continue
            confidence = calculate_confidence(found.url, found.title, name, office, state)
            signals = None
            if probes_left and classification.category in self.probed_categories:
                probes_left -= 1
                signals = await self.probe(found.url)
            scores = score_discovered(confidence, signals)
            results.append(PlatformResult(
                entity_type=entity_type,
                entity_name=name,
                platform_name=classification.platform_name,
                platform_url=found.url,
                category=classification.category,
                confidence_score=round(confidence, 2),
                discovery_method=found.discovery_method,
                activity_status=signals.activity_status if signals else "unknown",
                score_presence=scores.presence,
                score_consistency=scores.consistency,
                score_quality=scores.quality,
                score_accessibility=scores.accessibility,
                total_score=scores.total,
                grade=scores.grade,
                contact_methods=signals.contact_methods if signals else {},
            ))
        return results


def _platform_row(audit_id: str, p: PlatformResult) -> AuditPlatform:
    return AuditPlatform(
        audit_id=audit_id,
        entity_type=p.entity_type,
        entity_name=p.entity_name,
        platform_name=p.platform_name,
        platform_url=p.platform_url,
        category=p.category,
        confidence_score=p.confidence_score,
        discovery_method=p.discovery_method,
        activity_status=p.activity_status,
        score_presence=p.score_presence,
        score_consistency=p.score_consistency,
        score_quality=p.score_quality,
        score_accessibility=p.score_accessibility,
        total_score=p.total_score,
        grade=p.grade,
        contact_methods_json=json.dumps(p.contact_methods or {}),
    )
