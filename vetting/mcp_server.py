from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from mcp.server.fastmcp import FastMCP

from vetting import services
from vetting.auditor import AuditOrchestrator
from vetting.config import get_settings
from vetting.db import current_db_path, init_db, session_scope
from vetting.errors import VettingError
from vetting.models import OUTCOME_STAGES, SectionType, Stage
from vetting.stages import LINEAR_TRACK

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def vetting_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db(get_settings().database_path)
    yield


mcp = FastMCP(
    "Vetting",
    instructions=(
        "Read-only view of the candidate vetting pipeline. "
        "Start with get_stats() for an overview, then list_vettings() to browse, "
        "then get_vetting(id) for sections and progress. preview_tally(id) shows "
        "the board vote as it stands; get_audit(id) shows the digital presence audit."
    ),
    lifespan=vetting_lifespan,
    json_response=True,
)


def _error(exc: VettingError) -> dict:
    return exc.to_dict()


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("vetting://overview")
def vetting_overview() -> str:
    """Overview of the vetting pipeline: stages, sections and outcomes."""
    return json.dumps({
        "system": "Candidate Vetting & Endorsement Pipeline",
        "database": str(current_db_path()),
        "stages": [s.value for s in LINEAR_TRACK],
        "outcomes": {r.value: s.value for r, s in OUTCOME_STAGES.items()},
        "after_outcome": Stage.PRESS_RELEASE_CREATED.value,
        "sections": [t.value for t in SectionType],
        "workflow": [
            "1. get_stats() to see how many vettings sit in each stage.",
            "2. list_vettings(stage=..., state=...) to browse.",
            "3. get_vetting(id) for sections, progress and the next allowed stage.",
            "4. preview_tally(id) for votes cast and the projected result.",
            "5. get_audit(id) for the latest digital presence audit.",
        ],
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
def list_vettings(stage: str | None = None, state: str | None = None, limit: int = 50) -> list[dict] | dict:
    """List vettings, newest first.

    Args:
        stage: Comma-separated stages, e.g. "board_vote,recommendation".
        state: Two-letter state code.
        limit: Maximum number of results.
    """
    with session_scope() as session:
        try:
            vettings = services.list_vettings(session, stage=stage, state=state)
        except VettingError as exc:
            return _error(exc)
        return [services.vetting_summary(v) for v in vettings[:limit]]


@mcp.tool()
def get_vetting(vetting_id: str) -> dict:
    """Full vetting detail with report sections and progress."""
    with session_scope() as session:
        try:
            return services.vetting_detail(services.get_vetting(session, vetting_id))
        except VettingError as exc:
            return _error(exc)


@mcp.tool()
def preview_tally(vetting_id: str) -> dict:
    """Votes cast so far and the result finalization would produce right now."""
    with session_scope() as session:
        try:
            return services.vote_summary(session, vetting_id, get_settings().tie_policy)
        except VettingError as exc:
            return _error(exc)


@mcp.tool()
def get_audit(vetting_id: str) -> dict:
    """Latest digital presence audit with its scored platforms."""
    with session_scope() as session:
        try:
            services.get_vetting(session, vetting_id)
        except VettingError as exc:
            return _error(exc)
        found = AuditOrchestrator.latest(session, vetting_id)
        if found is None:
            return {"audit": None}
        audit, platforms = found
        return {"audit": services.audit_dict(audit, platforms)}


@mcp.tool()
def list_orphaned_audits(older_than_minutes: int | None = None) -> list[dict]:
    """Audits still pending or running after the given age (defaults to the configured cutoff)."""
    minutes = get_settings().orphan_after_minutes if older_than_minutes is None else older_than_minutes
    with session_scope() as session:
        return [services.audit_dict(a) for a in AuditOrchestrator.orphaned(session, timedelta(minutes=minutes))]


@mcp.tool()
def get_stats() -> dict:
    """Vettings per stage and audit counts by status."""
    with session_scope() as session:
        return services.compute_stats(session)


def main():
    """Run the vetting MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
