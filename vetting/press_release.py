"""Draft press releases for board decisions.

The builders are pure functions of the decision and candidate fields; only
:func:`create_post` touches the database.
"""
from __future__ import annotations

import html
import json
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from vetting.models import EndorsementResult, Post
from vetting.utils import slugify

DEFAULT_ORG_NAME = "Republican Liberty Caucus"
DEFAULT_ORG_SHORT_NAME = "RLC"
CATEGORIES = ["press-release", "endorsement"]

_TITLES = {
    EndorsementResult.ENDORSE: "{org} Endorses {name} for {office}",
    EndorsementResult.DO_NOT_ENDORSE: "{org} Does Not Endorse {name} for {office}",
    EndorsementResult.NO_POSITION: "{org} Takes No Position on {name} for {office}",
}
_FALLBACK_TITLE = "{org} Endorsement Decision: {name} for {office}"

_DECISIONS = {
    EndorsementResult.ENDORSE: "has endorsed {name}",
    EndorsementResult.DO_NOT_ENDORSE: "has decided not to endorse {name}",
    EndorsementResult.NO_POSITION: "has taken no position on the candidacy of {name}",
}
_FALLBACK_DECISION = "has made an endorsement decision regarding {name}"


@dataclass
class PressReleaseDraft:
    title: str
    slug: str
    content: str
    excerpt: str
    tags: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=lambda: list(CATEGORIES))
    content_type: str = "press_release"
    status: str = "draft"


def _result(value: str | EndorsementResult | None) -> EndorsementResult | None:
    try:
        return EndorsementResult(value)
    except ValueError:
        return None


def _esc(value: str) -> str:
    return html.escape(value, quote=True)


def _long_date(value: datetime) -> str:
    return f"{value:%B} {value.day}, {value.year}"


def build_title(
    result: str | EndorsementResult | None,
    candidate_name: str,
    office: str | None,
    *,
    org_short_name: str = DEFAULT_ORG_SHORT_NAME,
) -> str:
    template = _TITLES.get(_result(result), _FALLBACK_TITLE)
    return template.format(org=org_short_name, name=candidate_name, office=office or "Office")


def build_content(
    result: str | EndorsementResult | None,
    candidate_name: str,
    office: str | None,
    state: str | None,
    district: str | None,
    decided_at: datetime,
    *,
    org_name: str = DEFAULT_ORG_NAME,
    org_short_name: str = DEFAULT_ORG_SHORT_NAME,
) -> str:
    """HTML body of the release. Every candidate-supplied string is escaped."""
    decision = _DECISIONS.get(_result(result), _FALLBACK_DECISION).format(name=_esc(candidate_name))
    location = ", ".join(_esc(part) for part in (state, district) if part)
    where = f" ({location})" if location else ""
    return (
        f"<p>The {_esc(org_name)} {decision} for {_esc(office or 'Office')}{where}.</p>\n\n"
        f"<p>This decision was reached on {_long_date(decided_at)} following a thorough vetting "
        f"process by the {_esc(org_short_name)} Candidate Vetting Committee and a vote by the "
        f"National Board of Directors.</p>\n\n"
        f"<p><em>This is a draft press release. Please edit the content before publishing.</em></p>"
    )


def build_slug(candidate_name: str, vetting_id: str, decided_at: datetime) -> str:
    return f"press-release-{slugify(candidate_name)}-{vetting_id[:8]}-{decided_at:%Y-%m-%d}"


def build_draft(
    vetting,
    result: str | EndorsementResult,
    decided_at: datetime,
    *,
    org_name: str = DEFAULT_ORG_NAME,
    org_short_name: str = DEFAULT_ORG_SHORT_NAME,
) -> PressReleaseDraft:
    """Assemble the full draft for a finalized *vetting*."""
    title = build_title(result, vetting.candidate_name, vetting.candidate_office, org_short_name=org_short_name)
    tags = list(CATEGORIES)
    if vetting.candidate_state:
        tags.append(vetting.candidate_state.lower())
    return PressReleaseDraft(
        title=title,
        slug=build_slug(vetting.candidate_name, vetting.id, decided_at),
        content=build_content(
            result, vetting.candidate_name, vetting.candidate_office,
            vetting.candidate_state, vetting.candidate_district, decided_at,
            org_name=org_name, org_short_name=org_short_name,
        ),
        excerpt=title,
        tags=tags,
    )


def create_post(session: Session, draft: PressReleaseDraft) -> str:
    """Insert *draft* as a CMS post and return its id. Caller commits."""
    post = Post(
        title=draft.title,
        slug=draft.slug,
        content=draft.content,
        excerpt=draft.excerpt,
        content_type=draft.content_type,
        status=draft.status,
        categories_json=json.dumps(draft.categories),
        tags_json=json.dumps(draft.tags),
    )
    session.add(post)
    session.flush()
    return post.id
