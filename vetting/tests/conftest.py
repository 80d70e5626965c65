"""Shared fixtures: in-memory database, actors and seeded vettings."""
from __future__ import annotations

import json

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vetting.models import (
    Base, BoardVote, CandidateResponse, SectionStatus, SectionType, Stage, Vetting,
)
from vetting.permissions import ActorContext
from vetting.sections import new_sections


@pytest.fixture()
def factory():
    """Session factory over a shared in-memory SQLite database."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture()
def session(factory):
    sess = factory()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def chair() -> ActorContext:
    return ActorContext(member_id="chair-1", is_committee_member=True, is_chair=True)


@pytest.fixture()
def committee() -> ActorContext:
    return ActorContext(member_id="member-1", is_committee_member=True)


@pytest.fixture()
def national() -> ActorContext:
    return ActorContext(member_id="national-1", is_national=True)


@pytest.fixture()
def board() -> ActorContext:
    return ActorContext(member_id="board-1", is_board_member=True)


@pytest.fixture()
def outsider() -> ActorContext:
    return ActorContext(member_id="nobody")


def make_vetting(session, *, stage=Stage.INTAKE, name="Jane Doe", office="State Senate",
                 state="TX", district="District 5", response: CandidateResponse | None = None,
                 opponents: list[dict] | None = None) -> Vetting:
    """Insert a vetting with all sections and commit."""
    vetting = Vetting(
        candidate_response_id=response.id if response else None,
        stage=stage.value if isinstance(stage, Stage) else stage,
        candidate_name=name,
        candidate_office=office,
        candidate_state=state,
        candidate_district=district,
        candidate_party="Republican",
    )
    vetting.sections = new_sections()
    if opponents is not None:
        for s in vetting.sections:
            if s.section_type == SectionType.OPPONENT_RESEARCH:
                s.data_json = json.dumps({"opponents": opponents})
    session.add(vetting)
    session.commit()
    return vetting


def complete_sections(session, vetting: Vetting, types=None) -> None:
    for s in vetting.sections:
        if types is None or s.section_type in types:
            s.status = SectionStatus.COMPLETED.value
    session.commit()


def add_votes(session, vetting: Vetting, *choices: str) -> None:
    for i, choice in enumerate(choices):
        session.add(BoardVote(vetting_id=vetting.id, voter_id=f"voter-{i}", vote=choice))
    session.commit()


@pytest.fixture()
def candidate_response(session) -> CandidateResponse:
    response = CandidateResponse(
        candidate_first_name="Jane", candidate_last_name="Doe",
        candidate_office="State Senate", candidate_state="tx", candidate_district="District 5",
        candidate_party="Republican", status="submitted",
    )
    session.add(response)
    session.commit()
    return response
