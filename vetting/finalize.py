"""Finalization coordinator: commit a board decision exactly once.

The decision write is a compare-and-swap on ``endorsed_at IS NULL``; losing
that race is reported as :class:`ConcurrentFinalization`. Once the decision is
committed, mirroring it onto the candidate response and drafting the press
release are best-effort: their failures are logged and never undo the
endorsement.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from vetting.errors import AlreadyFinalized, ConcurrentFinalization, InvalidStage, NotFound
from vetting.models import OUTCOME_STAGES, BoardVote, CandidateResponse, EndorsementResult, Stage, Vetting
from vetting.permissions import ActorContext, require_board_member, require_chair
from vetting.press_release import (
    DEFAULT_ORG_NAME, DEFAULT_ORG_SHORT_NAME, PressReleaseDraft, build_draft, create_post,
)
from vetting.stages import can_transition, require_transition
from vetting.tally import Tally, TiePolicy, decide
from vetting.utils import utc_now

log = logging.getLogger(__name__)


@dataclass
class FinalizeOutcome:
    vetting: Vetting
    tally: Tally
    endorsement_result: EndorsementResult
    press_release_post_id: str | None = None
    candidate_synced: bool = False


def sync_candidate_response(session: Session, vetting: Vetting) -> bool:
    """Mirror the decision onto the originating candidate response, if linked."""
    if not vetting.candidate_response_id:
        return False
    result = session.execute(
        update(CandidateResponse)
        .where(CandidateResponse.id == vetting.candidate_response_id)
        .values(endorsement_result=vetting.endorsement_result, endorsed_at=vetting.endorsed_at)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


class FinalizationCoordinator:
    def __init__(
        self,
        session: Session,
        *,
        tie_policy: TiePolicy = TiePolicy.NO_POSITION,
        org_name: str = DEFAULT_ORG_NAME,
        org_short_name: str = DEFAULT_ORG_SHORT_NAME,
        logger: logging.Logger | None = None,
        sync_candidate: Callable[[Session, Vetting], bool] = sync_candidate_response,
        publish_post: Callable[[Session, PressReleaseDraft], str] = create_post,
    ):
        self.session = session
        self.tie_policy = tie_policy
        self.org_name = org_name
        self.org_short_name = org_short_name
        self.log = logger or log
        self._sync_candidate = sync_candidate
        self._publish_post = publish_post

    # -- public API ---------------------------------------------------------

    def finalize(self, vetting_id: str, actor: ActorContext) -> FinalizeOutcome:
        require_board_member(actor)
        vetting = self._precheck(vetting_id)
        tally, result = decide(self._load_votes(vetting_id), self.tie_policy)
        decided_at = utc_now()
        self._commit(vetting, result, decided_at)
        self.log.info(
            "Vetting %s finalized by %s: %s (%s)", vetting_id, actor.member_id, result.value, tally.to_dict(),
        )

        synced = self._mirror_to_candidate(vetting)
        post_id = self._draft_press_release(vetting, result, decided_at)
        return FinalizeOutcome(
            vetting=vetting,
            tally=tally,
            endorsement_result=result,
            press_release_post_id=post_id,
            candidate_synced=synced,
        )

    def retry_press_release(self, vetting_id: str, actor: ActorContext) -> str:
        """Re-run press release drafting for a finalized vetting that has none."""
        require_chair(actor)
        vetting = self.session.get(Vetting, vetting_id)
        if vetting is None:
            raise NotFound("Vetting not found")
        if vetting.press_release_post_id:
            raise InvalidStage(
                "A press release already exists for this vetting",
                details={"press_release_post_id": vetting.press_release_post_id},
            )
        if vetting.endorsed_at is None or not can_transition(vetting.stage, Stage.PRESS_RELEASE_CREATED):
            raise InvalidStage(f"Vetting must be finalized before creating a press release (stage is {vetting.stage})")

        draft = self._build(vetting, EndorsementResult(vetting.endorsement_result), vetting.endorsed_at)
        try:
            post_id = self._publish_post(self.session, draft)
            self._link_post(vetting, post_id)
        except Exception:
            self.session.rollback()
            raise
        return post_id

    # -- steps --------------------------------------------------------------

    def _precheck(self, vetting_id: str) -> Vetting:
        vetting = self.session.get(Vetting, vetting_id)
        if vetting is None:
            raise NotFound("Vetting not found")
        if vetting.stage != Stage.BOARD_VOTE:
            if vetting.endorsed_at is not None:
                raise AlreadyFinalized(details={"endorsement_result": vetting.endorsement_result})
            raise InvalidStage(
                f"Vetting must be in board_vote stage to finalize (stage is {vetting.stage})",
                details={"stage": vetting.stage},
            )
        if vetting.endorsed_at is not None:
            raise AlreadyFinalized(details={"endorsement_result": vetting.endorsement_result})
        return vetting

    def _load_votes(self, vetting_id: str) -> list[str]:
        return list(self.session.scalars(select(BoardVote.vote).where(BoardVote.vetting_id == vetting_id)))

    def _commit(self, vetting: Vetting, result: EndorsementResult, decided_at: datetime) -> None:
        observed = vetting.stage
        target = require_transition(observed, OUTCOME_STAGES[result])
        stmt = (
            update(Vetting)
            .where(
                Vetting.id == vetting.id,
                Vetting.endorsed_at.is_(None),
                Vetting.stage == observed,
            )
            .values(
                endorsement_result=result.value,
                endorsed_at=decided_at,
                stage=target.value,
                updated_at=decided_at,
            )
            .execution_options(synchronize_session=False)
        )
        affected = self.session.execute(stmt).rowcount
        if affected != 1:
            self.session.rollback()
            raise ConcurrentFinalization()
        self.session.commit()
        self.session.refresh(vetting)

    def _mirror_to_candidate(self, vetting: Vetting) -> bool:
        try:
            synced = self._sync_candidate(self.session, vetting)
            self.session.commit()
            return bool(synced)
        except Exception as exc:
            self.session.rollback()
            self.log.warning("Failed to sync endorsement to candidate response for vetting %s: %s", vetting.id, exc)
            return False

    def _draft_press_release(self, vetting: Vetting, result: EndorsementResult, decided_at: datetime) -> str | None:
        try:
            post_id = self._publish_post(self.session, self._build(vetting, result, decided_at))
            self._link_post(vetting, post_id)
            return post_id
        except Exception as exc:
            self.session.rollback()
            self.log.warning("Failed to create press release draft for vetting %s: %s", vetting.id, exc)
            return None

    def _build(self, vetting: Vetting, result: EndorsementResult, decided_at: datetime) -> PressReleaseDraft:
        return build_draft(
            vetting, result, decided_at, org_name=self.org_name, org_short_name=self.org_short_name,
        )

    def _link_post(self, vetting: Vetting, post_id: str) -> None:
        # Only the first linked post wins.
        observed = vetting.stage
        target = require_transition(observed, Stage.PRESS_RELEASE_CREATED)
        affected = self.session.execute(
            update(Vetting)
            .where(
                Vetting.id == vetting.id,
                Vetting.press_release_post_id.is_(None),
                Vetting.stage == observed,
            )
            .values(press_release_post_id=post_id, stage=target.value, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        ).rowcount
        if affected != 1:
            raise ConcurrentFinalization("Press release was already linked by another user")
        self.session.commit()
        self.session.refresh(vetting)
