"""Stage state machine for a vetting.

    intake -> committee_review -> interview -> recommendation -> board_vote
        board_vote -> endorsed | rejected | no_position       (finalization only)
        endorsed | rejected | no_position -> press_release_created   (finalization only)

Stages never move backwards. Every stage write checks its edge against this
table. Manual edits take the edges whose target is not in ``SYSTEM_TARGETS``;
the board outcomes and ``press_release_created`` are reached only through the
finalization coordinator.
"""
from __future__ import annotations

from collections.abc import Iterable

from vetting.errors import InvalidStage, InvalidTransition
from vetting.models import OUTCOME_STAGES, SectionStatus, SectionType, Stage
from vetting.permissions import ActorContext, require_chair, require_committee

LINEAR_TRACK = (
    Stage.INTAKE,
    Stage.COMMITTEE_REVIEW,
    Stage.INTERVIEW,
    Stage.RECOMMENDATION,
    Stage.BOARD_VOTE,
)
OUTCOMES = frozenset(OUTCOME_STAGES.values())
SYSTEM_TARGETS = OUTCOMES | {Stage.PRESS_RELEASE_CREATED}

_EDGES: dict[Stage, frozenset[Stage]] = {
    **{a: frozenset({b}) for a, b in zip(LINEAR_TRACK, LINEAR_TRACK[1:])},
    Stage.BOARD_VOTE: OUTCOMES,
    **{s: frozenset({Stage.PRESS_RELEASE_CREATED}) for s in OUTCOMES},
    Stage.PRESS_RELEASE_CREATED: frozenset(),
}


def _rank(stage: Stage) -> int:
    if stage in LINEAR_TRACK:
        return LINEAR_TRACK.index(stage)
    if stage in OUTCOMES:
        return len(LINEAR_TRACK)
    return len(LINEAR_TRACK) + 1


def _order(stage: Stage) -> tuple[int, str]:
    return _rank(stage), stage.value


def can_transition(current: str | Stage, target: str | Stage) -> bool:
    """True when *target* is a legal next stage of *current*. Pure."""
    try:
        current, target = Stage(current), Stage(target)
    except ValueError:
        return False
    return target in _EDGES[current] and is_forward(current, target)


def is_forward(current: str | Stage, target: str | Stage) -> bool:
    return _rank(Stage(target)) > _rank(Stage(current))


def allowed_manual_targets(current: str | Stage) -> list[Stage]:
    """Stages a user may advance to by hand (excludes finalization-driven edges)."""
    current = Stage(current)
    return sorted((t for t in _EDGES[current] if t not in SYSTEM_TARGETS), key=_order)


def require_transition(current: str | Stage, target: str | Stage) -> Stage:
    """Return *target* as a :class:`Stage`, raising ``InvalidTransition`` if the edge is not in the table."""
    current = Stage(current)
    if not can_transition(current, target):
        allowed = sorted(_EDGES[current], key=_order)
        raise InvalidTransition(current.value, str(target), [s.value for s in allowed])
    return Stage(target)


def incomplete_sections(
    statuses: dict[str, str], required: Iterable[str | SectionType],
) -> list[str]:
    """Required section types whose status is not ``completed``."""
    return [
        SectionType(s).value for s in required
        if statuses.get(SectionType(s).value) != SectionStatus.COMPLETED.value
    ]


def check_advance(
    actor: ActorContext,
    current: str | Stage,
    target: str | Stage,
    *,
    recommendation: str | None,
    section_statuses: dict[str, str],
    required_sections: Iterable[str | SectionType] = (),
) -> Stage:
    """Validate a manual stage advance and return the target stage.

    Raises ``Forbidden`` for missing roles, ``InvalidTransition`` for an
    out-of-order or system-only target, and ``InvalidStage`` when the
    board_vote entry gate is not met.
    """
    try:
        target_stage = Stage(target)
    except ValueError:
        target_stage = None
    current_stage = Stage(current)
    allowed = allowed_manual_targets(current_stage)
    if target_stage is None or target_stage not in allowed:
        raise InvalidTransition(current_stage.value, str(target), [s.value for s in allowed])

    if target_stage is Stage.BOARD_VOTE:
        require_chair(actor)
        if not recommendation:
            raise InvalidStage("A committee recommendation is required before the board vote")
        missing = incomplete_sections(section_statuses, required_sections)
        if missing:
            raise InvalidStage(
                "Required report sections are not completed",
                details={"incomplete_sections": missing},
            )
    else:
        require_committee(actor)
    return target_stage
