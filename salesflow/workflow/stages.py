# salesflow/workflow/stages.py
"""Session workflow state machine.

A session carries two independent signals:

* the stored ``status`` column, which says where the representative currently
  is and only moves when the orchestrator advances it, and
* the completion of each stage, derived from the session's data and its
  estimate.

Both are reported by :func:`compute_stage`.  Stored status is never derived
from completion, so editing an earlier stage (re-uploading a photo after an
estimate exists, say) does not move ``status`` backwards.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import IntEnum
from typing import Any, FrozenSet, Optional

from salesflow.errors import StageNotReachable
from salesflow.models import PLACEHOLDER_CLIENT_NAME


class Stage(IntEnum):
    DRAFT = 1
    PHOTO_UPLOADED = 2
    MOCKUP_CREATED = 3
    ESTIMATE_GENERATED = 4
    CONTRACT_SIGNED = 5
    COMPLETED = 6

    @property
    def status(self) -> str:
        return self.name.lower()

    @classmethod
    def from_status(cls, status: Optional[str]) -> 'Stage':
        try:
            return cls[(status or '').upper()]
        except KeyError:
            return cls.DRAFT

    @classmethod
    def coerce(cls, value: Any) -> 'Stage':
        """Accept a Stage, a stage number or a status name."""
        if isinstance(value, Stage):
            return value
        if isinstance(value, str) and not value.isdigit():
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValueError(f"Unknown stage {value!r}") from None
        return cls(int(value))


LABELS = {
    Stage.DRAFT: 'Client Info',
    Stage.PHOTO_UPLOADED: 'Photo Upload',
    Stage.MOCKUP_CREATED: 'AI Mockup',
    Stage.ESTIMATE_GENERATED: 'Estimate',
    Stage.CONTRACT_SIGNED: 'Contract',
    Stage.COMPLETED: 'Complete',
}


@dataclass(frozen=True)
class WorkflowPosition:
    current: Stage
    completed: FrozenSet[Stage]
    max_reachable: Stage

    def is_reachable(self, stage) -> bool:
        return Stage.coerce(stage) <= self.max_reachable

    def to_dict(self) -> dict:
        return {
            'current': int(self.current),
            'current_status': self.current.status,
            'completed': sorted(int(s) for s in self.completed),
            'max_reachable': int(self.max_reachable),
            'stages': [
                {
                    'stage': int(s),
                    'status': s.status,
                    'label': LABELS[s],
                    'completed': s in self.completed,
                    'reachable': s <= self.max_reachable,
                }
                for s in Stage
            ],
        }


@dataclass
class EstimateSnapshot:
    id: Optional[str] = None
    signed_at: Optional[str] = None


@dataclass
class WorkflowContext:
    """Serializable snapshot of a session and its estimate.

    Accepted by :func:`compute_stage` wherever a model would be.
    """
    id: Optional[str] = None
    client_name: Optional[str] = None
    original_image_url: Optional[str] = None
    final_mockup_url: Optional[str] = None
    status: str = Stage.DRAFT.status
    estimate: Optional[EstimateSnapshot] = field(default=None)

    @classmethod
    def from_models(cls, session, estimate=None) -> 'WorkflowContext':
        snap = None
        if estimate is not None:
            signed = estimate.signed_at
            snap = EstimateSnapshot(
                id=estimate.id,
                signed_at=signed.isoformat() if hasattr(signed, 'isoformat') else signed,
            )
        return cls(
            id=session.id,
            client_name=session.client_name,
            original_image_url=session.original_image_url,
            final_mockup_url=session.final_mockup_url,
            status=session.status or Stage.DRAFT.status,
            estimate=snap,
        )

    @classmethod
    def from_dict(cls, data: dict) -> 'WorkflowContext':
        est = data.get('estimate')
        return cls(
            id=data.get('id'),
            client_name=data.get('client_name'),
            original_image_url=data.get('original_image_url'),
            final_mockup_url=data.get('final_mockup_url'),
            status=data.get('status') or Stage.DRAFT.status,
            estimate=EstimateSnapshot(**est) if est else None,
        )

    def to_dict(self) -> dict:
        return asdict(self)

    def position(self) -> WorkflowPosition:
        return compute_stage(self, self.estimate)


def _client_info_complete(session) -> bool:
    name = (session.client_name or '').strip()
    return bool(name) and name != PLACEHOLDER_CLIENT_NAME


def completed_stages(session, estimate=None) -> FrozenSet[Stage]:
    done = set()
    if _client_info_complete(session):
        done.add(Stage.DRAFT)
    if session.original_image_url:
        done.add(Stage.PHOTO_UPLOADED)
    if session.final_mockup_url:
        done.add(Stage.MOCKUP_CREATED)
    if estimate is not None:
        done.add(Stage.ESTIMATE_GENERATED)
        if estimate.signed_at:
            done.add(Stage.CONTRACT_SIGNED)
            done.add(Stage.COMPLETED)
    return frozenset(done)


def compute_stage(session, estimate=None) -> WorkflowPosition:
    """Return where ``session`` stands; has no side effects."""
    done = completed_stages(session, estimate)
    highest = max((int(s) for s in done), default=0)
    return WorkflowPosition(
        current=Stage.from_status(session.status),
        completed=done,
        max_reachable=Stage(min(highest + 1, int(Stage.COMPLETED))),
    )


def ensure_reachable(session, stage, estimate=None) -> WorkflowPosition:
    position = compute_stage(session, estimate)
    stage = Stage.coerce(stage)
    if not position.is_reachable(stage):
        raise StageNotReachable(stage, position.max_reachable)
    return position


def advance(session, target, estimate=None):
    """Move the stored status to ``target`` if the workflow allows it."""
    target = Stage.coerce(target)
    ensure_reachable(session, target, estimate)
    session.status = target.status
    return session


def promote(session, target) -> bool:
    """Raise the stored status to ``target``; never moves it backwards."""
    target = Stage.coerce(target)
    if Stage.from_status(session.status) >= target:
        return False
    session.status = target.status
    return True
