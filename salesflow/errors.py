"""Error kinds raised by workflow operations.

Each kind carries a human readable message and the HTTP status the JSON API
answers with. ``ValidationFailed`` and ``StageNotReachable`` are always raised
before any side effect takes place.
"""


class WorkflowError(Exception):
    kind = 'workflow_error'
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'error': self.kind, 'message': self.message}


class NotFound(WorkflowError):
    kind = 'not_found'
    status_code = 404


class ValidationFailed(WorkflowError):
    kind = 'validation_failed'
    status_code = 400


class StageNotReachable(WorkflowError):
    kind = 'stage_not_reachable'
    status_code = 409

    def __init__(self, stage, max_reachable):
        super().__init__(
            f"Stage {int(stage)} is not reachable yet "
            f"(furthest reachable stage is {int(max_reachable)})"
        )
        self.stage = stage
        self.max_reachable = max_reachable


class UpstreamFailure(WorkflowError):
    kind = 'upstream_failure'
    status_code = 502

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class PartialInconsistency(WorkflowError):
    """A multi-step write stopped after applying some of its steps.

    The sequences raising this are safe to re-run from the start.
    """
    kind = 'partial_inconsistency'
    status_code = 500

    def __init__(self, step: str, message: str):
        super().__init__(f"Step '{step}' failed: {message}")
        self.step = step

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['step'] = self.step
        return data


class Unauthorized(WorkflowError):
    kind = 'unauthorized'
    status_code = 401
