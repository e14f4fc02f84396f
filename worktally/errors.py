from __future__ import annotations


class WorkTallyError(Exception):
    """Base class for errors raised by WorkTally."""


class ValidationError(WorkTallyError):
    """Rejected input, raised before any state change or I/O."""


class InvalidTransitionError(ValidationError):
    def __init__(self, action: str, state: str) -> None:
        super().__init__(f"当前状态 {state} 不允许执行 {action}")
        self.action = action
        self.state = state


class StoreError(WorkTallyError):
    """The backing store failed to read or write."""


class NotFoundError(WorkTallyError):
    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id
