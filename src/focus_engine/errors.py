"""Error kinds raised by the engine."""


class EngineError(Exception):
    """Base class for every error raised by focus_engine."""


class ValidationError(EngineError):
    """Malformed input: bad ranges, counts or enum values. Never retried."""


class NotFoundError(EngineError):
    pass


class ConflictError(EngineError):
    """The operation clashes with current state (duplicate, superseded, already voted)."""


class IllegalTransitionError(ConflictError):
    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"{entity} cannot move from '{current}' to '{target}'")
        self.entity = entity
        self.current = current
        self.target = target


class InsufficientTokensError(EngineError):
    def __init__(self, needed: int, available: int):
        super().__init__(f"Insufficient tokens. Need {needed}, have {available}")
        self.needed = needed
        self.available = available


class ContentGenerationError(EngineError):
    """The external content service failed."""


class QuotaExceededError(ContentGenerationError):
    """Quota or rate-limit failure; the client moves on to the next model."""


class ContentShapeError(ContentGenerationError):
    """Generated content did not match the expected shape."""
