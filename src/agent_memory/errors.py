"""Error types raised by the memory engine.

A lookup that finds nothing is not an error: it returns ``None``
(or ``False`` for deletes).
"""


class MemoryEngineError(Exception):
    """Base class for all memory engine failures."""


class ConfigurationError(MemoryEngineError):
    """Required backend configuration is missing or inconsistent."""


class ProviderError(MemoryEngineError):
    """A backend call (embedding API, Redis, Qdrant) failed."""

    def __init__(self, operation: str, cause: BaseException | str):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")


class BatchWriteError(ProviderError):
    """A multi-command write batch failed.

    ``partial`` is True when some commands were applied and others were
    not; False when nothing was applied.
    """

    def __init__(self, operation: str, failed: list[str], partial: bool, cause: BaseException | str):
        self.failed = failed
        self.partial = partial
        kind = "partially" if partial else "entirely"
        super().__init__(operation, f"batch {kind} failed ({', '.join(failed)}): {cause}")


class ConsistencyGapError(MemoryEngineError):
    """One backing store was updated and the other was not.

    The successful write is not rolled back; the record and its vector
    stay out of sync until the memory is deleted.
    """

    def __init__(self, memory_id: str, operation: str, cause: BaseException):
        self.memory_id = memory_id
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} left memory {memory_id} inconsistent between stores: {cause}")
