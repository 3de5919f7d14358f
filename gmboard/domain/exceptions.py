class GMBoardError(Exception):
    """Base class for errors raised by the indexer and the read path."""


class TransientSourceError(GMBoardError):
    """Remote chain call timed out, was rate limited or failed after retries."""


class PersistenceError(GMBoardError):
    """The event store could not commit a window."""


class CursorConflictError(GMBoardError):
    """Another writer moved the sync cursor since it was read."""


class InvalidArgument(GMBoardError, ValueError):
    pass


class DataConsistencyWarning(UserWarning):
    """Recoverable data issue: duplicate ids, unresolved timestamps, undecodable logs."""
