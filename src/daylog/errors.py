"""Error taxonomy.

Parsing never raises (degraded input is logged), and a detected merge
conflict is a coordinator state rather than an error. Everything else that can
reach a caller derives from DaylogError.
"""


class DaylogError(Exception):
    """Base class for daylog failures."""


class IoFailure(DaylogError):
    """Reading or writing the local document store failed."""


class SyncNetworkFailure(DaylogError):
    """Pull or push against the remote replica failed."""


class ConflictedDocument(DaylogError):
    """The document is part of an unfinished merge and holds conflict markers."""


class AttachmentCleanupFailure(DaylogError):
    """An attachment of a deleted task could not be removed."""


class VcsError(DaylogError):
    """A version-control command failed."""


class MergeConflict(VcsError):
    """Pull produced conflicts that need manual resolution."""


class NetworkError(VcsError):
    """The remote could not be reached."""


class RejectedNonFastForward(VcsError):
    """Push was rejected because the remote has commits we do not."""
