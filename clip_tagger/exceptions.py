"""
Error taxonomy for clip-tagger.

Only StorageUnavailable and CorruptState cross component boundaries in
normal operation. InvalidSignal and UnknownLabel exist for the strict
lookups (Signal.parse, AdaptiveClassifier.get_model); the lenient paths
(train, predict) never raise them.
"""


class ClipTaggerError(Exception):
    """Base class for all clip-tagger errors."""

    pass


class InvalidSignal(ClipTaggerError, ValueError):
    """Unrecognized feedback signal."""

    pass


class UnknownLabel(ClipTaggerError, KeyError):
    """No label model exists for the requested label."""

    pass


class StorageUnavailable(ClipTaggerError):
    """The persistence layer failed (I/O error, locked or full database)."""

    pass


class CorruptState(ClipTaggerError):
    """A persisted classifier or store document could not be decoded."""

    pass
