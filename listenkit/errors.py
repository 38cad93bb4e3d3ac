"""Exception hierarchy shared by the capture and recognition pipelines."""


class ListenkitError(Exception):
    """Base class for all listenkit errors."""


class PermissionDenied(ListenkitError):
    """The microphone could not be opened."""


class SourceLoadFailure(ListenkitError):
    """The model weights or the vocabulary could not be loaded."""


class ConfigurationError(ListenkitError):
    """Unknown model name, mismatched feature width or similar misconfiguration."""


class AudioStreamError(ListenkitError):
    """The input stream ended without being asked to."""
