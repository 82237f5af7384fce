"""
Exception hierarchy for the layer parity harness.

Configuration-class errors are fatal before dispatch starts; output errors
are fatal to the round that raised them. Per-call network failures never
appear here - they are recorded as LayerResult data.
"""


class HarnessError(Exception):
    """Base exception for all harness errors."""

    pass


class ConfigurationError(HarnessError):
    """
    Raised for invalid run configuration (bad host/port, unknown layer,
    schema violation, missing required flags).

    Always raised before any network activity starts.
    """

    pass


class ReplayLogError(ConfigurationError):
    """Raised when the replay log cannot be read or contains an invalid line."""

    pass


class ResolveError(ConfigurationError):
    """Raised when a source URL cannot be turned into per-layer target URLs."""

    pass


class ReportWriteError(HarnessError):
    """
    Raised when a report artifact cannot be written.

    Fatal to the current run.
    """

    pass


class ResultStoreError(HarnessError):
    """
    Base exception for Result Store misuse.

    These indicate a programming error in the dispatcher, never a layer
    failure.
    """

    pass


class SlotAlreadySetError(ResultStoreError):
    """Raised when a (path, layer) slot is set a second time."""

    pass


class UnknownLayerError(ResultStoreError):
    """Raised when a result is offered for a layer the ResultSet does not expect."""

    pass


class IncompleteResultSetError(ResultStoreError):
    """Raised when finalize is called before every layer slot is populated."""

    pass


class AlreadyFinalizedError(ResultStoreError):
    """Raised when a path is finalized twice."""

    pass
