"""Error hierarchy for netdep.

Errors raised while configuring or loading abort the run. Annotation errors
are caught by the fallback stage and logged; resolution never raises.
"""

from __future__ import annotations


class NetDepError(Exception):
    """Base error for netdep.

    All netdep-specific errors inherit from this.
    """

    pass


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(NetDepError):
    """Invalid user supplied configuration.

    Attributes:
        reason: Human-readable error description

    Fatal: aborts the run before any analysis happens.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class EnvFileError(ConfigurationError):
    """Environment variable file could not be parsed.

    Attributes:
        path: The offending file
        detail: What went wrong, for logging only
    """

    MESSAGE = "the file cannot be parsed"

    def __init__(self, path: str, detail: str = "") -> None:
        self.path = path
        self.detail = detail
        super().__init__(self.MESSAGE)


# =============================================================================
# Loading Errors
# =============================================================================


class LoadError(NetDepError):
    """Building the IR of a service failed.

    Attributes:
        service_dir: Directory that was being loaded
        reason: Human-readable error description
    """

    def __init__(self, service_dir: str, reason: str) -> None:
        self.service_dir = service_dir
        self.reason = reason
        super().__init__(reason)


class MissingEntryError(NetDepError):
    """A main package has no main function.

    Attributes:
        package_path: The package lacking an entry point
    """

    def __init__(self, package_path: str) -> None:
        self.package_path = package_path
        super().__init__(f"no main function found in package {package_path}")


class EmptyScanError(NetDepError):
    """The service directory produced nothing to analyse."""

    MESSAGE = "no service to analyse were found"

    def __init__(self) -> None:
        super().__init__(self.MESSAGE)


# =============================================================================
# Annotation Errors
# =============================================================================


class AnnotationError(NetDepError):
    """A //netdep: annotation is malformed.

    Attributes:
        annotation: Raw annotation text (after "netdep:")
        reason: Human-readable error description

    Non-fatal: the target the annotation was meant for stays unresolved.
    """

    def __init__(self, annotation: str, reason: str) -> None:
        self.annotation = annotation
        self.reason = reason
        super().__init__(f"Invalid annotation {annotation!r}: {reason}")
