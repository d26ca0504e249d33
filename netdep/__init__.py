"""netdep: static discovery of network dependencies between Go microservices."""

__version__ = "0.1.0"

from netdep.pipeline import RunConfig, discover_all_calls, run  # noqa: E402

__all__ = ["RunConfig", "__version__", "discover_all_calls", "run"]
