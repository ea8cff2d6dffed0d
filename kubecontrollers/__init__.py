"""Resource cache, work queue, environment configuration and run-config merging for cluster network controllers."""

__version__ = "0.1.0"

__all__ = [
    "cache",
    "controller",
    "duration",
    "envconfig",
    "kccapi",
    "mergeconfig",
    "runconfig",
    "workqueue",
]