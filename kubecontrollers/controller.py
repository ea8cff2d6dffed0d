"""The interface every controller offers."""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

__all__ = ["Controller"]


@runtime_checkable
class Controller(Protocol):
    """Something that runs until its stop event is set."""

    def run(self, stop: threading.Event) -> None:
        """Run the controller until ``stop`` is set."""
        ...