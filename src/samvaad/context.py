# samvaad: Console I/O, operator logging and event fan-out. Components receive a Context explicitly instead of printing directly, which keeps them testable (Context(quiet=True)).

import pathlib
import sys
from typing import Any, Callable, Dict, List, Optional

from .events import ConversationEvent

Listener = Callable[[ConversationEvent], None]


class Context:
    """
    Thin wrapper around console I/O, logging and event listeners.

    Logging is printed (stdout for [LOG]/[WARN], stderr for errors). Events are
    delivered synchronously to every subscribed listener in subscription order.
    """

    def __init__(
        self,
        project_root: Optional[pathlib.Path] = None,
        settings: Optional[Dict[str, Any]] = None,
        quiet: bool = False,
    ) -> None:
        self.project_root = project_root
        self.settings = settings or {}
        self.quiet = quiet
        self._listeners: List[Listener] = []

    def send_to_user(self, message: str) -> None:
        """Send a user-facing message to stdout."""
        print(message)

    def log(self, message: str) -> None:
        """Emit a lightweight log line to stdout, prefixed for readability."""
        if not self.quiet:
            print(f"[LOG] {message}")

    def warn(self, message: str) -> None:
        if not self.quiet:
            print(f"[WARN] {message}")

    def error_message(self, message: str) -> None:
        """Print an error message to stderr."""
        if not self.quiet:
            print(f"Error: {message}", file=sys.stderr)

    # ---------- Events ----------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener and return a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: ConversationEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                # A broken listener must not break the turn loop.
                self.error_message(f"Event listener failed for {event.type}: {e}")
