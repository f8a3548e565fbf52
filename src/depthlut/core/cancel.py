from __future__ import annotations

import threading


class CancelToken:
    """
    Cooperative cancellation flag shared between a caller and build workers.

    A token made with a `parent` also reads as cancelled once the parent is; cancelling
    the child never touches the parent.
    """

    def __init__(self, parent: CancelToken | None = None) -> None:
        self._event = threading.Event()
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or (self._parent is not None and self._parent.cancelled)

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self.cancelled})"
