"""
View invalidation signal.

After each mutation the core announces which presentation views are now
stale for the user. Refreshing them is the presentation layer's job; it
subscribes a callback on ``view_invalidator``.
"""

from typing import Callable, List
import logging


logger = logging.getLogger(__name__)


COURSES = "/courses"
LEARN = "/learn"
SHOP = "/shop"
QUESTS = "/quests"
LEADERBOARD = "/leaderboard"


def lesson_view(lesson_id: int) -> str:
    return f"/lesson/{lesson_id}"


Listener = Callable[[str, List[str]], None]


class ViewInvalidator:
    """Fan-out of stale-view announcements to registered listeners."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def invalidate(self, user_id: str, views: List[str]) -> List[str]:
        """
        Announce that ``views`` are stale for ``user_id``.

        Returns:
            List[str]: The announced views, for inclusion in responses
        """
        logger.debug(f"Invalidating views {views} for user {user_id}")
        for listener in list(self._listeners):
            try:
                listener(user_id, list(views))
            except Exception:
                # A failing listener must not undo a committed mutation
                logger.exception("View invalidation listener failed")
        return list(views)


# Process-wide invalidator
view_invalidator = ViewInvalidator()
