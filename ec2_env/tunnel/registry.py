"""Tracking every tunnel opened during one run so they can be closed together."""

from __future__ import annotations

import logging
from typing import Iterator

from ec2_env.tunnel.session import TunnelSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Ordered collection of open sessions.

    Sessions are closed in the order they were added. Closing is best effort
    across the whole set: one failing session does not stop the others from
    being closed, and the first error is raised once all have been tried.
    """

    def __init__(self):
        self._sessions: list[TunnelSession] = []

    def add(self, session: TunnelSession) -> TunnelSession:
        self._sessions.append(session)
        return session

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[TunnelSession]:
        return iter(list(self._sessions))

    def close_all(self):
        sessions, self._sessions = self._sessions, []

        first_error = None
        for session in sessions:
            try:
                session.close()
            except Exception as e:
                logger.warning("Error closing %r: %s", session, e)
                if first_error is None:
                    first_error = e

        if first_error is not None:
            raise first_error
