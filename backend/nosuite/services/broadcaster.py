"""
Realtime change broadcaster

Keeps the live connections of each authenticated user and fans file-change
events out to all of them. Every connection of the user receives the event,
the one that caused the change included, with by_self set so that the
originator can skip its own refresh. Delivery is best effort: nothing is
queued for disconnected clients, they re-sync with ls on reconnect.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from nosuite.schemas.storage import FileChangeEvent

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class LiveConnection:
    connection: Any  # anything with an async send_json(dict)
    email: str
    app_origin: str
    client_id: Optional[str] = None


class ConnectionRegistry:
    """Email -> live connections, owned by one application instance"""

    def __init__(self):
        self._lock = threading.Lock()
        self._by_email: Dict[str, Dict[Any, LiveConnection]] = {}

    def register(
        self,
        connection: Any,
        email: str,
        app_origin: str,
        client_id: Optional[str] = None,
    ) -> LiveConnection:
        live = LiveConnection(connection, email, app_origin, client_id)
        with self._lock:
            self._by_email.setdefault(email, {})[connection] = live
        logger.debug("Registered connection for %s (%s)", email, app_origin)
        return live

    def unregister(self, connection: Any) -> None:
        """Forget a connection under every user it was registered for"""
        with self._lock:
            for email in list(self._by_email):
                users_connections = self._by_email[email]
                users_connections.pop(connection, None)
                if not users_connections:
                    del self._by_email[email]

    def connections_for(self, email: str) -> List[LiveConnection]:
        with self._lock:
            return list(self._by_email.get(email, {}).values())

    def count(self) -> int:
        with self._lock:
            return sum(len(c) for c in self._by_email.values())

    async def broadcast(
        self,
        email: str,
        event: FileChangeEvent,
        origin_client_id: Optional[str] = None,
    ) -> int:
        """Send event to every connection of email, returns the number reached"""
        delivered = 0
        for live in self.connections_for(email):
            by_self = origin_client_id is not None and live.client_id == origin_client_id
            message = {
                "event": "file-change",
                "data": event.model_copy(update={"by_self": by_self}).model_dump(),
            }
            try:
                await live.connection.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping connection of {email} after failed send: {e}")
                self.unregister(live.connection)
        return delivered
