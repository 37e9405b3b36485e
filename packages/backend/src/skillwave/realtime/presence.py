"""Presence registry — who is connected and which rooms they joined.

One room per help request. The registry keeps four maps, all process-local:

    users:             user_id  → live connection (at most one per user)
    user_rooms:        user_id  → {room_id, ...}
    room_users:        room_id  → {user_id, ...}
    room_connections:  room_id  → {connection, ...}

room_connections is the delivery group (every socket that joined, even one
later superseded by a newer socket for the same user). room_users is the
membership used for notifications and user_left_room bookkeeping.

All mutation happens on the event loop between awaits, so no locks. Nothing
here is persisted: after a restart clients must reconnect and rejoin.
"""

from typing import Iterable, Optional, Protocol


class Connection(Protocol):
    """Anything the gateway can push frames to."""

    id: str
    user_id: str

    async def send(self, event: str, data: dict) -> None: ...


class PresenceRegistry:
    """Explicit owner of the gateway's presence bookkeeping."""

    def __init__(self) -> None:
        self._users: dict[str, Connection] = {}
        self._user_rooms: dict[str, set[str]] = {}
        self._room_users: dict[str, set[str]] = {}
        self._room_connections: dict[str, set[Connection]] = {}
        self._connection_rooms: dict[str, set[str]] = {}

    # ─── Connections ─────────────────────────────────────

    def connect(self, conn: Connection) -> Optional[Connection]:
        """Register a connection for its user, replacing any previous one.

        Returns the superseded connection (not closed) or None.
        """
        previous = self._users.get(conn.user_id)
        self._users[conn.user_id] = conn
        self._user_rooms.setdefault(conn.user_id, set())
        self._connection_rooms.setdefault(conn.id, set())
        return previous if previous is not conn else None

    def disconnect(self, conn: Connection) -> list[str]:
        """Forget a connection.

        The connection leaves every room group it was in. If it is still
        the user's registered connection, the user is dropped from the
        registry and from every room's member set, and the rooms the user
        left are returned (for user_left_room fan-out). A superseded
        connection returns [] and leaves the user's presence untouched.
        """
        for room_id in self._connection_rooms.pop(conn.id, set()):
            self._discard_connection(room_id, conn)

        if self._users.get(conn.user_id) is not conn:
            return []

        del self._users[conn.user_id]
        left = sorted(self._user_rooms.pop(conn.user_id, set()))
        for room_id in left:
            self._discard_user(room_id, conn.user_id)
        return left

    def get_connection(self, user_id: str) -> Optional[Connection]:
        return self._users.get(user_id)

    def is_connected(self, user_id: str) -> bool:
        return user_id in self._users

    def connections(self) -> list[Connection]:
        """Every registered connection (one per user)."""
        return list(self._users.values())

    # ─── Rooms ───────────────────────────────────────────

    def join(self, room_id: str, conn: Connection) -> None:
        """Add a connection to a room and its user to the member set."""
        self._room_connections.setdefault(room_id, set()).add(conn)
        self._connection_rooms.setdefault(conn.id, set()).add(room_id)
        self._user_rooms.setdefault(conn.user_id, set()).add(room_id)
        self._room_users.setdefault(room_id, set()).add(conn.user_id)

    def leave(self, room_id: str, conn: Connection) -> None:
        """Remove a connection and its user from a room.

        Empty rooms are deleted from both room maps.
        """
        rooms = self._connection_rooms.get(conn.id)
        if rooms is not None:
            rooms.discard(room_id)
        self._discard_connection(room_id, conn)

        user_rooms = self._user_rooms.get(conn.user_id)
        if user_rooms is not None:
            user_rooms.discard(room_id)
        self._discard_user(room_id, conn.user_id)

    def room_members(self, room_id: str) -> set[str]:
        """User ids currently joined to a room (copy)."""
        return set(self._room_users.get(room_id, ()))

    def room_connections(
        self,
        room_id: str,
        exclude: Optional[str] = None,
    ) -> list[Connection]:
        """Connections in a room's delivery group, minus an excluded connection id."""
        return [
            c for c in self._room_connections.get(room_id, ())
            if c.id != exclude
        ]

    def user_rooms(self, user_id: str) -> set[str]:
        return set(self._user_rooms.get(user_id, ()))

    def has_room(self, room_id: str) -> bool:
        return room_id in self._room_users or room_id in self._room_connections

    def resolve(self, user_ids: Iterable[str]) -> list[Connection]:
        """Registered connections for the given users, skipping offline ones."""
        conns = []
        for user_id in user_ids:
            conn = self._users.get(user_id)
            if conn is not None:
                conns.append(conn)
        return conns

    def clear(self) -> None:
        self._users.clear()
        self._user_rooms.clear()
        self._room_users.clear()
        self._room_connections.clear()
        self._connection_rooms.clear()

    # ─── Internals ───────────────────────────────────────

    def _discard_connection(self, room_id: str, conn: Connection) -> None:
        group = self._room_connections.get(room_id)
        if group is None:
            return
        group.discard(conn)
        if not group:
            del self._room_connections[room_id]

    def _discard_user(self, room_id: str, user_id: str) -> None:
        members = self._room_users.get(room_id)
        if members is None:
            return
        members.discard(user_id)
        if not members:
            del self._room_users[room_id]
