"""Room registry for the chat relay.

A room lives only while it has members: it is created on the first
successful join and dropped as soon as the last member goes away.
"""
import asyncio, json, re
from dataclasses import dataclass
from typing import Optional
from websockets.protocol import State

MAX_MEMBERS = 10

CODE_RE = re.compile(r'[A-Za-z0-9]{4}-[A-Za-z0-9]{4}-[A-Za-z0-9]{4}-[A-Za-z0-9]{4}')
USERNAME_RE = re.compile(r'[A-Za-z0-9]{1,16}')

# ============ VALIDATION ============

def validate_code(code) -> bool:
    """XXXX-XXXX-XXXX-XXXX, alphanumeric groups, case preserved."""
    return isinstance(code, str) and CODE_RE.fullmatch(code) is not None

def validate_username(username) -> bool:
    """1-16 alphanumeric characters."""
    return isinstance(username, str) and USERNAME_RE.fullmatch(username) is not None

# ============ SENDING ============

MAX_BACKLOG = 64  # in-flight sends per connection before frames are dropped

_pending = set()  # in-flight send tasks, kept alive until done
_backlog: dict = {}  # connection -> in-flight sends

def is_open(connection) -> bool:
    return getattr(connection, 'state', None) is State.OPEN

def _send_done(task: asyncio.Task, connection):
    _pending.discard(task)
    left = _backlog.pop(connection, 1) - 1
    if left > 0:
        _backlog[connection] = left
    if task.cancelled():
        return
    err = task.exception()
    if err is not None:
        print(f'[rooms] send failed: {err!r}')

def _schedule(connection, make_awaitable) -> bool:
    try:
        task = asyncio.ensure_future(make_awaitable())
    except Exception as e:
        print(f'[rooms] send failed: {e!r}')
        return False
    _pending.add(task)
    _backlog[connection] = _backlog.get(connection, 0) + 1
    task.add_done_callback(lambda t: _send_done(t, connection))
    return True

def send_nowait(connection, payload: dict) -> bool:
    """Queue payload on connection without waiting for the peer.

    Returns False when the connection is not open, already has MAX_BACKLOG
    sends in flight, or the send could not be scheduled. Failures are
    logged, never raised.
    """
    if not is_open(connection):
        return False
    if _backlog.get(connection, 0) >= MAX_BACKLOG:
        print(f'[rooms] dropped frame for slow peer {getattr(connection, "id", "?")}')
        return False
    text = json.dumps(payload)
    return _schedule(connection, lambda: connection.send(text))

def close_nowait(connection) -> bool:
    """Start a server-side close of connection."""
    if not is_open(connection):
        return False
    return _schedule(connection, connection.close)

# ============ ROOMS ============

@dataclass
class Member:
    connection: object
    username: str

class Room:
    def __init__(self, code: str, max_members: int = MAX_MEMBERS):
        self.code = code
        self.max_members = max_members
        self.members: dict[str, Member] = {}  # client_id -> Member

    def __len__(self):
        return len(self.members)

    def __contains__(self, client_id):
        return client_id in self.members

    def add(self, client_id: str, connection, username: str):
        self.members[client_id] = Member(connection, username)

    def remove(self, client_id: str) -> Optional[Member]:
        return self.members.pop(client_id, None)

    def username_taken(self, username: str, except_client_id: Optional[str] = None) -> bool:
        """True if a member other than except_client_id already uses username."""
        return any(m.username == username and cid != except_client_id
                   for cid, m in self.members.items())

    def is_full(self) -> bool:
        return len(self.members) >= self.max_members

    def usernames(self) -> list[str]:
        return [m.username for m in self.members.values()]

class RoomRegistry:
    """All active rooms, keyed by code."""

    def __init__(self, max_members: int = MAX_MEMBERS):
        self.max_members = max_members
        self._rooms: dict[str, Room] = {}

    def __len__(self):
        return len(self._rooms)

    def __contains__(self, code):
        return code in self._rooms

    def get(self, code: str) -> Optional[Room]:
        return self._rooms.get(code)

    def get_or_create(self, code: str) -> Room:
        room = self._rooms.get(code)
        if room is None:
            room = self._rooms[code] = Room(code, self.max_members)
        return room

    def remove_if_empty(self, code: str) -> bool:
        """Drop the room if nobody is left. Returns True if it was removed."""
        room = self._rooms.get(code)
        if room is not None and not room.members:
            del self._rooms[code]
            print(f'[rooms] Chat {code} is empty, removed')
            return True
        return False

    def broadcast(self, code: str, exclude_client_id: Optional[str], payload: dict) -> int:
        """Send payload to every open member except the sender.

        Returns the number of sends scheduled.
        """
        room = self._rooms.get(code)
        if room is None:
            return 0
        sent = 0
        for client_id, member in list(room.members.items()):
            if client_id == exclude_client_id:
                continue
            if send_nowait(member.connection, payload):
                sent += 1
        return sent
