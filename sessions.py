"""Per-connection session state and the relay protocol state machine.

Every handler runs synchronously from start to finish. Outbound frames are
only scheduled (see rooms.send_nowait), so no other event can observe the
registry halfway through a join or a leave.
"""
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from protocol import Connect, Join, Leave, Ping, ProtocolError, Relay, decode
from rooms import RoomRegistry, close_nowait, send_nowait, validate_code, validate_username

class State(Enum):
    UNIDENTIFIED = 'unidentified'
    IDENTIFIED = 'identified'
    IN_ROOM = 'in_room'
    CLOSED = 'closed'

@dataclass
class Session:
    connection: object
    client_id: Optional[str] = None
    room_code: Optional[str] = None
    username: Optional[str] = None
    closed: bool = False

    @property
    def state(self) -> State:
        if self.closed:
            return State.CLOSED
        if self.room_code is not None:
            return State.IN_ROOM
        if self.client_id is not None:
            return State.IDENTIFIED
        return State.UNIDENTIFIED

def new_client_id() -> str:
    return str(uuid.uuid4())

class SessionManager:
    def __init__(self, registry: RoomRegistry, id_factory=new_client_id):
        self.registry = registry
        self.id_factory = id_factory
        self._sessions: dict = {}  # connection id -> Session

    def __len__(self):
        return len(self._sessions)

    def get(self, connection_id) -> Optional[Session]:
        return self._sessions.get(connection_id)

    # ============ LIFECYCLE ============

    def open(self, connection) -> Session:
        """Register a freshly accepted connection."""
        session = Session(connection)
        self._sessions[connection.id] = session
        return session

    def handle_close(self, connection_id):
        """Connection went away: drop membership and the session."""
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return
        session.closed = True
        if session.room_code is not None:
            code = session.room_code
            self._depart(session)
            print(f'[relay] Client {session.client_id} disconnected from chat {code}')

    def handle_message(self, connection_id, raw):
        session = self._sessions.get(connection_id)
        if session is None:
            return  # already left, close in progress
        try:
            msg = decode(raw)
        except ProtocolError as e:
            print(f'[relay] Error processing message: {e}')
            self._error(session, 'Invalid message format')
            return

        if isinstance(msg, Connect):
            self._connect(session, msg)
        elif isinstance(msg, Join):
            self._join(session, msg)
        elif isinstance(msg, Relay):
            self._relay(session, msg)
        elif isinstance(msg, Leave):
            self._leave(connection_id, session)
        elif isinstance(msg, Ping):
            send_nowait(session.connection, {'type': 'pong'})
        # anything else is ignored

    # ============ HANDLERS ============

    def _connect(self, session: Session, msg: Connect):
        if session.room_code is None:
            session.client_id = self._claim_client_id(session, msg.client_id)
        send_nowait(session.connection, {'type': 'connected', 'clientId': session.client_id})
        print(f'[relay] Client {session.client_id} connected')

    def _join(self, session: Session, msg: Join):
        if not validate_code(msg.code):
            self._error(session, 'Invalid code format')
            return
        if not validate_username(msg.username):
            self._error(session, 'Invalid username: 1-16 alphanumeric characters')
            return
        if session.client_id is None:
            session.client_id = self._claim_client_id(session, msg.client_id)

        code, username, client_id = msg.code, msg.username, session.client_id
        room = self.registry.get_or_create(code)
        if room.username_taken(username, except_client_id=client_id):
            self._error(session, 'Username already taken')
            self.registry.remove_if_empty(code)
            return
        if client_id not in room and room.is_full():
            self._error(session, 'Chat is full')
            self.registry.remove_if_empty(code)
            return

        if session.room_code is not None and session.room_code != code:
            self._depart(session)
        room.add(client_id, session.connection, username)
        session.room_code = code
        session.username = username
        print(f'[relay] Client {client_id} ({username}) joined chat {code}')

        total = len(room)
        send_nowait(session.connection, {'type': 'joined', 'code': code, 'totalClients': total})
        self.registry.broadcast(code, client_id, {
            'type': 'join-notify',
            'clientId': client_id,
            'username': username,
            'totalClients': total,
            'code': code,
        })

    def _relay(self, session: Session, msg: Relay):
        if (session.room_code is None or not msg.message_id or not msg.username
                or (not msg.content and not msg.data)):
            self._error(session, 'Invalid message format or not in a chat')
            return
        room = self.registry.get(session.room_code)
        if room is None or session.client_id not in room:
            self._error(session, 'Not in chat')
            return

        payload = {'type': msg.type, 'messageId': msg.message_id, 'username': msg.username}
        if msg.content is not None:
            payload['content'] = msg.content
        if msg.data is not None:
            payload['data'] = msg.data
        self.registry.broadcast(room.code, session.client_id, payload)
        print(f'[relay] Relayed {msg.type} from {session.client_id} ({session.username}) in chat {room.code}')

    def _leave(self, connection_id, session: Session):
        if session.room_code is not None:
            code = session.room_code
            self._depart(session)
            print(f'[relay] Client {session.client_id} left chat {code}')
        self._sessions.pop(connection_id, None)
        session.closed = True
        close_nowait(session.connection)

    # ============ HELPERS ============

    def _depart(self, session: Session):
        """Take session out of its room, notifying whoever is left."""
        code = session.room_code
        session.room_code = None
        session.username = None
        room = self.registry.get(code)
        if room is None or room.remove(session.client_id) is None:
            return
        if not self.registry.remove_if_empty(code):
            self.registry.broadcast(code, session.client_id, {
                'type': 'client-disconnected',
                'clientId': session.client_id,
                'totalClients': len(room),
                'code': code,
            })

    def _claim_client_id(self, session: Session, requested) -> str:
        """Use the requested id unless it is empty or another live session holds it."""
        if isinstance(requested, str) and requested and not any(
                s is not session and s.client_id == requested for s in self._sessions.values()):
            return requested
        return self.id_factory()

    def _error(self, session: Session, message: str):
        send_nowait(session.connection, {'type': 'error', 'message': message})
