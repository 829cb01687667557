"""Shared fixtures: an in-memory stand-in for a websocket connection."""
import asyncio, json, uuid
import pytest
from websockets.protocol import State

from rooms import RoomRegistry
from sessions import SessionManager

CODE = 'ABCD-1234-WXYZ-9876'
OTHER_CODE = 'wxyz-0000-abcd-1111'

class FakeConnection:
    def __init__(self):
        self.id = uuid.uuid4()
        self.state = State.OPEN
        self.sent = []
        self.close_calls = 0

    async def send(self, text):
        self.sent.append(json.loads(text))

    async def close(self):
        self.close_calls += 1
        self.state = State.CLOSED

    def of_type(self, msg_type):
        return [m for m in self.sent if m['type'] == msg_type]

    @property
    def last(self):
        return self.sent[-1]

class BrokenConnection(FakeConnection):
    async def send(self, text):
        raise ConnectionResetError('peer went away')

async def settle():
    """Let scheduled sends run."""
    for _ in range(5):
        await asyncio.sleep(0)

def frame(**msg):
    return json.dumps(msg)

@pytest.fixture
def registry():
    return RoomRegistry()

@pytest.fixture
def manager(registry):
    return SessionManager(registry)

@pytest.fixture
def member(manager):
    """Factory: open a connection, identify it and join it to a room."""
    def make(username, code=CODE, client_id=None):
        conn = FakeConnection()
        manager.open(conn)
        manager.handle_message(conn.id, frame(type='connect', clientId=client_id))
        manager.handle_message(conn.id, frame(type='join', code=code, username=username))
        return conn
    return make
