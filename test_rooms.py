"""Tests for the room registry, validators and broadcast."""
import asyncio
import pytest
from websockets.protocol import State

from rooms import MAX_BACKLOG, MAX_MEMBERS, Room, send_nowait, validate_code, validate_username
from conftest import CODE, BrokenConnection, FakeConnection, settle

@pytest.mark.parametrize('code', [
    'ABCD-1234-WXYZ-9876',
    'abcd-efgh-ijkl-mnop',
    '0000-0000-0000-0000',
])
def test_valid_codes(code):
    assert validate_code(code)

@pytest.mark.parametrize('code', [
    'abcd-efgh',
    'ABCD-1234-WXYZ-987',
    'ABCD-1234-WXYZ-98765',
    'ABCD_1234_WXYZ_9876',
    'ABCD-12!4-WXYZ-9876',
    ' ABCD-1234-WXYZ-9876',
    'ABCD-1234-WXYZ-9876\n',
    '',
    None,
    1234,
])
def test_invalid_codes(code):
    assert not validate_code(code)

@pytest.mark.parametrize('name', ['a', 'Bob', 'x' * 16, 'User42'])
def test_valid_usernames(name):
    assert validate_username(name)

@pytest.mark.parametrize('name', ['', 'x' * 17, 'bob smith', 'bob!', 'émile', None, 7])
def test_invalid_usernames(name):
    assert not validate_username(name)

def test_get_or_create_reuses_room(registry):
    room = registry.get_or_create(CODE)
    assert registry.get_or_create(CODE) is room
    assert CODE in registry and len(registry) == 1

def test_remove_if_empty(registry):
    room = registry.get_or_create(CODE)
    room.add('a', FakeConnection(), 'alice')
    assert not registry.remove_if_empty(CODE)
    assert CODE in registry

    room.remove('a')
    assert registry.remove_if_empty(CODE)
    assert CODE not in registry
    assert not registry.remove_if_empty(CODE)

def test_username_taken_ignores_self():
    room = Room(CODE)
    room.add('a', FakeConnection(), 'bob')
    assert room.username_taken('bob')
    assert room.username_taken('bob', except_client_id='b')
    assert not room.username_taken('bob', except_client_id='a')
    assert not room.username_taken('Bob')

def test_room_capacity():
    room = Room(CODE)
    for i in range(MAX_MEMBERS - 1):
        room.add(str(i), FakeConnection(), f'user{i}')
    assert not room.is_full()
    room.add('last', FakeConnection(), 'last')
    assert room.is_full()

@pytest.mark.asyncio
async def test_broadcast_skips_sender_and_closed(registry):
    room = registry.get_or_create(CODE)
    conns = {cid: FakeConnection() for cid in 'abc'}
    for cid, conn in conns.items():
        room.add(cid, conn, cid)
    conns['c'].state = State.CLOSED

    assert registry.broadcast(CODE, 'a', {'type': 'message', 'content': 'hi'}) == 1
    await settle()
    assert conns['a'].sent == []
    assert conns['b'].sent == [{'type': 'message', 'content': 'hi'}]
    assert conns['c'].sent == []

@pytest.mark.asyncio
async def test_broadcast_continues_past_failures(registry, capsys):
    room = registry.get_or_create(CODE)
    ok1, ok2 = FakeConnection(), FakeConnection()
    room.add('1', ok1, 'one')
    room.add('2', BrokenConnection(), 'two')
    room.add('3', ok2, 'three')

    assert registry.broadcast(CODE, None, {'type': 'pong'}) == 3
    await settle()
    assert ok1.sent == [{'type': 'pong'}]
    assert ok2.sent == [{'type': 'pong'}]
    assert 'send failed' in capsys.readouterr().out

@pytest.mark.asyncio
async def test_broadcast_unknown_room_is_noop(registry):
    assert registry.broadcast(CODE, None, {'type': 'pong'}) == 0
    assert CODE not in registry

@pytest.mark.asyncio
async def test_send_nowait_survives_synchronous_failure(capsys):
    class Exploding(FakeConnection):
        def send(self, text):
            raise RuntimeError('boom')

    assert not send_nowait(Exploding(), {'type': 'pong'})
    assert 'boom' in capsys.readouterr().out

@pytest.mark.asyncio
async def test_slow_peer_backlog_is_capped(registry, capsys):
    release = asyncio.Event()

    class Stalled(FakeConnection):
        async def send(self, text):
            await release.wait()
            await super().send(text)

    slow, fast = Stalled(), FakeConnection()
    room = registry.get_or_create(CODE)
    room.add('slow', slow, 'slow')
    room.add('fast', fast, 'fast')

    for i in range(MAX_BACKLOG + 5):
        registry.broadcast(CODE, None, {'type': 'message', 'content': str(i)})
    await settle()
    assert len(fast.sent) == MAX_BACKLOG + 5
    assert slow.sent == []
    assert not send_nowait(slow, {'type': 'pong'})
    assert 'dropped frame' in capsys.readouterr().out

    release.set()
    await settle()
    assert len(slow.sent) == MAX_BACKLOG
    assert send_nowait(slow, {'type': 'pong'})
    await settle()
    assert slow.last == {'type': 'pong'}
