"""Headless relay chat client, no browser needed.

Speaks the same JSON protocol as relay.py. Simple connect/send/receive API:

    client = RelayClient('ws://localhost:8080', nick='bot')
    await client.connect()
    await client.join(generate_code())
    await client.send('hello')
    msg = await client.receive()  # blocks until message arrives
    await client.leave()

Run as a script for an interactive terminal chat:
    python3 relay_client.py --url ws://localhost:8080 --nick alice [--code XXXX-XXXX-XXXX-XXXX]
"""
import asyncio, argparse, json, secrets, string, sys, uuid
from dataclasses import dataclass, field
from typing import Optional
import websockets
from websockets.exceptions import ConnectionClosed

CODE_ALPHABET = string.ascii_letters + string.digits

def generate_code() -> str:
    """Random room code in XXXX-XXXX-XXXX-XXXX form."""
    return '-'.join(''.join(secrets.choice(CODE_ALPHABET) for _ in range(4)) for _ in range(4))

class RelayError(Exception):
    """Server answered with an error frame."""

# errors answering a relayed frame rather than a connect/join/ping
RELAY_ERRORS = ('Invalid message format or not in a chat', 'Not in chat')

@dataclass
class Message:
    type: str  # 'message', 'image', 'join-notify', 'client-disconnected', ...
    message_id: str = ''
    client_id: str = ''
    username: str = ''
    content: str = ''
    data: str = ''
    total_clients: int = 0
    error: str = ''
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_wire(cls, msg: dict) -> 'Message':
        return cls(
            type=msg.get('type', ''),
            message_id=msg.get('messageId', ''),
            client_id=msg.get('clientId', ''),
            username=msg.get('username', ''),
            content=msg.get('content', ''),
            data=msg.get('data', ''),
            total_clients=msg.get('totalClients', 0),
            error=msg.get('message', '') if msg.get('type') == 'error' else '',
            raw=msg,
        )

class RelayClient:
    def __init__(self, url: str, nick: str = 'relay-agent', client_id: Optional[str] = None):
        self.url = url
        self.nick = nick
        self.client_id = client_id
        self.code: Optional[str] = None
        self.ws = None
        self._msg_queue: asyncio.Queue = asyncio.Queue()
        self._replies: asyncio.Queue = asyncio.Queue()  # connected/joined/pong/error
        self._waiting = 0  # requests sent, reply not yet taken
        self._reader: Optional[asyncio.Task] = None

    async def _send_raw(self, msg: dict):
        await self.ws.send(json.dumps(msg))

    async def _read_loop(self):
        try:
            async for raw in self.ws:
                try:
                    msg = json.loads(raw)
                except ValueError as e:
                    print(f'[relay_client] parse error: {e}')
                    continue
                if self._is_reply(msg):
                    await self._replies.put(msg)
                else:
                    await self._msg_queue.put(Message.from_wire(msg))
        except ConnectionClosed:
            pass

    def _is_reply(self, msg: dict) -> bool:
        if msg.get('type') in ('connected', 'joined', 'pong'):
            return True
        return (msg.get('type') == 'error' and self._waiting > 0
                and msg.get('message') not in RELAY_ERRORS)

    async def _request(self, msg: dict, timeout: float) -> dict:
        """Send a frame that gets exactly one reply and wait for it."""
        self._waiting += 1
        try:
            await self._send_raw(msg)
            msg = await asyncio.wait_for(self._replies.get(), timeout)
        finally:
            self._waiting -= 1
        if msg['type'] == 'error':
            raise RelayError(msg.get('message', 'unknown error'))
        return msg

    # ============ PUBLIC API ============

    async def connect(self, timeout: float = 10.0) -> str:
        """Open the socket and identify. Returns the assigned client id."""
        self.ws = await websockets.connect(self.url)
        self._reader = asyncio.ensure_future(self._read_loop())
        msg = {'type': 'connect'}
        if self.client_id:
            msg['clientId'] = self.client_id
        reply = await self._request(msg, timeout)
        self.client_id = reply['clientId']
        return self.client_id

    async def join(self, code: str, timeout: float = 10.0) -> dict:
        """Join a room. Returns the `joined` reply, raises RelayError if refused."""
        reply = await self._request({'type': 'join', 'code': code, 'username': self.nick,
                                     'clientId': self.client_id}, timeout)
        self.code = code
        return reply

    async def send(self, text: str) -> str:
        """Send a chat message. Returns its message id."""
        message_id = str(uuid.uuid4())
        await self._send_raw({'type': 'message', 'messageId': message_id,
                              'username': self.nick, 'content': text})
        return message_id

    async def send_image(self, data: str) -> str:
        """Send an image (typically a data: URL). Returns its message id."""
        message_id = str(uuid.uuid4())
        await self._send_raw({'type': 'image', 'messageId': message_id,
                              'username': self.nick, 'data': data})
        return message_id

    async def ping(self, timeout: float = 10.0):
        await self._request({'type': 'ping'}, timeout)

    async def receive(self, timeout: float = None) -> Message:
        """Receive next relayed message, room notice or unsolicited error.

        Blocks until one arrives; timeout=None waits forever.
        """
        if timeout is not None:
            return await asyncio.wait_for(self._msg_queue.get(), timeout)
        return await self._msg_queue.get()

    def has_messages(self) -> bool:
        return not self._msg_queue.empty()

    async def leave(self):
        """Leave the room; the server closes the connection afterwards."""
        if self.ws is not None:
            try:
                await self._send_raw({'type': 'leave'})
                await self.ws.wait_closed()
            except ConnectionClosed:
                pass
        await self.close()

    async def close(self):
        if self.ws is not None:
            await self.ws.close()
        if self._reader is not None:
            await self._reader
            self._reader = None
        self.code = None

    @property
    def connected(self) -> bool:
        return self._reader is not None and not self._reader.done()

# ============ CLI ============

def _show(msg: Message):
    if msg.type == 'message':
        print(f'[{msg.username}] {msg.content}')
    elif msg.type == 'image':
        print(f'[{msg.username}] <image, {len(msg.data)} bytes>')
    elif msg.type == 'join-notify':
        print(f'* {msg.username} joined ({msg.total_clients} here)')
    elif msg.type == 'client-disconnected':
        print(f'* someone left ({msg.total_clients} here)')
    elif msg.type == 'error':
        print(f'! {msg.error}')

async def chat(url: str, nick: str, code: Optional[str]):
    code = code or generate_code()
    client = RelayClient(url, nick=nick)
    await client.connect()
    try:
        reply = await client.join(code)
    except RelayError as e:
        print(f'Could not join {code}: {e}')
        await client.close()
        return
    print(f'Joined {code} ({reply["totalClients"]} here). Type /quit to leave.\n')

    async def printer():
        while True:
            _show(await client.receive())

    show = asyncio.ensure_future(printer())
    try:
        while True:
            line = (await asyncio.to_thread(sys.stdin.readline))
            if not line or line.strip() == '/quit':
                break
            if line.strip():
                await client.send(line.rstrip('\n'))
    except (KeyboardInterrupt, ConnectionClosed):
        pass
    finally:
        show.cancel()
        await client.leave()

def main():
    p = argparse.ArgumentParser()
    p.add_argument('--url', default='ws://localhost:8080')
    p.add_argument('--nick', required=True, help='1-16 letters or digits')
    p.add_argument('--code', help='Room code to join; a new one is generated if omitted')
    args = p.parse_args()
    asyncio.run(chat(args.url, args.nick, args.code))

if __name__ == '__main__':
    main()
