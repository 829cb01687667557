"""Inbound frame decoding.

Every frame is a JSON object with a `type` field. decode() turns it into
one of the records below; anything with an unrecognized type becomes
Unknown and is ignored by the session layer.
"""
import json
from dataclasses import dataclass
from typing import Any, Optional, Union

class ProtocolError(ValueError):
    """Frame could not be parsed into a message."""

@dataclass
class Connect:
    client_id: Optional[str] = None

@dataclass
class Join:
    code: Any = None
    username: Any = None
    client_id: Optional[str] = None

@dataclass
class Relay:
    type: str  # 'message' or 'image'
    message_id: Any = None
    username: Any = None
    content: Any = None  # text
    data: Any = None  # image

@dataclass
class Leave:
    pass

@dataclass
class Ping:
    pass

@dataclass
class Unknown:
    type: Any = None

Message = Union[Connect, Join, Relay, Leave, Ping, Unknown]

RELAY_TYPES = ('message', 'image')

def decode(raw: Union[str, bytes]) -> Message:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode()
        except UnicodeDecodeError as e:
            raise ProtocolError(f'frame is not UTF-8: {e}') from e
    try:
        msg = json.loads(raw)
    except (ValueError, RecursionError) as e:
        raise ProtocolError(f'frame is not JSON: {e}') from e
    if not isinstance(msg, dict):
        raise ProtocolError(f'expected a JSON object, got {type(msg).__name__}')

    msg_type = msg.get('type')
    if msg_type == 'connect':
        return Connect(client_id=msg.get('clientId'))
    elif msg_type == 'join':
        return Join(code=msg.get('code'), username=msg.get('username'),
                    client_id=msg.get('clientId'))
    elif msg_type in RELAY_TYPES:
        return Relay(
            type=msg_type,
            message_id=msg.get('messageId'),
            username=msg.get('username'),
            content=msg.get('content'),
            data=msg.get('data'),
        )
    elif msg_type == 'leave':
        return Leave()
    elif msg_type == 'ping':
        return Ping()
    return Unknown(type=msg_type)
