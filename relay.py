#!/usr/bin/env python3
"""WebSocket relay server for room chat.

Clients join a room by code and everything they send is relayed to the
other members. Nothing is stored; a room disappears with its last member.

Usage:
    python3 relay.py [--host 0.0.0.0] [--port 8080] [--max-members 10]
"""
import asyncio, argparse, os
import websockets
from websockets.exceptions import ConnectionClosed

from rooms import MAX_MEMBERS, RoomRegistry
from sessions import SessionManager

def make_handler(manager: SessionManager):
    async def handle(ws):
        """Handle one WebSocket connection."""
        manager.open(ws)
        print(f'[relay] New client connected from {ws.remote_address}')
        try:
            async for msg in ws:
                manager.handle_message(ws.id, msg)
        except ConnectionClosed as e:
            print(f'[relay] Connection error: {e}')
        finally:
            manager.handle_close(ws.id)
            print('[relay] Client disconnected')
    return handle

def serve(host: str, port: int, manager: SessionManager):
    """Return the websockets server; use with `async with`."""
    return websockets.serve(make_handler(manager), host, port)

async def run(host: str, port: int, max_members: int = MAX_MEMBERS):
    manager = SessionManager(RoomRegistry(max_members=max_members))
    async with serve(host, port, manager):
        print(f'[relay] Server running on ws://{host}:{port}')
        await asyncio.Future()  # run forever

def main():
    p = argparse.ArgumentParser(description='Room chat relay server')
    p.add_argument('--host', default='0.0.0.0')
    p.add_argument('--port', type=int, default=int(os.environ.get('PORT', 8080)))
    p.add_argument('--max-members', type=int, default=MAX_MEMBERS, help='Members allowed per room')
    args = p.parse_args()
    try:
        asyncio.run(run(args.host, args.port, args.max_members))
    except KeyboardInterrupt:
        pass

if __name__ == '__main__':
    main()
