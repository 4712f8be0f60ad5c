"""
WebSocket Relay Client Example for Testing
Scripted scenarios and an interactive shell for the relay protocol
"""

import argparse
import asyncio
import itertools
import json
import sys
import time
from typing import Any, Dict, List, Optional, Union

import websockets

_packet_ids = itertools.count(int(time.time() * 1000))


def next_packet_id() -> int:
    return next(_packet_ids)


def build_packet(command_type: str, targets: Union[List[Any], bool, None] = None,
                 data: Any = None, meta: Any = None, packet_id: Optional[int] = None) -> Dict[str, Any]:
    """Build an inbound packet in the relay's wire format"""
    return {
        "command": {"type": command_type, "meta": meta},
        "targets": targets,
        "data": data,
        "id": packet_id if packet_id is not None else next_packet_id(),
    }


def join_room(room_id: Union[int, float]) -> Dict[str, Any]:
    return build_packet("room", targets=[room_id])


def set_username(username: str) -> Dict[str, Any]:
    return build_packet("username", data=username)


def send_packet(data: Any, targets: Union[List[Any], bool, None] = True, meta: Any = None) -> Dict[str, Any]:
    return build_packet("packet", targets=targets, data=data, meta=meta)


def request_info() -> Dict[str, Any]:
    return build_packet("info")


def authenticate(uuid: str, token: str) -> Dict[str, Any]:
    return build_packet("auth", data={"uuid": uuid, "token": token})


def pong() -> Dict[str, Any]:
    return build_packet("pong")


def describe(message: Dict[str, Any]) -> str:
    """One-line human readable rendering of a server frame"""
    if message.get("packetState") == 0:
        return (f"↩️  {message.get('originType')} #{message.get('id')} -> "
                f"{message.get('status')} {json.dumps(message.get('data'))}")

    command_type = (message.get("command") or {}).get("type")
    data = message.get("data")
    if command_type == "uuid":
        return f"🆔 Assigned identity {data}"
    if command_type == "userlist":
        names = ", ".join(entry.get("username", "?") for entry in data or [])
        return f"👥 Room members ({len(data or [])}): {names}"
    if command_type == "packet":
        return f"📨 {message.get('sender')}: {json.dumps(data)}"
    if command_type == "error":
        return f"❌ Server error {data}"
    return f"❓ {command_type}: {json.dumps(data)}"


class RelayClient:
    """Relay client that keeps the connection alive by answering probes"""

    def __init__(self, server_url: str = "ws://localhost:1958/", room: Optional[int] = None):
        self.server_url = server_url
        self.room = room
        self.websocket = None
        self.identity: Optional[str] = None
        self.received: List[Dict[str, Any]] = []
        self.running = False

    @property
    def url(self) -> str:
        if self.room is None:
            return self.server_url
        separator = "&" if "?" in self.server_url else "?"
        return f"{self.server_url}{separator}roomid={self.room}"

    async def connect(self) -> bool:
        """Connect to the relay"""
        try:
            self.websocket = await websockets.connect(self.url)
            print(f"✅ Connected to {self.url}")
            return True
        except Exception as e:
            print(f"❌ Connection failed: {e}")
            return False

    async def send(self, packet: Dict[str, Any]) -> bool:
        if not self.websocket:
            return False

        try:
            await self.websocket.send(json.dumps(packet))
            print(f"📤 {packet['command']['type']} #{packet['id']}")
            return True
        except Exception as e:
            print(f"❌ Send failed: {e}")
            return False

    def handle_frame(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Record a server frame and return the reply it needs, if any

        Liveness probes are answered with a pong; the identity packet is
        remembered so later commands can be addressed.
        """
        self.received.append(message)
        command_type = (message.get("command") or {}).get("type")

        if command_type == "ping":
            return pong()
        if command_type == "uuid":
            self.identity = message.get("data")

        print(describe(message))
        return None

    async def listen_for_messages(self):
        """Listen for incoming frames"""
        if not self.websocket:
            return

        while self.running:
            try:
                raw = await asyncio.wait_for(self.websocket.recv(), timeout=1.0)
                reply = self.handle_frame(json.loads(raw))
                if reply is not None:
                    await self.websocket.send(json.dumps(reply))

            except asyncio.TimeoutError:
                continue
            except websockets.exceptions.ConnectionClosed as e:
                print(f"🔌 Connection closed by server ({e.code})")
                break
            except json.JSONDecodeError:
                print("❌ Server sent invalid JSON")
            except Exception as e:
                print(f"❌ Message receive error: {e}")
                break

        self.running = False

    async def disconnect(self):
        """Disconnect from server"""
        self.running = False
        if self.websocket:
            try:
                await self.websocket.close()
                print("🔌 Disconnected from server")
            except websockets.exceptions.WebSocketException as e:
                print(f"❌ Close failed: {e}")

    async def run_interactive(self):
        """Run an interactive session"""
        if not await self.connect():
            return

        self.running = True
        listen_task = asyncio.create_task(self.listen_for_messages())
        loop = asyncio.get_running_loop()

        try:
            print("\n🎮 Interactive mode started!")
            print("Commands: /room N, /name NAME, /info, /to UUID TEXT, /auth UUID TOKEN, /quit")
            print("Anything else is broadcast to your room")
            print("-" * 50)

            while self.running:
                try:
                    user_input = (await loop.run_in_executor(None, input, "> ")).strip()
                except (KeyboardInterrupt, EOFError):
                    break

                if not user_input:
                    continue
                packet = parse_command(user_input)
                if packet == "quit":
                    break
                if packet is None:
                    print("❓ Unrecognised command")
                    continue
                await self.send(packet)

        finally:
            self.running = False
            listen_task.cancel()
            await self.disconnect()


def parse_command(line: str):
    """Translate an interactive shell line into a packet, "quit", or None"""
    if not line.startswith("/"):
        return send_packet({"text": line}, True)

    parts = line.split(maxsplit=2)
    name = parts[0]

    if name == "/quit":
        return "quit"
    if name == "/info":
        return request_info()
    if name == "/room" and len(parts) >= 2:
        try:
            return join_room(int(parts[1]))
        except ValueError:
            return None
    if name == "/name" and len(parts) >= 2:
        return set_username(line.split(maxsplit=1)[1])
    if name == "/to" and len(parts) == 3:
        return send_packet({"text": parts[2]}, [parts[1]])
    if name == "/auth" and len(parts) == 3:
        return authenticate(parts[1], parts[2])
    return None


async def scenario_room_broadcast(server_url: str):
    """Scenario: two clients share a room and see each other's broadcasts"""
    print("\n🧪 Scenario: Room Broadcast")
    print("=" * 60)

    async def alice():
        client = RelayClient(server_url, room=7)
        if await client.connect():
            client.running = True
            listen_task = asyncio.create_task(client.listen_for_messages())

            await asyncio.sleep(1)
            await client.send(set_username("alice"))
            await client.send(send_packet({"text": "Hello room 7!"}))

            await asyncio.sleep(3)
            listen_task.cancel()
            await client.disconnect()

    async def bob():
        await asyncio.sleep(0.5)
        client = RelayClient(server_url, room=7)
        if await client.connect():
            client.running = True
            listen_task = asyncio.create_task(client.listen_for_messages())

            await asyncio.sleep(2)
            await client.send(send_packet({"text": "Hi alice"}))
            await client.send(request_info())

            await asyncio.sleep(2)
            listen_task.cancel()
            await client.disconnect()

    await asyncio.gather(alice(), bob())
    print("✅ Room broadcast scenario completed")


async def scenario_username_conflict(server_url: str):
    """Scenario: the second client asking for a taken name gets 409"""
    print("\n🧪 Scenario: Username Conflict")
    print("=" * 60)

    first = RelayClient(server_url)
    second = RelayClient(server_url)
    if not (await first.connect() and await second.connect()):
        return

    for client in (first, second):
        client.running = True
    tasks = [asyncio.create_task(client.listen_for_messages()) for client in (first, second)]

    await first.send(set_username("carol"))
    await asyncio.sleep(0.5)
    await second.send(set_username("carol"))
    await asyncio.sleep(1)

    for task in tasks:
        task.cancel()
    await first.disconnect()
    await second.disconnect()
    print("✅ Username conflict scenario completed")


async def main():
    """Main function with command line interface"""
    parser = argparse.ArgumentParser(description="WebSocket Relay Client")
    parser.add_argument("--server", default="ws://localhost:1958/", help="Server URL")
    parser.add_argument("--room", type=int, default=None, help="Room to join on connect")
    parser.add_argument("--scenario", choices=["broadcast", "conflict"], help="Run a scripted scenario")

    args = parser.parse_args()

    if args.scenario == "broadcast":
        await scenario_room_broadcast(args.server)
    elif args.scenario == "conflict":
        await scenario_username_conflict(args.server)
    else:
        client = RelayClient(args.server, args.room)
        await client.run_interactive()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
    except Exception as e:
        print(f"❌ Client error: {e}")
        sys.exit(1)
