"""
Keepalive and rate-limit control loop
"""

import asyncio

from .constants import CLOSE_GOING_AWAY, CLOSE_POLICY_VIOLATION, CLOSE_REASONS
from .logger import get_logger, log_security_event, log_system_event
from .message_handler import MessageHandler
from .models import CommandType, Connection, create_server_packet

logger = get_logger()


class LivenessMonitor:
    """
    Runs once per keepalive interval:

    - terminates connections that did not acknowledge the previous probe
    - probes the rest
    - closes connections that reached the hard packet cap, otherwise resets
      their packet window
    - pushes a membership snapshot to every room
    - reaps rooms that stayed empty for ``room_idle_ticks`` ticks (if enabled)
    """

    def __init__(self, handler: MessageHandler):
        self.handler = handler
        self.registry = handler.registry
        self.settings = handler.settings
        self.ticks = 0

    def tick(self):
        for connection in self.registry.connections():
            try:
                self._check_connection(connection)
            except Exception:
                logger.exception(f"Keepalive failed for {connection.identity}")

        for room in self.registry.rooms():
            self.handler.push_userlist(room)

        self.registry.reap_empty_rooms(self.settings.room_idle_ticks)
        self.ticks += 1
        log_system_event("keepalive_tick", f"tick={self.ticks} connections={len(self.registry)}", level="debug")

    def _check_connection(self, connection: Connection):
        if not connection.alive:
            log_security_event("keepalive_timeout", {"user": connection.identity})
            connection.terminate(CLOSE_GOING_AWAY, CLOSE_REASONS["keepalive"])
            self.handler.close_connection(connection)
            return

        connection.alive = False
        self.handler.deliver(connection, create_server_packet(CommandType.PING, None))

        if connection.packet_count >= self.settings.hard_packet_cap:
            log_security_event("rate_limit_disconnect", {
                "user": connection.identity,
                "packets": connection.packet_count,
                "hard_cap": self.settings.hard_packet_cap,
            })
            connection.close(CLOSE_POLICY_VIOLATION, CLOSE_REASONS["rate_limit"])
            self.handler.close_connection(connection)
            return

        connection.reset_window()

    async def run(self):
        """Tick forever at the configured interval"""
        while True:
            try:
                await asyncio.sleep(self.settings.keepalive_interval)
                self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Keepalive loop error: {e}")
