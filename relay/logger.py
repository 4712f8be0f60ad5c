"""
Logging configuration for the relay server
"""

import logging
import re
import sys
from typing import Optional

from .constants import LOG_LEVEL

LOGGER_NAME = "relay"

_SECRET_PATTERN = re.compile(r"(token|password)=([^\s|,}]+)")


class SecureFormatter(logging.Formatter):
    """Formatter that masks secrets before they reach a handler"""

    def format(self, record):
        message = super().format(record)
        return _SECRET_PATTERN.sub(r"\1=***", message)


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    """
    Get the relay logger, attaching a stdout handler on first use

    Args:
        name: Logger name

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(SecureFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        logger.addHandler(handler)
        logger.setLevel(LOG_LEVEL)

        # Keep relay output out of uvicorn's root handlers
        logger.propagate = False

    return logger


def set_log_level(level: str):
    """Apply a configured log level to the relay logger"""
    get_logger().setLevel(level)


def log_security_event(event_type: str, details: dict, logger: Optional[logging.Logger] = None):
    """
    Log policy rejections, rate limits and evictions

    Args:
        event_type: Type of security event
        details: Event details
        logger: Logger instance (optional)
    """
    if logger is None:
        logger = get_logger()
    logger.warning(f"SECURITY_EVENT: {event_type} | {details}")


def log_connection_event(identity: str, room, action: str, ip_address: str = "unknown"):
    """
    Log connection lifecycle events

    Args:
        identity: Connection identity
        room: Current room id, or None
        action: Action (connect/disconnect/rekey/terminate)
        ip_address: Client IP address
    """
    get_logger().info(f"CONNECTION_EVENT: {action} | user={identity} | room={room} | ip={ip_address}")


def log_packet_event(action: str, sender: str, origin_type: str, details: str = ""):
    """
    Log routing decisions for a single inbound packet

    Args:
        action: Action (rejected/forward/join/rename/info/auth)
        sender: Sender identity
        origin_type: Command type of the inbound packet
        details: Additional details
    """
    get_logger().info(f"PACKET_EVENT: {action} | user={sender} | type={origin_type} | {details}")


def log_websocket_event(event_type: str, connection_id: str, details: str = ""):
    """Log WebSocket transport events (debug level)"""
    get_logger().debug(f"WEBSOCKET_EVENT: {event_type} | conn={connection_id} | {details}")


def log_system_event(event_type: str, details: str, level: str = "info"):
    """
    Log system-level events

    Args:
        event_type: Type of system event
        details: Event details
        level: Log level (debug/info/warning/error)
    """
    logger = get_logger()
    log_message = f"SYSTEM_EVENT: {event_type} | {details}"

    if level == "warning":
        logger.warning(log_message)
    elif level == "error":
        logger.error(log_message)
    elif level == "debug":
        logger.debug(log_message)
    else:
        logger.info(log_message)
