"""
Writer side of a WebSocket connection
"""

from .constants import CLOSE_INTERNAL_ERROR, CLOSE_REASONS
from .logger import get_logger, log_websocket_event
from .models import CloseFrame, Connection

logger = get_logger()


async def pump_outbox(connection: Connection):
    """
    Drain a connection's outbox into its WebSocket until a close frame is
    reached or a send fails.
    """
    websocket = connection.websocket

    while True:
        frame = await connection.outbox.get()

        if isinstance(frame, CloseFrame):
            log_websocket_event("close", connection.identity, f"code={frame.code} reason={frame.reason}")
            try:
                await websocket.close(code=frame.code, reason=frame.reason)
            except Exception as e:
                logger.debug(f"Close failed for {connection.identity}: {e}")
            return

        try:
            await websocket.send_text(frame)
        except Exception as e:
            logger.warning(f"Send failed for {connection.identity}: {e}")
            connection.closed = True
            try:
                await websocket.close(code=CLOSE_INTERNAL_ERROR, reason=CLOSE_REASONS["send_failed"])
            except Exception:
                logger.debug(f"Close after failed send also failed for {connection.identity}")
            return
