"""
FastAPI WebSocket relay server
Clients connect, optionally join numeric rooms and exchange packets routed by the server
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from relay import (
    LivenessMonitor,
    MessageHandler,
    RelaySettings,
    RoomManager,
    get_logger,
    get_settings,
    log_system_event,
    log_websocket_event,
    pump_outbox,
    set_log_level,
)

logger = get_logger()


def create_app(settings: Optional[RelaySettings] = None) -> FastAPI:
    """Build the relay application around a fresh registry"""
    settings = settings or get_settings()
    set_log_level(settings.log_level)

    room_manager = RoomManager()
    message_handler = MessageHandler(room_manager, settings)
    monitor = LivenessMonitor(message_handler)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan management"""
        logger.info("Relay server starting up...")
        keepalive_task = asyncio.create_task(monitor.run())

        yield

        keepalive_task.cancel()
        await message_handler.aclose()
        logger.info("Relay server shutting down...")

    app = FastAPI(
        title="WebSocket Relay Server",
        description="Real-time packet relay with rooms, rate limiting and optional token auth",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.room_manager = room_manager
    app.state.message_handler = message_handler
    app.state.monitor = monitor

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        try:
            return {
                "status": "healthy",
                "timestamp": time.time(),
                "connections": room_manager.get_connection_stats(),
            }
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            raise HTTPException(status_code=503, detail="Service unavailable")

    @app.get("/stats")
    async def get_stats():
        """Registry statistics"""
        return {
            "server": "WebSocket Relay Server",
            "timestamp": time.time(),
            "keepalive_ticks": monitor.ticks,
            "connections": room_manager.get_connection_stats(),
            "rooms": [room.to_dict() for room in room_manager.rooms()],
            "limits": {
                "max_packets_per_window": settings.max_packets_per_window,
                "max_packet_size": settings.max_packet_size,
                "keepalive_interval": settings.keepalive_interval,
            },
        }

    @app.websocket("/")
    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket, roomid: Optional[str] = Query(default=None)):
        """Relay endpoint: one connection per client session"""
        await websocket.accept()
        client_ip = websocket.client.host if websocket.client else "unknown"

        connection = message_handler.open_connection(websocket, client_ip, roomid)
        log_websocket_event("connection_accepted", connection.identity, f"client_ip={client_ip} roomid={roomid}")
        writer = asyncio.create_task(pump_outbox(connection))

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break

                raw = message.get("text")
                if raw is None and message.get("bytes") is not None:
                    raw = message["bytes"].decode("utf-8", errors="replace")
                if raw is None:
                    continue

                message_handler.handle(connection, raw)

        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected for {connection.identity}")

        except Exception as e:
            logger.error(f"WebSocket error for {connection.identity}: {e}")

        finally:
            message_handler.close_connection(connection)
            if not writer.done():
                writer.cancel()
            log_websocket_event("connection_closed", connection.identity, f"client_ip={client_ip}")

    return app


app = create_app()


if __name__ == "__main__":
    settings = get_settings()
    log_system_event("startup", f"Relay listening on ws://{settings.host}:{settings.port}")

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
