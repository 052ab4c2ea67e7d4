#!/usr/bin/env python3
"""
Presence Relay - Entry Point
WebSocket rooms + rate limiting + graceful shutdown
"""
import logging
import socket
import time
from typing import Dict, List, Optional

from aiohttp import web

from relay.api import ROOMS, api_rooms, readiness, ws_default_room, ws_named_room
from relay.config import LOG_LEVEL, PORT, RATE_LIMIT, SERVER_HOST
from relay.state import RoomDirectory

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("presence_relay")


class RateLimiter:
    """Sliding one-minute window of request times per remote address"""

    def __init__(self, limit: int = RATE_LIMIT, window: float = 60.0):
        self.limit = limit
        self.window = window
        self.hits: Dict[str, List[float]] = {}
        self._last_sweep = 0.0

    def allow(self, ip, now: float) -> bool:
        # Forget addresses that have gone quiet, at most once per window
        if now - self._last_sweep >= self.window:
            for key in [k for k, times in self.hits.items() if not times or now - times[-1] >= self.window]:
                del self.hits[key]
            self._last_sweep = now

        recent = [t for t in self.hits.get(ip, ()) if now - t < self.window]
        if len(recent) >= self.limit:
            self.hits[ip] = recent
            return False
        recent.append(now)
        self.hits[ip] = recent
        return True


def rate_limit_middleware(limit: int = RATE_LIMIT):
    """Simple rate limiting: `limit` requests per minute per IP"""
    limiter = RateLimiter(limit)

    @web.middleware
    async def middleware(request, handler):
        ip = request.remote
        if not limiter.allow(ip, time.time()):
            logger.warning(f"Rate limit exceeded for {ip}")
            return web.json_response(
                {"ok": False, "error": "Rate limit exceeded"},
                status=429
            )
        return await handler(request)

    return middleware


async def close_rooms(app: web.Application):
    await app[ROOMS].shutdown()


def create_app(directory: Optional[RoomDirectory] = None,
               rate_limit: int = RATE_LIMIT) -> web.Application:
    """Create and configure the aiohttp application"""
    app = web.Application(middlewares=[rate_limit_middleware(rate_limit)])
    app[ROOMS] = directory if directory is not None else RoomDirectory()

    # WebSocket rooms
    app.router.add_route("*", "/ws", ws_default_room)
    app.router.add_route("*", "/rooms/{name}/ws", ws_named_room)

    # Inspection
    app.router.add_get("/rooms", api_rooms)

    # Everything else answers as a readiness check
    app.router.add_route("*", "/{tail:.*}", readiness)

    app.on_shutdown.append(close_rooms)
    logger.info("📡 Presence relay ready")
    return app


def get_local_ip():
    """Get local network IP address"""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except Exception:
        return "localhost"


def main():
    app = create_app()
    local_ip = get_local_ip()

    logger.info(f"🚀 Starting server on {SERVER_HOST}:{PORT}")
    logger.info(f"💡 Connect at: ws://{local_ip}:{PORT}/ws")

    web.run_app(app, host=SERVER_HOST, port=PORT)


if __name__ == "__main__":
    main()
