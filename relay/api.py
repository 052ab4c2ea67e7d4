"""
HTTP and WebSocket handlers for the presence relay
"""
import asyncio
import hashlib
import json
import logging

from aiohttp import web

from .config import DEFAULT_ROOM
from .room import EventKind
from .state import RoomDirectory

logger = logging.getLogger("presence_relay")

ROOMS = web.AppKey("rooms", RoomDirectory)

# ============================================================
# WEBSOCKET ROOM ENDPOINTS
# ============================================================

async def ws_default_room(request: web.Request) -> web.StreamResponse:
    """Front door: every client lands in the default room"""
    return await serve_room(request, DEFAULT_ROOM)


async def ws_named_room(request: web.Request) -> web.StreamResponse:
    return await serve_room(request, request.match_info["name"])


async def serve_room(request: web.Request, name: str) -> web.StreamResponse:
    """Upgrade the request and feed the connection's events to the room"""
    ws = web.WebSocketResponse()
    if not ws.can_prepare(request).ok:
        return web.Response(status=426, text="Expected protocol upgrade")
    await ws.prepare(request)

    directory = request.app[ROOMS]
    room = directory.acquire(name)
    try:
        await room.submit(EventKind.ACCEPT, ws)
        async for msg in ws:
            if msg.type == web.WSMsgType.TEXT:
                await room.submit(EventKind.MESSAGE, ws, msg.data)
            elif msg.type == web.WSMsgType.ERROR:
                logger.debug(f"WebSocket error in room {name}: {ws.exception()}")
                break
            else:
                logger.debug(f"Ignoring {msg.type.name} frame in room {name}")
    except Exception as e:
        logger.debug(f"WebSocket error in room {name}: {e}")
    finally:
        await leave_room(directory, room, ws)

    return ws


async def leave_room(directory: RoomDirectory, room, ws) -> None:
    """
    Hand the close to the room and release it from the directory.

    aiohttp may cancel the handler while it is cleaning up; the work is
    shielded so the room still sees the close and gets reclaimed.
    """
    async def _leave():
        await room.submit(EventKind.CLOSE, ws)
        await directory.release(room)

    await asyncio.shield(_leave())

# ============================================================
# ROOM INSPECTION
# ============================================================

async def api_rooms(request: web.Request) -> web.Response:
    """List live rooms with ETag caching"""
    items = [room.describe() for room in request.app[ROOMS].rooms()]

    content = json.dumps(items, sort_keys=True)
    etag = hashlib.md5(content.encode()).hexdigest()

    if request.headers.get("If-None-Match") == etag:
        return web.Response(status=304)

    response = web.json_response({"ok": True, "rooms": items})
    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = "max-age=5"
    return response


async def readiness(request: web.Request) -> web.Response:
    return web.Response(text="Room relay ready")
