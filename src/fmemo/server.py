"""HTTP + WebSocket surface over QueryService and SyncBroadcaster.

Routes:
    GET /api/root               directory tree of the memo root
    GET /api/tree?path=<rel>    directory tree of a subdirectory
    GET /api/files/{filename}   parsed memos of one file (nested paths allowed)
    GET /api/file/{filename}    same, kept for older frontend builds
    GET /ws                     push channel: file_updated / directory_updated
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from typing import TYPE_CHECKING

from aiohttp import WSMsgType, web

from fmemo.errors import FmemoError, NotFound

if TYPE_CHECKING:
    from fmemo.config import ServerConfig
    from fmemo.query import QueryService
    from fmemo.sync.broadcaster import Subscription, SyncBroadcaster

logger = logging.getLogger(__name__)

# Front matter may carry dates; stringify anything json can't encode
_dumps = functools.partial(json.dumps, ensure_ascii=False, default=str)


@web.middleware
async def _cors_middleware(request: web.Request, handler) -> web.StreamResponse:
    response = await handler(request)
    if not response.prepared:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Headers"] = "content-type"
        response.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
    return response


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status, dumps=_dumps)


class MemoServer:
    """aiohttp application serving the query API and the push channel."""

    def __init__(
        self,
        query: QueryService,
        broadcaster: SyncBroadcaster,
        config: ServerConfig | None = None,
    ) -> None:
        self._query = query
        self._broadcaster = broadcaster
        self._config = config
        self._runner: web.AppRunner | None = None
        self._sockets: set[web.WebSocketResponse] = set()

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[_cors_middleware])
        app.router.add_get("/api/root", self._handle_root)
        app.router.add_get("/api/tree", self._handle_tree)
        app.router.add_get("/api/files/{filename:.+}", self._handle_file)
        app.router.add_get("/api/file/{filename:.+}", self._handle_file)
        app.router.add_get("/ws", self._handle_ws)
        app.on_shutdown.append(self._close_sockets)
        return app

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        if self._config is None:
            raise RuntimeError("MemoServer.start() needs a ServerConfig")
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()
        logger.info(
            "Serving %s on http://%s:%d", self._query.root, self._config.host, self._config.port
        )

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP server stopped")

    async def _close_sockets(self, app: web.Application) -> None:
        for ws in list(self._sockets):
            await ws.close(code=1001, message=b"server shutdown")

    # ── Query routes ──────────────────────────────────────────

    async def _handle_root(self, request: web.Request) -> web.Response:
        return await self._tree_response("")

    async def _handle_tree(self, request: web.Request) -> web.Response:
        return await self._tree_response(request.query.get("path", ""))

    async def _tree_response(self, path: str) -> web.Response:
        try:
            tree = await self._query.get_tree(path)
        except NotFound as e:
            return _error(404, str(e))
        except FmemoError as e:
            logger.error("Directory scan failed: %s", e)
            return _error(500, "Failed to scan directory")
        return web.json_response(tree.to_dict(), dumps=_dumps)

    async def _handle_file(self, request: web.Request) -> web.Response:
        filename = request.match_info["filename"].replace("%2F", "/").replace("%2f", "/")
        try:
            content = await self._query.get_file(filename)
        except NotFound as e:
            return _error(404, str(e))
        except FmemoError as e:
            logger.error("Reading %s failed: %s", filename, e)
            return _error(500, "Failed to read file")
        return web.json_response(content.to_dict(), dumps=_dumps)

    # ── Push channel ──────────────────────────────────────────

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=30)
        await ws.prepare(request)

        subscription = self._broadcaster.subscribe()
        self._sockets.add(ws)
        sender = asyncio.create_task(self._pump(subscription, ws))
        try:
            # Client messages carry no meaning; read only to notice close
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    logger.warning("WebSocket %s error: %s", subscription.id, ws.exception())
                    break
        finally:
            self._sockets.discard(ws)
            self._broadcaster.unsubscribe(subscription)
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
        return ws

    async def _pump(self, subscription: Subscription, ws: web.WebSocketResponse) -> None:
        async for notification in subscription:
            try:
                await ws.send_json(notification.to_message(), dumps=_dumps)
            except (ConnectionResetError, RuntimeError) as e:
                logger.debug("WebSocket %s send failed: %s", subscription.id, e)
                break
        if not ws.closed:
            await ws.close()
