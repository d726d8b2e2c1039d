"""Read-only status webapp served with aiohttp."""

from __future__ import annotations

from pathlib import Path

import aiohttp_jinja2
import jinja2
from aiohttp import web

from callrelay.bridge import VoiceCallBridge

_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

_bridge_key = web.AppKey("bridge", VoiceCallBridge)


async def _index_handler(request: web.Request) -> web.Response:
    bridge = request.app[_bridge_key]
    calls = sorted(bridge.get_active_calls(), key=lambda c: c.timestamp)
    context = {
        "status": str(bridge.get_connection_status()),
        "user": bridge.session.user_id,
        "calls": calls,
    }
    return aiohttp_jinja2.render_template("calls.html", request, context)


async def _calls_handler(request: web.Request) -> web.Response:
    bridge = request.app[_bridge_key]
    return web.json_response(
        {
            "status": str(bridge.get_connection_status()),
            "calls": [c.to_dict() for c in bridge.get_active_calls()],
        }
    )


def create_app(bridge: VoiceCallBridge) -> web.Application:
    app = web.Application()
    aiohttp_jinja2.setup(
        app,
        loader=jinja2.FileSystemLoader(_TEMPLATES_DIR),
        autoescape=jinja2.select_autoescape(),
    )
    app[_bridge_key] = bridge
    app.router.add_get("/", _index_handler)
    app.router.add_get("/calls", _calls_handler)
    return app


async def start_webapp(app: web.Application, host: str, port: int) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    return runner


async def stop_webapp(runner: web.AppRunner) -> None:
    await runner.cleanup()
