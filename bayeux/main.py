"""FastAPI application serving the Bayeux engine over HTTP and JSONP."""

import asyncio
import json
import logging
import re
import time
from typing import List, Optional, Tuple

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sse_starlette.sse import EventSourceResponse

from bayeux.core.dispatcher import UNHANDLED, BroadcastHandler
from bayeux.core.engine import Engine
from bayeux.core.long_poll import PendingPoll
from bayeux.core.router import Router
from bayeux.core.settings import Settings
from bayeux.models.message import Message

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MONITOR_QUEUE_SIZE = 1000

JSONP_CALLBACK = re.compile(r"^[A-Za-z_$][\w$]*(\.[A-Za-z_$][\w$]*)*$")


def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> FastAPI:
    """
    Build the HTTP application around an engine.

    Args:
        settings: Server settings; read from the environment when omitted
        engine: Engine to serve; a new one is created when omitted

    Returns:
        The FastAPI application
    """
    settings = settings or Settings()
    if engine is None:
        engine = Engine(settings)
        if settings.broadcast_application_channels:
            engine.dispatcher.add_handler(BroadcastHandler(engine.router))

    if settings.tracing:
        logging.getLogger("bayeux").setLevel(logging.DEBUG)

    app = FastAPI(title=settings.app_name, version=settings.app_version)
    app.state.settings = settings
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def await_poll(request: Request, poll: PendingPoll) -> List[Message]:
        """Hold the request open until the poll fires, the client leaves or the limit passes."""
        deadline = time.monotonic() + settings.long_poll_timeout
        try:
            while not poll.done:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.info(f"Long-poll for {poll.client.id} reached the transport limit")
                    break
                if await request.is_disconnected():
                    logger.info(f"Client {poll.client.id} closed its long-poll connection")
                    break
                try:
                    await asyncio.wait_for(
                        poll.wait(),
                        timeout=min(settings.disconnect_check_interval, remaining),
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            engine.release(poll)
        return poll.messages or []

    async def receive(request: Request, raw: Optional[str], jsonp: Optional[str]) -> Response:
        if jsonp and not is_valid_callback(jsonp):
            logger.warning(f"Rejected JSONP callback {jsonp!r}")
            return Response(status_code=400)

        try:
            payload = json.loads(raw) if raw else None
        except ValueError as e:
            logger.warning(f"Undecodable request body: {str(e)}")
            payload = None

        outcome = engine.receive(payload, jsonp=bool(jsonp))
        if outcome is UNHANDLED:
            return Response(status_code=404)

        if isinstance(outcome, PendingPoll):
            messages = await await_poll(request, outcome)
        else:
            messages = outcome
        return respond(messages, jsonp)

    @app.get("/")
    async def root():
        """Root endpoint returning server information."""
        return {
            "message": settings.app_name,
            "version": settings.app_version,
            "endpoints": {
                "cometd": "/cometd",
                "monitor": "/cometd/monitor",
                "health": "/health",
            },
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "clients": len(engine.clients),
            "channels": len(engine.channels),
        }

    # JSONP always uses a GET, since it fulfils a script tag.
    @app.get("/cometd")
    async def cometd_get(request: Request):
        params = request.query_params
        return await receive(request, params.get("message"), params.get("jsonp"))

    @app.post("/cometd")
    async def cometd_post(request: Request):
        raw, jsonp = await read_post(request)
        return await receive(request, raw, jsonp)

    @app.get("/cometd/monitor")
    async def monitor(request: Request):
        """Stream every publish as a server-sent event."""
        if not settings.monitor_enabled:
            return Response(status_code=404)

        return EventSourceResponse(monitor_events(engine.router))

    return app


async def monitor_events(router: Router, queue_size: int = MONITOR_QUEUE_SIZE):
    """
    Yield one server-sent event per publish seen by ``router``.

    The listener lives only while the generator runs; events that arrive
    while ``queue_size`` events are still unsent are dropped.
    """
    queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

    def listener(channel: str, message: Message) -> None:
        try:
            queue.put_nowait({"channel": channel, "message": message.to_dict()})
        except asyncio.QueueFull:
            logger.warning("Monitor stream is falling behind; dropping event")

    try:
        router.add_listener(listener)
        while True:
            event = await queue.get()
            yield {"event": "publish", "data": json.dumps(event)}
    finally:
        router.remove_listener(listener)


def is_valid_callback(name: str) -> bool:
    """Check that a JSONP callback is a plain, optionally dotted, identifier."""
    return JSONP_CALLBACK.match(name) is not None


async def read_post(request: Request) -> Tuple[Optional[str], Optional[str]]:
    """
    Extract the message text and JSONP callback from a POST.

    A JSON body is the payload itself; form posts carry it in ``message``.
    """
    jsonp = request.query_params.get("jsonp")
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        body = await request.body()
        return body.decode("utf-8", errors="replace"), jsonp

    form = await request.form()
    raw = form.get("message") or request.query_params.get("message")
    return raw, form.get("jsonp") or jsonp


def respond(messages: List[Message], jsonp: Optional[str]) -> Response:
    """
    Serialize response messages as JSON, or as a JSONP callback invocation.

    Raises:
        ValueError: If ``jsonp`` is not a valid callback name
    """
    content = [message.to_dict() for message in messages]
    if jsonp:
        if not is_valid_callback(jsonp):
            raise ValueError(f"Invalid JSONP callback {jsonp!r}")
        body = f"{jsonp}({json.dumps(content)});\n"
        return Response(content=body, media_type="text/javascript")
    return JSONResponse(content=content)


app = create_app()


def main() -> None:
    settings = app.state.settings
    uvicorn.run(
        "bayeux.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
