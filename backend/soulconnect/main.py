"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from soulconnect.api import auth, chat, matching, ops, profile
from soulconnect.api.errors import install_error_handlers
from soulconnect.domain.chat.sockets import ChatNamespace
from soulconnect.domain.container import get_container
from soulconnect.infra import postgres
from soulconnect.obs import init as obs_init
from soulconnect.settings import settings
from soulconnect.workers.presence_sweeper import PresenceSweeper


@asynccontextmanager
async def lifespan(app: FastAPI):
	container = get_container()
	pool = None
	if settings.uses_postgres():
		pool = await postgres.init_pool()
		await postgres.ensure_schema(pool)
	if settings.seed_personas:
		await container.identities.seed_personas(container.personas.identities())
	container.router.set_transport(chat_namespace)
	worker_tasks: list[asyncio.Task] = []
	sweeper: PresenceSweeper | None = None
	if settings.presence_sweeper_enabled:
		sweeper = PresenceSweeper(container.identity_store, container.chat_store, container.router)
		worker_tasks.append(asyncio.create_task(sweeper.run_forever(), name="presence-sweeper"))
	app.state.presence_sweeper = sweeper
	try:
		yield
	finally:
		if sweeper is not None:
			sweeper.stop()
		for task in worker_tasks:
			task.cancel()
		await asyncio.gather(*worker_tasks, return_exceptions=True)
		await container.chat.close()
		await container.router.close()
		if pool is not None:
			await postgres.close_pool()


app = FastAPI(title="SoulConnect Realtime Core", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(getattr(settings, "cors_allow_origins", []))
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else ["https://app.soulconnect.example"]

# Starlette disallows wildcard '*' with allow_credentials=True. Replace '*' with explicit origins.
if "*" in allow_origins:
	if settings.is_dev():
		allow_origins = [
			"http://localhost:3000",
			"http://127.0.0.1:3000",
			"http://localhost:5173",
			"http://127.0.0.1:5173",
		]
	else:
		allow_origins = ["https://app.soulconnect.example"]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

# Use the same allowed origins for Socket.IO as for the REST API
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
chat_namespace = ChatNamespace(lambda: get_container().chat)
sio.register_namespace(chat_namespace)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
obs_init(app)

app.include_router(auth.router, tags=["identity"])
app.include_router(profile.router, tags=["profile"])
app.include_router(chat.router, tags=["chat"])
app.include_router(matching.router, tags=["matching"])
app.include_router(ops.router, tags=["ops"])
