from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from morphic.api.routes import chat, chats, feedback
from morphic.config import settings
from morphic.services import database as db
from morphic.services import logger as log_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    log_service.log_event(event_type="startup", message="Morphic API started")
    yield
    await db.close_pool()


app = FastAPI(
    title="Morphic",
    description="AI conversational search with a tool-using researcher agent",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(chat.router)
app.include_router(chats.router)
app.include_router(feedback.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "morphic"}
