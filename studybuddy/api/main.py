"""FastAPI main application - Study Buddy backend API"""

import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError
from loguru import logger

from studybuddy.config import settings
from studybuddy.api.chat_handler import ChatHandler, MessageOutcome
from studybuddy.api.session_manager import SessionManager
from studybuddy.conversation.state_machine import NoPairing, RateLimited
from studybuddy.data.schema import Gender, Medium, Profile
from studybuddy.matching.matching_engine import InvalidProfile, Matched, NoCandidates
from studybuddy.storage.match_store import InMemoryMatchStore, SQLiteMatchStore
from studybuddy.storage.profile_store import InMemoryProfileStore


# ============================================
# Pydantic Models
# ============================================

class ProfileUpdateRequest(BaseModel):
    """Partial profile update; omitted fields are left unchanged"""
    gender: Optional[Gender] = None
    year_of_study: Optional[int] = Field(None, ge=1, le=5)
    major: Optional[str] = None
    modules: Optional[list[str]] = None
    mediums: Optional[list[Medium]] = None
    description: Optional[str] = None


class ProfileResponse(BaseModel):
    success: bool
    user_id: str
    profile: Optional[Profile] = None
    error: Optional[str] = None


class MatchResponse(BaseModel):
    """Response for a match request"""
    success: bool
    matched: bool = False
    pairing_id: Optional[str] = None
    partner_id: Optional[str] = None
    score: Optional[float] = None
    explanation: Optional[str] = None
    message: Optional[str] = None


class MessageRequest(BaseModel):
    user_id: str = Field(..., description="Sender")
    text: str = Field(..., min_length=1)


class MessageResponse(BaseModel):
    delivered: bool
    recipient: Optional[str] = None
    remaining: Optional[int] = None
    warning: Optional[str] = None


class ChatStartRequest(BaseModel):
    user_id: str
    partner_id: str


class ProfileInputRequest(BaseModel):
    field: str = Field(..., description="major, modules or description")


class ProfileInputSubmit(BaseModel):
    text: str


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str = "1.0.0"
    active_sessions: int = 0


# ============================================
# Lifespan Management
# ============================================

def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def build_handler() -> ChatHandler:
    if settings.use_sqlite:
        match_store = SQLiteMatchStore(settings.sqlite_path)
    else:
        match_store = InMemoryMatchStore()

    return ChatHandler(
        profile_store=InMemoryProfileStore(),
        match_store=match_store,
        session_manager=SessionManager(timeout_seconds=settings.session_timeout_seconds),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown

    Startup:
        - Configure logging
        - Build stores, session manager and chat handler
    """
    configure_logging(settings.log_level)
    logger.info("Starting up Study Buddy API...")

    app.state.handler = build_handler()
    if isinstance(app.state.handler.match_store, SQLiteMatchStore):
        await app.state.handler.match_store.init()

    logger.info("✅ Study Buddy API started successfully")

    yield

    active_count = app.state.handler.session_manager.get_active_sessions_count()
    if active_count > 0:
        logger.info(f"Dropping {active_count} ephemeral sessions")
    logger.info("✅ Study Buddy API shutdown complete")


# ============================================
# FastAPI App
# ============================================

app = FastAPI(
    title="Study Buddy API",
    description="Study partner matchmaking with rate-limited introductions",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_handler(request: Request) -> ChatHandler:
    return request.app.state.handler


def _message_response(outcome: MessageOutcome) -> MessageResponse:
    """Map a MessageOutcome to a response, or raise the matching HTTP error"""
    if not outcome.moderation.allowed:
        raise HTTPException(status_code=400, detail=outcome.moderation.message)

    if isinstance(outcome.result, NoPairing):
        raise HTTPException(status_code=404, detail="No active study buddy conversation")

    if isinstance(outcome.result, RateLimited):
        raise HTTPException(
            status_code=429,
            detail=f"You've sent {outcome.result.sent} messages. Please wait for a reply before sending more.",
        )

    return MessageResponse(
        delivered=True,
        recipient=outcome.recipient,
        remaining=outcome.remaining,
        warning=outcome.moderation.message or None,
    )


# ============================================
# Health Check
# ============================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check(request: Request):
    handler = get_handler(request)
    return HealthResponse(status="ok", active_sessions=handler.session_manager.get_active_sessions_count())


# ============================================
# Profile Endpoints
# ============================================

@app.get("/api/v1/users/{user_id}/profile", response_model=ProfileResponse, tags=["Profile"])
async def get_profile(user_id: str, request: Request):
    profile = await get_handler(request).profile_store.get(user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return ProfileResponse(success=True, user_id=user_id, profile=profile)


@app.patch("/api/v1/users/{user_id}/profile", response_model=ProfileResponse, tags=["Profile"])
async def update_profile(user_id: str, body: ProfileUpdateRequest, request: Request):
    """Create or update a profile; only fields present in the body are changed"""
    fields = body.model_dump(exclude_unset=True)
    try:
        profile = await get_handler(request).profile_store.update(user_id, **fields)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return ProfileResponse(success=True, user_id=user_id, profile=profile)


@app.post("/api/v1/users/{user_id}/profile/input", tags=["Profile"])
async def request_profile_input(user_id: str, body: ProfileInputRequest, request: Request):
    """Ask the user for a free-text field; the next submit fills it"""
    try:
        get_handler(request).request_profile_input(user_id, body.field)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "awaiting": body.field}


@app.post("/api/v1/users/{user_id}/profile/input/submit", tags=["Profile"])
async def submit_profile_input(user_id: str, body: ProfileInputSubmit, request: Request):
    check = await get_handler(request).submit_profile_input(user_id, body.text)
    if check is None:
        raise HTTPException(status_code=409, detail="No profile field is awaiting input")
    if not check.is_valid:
        raise HTTPException(status_code=422, detail=check.error)
    return {"success": True, "value": check.value}


@app.post("/api/v1/users/{user_id}/pause", tags=["Profile"])
async def pause_matching(user_id: str, request: Request):
    if not await get_handler(request).pause_matching(user_id):
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"success": True, "match_opt_in": False}


@app.post("/api/v1/users/{user_id}/resume", tags=["Profile"])
async def resume_matching(user_id: str, request: Request):
    if not await get_handler(request).resume_matching(user_id):
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"success": True, "match_opt_in": True}


@app.post("/api/v1/users/{user_id}/block/{blocked_id}", tags=["Profile"])
async def block_user(user_id: str, blocked_id: str, request: Request):
    if not await get_handler(request).block_user(user_id, blocked_id):
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"success": True, "blocked_id": blocked_id}


@app.delete("/api/v1/users/{user_id}", tags=["Profile"])
async def delete_user(user_id: str, request: Request):
    """Delete all data held for a user"""
    try:
        result = await get_handler(request).delete_user_data(user_id)
    except Exception as e:
        logger.error(f"Error deleting data for {user_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, **result}


# ============================================
# Matching Endpoints
# ============================================

@app.post("/api/v1/users/{user_id}/match", response_model=MatchResponse, tags=["Matching"])
async def find_match(user_id: str, request: Request):
    handler = get_handler(request)
    try:
        outcome = await handler.find_match(user_id)
    except Exception as e:
        logger.error(f"Error matching user {user_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    if isinstance(outcome, InvalidProfile):
        raise HTTPException(
            status_code=422,
            detail=f"Please complete your profile first. Missing: {', '.join(outcome.missing_fields)}",
        )

    if isinstance(outcome, NoCandidates):
        return MatchResponse(
            success=True,
            matched=False,
            message="No strong matches yet. Try adding modules, mediums, or a richer description!",
        )

    if isinstance(outcome, Matched):
        me = await handler.profile_store.get(user_id)
        return MatchResponse(
            success=True,
            matched=True,
            pairing_id=outcome.pairing.pairing_id,
            partner_id=outcome.candidate.user_id,
            score=outcome.candidate.score,
            explanation=handler.engine.explain_match(me, outcome.profile),
        )

    logger.error(f"Unexpected match outcome for {user_id}: {outcome!r}")
    raise HTTPException(status_code=500, detail="Unexpected match outcome")


@app.get("/api/v1/users/{user_id}/match", tags=["Matching"])
async def match_status(user_id: str, request: Request):
    status = await get_handler(request).match_status(user_id)
    if status is None:
        raise HTTPException(status_code=404, detail="No active study buddy match")
    return status


@app.post("/api/v1/match/messages", response_model=MessageResponse, tags=["Matching"])
async def send_match_message(body: MessageRequest, request: Request):
    """Send a message to the current match, subject to the pre-reply cap"""
    outcome = await get_handler(request).send_match_message(body.user_id, body.text)
    return _message_response(outcome)


# ============================================
# Direct Chat Endpoints
# ============================================

@app.post("/api/v1/chats", tags=["Chats"])
async def start_chat(body: ChatStartRequest, request: Request):
    if not await get_handler(request).start_direct_chat(body.user_id, body.partner_id):
        raise HTTPException(status_code=404, detail="You are not matched with this user")
    return {"success": True, "partner_id": body.partner_id}


@app.get("/api/v1/chats/{user_id}", tags=["Chats"])
async def chat_status(user_id: str, request: Request):
    status = get_handler(request).chat_status(user_id)
    if status is None:
        raise HTTPException(status_code=404, detail="No active chat session")
    return status


@app.post("/api/v1/chats/messages", response_model=MessageResponse, tags=["Chats"])
async def send_chat_message(body: MessageRequest, request: Request):
    outcome = await get_handler(request).send_direct_message(body.user_id, body.text)
    return _message_response(outcome)


@app.delete("/api/v1/chats/{user_id}", tags=["Chats"])
async def end_chat(user_id: str, request: Request):
    partner = get_handler(request).end_direct_chat(user_id)
    if partner is None:
        raise HTTPException(status_code=404, detail="No active chat session")
    return {"success": True, "partner_id": partner}


# ============================================
# Admin Endpoints
# ============================================

@app.get("/api/v1/admin/sessions", tags=["Admin"])
async def list_sessions(request: Request):
    sessions = get_handler(request).session_manager.list_all_sessions()
    return {"success": True, "count": len(sessions), "sessions": sessions}


@app.post("/api/v1/admin/cleanup", tags=["Admin"])
async def cleanup_inactive_sessions(request: Request, timeout_seconds: Optional[int] = None):
    count = get_handler(request).session_manager.cleanup_inactive_sessions(timeout_seconds)
    return {"success": True, "message": f"Cleaned up {count} inactive sessions"}


@app.get("/", tags=["System"])
async def root():
    return {
        "name": "Study Buddy API",
        "version": "1.0.0",
        "endpoints": {
            "health": "/health",
            "docs": "/docs",
        }
    }


# ============================================
# Run with: uvicorn studybuddy.api.main:app --reload
# ============================================
