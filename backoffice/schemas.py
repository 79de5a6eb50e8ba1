"""
Pydantic schemas for request / response serialization.

Schemas are deliberately decoupled from the store's dataclasses so the
API surface can evolve independently.  None of them carries the
session token: it only ever travels in the Set-Cookie header.
"""

import uuid

from pydantic import BaseModel, Field


# ── Auth ─────────────────────────────────────────────────────────────
class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1)


class LoginResponse(BaseModel):
    user_id: uuid.UUID
    role: str
    csrf_token: str


class SessionOut(BaseModel):
    user_id: uuid.UUID
    role: str
    session_id: str
    csrf_token: str


# ── Admin ────────────────────────────────────────────────────────────
class SessionCountOut(BaseModel):
    user_id: uuid.UUID
    active_sessions: int


class RevokeSessionsOut(BaseModel):
    user_id: uuid.UUID
    revoked: int


class SweepOut(BaseModel):
    removed: int


# ── Generic ──────────────────────────────────────────────────────────
class MessageResponse(BaseModel):
    detail: str
