"""
api/routes/v1/password.py -- Forgot-password and reset endpoints.

Routes:
  POST /api/v1/password/forgot  -- mail a reset link if the address is known
  POST /api/v1/password/reset   -- redeem a reset token, set a new password

Security:
  [H2] POST /forgot is rate-limited per IP (Settings.password_reset_rate_limit).
  POST /forgot returns the same 200 body for every well-formed email and is
       padded to a minimum duration by PasswordResetManager.
  POST /reset answers 401 "Invalid or expired reset token" for every token
       problem.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from api.limiter import limiter, password_reset_limit
from api.models import ForgotPasswordRequest, MessageResponse, ResetPasswordRequest
from auth.password_reset import PasswordResetManager

router = APIRouter()


@router.post("/password/forgot", response_model=MessageResponse)
@limiter.limit(password_reset_limit)
async def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    manager: PasswordResetManager = request.app.state.password_reset_manager
    return MessageResponse(**await manager.request_reset(body.email))


@router.post("/password/reset", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    manager: PasswordResetManager = request.app.state.password_reset_manager
    return MessageResponse(**manager.reset_password(body.token, body.new_password))
