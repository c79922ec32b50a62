"""Security dependencies and API access logging"""
import json
from datetime import datetime, timezone
from typing import Optional
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.core.exceptions import AuthenticationError
from app.core.logging import api_access_logger, security_logger
from app.db.redis import get_session
from app.db.session import get_db
from app.models.user import User


def require_auth(request: Request) -> int:
    """Dependency: Require authentication, return user_id"""
    session_id = request.cookies.get("session_id")

    if not session_id:
        raise AuthenticationError("Not authenticated. Please log in.")

    user_id = get_session(session_id)
    if not user_id:
        raise AuthenticationError("Session expired. Please log in again.")

    return user_id


def get_current_user(user_id: int = Depends(require_auth), db: Session = Depends(get_db)) -> User:
    """Dependency: the authenticated User row"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        security_logger.warning(f"Session points at missing user {user_id}")
        raise AuthenticationError("User no longer exists. Please log in again.")
    return user


def get_client_identifier(request: Request, session_id: Optional[str] = None) -> str:
    """Get a unique identifier for rate limiting"""
    if session_id:
        return f"session:{session_id}"

    # Fallback to IP address
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


def log_api_access(
    request: Request,
    session_id: Optional[str] = None,
    status_code: int = 200,
    error: Optional[str] = None
):
    """Log detailed API access information"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"

    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "session_id": session_id[:16] + "..." if session_id else None,
        "client_ip": client_ip,
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "status_code": status_code,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")
