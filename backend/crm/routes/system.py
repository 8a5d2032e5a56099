# Overview: Flask API routes for system health; reports database and session-store status.

import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import Permission, SessionToken, User
from crm.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity and that the core tables answer."""
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        user_count = db.session.query(User).count()
        permission_count = db.session.query(Permission).count()
        active_sessions = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False),
            SessionToken.expires_at > utcnow(),
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy" if permission_count else "degraded",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "permissions": permission_count,
                "active_sessions": active_sessions,
            },
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy, or degraded (permission table not seeded; role fallback in use)
    - 503: database unreachable
    """
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    return {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {"database": database_health},
    }, http_status
