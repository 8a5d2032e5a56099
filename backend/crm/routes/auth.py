# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- Sign-up creates a PENDING account; an administrator must approve it
- Login issues an opaque bearer token (stored hashed)
- Logout revokes the presented token
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth
from ..errors import CrmError
from ..extensions import db
from ..permissions import Role
from ..services import auth_service, audit_service, permission_service, session_service
from ..validation import Payload


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/signup")
def signup_route():
    try:
        p = Payload(request.get_json(silent=True))
        username = p.text("username", max_length=64)
        email = p.email("email", required=True)
        password = p.text("password", max_length=128)
        name = p.text("name", max_length=128)
        phone = p.phone("phone", required=False)
        p.finish()

        user = auth_service.create_user(
            username=username,
            email=email,
            password=password,
            name=name,
            phone=phone,
            role=Role.PENDING,
        )
        db.session.commit()

        return jsonify({
            "success": True,
            "data": user.to_dict(),
            "message": "회원가입이 완료되었습니다. 관리자 승인 후 이용할 수 있습니다.",
        }), 201

    except CrmError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to sign up user")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.

    The token goes in the Authorization header as "Bearer <token>".
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            data = {}
        identifier = data.get("username") or data.get("email") or data.get("identifier")
        password = data.get("password")

        if not identifier or not password:
            return jsonify({"success": False, "error": "username/email and password required"}), 400

        user = auth_service.authenticate(identifier, password)
        if not user:
            return jsonify({"success": False, "error": "Invalid credentials"}), 401

        ip_address = audit_service.client_ip(request)
        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=ip_address,
        )

        audit_service.emit(
            audit_service.AuditEntry(actor_id=user.id, action="LOGIN", entity="User", entity_id=user.id),
            request,
        )

        return jsonify({
            "success": True,
            "data": {
                "user": user.to_dict(),
                "permissions": permission_service.allowed_permissions(user.role),
                "token": token,
                "session": session.to_dict(),
            },
            "message": "Login successful",
        }), 200

    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to login user")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        user_id = g.current_user.id
        session_service.revoke_session(g.session_token, reason="User logout")
        audit_service.emit(
            audit_service.AuditEntry(actor_id=user_id, action="LOGOUT", entity="User", entity_id=user_id),
            request,
        )
        return jsonify({"success": True, "message": "Logged out"}), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to logout user")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({
        "success": True,
        "data": {
            "user": user.to_dict(),
            "permissions": permission_service.allowed_permissions(user.role),
        },
    }), 200
