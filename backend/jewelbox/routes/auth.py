# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/jewelbox/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Every failure returns the same 401 "Invalid credentials"
- Legacy password hashes are upgraded to bcrypt on successful login
- Every attempt is written to the auth event log
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import AuthenticationFailed, JewelboxError
from ..services import audit_service, auth_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate by email and password.

    Returns the identity on success. The response does not reveal whether
    the account exists, is inactive, or the password was wrong.
    """
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        email = data.get("email") or data.get("identifier")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400
        if not isinstance(email, str) or not isinstance(password, str):
            return jsonify({"error": "email and password must be strings"}), 400

        try:
            identity = auth_service.authenticate(email, password)
        except AuthenticationFailed as e:
            audit_service.log_auth_event(outcome="FAIL", email_tried=email, reason=str(e))
            return jsonify({"error": str(e)}), 401

        outcome = "UPGRADED" if identity.upgraded else "SUCCESS"
        audit_service.log_auth_event(outcome=outcome, email_tried=email, user_id=identity.user_id)
        audit_service.log_task(identity.user_id, "LOGIN_SUCCESS", {"email": identity.email})
        if identity.upgraded:
            current_app.logger.info("Upgraded legacy password hash for user %s", identity.user_id)

        return jsonify({"user": identity.to_dict(), "message": "Login successful"}), 200

    except JewelboxError as e:
        current_app.logger.warning("Login failed on store error: %s", e)
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500
