from flask import current_app, g, jsonify
from flask_login import current_user, login_user, logout_user

from lnkiq.auth import auth_bp
from lnkiq.services.security import api_auth_required, bearer_token, revoke_session


@auth_bp.route("/login", methods=["POST"])
@api_auth_required(token_only=True)
def login():
    """Start a browser cookie session for the holder of a bearer session."""
    login_user(g.api_user)
    current_app.logger.info("Cookie session started for user %s", g.api_user.id)
    return jsonify({"status": "signed_in", "user": g.api_user.profile_dict()})


@auth_bp.route("/logout", methods=["POST"])
def logout():
    token = bearer_token()
    revoked = revoke_session(token) if token else False
    if current_user.is_authenticated:
        logout_user()
        revoked = True
    if not revoked:
        return jsonify({"error": "authentication required"}), 401
    return jsonify({"status": "signed_out"})
