from flask import Blueprint, jsonify, current_app
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity, jwt_required, create_access_token
from functools import wraps
from sqlalchemy.exc import IntegrityError
from model import db, User, UserRole
from oauth_config import oauth
import logging

logger = logging.getLogger(__name__)

# Authentication Blueprint
auth_bp = Blueprint('auth', __name__)


def generate_token(user):
    return create_access_token(
        identity=str(user.id),
        additional_claims={
            "email": user.email,
            "role": str(user.role.value)
        }
    )


def current_user():
    """Load the User behind the request's JWT, or None."""
    identity = get_jwt_identity()
    if identity is None:
        return None
    try:
        return db.session.get(User, int(identity))
    except (TypeError, ValueError):
        logger.warning(f"Malformed JWT identity: {identity}")
        return None


def roles_required(*roles):
    """Allow the wrapped view only for users whose stored role is listed.

    Entries may be UserRole members, role names, or names of config keys
    holding a list of role names (e.g. "SCANNER_ROLES").
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            user = current_user()
            if not user:
                return {"error": "User not found"}, 404

            allowed = set()
            for role in roles:
                configured = current_app.config.get(role) if isinstance(role, str) else None
                if isinstance(configured, (list, tuple)):
                    allowed.update(str(r).upper() for r in configured)
                else:
                    allowed.add(str(role).upper())

            if user.role.value not in allowed:
                logger.info(f"User {user.id} with role {user.role} denied; requires one of {sorted(allowed)}")
                return {"message": "Forbidden: Access Denied"}, 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator


def provision_user(external_id, email=None, name=None):
    """Return ``(user, created)`` for an identity-provider subject.

    The first successful login creates the record with DEFAULT_USER_ROLE.
    Existing records are returned unchanged.
    """
    if not external_id:
        raise ValueError("external_id is required")

    user = User.query.filter_by(external_id=external_id).first()
    if user:
        return user, False

    role = User.validate_role(current_app.config.get("DEFAULT_USER_ROLE", "SCANNER"))
    user = User(external_id=external_id, email=email or "", name=name or "", role=role)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        # A parallel first login for the same subject won the insert
        db.session.rollback()
        user = User.query.filter_by(external_id=external_id).first()
        if not user:
            raise
        return user, False

    if role != UserRole.ATTENDEE:
        logger.warning(f"Provisioned user {user.id} with elevated default role {role}")
    logger.info(f"Provisioned user {user.id} for external subject {external_id}")
    return user, True


def update_user_role(user_id, role):
    """Explicit promotion/demotion step; the only way a role changes."""
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")

    try:
        new_role = User.validate_role(role)
    except ValueError:
        raise ValueError(f"Unknown role: {role}")

    if user.role != new_role:
        logger.info(f"Changing role of user {user.id} from {user.role} to {new_role}")
        user.role = new_role
        db.session.commit()
    return user


@auth_bp.route('/login')
def login():
    """Redirect to the identity provider"""
    redirect_uri = current_app.config["IDP_REDIRECT_URI"]
    logger.info(f"Redirecting to identity provider with URI: {redirect_uri}")
    return oauth.identity.authorize_redirect(redirect_uri)


@auth_bp.route('/callback')
def callback():
    """Handle the identity provider callback and issue our own token"""
    try:
        token = oauth.identity.authorize_access_token()
    except Exception as token_error:
        logger.error(f"Failed to exchange authorization code: {token_error}")
        return jsonify({"error": "Failed to exchange authorization code for token"}), 400

    user_info = token.get("userinfo")
    if not user_info:
        try:
            user_info = oauth.identity.userinfo(token=token)
        except Exception as info_error:
            logger.error(f"Failed to load user info: {info_error}")
            return jsonify({"error": "Failed to load user information"}), 400

    external_id = user_info.get("sub")
    if not external_id:
        return jsonify({"error": "Incomplete user information from identity provider"}), 400

    try:
        user, created = provision_user(external_id, user_info.get("email"), user_info.get("name"))
    except Exception as db_error:
        db.session.rollback()
        logger.error(f"Database error during user provisioning: {db_error}", exc_info=True)
        return jsonify({"error": "Failed to create or load user"}), 500

    access_token = generate_token(user)
    response = jsonify({
        "message": "Login successful",
        "created": created,
        "user": user.as_dict()
    })
    response.set_cookie(
        current_app.config["JWT_ACCESS_COOKIE_NAME"],
        access_token,
        httponly=True,
        secure=current_app.config["JWT_COOKIE_SECURE"],
        samesite=current_app.config["JWT_COOKIE_SAMESITE"],
        path='/',
        max_age=int(current_app.config["JWT_ACCESS_TOKEN_EXPIRES"].total_seconds())
    )
    return response, 200


@auth_bp.route('/logout', methods=['POST'])
def logout():
    """Handles user logout by clearing the access token cookie"""
    response = jsonify({"message": "Logout successful"})
    response.delete_cookie(current_app.config["JWT_ACCESS_COOKIE_NAME"])
    return response, 200


@auth_bp.route('/profile', methods=['GET'])
@jwt_required()
def get_profile():
    """Get user profile information"""
    user = current_user()
    if not user:
        return jsonify({"msg": "User not found"}), 404
    return jsonify(user.as_dict()), 200

