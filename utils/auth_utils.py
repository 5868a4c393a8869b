import logging
from functools import wraps

import jwt
from flask import current_app, g, jsonify, request

logger = logging.getLogger(__name__)

SESSION_EXPIRED_MESSAGE = "Session expired. Please login again."

# Supabase signs access tokens for the "authenticated" audience
TOKEN_AUDIENCE = "authenticated"

_jwks_clients = {}


class AuthError(Exception):
    pass


def _jwks_client(supabase_url: str) -> jwt.PyJWKClient:
    url = f"{supabase_url.rstrip('/')}/auth/v1/.well-known/jwks.json"
    client = _jwks_clients.get(url)
    if client is None:
        client = jwt.PyJWKClient(url)
        _jwks_clients[url] = client
    return client


def decode_access_token(token: str) -> dict:
    """Verify a Supabase access token and return its claims.

    Projects with a legacy shared secret sign with HS256; newer projects
    publish asymmetric keys at the JWKS endpoint.
    """
    secret = current_app.config.get("SUPABASE_JWT_SECRET")
    try:
        if secret:
            return jwt.decode(
                token, secret, algorithms=["HS256"], audience=TOKEN_AUDIENCE
            )

        supabase_url = current_app.config.get("SUPABASE_URL")
        if not supabase_url:
            raise AuthError("Token verification is not configured")
        signing_key = _jwks_client(supabase_url).get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256", "ES256"],
            audience=TOKEN_AUDIENCE,
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthError(SESSION_EXPIRED_MESSAGE) from e
    except jwt.PyJWTError as e:
        raise AuthError(f"Invalid token: {str(e)}") from e


def user_from_claims(claims: dict) -> dict:
    """Build the request user from token claims.

    The top-level ``role`` claim is the Postgres role ("authenticated"), so the
    portal role comes from app_metadata (set by admins) or user_metadata.
    """
    app_meta = claims.get("app_metadata") or {}
    user_meta = claims.get("user_metadata") or {}
    return {
        "id": claims.get("sub"),
        "email": claims.get("email"),
        "role": app_meta.get("role") or user_meta.get("role"),
        "department": app_meta.get("department") or user_meta.get("department"),
        "full_name": user_meta.get("full_name"),
    }


def _bearer_token():
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def token_required(f):
    """Decorator to require a valid bearer token; sets g.current_user."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authorization token missing"}), 401
        try:
            claims = decode_access_token(token)
        except AuthError as e:
            logger.warning(f"Rejected token on {request.path}: {str(e)}")
            return jsonify({"error": SESSION_EXPIRED_MESSAGE}), 401

        user = user_from_claims(claims)
        if not user["id"]:
            return jsonify({"error": SESSION_EXPIRED_MESSAGE}), 401
        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def role_required(*roles):
    """Decorator (used after token_required) limiting a route to given roles."""

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            role = (g.current_user or {}).get("role")
            if role not in roles:
                logger.warning(
                    f"Access denied on {request.path} for role {role!r} (needs {roles})"
                )
                return (
                    jsonify(
                        {
                            "error": f"Access denied. {' or '.join(r.title() for r in roles)} privileges required."
                        }
                    ),
                    403,
                )
            return f(*args, **kwargs)

        return decorated_function

    return decorator


def current_user_id():
    return g.current_user["id"]
