import logging

from flask import current_app

logger = logging.getLogger(__name__)

DUPLICATE_EMAIL_MESSAGE = "A user with this email address already exists."


class IdentityError(Exception):
    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


class DuplicateEmailError(IdentityError):
    pass


def is_duplicate_email_error(error) -> bool:
    code = getattr(error, "code", None)
    message = str(getattr(error, "message", None) or error or "")
    return code == "email_exists" or "already been registered" in message


def _user_to_dict(user) -> dict:
    return {
        "id": str(user.id),
        "email": getattr(user, "email", None),
        "user_metadata": dict(getattr(user, "user_metadata", None) or {}),
        "created_at": str(getattr(user, "created_at", "") or "") or None,
    }


class IdentityService:
    """Thin wrapper over the Supabase admin auth API."""

    def __init__(self, client):
        self.client = client

    def create_user(self, email, password, user_metadata) -> dict:
        try:
            response = self.client.auth.admin.create_user(
                {
                    "email": email,
                    "password": password,
                    "email_confirm": True,
                    "user_metadata": user_metadata,
                }
            )
        except Exception as e:
            logger.error(f"Supabase Auth error creating {email}: {str(e)}")
            if is_duplicate_email_error(e):
                raise DuplicateEmailError(
                    DUPLICATE_EMAIL_MESSAGE, getattr(e, "code", None)
                ) from e
            raise IdentityError(str(e), getattr(e, "code", None)) from e
        return _user_to_dict(response.user)

    def delete_user(self, user_id) -> None:
        try:
            self.client.auth.admin.delete_user(user_id)
        except Exception as e:
            raise IdentityError(str(e), getattr(e, "code", None)) from e


def create_identity_service(url, service_key) -> IdentityService:
    from supabase import create_client
    from supabase.lib.client_options import ClientOptions

    if not url or not service_key:
        raise IdentityError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be configured")

    client = create_client(
        url,
        service_key,
        options=ClientOptions(auto_refresh_token=False, persist_session=False),
    )
    return IdentityService(client)


def get_identity_service() -> IdentityService:
    """Return the app's identity service, creating it from config on first use."""
    service = current_app.extensions.get("identity")
    if service is None:
        service = create_identity_service(
            current_app.config.get("SUPABASE_URL"),
            current_app.config.get("SUPABASE_SERVICE_KEY"),
        )
        current_app.extensions["identity"] = service
        logger.info("Supabase admin client initialized")
    return service
