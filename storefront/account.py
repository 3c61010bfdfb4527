"""Account registration and sessions."""
import logging

from .backend.base import AuthProvider
from .errors import ValidationError
from .models import User
from .redaction import redact_email
from .validation import validate_email, validate_password, validate_person_name

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, auth: AuthProvider):
        self._auth = auth

    async def register(self, name: str, email: str, password: str) -> User:
        """Validate the sign-up form, then create the account and profile.

        Raises ValidationError before any backend call when a field fails.
        """
        checks = {
            "name": validate_person_name(name),
            "email": validate_email(email),
            "password": validate_password(password),
        }
        errors = {f: r.reason for f, r in checks.items() if not r.ok}
        if errors:
            raise ValidationError(errors)
        user = await self._auth.sign_up(email, password, {"name": name})
        logger.info("Registered user %s (%s)", user.id, redact_email(email))
        return user

    async def sign_in(self, email: str, password: str) -> User:
        errors = {}
        if not email:
            errors["email"] = "Email is required"
        if not password:
            errors["password"] = "Password is required"
        if errors:
            raise ValidationError(errors)
        user = await self._auth.sign_in(email, password)
        logger.info("Signed in %s", redact_email(email))
        return user

    async def sign_out(self) -> None:
        await self._auth.sign_out()

    async def current_user(self) -> User | None:
        return await self._auth.get_current_user()

    async def display_name(self) -> str:
        """Greeting name for the signed-in user, empty when signed out."""
        user = await self.current_user()
        return user.display_name if user else ""
