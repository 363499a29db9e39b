"""Auth service — registration, login with lockout, tokens, password flows."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from usermgmt.core.config import settings
from usermgmt.core.exceptions import AuthenticationError, ValidationError
from usermgmt.core.filters import Op, Predicate
from usermgmt.core.security import (
    REFRESH,
    create_access_token,
    create_refresh_token,
    decode_token,
    generate_token,
    hash_password,
    hash_token,
    verify_password,
)
from usermgmt.core.timeutil import utcnow
from usermgmt.db.seeds.seed_roles import DEFAULT_ROLE
from usermgmt.db.store import Increment
from usermgmt.models.user import RefreshToken, User
from usermgmt.services.notification_service import NotificationService
from usermgmt.services.user_service import UserService, normalize_email, serialize_user

logger = logging.getLogger("user_management.auth")


class AuthService:
    """Handles authentication and account recovery."""

    def __init__(self, db: Session, users: UserService, notifications: NotificationService):
        self.db = db
        self.users = users
        self.notifications = notifications

    # ── Registration ─────────────────────────────────────────────

    def register(self, email: str, password: str, full_name: str) -> User:
        user = self.users.create(email, password, full_name, role_name=DEFAULT_ROLE)
        self.notifications.create_system(
            user.id, "welcome", "Welcome", f"Welcome aboard, {user.full_name}!",
        )
        self._send_verification(user)
        return user

    def _send_verification(self, user: User) -> None:
        token = generate_token()
        self.users.store.update(user, {
            "email_verification_token_hash": hash_token(token),
            "email_verification_expires_at": utcnow()
            + timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRY_HOURS),
        })
        self.notifications.create_system(
            user.id,
            "email_verification",
            "Verify your email address",
            f"Use this code to verify your email address: {token}",
        )

    def resend_verification(self, user_id: int) -> None:
        user = self.users.get(user_id)
        if user.email_verified:
            raise ValidationError("Email address is already verified")
        self._send_verification(user)

    def verify_email(self, token: str) -> User:
        user = self._user_for_token("email_verification", token)
        return self.users.store.update(user, {
            "email_verified": True,
            "email_verification_token_hash": None,
            "email_verification_expires_at": None,
        })

    # ── Login ────────────────────────────────────────────────────

    def authenticate(self, email: str, password: str) -> Dict[str, Any]:
        """Authenticate user and return JWT tokens.

        Failed attempts are counted with a single atomic increment; reaching
        ``MAX_LOGIN_ATTEMPTS`` locks the account for ``LOCKOUT_MINUTES``.

        Raises:
            AuthenticationError: If credentials are invalid or the account
                is locked or deactivated.
        """
        user = self.users.get_by_email(email)
        if user is None:
            raise AuthenticationError("Invalid email or password")

        now = utcnow()
        if user.locked_until is not None:
            if user.locked_until > now:
                raise AuthenticationError("Account is locked. Try again later")
            # lock expired; start counting afresh
            self.users.store.update_where(
                [Predicate("id", Op.EQ, user.id), Predicate("locked_until", Op.LTE, now)],
                {"locked_until": None, "failed_login_attempts": 0},
            )

        if not verify_password(password, user.hashed_password):
            self._record_failure(user.id, now)
            raise AuthenticationError("Invalid email or password")

        if not user.is_active:
            raise AuthenticationError("Account is deactivated")

        self.users.store.update_where(
            [Predicate("id", Op.EQ, user.id)],
            {"failed_login_attempts": 0, "locked_until": None, "last_login_at": now},
        )
        logger.info("User %s logged in", user.id)
        return self._issue_tokens(self.users.get(user.id))

    def _record_failure(self, user_id: int, now: datetime) -> None:
        store = self.users.store
        store.update_where([Predicate("id", Op.EQ, user_id)], {"failed_login_attempts": Increment(1)})
        locked = store.update_where(
            [
                Predicate("id", Op.EQ, user_id),
                Predicate("failed_login_attempts", Op.GTE, settings.MAX_LOGIN_ATTEMPTS),
                Predicate("locked_until", Op.IS_NULL),
            ],
            {"locked_until": now + timedelta(minutes=settings.LOCKOUT_MINUTES)},
        )
        if locked:
            logger.warning("User %s locked after repeated failed logins", user_id)

    def _issue_tokens(self, user: User) -> Dict[str, Any]:
        token_data = {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role.name if user.role else None,
        }
        access_token = create_access_token(token_data)
        refresh_token_str = create_refresh_token(token_data)

        # Store refresh token hash
        expires = decode_token(refresh_token_str, REFRESH)["exp"]
        self.db.add(RefreshToken(
            user_id=user.id,
            token_hash=hash_token(refresh_token_str),
            expires_at=datetime.fromtimestamp(expires, tz=timezone.utc).replace(tzinfo=None),
        ))
        self.db.commit()

        return {
            "access_token": access_token,
            "refresh_token": refresh_token_str,
            "token_type": "bearer",
            "user": serialize_user(user),
        }

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        """Exchange a refresh token for a new token pair; the old one is revoked."""
        payload = decode_token(refresh_token, REFRESH)
        stored = self.db.query(RefreshToken).filter(
            RefreshToken.token_hash == hash_token(refresh_token),
            RefreshToken.revoked_at.is_(None),
        ).first()
        if stored is None or stored.expires_at <= utcnow():
            raise AuthenticationError("Invalid refresh token")

        user = self.db.get(User, int(payload["sub"]))
        if user is None or not user.is_active:
            raise AuthenticationError("User not found or deactivated")

        stored.revoked_at = utcnow()
        self.db.commit()
        return self._issue_tokens(user)

    def logout(self, user_id: int) -> None:
        """Revoke all refresh tokens for a user."""
        self.db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked_at.is_(None),
        ).update({"revoked_at": utcnow()}, synchronize_session=False)
        self.db.commit()

    # ── Passwords ────────────────────────────────────────────────

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        user = self.users.get(user_id)
        if not verify_password(current_password, user.hashed_password):
            raise AuthenticationError("Current password is incorrect")
        if current_password == new_password:
            raise ValidationError("New password must differ from the current one")
        self.users.store.update(user, {"hashed_password": hash_password(new_password)})
        self.logout(user_id)

    def forgot_password(self, email: str) -> None:
        """Issue a reset token if the account exists. Silent otherwise."""
        try:
            email = normalize_email(email)
        except ValidationError:
            return
        user = self.users.get_by_email(email)
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or inactive account")
            return

        token = generate_token()
        self.users.store.update(user, {
            "password_reset_token_hash": hash_token(token),
            "password_reset_expires_at": utcnow()
            + timedelta(minutes=settings.PASSWORD_RESET_EXPIRY_MINUTES),
        })
        self.notifications.create_system(
            user.id,
            "password_reset",
            "Reset your password",
            f"Use this code to reset your password: {token}",
        )

    def reset_password(self, token: str, new_password: str) -> None:
        user = self._user_for_token("password_reset", token)
        self.users.store.update(user, {
            "hashed_password": hash_password(new_password),
            "password_reset_token_hash": None,
            "password_reset_expires_at": None,
            "failed_login_attempts": 0,
            "locked_until": None,
        })
        self.logout(user.id)

    def _user_for_token(self, kind: str, token: str) -> User:
        hash_column = f"{kind}_token_hash"
        expiry_column = f"{kind}_expires_at"
        user: Optional[User] = self.users.store.find_one([
            Predicate(hash_column, Op.EQ, hash_token(token)),
            Predicate(expiry_column, Op.GT, utcnow()),
        ])
        if user is None:
            raise ValidationError("Invalid or expired token")
        return user
