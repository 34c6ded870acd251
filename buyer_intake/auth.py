"""Passwordless email sign in.

A magic link carries a random token; only its SHA-256 hash is stored. Using
the link consumes the token and issues a bearer session token.
"""

import hashlib
import logging
import secrets
import smtplib
from datetime import timedelta
from email.message import EmailMessage
from urllib.parse import urlencode

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .buyers import transaction
from .config import (
    APP_BASE_URL,
    EMAIL_FROM,
    EMAIL_SERVER_HOST,
    EMAIL_SERVER_PASSWORD,
    EMAIL_SERVER_PORT,
    EMAIL_SERVER_USER,
    MAGIC_LINK_MAX_AGE_SECONDS,
    SESSION_MAX_AGE_SECONDS,
)
from .errors import AuthenticationError
from .models import User, UserSession, VerificationToken, utcnow

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/api/auth/callback/email"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def magic_link_url(email: str, token: str) -> str:
    return f"{APP_BASE_URL}{CALLBACK_PATH}?{urlencode({'token': token, 'email': email})}"


def send_magic_link(email: str, url: str) -> None:
    """Deliver the link over SMTP."""
    message = EmailMessage()
    message["Subject"] = "Sign in to Buyer Leads"
    message["From"] = EMAIL_FROM
    message["To"] = email
    message.set_content(
        f"Use the link below to sign in. It expires in "
        f"{MAGIC_LINK_MAX_AGE_SECONDS // 3600} hours.\n\n{url}\n"
    )
    with smtplib.SMTP(EMAIL_SERVER_HOST, EMAIL_SERVER_PORT, timeout=30) as smtp:
        if EMAIL_SERVER_USER:
            smtp.starttls()
            smtp.login(EMAIL_SERVER_USER, EMAIL_SERVER_PASSWORD or "")
        smtp.send_message(message)


def request_magic_link(session: Session, email: str) -> str:
    """Store a new sign-in token for ``email`` and deliver the link.

    Returns the link so callers (and tests) can use it without a mailbox.
    """
    email = email.strip().lower()
    token = secrets.token_urlsafe(32)

    with transaction(session):
        session.add(VerificationToken(
            identifier=email,
            token_hash=hash_token(token),
            expires=utcnow() + timedelta(seconds=MAGIC_LINK_MAX_AGE_SECONDS),
        ))

    url = magic_link_url(email, token)
    logger.info(f"Magic link for {email}: {url}")
    if EMAIL_SERVER_HOST:
        send_magic_link(email, url)
        logger.info(f"Magic link emailed to {email}")
    return url


def verify_magic_link(session: Session, email: str, token: str) -> UserSession:
    """Consume a sign-in token and open a session for its user."""
    email = email.strip().lower()
    now = utcnow()

    stored = session.get(VerificationToken, (email, hash_token(token)))
    if stored is None:
        raise AuthenticationError("Invalid or expired sign-in link")
    if stored.expires <= now:
        with transaction(session):
            session.delete(stored)
        raise AuthenticationError("Invalid or expired sign-in link")

    with transaction(session):
        session.delete(stored)
        user = session.scalar(select(User).where(User.email == email))
        if user is None:
            user = User(email=email, name=email.split("@")[0])
            session.add(user)
            logger.info(f"New user signed up: {email}")
        if user.email_verified is None:
            user.email_verified = now
        session.flush()

        user_session = UserSession(
            session_token=secrets.token_urlsafe(32),
            user_id=user.id,
            expires=now + timedelta(seconds=SESSION_MAX_AGE_SECONDS),
        )
        session.add(user_session)

    session.refresh(user_session)
    logger.info(f"User {user_session.user_id} signed in")
    return user_session


def resolve_session(session: Session, token: str | None) -> User:
    """The user behind a live session token, or AuthenticationError."""
    if not token:
        raise AuthenticationError()
    user_session = session.get(UserSession, token)
    if user_session is None:
        raise AuthenticationError()
    if user_session.expires <= utcnow():
        with transaction(session):
            session.delete(user_session)
        raise AuthenticationError()
    return user_session.user


def revoke_session(session: Session, token: str) -> None:
    with transaction(session):
        session.execute(delete(UserSession).where(UserSession.session_token == token))
    logger.info("Session revoked")
