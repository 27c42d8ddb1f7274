import hashlib
import logging
import secrets
from datetime import timedelta, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import settings
from database import create_document, now, oid
from errors import AlreadyExists, Unauthorized
from schemas import Account, Session

logger = logging.getLogger(__name__)


def hash_password(pw: str) -> str:
    return hashlib.sha256(pw.encode()).hexdigest()


class IdentityProvider:
    """Accounts and login sessions. User profiles share the account id."""

    def __init__(self, db: Database, session_ttl_days: Optional[int] = None):
        self.accounts = db["account"]
        self.sessions = db["session"]
        self.session_ttl = timedelta(days=session_ttl_days or settings.SESSION_TTL_DAYS)

    def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.accounts.find_one({"email": email.lower()})

    def create_account(self, email: str, password: str, display_name: str) -> ObjectId:
        if self.get_by_email(email):
            logger.error("User already exists")
            raise AlreadyExists("User already exists")
        account = Account(email=email.lower(), password_hash=hash_password(password), display_name=display_name)
        try:
            uid = create_document(self.accounts, account.model_dump())
        except DuplicateKeyError:
            # Lost a race with a concurrent sign-up for the same email.
            raise AlreadyExists("User already exists")
        logger.info("Successfully created new account: %s", uid)
        return uid

    def delete_account(self, user_id) -> None:
        uid = oid(user_id)
        self.sessions.delete_many({"user_id": uid})
        self.accounts.delete_one({"_id": uid})

    def authenticate(self, email: str, password: str) -> str:
        account = self.get_by_email(email)
        if not account or account.get("disabled") or account.get("password_hash") != hash_password(password):
            raise Unauthorized("Invalid credentials")
        token = secrets.token_urlsafe(32)
        session = Session(token=token, user_id=str(account["_id"]), expires_at=now() + self.session_ttl)
        doc = session.model_dump()
        doc["user_id"] = account["_id"]
        create_document(self.sessions, doc)
        return token

    def resolve_session(self, token: Optional[str]) -> ObjectId:
        if not token:
            raise Unauthorized("User must be logged in")
        session = self.sessions.find_one({"token": token})
        if not session:
            raise Unauthorized("Invalid token")
        expires_at = session.get("expires_at")
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at < now():
                raise Unauthorized("Session expired")
        return session["user_id"]
