import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .models import AuthSession, Identity, new_id, utcnow
from .security import (
    create_session_token,
    decode_session_token,
    get_password_hash,
    verify_password,
)

logger = logging.getLogger(__name__)

DEMO_EMAIL = "demo@example.com"
DEMO_PASSWORD = "demo123"


class SessionStore:
    """Current identity for one caller.

    ``identity`` and ``token`` are None while logged out. Tokens are only
    honoured while their ``AuthSession`` row exists, so ``logout`` revokes
    them.
    """

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.identity: Optional[Identity] = None
        self.token: Optional[str] = None
        self._token_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    def login(self, email: str, password: str) -> bool:
        identity = self.db.query(Identity).filter(Identity.email == email).first()
        if identity is None or not verify_password(password, identity.password_hash):
            logger.info("Rejected login attempt")
            return False
        self._start(identity)
        logger.info("Identity %s logged in", identity.id)
        return True

    def register(self, email: str, password: str, name: str, company: str) -> bool:
        if self.db.query(Identity).filter(Identity.email == email).first():
            return False
        identity = Identity(
            id=new_id(),
            email=email,
            password_hash=get_password_hash(password),
            name=name,
            company=company,
            created_at=utcnow(),
        )
        self.db.add(identity)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        logger.info("Registered identity %s", identity.id)
        return self.login(email, password)

    def logout(self) -> None:
        if self._token_id:
            self.db.query(AuthSession).filter(AuthSession.id == self._token_id).delete()
            self.db.commit()
        self._clear()

    def restore(self, token: str) -> bool:
        """Re-establish the identity behind ``token``; anything invalid logs out silently."""
        self._clear()
        try:
            claims = decode_session_token(token, self.settings.secret_key)
        except ValueError as exc:
            logger.debug("Discarding session token: %s", exc)
            return False

        record = self.db.get(AuthSession, claims["jti"])
        if record is None or record.identity_id != claims["sub"]:
            return False
        if record.expires_at <= utcnow():
            self.db.delete(record)
            self.db.commit()
            return False

        identity = self.db.get(Identity, claims["sub"])
        if identity is None:
            return False
        self.identity = identity
        self.token = token
        self._token_id = record.id
        return True

    def purge_expired(self) -> int:
        removed = (
            self.db.query(AuthSession)
            .filter(AuthSession.expires_at <= utcnow())
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return removed

    def _start(self, identity: Identity) -> None:
        expires = datetime.now(timezone.utc) + timedelta(minutes=self.settings.token_ttl_minutes)
        record = AuthSession(
            id=new_id(),
            identity_id=identity.id,
            issued_at=utcnow(),
            expires_at=expires.replace(tzinfo=None),
        )
        self.db.add(record)
        self.db.commit()
        self.identity = identity
        self._token_id = record.id
        self.token = create_session_token(identity.id, record.id, expires, self.settings.secret_key)

    def _clear(self) -> None:
        self.identity = None
        self.token = None
        self._token_id = None


def seed_demo_identity(db: Session) -> None:
    if db.query(Identity).filter(Identity.email == DEMO_EMAIL).first():
        return
    db.add(
        Identity(
            id="demo-user-1",
            email=DEMO_EMAIL,
            password_hash=get_password_hash(DEMO_PASSWORD),
            name="Demo User",
            company="Demo Company Inc.",
            created_at=utcnow(),
        )
    )
    db.commit()
    logger.info("Seeded demo identity %s", DEMO_EMAIL)
