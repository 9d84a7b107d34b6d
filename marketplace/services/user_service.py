"""Local user records mirrored from the identity provider."""

import logging
import sqlite3
from datetime import datetime

from marketplace.database import get_db
from marketplace.models.schemas import ROLE_GUEST, User, from_row

logger = logging.getLogger(__name__)


class UserService:
    """Lookup, creation and subject linkage of local users."""

    def get_by_email(self, email: str) -> User | None:
        db = get_db()
        try:
            row = db.execute(
                "SELECT * FROM users WHERE lower(email) = lower(?)", (email,)
            ).fetchone()
            return from_row(User, row)
        finally:
            db.close()

    def get_by_subject(self, subject: str) -> User | None:
        db = get_db()
        try:
            row = db.execute(
                "SELECT * FROM users WHERE idp_subject = ?", (subject,)
            ).fetchone()
            return from_row(User, row)
        finally:
            db.close()

    def create_user(self, email: str, subject: str, role: str = ROLE_GUEST) -> User:
        """
        Insert a local user for an identity-provider subject.

        Raises:
            ValueError: email or subject already mirrored.
        """
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cursor = db.execute(
                """INSERT INTO users (idp_subject, email, role, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (subject, email, role, now, now),
            )
            db.commit()
            return User(
                id=cursor.lastrowid,
                email=email,
                role=role,
                idp_subject=subject,
                created_at=now,
            )
        except sqlite3.IntegrityError as e:
            db.rollback()
            raise ValueError(f"User '{email}' already exists") from e
        finally:
            db.close()

    def link_subject(self, user_id: int, subject: str) -> User:
        """Point an existing local user at the provider's canonical subject."""
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            db.execute(
                "UPDATE users SET idp_subject = ?, updated_at = ? WHERE id = ?",
                (subject, now, user_id),
            )
            db.commit()
            row = db.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        finally:
            db.close()
        logger.info("Relinked user %d to identity subject %s", user_id, subject)
        return from_row(User, row)
