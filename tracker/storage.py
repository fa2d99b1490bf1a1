# tracker/storage.py
import datetime
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, List, Optional

import pytz

from .logger import get_logger
from .models import Item, Page, Subscription, User

logger = get_logger(__name__)

DB_PATH = os.getenv("DB_PATH", "/data/listing_watch.sqlite3")
DB_TIMEOUT = float(os.getenv("DB_TIMEOUT", "30"))

_SUBSCRIPTION_COLUMNS = """
    s.item_id, s.user_id, s.verification_code, s.verified, s.active,
    u.email, s.created_at
"""


def now_utc_iso() -> str:
    return datetime.datetime.now(tz=pytz.UTC).isoformat()


def _row_to_subscription(row: tuple) -> Subscription:
    item_id, user_id, code, verified, active, email, created_at = row
    return Subscription(
        item_id=item_id,
        user_id=user_id,
        verification_code=code,
        verified=bool(verified),
        active=bool(active),
        email=email or "",
        created_at=created_at or "",
    )


class Storage:
    """
    SQLite persistence for items, users and subscriptions.

    Every call opens its own connection and commits before returning, so
    uniqueness is enforced by the database rather than by the caller.
    Concurrent first-creation of the same row resolves through
    ``INSERT ... ON CONFLICT DO NOTHING`` followed by a reload.
    """

    def __init__(self, db_path: str = DB_PATH, timeout: float = DB_TIMEOUT):
        self.db_path = db_path
        self.timeout = timeout

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        con = sqlite3.connect(self.db_path, timeout=self.timeout)
        try:
            con.execute("PRAGMA foreign_keys = ON")
            with con:
                yield con
        finally:
            con.close()

    def ensure_db(self) -> None:
        with self._connect() as con:
            cur = con.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS items (
                    id TEXT PRIMARY KEY,
                    url TEXT NOT NULL,
                    price INTEGER NOT NULL,
                    first_seen TEXT,
                    last_checked TEXT
                )
            """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    created_at TEXT
                )
            """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS subscriptions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    item_id TEXT NOT NULL REFERENCES items(id),
                    user_id INTEGER NOT NULL REFERENCES users(id),
                    verification_code TEXT NOT NULL,
                    verified INTEGER NOT NULL DEFAULT 0,
                    active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT,
                    UNIQUE (item_id, user_id)
                )
            """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_subscriptions_user
                ON subscriptions(user_id, created_at, id)
            """
            )
        logger.debug("Database ready at %s", self.db_path)

    # Items

    def get_item(self, item_id: str) -> Optional[Item]:
        with self._connect() as con:
            row = con.execute(
                "SELECT id, url, price FROM items WHERE id=?", (item_id,)
            ).fetchone()
        if row is None:
            return None
        return Item(id=row[0], url=row[1], price=row[2])

    def get_or_create_item(self, item_id: str, url: str, price: int) -> Item:
        """Insert the item unless it exists; the price only applies on creation."""
        ts = now_utc_iso()
        with self._connect() as con:
            cur = con.execute(
                """
                INSERT INTO items (id, url, price, first_seen, last_checked)
                VALUES (?,?,?,?,?)
                ON CONFLICT(id) DO NOTHING
            """,
                (item_id, url, price, ts, ts),
            )
            created = cur.rowcount == 1
            row = con.execute(
                "SELECT id, url, price FROM items WHERE id=?", (item_id,)
            ).fetchone()

        if created:
            logger.info("Tracking new item %s at price %d", item_id, price)
        return Item(id=row[0], url=row[1], price=row[2])

    def update_item_price(self, item_id: str, price: int) -> None:
        with self._connect() as con:
            con.execute(
                "UPDATE items SET price=?, last_checked=? WHERE id=?",
                (price, now_utc_iso(), item_id),
            )

    def watched_items(self) -> List[Item]:
        """Items with at least one verified, active subscription."""
        with self._connect() as con:
            rows = con.execute(
                """
                SELECT DISTINCT i.id, i.url, i.price
                FROM items i
                JOIN subscriptions s ON s.item_id = i.id
                WHERE s.verified = 1 AND s.active = 1
                ORDER BY i.id
            """
            ).fetchall()
        return [Item(id=r[0], url=r[1], price=r[2]) for r in rows]

    # Users

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connect() as con:
            row = con.execute(
                "SELECT id, email FROM users WHERE id=?", (user_id,)
            ).fetchone()
        return User(id=row[0], email=row[1]) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as con:
            row = con.execute(
                "SELECT id, email FROM users WHERE email=?", (email,)
            ).fetchone()
        return User(id=row[0], email=row[1]) if row else None

    def get_or_create_user(self, email: str) -> User:
        with self._connect() as con:
            cur = con.execute(
                """
                INSERT INTO users (email, created_at) VALUES (?,?)
                ON CONFLICT(email) DO NOTHING
            """,
                (email, now_utc_iso()),
            )
            created = cur.rowcount == 1
            row = con.execute(
                "SELECT id, email FROM users WHERE email=?", (email,)
            ).fetchone()

        if created:
            logger.info("Registered new user %s (%s)", row[0], email)
        return User(id=row[0], email=row[1])

    # Subscriptions

    def find_subscription(self, item_id: str, user_id: int) -> Optional[Subscription]:
        with self._connect() as con:
            row = con.execute(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM subscriptions s JOIN users u ON u.id = s.user_id
                WHERE s.item_id=? AND s.user_id=?
            """,
                (item_id, user_id),
            ).fetchone()
        return _row_to_subscription(row) if row else None

    def find_subscription_by_email(self, item_id: str, email: str) -> Optional[Subscription]:
        with self._connect() as con:
            row = con.execute(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM subscriptions s JOIN users u ON u.id = s.user_id
                WHERE s.item_id=? AND u.email=?
            """,
                (item_id, email),
            ).fetchone()
        return _row_to_subscription(row) if row else None

    def insert_subscription(self, subscription: Subscription) -> Optional[Subscription]:
        """
        Persist a new subscription.
        Returns None when a row for the same (item_id, user_id) already exists,
        which is how a lost creation race is reported to the caller.
        """
        with self._connect() as con:
            cur = con.execute(
                """
                INSERT INTO subscriptions (
                    item_id, user_id, verification_code, verified, active, created_at
                )
                VALUES (?,?,?,?,?,?)
                ON CONFLICT(item_id, user_id) DO NOTHING
            """,
                (
                    subscription.item_id,
                    subscription.user_id,
                    subscription.verification_code,
                    1 if subscription.verified else 0,
                    1 if subscription.active else 0,
                    now_utc_iso(),
                ),
            )
            inserted = cur.rowcount == 1

        if not inserted:
            logger.debug(
                "Subscription (item=%s, user=%s) already exists; insert skipped.",
                subscription.item_id,
                subscription.user_id,
            )
            return None
        return self.find_subscription(subscription.item_id, subscription.user_id)

    def mark_verified(self, item_id: str, user_id: int) -> bool:
        """Flip verified on; False when the row is missing or was already verified."""
        with self._connect() as con:
            cur = con.execute(
                """
                UPDATE subscriptions SET verified=1
                WHERE item_id=? AND user_id=? AND verified=0
            """,
                (item_id, user_id),
            )
            return cur.rowcount == 1

    def set_active(self, item_id: str, user_id: int, active: bool) -> bool:
        """Set only the active flag; False when no such subscription exists."""
        with self._connect() as con:
            cur = con.execute(
                "UPDATE subscriptions SET active=? WHERE item_id=? AND user_id=?",
                (1 if active else 0, item_id, user_id),
            )
            return cur.rowcount == 1

    def reactivate(self, item_id: str, user_id: int) -> bool:
        """Verified, inactive -> active. False when the row is not in that state any more."""
        with self._connect() as con:
            cur = con.execute(
                """
                UPDATE subscriptions SET active=1
                WHERE item_id=? AND user_id=? AND verified=1 AND active=0
            """,
                (item_id, user_id),
            )
            return cur.rowcount == 1

    def active_subscriptions(self, item_id: str) -> List[Subscription]:
        """Verified, active subscriptions for an item."""
        with self._connect() as con:
            rows = con.execute(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM subscriptions s JOIN users u ON u.id = s.user_id
                WHERE s.item_id=? AND s.verified = 1 AND s.active = 1
                ORDER BY s.created_at, s.id
            """,
                (item_id,),
            ).fetchall()
        return [_row_to_subscription(r) for r in rows]

    def list_user_subscriptions(self, user_id: int, page: int, limit: int) -> Page:
        """Zero-based page of a user's subscriptions, oldest first."""
        with self._connect() as con:
            total = con.execute(
                "SELECT COUNT(*) FROM subscriptions WHERE user_id=?", (user_id,)
            ).fetchone()[0]
            rows = con.execute(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM subscriptions s JOIN users u ON u.id = s.user_id
                WHERE s.user_id=?
                ORDER BY s.created_at, s.id
                LIMIT ? OFFSET ?
            """,
                (user_id, limit, page * limit),
            ).fetchall()

        return Page(
            items=[_row_to_subscription(r) for r in rows],
            page=page,
            limit=limit,
            total=total or 0,
        )
