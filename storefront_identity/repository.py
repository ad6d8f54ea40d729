"""Database repository for account security state and audit records."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import psycopg
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from .domain.account import AccessLevel, Account
from .domain.errors import StateConflictError, StoreUnavailableError

_ACCOUNT_COLUMNS = """
    account_id, email, password_hash, access_level, is_active, is_banned, is_deleted,
    failed_login_attempts, last_failed_login_at, last_successful_login_at,
    last_login_ip_address, locked_until, version
"""


class AccountRepository:
    """Postgres-backed account store.

    Failed attempts are counted with an atomic increment; successful logins
    are written back with a version check.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def fetch_by_email(self, email: str) -> Account | None:
        """Return the account registered under ``email`` or ``None``."""
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        SELECT {_ACCOUNT_COLUMNS}
                        FROM accounts
                        WHERE email = %s
                        """,
                        (email,),
                    )
                    row = cur.fetchone()
        except psycopg.Error as exc:
            raise StoreUnavailableError("account lookup failed") from exc
        if not row:
            return None
        return self._map_record(row)

    def save_security_state(self, account: Account, expected_version: int) -> Account:
        """Write the login security fields if the row is still at ``expected_version``.

        Returns the account as committed (with its new version). Raises
        :class:`StateConflictError` when another writer got there first.
        """
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        UPDATE accounts
                        SET failed_login_attempts = %s,
                            last_failed_login_at = %s,
                            last_successful_login_at = %s,
                            last_login_ip_address = %s,
                            locked_until = %s,
                            version = version + 1,
                            updated_at = NOW()
                        WHERE account_id = %s AND version = %s
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (
                            account.failed_login_attempts,
                            account.last_failed_login_at,
                            account.last_successful_login_at,
                            account.last_login_ip_address,
                            account.locked_until,
                            account.account_id,
                            expected_version,
                        ),
                    )
                    row = cur.fetchone()
                    conn.commit()
        except psycopg.Error as exc:
            raise StoreUnavailableError("account write-back failed") from exc
        if not row:
            raise StateConflictError(account.account_id, expected_version)
        return self._map_record(row)

    def record_failure(
        self,
        account_id: str,
        *,
        now: datetime,
        client_ip: str,
        max_failed_attempts: int,
        lockout_duration: timedelta,
    ) -> Account:
        """Count one failed credential check in a single atomic statement.

        The increment and the lock decision happen in the database, so
        concurrent failures are all counted. An active lock is left in place;
        reaching ``max_failed_attempts`` without one sets
        ``locked_until = now + lockout_duration``.
        """
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        UPDATE accounts
                        SET failed_login_attempts = failed_login_attempts + 1,
                            last_failed_login_at = %s,
                            last_login_ip_address = %s,
                            locked_until = CASE
                                WHEN failed_login_attempts + 1 >= %s
                                     AND (locked_until IS NULL OR locked_until <= %s)
                                THEN %s
                                ELSE locked_until
                            END,
                            version = version + 1,
                            updated_at = NOW()
                        WHERE account_id = %s
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (
                            now,
                            client_ip,
                            max_failed_attempts,
                            now,
                            now + lockout_duration,
                            account_id,
                        ),
                    )
                    row = cur.fetchone()
                    conn.commit()
        except psycopg.Error as exc:
            raise StoreUnavailableError("failed login write-back failed") from exc
        if not row:
            raise StoreUnavailableError(f"account {account_id} disappeared during login")
        return self._map_record(row)

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit trail entry capturing identity workflow activity."""
        try:
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO identity_audit_log (account_id, event_type, actor, metadata)
                        VALUES (%s, %s, %s, %s)
                        """,
                        (account_id, event_type, actor, Json(metadata or {})),
                    )
                    conn.commit()
        except psycopg.Error as exc:
            raise StoreUnavailableError("audit insert failed") from exc

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=str(row[0]),
            email=row[1],
            password_hash=row[2],
            access_level=AccessLevel(row[3]),
            is_active=row[4],
            is_banned=row[5],
            is_deleted=row[6],
            failed_login_attempts=row[7],
            last_failed_login_at=row[8],
            last_successful_login_at=row[9],
            last_login_ip_address=row[10],
            locked_until=row[11],
            version=row[12],
        )
