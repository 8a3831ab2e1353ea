"""SQLite database connection and operations for Warmline.

Provides:
    - Connection management with WAL mode and explicit transactions
    - Schema creation
    - CRUD operations for all tables
    - Guarded (compare-and-set) status updates

Every status mutation is a single-row UPDATE guarded by the expected prior
value; the return value says whether this caller won. Engagement attempts
and audit records are append-only and protected by triggers.

Usage:
    from warmline.db.database import Database

    db = Database()
    db.initialize()

    opp_id = db.create_opportunity(ConnectorOpportunity(owner_user_id="u-1", prospect_id="p-9"))
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from warmline.core.clock import Clock, SystemClock, from_db_timestamp, to_db_timestamp
from warmline.core.config import get_config
from warmline.core.exceptions import DatabaseError, ValidationError
from warmline.core.logging import get_logger
from warmline.db.models import (
    OPPORTUNITY_CLASSES,
    AnyOpportunity,
    AttemptOutcome,
    AuditRecord,
    ConnectionRequest,
    ConnectionStrength,
    ConnectorOpportunity,
    EngagementAttempt,
    EngagementTask,
    IntroductionOffer,
    IntroRole,
    MessageDirection,
    OpportunityKind,
    OpportunityStatus,
    OutstandingRequest,
    RequestStatus,
    TaskStatus,
    TaskType,
    User,
    UserMessage,
    UserPriorityEntry,
)

logger = get_logger(__name__)


SCHEMA_VERSION = 1

# Seconds a writer waits on a locked database before giving up
BUSY_TIMEOUT_SECONDS = 30.0


def _dumps(value: Optional[dict[str, Any]]) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, sort_keys=True, default=str)


def _loads(value: Optional[str]) -> dict[str, Any]:
    if not value:
        return {}
    return json.loads(value)


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


class Database:
    """SQLite database manager.

    One instance owns one connection. Parallel units must each open their
    own Database on the same path; SQLite is the coordination point.

    Attributes:
        db_path: Path to database file
        clock: Source of "now" for every timestamp this layer writes
    """

    def __init__(self, db_path: Optional[str] = None, clock: Optional[Clock] = None):
        """Initialize database.

        Args:
            db_path: Path to database file. Use ":memory:" for in-memory.
                    Defaults to config path.
            clock: Clock for created_at/updated_at stamps. Defaults to SystemClock.
        """
        if db_path is None:
            config = get_config()
            self.db_path = str(config.db_path)
        else:
            self.db_path = db_path

        self.clock: Clock = clock or SystemClock()
        self._conn: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            try:
                if self.db_path != ":memory:":
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

                # Autocommit mode; transactions are opened explicitly below
                self._conn = sqlite3.connect(
                    self.db_path,
                    timeout=BUSY_TIMEOUT_SECONDS,
                    isolation_level=None,
                    check_same_thread=False,
                )
                self._conn.row_factory = sqlite3.Row

                self._conn.execute("PRAGMA foreign_keys = ON")

                if self.db_path != ":memory:":
                    self._conn.execute("PRAGMA journal_mode = WAL")

            except sqlite3.Error as e:
                raise DatabaseError(f"Cannot connect to database: {e}") from e

        return self._conn

    @staticmethod
    def _lastrowid(cursor: sqlite3.Cursor) -> int:
        """Extract lastrowid from cursor (always set after INSERT in SQLite)."""
        row_id = cursor.lastrowid
        assert row_id is not None, "lastrowid was None after INSERT"
        return row_id

    def _now(self) -> str:
        return to_db_timestamp(self.clock.now())

    def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Run a block inside one transaction.

        Nested use joins the outer transaction. ``immediate=True`` takes the
        write lock up front (BEGIN IMMEDIATE) so everything read inside the
        block stays valid until commit.

        Raises:
            DatabaseError: On any SQLite failure (the transaction is rolled back)
        """
        conn = self._get_connection()
        if conn.in_transaction:
            yield conn
            return

        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        except sqlite3.Error as e:
            raise DatabaseError(f"Cannot begin transaction: {e}") from e

        try:
            yield conn
        except sqlite3.Error as e:
            conn.rollback()
            raise DatabaseError(f"Transaction failed: {e}") from e
        except BaseException:
            conn.rollback()
            raise
        else:
            try:
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise DatabaseError(f"Commit failed: {e}") from e

    def initialize(self) -> None:
        """Create schema if not exists.

        Creates all tables, indexes, triggers and initial schema version.
        """
        conn = self._get_connection()

        try:
            conn.executescript(self._get_schema_ddl())
            logger.info("Database initialized", extra={"context": {"path": self.db_path}})
        except sqlite3.Error as e:
            raise DatabaseError(f"Cannot initialize database: {e}") from e

    def _get_schema_ddl(self) -> str:
        """Return complete schema DDL."""
        return """
        -- Members
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            display_name TEXT,
            profile_json TEXT NOT NULL DEFAULT '{}',
            manual_override_at TEXT,
            created_at TEXT NOT NULL
        );

        -- Opportunities (one table, kind-specific columns nullable)
        CREATE TABLE IF NOT EXISTS opportunities (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            kind TEXT NOT NULL CHECK (kind IN
                ('connector_opportunity', 'connection_request', 'introduction_offer')),
            owner_user_id TEXT NOT NULL,
            counterpart_descriptor TEXT,
            status TEXT NOT NULL DEFAULT 'open',
            value_score INTEGER NOT NULL DEFAULT 0,
            presentation_count INTEGER NOT NULL DEFAULT 0,
            last_presented_at TEXT,
            dormant_at TEXT,
            prospect_id TEXT,
            bounty_credits INTEGER,
            connection_strength TEXT,
            vouch_count INTEGER,
            credits_spent INTEGER,
            role TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (owner_user_id) REFERENCES users(id)
        );

        CREATE INDEX IF NOT EXISTS idx_opportunities_owner
            ON opportunities(owner_user_id, status);
        CREATE INDEX IF NOT EXISTS idx_opportunities_prospect
            ON opportunities(prospect_id, status);

        -- At most one accepted connector opportunity per prospect
        CREATE UNIQUE INDEX IF NOT EXISTS idx_opportunities_one_accepted
            ON opportunities(prospect_id)
            WHERE status = 'accepted' AND kind = 'connector_opportunity';

        -- Engagement attempts (append-only)
        CREATE TABLE IF NOT EXISTS engagement_attempts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            outcome TEXT NOT NULL,
            trigger_id TEXT,
            metadata_json TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL,
            UNIQUE (user_id, trigger_id),
            FOREIGN KEY (user_id) REFERENCES users(id)
        );

        CREATE INDEX IF NOT EXISTS idx_attempts_user_outcome
            ON engagement_attempts(user_id, outcome, created_at);

        CREATE TRIGGER IF NOT EXISTS trg_attempts_no_update
            BEFORE UPDATE ON engagement_attempts
            BEGIN SELECT RAISE(ABORT, 'engagement_attempts is append-only'); END;
        CREATE TRIGGER IF NOT EXISTS trg_attempts_no_delete
            BEFORE DELETE ON engagement_attempts
            BEGIN SELECT RAISE(ABORT, 'engagement_attempts is append-only'); END;

        -- Conversation
        CREATE TABLE IF NOT EXISTS user_messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            direction TEXT NOT NULL,
            content TEXT NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users(id)
        );

        CREATE INDEX IF NOT EXISTS idx_messages_user
            ON user_messages(user_id, direction, created_at);

        -- Outstanding member requests
        CREATE TABLE IF NOT EXISTS outstanding_requests (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            description TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'open',
            created_at TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users(id)
        );

        -- Scheduled work
        CREATE TABLE IF NOT EXISTS engagement_tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            task_type TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            scheduled_for TEXT NOT NULL,
            item_type TEXT,
            item_id TEXT,
            context_json TEXT NOT NULL DEFAULT '{}',
            result_json TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users(id)
        );

        CREATE INDEX IF NOT EXISTS idx_tasks_due ON engagement_tasks(status, scheduled_for);
        CREATE INDEX IF NOT EXISTS idx_tasks_item ON engagement_tasks(item_type, item_id, status);
        CREATE INDEX IF NOT EXISTS idx_tasks_user ON engagement_tasks(user_id, task_type, status);

        -- Ranked priority projection, versioned
        CREATE TABLE IF NOT EXISTS user_priorities (
            user_id TEXT NOT NULL,
            version INTEGER NOT NULL,
            rank INTEGER NOT NULL,
            item_type TEXT NOT NULL,
            item_id TEXT NOT NULL,
            value_score INTEGER NOT NULL,
            status TEXT NOT NULL,
            PRIMARY KEY (user_id, version, rank),
            UNIQUE (user_id, version, item_type, item_id)
        );

        CREATE TABLE IF NOT EXISTS priority_heads (
            user_id TEXT PRIMARY KEY,
            current_version INTEGER NOT NULL,
            content_hash TEXT NOT NULL,
            refreshed_at TEXT NOT NULL
        );

        -- Exposure dedup keys
        CREATE TABLE IF NOT EXISTS presentation_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            item_type TEXT NOT NULL,
            item_id TEXT NOT NULL,
            exposure_key TEXT NOT NULL,
            presentation_kind TEXT NOT NULL,
            created_at TEXT NOT NULL,
            UNIQUE (item_type, item_id, exposure_key)
        );

        -- Audit log (append-only)
        CREATE TABLE IF NOT EXISTS audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            actor_component TEXT NOT NULL,
            action TEXT NOT NULL,
            user_id TEXT,
            item_type TEXT,
            item_id TEXT,
            status_before TEXT,
            status_after TEXT,
            details_json TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_audit_user ON audit_log(user_id, created_at);
        CREATE INDEX IF NOT EXISTS idx_audit_item ON audit_log(item_type, item_id);

        CREATE TRIGGER IF NOT EXISTS trg_audit_no_update
            BEFORE UPDATE ON audit_log
            BEGIN SELECT RAISE(ABORT, 'audit_log is append-only'); END;
        CREATE TRIGGER IF NOT EXISTS trg_audit_no_delete
            BEFORE DELETE ON audit_log
            BEGIN SELECT RAISE(ABORT, 'audit_log is append-only'); END;

        -- Schema version
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY
        );

        INSERT OR IGNORE INTO schema_version (version) VALUES (1);
        """

    # =========================================================================
    # ROW-TO-MODEL HELPERS
    # =========================================================================

    def _row_to_user(self, row: sqlite3.Row) -> User:
        """Convert a database row to a User dataclass."""
        return User(
            id=row["id"],
            display_name=row["display_name"],
            profile=_loads(row["profile_json"]),
            manual_override_at=from_db_timestamp(row["manual_override_at"]),
            created_at=from_db_timestamp(row["created_at"]),
        )

    def _row_to_opportunity(self, row: sqlite3.Row) -> AnyOpportunity:
        """Convert a database row to the dataclass matching its kind."""
        kind = OpportunityKind(row["kind"])
        common: dict[str, Any] = dict(
            id=row["id"],
            owner_user_id=row["owner_user_id"],
            counterpart_descriptor=row["counterpart_descriptor"],
            status=OpportunityStatus(row["status"]),
            value_score=row["value_score"] or 0,
            presentation_count=row["presentation_count"] or 0,
            last_presented_at=from_db_timestamp(row["last_presented_at"]),
            dormant_at=from_db_timestamp(row["dormant_at"]),
            created_at=from_db_timestamp(row["created_at"]),
            updated_at=from_db_timestamp(row["updated_at"]),
        )

        if kind == OpportunityKind.CONNECTOR_OPPORTUNITY:
            strength = row["connection_strength"]
            return ConnectorOpportunity(
                **common,
                prospect_id=row["prospect_id"],
                bounty_credits=row["bounty_credits"] or 0,
                connection_strength=(
                    ConnectionStrength(strength) if strength else ConnectionStrength.UNKNOWN
                ),
            )
        if kind == OpportunityKind.CONNECTION_REQUEST:
            return ConnectionRequest(
                **common,
                vouch_count=row["vouch_count"] or 0,
                credits_spent=row["credits_spent"] or 0,
            )
        role = row["role"]
        return IntroductionOffer(
            **common,
            role=IntroRole(role) if role else IntroRole.INTRODUCEE,
            bounty_credits=row["bounty_credits"] or 0,
        )

    def _row_to_attempt(self, row: sqlite3.Row) -> EngagementAttempt:
        """Convert a database row to an EngagementAttempt dataclass."""
        return EngagementAttempt(
            id=row["id"],
            user_id=row["user_id"],
            outcome=AttemptOutcome(row["outcome"]),
            trigger_id=row["trigger_id"],
            metadata=_loads(row["metadata_json"]),
            created_at=from_db_timestamp(row["created_at"]),
        )

    def _row_to_message(self, row: sqlite3.Row) -> UserMessage:
        """Convert a database row to a UserMessage dataclass."""
        return UserMessage(
            id=row["id"],
            user_id=row["user_id"],
            direction=MessageDirection(row["direction"]),
            content=row["content"],
            created_at=from_db_timestamp(row["created_at"]),
        )

    def _row_to_request(self, row: sqlite3.Row) -> OutstandingRequest:
        """Convert a database row to an OutstandingRequest dataclass."""
        return OutstandingRequest(
            id=row["id"],
            user_id=row["user_id"],
            description=row["description"],
            status=RequestStatus(row["status"]),
            created_at=from_db_timestamp(row["created_at"]),
        )

    def _row_to_task(self, row: sqlite3.Row) -> EngagementTask:
        """Convert a database row to an EngagementTask dataclass."""
        result = row["result_json"]
        return EngagementTask(
            id=row["id"],
            user_id=row["user_id"],
            task_type=TaskType(row["task_type"]),
            status=TaskStatus(row["status"]),
            scheduled_for=from_db_timestamp(row["scheduled_for"]),
            item_type=row["item_type"],
            item_id=row["item_id"],
            context=_loads(row["context_json"]),
            result=_loads(result) if result else None,
            created_at=from_db_timestamp(row["created_at"]),
            updated_at=from_db_timestamp(row["updated_at"]),
        )

    def _row_to_priority(self, row: sqlite3.Row) -> UserPriorityEntry:
        """Convert a database row to a UserPriorityEntry dataclass."""
        return UserPriorityEntry(
            user_id=row["user_id"],
            rank=row["rank"],
            item_type=row["item_type"],
            item_id=row["item_id"],
            value_score=row["value_score"],
            status=row["status"],
            version=row["version"],
        )

    def _row_to_audit(self, row: sqlite3.Row) -> AuditRecord:
        """Convert a database row to an AuditRecord dataclass."""
        return AuditRecord(
            id=row["id"],
            actor_component=row["actor_component"],
            action=row["action"],
            user_id=row["user_id"],
            item_type=row["item_type"],
            item_id=row["item_id"],
            status_before=row["status_before"],
            status_after=row["status_after"],
            details=_loads(row["details_json"]),
            created_at=from_db_timestamp(row["created_at"]),
        )

    # =========================================================================
    # USER OPERATIONS
    # =========================================================================

    def create_user(self, user: User) -> str:
        """Create a member record.

        Returns:
            The member ID
        """
        created_at = to_db_timestamp(user.created_at) if user.created_at else self._now()
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO users (id, display_name, profile_json, created_at)
                   VALUES (?, ?, ?, ?)""",
                (user.id, user.display_name, _dumps(user.profile or {}), created_at),
            )
        logger.info("User created", extra={"context": {"user_id": user.id}})
        return user.id

    def get_user(self, user_id: str) -> Optional[User]:
        """Get member by ID."""
        conn = self._get_connection()
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def set_manual_override(self, user_id: str, when: datetime) -> bool:
        """Stamp the time an operator lifted a strike pause."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE users SET manual_override_at = ? WHERE id = ?",
                (to_db_timestamp(when), user_id),
            )
        return cursor.rowcount > 0

    # =========================================================================
    # OPPORTUNITY OPERATIONS
    # =========================================================================

    def create_opportunity(self, opportunity: AnyOpportunity) -> int:
        """Create an opportunity of any kind.

        Producers create opportunities in ``open``; the remaining lifecycle
        fields are owned by this engine.

        Args:
            opportunity: ConnectorOpportunity, ConnectionRequest or IntroductionOffer

        Returns:
            New opportunity ID

        Raises:
            ValidationError: If the owner is missing or the dataclass is not a known kind
        """
        if type(opportunity) not in OPPORTUNITY_CLASSES.values():
            raise ValidationError(f"Unknown opportunity type: {type(opportunity).__name__}")
        if not opportunity.owner_user_id:
            raise ValidationError("Opportunity owner_user_id is required")

        now = self._now()
        created_at = to_db_timestamp(opportunity.created_at) if opportunity.created_at else now

        prospect_id = bounty = strength = vouch = spent = role = None
        if isinstance(opportunity, ConnectorOpportunity):
            prospect_id = opportunity.prospect_id
            bounty = opportunity.bounty_credits
            strength = _enum_value(opportunity.connection_strength)
        elif isinstance(opportunity, ConnectionRequest):
            vouch = opportunity.vouch_count
            spent = opportunity.credits_spent
        elif isinstance(opportunity, IntroductionOffer):
            role = _enum_value(opportunity.role)
            bounty = opportunity.bounty_credits

        with self.transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO opportunities
                   (kind, owner_user_id, counterpart_descriptor, status, value_score,
                    presentation_count, prospect_id, bounty_credits, connection_strength,
                    vouch_count, credits_spent, role, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    opportunity.kind.value,
                    opportunity.owner_user_id,
                    opportunity.counterpart_descriptor,
                    _enum_value(opportunity.status),
                    opportunity.value_score,
                    opportunity.presentation_count,
                    prospect_id,
                    bounty,
                    strength,
                    vouch,
                    spent,
                    role,
                    created_at,
                    now,
                ),
            )
            opportunity_id = self._lastrowid(cursor)

        logger.info(
            "Opportunity created",
            extra={
                "context": {
                    "opportunity_id": opportunity_id,
                    "kind": opportunity.kind.value,
                    "user_id": opportunity.owner_user_id,
                }
            },
        )
        return opportunity_id

    def get_opportunity(self, opportunity_id: int) -> Optional[AnyOpportunity]:
        """Get opportunity by ID."""
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM opportunities WHERE id = ?", (opportunity_id,)
        ).fetchone()
        return self._row_to_opportunity(row) if row else None

    def get_opportunity_by_item(self, item_type: str, item_id: Any) -> Optional[AnyOpportunity]:
        """Get an opportunity by its (item_type, item_id) reference.

        Returns None when the id is unknown or belongs to a different kind.
        """
        try:
            opportunity_id = int(item_id)
        except (TypeError, ValueError):
            return None
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM opportunities WHERE id = ? AND kind = ?",
            (opportunity_id, item_type),
        ).fetchone()
        return self._row_to_opportunity(row) if row else None

    def get_opportunities(
        self,
        user_id: str,
        statuses: Optional[Iterable[OpportunityStatus]] = None,
    ) -> list[AnyOpportunity]:
        """Get a member's opportunities, oldest first.

        Args:
            user_id: Owner
            statuses: Restrict to these statuses (all if None)
        """
        conn = self._get_connection()
        sql = "SELECT * FROM opportunities WHERE owner_user_id = ?"
        params: list[Any] = [user_id]
        if statuses is not None:
            values = [_enum_value(s) for s in statuses]
            sql += f" AND status IN ({', '.join('?' for _ in values)})"
            params.extend(values)
        sql += " ORDER BY created_at, id"
        rows = conn.execute(sql, params).fetchall()
        return [self._row_to_opportunity(row) for row in rows]

    def get_siblings(
        self,
        prospect_id: str,
        exclude_id: int,
        statuses: Iterable[OpportunityStatus],
    ) -> list[ConnectorOpportunity]:
        """Get connector opportunities for the same prospect in the given statuses."""
        values = [_enum_value(s) for s in statuses]
        conn = self._get_connection()
        rows = conn.execute(
            f"""SELECT * FROM opportunities
                WHERE kind = 'connector_opportunity'
                  AND prospect_id = ?
                  AND id != ?
                  AND status IN ({', '.join('?' for _ in values)})
                ORDER BY id""",
            (prospect_id, exclude_id, *values),
        ).fetchall()
        return [self._row_to_opportunity(row) for row in rows]  # type: ignore[misc]

    def update_opportunity_status(
        self,
        opportunity_id: int,
        expected: Iterable[OpportunityStatus],
        new_status: OpportunityStatus,
    ) -> bool:
        """Flip status only if the row is still in one of the expected statuses.

        A unique-index violation (a second accepted sibling) counts as a
        failed precondition, not an error.

        Returns:
            True if this call made the change
        """
        values = [_enum_value(s) for s in expected]
        with self.transaction() as conn:
            try:
                cursor = conn.execute(
                    f"""UPDATE opportunities SET status = ?, updated_at = ?
                        WHERE id = ? AND status IN ({', '.join('?' for _ in values)})""",
                    (_enum_value(new_status), self._now(), opportunity_id, *values),
                )
            except sqlite3.IntegrityError as e:
                logger.info(
                    "Status change rejected by constraint",
                    extra={
                        "context": {
                            "opportunity_id": opportunity_id,
                            "new_status": _enum_value(new_status),
                            "error": str(e),
                        }
                    },
                )
                return False
        return cursor.rowcount == 1

    def record_presentation(
        self,
        opportunity_id: int,
        expected_status: OpportunityStatus,
        expected_count: int,
        new_status: OpportunityStatus,
        presented_at: datetime,
        dormant_at: Optional[datetime] = None,
    ) -> bool:
        """Increment presentation_count by one, guarded by status and count.

        Returns:
            True if this call made the change
        """
        stamp = to_db_timestamp(presented_at)
        with self.transaction() as conn:
            cursor = conn.execute(
                """UPDATE opportunities
                   SET presentation_count = presentation_count + 1,
                       status = ?,
                       last_presented_at = ?,
                       dormant_at = COALESCE(?, dormant_at),
                       updated_at = ?
                   WHERE id = ? AND status = ? AND presentation_count = ?""",
                (
                    _enum_value(new_status),
                    stamp,
                    to_db_timestamp(dormant_at) if dormant_at else None,
                    stamp,
                    opportunity_id,
                    _enum_value(expected_status),
                    expected_count,
                ),
            )
        return cursor.rowcount == 1

    def update_value_score(
        self, opportunity_id: int, expected_status: OpportunityStatus, score: int
    ) -> bool:
        """Store a recomputed score if the status has not moved underneath us."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """UPDATE opportunities SET value_score = ?
                   WHERE id = ? AND status = ? AND value_score != ?""",
                (score, opportunity_id, _enum_value(expected_status), score),
            )
        return cursor.rowcount == 1

    # =========================================================================
    # ENGAGEMENT ATTEMPT OPERATIONS
    # =========================================================================

    def record_attempt(self, attempt: EngagementAttempt) -> Optional[int]:
        """Append an engagement attempt.

        Returns:
            New attempt ID, or None if (user_id, trigger_id) was already recorded
        """
        created_at = to_db_timestamp(attempt.created_at) if attempt.created_at else self._now()
        with self.transaction() as conn:
            try:
                cursor = conn.execute(
                    """INSERT INTO engagement_attempts
                       (user_id, outcome, trigger_id, metadata_json, created_at)
                       VALUES (?, ?, ?, ?, ?)""",
                    (
                        attempt.user_id,
                        _enum_value(attempt.outcome),
                        attempt.trigger_id,
                        _dumps(attempt.metadata or {}),
                        created_at,
                    ),
                )
            except sqlite3.IntegrityError:
                logger.info(
                    "Duplicate engagement trigger ignored",
                    extra={
                        "context": {"user_id": attempt.user_id, "trigger_id": attempt.trigger_id}
                    },
                )
                return None
            return self._lastrowid(cursor)

    def get_attempt_by_trigger(self, user_id: str, trigger_id: str) -> Optional[EngagementAttempt]:
        """Look up the attempt recorded for an idempotency key."""
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM engagement_attempts WHERE user_id = ? AND trigger_id = ?",
            (user_id, trigger_id),
        ).fetchone()
        return self._row_to_attempt(row) if row else None

    def get_attempts(
        self,
        user_id: str,
        outcome: Optional[AttemptOutcome] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[EngagementAttempt]:
        """Get attempts for a member, newest first.

        Args:
            user_id: Member
            outcome: Restrict to one outcome
            since: Only attempts strictly after this time
            limit: Maximum rows
        """
        sql = "SELECT * FROM engagement_attempts WHERE user_id = ?"
        params: list[Any] = [user_id]
        if outcome is not None:
            sql += " AND outcome = ?"
            params.append(_enum_value(outcome))
        if since is not None:
            sql += " AND created_at > ?"
            params.append(to_db_timestamp(since))
        sql += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        conn = self._get_connection()
        return [self._row_to_attempt(row) for row in conn.execute(sql, params).fetchall()]

    # =========================================================================
    # CONVERSATION OPERATIONS
    # =========================================================================

    def record_message(self, message: UserMessage) -> int:
        """Append a conversation message."""
        created_at = to_db_timestamp(message.created_at) if message.created_at else self._now()
        with self.transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO user_messages (user_id, direction, content, created_at)
                   VALUES (?, ?, ?, ?)""",
                (message.user_id, _enum_value(message.direction), message.content, created_at),
            )
            return self._lastrowid(cursor)

    def has_inbound_message(
        self,
        user_id: str,
        at_or_after: datetime,
        before: Optional[datetime] = None,
    ) -> bool:
        """Whether the member wrote anything at or after a time.

        Args:
            user_id: Member
            at_or_after: Inclusive lower bound
            before: Optional exclusive upper bound
        """
        sql = """SELECT 1 FROM user_messages
                 WHERE user_id = ? AND direction = 'inbound' AND created_at >= ?"""
        params: list[Any] = [user_id, to_db_timestamp(at_or_after)]
        if before is not None:
            sql += " AND created_at < ?"
            params.append(to_db_timestamp(before))
        sql += " LIMIT 1"
        conn = self._get_connection()
        return conn.execute(sql, params).fetchone() is not None

    def get_recent_messages(self, user_id: str, limit: int = 20) -> list[UserMessage]:
        """Get the most recent messages, returned oldest first."""
        conn = self._get_connection()
        rows = conn.execute(
            """SELECT * FROM user_messages WHERE user_id = ?
               ORDER BY created_at DESC, id DESC LIMIT ?""",
            (user_id, limit),
        ).fetchall()
        return [self._row_to_message(row) for row in reversed(rows)]

    # =========================================================================
    # OUTSTANDING REQUEST OPERATIONS
    # =========================================================================

    def create_outstanding_request(self, request: OutstandingRequest) -> int:
        """Record something the member asked for."""
        created_at = to_db_timestamp(request.created_at) if request.created_at else self._now()
        with self.transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO outstanding_requests (user_id, description, status, created_at)
                   VALUES (?, ?, ?, ?)""",
                (request.user_id, request.description, _enum_value(request.status), created_at),
            )
            return self._lastrowid(cursor)

    def get_outstanding_requests(self, user_id: str) -> list[OutstandingRequest]:
        """Get a member's open requests, oldest first."""
        conn = self._get_connection()
        rows = conn.execute(
            """SELECT * FROM outstanding_requests
               WHERE user_id = ? AND status = 'open' ORDER BY created_at, id""",
            (user_id,),
        ).fetchall()
        return [self._row_to_request(row) for row in rows]

    def update_request_status(
        self, request_id: int, expected: RequestStatus, new_status: RequestStatus
    ) -> bool:
        """Guarded status flip for an outstanding request."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE outstanding_requests SET status = ? WHERE id = ? AND status = ?",
                (_enum_value(new_status), request_id, _enum_value(expected)),
            )
        return cursor.rowcount == 1

    # =========================================================================
    # TASK OPERATIONS
    # =========================================================================

    def create_task(self, task: EngagementTask) -> int:
        """Schedule a task."""
        if task.scheduled_for is None:
            raise ValidationError("Task scheduled_for is required")
        now = self._now()
        with self.transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO engagement_tasks
                   (user_id, task_type, status, scheduled_for, item_type, item_id,
                    context_json, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    task.user_id,
                    _enum_value(task.task_type),
                    _enum_value(task.status),
                    to_db_timestamp(task.scheduled_for),
                    task.item_type,
                    task.item_id,
                    _dumps(task.context or {}),
                    now,
                    now,
                ),
            )
            return self._lastrowid(cursor)

    def get_task(self, task_id: int) -> Optional[EngagementTask]:
        """Get task by ID."""
        conn = self._get_connection()
        row = conn.execute("SELECT * FROM engagement_tasks WHERE id = ?", (task_id,)).fetchone()
        return self._row_to_task(row) if row else None

    def get_tasks(
        self,
        user_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        item_type: Optional[str] = None,
        item_id: Optional[str] = None,
    ) -> list[EngagementTask]:
        """Get tasks matching the filters, earliest due first."""
        sql = "SELECT * FROM engagement_tasks WHERE 1 = 1"
        params: list[Any] = []
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        if status is not None:
            sql += " AND status = ?"
            params.append(_enum_value(status))
        if item_type is not None:
            sql += " AND item_type = ?"
            params.append(item_type)
        if item_id is not None:
            sql += " AND item_id = ?"
            params.append(str(item_id))
        sql += " ORDER BY scheduled_for, id"
        conn = self._get_connection()
        return [self._row_to_task(row) for row in conn.execute(sql, params).fetchall()]

    def get_due_tasks(self, now: datetime, limit: int = 100) -> list[EngagementTask]:
        """Get pending tasks whose time has come, earliest first."""
        conn = self._get_connection()
        rows = conn.execute(
            """SELECT * FROM engagement_tasks
               WHERE status = 'pending' AND scheduled_for <= ?
               ORDER BY scheduled_for, id LIMIT ?""",
            (to_db_timestamp(now), limit),
        ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def transition_task(
        self,
        task_id: int,
        expected: TaskStatus,
        new_status: TaskStatus,
        result: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Guarded task status flip. Used for claims, completion and cancellation.

        Returns:
            True if this call made the change
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                """UPDATE engagement_tasks
                   SET status = ?, result_json = COALESCE(?, result_json), updated_at = ?
                   WHERE id = ? AND status = ?""",
                (_enum_value(new_status), _dumps(result), self._now(), task_id,
                 _enum_value(expected)),
            )
        return cursor.rowcount == 1

    def cancel_pending_tasks(
        self,
        reason: str,
        item_type: Optional[str] = None,
        item_id: Optional[str] = None,
        user_id: Optional[str] = None,
        task_type: Optional[TaskType] = None,
    ) -> int:
        """Cancel pending tasks matching the filters.

        Already-cancelled or finished tasks are left untouched.

        Returns:
            Number of tasks cancelled
        """
        if item_type is None and user_id is None:
            raise ValidationError("cancel_pending_tasks needs an item or a user filter")
        sql = "UPDATE engagement_tasks SET status = 'cancelled', result_json = ?, updated_at = ?"
        sql += " WHERE status = 'pending'"
        params: list[Any] = [_dumps({"cancelled_reason": reason}), self._now()]
        if item_type is not None:
            sql += " AND item_type = ? AND item_id = ?"
            params.extend([item_type, str(item_id)])
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        if task_type is not None:
            sql += " AND task_type = ?"
            params.append(_enum_value(task_type))
        with self.transaction() as conn:
            cursor = conn.execute(sql, params)
        return cursor.rowcount

    # =========================================================================
    # PRIORITY PROJECTION OPERATIONS
    # =========================================================================

    def get_priority_head(self, user_id: str) -> Optional[sqlite3.Row]:
        """Get (current_version, content_hash, refreshed_at) for a member."""
        conn = self._get_connection()
        return conn.execute(
            "SELECT * FROM priority_heads WHERE user_id = ?", (user_id,)
        ).fetchone()

    def swap_priorities(
        self,
        user_id: str,
        entries: list[UserPriorityEntry],
        content_hash: str,
        expected_version: int,
    ) -> Optional[int]:
        """Write a new ranking version and point the head at it.

        Runs in one transaction, so readers see the old list or the new one.

        Args:
            user_id: Member
            entries: Ranked entries (rank already assigned)
            content_hash: Fingerprint of the entries
            expected_version: Head version the caller computed against (0 if none)

        Returns:
            The new version, or None if another writer moved the head first
        """
        new_version = expected_version + 1
        now = self._now()
        with self.transaction(immediate=True) as conn:
            if expected_version == 0:
                conn.execute(
                    """INSERT OR IGNORE INTO priority_heads
                       (user_id, current_version, content_hash, refreshed_at)
                       VALUES (?, 0, '', ?)""",
                    (user_id, now),
                )
            cursor = conn.execute(
                """UPDATE priority_heads
                   SET current_version = ?, content_hash = ?, refreshed_at = ?
                   WHERE user_id = ? AND current_version = ?""",
                (new_version, content_hash, now, user_id, expected_version),
            )
            if cursor.rowcount != 1:
                return None

            conn.executemany(
                """INSERT INTO user_priorities
                   (user_id, version, rank, item_type, item_id, value_score, status)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                [
                    (user_id, new_version, e.rank, e.item_type, e.item_id, e.value_score,
                     e.status)
                    for e in entries
                ],
            )
            # Keep one previous version; older ones are unreachable
            conn.execute(
                "DELETE FROM user_priorities WHERE user_id = ? AND version < ?",
                (user_id, new_version - 1),
            )
        return new_version

    def touch_priorities(self, user_id: str) -> None:
        """Record a refresh that produced no change."""
        with self.transaction() as conn:
            conn.execute(
                "UPDATE priority_heads SET refreshed_at = ? WHERE user_id = ?",
                (self._now(), user_id),
            )

    def get_priorities(self, user_id: str) -> list[UserPriorityEntry]:
        """Read the current ranking version in rank order."""
        conn = self._get_connection()
        rows = conn.execute(
            """SELECT p.* FROM user_priorities p
               JOIN priority_heads h
                 ON h.user_id = p.user_id AND h.current_version = p.version
               WHERE p.user_id = ?
               ORDER BY p.rank""",
            (user_id,),
        ).fetchall()
        return [self._row_to_priority(row) for row in rows]

    def update_priority_status(
        self,
        user_id: str,
        item_type: str,
        item_id: str,
        expected: str,
        new_status: str,
    ) -> bool:
        """Reflect an item's status change in the current ranking version."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """UPDATE user_priorities SET status = ?
                   WHERE user_id = ? AND item_type = ? AND item_id = ? AND status = ?
                     AND version = (SELECT current_version FROM priority_heads
                                    WHERE user_id = ?)""",
                (new_status, user_id, item_type, str(item_id), expected, user_id),
            )
        return cursor.rowcount == 1

    # =========================================================================
    # PRESENTATION EVENT OPERATIONS
    # =========================================================================

    def claim_exposure(
        self, item_type: str, item_id: str, exposure_key: str, presentation_kind: str
    ) -> bool:
        """Register a logical exposure once.

        Returns:
            True the first time a key is seen for the item, False afterwards
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                """INSERT OR IGNORE INTO presentation_events
                   (item_type, item_id, exposure_key, presentation_kind, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (item_type, str(item_id), exposure_key, presentation_kind, self._now()),
            )
        return cursor.rowcount == 1

    # =========================================================================
    # AUDIT OPERATIONS
    # =========================================================================

    def write_audit(self, record: AuditRecord) -> int:
        """Append an audit record."""
        created_at = to_db_timestamp(record.created_at) if record.created_at else self._now()
        with self.transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO audit_log
                   (actor_component, action, user_id, item_type, item_id,
                    status_before, status_after, details_json, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.actor_component,
                    record.action,
                    record.user_id,
                    record.item_type,
                    str(record.item_id) if record.item_id is not None else None,
                    record.status_before,
                    record.status_after,
                    _dumps(record.details or {}),
                    created_at,
                ),
            )
            return self._lastrowid(cursor)

    def get_audit_log(
        self,
        user_id: Optional[str] = None,
        item_type: Optional[str] = None,
        item_id: Optional[str] = None,
        action: Optional[str] = None,
    ) -> list[AuditRecord]:
        """Get audit records matching the filters, oldest first."""
        sql = "SELECT * FROM audit_log WHERE 1 = 1"
        params: list[Any] = []
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        if item_type is not None:
            sql += " AND item_type = ?"
            params.append(item_type)
        if item_id is not None:
            sql += " AND item_id = ?"
            params.append(str(item_id))
        if action is not None:
            sql += " AND action = ?"
            params.append(action)
        sql += " ORDER BY id"
        conn = self._get_connection()
        return [self._row_to_audit(row) for row in conn.execute(sql, params).fetchall()]

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_status_counts(self) -> dict[str, int]:
        """Counts used by the CLI status report."""
        conn = self._get_connection()
        counts: dict[str, int] = {}
        for row in conn.execute(
            "SELECT status, COUNT(*) AS n FROM opportunities GROUP BY status"
        ).fetchall():
            counts[f"opportunities.{row['status']}"] = row["n"]
        for row in conn.execute(
            "SELECT status, COUNT(*) AS n FROM engagement_tasks GROUP BY status"
        ).fetchall():
            counts[f"tasks.{row['status']}"] = row["n"]
        for row in conn.execute(
            "SELECT outcome, COUNT(*) AS n FROM engagement_attempts GROUP BY outcome"
        ).fetchall():
            counts[f"attempts.{row['outcome']}"] = row["n"]
        return counts
