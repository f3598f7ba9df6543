"""SQLite-backed conversation state store."""

import sqlite3
import json
import logging
import uuid
from contextlib import contextmanager
from pathlib import Path
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Callable, Iterator

from .errors import ConversationNotFoundError
from .models import (
    ConversationState,
    ConversationMessage,
    ConversationStats,
    EmptyStateData,
    StateData,
    parse_state_data,
)
from .phone import phone_alternatives
from schemas.conversation import ContextType, ExpectedResponseType, expected_response_for

logger = logging.getLogger(__name__)

# Columns update() is allowed to touch.
UPDATABLE_FIELDS = {
    "phone_number",
    "current_context",
    "expected_response_type",
    "related_entity_id",
    "related_entity_type",
    "state_data",
    "last_message",
    "last_message_at",
    "is_active",
    "expires_at",
    "attempt_count",
    "context_set_at",
    "last_clarification_sent_at",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class ConversationStateStore:
    """
    Persistence and lifecycle of per-patient conversation state.

    A state is alive while is_active is set and expires_at lies in the
    future. At most one row per patient carries is_active; get_or_create
    retires expired active rows before creating a fresh one.
    """

    DEFAULT_TTL_MINUTES = 120

    def __init__(
        self,
        db_path: str = "data/conversations.db",
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
            ttl_minutes: Lifetime of a new or refreshed conversation state
            clock: Returns the current UTC time (injectable for tests)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.ttl = timedelta(minutes=ttl_minutes)
        self.clock = clock or utc_now
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory."""
        conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction taking the database lock up front."""
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS conversation_states (
                id TEXT PRIMARY KEY,
                patient_id TEXT NOT NULL,
                phone_number TEXT NOT NULL,
                current_context TEXT NOT NULL,
                expected_response_type TEXT,
                related_entity_id TEXT,
                related_entity_type TEXT,
                state_data TEXT,
                last_message TEXT,
                last_message_at TEXT,
                message_count INTEGER NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1,
                expires_at TEXT NOT NULL,
                attempt_count INTEGER NOT NULL DEFAULT 0,
                context_set_at TEXT,
                last_clarification_sent_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS conversation_messages (
                id TEXT PRIMARY KEY,
                conversation_state_id TEXT NOT NULL,
                message TEXT NOT NULL,
                direction TEXT NOT NULL CHECK(direction IN ('inbound', 'outbound')),
                message_type TEXT NOT NULL,
                intent TEXT,
                confidence INTEGER,
                processed_at TEXT,
                llm_model TEXT,
                llm_tokens_used INTEGER,
                llm_cost REAL,
                llm_response_time_ms INTEGER,
                created_at TEXT NOT NULL,
                seq INTEGER,
                FOREIGN KEY (conversation_state_id) REFERENCES conversation_states(id)
            )
        """)

        # Indexes
        cursor.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_states_single_active "
            "ON conversation_states(patient_id) WHERE is_active = 1"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_states_phone ON conversation_states(phone_number)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_states_expiry ON conversation_states(is_active, expires_at)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_state "
            "ON conversation_messages(conversation_state_id, seq)"
        )

        conn.close()
        logger.info(f"Database initialized at {self.db_path}")

    def _row_to_state(self, row: sqlite3.Row) -> ConversationState:
        state_data = json.loads(row["state_data"]) if row["state_data"] else None
        return ConversationState(
            id=row["id"],
            patient_id=row["patient_id"],
            phone_number=row["phone_number"],
            current_context=ContextType(row["current_context"]),
            expected_response_type=ExpectedResponseType(
                row["expected_response_type"] or ExpectedResponseType.TEXT.value
            ),
            related_entity_id=row["related_entity_id"],
            related_entity_type=row["related_entity_type"],
            state_data=parse_state_data(state_data),
            last_message=row["last_message"],
            last_message_at=_from_db(row["last_message_at"]),
            message_count=row["message_count"],
            is_active=bool(row["is_active"]),
            expires_at=_from_db(row["expires_at"]),
            attempt_count=row["attempt_count"],
            context_set_at=_from_db(row["context_set_at"]),
            last_clarification_sent_at=_from_db(row["last_clarification_sent_at"]),
            created_at=_from_db(row["created_at"]),
            updated_at=_from_db(row["updated_at"]),
        )

    def _row_to_message(self, row: sqlite3.Row) -> ConversationMessage:
        return ConversationMessage(
            id=row["id"],
            conversation_state_id=row["conversation_state_id"],
            message=row["message"],
            direction=row["direction"],
            message_type=row["message_type"],
            intent=row["intent"],
            confidence=row["confidence"],
            processed_at=_from_db(row["processed_at"]),
            llm_model=row["llm_model"],
            llm_tokens_used=row["llm_tokens_used"],
            llm_cost=row["llm_cost"],
            llm_response_time_ms=row["llm_response_time_ms"],
            created_at=_from_db(row["created_at"]),
        )

    def _fetch_state(self, conn: sqlite3.Connection, conversation_id: str) -> ConversationState:
        row = conn.execute(
            "SELECT * FROM conversation_states WHERE id = ?", (conversation_id,)
        ).fetchone()
        if row is None:
            raise ConversationNotFoundError(conversation_id)
        return self._row_to_state(row)

    @staticmethod
    def _serialize_value(key: str, value):
        if key == "state_data":
            if isinstance(value, dict):
                value = parse_state_data(value)
            return json.dumps(value.model_dump(mode="json"))
        if key == "is_active":
            return 1 if value else 0
        if isinstance(value, datetime):
            return _to_db(value)
        if hasattr(value, "value"):
            return value.value
        return value

    def get(self, conversation_id: str) -> ConversationState:
        """Load a state by id, raising ConversationNotFoundError if missing."""
        conn = self._get_connection()
        try:
            return self._fetch_state(conn, conversation_id)
        finally:
            conn.close()

    def get_or_create(
        self,
        patient_id: str,
        phone_number: str,
        default_context: ContextType = ContextType.GENERAL_INQUIRY,
    ) -> ConversationState:
        """
        Return the patient's alive state, creating one if none exists.

        Args:
            patient_id: Patient ID
            phone_number: Phone number the patient wrote from
            default_context: Context for a newly created state

        Returns:
            The alive ConversationState
        """
        now = self.clock()
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM conversation_states
                WHERE patient_id = ? AND is_active = 1 AND expires_at > ?
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                (patient_id, _to_db(now)),
            ).fetchone()
            if row is not None:
                return self._row_to_state(row)

            # Retire any expired row still flagged active
            conn.execute(
                "UPDATE conversation_states SET is_active = 0, updated_at = ? "
                "WHERE patient_id = ? AND is_active = 1",
                (_to_db(now), patient_id),
            )

            state_id = uuid.uuid4().hex
            expected = expected_response_for(default_context)
            conn.execute(
                """
                INSERT INTO conversation_states (
                    id, patient_id, phone_number, current_context, expected_response_type,
                    state_data, message_count, is_active, expires_at, attempt_count,
                    context_set_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, 0, 1, ?, 0, ?, ?, ?)
                """,
                (
                    state_id,
                    patient_id,
                    phone_number,
                    default_context.value,
                    expected.value,
                    json.dumps(EmptyStateData().model_dump(mode="json")),
                    _to_db(now + self.ttl),
                    _to_db(now),
                    _to_db(now),
                    _to_db(now),
                ),
            )
            logger.info(
                f"Created conversation state {state_id} for patient {patient_id} "
                f"(context={default_context.value})"
            )
            return self._fetch_state(conn, state_id)

    def update(self, conversation_id: str, **fields) -> ConversationState:
        """
        Merge non-null fields into a state and stamp updated_at.

        Raises:
            ConversationNotFoundError: If the id does not exist
            ValueError: If a field is not updatable
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        values = {k: self._serialize_value(k, v) for k, v in fields.items() if v is not None}
        values["updated_at"] = _to_db(self.clock())

        assignments = ", ".join(f"{key} = ?" for key in values)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE conversation_states SET {assignments} WHERE id = ?",
                (*values.values(), conversation_id),
            )
            if cursor.rowcount == 0:
                raise ConversationNotFoundError(conversation_id)
            return self._fetch_state(conn, conversation_id)

    def append_message(
        self,
        conversation_id: str,
        message: ConversationMessage,
    ) -> ConversationMessage:
        """
        Store a message and bump the state's message counters atomically.

        Args:
            conversation_id: Conversation state ID
            message: Message to store (id and created_at are assigned here)

        Returns:
            The stored message
        """
        now = self.clock()
        message_id = uuid.uuid4().hex
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE conversation_states
                SET message_count = message_count + 1,
                    last_message = ?,
                    last_message_at = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (message.message, _to_db(now), _to_db(now), conversation_id),
            )
            if cursor.rowcount == 0:
                raise ConversationNotFoundError(conversation_id)

            seq = conn.execute(
                "SELECT COALESCE(MAX(seq), 0) + 1 FROM conversation_messages "
                "WHERE conversation_state_id = ?",
                (conversation_id,),
            ).fetchone()[0]

            conn.execute(
                """
                INSERT INTO conversation_messages (
                    id, conversation_state_id, message, direction, message_type, intent,
                    confidence, processed_at, llm_model, llm_tokens_used, llm_cost,
                    llm_response_time_ms, created_at, seq
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message_id,
                    conversation_id,
                    message.message,
                    message.direction.value,
                    message.message_type.value,
                    message.intent,
                    message.confidence,
                    _to_db(message.processed_at),
                    message.llm_model,
                    message.llm_tokens_used,
                    message.llm_cost,
                    message.llm_response_time_ms,
                    _to_db(now),
                    seq,
                ),
            )

        return message.model_copy(
            update={"id": message_id, "conversation_state_id": conversation_id, "created_at": now}
        )

    def history(self, conversation_id: str, limit: int = 20) -> List[ConversationMessage]:
        """
        Get the most recent messages, oldest first.

        Args:
            conversation_id: Conversation state ID
            limit: Maximum messages to return

        Returns:
            List of ConversationMessage in chronological order
        """
        conn = self._get_connection()
        try:
            rows = conn.execute(
                """
                SELECT * FROM conversation_messages
                WHERE conversation_state_id = ?
                ORDER BY seq DESC
                LIMIT ?
                """,
                (conversation_id, limit),
            ).fetchall()
        finally:
            conn.close()

        # Reverse to get chronological order
        return [self._row_to_message(row) for row in reversed(rows)]

    def deactivate(self, conversation_id: str) -> ConversationState:
        """Mark a state inactive."""
        state = self.update(conversation_id, is_active=False)
        logger.info(f"Deactivated conversation state {conversation_id}")
        return state

    def extend_expiry(self, conversation_id: str, minutes: int) -> ConversationState:
        """Push expiry to now + minutes."""
        return self.update(conversation_id, expires_at=self.clock() + timedelta(minutes=minutes))

    def sweep_expired(self) -> int:
        """
        Deactivate every active state past its expiry.

        Returns:
            Number of states deactivated (0 on a repeated sweep)
        """
        now = _to_db(self.clock())
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE conversation_states SET is_active = 0, updated_at = ? "
                "WHERE is_active = 1 AND expires_at <= ?",
                (now, now),
            )
            count = cursor.rowcount
        if count:
            logger.info(f"Swept {count} expired conversation states")
        return count

    def switch_context(
        self,
        conversation_id: str,
        new_context: ContextType,
        related_entity_id: Optional[str] = None,
        related_entity_type: Optional[str] = None,
        state_data: Optional[StateData] = None,
    ) -> ConversationState:
        """
        Move a conversation to a new context.

        Derives the expected response type, resets the expiry window and the
        clarification attempt counter.
        """
        now = self.clock()
        values = {
            "current_context": new_context.value,
            "expected_response_type": expected_response_for(new_context).value,
            "related_entity_id": related_entity_id,
            "related_entity_type": related_entity_type,
            "state_data": self._serialize_value("state_data", state_data or EmptyStateData()),
            "expires_at": _to_db(now + self.ttl),
            "context_set_at": _to_db(now),
            "attempt_count": 0,
            "updated_at": _to_db(now),
        }
        assignments = ", ".join(f"{key} = ?" for key in values)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE conversation_states SET {assignments} WHERE id = ?",
                (*values.values(), conversation_id),
            )
            if cursor.rowcount == 0:
                raise ConversationNotFoundError(conversation_id)
            state = self._fetch_state(conn, conversation_id)

        logger.info(f"Conversation {conversation_id} switched to context {new_context.value}")
        return state

    def find_by_phone_number(self, phone_number: str) -> Optional[ConversationState]:
        """
        Find the most recently updated alive state for a phone number.

        Tries the literal number and its 0.../62.../+62... spellings.
        """
        candidates = phone_alternatives(phone_number)
        if not candidates:
            return None

        placeholders = ", ".join("?" for _ in candidates)
        conn = self._get_connection()
        try:
            row = conn.execute(
                f"""
                SELECT * FROM conversation_states
                WHERE phone_number IN ({placeholders})
                  AND is_active = 1 AND expires_at > ?
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                (*candidates, _to_db(self.clock())),
            ).fetchone()
        finally:
            conn.close()

        return self._row_to_state(row) if row else None

    def clear_context(self, patient_id: str) -> int:
        """
        Reset every alive state of a patient to general inquiry.

        Returns:
            Number of states reset
        """
        now = self.clock()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE conversation_states
                SET current_context = ?, expected_response_type = ?,
                    related_entity_id = NULL, related_entity_type = NULL,
                    state_data = ?, context_set_at = ?, attempt_count = 0, updated_at = ?
                WHERE patient_id = ? AND is_active = 1 AND expires_at > ?
                """,
                (
                    ContextType.GENERAL_INQUIRY.value,
                    ExpectedResponseType.TEXT.value,
                    json.dumps(EmptyStateData().model_dump(mode="json")),
                    _to_db(now),
                    _to_db(now),
                    patient_id,
                    _to_db(now),
                ),
            )
            return cursor.rowcount

    def stats(self, patient_id: str) -> ConversationStats:
        """Aggregate conversation counts for a patient."""
        now = _to_db(self.clock())
        conn = self._get_connection()
        try:
            totals = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       SUM(CASE WHEN is_active = 1 AND expires_at > ? THEN 1 ELSE 0 END) AS active,
                       AVG(message_count) AS avg_messages
                FROM conversation_states
                WHERE patient_id = ?
                """,
                (now, patient_id),
            ).fetchone()
            distribution = conn.execute(
                """
                SELECT current_context, COUNT(*) AS n
                FROM conversation_states
                WHERE patient_id = ?
                GROUP BY current_context
                """,
                (patient_id,),
            ).fetchall()
        finally:
            conn.close()

        return ConversationStats(
            total_conversations=totals["total"] or 0,
            active_conversations=totals["active"] or 0,
            average_message_count=float(totals["avg_messages"] or 0.0),
            context_distribution={row["current_context"]: row["n"] for row in distribution},
        )
