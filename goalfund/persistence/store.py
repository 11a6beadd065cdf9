"""SQLite persistence layer for goals, allocations, plans and execution records."""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Union

import orjson

from ..errors import PersistenceError
from ..logging.config import get_logger
from ..models import (
    Allocation,
    AllocationHistoryEntry,
    Asset,
    CompletedExecution,
    Contribution,
    ExecutionRecord,
    ExecutionSnapshot,
    ExecutionStatus,
    FlexState,
    Goal,
    GoalStatus,
    MonthlyPlan,
    RequirementStatus,
)
from ..utils.time import format_timestamp, parse_timestamp

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS goals (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        currency TEXT NOT NULL,
        target_amount REAL NOT NULL,
        deadline TEXT NOT NULL,
        start_date TEXT NOT NULL,
        status TEXT NOT NULL,
        emoji TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS assets (
        id TEXT PRIMARY KEY,
        currency TEXT NOT NULL,
        manual_amount REAL NOT NULL DEFAULT 0,
        on_chain_amount REAL NOT NULL DEFAULT 0,
        chain TEXT,
        address TEXT,
        symbol TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS allocations (
        asset_id TEXT NOT NULL,
        goal_id TEXT NOT NULL,
        amount REAL NOT NULL,
        updated_at TEXT,
        PRIMARY KEY (asset_id, goal_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS allocation_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        asset_id TEXT NOT NULL,
        goal_id TEXT NOT NULL,
        amount REAL NOT NULL,
        timestamp TEXT NOT NULL,
        month_label TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS monthly_plans (
        id TEXT PRIMARY KEY,
        goal_id TEXT NOT NULL,
        month_label TEXT NOT NULL,
        currency TEXT NOT NULL,
        required_monthly REAL NOT NULL,
        remaining_amount REAL NOT NULL,
        months_remaining INTEGER NOT NULL,
        status TEXT NOT NULL,
        flex_state TEXT NOT NULL,
        custom_amount REAL,
        flex_multiplier REAL NOT NULL DEFAULT 1.0,
        created_at TEXT,
        last_calculated TEXT,
        UNIQUE(goal_id, month_label)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS execution_records (
        id TEXT PRIMARY KEY,
        month_label TEXT NOT NULL UNIQUE,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        started_at TEXT,
        completed_at TEXT,
        can_undo_until TEXT,
        goal_ids TEXT NOT NULL,
        snapshot TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS completed_executions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        record_id TEXT NOT NULL,
        goal_id TEXT NOT NULL,
        goal_name TEXT NOT NULL,
        currency TEXT NOT NULL,
        planned_amount REAL NOT NULL,
        contributed_amount REAL NOT NULL,
        completed_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS contributions (
        id TEXT PRIMARY KEY,
        goal_id TEXT NOT NULL,
        asset_id TEXT NOT NULL,
        amount REAL NOT NULL,
        exchange_rate REAL NOT NULL,
        amount_in_goal_currency REAL NOT NULL,
        timestamp TEXT NOT NULL,
        month_label TEXT NOT NULL,
        source TEXT NOT NULL,
        execution_record_id TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS planner_settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_allocations_goal ON allocations(goal_id)",
    "CREATE INDEX IF NOT EXISTS idx_history_asset ON allocation_history(asset_id)",
    "CREATE INDEX IF NOT EXISTS idx_history_goal ON allocation_history(goal_id)",
    "CREATE INDEX IF NOT EXISTS idx_plans_month ON monthly_plans(month_label)",
    "CREATE INDEX IF NOT EXISTS idx_records_status ON execution_records(status)",
    "CREATE INDEX IF NOT EXISTS idx_completed_record ON completed_executions(record_id)",
    "CREATE INDEX IF NOT EXISTS idx_contributions_goal ON contributions(goal_id)",
    "CREATE INDEX IF NOT EXISTS idx_contributions_record ON contributions(execution_record_id)",
]


def _dumps(value: Any) -> str:
    return orjson.dumps(value).decode()


def _opt_ts(value: Optional[datetime]) -> Optional[str]:
    return format_timestamp(value) if value is not None else None


class PlannerStore:
    """
    SQLite-backed repository for all planner state.

    A single connection is shared and serialized by a re-entrant lock.
    Mutating operations should run inside ``transaction()`` so that checks
    and writes observe the same state; nested ``transaction()`` blocks join
    the outermost one.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self.logger = get_logger("goalfund.store")
        self._lock = threading.RLock()
        self._depth = 0
        self._after_commit: list[Callable[[], None]] = []

        try:
            self._conn = sqlite3.connect(
                self.db_path, timeout=30.0, check_same_thread=False, isolation_level=None
            )
        except sqlite3.Error as e:
            raise PersistenceError(
                f"Cannot open database: {e}", operation="connect", target=self.db_path
            ) from e
        self._conn.row_factory = sqlite3.Row

        self._init_database()

    def _init_database(self) -> None:
        """Initialize database schema."""
        with self.transaction("init_schema"):
            for statement in _SCHEMA:
                self._execute(statement, operation="init_schema")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self, operation: str = "transaction") -> Iterator["PlannerStore"]:
        """
        Run a block atomically.

        Any exception rolls the whole block back and propagates; SQLite
        errors surface as PersistenceError.
        """
        callbacks: list[Callable[[], None]] = []

        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise PersistenceError(
                    f"Cannot begin transaction: {e}", operation=operation, target=self.db_path
                ) from e

            self._depth = 1
            try:
                yield self
                self._conn.execute("COMMIT")
            except Exception as e:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                self._after_commit.clear()
                self.logger.warning(
                    "Transaction rolled back",
                    operation=operation,
                    error=str(e),
                    error_type=type(e).__name__
                )
                if isinstance(e, sqlite3.Error):
                    raise PersistenceError(
                        f"{operation} failed: {e}", operation=operation, target=self.db_path
                    ) from e
                raise
            finally:
                self._depth = 0

            callbacks, self._after_commit = self._after_commit, []

        for callback in callbacks:
            self._run_callback(callback, operation)

    def after_commit(self, callback: Callable[[], None]) -> None:
        """
        Run callback once the enclosing transaction commits.

        Callbacks are dropped on rollback and run immediately when no
        transaction is open.
        """
        with self._lock:
            if self._depth > 0:
                self._after_commit.append(callback)
                return
        self._run_callback(callback, "after_commit")

    def _run_callback(self, callback: Callable[[], None], operation: str) -> None:
        try:
            callback()
        except Exception as e:
            self.logger.error(
                "After-commit callback failed",
                operation=operation,
                error=str(e),
                exc_info=True
            )

    def _execute(self, sql: str, params: tuple = (), operation: str = "execute") -> sqlite3.Cursor:
        with self._lock:
            try:
                return self._conn.execute(sql, params)
            except sqlite3.Error as e:
                self.logger.error("Database error", operation=operation, error=str(e))
                raise PersistenceError(
                    f"{operation} failed: {e}", operation=operation, target=self.db_path
                ) from e

    def _fetchall(self, sql: str, params: tuple = (), operation: str = "query") -> list[sqlite3.Row]:
        with self._lock:
            return self._execute(sql, params, operation).fetchall()

    def _fetchone(self, sql: str, params: tuple = (), operation: str = "query") -> Optional[sqlite3.Row]:
        with self._lock:
            return self._execute(sql, params, operation).fetchone()

    # Goals

    def save_goal(self, goal: Goal) -> None:
        self._execute("""
            INSERT OR REPLACE INTO goals (
                id, name, currency, target_amount, deadline, start_date, status, emoji
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            goal.id, goal.name, goal.currency, goal.target_amount,
            goal.deadline.isoformat(), goal.start_date.isoformat(),
            goal.status.value, goal.emoji
        ), operation="save_goal")

    def get_goal(self, goal_id: str) -> Optional[Goal]:
        row = self._fetchone("SELECT * FROM goals WHERE id = ?", (goal_id,), "get_goal")
        return self._row_to_goal(row) if row else None

    def list_goals(self, status: Optional[GoalStatus] = None) -> list[Goal]:
        if status is None:
            rows = self._fetchall("SELECT * FROM goals ORDER BY id", operation="list_goals")
        else:
            rows = self._fetchall(
                "SELECT * FROM goals WHERE status = ? ORDER BY id", (status.value,), "list_goals"
            )
        return [self._row_to_goal(row) for row in rows]

    def delete_goal(self, goal_id: str) -> None:
        """Delete a goal and cascade to its allocations, plans and contributions."""
        with self.transaction("delete_goal"):
            self._execute("DELETE FROM allocations WHERE goal_id = ?", (goal_id,), "delete_goal")
            self._execute("DELETE FROM monthly_plans WHERE goal_id = ?", (goal_id,), "delete_goal")
            self._execute("DELETE FROM contributions WHERE goal_id = ?", (goal_id,), "delete_goal")
            self._execute("DELETE FROM goals WHERE id = ?", (goal_id,), "delete_goal")

    # Assets

    def save_asset(self, asset: Asset) -> None:
        self._execute("""
            INSERT OR REPLACE INTO assets (
                id, currency, manual_amount, on_chain_amount, chain, address, symbol
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            asset.id, asset.currency, asset.manual_amount, asset.on_chain_amount,
            asset.chain, asset.address, asset.symbol
        ), operation="save_asset")

    def get_asset(self, asset_id: str) -> Optional[Asset]:
        row = self._fetchone("SELECT * FROM assets WHERE id = ?", (asset_id,), "get_asset")
        return self._row_to_asset(row) if row else None

    def list_assets(self) -> list[Asset]:
        rows = self._fetchall("SELECT * FROM assets ORDER BY id", operation="list_assets")
        return [self._row_to_asset(row) for row in rows]

    def delete_asset(self, asset_id: str) -> None:
        """Delete an asset and cascade to its allocations and contributions."""
        with self.transaction("delete_asset"):
            self._execute("DELETE FROM allocations WHERE asset_id = ?", (asset_id,), "delete_asset")
            self._execute("DELETE FROM contributions WHERE asset_id = ?", (asset_id,), "delete_asset")
            self._execute("DELETE FROM assets WHERE id = ?", (asset_id,), "delete_asset")

    # Allocations

    def get_allocation(self, asset_id: str, goal_id: str) -> Optional[Allocation]:
        row = self._fetchone(
            "SELECT * FROM allocations WHERE asset_id = ? AND goal_id = ?",
            (asset_id, goal_id), "get_allocation"
        )
        return self._row_to_allocation(row) if row else None

    def allocations_for_asset(self, asset_id: str) -> list[Allocation]:
        rows = self._fetchall(
            "SELECT * FROM allocations WHERE asset_id = ? ORDER BY goal_id",
            (asset_id,), "allocations_for_asset"
        )
        return [self._row_to_allocation(row) for row in rows]

    def allocations_for_goal(self, goal_id: str) -> list[Allocation]:
        rows = self._fetchall(
            "SELECT * FROM allocations WHERE goal_id = ? ORDER BY asset_id",
            (goal_id,), "allocations_for_goal"
        )
        return [self._row_to_allocation(row) for row in rows]

    def upsert_allocation(self, allocation: Allocation) -> None:
        self._execute("""
            INSERT INTO allocations (asset_id, goal_id, amount, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(asset_id, goal_id) DO UPDATE SET
                amount = excluded.amount,
                updated_at = excluded.updated_at
        """, (
            allocation.asset_id, allocation.goal_id, allocation.amount,
            _opt_ts(allocation.updated_at)
        ), operation="upsert_allocation")

    def delete_allocation(self, asset_id: str, goal_id: str) -> None:
        self._execute(
            "DELETE FROM allocations WHERE asset_id = ? AND goal_id = ?",
            (asset_id, goal_id), "delete_allocation"
        )

    # Allocation history

    def add_history_entry(self, entry: AllocationHistoryEntry) -> int:
        cursor = self._execute("""
            INSERT INTO allocation_history (asset_id, goal_id, amount, timestamp, month_label)
            VALUES (?, ?, ?, ?, ?)
        """, (
            entry.asset_id, entry.goal_id, entry.amount,
            format_timestamp(entry.timestamp), entry.month_label
        ), operation="add_history_entry")
        return cursor.lastrowid

    def list_history(
        self,
        asset_id: Optional[str] = None,
        goal_id: Optional[str] = None,
        month_label: Optional[str] = None
    ) -> list[AllocationHistoryEntry]:
        """History entries in insertion order, optionally filtered."""
        clauses, params = self._filters(asset_id=asset_id, goal_id=goal_id, month_label=month_label)
        rows = self._fetchall(
            f"SELECT * FROM allocation_history{clauses} ORDER BY id", params, "list_history"
        )
        return [
            AllocationHistoryEntry(
                id=row["id"],
                asset_id=row["asset_id"],
                goal_id=row["goal_id"],
                amount=row["amount"],
                timestamp=parse_timestamp(row["timestamp"]),
                month_label=row["month_label"],
            )
            for row in rows
        ]

    # Monthly plans

    def get_plan(self, goal_id: str, month_label: str) -> Optional[MonthlyPlan]:
        row = self._fetchone(
            "SELECT * FROM monthly_plans WHERE goal_id = ? AND month_label = ?",
            (goal_id, month_label), "get_plan"
        )
        return self._row_to_plan(row) if row else None

    def get_plan_by_id(self, plan_id: str) -> Optional[MonthlyPlan]:
        row = self._fetchone("SELECT * FROM monthly_plans WHERE id = ?", (plan_id,), "get_plan_by_id")
        return self._row_to_plan(row) if row else None

    def list_plans(
        self,
        month_label: Optional[str] = None,
        goal_id: Optional[str] = None,
        flex_state: Optional[FlexState] = None
    ) -> list[MonthlyPlan]:
        clauses, params = self._filters(
            month_label=month_label,
            goal_id=goal_id,
            flex_state=flex_state.value if flex_state else None,
        )
        rows = self._fetchall(
            f"SELECT * FROM monthly_plans{clauses} ORDER BY month_label, goal_id",
            params, "list_plans"
        )
        return [self._row_to_plan(row) for row in rows]

    def insert_plan_if_absent(self, plan: MonthlyPlan) -> MonthlyPlan:
        """Insert a plan unless one exists for its (goal, month); return the stored plan."""
        self._execute("""
            INSERT OR IGNORE INTO monthly_plans (
                id, goal_id, month_label, currency, required_monthly, remaining_amount,
                months_remaining, status, flex_state, custom_amount, flex_multiplier,
                created_at, last_calculated
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, self._plan_params(plan), operation="insert_plan")
        stored = self.get_plan(plan.goal_id, plan.month_label)
        if stored is None:
            raise PersistenceError(
                "Plan missing after insert", operation="insert_plan", target=plan.goal_id
            )
        return stored

    def save_plan(self, plan: MonthlyPlan) -> None:
        self._execute("""
            INSERT OR REPLACE INTO monthly_plans (
                id, goal_id, month_label, currency, required_monthly, remaining_amount,
                months_remaining, status, flex_state, custom_amount, flex_multiplier,
                created_at, last_calculated
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, self._plan_params(plan), operation="save_plan")

    # Execution records

    def get_execution_record(self, record_id: str) -> Optional[ExecutionRecord]:
        row = self._fetchone(
            "SELECT * FROM execution_records WHERE id = ?", (record_id,), "get_execution_record"
        )
        return self._row_to_record(row) if row else None

    def get_execution_record_for_month(self, month_label: str) -> Optional[ExecutionRecord]:
        row = self._fetchone(
            "SELECT * FROM execution_records WHERE month_label = ?",
            (month_label,), "get_execution_record_for_month"
        )
        return self._row_to_record(row) if row else None

    def list_execution_records(
        self,
        status: Optional[ExecutionStatus] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> list[ExecutionRecord]:
        """Records newest month first."""
        clauses, params = self._filters(status=status.value if status else None)
        sql = f"SELECT * FROM execution_records{clauses} ORDER BY month_label DESC"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params = params + (limit, offset)
        rows = self._fetchall(sql, params, "list_execution_records")
        return [self._row_to_record(row) for row in rows]

    def save_execution_record(self, record: ExecutionRecord) -> None:
        self._execute("""
            INSERT OR REPLACE INTO execution_records (
                id, month_label, status, created_at, started_at, completed_at,
                can_undo_until, goal_ids, snapshot
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            record.id,
            record.month_label,
            record.status.value,
            format_timestamp(record.created_at),
            _opt_ts(record.started_at),
            _opt_ts(record.completed_at),
            _opt_ts(record.can_undo_until),
            _dumps(list(record.goal_ids)),
            _dumps(record.snapshot.to_dict()) if record.snapshot else None,
        ), operation="save_execution_record")

    # Completed executions

    def add_completed_execution(self, row: CompletedExecution) -> int:
        cursor = self._execute("""
            INSERT INTO completed_executions (
                record_id, goal_id, goal_name, currency, planned_amount,
                contributed_amount, completed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            row.record_id, row.goal_id, row.goal_name, row.currency,
            row.planned_amount, row.contributed_amount, format_timestamp(row.completed_at)
        ), operation="add_completed_execution")
        return cursor.lastrowid

    def completed_executions_for_record(self, record_id: str) -> list[CompletedExecution]:
        rows = self._fetchall(
            "SELECT * FROM completed_executions WHERE record_id = ? ORDER BY id",
            (record_id,), "completed_executions_for_record"
        )
        return [
            CompletedExecution(
                id=row["id"],
                record_id=row["record_id"],
                goal_id=row["goal_id"],
                goal_name=row["goal_name"],
                currency=row["currency"],
                planned_amount=row["planned_amount"],
                contributed_amount=row["contributed_amount"],
                completed_at=parse_timestamp(row["completed_at"]),
            )
            for row in rows
        ]

    def delete_completed_executions(self, record_id: str) -> int:
        cursor = self._execute(
            "DELETE FROM completed_executions WHERE record_id = ?",
            (record_id,), "delete_completed_executions"
        )
        return cursor.rowcount

    # Contributions

    def add_contribution(self, contribution: Contribution) -> None:
        self._execute("""
            INSERT INTO contributions (
                id, goal_id, asset_id, amount, exchange_rate, amount_in_goal_currency,
                timestamp, month_label, source, execution_record_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            contribution.id, contribution.goal_id, contribution.asset_id,
            contribution.amount, contribution.exchange_rate,
            contribution.amount_in_goal_currency, format_timestamp(contribution.timestamp),
            contribution.month_label, contribution.source, contribution.execution_record_id
        ), operation="add_contribution")

    def list_contributions(
        self,
        goal_id: Optional[str] = None,
        month_label: Optional[str] = None,
        execution_record_id: Optional[str] = None
    ) -> list[Contribution]:
        clauses, params = self._filters(
            goal_id=goal_id, month_label=month_label, execution_record_id=execution_record_id
        )
        rows = self._fetchall(
            f"SELECT * FROM contributions{clauses} ORDER BY timestamp, id",
            params, "list_contributions"
        )
        return [
            Contribution(
                id=row["id"],
                goal_id=row["goal_id"],
                asset_id=row["asset_id"],
                amount=row["amount"],
                exchange_rate=row["exchange_rate"],
                amount_in_goal_currency=row["amount_in_goal_currency"],
                timestamp=parse_timestamp(row["timestamp"]),
                month_label=row["month_label"],
                source=row["source"],
                execution_record_id=row["execution_record_id"],
            )
            for row in rows
        ]

    # Settings

    def get_setting(self, key: str, default: Any = None) -> Any:
        row = self._fetchone("SELECT value FROM planner_settings WHERE key = ?", (key,), "get_setting")
        return orjson.loads(row["value"]) if row else default

    def set_setting(self, key: str, value: Any) -> None:
        self._execute(
            "INSERT OR REPLACE INTO planner_settings (key, value) VALUES (?, ?)",
            (key, _dumps(value)), "set_setting"
        )

    # Row conversion

    @staticmethod
    def _filters(**columns: Any) -> tuple[str, tuple]:
        """Build a WHERE clause from the non-None column filters."""
        active = [(name, value) for name, value in columns.items() if value is not None]
        if not active:
            return "", ()
        clause = " WHERE " + " AND ".join(f"{name} = ?" for name, _ in active)
        return clause, tuple(value for _, value in active)

    @staticmethod
    def _plan_params(plan: MonthlyPlan) -> tuple:
        return (
            plan.id, plan.goal_id, plan.month_label, plan.currency, plan.required_monthly,
            plan.remaining_amount, plan.months_remaining, plan.status.value,
            plan.flex_state.value, plan.custom_amount, plan.flex_multiplier,
            _opt_ts(plan.created_at), _opt_ts(plan.last_calculated),
        )

    def _row_to_goal(self, row: sqlite3.Row) -> Goal:
        return Goal(
            id=row["id"],
            name=row["name"],
            currency=row["currency"],
            target_amount=row["target_amount"],
            deadline=date.fromisoformat(row["deadline"]),
            start_date=date.fromisoformat(row["start_date"]),
            status=GoalStatus(row["status"]),
            emoji=row["emoji"],
        )

    def _row_to_asset(self, row: sqlite3.Row) -> Asset:
        return Asset(
            id=row["id"],
            currency=row["currency"],
            manual_amount=row["manual_amount"],
            on_chain_amount=row["on_chain_amount"],
            chain=row["chain"],
            address=row["address"],
            symbol=row["symbol"],
        )

    def _row_to_allocation(self, row: sqlite3.Row) -> Allocation:
        return Allocation(
            asset_id=row["asset_id"],
            goal_id=row["goal_id"],
            amount=row["amount"],
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def _row_to_plan(self, row: sqlite3.Row) -> MonthlyPlan:
        return MonthlyPlan(
            id=row["id"],
            goal_id=row["goal_id"],
            month_label=row["month_label"],
            currency=row["currency"],
            required_monthly=row["required_monthly"],
            remaining_amount=row["remaining_amount"],
            months_remaining=row["months_remaining"],
            status=RequirementStatus(row["status"]),
            flex_state=FlexState(row["flex_state"]),
            custom_amount=row["custom_amount"],
            flex_multiplier=row["flex_multiplier"],
            created_at=parse_timestamp(row["created_at"]),
            last_calculated=parse_timestamp(row["last_calculated"]),
        )

    def _row_to_record(self, row: sqlite3.Row) -> ExecutionRecord:
        snapshot = orjson.loads(row["snapshot"]) if row["snapshot"] else None
        return ExecutionRecord(
            id=row["id"],
            month_label=row["month_label"],
            status=ExecutionStatus(row["status"]),
            created_at=parse_timestamp(row["created_at"]),
            started_at=parse_timestamp(row["started_at"]),
            completed_at=parse_timestamp(row["completed_at"]),
            can_undo_until=parse_timestamp(row["can_undo_until"]),
            goal_ids=tuple(orjson.loads(row["goal_ids"])),
            snapshot=ExecutionSnapshot.from_dict(snapshot) if snapshot else None,
        )
