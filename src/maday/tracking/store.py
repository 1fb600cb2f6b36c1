# src/maday/tracking/store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from collections.abc import Iterable
from datetime import date
from pathlib import Path
from typing import Any

from .models import Category, DailyTaskInstance, Session, TaskTemplate

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY_COLOR = "#8E8E93"


class DailyTaskStore:
    """
    SQLite store for categories, task templates, daily task instances and sessions.

    The schema is intentionally simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "maday.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_instances()
        except Exception:
            total = -1
        logger.info("DailyTaskStore ready db=%s instances=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    color TEXT NOT NULL DEFAULT '#8E8E93',
                    display_order INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_templates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    category_id INTEGER,
                    default_goal_seconds INTEGER NOT NULL DEFAULT 0,
                    default_checklist TEXT NOT NULL DEFAULT '[]',
                    description TEXT NOT NULL DEFAULT '',
                    color TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS daily_tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    day TEXT NOT NULL,
                    template_id INTEGER,
                    title TEXT NOT NULL,
                    checklist TEXT NOT NULL DEFAULT '[]',
                    goal_seconds INTEGER NOT NULL DEFAULT 0,
                    description TEXT NOT NULL DEFAULT '',
                    color TEXT,
                    accumulated_seconds REAL NOT NULL DEFAULT 0,
                    is_completed INTEGER NOT NULL DEFAULT 0,
                    checklist_state TEXT NOT NULL DEFAULT '[]',
                    display_order INTEGER NOT NULL DEFAULT 0,
                    priority INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    daily_task_id INTEGER NOT NULL,
                    start_at REAL NOT NULL,
                    end_at REAL,
                    duration REAL NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            def add_col(table: str, name: str, decl: str) -> None:
                cur.execute(f"PRAGMA table_info({table})")
                cols = {row["name"] for row in cur.fetchall()}
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
                logger.info("DailyTaskStore migration: added column %s.%s", table, name)

            add_col("task_templates", "color", "TEXT")
            add_col("task_templates", "description", "TEXT NOT NULL DEFAULT ''")
            add_col("daily_tasks", "color", "TEXT")
            add_col("daily_tasks", "priority", "INTEGER NOT NULL DEFAULT 0")
            add_col("daily_tasks", "display_order", "INTEGER NOT NULL DEFAULT 0")
            add_col("sessions", "duration", "REAL NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_daily_tasks_day ON daily_tasks(day)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_sessions_task ON sessions(daily_task_id)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _list_to_str(items: Iterable[Any] | None) -> str:
        if not items:
            return "[]"
        return json.dumps(list(items), ensure_ascii=False)

    @staticmethod
    def _str_to_list(s: str | None) -> list[Any]:
        if not s:
            return []
        try:
            val = json.loads(s)
            return val if isinstance(val, list) else []
        except Exception:
            return []

    @staticmethod
    def _day_key(day: date) -> str:
        return day.isoformat()

    @staticmethod
    def _row_to_category(row: sqlite3.Row) -> Category:
        return Category(
            id=int(row["id"]),
            name=str(row["name"] or ""),
            color=str(row["color"] or DEFAULT_CATEGORY_COLOR),
            display_order=int(row["display_order"] or 0),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    def _row_to_template(self, row: sqlite3.Row) -> TaskTemplate:
        return TaskTemplate(
            id=int(row["id"]),
            title=str(row["title"] or ""),
            category_id=int(row["category_id"]) if row["category_id"] is not None else None,
            default_goal_seconds=int(row["default_goal_seconds"] or 0),
            default_checklist=[str(x) for x in self._str_to_list(row["default_checklist"])],
            description=str(row["description"] or ""),
            color=row["color"],
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    def _row_to_instance(self, row: sqlite3.Row) -> DailyTaskInstance:
        checklist = [str(x) for x in self._str_to_list(row["checklist"])]
        state = [bool(x) for x in self._str_to_list(row["checklist_state"])]
        # keep the parallel list aligned even if an old row was written inconsistently
        if len(state) != len(checklist):
            state = (state + [False] * len(checklist))[: len(checklist)]
        return DailyTaskInstance(
            id=int(row["id"]),
            day=date.fromisoformat(str(row["day"])),
            template_id=int(row["template_id"]) if row["template_id"] is not None else None,
            title=str(row["title"] or ""),
            checklist=checklist,
            goal_seconds=int(row["goal_seconds"] or 0),
            description=str(row["description"] or ""),
            color=row["color"],
            accumulated_seconds=float(row["accumulated_seconds"] or 0.0),
            is_completed=bool(row["is_completed"]),
            checklist_state=state,
            display_order=int(row["display_order"] or 0),
            priority=int(row["priority"] or 0),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            id=int(row["id"]),
            daily_task_id=int(row["daily_task_id"]),
            start_at=float(row["start_at"]),
            end_at=float(row["end_at"]) if row["end_at"] is not None else None,
            duration_seconds=float(row["duration"] or 0.0),
        )

    # ---- categories ----

    def create_category(
        self,
        *,
        name: str,
        color: str = DEFAULT_CATEGORY_COLOR,
        display_order: int | None = None,
    ) -> Category:
        if not name or not name.strip():
            raise ValueError("name is required")

        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            if display_order is None:
                cur.execute("SELECT COALESCE(MAX(display_order) + 1, 0) FROM categories")
                (display_order,) = cur.fetchone()
            cur.execute(
                """
                INSERT INTO categories(name, color, display_order, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (name.strip(), color or DEFAULT_CATEGORY_COLOR, int(display_order), now, now),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for categories insert")
            logger.debug("Category added id=%s name=%s", rowid, name)
            cur.execute("SELECT * FROM categories WHERE id = ?", (int(rowid),))
            return self._row_to_category(cur.fetchone())
        finally:
            conn.close()

    def list_categories(self) -> list[Category]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM categories ORDER BY display_order ASC, id ASC")
            return [self._row_to_category(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def get_category(self, category_id: int) -> Category | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM categories WHERE id = ?", (int(category_id),))
            row = cur.fetchone()
            return self._row_to_category(row) if row else None
        finally:
            conn.close()

    def update_category(
        self,
        category_id: int,
        *,
        name: str | None = None,
        color: str | None = None,
        display_order: int | None = None,
    ) -> None:
        fields: list[str] = []
        params: list[Any] = []

        if name is not None:
            if not name.strip():
                raise ValueError("name must not be blank")
            fields.append("name = ?")
            params.append(name.strip())

        if color is not None:
            fields.append("color = ?")
            params.append(color)

        if display_order is not None:
            fields.append("display_order = ?")
            params.append(int(display_order))

        if not fields:
            return

        fields.append("updated_at = ?")
        params.append(time.time())
        params.append(int(category_id))

        self._update_one("categories", fields, params, category_id)

    def delete_category(self, category_id: int) -> None:
        """Delete a category; its templates stay and lose the reference."""
        conn = self._get_conn()
        try:
            conn.execute(
                "UPDATE task_templates SET category_id = NULL, updated_at = ? WHERE category_id = ?",
                (time.time(), int(category_id)),
            )
            conn.execute("DELETE FROM categories WHERE id = ?", (int(category_id),))
            conn.commit()
            logger.debug("Category deleted id=%s", category_id)
        finally:
            conn.close()

    # ---- templates ----

    def create_template(
        self,
        *,
        title: str,
        category_id: int | None = None,
        default_goal_seconds: int = 0,
        default_checklist: list[str] | None = None,
        description: str = "",
        color: str | None = None,
    ) -> TaskTemplate:
        if not title or not title.strip():
            raise ValueError("title is required")
        if default_goal_seconds < 0:
            raise ValueError("default_goal_seconds must be >= 0")

        checklist = [c.strip() for c in (default_checklist or []) if c and c.strip()]
        now = time.time()

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO task_templates(
                    title, category_id, default_goal_seconds, default_checklist,
                    description, color, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    title.strip(),
                    category_id,
                    int(default_goal_seconds),
                    self._list_to_str(checklist),
                    (description or "").strip(),
                    color,
                    now,
                    now,
                ),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for task_templates insert")
            logger.debug(
                "Template added id=%s title=%s goal=%s checklist=%d",
                rowid,
                title,
                default_goal_seconds,
                len(checklist),
            )
            cur.execute("SELECT * FROM task_templates WHERE id = ?", (int(rowid),))
            return self._row_to_template(cur.fetchone())
        finally:
            conn.close()

    def list_templates(self) -> list[TaskTemplate]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM task_templates ORDER BY created_at ASC, id ASC")
            return [self._row_to_template(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def get_template(self, template_id: int) -> TaskTemplate | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM task_templates WHERE id = ?", (int(template_id),))
            row = cur.fetchone()
            return self._row_to_template(row) if row else None
        finally:
            conn.close()

    def update_template(
        self,
        template_id: int,
        *,
        title: str | None = None,
        category_id: int | None = None,
        default_goal_seconds: int | None = None,
        default_checklist: list[str] | None = None,
        description: str | None = None,
        color: str | None = None,
    ) -> None:
        """
        Edit a template in place.

        Daily instances keep their snapshot; nothing is propagated to them.
        """
        fields: list[str] = []
        params: list[Any] = []

        if title is not None:
            if not title.strip():
                raise ValueError("title must not be blank")
            fields.append("title = ?")
            params.append(title.strip())

        if category_id is not None:
            fields.append("category_id = ?")
            params.append(int(category_id))

        if default_goal_seconds is not None:
            if default_goal_seconds < 0:
                raise ValueError("default_goal_seconds must be >= 0")
            fields.append("default_goal_seconds = ?")
            params.append(int(default_goal_seconds))

        if default_checklist is not None:
            fields.append("default_checklist = ?")
            params.append(self._list_to_str([c.strip() for c in default_checklist if c.strip()]))

        if description is not None:
            fields.append("description = ?")
            params.append(description.strip())

        if color is not None:
            fields.append("color = ?")
            params.append(color)

        if not fields:
            return

        fields.append("updated_at = ?")
        params.append(time.time())
        params.append(int(template_id))

        self._update_one("task_templates", fields, params, template_id)

    def delete_template(self, template_id: int) -> None:
        """Delete a template; planned instances keep their snapshot."""
        conn = self._get_conn()
        try:
            conn.execute(
                "UPDATE daily_tasks SET template_id = NULL WHERE template_id = ?",
                (int(template_id),),
            )
            conn.execute("DELETE FROM task_templates WHERE id = ?", (int(template_id),))
            conn.commit()
            logger.debug("Template deleted id=%s", template_id)
        finally:
            conn.close()

    # ---- daily task instances ----

    def count_instances(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM daily_tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def create_instance(self, template_id: int, day: date, order: int) -> DailyTaskInstance:
        """
        Snapshot a template into a day-scoped instance.

        The checklist completion list starts all False, one entry per checklist item.
        """
        template = self.get_template(template_id)
        if template is None:
            raise ValueError(f"template {template_id} not found")

        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO daily_tasks(
                    day, template_id, title, checklist, goal_seconds, description, color,
                    accumulated_seconds, is_completed, checklist_state,
                    display_order, priority, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, 0, ?, ?, 0, ?, ?)
                """,
                (
                    self._day_key(day),
                    template.id,
                    template.title,
                    self._list_to_str(template.default_checklist),
                    template.default_goal_seconds,
                    template.description,
                    template.color,
                    self._list_to_str([False] * len(template.default_checklist)),
                    int(order),
                    now,
                    now,
                ),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for daily_tasks insert")
            logger.debug("Daily task created id=%s template=%s day=%s", rowid, template.id, day)
            cur.execute("SELECT * FROM daily_tasks WHERE id = ?", (int(rowid),))
            return self._row_to_instance(cur.fetchone())
        finally:
            conn.close()

    def get_instance(self, instance_id: int) -> DailyTaskInstance | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM daily_tasks WHERE id = ?", (int(instance_id),))
            row = cur.fetchone()
            return self._row_to_instance(row) if row else None
        finally:
            conn.close()

    def get_instances_for_day(self, day: date) -> list[DailyTaskInstance]:
        """Incomplete first, then priority (high first), then display order."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT *
                FROM daily_tasks
                WHERE day = ?
                ORDER BY is_completed ASC, priority DESC, display_order ASC, created_at ASC, id ASC
                """,
                (self._day_key(day),),
            )
            return [self._row_to_instance(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_instances_between(self, start_day: date, end_day: date) -> list[DailyTaskInstance]:
        """Instances with start_day <= day <= end_day, ordered by day."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT *
                FROM daily_tasks
                WHERE day >= ? AND day <= ?
                ORDER BY day ASC, display_order ASC, id ASC
                """,
                (self._day_key(start_day), self._day_key(end_day)),
            )
            return [self._row_to_instance(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def add_elapsed(
        self,
        instance_id: int,
        delta_seconds: float,
        *,
        session_id: int | None = None,
    ) -> float:
        """
        Atomically add tracked time to an instance and return the new total.

        When session_id is given, the same delta is added to that session's duration
        in the same transaction, so instance total == sum of session durations.
        """
        delta = float(delta_seconds)
        if delta < 0:
            raise ValueError("delta_seconds must be >= 0")

        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute(
                """
                UPDATE daily_tasks
                SET accumulated_seconds = accumulated_seconds + ?, updated_at = ?
                WHERE id = ?
                """,
                (delta, now, int(instance_id)),
            )
            if cur.rowcount != 1:
                conn.rollback()
                raise ValueError(f"daily task {instance_id} not found")

            if session_id is not None:
                cur.execute(
                    "UPDATE sessions SET duration = duration + ? WHERE id = ? AND daily_task_id = ?",
                    (delta, int(session_id), int(instance_id)),
                )

            cur.execute("SELECT accumulated_seconds FROM daily_tasks WHERE id = ?", (int(instance_id),))
            (total,) = cur.fetchone()
            conn.commit()
            return float(total)
        finally:
            conn.close()

    def set_completion(self, instance_id: int, completed: bool) -> None:
        self._update_one(
            "daily_tasks",
            ["is_completed = ?", "updated_at = ?"],
            [1 if completed else 0, time.time(), int(instance_id)],
            instance_id,
        )

    def set_checklist_state(self, instance_id: int, state: list[bool]) -> None:
        inst = self.get_instance(instance_id)
        if inst is None:
            raise ValueError(f"daily task {instance_id} not found")
        if len(state) != len(inst.checklist):
            raise ValueError(
                f"checklist state has {len(state)} entries, checklist has {len(inst.checklist)}"
            )
        self._update_one(
            "daily_tasks",
            ["checklist_state = ?", "updated_at = ?"],
            [self._list_to_str([bool(x) for x in state]), time.time(), int(instance_id)],
            instance_id,
        )

    def update_instance(
        self,
        instance_id: int,
        *,
        goal_seconds: int | None = None,
        description: str | None = None,
        priority: int | None = None,
        display_order: int | None = None,
    ) -> None:
        fields: list[str] = []
        params: list[Any] = []

        if goal_seconds is not None:
            if goal_seconds < 0:
                raise ValueError("goal_seconds must be >= 0")
            fields.append("goal_seconds = ?")
            params.append(int(goal_seconds))

        if description is not None:
            fields.append("description = ?")
            params.append(description.strip())

        if priority is not None:
            fields.append("priority = ?")
            params.append(int(priority))

        if display_order is not None:
            fields.append("display_order = ?")
            params.append(int(display_order))

        if not fields:
            return

        fields.append("updated_at = ?")
        params.append(time.time())
        params.append(int(instance_id))

        self._update_one("daily_tasks", fields, params, instance_id)

    def reorder_instances(self, instance_ids: list[int]) -> None:
        """Assign display_order following the given id order."""
        now = time.time()
        conn = self._get_conn()
        try:
            conn.executemany(
                "UPDATE daily_tasks SET display_order = ?, updated_at = ? WHERE id = ?",
                [(i, now, int(iid)) for i, iid in enumerate(instance_ids)],
            )
            conn.commit()
        finally:
            conn.close()

    def delete_instance(self, instance_id: int) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM sessions WHERE daily_task_id = ?", (int(instance_id),))
            conn.execute("DELETE FROM daily_tasks WHERE id = ?", (int(instance_id),))
            conn.commit()
            logger.debug("Daily task deleted id=%s", instance_id)
        finally:
            conn.close()

    # ---- sessions ----

    def create_session(self, instance_id: int, start: float) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT 1 FROM daily_tasks WHERE id = ?", (int(instance_id),))
            if cur.fetchone() is None:
                raise ValueError(f"daily task {instance_id} not found")
            cur.execute(
                """
                INSERT INTO sessions(daily_task_id, start_at, end_at, duration, created_at)
                VALUES (?, ?, NULL, 0, ?)
                """,
                (int(instance_id), float(start), time.time()),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for sessions insert")
            logger.debug("Session opened id=%s daily_task=%s", rowid, instance_id)
            return int(rowid)
        finally:
            conn.close()

    def close_session(self, session_id: int, end: float) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "UPDATE sessions SET end_at = ? WHERE id = ? AND end_at IS NULL",
                (float(end), int(session_id)),
            )
            conn.commit()
            if cur.rowcount != 1:
                logger.debug("close_session: session %s missing or already closed", session_id)
        finally:
            conn.close()

    def list_sessions(self, instance_id: int) -> list[Session]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM sessions WHERE daily_task_id = ? ORDER BY start_at ASC, id ASC",
                (int(instance_id),),
            )
            return [self._row_to_session(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def total_session_duration(self, instance_id: int) -> float:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT COALESCE(SUM(duration), 0) FROM sessions WHERE daily_task_id = ?",
                (int(instance_id),),
            )
            (total,) = cur.fetchone()
            return float(total)
        finally:
            conn.close()

    def close_stale_sessions(self) -> int:
        """
        Close sessions left open by a crash or kill.

        The end time is reconstructed from the persisted duration, which the tracker
        bumps on every tick. Returns the number of sessions closed.
        """
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("UPDATE sessions SET end_at = start_at + duration WHERE end_at IS NULL")
            conn.commit()
            n = int(cur.rowcount or 0)
            if n:
                logger.info("Closed %d stale session(s)", n)
            return n
        finally:
            conn.close()

    # ---- shared ----

    def _update_one(self, table: str, fields: list[str], params: list[Any], row_id: int) -> None:
        sql = f"UPDATE {table} SET {', '.join(fields)} WHERE id = ?"
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            conn.commit()
            if cur.rowcount != 1:
                raise ValueError(f"{table} row {row_id} not found")
        finally:
            conn.close()
