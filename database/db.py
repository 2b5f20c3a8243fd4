import json
import sqlite3
from typing import Any

from backend.config import DB_PATH


# -----------------------------
# Store registry
# -----------------------------
# Each logical store maps onto one table. "indexes" name the lookups the
# services rely on; values passed to a multi-column index are tuples.
STORES: dict[str, dict[str, Any]] = {
    "students": {
        "table": "students",
        "key": "id",
        "autoincrement": True,
        "columns": ("id", "first_name", "last_initial", "is_archived", "created_at"),
        "booleans": {"is_archived"},
        "indexes": {"archived": ("is_archived",)},
        "order_by": "last_initial ASC, first_name ASC, id ASC",
    },
    "attendance": {
        "table": "attendance",
        "key": "id",
        "autoincrement": True,
        "columns": (
            "id",
            "student_id",
            "date",
            "period",
            "check_in_at",
            "is_late",
            "minutes_late",
            "seconds_late",
            "verdict",
            "source",
            "day_type",
            "scheduled_start",
            "scheduled_end",
            "grace_minutes",
        ),
        "booleans": {"is_late"},
        "indexes": {
            "date": ("date",),
            "student": ("student_id",),
            "studentDate": ("student_id", "date"),
            "studentDatePeriod": ("student_id", "date", "period"),
        },
        "order_by": "check_in_at ASC, id ASC",
    },
    "streaks": {
        "table": "streaks",
        "key": "student_id",
        "autoincrement": False,
        "columns": (
            "student_id",
            "current_streak",
            "longest_streak",
            "streak_in_danger",
            "last_on_time_date",
        ),
        "booleans": {"streak_in_danger"},
        "indexes": {},
        "order_by": "student_id ASC",
    },
    "hallpass": {
        "table": "hallpass",
        "key": "id",
        "autoincrement": True,
        "columns": (
            "id",
            "student_id",
            "date",
            "reason",
            "committed_minutes",
            "check_out_at",
            "committed_return_at",
            "actual_return_at",
            "status",
            "duration_minutes",
            "over_under_minutes",
            "cancelled_at",
        ),
        "booleans": set(),
        "indexes": {
            "date": ("date",),
            "student": ("student_id",),
            "studentDate": ("student_id", "date"),
            "dateStatus": ("date", "status"),
        },
        "order_by": "check_out_at ASC, id ASC",
    },
    "hallpass_active": {
        "table": "hallpass_active",
        "key": "date",
        "autoincrement": False,
        "columns": ("date", "trip_id"),
        "booleans": set(),
        "indexes": {"date": ("date",)},
        "order_by": "date ASC",
    },
}


def connect_db():
    conn = sqlite3.connect(str(DB_PATH), check_same_thread=False)
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def create_tables():
    conn = connect_db()
    cursor = conn.cursor()

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS students (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        first_name TEXT NOT NULL,
        last_initial TEXT NOT NULL DEFAULT '',
        is_archived INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL         -- ISO timestamp
    )
    """)

    # One row per (student, date, period); the resolved bell window is stored
    # alongside so verdicts can be audited later.
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS attendance (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id INTEGER NOT NULL,
        date TEXT NOT NULL,              -- YYYY-MM-DD
        period INTEGER NOT NULL,
        check_in_at TEXT NOT NULL,       -- ISO timestamp
        is_late INTEGER NOT NULL DEFAULT 0,
        minutes_late INTEGER NOT NULL DEFAULT 0,
        seconds_late INTEGER NOT NULL DEFAULT 0,
        verdict TEXT NOT NULL,           -- on_time | late | no_class
        source TEXT NOT NULL DEFAULT 'self',
        day_type TEXT,
        scheduled_start TEXT,            -- HH:MM
        scheduled_end TEXT,              -- HH:MM
        grace_minutes INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(student_id, date, period)
    )
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_date ON attendance(date)")

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS streaks (
        student_id INTEGER PRIMARY KEY,
        current_streak INTEGER NOT NULL DEFAULT 0,
        longest_streak INTEGER NOT NULL DEFAULT 0,
        streak_in_danger INTEGER NOT NULL DEFAULT 0,
        last_on_time_date TEXT,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS hallpass (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id INTEGER NOT NULL,
        date TEXT NOT NULL,              -- YYYY-MM-DD
        reason TEXT NOT NULL,
        committed_minutes INTEGER NOT NULL,
        check_out_at TEXT NOT NULL,      -- ISO timestamp
        committed_return_at TEXT NOT NULL,
        actual_return_at TEXT,
        status TEXT NOT NULL,            -- queued | out | returned | cancelled
        duration_minutes INTEGER,
        over_under_minutes INTEGER,
        cancelled_at TEXT
    )
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_hallpass_date ON hallpass(date, status)")
    # At most one queued-or-out trip per student per day.
    cursor.execute("""
    CREATE UNIQUE INDEX IF NOT EXISTS idx_hallpass_open_trip
    ON hallpass(student_id, date)
    WHERE status IN ('queued', 'out')
    """)

    # Single slot per date: the trip that is currently out.
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS hallpass_active (
        date TEXT PRIMARY KEY,
        trip_id INTEGER NOT NULL,
        FOREIGN KEY (trip_id) REFERENCES hallpass(id) ON DELETE CASCADE
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value TEXT,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    conn.commit()
    conn.close()


# -----------------------------
# Generic store access
# -----------------------------
def _store(store: str) -> dict[str, Any]:
    spec = STORES.get(store)
    if spec is None:
        raise ValueError(f"Unknown store: {store}")
    return spec


def _index_columns(spec: dict[str, Any], index_name: str) -> tuple[str, ...]:
    cols = spec["indexes"].get(index_name)
    if cols is None:
        raise ValueError(f"Unknown index {index_name!r} on store {spec['table']!r}")
    return cols


def _index_values(cols: tuple[str, ...], value: Any) -> tuple:
    if len(cols) == 1:
        return (value,)
    values = tuple(value)
    if len(values) != len(cols):
        raise ValueError(f"Index expects {len(cols)} values, got {len(values)}")
    return values


def _row_to_entity(spec: dict[str, Any], cur: sqlite3.Cursor, row: tuple) -> dict[str, Any]:
    names = [d[0] for d in cur.description]
    entity = dict(zip(names, row))
    for col in spec["booleans"]:
        if col in entity and entity[col] is not None:
            entity[col] = bool(entity[col])
    return entity


def _to_db_value(value: Any) -> Any:
    if isinstance(value, bool):
        return 1 if value else 0
    return value


def _select_sql(spec: dict[str, Any], where_cols: tuple[str, ...]) -> str:
    where = " AND ".join(f"{c} = ?" for c in where_cols)
    return f"""
        SELECT {", ".join(spec["columns"])}
        FROM {spec["table"]}
        WHERE {where}
        ORDER BY {spec["order_by"]}
    """


def get_by_key(store: str, key: Any, *, conn: sqlite3.Connection | None = None) -> dict[str, Any] | None:
    spec = _store(store)
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        cur = active_conn.cursor()
        cur.execute(_select_sql(spec, (spec["key"],)), (key,))
        row = cur.fetchone()
        if not row:
            return None
        return _row_to_entity(spec, cur, row)
    finally:
        if owns_conn:
            active_conn.close()


def get_all_by_index(
    store: str,
    index_name: str,
    value: Any,
    *,
    conn: sqlite3.Connection | None = None,
) -> list[dict[str, Any]]:
    spec = _store(store)
    cols = _index_columns(spec, index_name)
    params = _index_values(cols, value)
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        cur = active_conn.cursor()
        cur.execute(_select_sql(spec, cols), params)
        return [_row_to_entity(spec, cur, row) for row in cur.fetchall()]
    finally:
        if owns_conn:
            active_conn.close()


def _insert(cur: sqlite3.Cursor, spec: dict[str, Any], entity: dict[str, Any]) -> Any:
    cols = [c for c in spec["columns"] if c in entity]
    if spec["autoincrement"] and entity.get(spec["key"]) is None:
        cols = [c for c in cols if c != spec["key"]]
    placeholders = ", ".join("?" for _ in cols)
    cur.execute(
        f"""
        INSERT INTO {spec["table"]} ({", ".join(cols)})
        VALUES ({placeholders})
        """,
        tuple(_to_db_value(entity[c]) for c in cols),
    )
    if spec["autoincrement"] and entity.get(spec["key"]) is None:
        return int(cur.lastrowid)
    return entity[spec["key"]]


def create(store: str, entity: dict[str, Any], *, conn: sqlite3.Connection | None = None) -> Any:
    """
    Insert a new entity and return its key.

    Raises sqlite3.IntegrityError when a uniqueness constraint is violated.
    """
    spec = _store(store)
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        key = _insert(active_conn.cursor(), spec, entity)
        if owns_conn:
            active_conn.commit()
        return key
    finally:
        if owns_conn:
            active_conn.close()


def create_if_absent(
    store: str,
    entity: dict[str, Any],
    index_name: str,
    *,
    conn: sqlite3.Connection | None = None,
) -> tuple[dict[str, Any], bool]:
    """
    Atomic insert-if-absent against a unique index.

    Returns (stored_entity, created). When a row already matches the index
    values the existing row is returned untouched.
    """
    spec = _store(store)
    cols = _index_columns(spec, index_name)
    params = tuple(entity[c] for c in cols)
    owns_conn = conn is None
    active_conn = conn or connect_db()
    cur = active_conn.cursor()
    try:
        cur.execute(_select_sql(spec, cols), params)
        row = cur.fetchone()
        if row:
            return _row_to_entity(spec, cur, row), False

        key = _insert(cur, spec, entity)
        if owns_conn:
            active_conn.commit()
        return {**entity, spec["key"]: key}, True
    except sqlite3.IntegrityError:
        # Lost the race to a concurrent writer; hand back the winner's row.
        cur.execute(_select_sql(spec, cols), params)
        row = cur.fetchone()
        if not row:
            raise
        return _row_to_entity(spec, cur, row), False
    finally:
        if owns_conn:
            active_conn.close()


def upsert(store: str, entity: dict[str, Any], *, conn: sqlite3.Connection | None = None) -> Any:
    spec = _store(store)
    key_col = spec["key"]
    if entity.get(key_col) is None:
        return create(store, entity, conn=conn)

    cols = [c for c in spec["columns"] if c in entity]
    updates = ", ".join(f"{c} = excluded.{c}" for c in cols if c != key_col)
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        active_conn.execute(
            f"""
            INSERT INTO {spec["table"]} ({", ".join(cols)})
            VALUES ({", ".join("?" for _ in cols)})
            ON CONFLICT({key_col}) DO UPDATE SET {updates}
            """,
            tuple(_to_db_value(entity[c]) for c in cols),
        )
        if owns_conn:
            active_conn.commit()
        return entity[key_col]
    finally:
        if owns_conn:
            active_conn.close()


def delete_by_key(store: str, key: Any, *, conn: sqlite3.Connection | None = None) -> bool:
    spec = _store(store)
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        cur = active_conn.cursor()
        cur.execute(f"DELETE FROM {spec['table']} WHERE {spec['key']} = ?", (key,))
        if owns_conn:
            active_conn.commit()
        return cur.rowcount > 0
    finally:
        if owns_conn:
            active_conn.close()


def get_all(store: str, *, conn: sqlite3.Connection | None = None) -> list[dict[str, Any]]:
    spec = _store(store)
    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        cur = active_conn.cursor()
        cur.execute(
            f"""
            SELECT {", ".join(spec["columns"])}
            FROM {spec["table"]}
            ORDER BY {spec["order_by"]}
            """
        )
        return [_row_to_entity(spec, cur, row) for row in cur.fetchall()]
    finally:
        if owns_conn:
            active_conn.close()


# -----------------------------
# Settings (JSON values)
# -----------------------------
def get_setting(key: str, default: Any = None) -> Any:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("SELECT value FROM settings WHERE key = ?", (key,))
    row = cur.fetchone()
    conn.close()
    if not row or row[0] is None:
        return default
    try:
        return json.loads(row[0])
    except (TypeError, ValueError):
        return default


def get_all_settings() -> dict[str, Any]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("SELECT key, value FROM settings ORDER BY key ASC")
    rows = cur.fetchall()
    conn.close()

    out: dict[str, Any] = {}
    for key, value in rows:
        try:
            out[str(key)] = json.loads(value) if value is not None else None
        except (TypeError, ValueError):
            continue
    return out


def set_setting(key: str, value: Any) -> None:
    conn = connect_db()
    conn.execute(
        """
        INSERT INTO settings (key, value)
        VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET
            value = excluded.value,
            updated_at = CURRENT_TIMESTAMP
        """,
        (key, json.dumps(value)),
    )
    conn.commit()
    conn.close()


# -----------------------------
# Resets
# -----------------------------
def clear_attendance():
    conn = connect_db()
    cur = conn.cursor()

    cur.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='attendance'")
    if not cur.fetchone():
        conn.close()
        return False

    cur.execute("DELETE FROM hallpass_active;")
    cur.execute("DELETE FROM hallpass;")
    cur.execute("DELETE FROM attendance;")
    cur.execute("DELETE FROM streaks;")
    cur.execute("DELETE FROM sqlite_sequence WHERE name='hallpass';")
    cur.execute("DELETE FROM sqlite_sequence WHERE name='attendance';")
    conn.commit()
    conn.close()
    return True


def clear_all_tables():
    conn = connect_db()
    cur = conn.cursor()

    cur.execute("DELETE FROM hallpass_active;")
    cur.execute("DELETE FROM hallpass;")
    cur.execute("DELETE FROM attendance;")
    cur.execute("DELETE FROM streaks;")
    cur.execute("DELETE FROM settings;")
    cur.execute("DELETE FROM students;")

    cur.execute("DELETE FROM sqlite_sequence WHERE name='hallpass';")
    cur.execute("DELETE FROM sqlite_sequence WHERE name='attendance';")
    cur.execute("DELETE FROM sqlite_sequence WHERE name='students';")

    conn.commit()
    conn.close()
