import sqlite3
from pathlib import Path

import numpy as np

from .exceptions import PersistenceError
from .logger import setup_logger
from .types import AttendanceRecord


class LocalRecordStore:
    """Append-only sqlite store used when no Supabase project is configured."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.logger = setup_logger(self.__class__.__name__)
        self._initialize()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=5)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize(self) -> None:
        try:
            with self._connect() as conn:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS attendance_records (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        roll TEXT NOT NULL,
                        name TEXT NOT NULL,
                        email TEXT NOT NULL,
                        confidence_score REAL NOT NULL,
                        status TEXT NOT NULL CHECK (status IN ('present', 'absent')),
                        face_vector BLOB NOT NULL,
                        vector_dim INTEGER NOT NULL,
                        image_url TEXT,
                        created_at TEXT NOT NULL
                    );
                    """
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to initialize database: {exc}") from exc

    def insert(self, record: AttendanceRecord) -> None:
        vector = np.asarray(record.face_vector.values, dtype=np.float32)
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO attendance_records (
                        roll, name, email, confidence_score, status,
                        face_vector, vector_dim, image_url, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.identity.roll,
                        record.identity.name,
                        record.identity.email,
                        record.confidence_score,
                        record.status,
                        vector.tobytes(),
                        vector.size,
                        record.image_url,
                        record.created_at.isoformat(),
                    ),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to store attendance for {record.identity.roll}: {exc}") from exc
        self.logger.info("Attendance row stored locally for %s (%s)", record.identity.roll, record.status)

    def count(self, roll: str | None = None) -> int:
        sql = "SELECT COUNT(*) AS c FROM attendance_records"
        params: tuple = ()
        if roll is not None:
            sql += " WHERE roll = ?"
            params = (roll,)
        try:
            with self._connect() as conn:
                row = conn.execute(sql, params).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to count attendance rows: {exc}") from exc
        return int(row["c"]) if row else 0
