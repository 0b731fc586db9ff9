from __future__ import annotations

import os
import sqlite3
from datetime import datetime
from typing import Optional

from tablecrm_pos.config import settings
from tablecrm_pos.constants import TOKEN_STORAGE_KEY


def _connect(db_path: Optional[str] = None) -> sqlite3.Connection:
    path = db_path or settings.db_path
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Optional[str] = None) -> None:
    conn = _connect(db_path)
    try:
        with open(os.path.join(os.path.dirname(__file__), "schema.sql"), "r", encoding="utf-8") as f:
            conn.executescript(f.read())
        conn.commit()
    finally:
        conn.close()


def storage_get(key: str, db_path: Optional[str] = None) -> Optional[str]:
    conn = _connect(db_path)
    try:
        row = conn.execute("SELECT value FROM local_storage WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None
    finally:
        conn.close()


def storage_set(key: str, value: str, db_path: Optional[str] = None) -> None:
    updated_at = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    conn = _connect(db_path)
    try:
        conn.execute(
            "INSERT INTO local_storage(key, value, updated_at) VALUES(?,?,?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
            (key, value, updated_at),
        )
        conn.commit()
    finally:
        conn.close()


class TokenStore:
    """Аналог localStorage браузера: один токен кассы под одним ключом."""

    def __init__(self, key: str = TOKEN_STORAGE_KEY, db_path: Optional[str] = None) -> None:
        self.key = key
        self.db_path = db_path
        init_db(db_path)

    def load(self) -> Optional[str]:
        return storage_get(self.key, self.db_path)

    def save(self, token: str) -> None:
        storage_set(self.key, token, self.db_path)
