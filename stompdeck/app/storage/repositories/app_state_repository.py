from __future__ import annotations

import json

from pydantic import JsonValue

from stompdeck.app.storage.db import AppStateEntry, utcnow


class AppStateRepository:
    """Key-value access to the ``app_state`` table; values round-trip through JSON."""

    def __init__(self, db_session_factory):
        self._db_session_factory = db_session_factory

    def get_value(self, key: str) -> JsonValue | None:
        with self._db_session_factory() as db:
            entry = db.get(AppStateEntry, key)
            if entry is None:
                return None
            try:
                return json.loads(entry.value_json)
            except json.JSONDecodeError:
                return None

    def set_value(self, key: str, value: JsonValue) -> None:
        with self._db_session_factory() as db:
            entry = db.get(AppStateEntry, key)
            if entry is None:
                entry = AppStateEntry(key=key)
                db.add(entry)
            entry.value_json = json.dumps(value)
            entry.updated_at = utcnow()

