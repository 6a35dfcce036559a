"""
Document store backend (SQLite).

Three logical tables hold JSON documents addressed by a partition key and
an optional sort key:

    users         email
    todos         user_id, todo_id
    shared_lists  list_id

update() writes only the supplied fields; everything else in the stored
document is left as it was.
"""
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import NotFoundError, StoreError

logger = logging.getLogger(__name__)

# table -> (partition key field, sort key field)
TABLES: Dict[str, Tuple[str, Optional[str]]] = {
    "users": ("email", None),
    "todos": ("user_id", "todo_id"),
    "shared_lists": ("list_id", None),
}


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection in WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class DocumentStore:
    """SQLite-backed key/document store."""

    def __init__(self, db_path: str = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "todolist" / "todolist.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create one table per logical table."""
        with _connect(self.db_path) as conn:
            for table in TABLES:
                conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        pk TEXT NOT NULL,
                        sk TEXT NOT NULL DEFAULT '',
                        doc TEXT NOT NULL,  -- JSON document
                        PRIMARY KEY (pk, sk)
                    )
                """)
            conn.commit()

    # ── Key helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _schema(table: str) -> Tuple[str, Optional[str]]:
        if table not in TABLES:
            raise StoreError(f"Unknown table: {table}")
        return TABLES[table]

    def _key_of(self, table: str, item: Dict[str, Any]) -> Tuple[str, str]:
        pk_field, sk_field = self._schema(table)
        pk = item.get(pk_field)
        if not pk:
            raise StoreError(f"{table}: missing partition key '{pk_field}'")
        sk = ""
        if sk_field:
            sk = item.get(sk_field)
            if not sk:
                raise StoreError(f"{table}: missing sort key '{sk_field}'")
        return str(pk), str(sk)

    # ── Operations ───────────────────────────────────────────────────────────

    def put(self, table: str, item: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or replace a whole document."""
        pk, sk = self._key_of(table, item)
        try:
            with _connect(self.db_path) as conn:
                conn.execute(
                    f"INSERT OR REPLACE INTO {table} (pk, sk, doc) VALUES (?, ?, ?)",
                    (pk, sk, json.dumps(item)),
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"put {table} {pk}/{sk} failed: {e}")
            raise StoreError(f"Error saving to {table}: {e}") from e
        return item

    def get(self, table: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Retrieve a document by key, or None."""
        pk, sk = self._key_of(table, key)
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute(
                    f"SELECT doc FROM {table} WHERE pk = ? AND sk = ?",
                    (pk, sk),
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"get {table} {pk}/{sk} failed: {e}")
            raise StoreError(f"Error reading from {table}: {e}") from e
        return json.loads(row["doc"]) if row else None

    def update(self, table: str, key: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Overwrite only the supplied fields of an existing document.

        Returns the full updated document. Raises NotFoundError if the key
        does not exist. Key fields in `fields` are ignored.
        """
        pk, sk = self._key_of(table, key)
        pk_field, sk_field = self._schema(table)
        try:
            with _connect(self.db_path) as conn:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    f"SELECT doc FROM {table} WHERE pk = ? AND sk = ?",
                    (pk, sk),
                ).fetchone()
                if not row:
                    conn.rollback()
                    raise NotFoundError(f"{table}: no item {pk}/{sk}".rstrip("/"))
                doc = json.loads(row["doc"])
                for name, value in fields.items():
                    if name in (pk_field, sk_field):
                        continue
                    doc[name] = value
                conn.execute(
                    f"UPDATE {table} SET doc = ? WHERE pk = ? AND sk = ?",
                    (json.dumps(doc), pk, sk),
                )
                conn.commit()
                return doc
        except sqlite3.Error as e:
            logger.error(f"update {table} {pk}/{sk} failed: {e}")
            raise StoreError(f"Error updating {table}: {e}") from e

    def delete(self, table: str, key: Dict[str, Any]) -> bool:
        """Delete a document. Returns True if something was removed."""
        pk, sk = self._key_of(table, key)
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute(
                    f"DELETE FROM {table} WHERE pk = ? AND sk = ?",
                    (pk, sk),
                )
                conn.commit()
                return cur.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"delete {table} {pk}/{sk} failed: {e}")
            raise StoreError(f"Error deleting from {table}: {e}") from e

    def query(self, table: str, partition: str) -> List[Dict[str, Any]]:
        """All documents in one partition, in sort-key order."""
        self._schema(table)
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    f"SELECT doc FROM {table} WHERE pk = ? ORDER BY sk",
                    (partition,),
                ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"query {table} {partition} failed: {e}")
            raise StoreError(f"Error querying {table}: {e}") from e
        return [json.loads(r["doc"]) for r in rows]

    def scan(self, table: str,
             predicate: Optional[Callable[[Dict[str, Any]], bool]] = None) -> List[Dict[str, Any]]:
        """Read the whole table, optionally filtered. O(table size)."""
        self._schema(table)
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(f"SELECT doc FROM {table}").fetchall()
        except sqlite3.Error as e:
            logger.error(f"scan {table} failed: {e}")
            raise StoreError(f"Error scanning {table}: {e}") from e
        docs = [json.loads(r["doc"]) for r in rows]
        if predicate is not None:
            docs = [d for d in docs if predicate(d)]
        return docs
