import os
import copy
import uuid
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import psycopg2
from psycopg2.extras import Json
from psycopg2.pool import SimpleConnectionPool

from . import reward_config as config
from .errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

DocKey = Tuple[str, str]


class VersionConflict(Exception):
    """A document changed between the transaction's read and its commit."""


class Transaction:
    """
    Buffers reads and writes for one attempt of DocumentStore.run_transaction.

    Every document read records the version that was seen (0 for a missing
    document). Nothing is written until the store commits, and the commit only
    succeeds if all of those versions are still current.
    """

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self.reads: Dict[DocKey, int] = {}
        self.writes: Dict[DocKey, dict] = {}
        self.appends: List[Tuple[str, str, dict]] = []

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        key = (collection, doc_id)
        if key in self.writes:
            return copy.deepcopy(self.writes[key])
        data, version = self._store._read(collection, doc_id)
        self.reads.setdefault(key, version)
        return data

    def set(self, collection: str, doc_id: str, data: dict):
        self.writes[(collection, doc_id)] = copy.deepcopy(data)

    def update(self, collection: str, doc_id: str, fields: dict):
        current = self.get(collection, doc_id)
        if current is None:
            raise NotFoundError(f"{collection}/{doc_id} does not exist")
        current.update(copy.deepcopy(fields))
        self.writes[(collection, doc_id)] = current

    def add(self, collection: str, data: dict) -> str:
        doc_id = uuid.uuid4().hex
        self.appends.append((collection, doc_id, copy.deepcopy(data)))
        return doc_id


class DocumentStore:
    """Point reads, appends, equality queries and optimistic transactions."""

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        data, _ = self._read(collection, doc_id)
        return data

    def run_transaction(self, fn: Callable[[Transaction], Any], max_attempts: Optional[int] = None) -> Any:
        """
        Runs fn(txn) and commits its buffered writes atomically.

        On a version conflict the whole callback is re-run against fresh data.
        Exceptions raised by fn abort the attempt without writing anything.
        """
        attempts = max_attempts or config.MAX_TRANSACTION_ATTEMPTS
        for attempt in range(attempts):
            txn = Transaction(self)
            result = fn(txn)
            try:
                self._commit(txn)
                return result
            except VersionConflict as e:
                logger.info("DocumentStore: conflict on attempt %d/%d (%s). Retrying...", attempt + 1, attempts, e)
        raise ConflictError(f"Transaction aborted after {attempts} conflicting attempts")

    def add(self, collection: str, data: dict) -> str:
        raise NotImplementedError

    def query(
        self,
        collection: str,
        where: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        start_after: Optional[str] = None,
    ) -> List[Tuple[str, dict]]:
        """
        Returns (doc_id, data) pairs whose fields equal every item in `where`.

        Without `order_by` results come in doc_id order and `start_after` pages
        past the given doc_id.
        """
        raise NotImplementedError

    def close(self):
        pass

    def _read(self, collection: str, doc_id: str) -> Tuple[Optional[dict], int]:
        raise NotImplementedError

    def _commit(self, txn: Transaction):
        raise NotImplementedError


class InMemoryDocumentStore(DocumentStore):
    def __init__(self):
        self._collections: Dict[str, Dict[str, Tuple[dict, int]]] = {}
        self._lock = threading.RLock()

    def _read(self, collection, doc_id):
        with self._lock:
            entry = self._collections.get(collection, {}).get(doc_id)
            if entry is None:
                return None, 0
            data, version = entry
            return copy.deepcopy(data), version

    def _commit(self, txn):
        with self._lock:
            for (collection, doc_id), seen_version in txn.reads.items():
                entry = self._collections.get(collection, {}).get(doc_id)
                current_version = entry[1] if entry else 0
                if current_version != seen_version:
                    raise VersionConflict(f"{collection}/{doc_id} v{seen_version} -> v{current_version}")

            for (collection, doc_id), data in txn.writes.items():
                docs = self._collections.setdefault(collection, {})
                entry = docs.get(doc_id)
                docs[doc_id] = (copy.deepcopy(data), (entry[1] if entry else 0) + 1)

            for collection, doc_id, data in txn.appends:
                self._collections.setdefault(collection, {})[doc_id] = (copy.deepcopy(data), 1)

    def add(self, collection, data):
        doc_id = uuid.uuid4().hex
        with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = (copy.deepcopy(data), 1)
        return doc_id

    def query(self, collection, where=None, order_by=None, descending=False, limit=None, start_after=None):
        with self._lock:
            items = [(doc_id, copy.deepcopy(data)) for doc_id, (data, _) in self._collections.get(collection, {}).items()]

        if where:
            items = [(doc_id, data) for doc_id, data in items
                     if all(data.get(field) == value for field, value in where.items())]

        if order_by:
            items.sort(key=lambda item: (item[1].get(order_by) is None, item[1].get(order_by)), reverse=descending)
        else:
            items.sort(key=lambda item: item[0])
            if start_after is not None:
                items = [item for item in items if item[0] > start_after]

        if limit is not None:
            items = items[:limit]
        return items


class PostgresDocumentStore(DocumentStore):
    """
    Documents stored as JSONB rows keyed by (collection, doc_id) with an
    integer version column used for compare-and-set commits.
    """

    def __init__(self):
        db_host = os.getenv("POSTGRES_HOST", "localhost")
        try:
            self.db_pool = SimpleConnectionPool(
                minconn=1, maxconn=10,
                dbname=os.getenv("POSTGRES_DB", "vibe_rewards"),
                user=os.getenv("POSTGRES_USER", "vibe_user"),
                password=os.getenv("POSTGRES_PASSWORD", "vibe_password"),
                host=db_host,
                port=os.getenv("POSTGRES_PORT", "5432")
            )
            logger.info("PostgresDocumentStore: DB connection pool created for %s.", db_host)
        except psycopg2.OperationalError as e:
            logger.critical("FATAL: PostgresDocumentStore could not connect to PostgreSQL. Details: %s", e)
            raise

    def _get_conn(self):
        """Gets a connection from the pool."""
        return self.db_pool.getconn()

    def _put_conn(self, conn):
        """Returns a connection to the pool."""
        self.db_pool.putconn(conn)

    def initialize_database(self):
        """Creates the documents table and its indexes if they are missing."""
        conn = self._get_conn()
        try:
            with conn.cursor() as cur:
                logger.info("Ensuring 'documents' table exists...")
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS documents (
                        collection VARCHAR(64) NOT NULL,
                        doc_id VARCHAR(255) NOT NULL,
                        data JSONB NOT NULL,
                        version INTEGER NOT NULL DEFAULT 1,
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                        PRIMARY KEY (collection, doc_id)
                    );
                """)
                cur.execute("CREATE INDEX IF NOT EXISTS documents_data_idx ON documents USING GIN (data jsonb_path_ops);")
            conn.commit()
            logger.info("Database schema is up-to-date.")
        except Exception as e:
            logger.error("DATABASE INITIALIZATION ERROR: %s", e)
            conn.rollback()
            raise
        finally:
            self._put_conn(conn)

    def _read(self, collection, doc_id):
        conn = self._get_conn()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT data, version FROM documents WHERE collection = %s AND doc_id = %s;",
                    (collection, doc_id)
                )
                row = cur.fetchone()
            conn.commit()
            if not row:
                return None, 0
            return row[0], row[1]
        finally:
            self._put_conn(conn)

    def _commit(self, txn):
        conn = self._get_conn()
        try:
            with conn.cursor() as cur:
                for key, seen_version in txn.reads.items():
                    if key in txn.writes:
                        continue
                    cur.execute(
                        "SELECT version FROM documents WHERE collection = %s AND doc_id = %s FOR SHARE;",
                        key
                    )
                    row = cur.fetchone()
                    if (row[0] if row else 0) != seen_version:
                        raise VersionConflict(f"{key[0]}/{key[1]} changed since read")

                for (collection, doc_id), data in txn.writes.items():
                    if (collection, doc_id) not in txn.reads:
                        cur.execute("""
                            INSERT INTO documents (collection, doc_id, data, version) VALUES (%s, %s, %s, 1)
                            ON CONFLICT (collection, doc_id)
                            DO UPDATE SET data = EXCLUDED.data, version = documents.version + 1, updated_at = NOW();
                        """, (collection, doc_id, Json(data)))
                        continue

                    seen_version = txn.reads[(collection, doc_id)]
                    if seen_version == 0:
                        cur.execute("""
                            INSERT INTO documents (collection, doc_id, data, version) VALUES (%s, %s, %s, 1)
                            ON CONFLICT (collection, doc_id) DO NOTHING;
                        """, (collection, doc_id, Json(data)))
                    else:
                        cur.execute("""
                            UPDATE documents SET data = %s, version = version + 1, updated_at = NOW()
                            WHERE collection = %s AND doc_id = %s AND version = %s;
                        """, (Json(data), collection, doc_id, seen_version))
                    if cur.rowcount != 1:
                        raise VersionConflict(f"{collection}/{doc_id} changed since v{seen_version}")

                for collection, doc_id, data in txn.appends:
                    cur.execute(
                        "INSERT INTO documents (collection, doc_id, data, version) VALUES (%s, %s, %s, 1);",
                        (collection, doc_id, Json(data))
                    )
            conn.commit()
        except VersionConflict:
            conn.rollback()
            raise
        except psycopg2.Error as e:
            logger.error("DATABASE ERROR in _commit: %s", e)
            conn.rollback()
            raise
        finally:
            self._put_conn(conn)

    def add(self, collection, data):
        doc_id = uuid.uuid4().hex
        conn = self._get_conn()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    "INSERT INTO documents (collection, doc_id, data, version) VALUES (%s, %s, %s, 1);",
                    (collection, doc_id, Json(data))
                )
            conn.commit()
            return doc_id
        except psycopg2.Error:
            conn.rollback()
            raise
        finally:
            self._put_conn(conn)

    def query(self, collection, where=None, order_by=None, descending=False, limit=None, start_after=None):
        # order_by sorts on the field's text form; only used for ISO timestamps
        sql = "SELECT doc_id, data FROM documents WHERE collection = %s"
        params: list = [collection]
        if where:
            sql += " AND data @> %s"
            params.append(Json(where))
        if order_by:
            sql += f" ORDER BY data->>%s {'DESC' if descending else 'ASC'}"
            params.append(order_by)
        else:
            if start_after is not None:
                sql += " AND doc_id > %s"
                params.append(start_after)
            sql += " ORDER BY doc_id"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)

        conn = self._get_conn()
        try:
            with conn.cursor() as cur:
                cur.execute(sql + ";", params)
                rows = cur.fetchall()
            conn.commit()
            return [(doc_id, data) for doc_id, data in rows]
        finally:
            self._put_conn(conn)

    def close(self):
        if self.db_pool:
            self.db_pool.closeall()
            logger.info("PostgresDocumentStore: DB connection pool closed.")


def create_document_store(initialize: bool = False) -> DocumentStore:
    """Builds the store selected by VIBE_STORE_BACKEND (postgres or memory).

    Only the API process passes initialize=True to create the schema.
    """
    backend = os.getenv("VIBE_STORE_BACKEND", "postgres").lower()
    if backend == "memory":
        logger.warning("Using the in-memory document store; data will not survive a restart.")
        return InMemoryDocumentStore()
    store = PostgresDocumentStore()
    if initialize:
        store.initialize_database()
    return store
