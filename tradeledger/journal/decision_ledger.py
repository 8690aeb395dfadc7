"""
Decision Ledger — SQLite-backed append-only record store
========================================================

One ledger per strategy, one database file per ledger. Every cycle appends
exactly one DecisionRecord; nothing is ever updated or deleted.

Table:
  decisions — cycle_number (PK, strictly increasing), indexed columns for
              cheap scans, and the full record as self-contained JSON in 'data'

Readers use their own thread-local connection in WAL mode, so they never
block the trading loop's append and always see whole committed rows.
Multi-query reads pin the last cycle from bounds() and filter on it, which
gives them a stable snapshot because committed rows never change.
"""

from __future__ import annotations
import json
import os
import sqlite3
import threading
from typing import Iterator, List, Optional, Tuple

from tradeledger.journal.decision_models import DecisionRecord
from tradeledger.utils.config import get_settings
from tradeledger.utils.exceptions import OrderingError, StorageError
from tradeledger.utils.logger import get_logger

logger = get_logger(__name__)

_VALID_SYNC = {"OFF", "NORMAL", "FULL", "EXTRA"}


class DecisionLedger:
    """
    Durable per-strategy decision log.
    Single writer (the strategy's trading loop), any number of readers.
    """

    def __init__(self, db_path: str, strategy_id: str = ""):
        settings = get_settings()
        self._db_path = db_path
        self._strategy_id = strategy_id
        self._timeout = settings.sqlite_timeout
        self._synchronous = settings.sqlite_synchronous.upper()
        if self._synchronous not in _VALID_SYNC:
            self._synchronous = "FULL"
        self._max_read_limit = settings.max_read_limit
        self._batch_size = max(1, settings.scan_batch_size)

        self._local = threading.local()
        self._write_lock = threading.Lock()
        self._conns: List[sqlite3.Connection] = []
        self._conns_lock = threading.Lock()
        self._closed = False

        try:
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
            self._init_db()
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Cannot open ledger at {db_path}: {e}", strategy_id) from e
        logger.info("ledger_opened", strategy=strategy_id, path=db_path, records=self.count())

    @property
    def strategy_id(self) -> str:
        return self._strategy_id

    @property
    def db_path(self) -> str:
        return self._db_path

    # ─── CONNECTIONS ────────────────────────────────────────────

    def _get_conn(self) -> sqlite3.Connection:
        if self._closed:
            raise StorageError("Ledger is closed", self._strategy_id)
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                conn = sqlite3.connect(self._db_path, timeout=self._timeout,
                                       isolation_level=None, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute(f"PRAGMA synchronous={self._synchronous}")
            except sqlite3.Error as e:
                raise StorageError(f"Cannot connect to ledger: {e}", self._strategy_id) from e
            self._local.conn = conn
            with self._conns_lock:
                self._conns.append(conn)
        return conn

    def _init_db(self):
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS decisions (
                cycle_number    INTEGER PRIMARY KEY,
                timestamp       TEXT NOT NULL,
                total_equity    REAL DEFAULT 0,
                position_count  INTEGER DEFAULT 0,
                success         INTEGER DEFAULT 1,
                data            TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_dec_timestamp ON decisions(timestamp);
        """)

    def close(self) -> None:
        """Close every connection opened by any thread."""
        with self._conns_lock:
            self._closed = True
            for conn in self._conns:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning("ledger_close_failed", strategy=self._strategy_id, error=str(e))
            self._conns.clear()
        logger.info("ledger_closed", strategy=self._strategy_id)

    # ─── APPEND ─────────────────────────────────────────────────

    def append(self, record: DecisionRecord) -> None:
        """
        Durably append one record.

        Raises OrderingError if cycle_number does not advance, StorageError if
        the write cannot be committed. In both cases nothing is written.
        """
        payload = json.dumps(record.to_dict(), separators=(",", ":"))
        with self._write_lock:
            conn = self._get_conn()
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Cannot start append transaction: {e}", self._strategy_id) from e
            try:
                row = conn.execute("SELECT MAX(cycle_number) AS last FROM decisions").fetchone()
                last = row["last"]
                if last is not None and record.cycle_number <= last:
                    conn.execute("ROLLBACK")
                    logger.error("ordering_violation", strategy=self._strategy_id,
                                 last_cycle=last, attempted_cycle=record.cycle_number)
                    raise OrderingError(
                        f"cycle_number {record.cycle_number} does not follow last cycle {last}",
                        strategy_id=self._strategy_id, last_cycle=last,
                        attempted_cycle=record.cycle_number,
                    )
                conn.execute(
                    "INSERT INTO decisions (cycle_number, timestamp, total_equity, position_count, success, data) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        record.cycle_number,
                        record.timestamp.isoformat(),
                        record.account_state.total_equity,
                        record.account_state.position_count,
                        1 if record.success else 0,
                        payload,
                    ),
                )
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                logger.error("append_failed", strategy=self._strategy_id,
                             cycle=record.cycle_number, error=str(e))
                raise StorageError(f"Append of cycle {record.cycle_number} failed: {e}",
                                   self._strategy_id) from e

        logger.debug("decision_appended", strategy=self._strategy_id, cycle=record.cycle_number,
                     equity=record.account_state.total_equity)

    def _rollback(self, conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.error("rollback_failed", strategy=self._strategy_id, error=str(e))

    # ─── READS ──────────────────────────────────────────────────

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            return self._get_conn().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Ledger read failed: {e}", self._strategy_id) from e

    def _decode(self, row: sqlite3.Row) -> DecisionRecord:
        try:
            return DecisionRecord.from_dict(json.loads(row["data"]))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise StorageError(f"Corrupt ledger entry: {e}", self._strategy_id) from e

    def latest(self, n: int) -> List[DecisionRecord]:
        """Up to n most recent records, oldest first."""
        if n <= 0:
            return []
        if n > self._max_read_limit:
            logger.warning("read_limit_capped", strategy=self._strategy_id,
                           requested=n, limit=self._max_read_limit)
            n = self._max_read_limit
        rows = self._query(
            "SELECT data FROM decisions ORDER BY cycle_number DESC LIMIT ?", (n,)
        )
        records = [self._decode(r) for r in rows]
        records.reverse()
        return records

    def iter_records(self, after_cycle: Optional[int] = None,
                     upto_cycle: Optional[int] = None,
                     batch_size: Optional[int] = None) -> Iterator[DecisionRecord]:
        """Stream records in ascending cycle order without materializing the ledger."""
        conditions, params = [], []
        if after_cycle is not None:
            conditions.append("cycle_number > ?"); params.append(after_cycle)
        if upto_cycle is not None:
            conditions.append("cycle_number <= ?"); params.append(upto_cycle)
        where = " AND ".join(conditions) if conditions else "1=1"
        size = batch_size or self._batch_size

        try:
            cursor = self._get_conn().execute(
                f"SELECT data FROM decisions WHERE {where} ORDER BY cycle_number ASC", params
            )
        except sqlite3.Error as e:
            raise StorageError(f"Ledger scan failed: {e}", self._strategy_id) from e
        try:
            while True:
                try:
                    rows = cursor.fetchmany(size)
                except sqlite3.Error as e:
                    raise StorageError(f"Ledger scan failed: {e}", self._strategy_id) from e
                if not rows:
                    break
                for row in rows:
                    yield self._decode(row)
        finally:
            cursor.close()

    def all(self, upto_cycle: Optional[int] = None) -> Iterator[DecisionRecord]:
        return self.iter_records(upto_cycle=upto_cycle)

    def bounds(self) -> Tuple[int, Optional[int], Optional[int]]:
        """(count, first_cycle, last_cycle) read in one statement."""
        row = self._query(
            "SELECT COUNT(*) AS cnt, MIN(cycle_number) AS first, MAX(cycle_number) AS last FROM decisions"
        )[0]
        return row["cnt"], row["first"], row["last"]

    def count(self) -> int:
        return self.bounds()[0]

    def last_cycle_number(self) -> Optional[int]:
        return self.bounds()[2]

    def cycle_at_offset_from_end(self, k: int, upto_cycle: Optional[int] = None) -> Optional[int]:
        """Cycle number of the k-th most recent record (k=1 is the newest)."""
        if k < 1:
            return None
        if upto_cycle is None:
            rows = self._query(
                "SELECT cycle_number FROM decisions ORDER BY cycle_number DESC LIMIT 1 OFFSET ?", (k - 1,)
            )
        else:
            rows = self._query(
                "SELECT cycle_number FROM decisions WHERE cycle_number <= ? "
                "ORDER BY cycle_number DESC LIMIT 1 OFFSET ?", (upto_cycle, k - 1)
            )
        return rows[0]["cycle_number"] if rows else None

    def get_db_stats(self) -> dict:
        count, first, last = self.bounds()
        size = os.path.getsize(self._db_path) if os.path.exists(self._db_path) else 0
        return {
            "strategy_id": self._strategy_id,
            "db_path": self._db_path,
            "records": count,
            "first_cycle": first,
            "last_cycle": last,
            "next_cycle": 1 if last is None else last + 1,
            "db_size_kb": round(size / 1024, 1),
        }
