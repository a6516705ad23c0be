"""Contract storage for inkwell.

SQLite-backed persistence for contract documents, scoped by
(brand, influencer, campaign). Every write is a compare-and-set on the
document's version so concurrent intents cannot overwrite each other.
"""

import json
import logging
import sqlite3
import threading
import time

from contract import ContractDocument
from protocol import ContractStatus

logger = logging.getLogger(__name__)


class ContractStore:
    """SQLite-backed contract storage with per-document optimistic concurrency."""

    def __init__(self, db_path: str = ":memory:"):
        self.db = sqlite3.connect(db_path, check_same_thread=False)
        self.db.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        # Enable WAL mode for safe concurrent reads during writes
        self.db.execute("PRAGMA journal_mode=WAL")
        self.db.execute("""
            CREATE TABLE IF NOT EXISTS contracts (
                id TEXT PRIMARY KEY,
                brand_id TEXT NOT NULL,
                influencer_id TEXT NOT NULL,
                campaign_id TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'draft',
                document TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 0,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
        """)
        self.db.execute(
            "CREATE INDEX IF NOT EXISTS idx_scope ON contracts(brand_id, influencer_id, campaign_id)"
        )
        self.db.execute(
            "CREATE INDEX IF NOT EXISTS idx_influencer_status ON contracts(influencer_id, status)"
        )
        self.db.commit()

    def create(self, doc: ContractDocument) -> str:
        """Store a new contract. Returns contract ID."""
        with self._lock:
            self._insert(doc)
            self.db.commit()
        return doc.contract_id

    def _insert(self, doc: ContractDocument):
        now = time.time()
        if doc.created_at is None:
            doc.created_at = now
        if doc.updated_at is None:
            doc.updated_at = doc.created_at
        doc.version = 0
        self.db.execute(
            "INSERT INTO contracts (id, brand_id, influencer_id, campaign_id, status, document, version, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)",
            (doc.contract_id, doc.brand_id, doc.influencer_id, doc.campaign_id,
             doc.status.value, self._encode(doc), doc.created_at, doc.updated_at),
        )

    def get(self, contract_id: str) -> ContractDocument | None:
        """Get a contract by ID."""
        row = self.db.execute("SELECT * FROM contracts WHERE id = ?", (contract_id,)).fetchone()
        if not row:
            return None
        return self._row_to_doc(row)

    def load_by_scope(self, brand_id: str, influencer_id: str, campaign_id: str) -> list[ContractDocument]:
        """Every contract for one brand/influencer/campaign, oldest first."""
        rows = self.db.execute(
            "SELECT * FROM contracts WHERE brand_id = ? AND influencer_id = ? AND campaign_id = ? "
            "ORDER BY created_at ASC, rowid ASC",
            (brand_id, influencer_id, campaign_id),
        ).fetchall()
        return [self._row_to_doc(r) for r in rows]

    def save(self, doc: ContractDocument, expected_version: int) -> bool:
        """Write doc if the stored version still equals expected_version.

        Identifiers are never rewritten. On success doc.version is bumped;
        returns False if another write got there first.
        """
        with self._lock:
            cursor = self.db.execute(
                "UPDATE contracts SET status = ?, document = ?, version = version + 1, updated_at = ? "
                "WHERE id = ? AND version = ?",
                (doc.status.value, self._encode(doc), doc.updated_at or time.time(),
                 doc.contract_id, expected_version),
            )
            self.db.commit()
            if cursor.rowcount == 0:
                logger.debug("version conflict on %s (expected %d)", doc.contract_id, expected_version)
                return False
        doc.version = expected_version + 1
        return True

    def supersede(self, old: ContractDocument, expected_version: int,
                  replacement: ContractDocument) -> bool:
        """Atomically save the superseded original and insert its replacement."""
        with self._lock:
            try:
                cursor = self.db.execute(
                    "UPDATE contracts SET status = ?, document = ?, version = version + 1, updated_at = ? "
                    "WHERE id = ? AND version = ?",
                    (old.status.value, self._encode(old), old.updated_at or time.time(),
                     old.contract_id, expected_version),
                )
                if cursor.rowcount == 0:
                    self.db.rollback()
                    return False
                self._insert(replacement)
                self.db.commit()
            except sqlite3.Error:
                self.db.rollback()
                raise
        old.version = expected_version + 1
        return True

    def list_rejected_by_influencer(self, influencer_id: str, page: int = 1,
                                    limit: int = 10) -> tuple[list[ContractDocument], int]:
        """Rejected contracts for an influencer, newest first. Returns (page, total)."""
        status = ContractStatus.REJECTED.value
        total = self.db.execute(
            "SELECT COUNT(*) FROM contracts WHERE influencer_id = ? AND status = ?",
            (influencer_id, status),
        ).fetchone()[0]
        rows = self.db.execute(
            "SELECT * FROM contracts WHERE influencer_id = ? AND status = ? "
            "ORDER BY updated_at DESC, rowid DESC LIMIT ? OFFSET ?",
            (influencer_id, status, limit, (page - 1) * limit),
        ).fetchall()
        return [self._row_to_doc(r) for r in rows], total

    def _encode(self, doc: ContractDocument) -> str:
        d = doc.to_dict(include_flags=False)
        d.pop("version", None)
        return json.dumps(d)

    def _row_to_doc(self, row) -> ContractDocument:
        doc = ContractDocument.from_dict(json.loads(row["document"]))
        doc.version = row["version"]
        return doc

    def close(self):
        self.db.close()
