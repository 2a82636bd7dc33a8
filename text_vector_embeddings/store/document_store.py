"""SQLite-backed document store with embedding similarity search."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone

from loguru import logger

from text_vector_embeddings.config import bot_settings
from text_vector_embeddings.models import (
    Document,
    DocumentType,
    EmbeddingStatus,
    SearchWeights,
    SimilarityCandidate,
)
from text_vector_embeddings.similarity.scoring import rank_candidates


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class DocumentStore:
    """Single-table store for issues, comments, pull requests and reviews.

    Every write touches one row keyed by document id. Embedding value and
    status are always written together.
    """

    def __init__(self, db_path: str = ":memory:", embedding_dimension: int = 0):
        self.db_path = db_path
        self.embedding_dimension = embedding_dimension or bot_settings.embedding_dimension
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                doc_type TEXT NOT NULL,
                markdown TEXT,
                author_id INTEGER NOT NULL DEFAULT -1,
                parent_id TEXT,
                payload_json TEXT,
                embedding_json TEXT,
                embedding_status TEXT NOT NULL DEFAULT 'pending',
                created_at TEXT NOT NULL,
                modified_at TEXT NOT NULL,
                deleted_at TEXT
            )
        """)
        self._conn.commit()

    def _row_to_document(self, row: sqlite3.Row) -> Document:
        return Document(
            id=row["id"],
            kind=DocumentType(row["doc_type"]),
            markdown=row["markdown"],
            author_id=row["author_id"],
            parent_id=row["parent_id"],
            payload=json.loads(row["payload_json"]) if row["payload_json"] else None,
            embedding=json.loads(row["embedding_json"]) if row["embedding_json"] else None,
            embedding_status=EmbeddingStatus(row["embedding_status"]),
            created_at=_parse(row["created_at"]),
            modified_at=_parse(row["modified_at"]),
            deleted_at=_parse(row["deleted_at"]),
        )

    def _check_dimension(self, embedding: list[float]) -> None:
        if len(embedding) != self.embedding_dimension:
            raise ValueError(
                f"Embedding has {len(embedding)} dimensions, expected {self.embedding_dimension}"
            )

    def _row_values(self, document: Document) -> tuple:
        if document.embedding_status == EmbeddingStatus.READY:
            if not document.embedding:
                raise ValueError(f"Document {document.id} is ready but has no embedding")
            self._check_dimension(document.embedding)
        return (
            document.kind.value,
            document.markdown,
            document.author_id,
            document.parent_id,
            json.dumps(document.payload) if document.payload is not None else None,
            json.dumps(document.embedding) if document.embedding else None,
            document.embedding_status.value,
        )

    def get_document(self, document_id: str) -> Document | None:
        """Get a document by id (soft-deleted rows included), or None."""
        row = self._conn.execute("SELECT * FROM documents WHERE id=?", (document_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_document(row)

    def create_document(self, document: Document) -> bool:
        """Insert a new document. Returns False if the id already exists."""
        if self.get_document(document.id) is not None:
            logger.debug("Document {} already exists", document.id)
            return False
        now = _now()
        created_at = document.created_at.isoformat() if document.created_at else now
        self._conn.execute(
            """INSERT INTO documents (doc_type, markdown, author_id, parent_id, payload_json,
                   embedding_json, embedding_status, id, created_at, modified_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (*self._row_values(document), document.id, created_at, now),
        )
        self._conn.commit()
        return True

    def upsert_document(self, document: Document) -> None:
        """Create the document, or overwrite its content if it exists."""
        if self.create_document(document):
            return
        self._conn.execute(
            """UPDATE documents SET doc_type=?, markdown=?, author_id=?, parent_id=?, payload_json=?,
                   embedding_json=?, embedding_status=?, modified_at=?
               WHERE id=?""",
            (*self._row_values(document), _now(), document.id),
        )
        self._conn.commit()

    def update_embedding(self, document_id: str, embedding: list[float]) -> bool:
        """Write an embedding and mark it ready. Returns False if the row is missing."""
        self._check_dimension(embedding)
        cursor = self._conn.execute(
            "UPDATE documents SET embedding_json=?, embedding_status=?, modified_at=? WHERE id=?",
            (json.dumps(embedding), EmbeddingStatus.READY.value, _now(), document_id),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def mark_embedding_failed(self, document_id: str) -> bool:
        cursor = self._conn.execute(
            "UPDATE documents SET embedding_json=NULL, embedding_status=?, modified_at=? WHERE id=?",
            (EmbeddingStatus.FAILED.value, _now(), document_id),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def clear_markdown(self, document_id: str) -> bool:
        """Drop the markdown of a document that must never be embedded."""
        cursor = self._conn.execute(
            "UPDATE documents SET markdown=NULL, embedding_json=NULL, embedding_status=?, modified_at=? WHERE id=?",
            (EmbeddingStatus.FAILED.value, _now(), document_id),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def soft_delete(self, document_id: str) -> bool:
        now = _now()
        cursor = self._conn.execute(
            "UPDATE documents SET deleted_at=?, modified_at=? WHERE id=? AND deleted_at IS NULL",
            (now, now, document_id),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def list_pending(self, doc_types: tuple[DocumentType, ...] | list[DocumentType], limit: int) -> list[Document]:
        """Live documents with markdown but no embedding, oldest modification first."""
        if not doc_types:
            return []
        placeholders = ",".join("?" for _ in doc_types)
        rows = self._conn.execute(
            f"""SELECT * FROM documents
                WHERE doc_type IN ({placeholders})
                  AND embedding_json IS NULL AND deleted_at IS NULL AND markdown IS NOT NULL
                ORDER BY modified_at ASC, rowid ASC
                LIMIT ?""",
            (*(t.value for t in doc_types), limit),
        ).fetchall()
        return [self._row_to_document(row) for row in rows]

    def search(
        self,
        query_embedding: list[float],
        threshold: float,
        top_k: int,
        doc_types: tuple[DocumentType, ...] | list[DocumentType],
        weights: SearchWeights,
        exclude_id: str | None = None,
    ) -> list[SimilarityCandidate]:
        """Nearest neighbours among live, embedded documents of the given types."""
        if not doc_types:
            return []
        placeholders = ",".join("?" for _ in doc_types)
        rows = self._conn.execute(
            f"""SELECT id, embedding_json FROM documents
                WHERE doc_type IN ({placeholders})
                  AND embedding_json IS NOT NULL AND deleted_at IS NULL""",
            tuple(t.value for t in doc_types),
        ).fetchall()

        ids: list[str] = []
        embeddings: list[list[float]] = []
        for row in rows:
            embedding = json.loads(row["embedding_json"])
            if len(embedding) != len(query_embedding):
                continue
            ids.append(row["id"])
            embeddings.append(embedding)

        return rank_candidates(
            query_embedding, ids, embeddings,
            threshold=threshold, top_k=top_k, weights=weights, exclude_id=exclude_id,
        )

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
