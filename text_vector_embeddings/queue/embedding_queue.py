"""Deferred embedding queue with delayed scheduling and rate-limit backoff.

Jobs live in a SQLite table keyed by (run_at, suffix) and are consumed at
most once: each job is deleted before it is processed. A single scheduled
runner is assumed; there is no leasing.
"""

from __future__ import annotations

import sqlite3
import time
import uuid
from typing import NamedTuple

from loguru import logger

from text_vector_embeddings.config import BotSettings
from text_vector_embeddings.embeddings.providers import is_rate_limit_error
from text_vector_embeddings.models import QueueJob, QueueRunResult, QueueTable
from text_vector_embeddings.store.document_store import DocumentStore
from text_vector_embeddings.text.markdown import clean_markdown, markdown_to_plaintext


def now_ms() -> int:
    return int(time.time() * 1000)


class QueueEntry(NamedTuple):
    key: tuple[int, str]
    job: QueueJob


class EmbeddingQueue:
    """Delay queue ordered by run time."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS embedding_queue (
                run_at INTEGER NOT NULL,
                suffix TEXT NOT NULL,
                table_name TEXT NOT NULL,
                document_id TEXT NOT NULL,
                attempt INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (run_at, suffix)
            )
        """)
        self._conn.commit()

    def enqueue(self, job: QueueJob, delay_ms: int = 0, now: int | None = None) -> QueueJob:
        """Schedule `job` to run `delay_ms` from now. Returns the job with its run time."""
        run_at = (now if now is not None else now_ms()) + max(0, delay_ms)
        scheduled = job.model_copy(update={"run_at": run_at, "attempt": max(0, job.attempt)})
        self._conn.execute(
            "INSERT INTO embedding_queue (run_at, suffix, table_name, document_id, attempt) VALUES (?, ?, ?, ?, ?)",
            (run_at, uuid.uuid4().hex, scheduled.table.value, scheduled.document_id, scheduled.attempt),
        )
        self._conn.commit()
        return scheduled

    def list_ready(self, limit: int, now: int | None = None) -> list[QueueEntry]:
        """Jobs due at `now`, earliest first, at most `limit`."""
        rows = self._conn.execute(
            "SELECT * FROM embedding_queue WHERE run_at <= ? ORDER BY run_at ASC, suffix ASC LIMIT ?",
            (now if now is not None else now_ms(), limit),
        ).fetchall()
        return [
            QueueEntry(
                key=(row["run_at"], row["suffix"]),
                job=QueueJob(
                    table=QueueTable(row["table_name"]),
                    document_id=row["document_id"],
                    attempt=row["attempt"],
                    run_at=row["run_at"],
                ),
            )
            for row in rows
        ]

    def has_ready(self, now: int | None = None) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM embedding_queue WHERE run_at <= ? LIMIT 1",
            (now if now is not None else now_ms(),),
        ).fetchone()
        return row is not None

    def delete(self, key: tuple[int, str]) -> None:
        self._conn.execute("DELETE FROM embedding_queue WHERE run_at=? AND suffix=?", key)
        self._conn.commit()

    def list_all(self) -> list[QueueJob]:
        rows = self._conn.execute("SELECT * FROM embedding_queue ORDER BY run_at ASC, suffix ASC").fetchall()
        return [
            QueueJob(
                table=QueueTable(row["table_name"]),
                document_id=row["document_id"],
                attempt=row["attempt"],
                run_at=row["run_at"],
            )
            for row in rows
        ]

    def __len__(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM embedding_queue").fetchone()[0]

    def close(self) -> None:
        self._conn.close()


def should_defer_embedding(settings: BotSettings, is_private: bool) -> bool:
    """Async mode defers public documents. Private documents are never embedded."""
    return settings.embedding_mode == "async" and not is_private


def enqueue_embedding(queue: EmbeddingQueue, job: QueueJob, delay_ms: int = 0, now: int | None = None) -> QueueJob:
    logger.debug("Queueing embedding for {} {} (attempt {})", job.table.value, job.document_id, job.attempt)
    return queue.enqueue(job, delay_ms=delay_ms, now=now)


def embedding_source(markdown: str | None) -> str | None:
    """Cleaned markdown, else a plaintext rendering, else None."""
    cleaned = clean_markdown(markdown)
    if cleaned:
        return cleaned
    return markdown_to_plaintext(markdown) or None


def retry_delay_ms(base_delay_seconds: int, attempt: int) -> int:
    return base_delay_seconds * 1000 * 2 ** max(0, attempt)


async def process_embedding_queue(
    settings: BotSettings,
    store: DocumentStore,
    queue: EmbeddingQueue,
    embedder,
    max_per_run: int | None = None,
    now: int | None = None,
) -> QueueRunResult:
    """Run one queue tick.

    Each due job is removed before it runs. Rate-limited jobs are scheduled
    again with exponential delay until `embedding_queue_max_attempts`; any
    other failure, or running out of attempts, marks the document failed.
    """
    limit = max(1, max_per_run if max_per_run is not None else settings.embedding_queue_max_per_run)
    base_delay = max(5, settings.embedding_queue_delay_seconds)
    max_attempts = max(1, settings.embedding_queue_max_attempts)
    tick = now if now is not None else now_ms()

    result = QueueRunResult()
    entries = queue.list_ready(limit, now=tick)
    if not entries:
        return result

    for entry in entries:
        queue.delete(entry.key)
        job = entry.job
        try:
            document = store.get_document(job.document_id)
            if document is None:
                logger.warning("Queued document {} no longer exists", job.document_id)
                result.skipped += 1
                continue
            if document.is_deleted or document.has_embedding:
                result.skipped += 1
                continue

            source = embedding_source(document.markdown)
            if not source:
                logger.info("No embedding source for {}; marking failed", job.document_id)
                store.mark_embedding_failed(job.document_id)
                result.failed += 1
                continue

            embedding = await embedder.embed(source)
            store.update_embedding(job.document_id, embedding)
            result.processed += 1
        except Exception as e:
            if is_rate_limit_error(e) and job.attempt < max_attempts:
                delay = retry_delay_ms(base_delay, job.attempt)
                logger.warning(
                    "Rate limited embedding {}; retrying in {}s (attempt {})",
                    job.document_id, delay // 1000, job.attempt + 1,
                )
                enqueue_embedding(queue, job.model_copy(update={"attempt": job.attempt + 1}), delay_ms=delay, now=tick)
                result.retried += 1
                continue
            logger.error("Embedding job failed for {} {}: {}", job.table.value, job.document_id, e)
            store.mark_embedding_failed(job.document_id)
            result.failed += 1

    result.stopped_early = len(entries) >= limit and queue.has_ready(now=tick)
    return result
