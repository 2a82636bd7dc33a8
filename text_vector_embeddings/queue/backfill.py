"""Scheduled scan that fills in embeddings for documents stored without one."""

from __future__ import annotations

import asyncio
from typing import NamedTuple

from loguru import logger

from text_vector_embeddings.config import BotSettings
from text_vector_embeddings.embeddings.providers import is_rate_limit_error
from text_vector_embeddings.github.ingest import author_kind_from_payload, is_review_thread_root
from text_vector_embeddings.models import (
    AuthorKind,
    BackfillResult,
    COMMENT_DOCUMENT_TYPES,
    Document,
    DocumentType,
    ISSUE_DOCUMENT_TYPES,
)
from text_vector_embeddings.store.document_store import DocumentStore
from text_vector_embeddings.text.markdown import clean_markdown, is_command_like_content, is_too_short


class PassResult(NamedTuple):
    processed: int
    stopped_early: bool


async def _sleep_ms(delay_ms: int) -> None:
    if delay_ms > 0:
        await asyncio.sleep(delay_ms / 1000)


async def embed_with_retry(embedder, text: str, max_retries: int, delay_ms: int) -> list[float] | None:
    """Embed `text`, retrying rate limits in place. None once retries run out."""
    attempt = 0
    while attempt <= max_retries:
        try:
            return await embedder.embed(text)
        except Exception as e:
            if not is_rate_limit_error(e):
                raise
            logger.warning("Embedding rate limit hit (attempt {})", attempt + 1)
            if attempt >= max_retries:
                return None
            await _sleep_ms(delay_ms)
            attempt += 1
    return None


def _skip_reason(document: Document, cleaned: str, settings: BotSettings) -> str | None:
    author_kind = author_kind_from_payload(document.payload, document.kind)
    if author_kind is AuthorKind.BOT:
        if not (document.kind == DocumentType.REVIEW_COMMENT and is_review_thread_root(document.payload)):
            return "non-human author"
    if document.kind in COMMENT_DOCUMENT_TYPES and is_command_like_content(cleaned):
        return "command-like comment"
    if not cleaned:
        return "empty markdown"
    min_length = (
        settings.min_issue_markdown_length
        if document.kind in ISSUE_DOCUMENT_TYPES
        else settings.min_comment_markdown_length
    )
    if is_too_short(cleaned, min_length):
        return "short content"
    return None


async def _process_pending_rows(
    label: str,
    doc_types: tuple[DocumentType, ...],
    settings: BotSettings,
    store: DocumentStore,
    embedder,
) -> PassResult:
    pending = store.list_pending(doc_types, settings.backfill_batch_size)
    processed = 0

    for document in pending:
        cleaned = clean_markdown(document.markdown)
        reason = _skip_reason(document, cleaned, settings)
        if reason:
            logger.info("Skipping {} {}: {}", label, document.id, reason)
            store.clear_markdown(document.id)
            continue

        try:
            embedding = await embed_with_retry(
                embedder, cleaned, settings.backfill_max_retries, settings.backfill_delay_ms,
            )
        except Exception as e:
            logger.error("Failed to embed {} {}: {}", label, document.id, e)
            store.mark_embedding_failed(document.id)
            continue

        if embedding is None:
            logger.warning("Persistent rate limiting; stopping {} backfill after {}", label, processed)
            return PassResult(processed, True)

        try:
            store.update_embedding(document.id, embedding)
        except ValueError as e:
            logger.error("Failed to update embedding for {} {}: {}", label, document.id, e)
            continue

        processed += 1
        await _sleep_ms(settings.backfill_delay_ms)

    return PassResult(processed, False)


async def process_pending_embeddings(
    settings: BotSettings,
    store: DocumentStore,
    embedder,
) -> BackfillResult:
    """Embed issue-like documents, then comment-like ones, one batch each."""
    if not settings.backfill_enabled:
        logger.debug("Pending-embedding backfill disabled")
        return BackfillResult()

    issues = await _process_pending_rows("issue", ISSUE_DOCUMENT_TYPES, settings, store, embedder)
    comments = await _process_pending_rows("comment", COMMENT_DOCUMENT_TYPES, settings, store, embedder)

    return BackfillResult(
        issues_processed=issues.processed,
        comments_processed=comments.processed,
        stopped_early=issues.stopped_early or comments.stopped_early,
    )
