"""Issue, comment, pull request and review storage handlers.

Every handler funnels into `persist_document`, which owns the content gates
(private repositories, non-human authors, slash commands, short bodies) and
the choice between inline and deferred embedding.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone

from loguru import logger

from text_vector_embeddings.embeddings.providers import is_rate_limit_error
from text_vector_embeddings.github.ingest import normalize_comment, normalize_issue
from text_vector_embeddings.handlers.context import PluginContext
from text_vector_embeddings.models import (
    AuthorKind,
    COMMENT_DOCUMENT_TYPES,
    Document,
    DocumentType,
    EmbeddingStatus,
    ISSUE_DOCUMENT_TYPES,
    IssueAuthor,
    QueueJob,
    QueueTable,
)
from text_vector_embeddings.queue.embedding_queue import enqueue_embedding, should_defer_embedding
from text_vector_embeddings.text.footnotes import remove_annotate_footnotes, strip_duplicate_footnotes
from text_vector_embeddings.text.markdown import clean_markdown, is_command_like_content, is_too_short


def queue_table_for(kind: DocumentType) -> QueueTable:
    return QueueTable.ISSUES if kind in ISSUE_DOCUMENT_TYPES else QueueTable.ISSUE_COMMENTS


def issue_markdown(body: str | None, title: str | None) -> str | None:
    """Stored text for an issue: body followed by title, None if either is missing."""
    if not body or not title:
        return None
    body = remove_annotate_footnotes(strip_duplicate_footnotes(body))
    return f"{body} {title}"


def build_pull_request_markdown(pull_request: dict) -> str | None:
    body = (pull_request.get("body") or "").strip()
    title = (pull_request.get("title") or "").strip()
    return " ".join(part for part in (body, title) if part).strip() or None


def build_pull_request_review_markdown(review: dict, pull_request: dict | None = None) -> str | None:
    body = (review.get("body") or "").strip()
    state = (review.get("state") or "").strip()
    title = ((pull_request or {}).get("title") or "").strip()

    parts: list[str] = []
    if body:
        parts.append(body)
    if state:
        parts.append(f"Review state: {state}")
    if title:
        parts.append(f"PR title: {title}")
    return "\n\n".join(parts).strip() or None


def _review_comment_location(comment: dict) -> str | None:
    path = (comment.get("path") or "").strip()
    line = comment.get("line") if comment.get("line") is not None else comment.get("original_line")
    start_line = comment.get("start_line") if comment.get("start_line") is not None else comment.get("original_start_line")
    side = comment.get("side") or comment.get("start_side")

    parts: list[str] = []
    if path:
        parts.append(f"File: {path}")
    if start_line is not None and line is not None and start_line != line:
        parts.append(f"Lines: {start_line}-{line}")
    elif line is not None:
        parts.append(f"Line: {line}")
    if side:
        parts.append(f"Side: {side}")
    return " | ".join(parts) if parts else None


def build_review_comment_markdown(comment: dict) -> str | None:
    """Review comment body, followed by its location and diff hunk in a fence."""
    body = (comment.get("body") or "").strip()
    if not body:
        return None

    diff = (comment.get("diff_hunk") or "").strip()
    if not diff:
        return body

    location = _review_comment_location(comment)
    location_line = f"{location}\n" if location else ""
    return f"{body}\n\n{location_line}```diff\n{diff}\n```"


def _skip_reason(kind: DocumentType, author: IssueAuthor, cleaned: str, allow_bot: bool, context: PluginContext) -> str | None:
    if author.kind is AuthorKind.BOT and not allow_bot:
        return "non-human author"
    if kind in COMMENT_DOCUMENT_TYPES and is_command_like_content(cleaned):
        return "command-like comment"
    if not cleaned:
        return "empty markdown"
    min_length = (
        context.settings.min_issue_markdown_length
        if kind in ISSUE_DOCUMENT_TYPES
        else context.settings.min_comment_markdown_length
    )
    if is_too_short(cleaned, min_length):
        return "short content"
    return None


async def persist_document(
    context: PluginContext,
    doc_id: str,
    kind: DocumentType,
    markdown: str | None,
    author: IssueAuthor,
    payload: dict | None,
    is_private: bool,
    parent_id: str | None = None,
    replace: bool = False,
    allow_bot: bool = False,
) -> Document | None:
    """Store one document and embed it inline or through the queue.

    Returns the stored document, or None when nothing was written. With
    `replace` an existing row is overwritten, otherwise it is left alone.
    """
    if context.settings.demo_mode:
        logger.info("Demo mode active; not storing {} {}", kind.value, doc_id)
        return None

    store = context.store
    if not replace:
        existing = store.get_document(doc_id)
        if existing is not None:
            logger.info("{} {} already stored", kind.value, doc_id)
            return existing

    stripped = remove_annotate_footnotes(strip_duplicate_footnotes(markdown)) if markdown else None
    cleaned = clean_markdown(stripped)

    if is_private:
        document = Document(
            id=doc_id, kind=kind, markdown=None, author_id=author.id, parent_id=parent_id,
            payload=None, embedding_status=EmbeddingStatus.FAILED,
        )
        store.upsert_document(document)
        logger.info("Stored private {} {} without content", kind.value, doc_id)
        return document

    reason = _skip_reason(kind, author, cleaned, allow_bot, context)
    if reason:
        document = Document(
            id=doc_id, kind=kind, markdown=None, author_id=author.id, parent_id=parent_id,
            payload=payload, embedding_status=EmbeddingStatus.FAILED,
        )
        store.upsert_document(document)
        logger.info("Stored {} {} without embedding: {}", kind.value, doc_id, reason)
        return document

    document = Document(
        id=doc_id, kind=kind, markdown=stripped, author_id=author.id, parent_id=parent_id,
        payload=payload, embedding_status=EmbeddingStatus.PENDING,
    )
    store.upsert_document(document)

    job = QueueJob(table=queue_table_for(kind), document_id=doc_id)
    if should_defer_embedding(context.settings, is_private):
        enqueue_embedding(context.queue, job)
        return store.get_document(doc_id)

    try:
        embedding = await context.embedder.embed(cleaned)
        store.update_embedding(doc_id, embedding)
    except Exception as e:
        if is_rate_limit_error(e):
            logger.warning("Rate limited embedding {} {}; deferring to queue", kind.value, doc_id)
            enqueue_embedding(context.queue, job)
            return store.get_document(doc_id)
        logger.error("Failed to embed {} {}: {}", kind.value, doc_id, e)
        store.mark_embedding_failed(doc_id)
        raise

    logger.debug("Stored {} {} with embedding", kind.value, doc_id)
    return store.get_document(doc_id)


# --- Issues ---

async def add_issue(context: PluginContext, payload: dict, replace: bool = False) -> Document | None:
    issue = normalize_issue(payload["issue"], payload.get("repository"))
    markdown = issue_markdown(issue.body, issue.title)
    if markdown is None and issue.author.kind is not AuthorKind.BOT:
        logger.warning("Issue #{} in {}/{} has an empty body", issue.number, issue.owner, issue.repo)
        return None

    kind = DocumentType.PULL_REQUEST if issue.is_pull_request else DocumentType.ISSUE
    return await persist_document(
        context, issue.node_id, kind, markdown, issue.author, payload, issue.is_private, replace=replace,
    )


async def update_issue(context: PluginContext, payload: dict) -> Document | None:
    return await add_issue(context, payload, replace=True)


async def delete_issue(context: PluginContext, payload: dict) -> bool:
    node_id = payload["issue"]["node_id"]
    deleted = context.store.soft_delete(node_id)
    logger.info("Soft-deleted issue {}: {}", node_id, deleted)
    return deleted


async def transfer_issue(context: PluginContext, payload: dict) -> Document | None:
    """Retire the old issue id and store the issue under its new repository."""
    changes = payload.get("changes") or {}
    new_issue = changes.get("new_issue")
    new_repository = changes.get("new_repository")
    if not new_issue:
        logger.warning("Transfer event without new issue data for {}", payload["issue"].get("node_id"))
        return None

    context.store.soft_delete(payload["issue"]["node_id"])
    issue = normalize_issue(new_issue, new_repository)
    return await persist_document(
        context, issue.node_id, DocumentType.ISSUE, issue_markdown(issue.body, issue.title),
        issue.author, new_issue, issue.is_private, replace=True,
    )


async def complete_issue(context: PluginContext, payload: dict) -> Document | None:
    """Store an issue closed as completed with assignees, flagged for matching."""
    issue = normalize_issue(payload["issue"], payload.get("repository"))
    if issue.state_reason != "completed":
        logger.debug("Issue #{} not closed as completed", issue.number)
        return None
    if not issue.assignees:
        logger.debug("Issue #{} has no assignees", issue.number)
        return None

    updated_payload = copy.deepcopy(payload)
    updated_payload["issue"].update({
        "completed": True,
        "completed_at": datetime.now(timezone.utc).isoformat(),
        "has_assignees": True,
    })
    return await persist_document(
        context, issue.node_id, DocumentType.ISSUE, issue_markdown(issue.body, issue.title),
        issue.author, updated_payload, issue.is_private, replace=True,
    )


# --- Pull requests ---

async def ensure_pull_request_document(context: PluginContext, pull_request: dict, repository: dict | None) -> str | None:
    """Node id of the stored pull request, storing it first if needed."""
    node_id = pull_request.get("node_id")
    if not node_id:
        return None
    if context.store.get_document(node_id) is None:
        pr = normalize_issue(pull_request, repository)
        await persist_document(
            context, node_id, DocumentType.PULL_REQUEST, build_pull_request_markdown(pull_request),
            pr.author, {"pull_request": pull_request}, pr.is_private,
        )
    return node_id


async def add_pull_request(context: PluginContext, payload: dict, replace: bool = False) -> Document | None:
    pull_request = payload["pull_request"]
    pr = normalize_issue(pull_request, payload.get("repository"))
    return await persist_document(
        context, pr.node_id, DocumentType.PULL_REQUEST, build_pull_request_markdown(pull_request),
        pr.author, payload, pr.is_private, replace=replace,
    )


async def update_pull_request(context: PluginContext, payload: dict) -> Document | None:
    return await add_pull_request(context, payload, replace=True)


async def add_pull_request_review(context: PluginContext, payload: dict, replace: bool = False) -> Document | None:
    review = payload["review"]
    repository = payload.get("repository")
    parent_id = await ensure_pull_request_document(context, payload.get("pull_request") or {}, repository)
    author = normalize_comment(review, payload.get("pull_request"), repository)
    return await persist_document(
        context, review["node_id"], DocumentType.PULL_REQUEST_REVIEW,
        build_pull_request_review_markdown(review, payload.get("pull_request")),
        author.author, payload, author.is_private, parent_id=parent_id, replace=replace,
    )


async def update_pull_request_review(context: PluginContext, payload: dict) -> Document | None:
    return await add_pull_request_review(context, payload, replace=True)


# --- Comments ---

async def add_comment(context: PluginContext, payload: dict, replace: bool = False) -> Document | None:
    """Store an issue comment, storing its parent issue or pull request first if missing."""
    repository = payload.get("repository")
    issue_data = payload["issue"]
    comment = normalize_comment(payload["comment"], issue_data, repository)

    parent_id = issue_data.get("node_id")
    if "pull_request" in issue_data:
        parent_id = await ensure_pull_request_document(context, issue_data, repository)
    elif parent_id and context.store.get_document(parent_id) is None:
        logger.info("Parent issue {} not stored yet; storing it first", parent_id)
        await add_issue(context, {"issue": issue_data, "repository": repository})

    return await persist_document(
        context, comment.node_id, DocumentType.COMMENT, comment.body, comment.author,
        payload, comment.is_private, parent_id=parent_id, replace=replace,
    )


async def update_comment(context: PluginContext, payload: dict) -> Document | None:
    return await add_comment(context, payload, replace=True)


async def delete_comment(context: PluginContext, payload: dict) -> bool:
    node_id = payload["comment"]["node_id"]
    deleted = context.store.soft_delete(node_id)
    logger.info("Soft-deleted comment {}: {}", node_id, deleted)
    return deleted


async def add_review_comment(context: PluginContext, payload: dict, replace: bool = False) -> Document | None:
    """Store a pull request review comment with its diff context.

    Bot-authored comments are kept only when they start a review thread.
    """
    repository = payload.get("repository")
    pull_request = payload.get("pull_request")
    if not pull_request:
        logger.warning("Review comment {} has no pull request payload", payload["comment"].get("id"))
        return None

    raw_comment = payload["comment"]
    comment = normalize_comment(raw_comment, pull_request, repository)
    parent_id = await ensure_pull_request_document(context, pull_request, repository)
    return await persist_document(
        context, comment.node_id, DocumentType.REVIEW_COMMENT, build_review_comment_markdown(raw_comment),
        comment.author, payload, comment.is_private, parent_id=parent_id, replace=replace,
        allow_bot=comment.in_reply_to_id is None,
    )


async def update_review_comment(context: PluginContext, payload: dict) -> Document | None:
    return await add_review_comment(context, payload, replace=True)


async def delete_review_comment(context: PluginContext, payload: dict) -> bool:
    return await delete_comment(context, payload)
