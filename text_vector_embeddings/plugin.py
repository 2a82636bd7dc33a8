"""Webhook event dispatch."""

from __future__ import annotations

from loguru import logger

from text_vector_embeddings.github.ingest import normalize_issue, resolve_author_kind
from text_vector_embeddings.handlers import documents
from text_vector_embeddings.handlers.commands import handle_command
from text_vector_embeddings.handlers.context import PluginContext
from text_vector_embeddings.handlers.dedupe import decide_and_apply_dedupe, is_self_triggered_edit
from text_vector_embeddings.handlers.matching import issue_matching_with_comment

_SIMPLE_HANDLERS = {
    "issues.deleted": documents.delete_issue,
    "issues.transferred": documents.transfer_issue,
    "issues.closed": documents.complete_issue,
    "issue_comment.edited": documents.update_comment,
    "issue_comment.deleted": documents.delete_comment,
    "pull_request.opened": documents.add_pull_request,
    "pull_request.reopened": documents.add_pull_request,
    "pull_request.edited": documents.update_pull_request,
    "pull_request_review.submitted": documents.add_pull_request_review,
    "pull_request_review.edited": documents.update_pull_request_review,
    "pull_request_review_comment.created": documents.add_review_comment,
    "pull_request_review_comment.edited": documents.update_review_comment,
    "pull_request_review_comment.deleted": documents.delete_review_comment,
}

SUPPORTED_EVENTS = (
    "issues.opened",
    "issues.edited",
    "issues.labeled",
    "issue_comment.created",
    *_SIMPLE_HANDLERS,
)


async def _issue_opened(context: PluginContext, payload: dict) -> None:
    issue = normalize_issue(payload["issue"], payload.get("repository"))
    await documents.add_issue(context, payload)
    await issue_matching_with_comment(context, issue)
    if context.settings.dedupe_on_open:
        await decide_and_apply_dedupe(context, issue)


async def _issue_edited(context: PluginContext, payload: dict) -> None:
    issue = normalize_issue(payload["issue"], payload.get("repository"))
    previous_body = ((payload.get("changes") or {}).get("body") or {}).get("from")

    if previous_body is not None and is_self_triggered_edit(previous_body, issue.body, context.settings.bot_name):
        sender_kind = resolve_author_kind(payload.get("sender"))
        logger.info("Edit of #{} only touched bot content (sender: {}); skipping", issue.number, sender_kind.value)
        return

    await documents.update_issue(context, payload)
    await issue_matching_with_comment(context, issue)
    await decide_and_apply_dedupe(context, issue)


async def _issue_comment_created(context: PluginContext, payload: dict) -> None:
    await documents.add_comment(context, payload)
    await handle_command(context, payload)


async def run_plugin(context: PluginContext, event_name: str, payload: dict) -> bool:
    """Route one webhook delivery. Returns False for unsupported events."""
    logger.debug("Handling {}", event_name)

    if event_name == "issues.opened":
        await _issue_opened(context, payload)
    elif event_name == "issues.edited":
        await _issue_edited(context, payload)
    elif event_name == "issues.labeled":
        await issue_matching_with_comment(context, normalize_issue(payload["issue"], payload.get("repository")))
    elif event_name == "issue_comment.created":
        await _issue_comment_created(context, payload)
    elif event_name in _SIMPLE_HANDLERS:
        await _SIMPLE_HANDLERS[event_name](context, payload)
    else:
        logger.warning("Unsupported event: {}", event_name)
        return False

    logger.debug("Finished {}", event_name)
    return True
