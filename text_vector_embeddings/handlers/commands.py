"""Slash commands posted as issue comments."""

from __future__ import annotations

from loguru import logger

from text_vector_embeddings.github.ingest import normalize_issue
from text_vector_embeddings.handlers.annotate import ANNOTATE_USAGE, annotate, parse_annotate_command
from text_vector_embeddings.handlers.context import PluginContext
from text_vector_embeddings.handlers.matching import recommendation_command
from text_vector_embeddings.text.markdown import is_command_like_content

SUPPORTED_COMMANDS = ("annotate", "recommendation")


def command_name(body: str | None) -> str | None:
    """Name of the slash command in `body` (without the slash), or None."""
    if not is_command_like_content(body):
        return None
    return body.strip().split()[0][1:]


async def handle_command(context: PluginContext, payload: dict) -> bool:
    """Run the command in an `issue_comment.created` payload. False if there is none."""
    body = payload["comment"].get("body")
    name = command_name(body)
    if name not in SUPPORTED_COMMANDS:
        return False

    repository = payload["repository"]
    issue = normalize_issue(payload["issue"], repository)
    logger.info("Running /{} on #{} in {}/{}", name, issue.number, issue.owner, issue.repo)

    if name == "annotate":
        try:
            command = parse_annotate_command(body, default_scope=context.settings.annotate_scope)
        except ValueError as e:
            logger.warning("Malformed /annotate on #{} in {}/{}: {}", issue.number, issue.owner, issue.repo, e)
            await context.github.create_comment(issue.owner, issue.repo, issue.number, ANNOTATE_USAGE)
            return True
        await annotate(context, issue.owner, issue.repo, issue.number, command.comment_id, command.scope)
    else:
        await recommendation_command(context, issue, body.strip().split()[1:])
    return True
