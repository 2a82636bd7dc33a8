"""Repository-wide reprocessing of issues.

Each issue is stored again, its recommendation comment refreshed and the
dedupe pass rerun, the same steps a human edit triggers. The bot's update
marker is kept by default so reprocessed bodies still record the last run.
"""

from __future__ import annotations

from loguru import logger

from text_vector_embeddings.github.ingest import normalize_issue
from text_vector_embeddings.handlers import documents
from text_vector_embeddings.handlers.context import PluginContext
from text_vector_embeddings.handlers.dedupe import decide_and_apply_dedupe
from text_vector_embeddings.handlers.matching import issue_matching_with_comment
from text_vector_embeddings.models import DedupeAction, ReprocessResult


async def reprocess_issue(
    context: PluginContext,
    issue_data: dict,
    repository: dict,
    keep_update_comment: bool = True,
) -> DedupeAction:
    """Store, match and dedupe one raw issue."""
    await documents.update_issue(context, {"issue": issue_data, "repository": repository})
    issue = normalize_issue(issue_data, repository)
    await issue_matching_with_comment(context, issue)
    return await decide_and_apply_dedupe(context, issue, keep_update_comment=keep_update_comment)


async def reprocess_repository(
    context: PluginContext,
    owner: str,
    repo: str,
    state: str = "open",
    keep_update_comment: bool = True,
) -> ReprocessResult:
    """Reprocess every issue of owner/repo in `state`.

    A failing issue is logged and counted, and the run moves on to the next.
    """
    repository = await context.github.get_repository(owner, repo)
    issues = await context.github.list_repository_issues(owner, repo, state=state)
    logger.info("Reprocessing {} issues in {}/{} (state={})", len(issues), owner, repo, state)

    result = ReprocessResult()
    for issue_data in issues:
        if "pull_request" in issue_data:
            result.skipped += 1
            continue
        try:
            action = await reprocess_issue(context, issue_data, repository, keep_update_comment)
        except Exception:
            logger.exception("Failed to reprocess #{} in {}/{}", issue_data.get("number"), owner, repo)
            result.failed += 1
            continue
        result.processed += 1
        result.actions[action.value] = result.actions.get(action.value, 0) + 1

    logger.info(
        "Reprocessed {}/{}: {} processed, {} skipped, {} failed",
        owner, repo, result.processed, result.skipped, result.failed,
    )
    return result
