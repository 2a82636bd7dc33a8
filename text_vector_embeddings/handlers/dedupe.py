"""Duplicate detection for issues: warn with footnotes or close as not planned."""

from __future__ import annotations

from loguru import logger

from text_vector_embeddings.handlers.context import PluginContext
from text_vector_embeddings.models import (
    DedupeAction,
    DocumentType,
    FootnoteMatch,
    IssueMetadata,
    SimilarityCandidate,
    SimilarIssue,
)
from text_vector_embeddings.similarity.policy import decide_dedupe_action, filter_by_scope, match_weights
from text_vector_embeddings.text.footnotes import (
    duplicate_definition,
    has_duplicate_footnotes,
    place_footnotes,
    prepend_caution_block,
    strip_duplicate_footnotes,
)
from text_vector_embeddings.text.markdown import (
    append_plugin_update_comment,
    normalize_whitespace,
    strip_html_comments,
    strip_plugin_update_comments,
)
from text_vector_embeddings.text.similarity import find_most_similar_sentence


def _comparable_body(body: str | None, bot_name: str = "") -> str:
    cleaned = strip_plugin_update_comments(body or "", bot_name).cleaned
    return normalize_whitespace(strip_duplicate_footnotes(cleaned))


def is_self_triggered_edit(old_body: str | None, new_body: str | None, bot_name: str = "") -> bool:
    """True when an edit only changed the bot's own markers and duplicate footnotes."""
    return _comparable_body(old_body, bot_name) == _comparable_body(new_body, bot_name)


def _similarity_percent(score: float) -> int:
    return round(score * 100)


async def resolve_similar_issues(
    context: PluginContext,
    candidates: list[SimilarityCandidate],
    issue_body: str,
) -> list[SimilarIssue]:
    """Look up each candidate on GitHub and align its sentences with `issue_body`.

    Candidates that cannot be resolved are logged and dropped.
    """
    resolved: list[SimilarIssue] = []
    for candidate in candidates:
        try:
            node = await context.github.get_issue_node(candidate.target_id)
        except Exception as e:
            logger.error("Failed to fetch issue {}: {}", candidate.target_id, e)
            continue
        if not node or "number" not in node:
            logger.warning("Similar issue {} could not be resolved", candidate.target_id)
            continue

        repository = node.get("repository") or {}
        similar_body = strip_html_comments(node.get("body") or "") or ""
        resolved.append(SimilarIssue(
            node_id=candidate.target_id,
            title=node.get("title", ""),
            number=node["number"],
            url=node.get("url", ""),
            body=similar_body,
            owner=(repository.get("owner") or {}).get("login", ""),
            repo=repository.get("name", ""),
            similarity=_similarity_percent(candidate.score),
            score=candidate.score,
            most_similar_sentence=find_most_similar_sentence(issue_body, similar_body),
        ))
    return resolved


def _duplicate_matches(issues: list[SimilarIssue]) -> list[FootnoteMatch]:
    return [
        FootnoteMatch(
            sentence=issue.most_similar_sentence.sentence,
            definition=duplicate_definition(issue),
            similarity=issue.similarity,
        )
        for issue in issues
    ]


def build_dedupe_body(
    cleaned_body: str,
    similar: list[SimilarIssue],
    action: DedupeAction,
    match_threshold: float,
) -> str:
    """Body for `action`: footnotes for warnings, plus a caution callout when closing."""
    if action is DedupeAction.NONE:
        return cleaned_body

    body = place_footnotes(cleaned_body, _duplicate_matches(similar))
    if action is DedupeAction.CLOSED:
        body = prepend_caution_block(body, [issue for issue in similar if issue.score >= match_threshold])
    return body


async def decide_and_apply_dedupe(
    context: PluginContext,
    issue: IssueMetadata,
    keep_update_comment: bool | None = None,
) -> DedupeAction:
    """Check `issue` against stored issues and rewrite (and maybe close) it.

    Footnotes are always recomputed from a body stripped of earlier ones. The
    issue is only written when the resulting body or state actually changes.
    `keep_update_comment` overrides the setting of the same name.
    """
    settings = context.settings
    if not issue.body:
        logger.info("Issue #{} has an empty body; skipping dedupe", issue.number)
        return DedupeAction.NONE

    stripped = strip_plugin_update_comments(issue.body, settings.bot_name)
    if keep_update_comment is None:
        keep_update_comment = settings.keep_update_comment
    update_comment = stripped.latest_comment if keep_update_comment else None
    cleaned_body = strip_duplicate_footnotes(stripped.cleaned)
    matching_body = strip_html_comments(cleaned_body) or ""

    # Search at the lower threshold so closing still wins when match < warning.
    warning_threshold = settings.dedupe_warning_threshold
    match_threshold = settings.dedupe_match_threshold
    query_embedding = await context.embedder.embed(f"{issue.title}{matching_body}", input_type="query")
    candidates = context.store.search(
        query_embedding,
        threshold=min(warning_threshold, match_threshold),
        top_k=settings.dedupe_top_k,
        doc_types=(DocumentType.ISSUE,),
        weights=match_weights(settings),
        exclude_id=issue.node_id,
    )
    candidates = [c for c in candidates if c.score >= warning_threshold or c.score >= match_threshold]

    similar = await resolve_similar_issues(context, candidates, matching_body)
    similar = filter_by_scope(similar, settings.dedupe_scope, issue.owner, issue.repo)
    action = decide_dedupe_action(
        [s.score for s in similar],
        warning_threshold,
        match_threshold,
    )

    if action is DedupeAction.NONE and not has_duplicate_footnotes(issue.body):
        logger.info("No similar issues found for #{}", issue.number)
        return action

    next_body = build_dedupe_body(cleaned_body, similar, action, match_threshold)
    if update_comment:
        next_body = append_plugin_update_comment(next_body, update_comment, settings.bot_name)

    body_unchanged = normalize_whitespace(issue.body) == normalize_whitespace(next_body)
    already_closed = issue.state == "closed" and issue.state_reason == "not_planned"

    try:
        if action is DedupeAction.CLOSED:
            if body_unchanged and already_closed:
                logger.info("Issue #{} already closed as duplicate", issue.number)
                return action
            logger.info(
                "Closing #{} in {}/{} as duplicate of {}",
                issue.number, issue.owner, issue.repo, [s.number for s in similar],
            )
            await context.github.update_issue(
                issue.owner, issue.repo, issue.number,
                body=next_body, state="closed", state_reason="not_planned",
            )
            return action

        if body_unchanged:
            logger.info("Issue #{} body unchanged after dedupe", issue.number)
            return action
        logger.info("Updating #{} in {}/{} ({})", issue.number, issue.owner, issue.repo, action.value)
        await context.github.update_issue(issue.owner, issue.repo, issue.number, body=next_body)
    except Exception:
        logger.exception("Failed to update issue #{} in {}/{}", issue.number, issue.owner, issue.repo)
        raise

    return action
