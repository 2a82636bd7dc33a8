"""The /annotate command: footnote a comment with related issues and comments."""

from __future__ import annotations

import re
from typing import NamedTuple

from loguru import logger

from text_vector_embeddings.handlers.context import PluginContext
from text_vector_embeddings.models import (
    COMMENT_DOCUMENT_TYPES,
    DocumentType,
    FootnoteMatch,
    Scope,
    SimilarComment,
    SimilarityCandidate,
)
from text_vector_embeddings.handlers.dedupe import resolve_similar_issues
from text_vector_embeddings.similarity.policy import annotate_weights, filter_by_scope, resolve_scope
from text_vector_embeddings.text.footnotes import (
    comment_annotation,
    issue_annotation,
    place_footnotes,
    remove_annotate_footnotes,
)
from text_vector_embeddings.text.similarity import find_most_similar_sentence

COMMENT_URL_PATTERN = re.compile(r"#issuecomment-(\d+)$")
ANNOTATE_USAGE = "Usage: `/annotate` or `/annotate <comment-url> <global|org|repo>`"


class AnnotateCommand(NamedTuple):
    comment_id: int | None
    scope: Scope


def parse_comment_url(url: str) -> int:
    match = COMMENT_URL_PATTERN.search(url)
    if not match:
        raise ValueError(f"Invalid comment URL: {url}")
    return int(match.group(1))


def parse_annotate_command(body: str, default_scope: str = "org") -> AnnotateCommand:
    """Parse `/annotate` or `/annotate <comment-url> <scope>`.

    Raises ValueError for any other argument shape, a bad URL or a bad scope.
    """
    tokens = body.strip().split()
    if not tokens or tokens[0] != "/annotate":
        raise ValueError("Not an /annotate command")
    if len(tokens) == 1:
        return AnnotateCommand(None, resolve_scope(default_scope))
    if len(tokens) != 3:
        raise ValueError(ANNOTATE_USAGE)
    scope = resolve_scope(tokens[2])
    return AnnotateCommand(parse_comment_url(tokens[1]), scope)


async def resolve_similar_comments(
    context: PluginContext,
    candidates: list[SimilarityCandidate],
    comment_body: str,
) -> list[SimilarComment]:
    resolved: list[SimilarComment] = []
    for candidate in candidates:
        try:
            node = await context.github.get_comment_node(candidate.target_id)
        except Exception as e:
            logger.error("Failed to fetch comment {}: {}", candidate.target_id, e)
            continue
        parent = (node or {}).get("issue") or (node or {}).get("pullRequest")
        if not node or not parent:
            logger.warning("Similar comment {} could not be resolved", candidate.target_id)
            continue

        repository = parent.get("repository") or {}
        body = node.get("body") or ""
        resolved.append(SimilarComment(
            node_id=candidate.target_id,
            url=node.get("url", ""),
            body=body,
            issue_number=parent.get("number", 0),
            owner=(repository.get("owner") or {}).get("login", ""),
            repo=repository.get("name", ""),
            similarity=round(candidate.score * 100),
            score=candidate.score,
            most_similar_sentence=find_most_similar_sentence(comment_body, body),
        ))
    return resolved


async def comment_checker(
    context: PluginContext,
    comment: dict,
    owner: str,
    repo: str,
    scope: str | Scope,
) -> str | None:
    """Annotate one comment. Returns the new body, or None if nothing was written."""
    settings = context.settings
    scope = resolve_scope(scope)
    body = comment.get("body")
    if not body:
        logger.info("Comment {} has an empty body", comment.get("id"))
        return None

    body = remove_annotate_footnotes(body)
    embedding = await context.embedder.embed(body, input_type="query")
    search_args = dict(
        threshold=settings.annotate_threshold,
        top_k=settings.annotate_top_k,
        weights=annotate_weights(settings),
        exclude_id=comment.get("node_id"),
    )
    issue_candidates = context.store.search(embedding, doc_types=(DocumentType.ISSUE,), **search_args)
    comment_candidates = context.store.search(embedding, doc_types=COMMENT_DOCUMENT_TYPES, **search_args)

    issues = filter_by_scope(await resolve_similar_issues(context, issue_candidates, body), scope, owner, repo)
    comments = filter_by_scope(await resolve_similar_comments(context, comment_candidates, body), scope, owner, repo)
    logger.info("Comment {}: {} similar issues, {} similar comments", comment.get("id"), len(issues), len(comments))

    if not issues and not comments:
        return None

    matches = [
        FootnoteMatch(sentence=i.most_similar_sentence.sentence, definition=issue_annotation(i), similarity=i.similarity)
        for i in sorted(issues, key=lambda i: i.score)
    ] + [
        FootnoteMatch(sentence=c.most_similar_sentence.sentence, definition=comment_annotation(c), similarity=c.similarity)
        for c in sorted(comments, key=lambda c: c.score)
    ]
    updated = place_footnotes(body, matches, sort=False)

    try:
        await context.github.update_comment(owner, repo, comment["id"], updated)
    except Exception:
        logger.exception("Failed to update comment {} in {}/{}", comment.get("id"), owner, repo)
        raise
    return updated


async def annotate(
    context: PluginContext,
    owner: str,
    repo: str,
    issue_number: int,
    comment_id: int | None,
    scope: str | Scope,
) -> str | None:
    """Annotate `comment_id`, or the comment just before the command when None."""
    if comment_id is None:
        comments = await context.github.list_issue_comments(owner, repo, issue_number)
        if len(comments) < 2:
            logger.warning("No comment before the annotate command on #{}", issue_number)
            return None
        target = comments[-2]
    else:
        target = await context.github.get_comment(owner, repo, comment_id)
        if target is None:
            logger.warning("Comment {} not found in {}/{}", comment_id, owner, repo)
            return None

    return await comment_checker(context, target, owner, repo, scope)
