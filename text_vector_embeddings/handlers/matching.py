"""Contributor recommendation from similar completed, assigned issues."""

from __future__ import annotations

import re

from loguru import logger

from text_vector_embeddings.handlers.context import PluginContext
from text_vector_embeddings.models import (
    AuthorKind,
    ContributorMatch,
    DocumentType,
    IssueMetadata,
    RecommendationResult,
)
from text_vector_embeddings.similarity.policy import effective_job_matching_threshold, match_weights
from text_vector_embeddings.text.footnotes import github_link

# GitHub logins: 1-39 alphanumerics or hyphens, no leading/trailing hyphen
GITHUB_LOGIN_PATTERN = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,37}[A-Za-z0-9])?$")
MATCH_PERCENT_PATTERN = re.compile(r"`(\d+)% Match`")
RECOMMENDATION_HEADER = ">The following contributors may be suitable for this task:"
NOTE_MARKER = ">[!NOTE]"
DEFAULT_CONTRIBUTORS_SHOWN = 3


def parse_user_logins(tokens: list[str]) -> list[str]:
    """Normalize `@user`, `a,b` style tokens into unique valid logins, in order."""
    logins: list[str] = []
    for token in tokens:
        for part in token.split(","):
            login = part.strip().lstrip("@")
            if login and GITHUB_LOGIN_PATTERN.match(login) and login not in logins:
                logins.append(login)
    return logins


def _match_line(similarity: int, owner: str, repo: str, url: str) -> str:
    number = url.rstrip("/").split("/")[-1]
    return f"> `{similarity}% Match` [{owner}/{repo}#{number}]({github_link(url)})"


def _is_eligible(node: dict, include_non_completed: bool) -> bool:
    has_assignees = bool(((node.get("assignees") or {}).get("nodes")) or [])
    if include_non_completed:
        return has_assignees
    closed = (node.get("state") or "").upper() == "CLOSED"
    return closed and node.get("stateReason") == "COMPLETED" and has_assignees


async def issue_matching(
    context: PluginContext,
    issue: IssueMetadata,
    requested_users: list[str] | None = None,
) -> RecommendationResult | None:
    """Collect assignees of similar issues as candidate contributors.

    Returns None when the issue is not human-authored, or when nothing similar
    was found and no users were requested.
    """
    if issue.author.kind is not AuthorKind.HUMAN:
        logger.debug("Skipping issue matching for non-human author on #{}", issue.number)
        return None

    settings = context.settings
    requested = list(dict.fromkeys(u for u in (requested_users or []) if u))
    threshold = effective_job_matching_threshold(settings, has_requested_users=bool(requested))
    top_k = settings.requested_users_top_k if requested else settings.job_matching_top_k

    embedding = await context.embedder.embed(f"{issue.body or ''}{issue.title}", input_type="query")
    candidates = context.store.search(
        embedding,
        threshold=threshold,
        top_k=top_k,
        doc_types=(DocumentType.ISSUE,),
        weights=match_weights(settings),
        exclude_id=issue.node_id,
    )

    if not candidates and not requested:
        logger.info("No similar issues to match for #{}", issue.number)
        return None

    matches: dict[str, list[str]] = {}
    for candidate in candidates:
        try:
            node = await context.github.get_issue_node(candidate.target_id)
        except Exception as e:
            logger.error("Failed to fetch issue {}: {}", candidate.target_id, e)
            continue
        if not node:
            logger.warning("Skipping non-issue node {} in recommendations", candidate.target_id)
            continue
        if not _is_eligible(node, include_non_completed=bool(requested)):
            continue

        repository = node.get("repository") or {}
        line = _match_line(
            round(candidate.score * 100),
            (repository.get("owner") or {}).get("login", ""),
            repository.get("name", ""),
            node.get("url", ""),
        )
        for assignee in node["assignees"]["nodes"]:
            login = assignee.get("login", "")
            if requested and login not in requested:
                continue
            matches.setdefault(login, []).append(line)

    for login in requested:
        matches.setdefault(login, [])

    contributors = [
        ContributorMatch(
            login=login,
            matches=lines,
            max_similarity=max((int(MATCH_PERCENT_PATTERN.search(line).group(1)) for line in lines), default=0),
        )
        for login, lines in matches.items()
    ]
    contributors.sort(key=lambda c: c.max_similarity, reverse=True)
    logger.debug("Matched {} contributors for #{}", len(contributors), issue.number)
    return RecommendationResult(contributors=contributors, candidate_count=len(candidates))


def build_recommendation_comment(contributors: list[ContributorMatch]) -> str:
    lines = [NOTE_MARKER, RECOMMENDATION_HEADER]
    for contributor in contributors:
        lines.append(f">### [{contributor.login}](https://www.github.com/{contributor.login})")
        lines.extend(contributor.matches)
    return "\n".join(lines)


def build_recommendation_report(result: RecommendationResult | None, requested_users: list[str]) -> str:
    """Reply for the /recommendation command."""
    if result is None:
        return f"{NOTE_MARKER}\n>_No suitable contributors found._"

    header = (
        f">Recommendation results (filtered): {', '.join('@' + u for u in requested_users)}"
        if requested_users
        else ">Recommendation results:"
    )
    lines = [NOTE_MARKER, header]
    if not result.contributors:
        lines.append("> _No suitable contributors found._")
        return "\n".join(lines)

    for contributor in result.contributors:
        lines.append(f">### [{contributor.login}](https://www.github.com/{contributor.login})")
        if contributor.matches:
            lines.extend(contributor.matches[:DEFAULT_CONTRIBUTORS_SHOWN])
        else:
            lines.append("> _No matches found._")
    return "\n".join(lines)


async def issue_matching_with_comment(context: PluginContext, issue: IssueMetadata) -> str | None:
    """Keep a single recommendation comment on the issue in sync with the matches.

    Returns the posted body, or None when no comment remains.
    """
    result = await issue_matching(context, issue)
    if result is None:
        return None

    comments = await context.github.list_issue_comments(issue.owner, issue.repo, issue.number)
    marker = f"{NOTE_MARKER}\n{RECOMMENDATION_HEADER}"
    existing = next((c for c in comments if marker in (c.get("body") or "")), None)

    if not result.contributors:
        if existing:
            await context.github.delete_comment(issue.owner, issue.repo, existing["id"])
        logger.debug("No suitable contributors for #{}", issue.number)
        return None

    shown = context.settings.always_recommend or DEFAULT_CONTRIBUTORS_SHOWN
    body = build_recommendation_comment(result.contributors[:shown])
    if existing:
        await context.github.update_comment(issue.owner, issue.repo, existing["id"], body)
    else:
        await context.github.create_comment(issue.owner, issue.repo, issue.number, body)
    return body


async def recommendation_command(context: PluginContext, issue: IssueMetadata, tokens: list[str]) -> str:
    """Handle `/recommendation [@user ...]` by posting a report comment."""
    requested = parse_user_logins(tokens)
    result = await issue_matching(context, issue, requested_users=requested or None)
    body = build_recommendation_report(result, requested)
    await context.github.create_comment(issue.owner, issue.repo, issue.number, body)
    return body
