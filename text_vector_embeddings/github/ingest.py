"""Normalize GitHub webhook and REST payloads into issue/comment metadata."""

from __future__ import annotations

from datetime import datetime

from text_vector_embeddings.models import (
    AuthorKind,
    CommentMetadata,
    DocumentType,
    IssueAuthor,
    IssueMetadata,
    UNKNOWN_AUTHOR_ID,
)


def _parse_datetime(dt_str: str | None) -> datetime | None:
    """Parse GitHub ISO datetime string."""
    if not dt_str:
        return None
    return datetime.fromisoformat(dt_str.replace("Z", "+00:00"))


def resolve_author_kind(user: dict | None) -> AuthorKind:
    """Map a GitHub `user.type` to an author kind. Only "User" is human."""
    if not user or not user.get("type"):
        return AuthorKind.UNKNOWN
    return AuthorKind.HUMAN if user["type"] == "User" else AuthorKind.BOT


def _normalize_author(user: dict | None) -> IssueAuthor:
    user = user or {}
    kind = resolve_author_kind(user)
    return IssueAuthor(
        login=user.get("login", "unknown"),
        id=user.get("id", UNKNOWN_AUTHOR_ID) if kind is AuthorKind.HUMAN else UNKNOWN_AUTHOR_ID,
        kind=kind,
    )


def _owner_repo(data: dict, repository: dict | None) -> tuple[str, str]:
    if repository:
        owner = (repository.get("owner") or {}).get("login", "")
        return owner, repository.get("name", "")

    # Derive owner/repo from repository_url when the caller has no repository object
    repo_url = data.get("repository_url", "")
    if repo_url:
        parts = repo_url.rstrip("/").split("/")
        if len(parts) >= 2:
            return parts[-2], parts[-1]
    return "", ""


def normalize_issue(issue_data: dict, repository: dict | None = None) -> IssueMetadata:
    """Transform a raw issue or pull request object into IssueMetadata."""
    owner, repo = _owner_repo(issue_data, repository)
    labels = [label.get("name", "") for label in issue_data.get("labels", []) or []]
    assignees = [a.get("login", "") for a in issue_data.get("assignees", []) or []]

    return IssueMetadata(
        owner=owner,
        repo=repo,
        number=issue_data.get("number", 0),
        node_id=issue_data.get("node_id", ""),
        title=issue_data.get("title", "") or "",
        body=issue_data.get("body"),
        author=_normalize_author(issue_data.get("user")),
        state=issue_data.get("state", "open"),
        state_reason=issue_data.get("state_reason"),
        labels=labels,
        assignees=assignees,
        html_url=issue_data.get("html_url", ""),
        is_private=bool((repository or {}).get("private", False)),
        is_pull_request="pull_request" in issue_data or "merged_at" in issue_data,
        created_at=_parse_datetime(issue_data.get("created_at")),
        updated_at=_parse_datetime(issue_data.get("updated_at")),
        closed_at=_parse_datetime(issue_data.get("closed_at")),
    )


def normalize_comment(
    comment_data: dict,
    issue_data: dict | None = None,
    repository: dict | None = None,
) -> CommentMetadata:
    """Transform an issue comment, review comment, or review into CommentMetadata."""
    owner, repo = _owner_repo(issue_data or comment_data, repository)
    issue_data = issue_data or {}

    return CommentMetadata(
        owner=owner,
        repo=repo,
        id=comment_data.get("id", 0),
        node_id=comment_data.get("node_id", ""),
        body=comment_data.get("body"),
        author=_normalize_author(comment_data.get("user")),
        issue_node_id=issue_data.get("node_id"),
        issue_number=issue_data.get("number"),
        html_url=comment_data.get("html_url", ""),
        is_private=bool((repository or {}).get("private", False)),
        in_reply_to_id=comment_data.get("in_reply_to_id"),
    )


def author_kind_from_payload(payload: dict | None, doc_type: DocumentType) -> AuthorKind:
    """Author kind recorded in a stored webhook payload, falling back to the sender."""
    if not payload:
        return AuthorKind.UNKNOWN

    if doc_type in (DocumentType.ISSUE, DocumentType.PULL_REQUEST):
        keys = ("issue", "pull_request")
    elif doc_type == DocumentType.PULL_REQUEST_REVIEW:
        keys = ("review",)
    else:
        keys = ("comment",)

    for key in keys:
        kind = resolve_author_kind((payload.get(key) or {}).get("user"))
        if kind is not AuthorKind.UNKNOWN:
            return kind
    return resolve_author_kind(payload.get("sender"))


def is_review_thread_root(payload: dict | None) -> bool:
    """True for a review comment that starts a thread (not a reply)."""
    return (payload or {}).get("comment", {}).get("in_reply_to_id") is None
