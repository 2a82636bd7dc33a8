"""Pydantic models for documents, similarity results, and queue jobs."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


# --- Enums ---

class DocumentType(str, Enum):
    ISSUE = "issue"
    COMMENT = "comment"
    REVIEW_COMMENT = "review_comment"
    PULL_REQUEST = "pull_request"
    PULL_REQUEST_REVIEW = "pull_request_review"


ISSUE_DOCUMENT_TYPES = (DocumentType.ISSUE, DocumentType.PULL_REQUEST)
COMMENT_DOCUMENT_TYPES = (
    DocumentType.COMMENT,
    DocumentType.REVIEW_COMMENT,
    DocumentType.PULL_REQUEST_REVIEW,
)


class EmbeddingStatus(str, Enum):
    READY = "ready"
    PENDING = "pending"
    FAILED = "failed"


class AuthorKind(str, Enum):
    HUMAN = "human"
    BOT = "bot"
    UNKNOWN = "unknown"


class Scope(str, Enum):
    GLOBAL = "global"
    ORG = "org"
    REPO = "repo"


class DedupeAction(str, Enum):
    NONE = "none"
    WARNED = "warned"
    CLOSED = "closed"


class QueueTable(str, Enum):
    ISSUES = "issues"
    ISSUE_COMMENTS = "issue_comments"


UNKNOWN_AUTHOR_ID = -1


# --- Stored documents ---

class Document(BaseModel):
    id: str
    kind: DocumentType
    markdown: str | None = None
    author_id: int = UNKNOWN_AUTHOR_ID
    parent_id: str | None = None
    payload: dict | None = None
    created_at: datetime | None = None
    modified_at: datetime | None = None
    embedding: list[float] | None = None
    embedding_status: EmbeddingStatus = EmbeddingStatus.PENDING
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def has_embedding(self) -> bool:
        return self.embedding_status == EmbeddingStatus.READY and bool(self.embedding)


class SimilarityCandidate(BaseModel):
    target_id: str
    score: float


class SearchWeights(BaseModel):
    cosine_weight: float = 0.7
    l2_weight: float = 0.3


# --- GitHub views (normalized from webhook payloads) ---

class IssueAuthor(BaseModel):
    login: str = "unknown"
    id: int = UNKNOWN_AUTHOR_ID
    kind: AuthorKind = AuthorKind.UNKNOWN


class IssueMetadata(BaseModel):
    owner: str
    repo: str
    number: int
    node_id: str
    title: str = ""
    body: str | None = None
    author: IssueAuthor = Field(default_factory=IssueAuthor)
    state: str = "open"
    state_reason: str | None = None
    labels: list[str] = []
    assignees: list[str] = []
    html_url: str = ""
    is_private: bool = False
    is_pull_request: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    closed_at: datetime | None = None


class CommentMetadata(BaseModel):
    owner: str
    repo: str
    id: int
    node_id: str
    body: str | None = None
    author: IssueAuthor = Field(default_factory=IssueAuthor)
    issue_node_id: str | None = None
    issue_number: int | None = None
    html_url: str = ""
    is_private: bool = False
    in_reply_to_id: int | None = None


# --- Similarity / footnotes ---

class SentenceMatch(BaseModel):
    sentence: str = ""
    similarity: float = 0.0
    index: int = -1


class SimilarIssue(BaseModel):
    """A similarity candidate resolved against GitHub."""

    node_id: str
    title: str = ""
    number: int = 0
    url: str = ""
    body: str = ""
    owner: str = ""
    repo: str = ""
    similarity: int = 0  # percentage, 0..100
    score: float = 0.0
    most_similar_sentence: SentenceMatch = Field(default_factory=SentenceMatch)


class SimilarComment(BaseModel):
    node_id: str
    url: str = ""
    body: str = ""
    issue_number: int = 0
    owner: str = ""
    repo: str = ""
    similarity: int = 0
    score: float = 0.0
    most_similar_sentence: SentenceMatch = Field(default_factory=SentenceMatch)


class FootnoteMatch(BaseModel):
    """One footnote to place: the anchor sentence and its definition text."""

    sentence: str
    definition: str
    similarity: int = 0


# --- Queue ---

class QueueJob(BaseModel):
    table: QueueTable
    document_id: str
    attempt: int = Field(default=0, ge=0)
    run_at: int = 0  # epoch milliseconds


class QueueRunResult(BaseModel):
    processed: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0
    stopped_early: bool = False


class BackfillResult(BaseModel):
    issues_processed: int = 0
    comments_processed: int = 0
    stopped_early: bool = False


class ReprocessResult(BaseModel):
    processed: int = 0
    skipped: int = 0  # pull requests listed alongside issues
    failed: int = 0
    actions: dict[str, int] = Field(default_factory=dict)


# --- Contributor recommendation ---

class ContributorMatch(BaseModel):
    login: str
    matches: list[str] = []
    max_similarity: int = 0


class RecommendationResult(BaseModel):
    contributors: list[ContributorMatch] = []
    candidate_count: int = 0
