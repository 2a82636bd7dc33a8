"""Threshold and scope policy deciding what to do with similarity results."""

from __future__ import annotations

from collections.abc import Sequence

from text_vector_embeddings.config import BotSettings
from text_vector_embeddings.models import DedupeAction, Scope, SearchWeights


def validate_threshold(value: float, name: str = "threshold") -> float:
    """Raise ValueError unless `value` is a number in [0, 1]."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got {value!r}")
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")
    return float(value)


def resolve_scope(scope: str | Scope) -> Scope:
    """Parse a scope value; anything but global/org/repo is a ValueError."""
    try:
        return Scope(scope)
    except ValueError:
        raise ValueError(f"Invalid scope {scope!r}; expected one of global, org, repo") from None


def matches_scope(
    scope: str | Scope,
    owner: str,
    candidate_owner: str,
    repo: str,
    candidate_repo: str,
) -> bool:
    """repo: same org and repo; org: same org; global: anything."""
    resolved = resolve_scope(scope)
    if resolved is Scope.GLOBAL:
        return True
    if resolved is Scope.ORG:
        return owner == candidate_owner
    return owner == candidate_owner and repo == candidate_repo


def filter_by_scope(
    items: list,
    scope: str | Scope,
    owner: str,
    repo: str,
) -> list:
    """Keep items (anything with owner and repo) visible from owner/repo under `scope`."""
    resolved = resolve_scope(scope)
    return [item for item in items if matches_scope(resolved, owner, item.owner, repo, item.repo)]


def decide_dedupe_action(
    scores: Sequence[float],
    warning_threshold: float,
    match_threshold: float,
) -> DedupeAction:
    """Pick the dedupe action for a set of candidate scores.

    Closing wins over warning whenever the best score clears the match
    threshold, regardless of how the two thresholds are ordered.
    """
    warning_threshold = validate_threshold(warning_threshold, "dedupe_warning_threshold")
    match_threshold = validate_threshold(match_threshold, "dedupe_match_threshold")

    if not scores:
        return DedupeAction.NONE

    top = max(scores)
    if top >= match_threshold:
        return DedupeAction.CLOSED
    if top >= warning_threshold:
        return DedupeAction.WARNED
    return DedupeAction.NONE


def effective_job_matching_threshold(settings: BotSettings, has_requested_users: bool = False) -> float:
    """Job matching threshold, forced to 0 for always-recommend or requested users."""
    if has_requested_users or settings.always_recommend > 0:
        return 0.0
    return validate_threshold(settings.job_matching_threshold, "job_matching_threshold")


def match_weights(settings: BotSettings) -> SearchWeights:
    """Weights for duplicate-closing and job-matching queries."""
    return SearchWeights(cosine_weight=settings.match_cosine_weight, l2_weight=settings.match_l2_weight)


def annotate_weights(settings: BotSettings) -> SearchWeights:
    """Weights for annotate and general queries."""
    return SearchWeights(cosine_weight=settings.annotate_cosine_weight, l2_weight=settings.annotate_l2_weight)
