"""Tests for duplicate detection and the self-triggered edit check."""

from unittest.mock import MagicMock

import pytest

from text_vector_embeddings.models import (
    AuthorKind,
    DedupeAction,
    Document,
    DocumentType,
    EmbeddingStatus,
    FootnoteMatch,
    IssueAuthor,
    IssueMetadata,
    SentenceMatch,
    SimilarIssue,
    SimilarityCandidate,
)
from text_vector_embeddings.handlers.dedupe import build_dedupe_body, decide_and_apply_dedupe, is_self_triggered_edit
from text_vector_embeddings.text.footnotes import place_footnotes, strip_duplicate_footnotes
from text_vector_embeddings.text.markdown import append_plugin_update_comment, build_plugin_update_comment

BODY = "Application crashes at startup because config is missing"
OLD_NODE = {
    "title": "Build fails on startup",
    "number": 1,
    "url": "https://github.com/owner/repo/issues/1",
    "body": "Build fails on startup due to missing config",
    "state": "OPEN",
    "repository": {"name": "repo", "owner": {"login": "owner"}},
}
DEFINITION_97 = (
    "[^01^]: ⚠ 97% possible duplicate - "
    "[Build fails on startup](https://www.github.com/owner/repo/issues/1#1)"
)


def _issue(body=BODY, **kwargs):
    values = dict(
        owner="owner",
        repo="repo",
        number=2,
        node_id="I_new",
        title="Crash at startup",
        body=body,
        author=IssueAuthor(login="alice", id=101, kind=AuthorKind.HUMAN),
    )
    values.update(kwargs)
    return IssueMetadata(**values)


class TestSelfTriggeredEdit:
    def test_bot_rewrite_with_marker(self):
        before = (
            "Login fails with SSO. [^01^]\n\n"
            "[^01^]: ⚠ 80% possible duplicate - [SSO login broken](https://www.github.com/o/r/issues/1#1)"
        )
        marker = build_plugin_update_comment("2024-01-01T00:00:00Z", bot_name="tve-bot")
        after = append_plugin_update_comment(strip_duplicate_footnotes(before), marker, "tve-bot")
        assert is_self_triggered_edit(before, after, "tve-bot")

    def test_bot_adds_footnotes(self):
        matches = [FootnoteMatch(
            sentence="Plain body.",
            definition="⚠ 85% possible duplicate - [X](https://www.github.com/o/r/issues/3#3)",
            similarity=85,
        )]
        assert is_self_triggered_edit("Plain body.", place_footnotes("Plain body.", matches), "tve-bot")

    def test_whitespace_only_change(self):
        assert is_self_triggered_edit("Body\n\n\n\ntext  ", "Body\n\ntext", "tve-bot")

    def test_human_edit(self):
        assert not is_self_triggered_edit("Original text", "Original text with more detail", "tve-bot")

    def test_none_bodies(self):
        assert is_self_triggered_edit(None, "", "tve-bot")

    def test_backslash_title_close_is_stable(self):
        similar = SimilarIssue(
            node_id="I_1",
            title="Path C:\\dir\\",
            number=1,
            url="https://github.com/o/r/issues/1",
            owner="o",
            repo="r",
            similarity=97,
            score=0.97,
            most_similar_sentence=SentenceMatch(sentence="Build fails."),
        )
        body = "Build fails. Second sentence here."

        once = build_dedupe_body(body, [similar], DedupeAction.CLOSED, 0.95)
        twice = build_dedupe_body(strip_duplicate_footnotes(once), [similar], DedupeAction.CLOSED, 0.95)

        assert is_self_triggered_edit(body, once, "tve-bot")
        assert strip_duplicate_footnotes(once) == body
        assert twice == once
        assert twice.count(">[!CAUTION]") == 1


class TestDecideAndApplyDedupe:
    @pytest.fixture(autouse=True)
    def _setup(self, context):
        self.context = context
        self.context.store = MagicMock()
        self.context.github.get_issue_node.return_value = dict(OLD_NODE)

    def _candidates(self, *scores):
        self.context.store.search.return_value = [
            SimilarityCandidate(target_id="I_old", score=score) for score in scores
        ]

    @pytest.mark.asyncio
    async def test_closes_near_duplicate(self):
        self._candidates(0.97)

        action = await decide_and_apply_dedupe(self.context, _issue())

        assert action is DedupeAction.CLOSED
        call = self.context.github.update_issue.await_args
        assert call.args == ("owner", "repo", 2)
        assert call.kwargs["state"] == "closed"
        assert call.kwargs["state_reason"] == "not_planned"
        body = call.kwargs["body"]
        assert body.startswith(
            ">[!CAUTION]\n> This issue may be a duplicate of the following issues:\n"
            "> - [Build fails on startup](https://www.github.com/owner/repo/issues/1#1)\n\n"
        )
        assert f"{BODY} [^01^]" in body
        assert body.endswith(DEFINITION_97)

    @pytest.mark.asyncio
    async def test_search_arguments(self):
        self._candidates()

        await decide_and_apply_dedupe(self.context, _issue())

        self.context.embedder.embed.assert_awaited_once_with(f"Crash at startup{BODY}", input_type="query")
        kwargs = self.context.store.search.call_args.kwargs
        assert kwargs["threshold"] == 0.75
        assert kwargs["doc_types"] == (DocumentType.ISSUE,)
        assert kwargs["exclude_id"] == "I_new"
        assert kwargs["weights"].cosine_weight == 0.8

    @pytest.mark.asyncio
    async def test_warns_similar_issue(self):
        self._candidates(0.8)

        action = await decide_and_apply_dedupe(self.context, _issue())

        assert action is DedupeAction.WARNED
        call = self.context.github.update_issue.await_args
        assert "state" not in call.kwargs
        assert call.kwargs["body"] == (
            f"{BODY} [^01^]\n\n"
            "[^01^]: ⚠ 80% possible duplicate - "
            "[Build fails on startup](https://www.github.com/owner/repo/issues/1#1)"
        )

    @pytest.mark.asyncio
    async def test_warning_rerun_is_noop(self):
        self._candidates(0.8)
        await decide_and_apply_dedupe(self.context, _issue())
        warned_body = self.context.github.update_issue.await_args.kwargs["body"]
        self.context.github.update_issue.reset_mock()

        action = await decide_and_apply_dedupe(self.context, _issue(body=warned_body))

        assert action is DedupeAction.WARNED
        self.context.github.update_issue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_closed_rerun_is_noop(self):
        self._candidates(0.97)
        await decide_and_apply_dedupe(self.context, _issue())
        closed_body = self.context.github.update_issue.await_args.kwargs["body"]
        self.context.github.update_issue.reset_mock()

        closed = _issue(body=closed_body, state="closed", state_reason="not_planned")
        action = await decide_and_apply_dedupe(self.context, closed)

        assert action is DedupeAction.CLOSED
        self.context.github.update_issue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_below_threshold_does_nothing(self):
        self._candidates()

        action = await decide_and_apply_dedupe(self.context, _issue())

        assert action is DedupeAction.NONE
        self.context.github.update_issue.assert_not_awaited()
        self.context.github.get_issue_node.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_footnotes_removed(self):
        self._candidates()
        stale = f"{BODY} [^01^]\n\n{DEFINITION_97}"

        action = await decide_and_apply_dedupe(self.context, _issue(body=stale))

        assert action is DedupeAction.NONE
        self.context.github.update_issue.assert_awaited_once_with("owner", "repo", 2, body=BODY)

    @pytest.mark.asyncio
    async def test_out_of_scope_candidate_ignored(self):
        self._candidates(0.97)
        self.context.github.get_issue_node.return_value = dict(
            OLD_NODE, repository={"name": "elsewhere", "owner": {"login": "owner"}}
        )

        action = await decide_and_apply_dedupe(self.context, _issue())

        assert action is DedupeAction.NONE
        self.context.github.update_issue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unresolvable_candidate_skipped(self):
        self._candidates(0.97)
        self.context.github.get_issue_node.side_effect = RuntimeError("GraphQL down")

        action = await decide_and_apply_dedupe(self.context, _issue())

        assert action is DedupeAction.NONE
        self.context.github.update_issue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_body(self):
        action = await decide_and_apply_dedupe(self.context, _issue(body=None))

        assert action is DedupeAction.NONE
        self.context.embedder.embed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_keeps_update_comment(self, make_settings):
        self.context.settings = make_settings(keep_update_comment=True)
        self._candidates(0.8)
        marker = build_plugin_update_comment("2024-01-01T00:00:00Z", bot_name="tve-bot")

        await decide_and_apply_dedupe(self.context, _issue(body=f"{BODY}\n\n{marker}"))

        body = self.context.github.update_issue.await_args.kwargs["body"]
        assert body.endswith(f"\n\n{marker}")
        assert body.count("tve-bot update") == 1

    @pytest.mark.asyncio
    async def test_update_failure_propagates(self):
        self._candidates(0.8)
        self.context.github.update_issue.side_effect = RuntimeError("403")

        with pytest.raises(RuntimeError):
            await decide_and_apply_dedupe(self.context, _issue())


class TestThresholdOrdering:
    @pytest.fixture(autouse=True)
    def _setup(self, context, make_settings):
        self.context = context
        self.context.settings = make_settings(dedupe_warning_threshold=0.9, dedupe_match_threshold=0.7)
        self.context.github.get_issue_node.return_value = dict(OLD_NODE)
        # Blended match score against the [1, 0, 0] query is about 0.7625
        self.context.store.create_document(Document(
            id="I_old",
            kind=DocumentType.ISSUE,
            markdown=OLD_NODE["body"],
            embedding=[0.8, 0.6, 0.0],
            embedding_status=EmbeddingStatus.READY,
        ))

    @pytest.mark.asyncio
    async def test_closes_between_match_and_warning(self):
        action = await decide_and_apply_dedupe(self.context, _issue())

        assert action is DedupeAction.CLOSED
        call = self.context.github.update_issue.await_args
        assert call.kwargs["state"] == "closed"
        assert call.kwargs["state_reason"] == "not_planned"
        assert "76% possible duplicate" in call.kwargs["body"]
        assert call.kwargs["body"].startswith(">[!CAUTION]")

    @pytest.mark.asyncio
    async def test_below_both_thresholds(self, make_settings):
        self.context.settings = make_settings(dedupe_warning_threshold=0.9, dedupe_match_threshold=0.8)

        action = await decide_and_apply_dedupe(self.context, _issue())

        assert action is DedupeAction.NONE
        self.context.github.update_issue.assert_not_awaited()
