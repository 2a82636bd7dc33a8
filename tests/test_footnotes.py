"""Tests for footnote placement, numbering and removal."""

from text_vector_embeddings.models import FootnoteMatch, SimilarComment, SimilarIssue
from text_vector_embeddings.text.footnotes import (
    build_caution_block,
    comment_annotation,
    duplicate_definition,
    escape_link_text,
    format_footnote_ref,
    github_link,
    has_annotate_footnotes,
    has_duplicate_footnotes,
    highest_footnote_index,
    issue_annotation,
    place_footnotes,
    prepend_caution_block,
    remove_annotate_footnotes,
    remove_caution_messages,
    strip_duplicate_footnotes,
)


def _issue(number=1, title="Old issue", similarity=97, score=0.97):
    return SimilarIssue(
        node_id=f"I_{number}",
        title=title,
        number=number,
        url=f"https://github.com/o/r/issues/{number}",
        owner="o",
        repo="r",
        similarity=similarity,
        score=score,
    )


def _match(sentence, issue):
    return FootnoteMatch(sentence=sentence, definition=duplicate_definition(issue), similarity=issue.similarity)


class TestFormatting:
    def test_ref_is_zero_padded(self):
        assert format_footnote_ref(1) == "[^01^]"
        assert format_footnote_ref(12) == "[^12^]"

    def test_github_link_uses_www(self):
        assert github_link("https://github.com/o/r/issues/1") == "https://www.github.com/o/r/issues/1"
        assert github_link("https://www.github.com/o/r") == "https://www.github.com/o/r"

    def test_escape_link_text(self):
        assert escape_link_text("[bug] crash") == "\\[bug\\] crash"

    def test_escape_trailing_backslash(self):
        assert escape_link_text("Path C:\\dir\\") == "Path C:\\\\dir\\\\"

    def test_duplicate_definition(self):
        assert duplicate_definition(_issue()) == (
            "⚠ 97% possible duplicate - [Old issue](https://www.github.com/o/r/issues/1#1)"
        )

    def test_annotations(self):
        assert issue_annotation(_issue(similarity=80)) == (
            "80% similar to issue: [Old issue](https://www.github.com/o/r/issues/1#1)"
        )
        comment = SimilarComment(
            node_id="IC_1",
            url="https://github.com/o/r/issues/5#issuecomment-9",
            issue_number=5,
            similarity=70,
        )
        assert comment_annotation(comment) == (
            "70% similar to comment: [#5 (comment)](https://www.github.com/o/r/issues/5#issuecomment-9)"
        )


class TestPlaceFootnotes:
    def test_exact_sentence(self):
        body = "The build fails on startup. Other text."
        result = place_footnotes(body, [_match("The build fails on startup.", _issue())])
        assert result == (
            "The build fails on startup. [^01^] Other text.\n\n"
            "[^01^]: ⚠ 97% possible duplicate - [Old issue](https://www.github.com/o/r/issues/1#1)"
        )

    def test_numbering_continues_after_existing_refs(self):
        body = "See note [^03^] here.\n\n[^03^]: user footnote"
        assert highest_footnote_index(body) == 3
        result = place_footnotes(body, [_match("See note", _issue())])
        assert "See note [^04^]" in result
        assert result.endswith("[^04^]: ⚠ 97% possible duplicate - [Old issue](https://www.github.com/o/r/issues/1#1)")

    def test_near_sentence_line(self):
        body = "- The build is failing on startup\n- other"
        result = place_footnotes(body, [_match("The build fails on startup.", _issue())])
        assert "- The build is failing on startup [^01^]\n- other" in result

    def test_orphan_goes_to_first_line(self):
        body = "Completely unrelated words here\n\nSecond paragraph"
        result = place_footnotes(body, [_match("zzzz qqqq", _issue())])
        assert result.startswith("Completely unrelated words here [^01^]\n")

    def test_empty_sentence_is_orphan(self):
        result = place_footnotes("Only line", [_match("", _issue())])
        assert result.startswith("Only line [^01^]")

    def test_fenced_occurrence_skipped(self):
        body = "```\nThe build fails on startup.\n```\nThe build fails on startup."
        result = place_footnotes(body, [_match("The build fails on startup.", _issue())])
        assert result.startswith("```\nThe build fails on startup.\n```\nThe build fails on startup. [^01^]")
        assert result.count("[^01^]") == 2

    def test_comment_occurrence_skipped(self):
        body = "<!-- The build fails on startup. -->\nThe build fails on startup."
        result = place_footnotes(body, [_match("The build fails on startup.", _issue())])
        assert result.startswith("<!-- The build fails on startup. -->\nThe build fails on startup. [^01^]")
        assert result.count("[^01^]") == 2

    def test_definitions_ascending_by_similarity(self):
        body = "First problem here. Second problem here."
        strong = _issue(number=1, title="Strong", similarity=95, score=0.95)
        weak = _issue(number=2, title="Weak", similarity=80, score=0.80)
        result = place_footnotes(body, [
            _match("First problem here.", strong),
            _match("Second problem here.", weak),
        ])
        assert result.index("[^01^]: ⚠ 80%") < result.index("[^02^]: ⚠ 95%")
        assert "Second problem here. [^01^]" in result
        assert "First problem here. [^02^]" in result

    def test_unsorted_keeps_given_order(self):
        body = "First problem here. Second problem here."
        strong = _issue(number=1, title="Strong", similarity=95, score=0.95)
        weak = _issue(number=2, title="Weak", similarity=80, score=0.80)
        result = place_footnotes(body, [
            _match("First problem here.", strong),
            _match("Second problem here.", weak),
        ], sort=False)
        assert "[^01^]: ⚠ 95%" in result
        assert "[^02^]: ⚠ 80%" in result

    def test_no_matches_returns_body(self):
        assert place_footnotes("Body", []) == "Body"

    def test_idempotent_after_strip(self):
        body = "The build fails on startup. Other text."
        matches = [_match("The build fails on startup.", _issue())]
        first = place_footnotes(strip_duplicate_footnotes(body), matches)
        second = place_footnotes(strip_duplicate_footnotes(first), matches)
        assert first == second


class TestRemoval:
    def test_strip_restores_body(self):
        body = "The build fails on startup. Other text."
        placed = place_footnotes(body, [_match("The build fails on startup.", _issue())])
        assert has_duplicate_footnotes(placed)
        stripped = strip_duplicate_footnotes(placed)
        assert stripped == body
        assert not has_duplicate_footnotes(stripped)

    def test_foreign_footnotes_kept(self):
        body = "Keep [^01^]\n\n[^01^]: user's own footnote"
        assert strip_duplicate_footnotes(body) == body
        assert remove_annotate_footnotes(body) == body

    def test_remove_annotate_footnotes(self):
        body = (
            "Text here. [^01^]\n\n"
            "[^01^]: 80% similar to issue: [T](https://www.github.com/o/r/issues/2#2)"
        )
        assert has_annotate_footnotes(body)
        assert not has_duplicate_footnotes(body)
        assert remove_annotate_footnotes(body) == "Text here."

    def test_annotate_removal_leaves_duplicate_footnotes(self):
        body = "Text here. [^01^]\n\n[^01^]: ⚠ 90% possible duplicate - [T](https://www.github.com/o/r/issues/2#2)"
        assert remove_annotate_footnotes(body) == body

    def test_empty(self):
        assert strip_duplicate_footnotes(None) == ""
        assert remove_annotate_footnotes("") == ""


class TestCautionBlock:
    def test_build_sorted_by_score(self):
        block = build_caution_block([
            _issue(number=1, title="Lower", score=0.96),
            _issue(number=2, title="Higher", score=0.99),
        ])
        lines = block.split("\n")
        assert lines[0] == ">[!CAUTION]"
        assert lines[1] == "> This issue may be a duplicate of the following issues:"
        assert lines[2] == "> - [Higher](https://www.github.com/o/r/issues/2#2)"
        assert lines[3] == "> - [Lower](https://www.github.com/o/r/issues/1#1)"

    def test_prepend(self):
        result = prepend_caution_block("Body", [_issue()])
        assert result == (
            ">[!CAUTION]\n"
            "> This issue may be a duplicate of the following issues:\n"
            "> - [Old issue](https://www.github.com/o/r/issues/1#1)\n\n"
            "Body"
        )

    def test_prepend_replaces_existing_block(self):
        once = prepend_caution_block("Body", [_issue()])
        twice = prepend_caution_block(once, [_issue()])
        assert twice == once

    def test_prepend_without_issues(self):
        assert prepend_caution_block("Body", []) == "Body"

    def test_remove(self):
        assert remove_caution_messages(prepend_caution_block("Body", [_issue()])) == "Body"

    def test_escaped_title_removed(self):
        body = prepend_caution_block("Body", [_issue(title="[bug] crash")])
        assert remove_caution_messages(body) == "Body"

    def test_trailing_backslash_title_removed(self):
        body = prepend_caution_block("Body", [_issue(title="Path C:\\dir\\")])
        assert remove_caution_messages(body) == "Body"

    def test_strip_removes_caution_and_footnotes(self):
        body = "The build fails on startup."
        placed = place_footnotes(body, [_match("The build fails on startup.", _issue())])
        closed = prepend_caution_block(placed, [_issue()])
        assert strip_duplicate_footnotes(closed) == body
