"""Footnote placement and removal for issue and comment bodies.

References look like ``[^01^]`` and are paired with a definition line
``[^01^]: <text>`` appended at the end of the body. Placement works on a
line-tokenized view of the markdown so fenced code is never rewritten, and
removal undoes placement exactly, which keeps repeated runs idempotent.
"""

from __future__ import annotations

import re
from typing import NamedTuple

from text_vector_embeddings.models import FootnoteMatch, SimilarComment, SimilarIssue
from text_vector_embeddings.text.markdown import HTML_COMMENT_PATTERN, tokenize_lines
from text_vector_embeddings.text.similarity import normalized_similarity

FOOTNOTE_REF_PATTERN = re.compile(r"\[\^(\d+)\^\]")
DUPLICATE_DEFINITION_PATTERN = re.compile(r"^\s*(\[\^\d+\^\]): ⚠ \d+% possible duplicate - \S.*$")
ANNOTATE_DEFINITION_PATTERN = re.compile(r"^\s*(\[\^\d+\^\]): \d+% similar to (?:issue|comment): \S.*$")
CAUTION_HEADER = ">[!CAUTION]\n> This issue may be a duplicate of the following issues:"
CAUTION_PATTERN = re.compile(
    r"\n*>\[!CAUTION\]\n> This issue may be a duplicate of the following issues:\n"
    r"(?:> - \[(?:\\.|[^\]\\])*\]\([^)\s]*\)(?:\n|\Z))+\n*"
)
CODE_BLOCK_END_PATTERN = re.compile(r"```\s*$")
LIST_PREFIX_PATTERN = re.compile(r"^\s*(?:[-*+]|\d+\.)\s+")
MIN_PROXIMITY_SIMILARITY = 0.6


class Insertion(NamedTuple):
    updated: str
    inserted: bool


# --- Formatting ---

def format_footnote_ref(index: int) -> str:
    return f"[^{index:02d}^]"


def github_link(url: str) -> str:
    """Point links at www.github.com so GitHub does not cross-reference them."""
    return re.sub(r"^https?://github\.com", "https://www.github.com", url)


def escape_link_text(text: str) -> str:
    # Backslashes first, or a trailing "\" would escape the closing bracket.
    return text.replace("\\", "\\\\").replace("[", "\\[").replace("]", "\\]")


def duplicate_definition(issue: SimilarIssue) -> str:
    return (
        f"⚠ {issue.similarity}% possible duplicate - "
        f"[{escape_link_text(issue.title)}]({github_link(issue.url)}#{issue.number})"
    )


def issue_annotation(issue: SimilarIssue) -> str:
    return (
        f"{issue.similarity}% similar to issue: "
        f"[{escape_link_text(issue.title)}]({github_link(issue.url)}#{issue.number})"
    )


def comment_annotation(comment: SimilarComment) -> str:
    return (
        f"{comment.similarity}% similar to comment: "
        f"[#{comment.issue_number} (comment)]({github_link(comment.url)})"
    )


def build_caution_block(issues: list[SimilarIssue]) -> str:
    """Callout listing likely duplicates, most similar first."""
    lines = [CAUTION_HEADER]
    for issue in sorted(issues, key=lambda i: i.score, reverse=True):
        lines.append(f"> - [{escape_link_text(issue.title)}]({github_link(issue.url)}#{issue.number})")
    return "\n".join(lines)


def prepend_caution_block(markdown: str, issues: list[SimilarIssue]) -> str:
    if not issues:
        return markdown
    body = remove_caution_messages(markdown).lstrip("\n")
    block = build_caution_block(issues)
    return f"{block}\n\n{body}" if body else block


# --- Scanning ---

def _normalize_newlines(markdown: str) -> str:
    return markdown.replace("\r\n", "\n")


def _fenced_spans(markdown: str) -> list[tuple[int, int]]:
    """Character spans of lines belonging to fenced code blocks."""
    spans: list[tuple[int, int]] = []
    position = 0
    for line in tokenize_lines(markdown):
        end = position + len(line.text)
        if line.in_fence:
            spans.append((position, end))
        position = end + 1
    return spans


def _is_fenced(position: int, spans: list[tuple[int, int]]) -> bool:
    return any(start <= position <= end for start, end in spans)


def _comment_spans(markdown: str) -> list[tuple[int, int]]:
    return [match.span() for match in HTML_COMMENT_PATTERN.finditer(markdown)]


def _in_comment(position: int, spans: list[tuple[int, int]]) -> bool:
    return any(start <= position < end for start, end in spans)


def highest_footnote_index(markdown: str) -> int:
    """Highest N among [^N^] references already in the body, 0 if none."""
    return max((int(m.group(1)) for m in FOOTNOTE_REF_PATTERN.finditer(markdown or "")), default=0)


def has_duplicate_footnotes(markdown: str | None) -> bool:
    return _has_definitions(markdown, DUPLICATE_DEFINITION_PATTERN)


def has_annotate_footnotes(markdown: str | None) -> bool:
    return _has_definitions(markdown, ANNOTATE_DEFINITION_PATTERN)


def _has_definitions(markdown: str | None, pattern: re.Pattern[str]) -> bool:
    if not markdown:
        return False
    return any(
        not line.in_fence and pattern.match(line.text)
        for line in tokenize_lines(_normalize_newlines(markdown))
    )


# --- Insertion ---

def insert_footnote_ref_exact(markdown: str, sentence: str, footnote_ref: str) -> Insertion:
    """Append the reference after every exact occurrence of `sentence`.

    Occurrences inside fenced code or HTML comments are left alone. A
    sentence ending on a code fence gets the reference on the next line
    instead of the fence line.
    """
    if not sentence.strip():
        return Insertion(markdown, False)

    spans = _fenced_spans(markdown)
    comments = _comment_spans(markdown)
    pieces: list[str] = []
    cursor = 0
    for match in re.finditer(re.escape(sentence), markdown):
        if _is_fenced(match.start(), spans) or _in_comment(match.start(), comments):
            continue
        separator = "\n" if CODE_BLOCK_END_PATTERN.search(match.group(0)) else " "
        pieces.append(markdown[cursor:match.end()])
        pieces.append(f"{separator}{footnote_ref}")
        cursor = match.end()

    if not pieces:
        return Insertion(markdown, False)
    pieces.append(markdown[cursor:])
    return Insertion("".join(pieces), True)


def _normalize_line(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def _strip_list_prefix(value: str) -> str:
    return LIST_PREFIX_PATTERN.sub("", value).strip()


def insert_footnote_ref_near_sentence(
    markdown: str,
    sentence: str,
    footnote_ref: str,
    min_similarity: float = MIN_PROXIMITY_SIMILARITY,
) -> Insertion:
    """Append the reference to the line most similar to `sentence`.

    Fenced lines, blank lines, HTML comment lines and lines already carrying
    the reference are skipped. Nothing is inserted below `min_similarity`.
    """
    target = _normalize_line(_strip_list_prefix(sentence))
    if not target:
        return Insertion(markdown, False)

    lines = tokenize_lines(markdown)
    best_index = -1
    best_score = 0.0

    for index, line in enumerate(lines):
        if line.in_fence or line.is_blank:
            continue
        trimmed = line.text.strip()
        if trimmed.startswith("<!--") or footnote_ref in trimmed:
            continue
        candidate = _normalize_line(_strip_list_prefix(trimmed))
        if not candidate:
            continue
        score = normalized_similarity(target, candidate)
        if score > best_score:
            best_score = score
            best_index = index

    if best_index < 0 or best_score < min_similarity:
        return Insertion(markdown, False)

    texts = [line.text for line in lines]
    suffix = "" if texts[best_index].endswith(" ") else " "
    texts[best_index] = f"{texts[best_index]}{suffix}{footnote_ref}"
    return Insertion("\n".join(texts), True)


def append_footnote_refs_to_first_line(markdown: str, refs: list[str]) -> str:
    """Attach references to the first non-blank, non-comment, unfenced line."""
    if not refs:
        return markdown

    joined = " ".join(refs)
    lines = tokenize_lines(markdown)
    for index, line in enumerate(lines):
        if line.in_fence or line.is_blank or line.text.lstrip().startswith("<!--"):
            continue
        texts = [t.text for t in lines]
        suffix = "" if line.text.endswith(" ") else " "
        texts[index] = f"{line.text}{suffix}{joined}"
        return "\n".join(texts)

    trimmed = markdown.rstrip()
    return f"{trimmed} {joined}" if trimmed else joined


def place_footnotes(markdown: str, matches: list[FootnoteMatch], sort: bool = True) -> str:
    """Insert one numbered footnote per match and append the definitions.

    Numbering continues after the highest existing reference. With `sort`,
    definitions are ordered by ascending similarity so the strongest match
    ends up last. Every reference lands somewhere: exact sentence match,
    then the most similar line, then the first content line.
    """
    body = _normalize_newlines(markdown or "")
    if not matches:
        return body

    ordered = sorted(matches, key=lambda m: m.similarity) if sort else list(matches)
    start = highest_footnote_index(body)
    definitions: list[str] = []
    orphans: list[str] = []

    for offset, match in enumerate(ordered, start=1):
        ref = format_footnote_ref(start + offset)
        body, inserted = insert_footnote_ref_exact(body, match.sentence, ref)
        if not inserted:
            body, inserted = insert_footnote_ref_near_sentence(body, match.sentence, ref)
        if not inserted:
            orphans.append(ref)
        definitions.append(f"{ref}: {match.definition}")

    body = append_footnote_refs_to_first_line(body, orphans)
    return body.rstrip() + "\n\n" + "\n\n".join(definitions)


# --- Removal ---

def _remove_footnotes(content: str, definition_pattern: re.Pattern[str]) -> str:
    text = _normalize_newlines(content)
    kept: list[str] = []
    refs: list[str] = []
    skip_blank = False

    for line in tokenize_lines(text):
        if not line.in_fence:
            definition = definition_pattern.match(line.text)
            if definition:
                refs.append(definition.group(1))
                skip_blank = True
                continue
            if skip_blank and line.is_blank:
                skip_blank = False
                continue
        skip_blank = False
        kept.append(line.text)

    if not refs:
        return content

    text = "\n".join(kept)
    ref_pattern = re.compile(r"(?: |\n)?(" + "|".join(re.escape(r) for r in dict.fromkeys(refs)) + ")")
    spans = _fenced_spans(text)
    pieces: list[str] = []
    cursor = 0
    for match in ref_pattern.finditer(text):
        if _is_fenced(match.start(1), spans):
            continue
        pieces.append(text[cursor:match.start()])
        cursor = match.end()
    pieces.append(text[cursor:])
    return "".join(pieces).rstrip()


def remove_caution_messages(content: str) -> str:
    def _replace(match: re.Match[str]) -> str:
        at_edge = match.start() == 0 or match.end() == len(match.string)
        return "" if at_edge else "\n\n"

    return CAUTION_PATTERN.sub(_replace, _normalize_newlines(content))


def strip_duplicate_footnotes(content: str | None) -> str:
    """Remove "possible duplicate" footnotes and the duplicate caution callout."""
    if not content:
        return content or ""
    return remove_caution_messages(_remove_footnotes(content, DUPLICATE_DEFINITION_PATTERN))


def remove_annotate_footnotes(content: str | None) -> str:
    """Remove footnotes previously added by the annotate command."""
    if not content:
        return content or ""
    return _remove_footnotes(content, ANNOTATE_DEFINITION_PATTERN)
