"""Fence-aware markdown helpers: HTML comments, bot update markers, cleanup."""

from __future__ import annotations

import re
from typing import NamedTuple

from text_vector_embeddings.config import bot_settings

HTML_COMMENT_PATTERN = re.compile(r"<!--[\s\S]*?-->")
CODE_FENCE_PATTERN = re.compile(r"^\s*(```|~~~)")
LINE_SPLIT_PATTERN = re.compile(r"(\r?\n)")
COMMAND_PATTERN = re.compile(r"^/[A-Za-z][\w-]*(?:\s|$)")


class MarkdownLine(NamedTuple):
    text: str
    in_fence: bool  # fence delimiters count as part of the fenced block
    is_blank: bool
    ending: str = ""  # "\n", "\r\n" or "" on the last line


class UpdateCommentStrip(NamedTuple):
    cleaned: str
    latest_comment: str | None
    match_count: int


def split_lines(markdown: str) -> list[tuple[str, str]]:
    """(text, line ending) pairs; the last line has an empty ending."""
    parts = LINE_SPLIT_PATTERN.split(markdown)
    return list(zip(parts[0::2], parts[1::2] + [""]))


def tokenize_lines(markdown: str) -> list[MarkdownLine]:
    """Tokenize markdown into lines tagged with fenced-code membership.

    A fence opens on a line starting with ``` or ~~~ and closes on the next
    line starting with the same token. An unclosed fence runs to the end.
    """
    tokens: list[MarkdownLine] = []
    fence_token = ""

    for line, ending in split_lines(markdown or ""):
        fence_match = CODE_FENCE_PATTERN.match(line)
        if fence_match:
            token = fence_match.group(1)
            if not fence_token:
                fence_token = token
            elif token == fence_token:
                tokens.append(MarkdownLine(line, True, False, ending))
                fence_token = ""
                continue
            tokens.append(MarkdownLine(line, True, False, ending))
            continue
        tokens.append(MarkdownLine(line, bool(fence_token), line.strip() == "", ending))

    return tokens


def strip_html_comments(markdown: str | None) -> str | None:
    """Remove <!-- --> comments outside fenced code blocks.

    Fenced content passes through byte-for-byte. Comments may span lines
    within a run of non-fenced lines.
    """
    if not markdown:
        return markdown

    output: list[str] = []
    chunk: list[str] = []
    chunk_in_fence = False

    def flush() -> None:
        if not chunk:
            return
        text = "".join(chunk)
        output.append(text if chunk_in_fence else HTML_COMMENT_PATTERN.sub("", text))
        chunk.clear()

    for line in tokenize_lines(markdown):
        if line.in_fence != chunk_in_fence:
            flush()
            chunk_in_fence = line.in_fence
        chunk.append(line.text + line.ending)
    flush()

    return "".join(output)


def _update_comment_pattern(bot_name: str = "") -> re.Pattern[str]:
    name = bot_name or bot_settings.bot_name
    return re.compile(rf"<!--\s*{re.escape(name)}\s+update\s+[^\n]*?-->")


def build_plugin_update_comment(timestamp: str, bot_name: str = "") -> str:
    """Marker comment recording when the bot last rewrote a body."""
    return f"<!-- {bot_name or bot_settings.bot_name} update {timestamp} -->"


def strip_plugin_update_comments(markdown: str | None, bot_name: str = "") -> UpdateCommentStrip:
    """Remove the bot's update marker comments.

    Returns the cleaned body, the last marker seen (for re-appending), and how
    many markers were found (0 means the bot never touched this body).
    Blank lines left around a removed marker line are collapsed.
    """
    if not markdown:
        return UpdateCommentStrip(markdown or "", None, 0)

    pattern = _update_comment_pattern(bot_name)
    output: list[str] = []
    latest_comment: str | None = None
    match_count = 0
    remove_next_blank = False

    for line in tokenize_lines(markdown):
        if line.in_fence:
            remove_next_blank = False
            output.append(line.text)
            continue

        matches = pattern.findall(line.text)
        if not matches:
            if remove_next_blank and line.is_blank:
                remove_next_blank = False
                continue
            remove_next_blank = False
            output.append(line.text.rstrip(" \t"))
            continue

        match_count += len(matches)
        latest_comment = matches[-1]

        cleaned_line = pattern.sub("", line.text)
        if line.text.lstrip().startswith("<!--"):
            cleaned_line = cleaned_line.lstrip()
        cleaned_line = cleaned_line.rstrip(" \t")

        if not cleaned_line.strip():
            while output and not output[-1].strip():
                output.pop()
            remove_next_blank = True
            continue

        remove_next_blank = False
        output.append(cleaned_line)

    return UpdateCommentStrip("\n".join(output), latest_comment, match_count)


def append_plugin_update_comment(markdown: str | None, comment: str, bot_name: str = "") -> str:
    """Replace any previous update markers with `comment` at the end of the body."""
    cleaned = strip_plugin_update_comments(markdown, bot_name).cleaned.rstrip()
    separator = "\n\n" if cleaned else ""
    return f"{cleaned}{separator}{comment}"


def normalize_whitespace(markdown: str | None) -> str:
    text = re.sub(r"[ \t]+\n", "\n", markdown or "")
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def clean_markdown(markdown: str | None) -> str:
    """Embedding-ready text: HTML comments removed, surrounding space trimmed."""
    if not markdown:
        return ""
    return (strip_html_comments(markdown) or "").strip()


def is_too_short(content: str, min_length: int) -> bool:
    return len(content) < min_length


def is_command_like_content(content: str | None) -> bool:
    """True when the text is a slash command such as `/annotate` or `/help`."""
    if not content:
        return False
    return bool(COMMAND_PATTERN.match(content.strip()))


_PLAINTEXT_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"!\[([^\]]*)\]\([^)]*\)"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\([^)]*\)"), r"\1"),
    (re.compile(r"<[^>\n]+>"), ""),
    (re.compile(r"^\s{0,3}#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"^\s*>\s?", re.MULTILINE), ""),
    (re.compile(r"^\s*(?:[-*+]|\d+\.)\s+", re.MULTILINE), ""),
    (re.compile(r"(\*\*|__|~~)(.+?)\1"), r"\2"),
    (re.compile(r"(?<![\w*])[*_](\S(?:.*?\S)?)[*_](?![\w*])"), r"\1"),
    (re.compile(r"`([^`\n]+)`"), r"\1"),
]


def markdown_to_plaintext(markdown: str | None) -> str | None:
    """Rough plaintext rendering used when no usable markdown remains."""
    if not markdown:
        return markdown

    lines = [line.text for line in tokenize_lines(strip_html_comments(markdown) or "")
             if not CODE_FENCE_PATTERN.match(line.text)]
    text = "\n".join(lines)
    for pattern, replacement in _PLAINTEXT_RULES:
        text = pattern.sub(replacement, text)
    return normalize_whitespace(text)
