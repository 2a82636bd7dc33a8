"""Sentence segmentation and edit-distance similarity for short GitHub text."""

from __future__ import annotations

import re
from collections.abc import Iterator

from text_vector_embeddings.models import SentenceMatch

# A sentence ends at . ! or ? followed by whitespace or end of text, optionally
# closed by a quote. Terminators followed by anything else (abbreviations,
# version numbers, URLs) stay inside the sentence.
SENTENCE_PATTERN = re.compile(
    r"""[^.!?\s][^.!?]*(?:[.!?](?!['"]?\s|\Z)[^.!?]*)*[.!?]?['"]?(?=\s|\Z)"""
)


class SentenceSequence:
    """Lazy, restartable iterable over the trimmed sentences of a text."""

    def __init__(self, text: str):
        self.text = text or ""

    def __iter__(self) -> Iterator[str]:
        for match in SENTENCE_PATTERN.finditer(self.text):
            sentence = match.group(0).strip()
            if sentence:
                yield sentence


def split_sentences(text: str) -> SentenceSequence:
    """Split text into sentences in document order."""
    return SentenceSequence(text)


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance via a (len(a)+1) x (len(b)+1) DP matrix."""
    rows = len(a) + 1
    cols = len(b) + 1
    matrix = [[0] * cols for _ in range(rows)]

    for i in range(rows):
        matrix[i][0] = i
    for j in range(cols):
        matrix[0][j] = j

    for i in range(1, rows):
        for j in range(1, cols):
            if a[i - 1] == b[j - 1]:
                matrix[i][j] = matrix[i - 1][j - 1]
            else:
                matrix[i][j] = 1 + min(
                    matrix[i - 1][j],
                    matrix[i][j - 1],
                    matrix[i - 1][j - 1],
                )

    return matrix[rows - 1][cols - 1]


def normalized_similarity(a: str, b: str) -> float:
    """1 - edit_distance / max length; 0 when either input is empty."""
    if not a or not b:
        return 0.0
    return 1 - edit_distance(a, b) / max(len(a), len(b))


def find_most_similar_sentence(content: str, other_content: str) -> SentenceMatch:
    """Find the sentence in `content` closest to any sentence of `other_content`.

    Returns an empty SentenceMatch (index -1) when nothing aligns.
    """
    other_sentences = list(split_sentences(other_content))
    best = SentenceMatch()
    if not other_sentences:
        return best

    for index, sentence in enumerate(split_sentences(content)):
        score = max(normalized_similarity(sentence, other) for other in other_sentences)
        if score > best.similarity:
            best = SentenceMatch(sentence=sentence, similarity=score, index=index)

    return best
