"""Collaborators shared by every event handler."""

from __future__ import annotations

from dataclasses import dataclass

from text_vector_embeddings.config import BotSettings
from text_vector_embeddings.github.client import GitHubClient
from text_vector_embeddings.queue.embedding_queue import EmbeddingQueue
from text_vector_embeddings.store.document_store import DocumentStore


@dataclass
class PluginContext:
    """Settings plus the store, queue, embedder and GitHub client for one run."""
    settings: BotSettings
    store: DocumentStore
    queue: EmbeddingQueue
    embedder: object  # anything with `async embed(text, input_type=...)`
    github: GitHubClient
