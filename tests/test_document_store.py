"""Tests for the SQLite document store."""

import pytest

from text_vector_embeddings.models import Document, DocumentType, EmbeddingStatus, SearchWeights
from text_vector_embeddings.store.document_store import DocumentStore

WEIGHTS = SearchWeights(cosine_weight=0.8, l2_weight=0.2)


def _doc(doc_id, kind=DocumentType.ISSUE, markdown="Some markdown body text", **kwargs):
    return Document(id=doc_id, kind=kind, markdown=markdown, **kwargs)


class TestDocumentStore:
    def setup_method(self):
        self.store = DocumentStore(db_path=":memory:", embedding_dimension=3)

    def teardown_method(self):
        self.store.close()

    def _ready(self, doc_id, embedding, kind=DocumentType.ISSUE):
        self.store.create_document(_doc(doc_id, kind=kind))
        self.store.update_embedding(doc_id, embedding)

    def test_create_and_get(self):
        assert self.store.create_document(_doc("I_1", author_id=7, payload={"issue": {"number": 1}}))
        doc = self.store.get_document("I_1")
        assert doc.kind == DocumentType.ISSUE
        assert doc.markdown == "Some markdown body text"
        assert doc.author_id == 7
        assert doc.payload == {"issue": {"number": 1}}
        assert doc.embedding_status == EmbeddingStatus.PENDING
        assert doc.created_at is not None
        assert not doc.is_deleted

    def test_get_missing(self):
        assert self.store.get_document("nope") is None

    def test_create_existing_returns_false(self):
        self.store.create_document(_doc("I_1", markdown="first"))
        assert not self.store.create_document(_doc("I_1", markdown="second"))
        assert self.store.get_document("I_1").markdown == "first"

    def test_upsert_overwrites(self):
        self._ready("I_1", [1.0, 0.0, 0.0])
        self.store.upsert_document(_doc("I_1", markdown="replaced"))
        doc = self.store.get_document("I_1")
        assert doc.markdown == "replaced"
        assert doc.embedding is None
        assert doc.embedding_status == EmbeddingStatus.PENDING

    def test_ready_without_embedding_rejected(self):
        with pytest.raises(ValueError):
            self.store.upsert_document(_doc("I_1", embedding_status=EmbeddingStatus.READY))

    def test_update_embedding(self):
        self.store.create_document(_doc("I_1"))
        assert self.store.update_embedding("I_1", [0.1, 0.2, 0.3])
        doc = self.store.get_document("I_1")
        assert doc.embedding == [0.1, 0.2, 0.3]
        assert doc.has_embedding

    def test_update_embedding_missing_row(self):
        assert not self.store.update_embedding("nope", [0.1, 0.2, 0.3])

    def test_update_embedding_wrong_dimension(self):
        self.store.create_document(_doc("I_1"))
        with pytest.raises(ValueError):
            self.store.update_embedding("I_1", [0.1, 0.2])
        assert self.store.get_document("I_1").embedding is None

    def test_mark_failed_clears_embedding(self):
        self._ready("I_1", [1.0, 0.0, 0.0])
        assert self.store.mark_embedding_failed("I_1")
        doc = self.store.get_document("I_1")
        assert doc.embedding is None
        assert doc.embedding_status == EmbeddingStatus.FAILED
        assert doc.markdown == "Some markdown body text"

    def test_clear_markdown(self):
        self.store.create_document(_doc("C_1", kind=DocumentType.COMMENT))
        assert self.store.clear_markdown("C_1")
        doc = self.store.get_document("C_1")
        assert doc.markdown is None
        assert doc.embedding_status == EmbeddingStatus.FAILED

    def test_soft_delete(self):
        self.store.create_document(_doc("I_1"))
        assert self.store.soft_delete("I_1")
        assert self.store.get_document("I_1").is_deleted
        assert not self.store.soft_delete("I_1")
        assert not self.store.soft_delete("nope")


class TestListPending:
    def setup_method(self):
        self.store = DocumentStore(db_path=":memory:", embedding_dimension=3)

    def teardown_method(self):
        self.store.close()

    def test_filters_and_orders(self):
        self.store.create_document(_doc("I_1"))
        self.store.create_document(_doc("I_2"))
        self.store.create_document(_doc("I_ready"))
        self.store.update_embedding("I_ready", [1.0, 0.0, 0.0])
        self.store.create_document(_doc("I_deleted"))
        self.store.soft_delete("I_deleted")
        self.store.create_document(_doc("I_empty", markdown=None))
        self.store.create_document(_doc("C_1", kind=DocumentType.COMMENT))

        pending = self.store.list_pending((DocumentType.ISSUE,), limit=10)
        assert [d.id for d in pending] == ["I_1", "I_2"]

    def test_limit_and_types(self):
        self.store.create_document(_doc("I_1"))
        self.store.create_document(_doc("P_1", kind=DocumentType.PULL_REQUEST))
        self.store.create_document(_doc("C_1", kind=DocumentType.COMMENT))

        assert len(self.store.list_pending((DocumentType.ISSUE, DocumentType.PULL_REQUEST), limit=1)) == 1
        assert [d.id for d in self.store.list_pending((DocumentType.COMMENT,), limit=10)] == ["C_1"]
        assert self.store.list_pending((), limit=10) == []


class TestSearch:
    def setup_method(self):
        self.store = DocumentStore(db_path=":memory:", embedding_dimension=3)
        for doc_id, embedding in (("I_same", [1.0, 0.0, 0.0]), ("I_close", [0.9, 0.1, 0.0]), ("I_far", [0.0, 1.0, 0.0])):
            self.store.create_document(_doc(doc_id))
            self.store.update_embedding(doc_id, embedding)
        self.store.create_document(_doc("C_same", kind=DocumentType.COMMENT))
        self.store.update_embedding("C_same", [1.0, 0.0, 0.0])

    def teardown_method(self):
        self.store.close()

    def test_search_issues(self):
        results = self.store.search([1.0, 0.0, 0.0], threshold=0.5, top_k=5, doc_types=(DocumentType.ISSUE,), weights=WEIGHTS)
        assert [r.target_id for r in results] == ["I_same", "I_close"]

    def test_search_excludes_id(self):
        results = self.store.search(
            [1.0, 0.0, 0.0], threshold=0.5, top_k=5, doc_types=(DocumentType.ISSUE,),
            weights=WEIGHTS, exclude_id="I_same",
        )
        assert [r.target_id for r in results] == ["I_close"]

    def test_search_by_type(self):
        results = self.store.search([1.0, 0.0, 0.0], threshold=0.5, top_k=5, doc_types=(DocumentType.COMMENT,), weights=WEIGHTS)
        assert [r.target_id for r in results] == ["C_same"]

    def test_search_skips_deleted_and_failed(self):
        self.store.soft_delete("I_same")
        self.store.mark_embedding_failed("I_close")
        results = self.store.search([1.0, 0.0, 0.0], threshold=0.0, top_k=5, doc_types=(DocumentType.ISSUE,), weights=WEIGHTS)
        assert [r.target_id for r in results] == ["I_far"]

    def test_search_wrong_query_dimension(self):
        assert self.store.search([1.0, 0.0], threshold=0.0, top_k=5, doc_types=(DocumentType.ISSUE,), weights=WEIGHTS) == []
