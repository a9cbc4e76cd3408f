from unittest import mock

import pytest
from bson import ObjectId

from mflix.services.errors import NotFoundError, ValidationError
from mflix.services.models import SearchOperator, SearchRequest
from mflix.services.pagination import Page
from mflix.services.search import (
    SearchService,
    build_compound_search_pipeline,
    build_search_clause,
    build_similar_movies_pipeline,
    build_vector_candidates_pipeline,
)
from mflix.services.voyage import EmbeddingServiceError


class FakeEmbedder:
    def __init__(self, vector=None, error=None):
        self.vector = vector or [0.1, 0.2, 0.3]
        self.error = error
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.vector


@pytest.fixture
def collections():
    return {"movies": mock.MagicMock(name="movies"), "embedded_movies": mock.MagicMock(name="embedded")}


def _service(collections, embedder=None):
    database = mock.MagicMock(name="database")
    database.__getitem__.side_effect = collections.__getitem__
    return SearchService(database, embedder or FakeEmbedder(), max_time_ms=None)


def test_phrase_and_fuzzy_clause_shapes():
    assert build_search_clause("plot", "space") == {"phrase": {"query": "space", "path": "plot"}}
    assert build_search_clause("cast", "Keanu") == {
        "text": {"query": "Keanu", "path": "cast", "fuzzy": {"maxEdits": 1, "prefixLength": 5}}
    }


def test_compound_pipeline_uses_one_operator_over_all_clauses():
    terms = {"plot": "heist", "directors": "Mann"}
    pipeline = build_compound_search_pipeline(terms, SearchOperator.SHOULD, Page(limit=5, skip=10))

    search = pipeline[0]["$search"]
    assert search["index"] == "movieSearchIndex"
    assert list(search["compound"]) == ["should"]
    assert len(search["compound"]["should"]) == 2
    assert pipeline[1:3] == [{"$skip": 10}, {"$limit": 5}]


def test_search_requires_at_least_one_field(collections):
    service = _service(collections)
    with pytest.raises(ValidationError) as exc_info:
        service.search_movies(SearchRequest(plot="   ", search_operator="must"))
    assert exc_info.value.message.startswith("At least one search parameter")
    collections["movies"].aggregate.assert_not_called()


def test_search_rejects_unknown_operator(collections):
    service = _service(collections)
    with pytest.raises(ValidationError) as exc_info:
        service.search_movies(SearchRequest(cast="Pacino", search_operator="xor"))
    assert "must be one of: must, should, mustNot, filter" in exc_info.value.message


def test_search_defaults_to_must_and_default_page(collections):
    collections["movies"].aggregate.return_value = iter([{"title": "Heat"}])
    service = _service(collections)

    assert service.search_movies(SearchRequest(directors=" Mann ")) == [{"title": "Heat"}]

    pipeline = collections["movies"].aggregate.call_args.args[0]
    clauses = pipeline[0]["$search"]["compound"]["must"]
    assert clauses[0]["text"]["query"] == "Mann"
    assert {"$limit": 20} in pipeline


def test_vector_candidates_pipeline_oversamples():
    pipeline = build_vector_candidates_pipeline([0.5], 7)
    stage = pipeline[0]["$vectorSearch"]
    assert stage["index"] == "vector_index"
    assert stage["path"] == "plot_embedding_voyage_3_large"
    assert (stage["limit"], stage["numCandidates"]) == (7, 140)


def test_vector_search_requires_query(collections):
    embedder = FakeEmbedder()
    with pytest.raises(ValidationError):
        _service(collections, embedder).vector_search_movies("  ")
    assert embedder.calls == []


def test_vector_search_hydrates_and_orders_by_score(collections):
    first, second, orphan = ObjectId(), ObjectId(), ObjectId()
    collections["embedded_movies"].aggregate.return_value = iter(
        [{"_id": first, "score": 0.91}, {"_id": second, "score": 0.75}]
    )
    # Canonical collection returns storage order plus a row without a score.
    collections["movies"].aggregate.return_value = iter(
        [
            {"_id": second, "title": "Second", "year": None},
            {"_id": orphan, "title": "Orphan"},
            {"_id": first, "title": "First", "year": 1999},
        ]
    )
    embedder = FakeEmbedder()

    results = _service(collections, embedder).vector_search_movies("space adventure", limit=99)

    assert embedder.calls == ["space adventure"]
    assert [r.title for r in results] == ["First", "Second"]
    assert [r.score for r in results] == [0.91, 0.75]
    assert results[0].id == str(first)
    candidates = collections["embedded_movies"].aggregate.call_args.args[0]
    assert candidates[0]["$vectorSearch"]["limit"] == 50
    hydration = collections["movies"].aggregate.call_args.args[0]
    assert hydration[0] == {"$match": {"_id": {"$in": [first, second]}}}


def test_vector_search_without_candidates_skips_hydration(collections):
    collections["embedded_movies"].aggregate.return_value = iter([])
    assert _service(collections).vector_search_movies("nothing") == []
    collections["movies"].aggregate.assert_not_called()


def test_vector_search_propagates_embedding_failure(collections):
    embedder = FakeEmbedder(error=EmbeddingServiceError("Invalid Voyage AI API response: missing 'data' field"))
    with pytest.raises(EmbeddingServiceError):
        _service(collections, embedder).vector_search_movies("space")
    collections["embedded_movies"].aggregate.assert_not_called()


def test_similar_movies_pipeline_excludes_source():
    source = ObjectId()
    pipeline = build_similar_movies_pipeline(source, [0.1, 0.2], 4)
    assert pipeline[0]["$vectorSearch"]["index"] == "plotEmbeddingIndex"
    assert pipeline[0]["$vectorSearch"]["limit"] == 5
    assert pipeline[1] == {"$match": {"_id": {"$ne": source}}}
    assert pipeline[2] == {"$limit": 4}
    assert pipeline[3]["$project"]["score"] == {"$meta": "vectorSearchScore"}


def test_find_similar_movies_validates_source(collections):
    service = _service(collections)
    with pytest.raises(ValidationError):
        service.find_similar_movies(None)

    collections["movies"].find_one.return_value = None
    with pytest.raises(NotFoundError):
        service.find_similar_movies(str(ObjectId()))

    collections["movies"].find_one.return_value = {"_id": ObjectId()}
    with pytest.raises(ValidationError) as exc_info:
        service.find_similar_movies(str(ObjectId()))
    assert exc_info.value.message == "Movie does not have plot embeddings for vector search"
    collections["movies"].aggregate.assert_not_called()


def test_find_similar_movies_runs_pipeline_with_stored_embedding(collections):
    source = ObjectId()
    collections["movies"].find_one.return_value = {"_id": source, "plot_embedding": [0.3, 0.4]}
    collections["movies"].aggregate.return_value = iter([{"title": "Neighbour", "score": 0.8}])

    movies = _service(collections).find_similar_movies(str(source), limit=3)

    assert movies == [{"title": "Neighbour", "score": 0.8}]
    pipeline = collections["movies"].aggregate.call_args.args[0]
    assert pipeline[0]["$vectorSearch"]["queryVector"] == [0.3, 0.4]
    assert pipeline[2] == {"$limit": 3}


def test_find_similar_movies_source_lookup_carries_deadline(collections):
    source = ObjectId()
    collections["movies"].find_one.return_value = {"_id": source, "plot_embedding": [0.3]}
    collections["movies"].aggregate.return_value = iter([])
    database = mock.MagicMock(name="database")
    database.__getitem__.side_effect = collections.__getitem__

    SearchService(database, FakeEmbedder(), max_time_ms=900).find_similar_movies(str(source))

    assert collections["movies"].find_one.call_args.kwargs == {"max_time_ms": 900}
    assert collections["movies"].aggregate.call_args.kwargs == {"maxTimeMS": 900}
