from types import SimpleNamespace
from unittest import mock

import pymongo
import pytest
from bson import ObjectId

from mflix.db import MovieRepository, build_list_query
from mflix.services.errors import (
    EmptyUpdateError,
    InvalidIdentifierError,
    NotFoundError,
    UnsupportedOperatorError,
    ValidationError,
)
from mflix.services.models import CLEAR, MovieData, MovieQuery, MovieUpdate

MOVIE_ID = "573a1390f29313caabcd4135"


@pytest.fixture
def collection():
    return mock.MagicMock(name="movies")


@pytest.fixture
def repo(collection):
    return MovieRepository(collection, max_time_ms=1500)


def test_insert_then_get_by_id_returns_stored_document(repo, collection):
    new_id = ObjectId()
    collection.insert_one.return_value = SimpleNamespace(inserted_id=new_id)

    created = repo.insert(MovieData(title="Test Movie", year=2024, plot=None))

    collection.insert_one.assert_called_once_with({"title": "Test Movie", "year": 2024})
    assert created["_id"] == new_id

    collection.find_one.return_value = created
    fetched = repo.get_by_id(str(new_id))
    collection.find_one.assert_called_with({"_id": new_id}, max_time_ms=1500)
    assert fetched["title"] == "Test Movie"
    assert fetched["year"] == 2024


def test_insert_requires_title(repo, collection):
    with pytest.raises(ValidationError) as exc_info:
        repo.insert(MovieData(title="   "))
    assert exc_info.value.message == "Title is required"
    collection.insert_one.assert_not_called()


def test_get_by_id_missing_raises_not_found(repo, collection):
    collection.find_one.return_value = None
    with pytest.raises(NotFoundError):
        repo.get_by_id(MOVIE_ID)


@pytest.mark.parametrize(
    "call",
    [
        lambda repo: repo.get_by_id("bogus"),
        lambda repo: repo.update_by_id("bogus", MovieUpdate(title="x")),
        lambda repo: repo.replace_by_id("bogus", MovieData(title="x")),
        lambda repo: repo.delete_by_id("bogus"),
        lambda repo: repo.find_and_delete_by_id("bogus"),
    ],
)
def test_malformed_identifier_fails_before_any_store_call(repo, collection, call):
    with pytest.raises(InvalidIdentifierError):
        call(repo)
    assert collection.method_calls == []


def test_insert_many_reports_failing_index(repo, collection):
    movies = [MovieData(title="A"), MovieData(title=None), MovieData(title="C")]
    with pytest.raises(ValidationError) as exc_info:
        repo.insert_many(movies)
    assert exc_info.value.message == "Movie at index 1: Title is required"
    collection.insert_many.assert_not_called()


def test_insert_many_rejects_empty_batch(repo, collection):
    with pytest.raises(ValidationError):
        repo.insert_many([])
    collection.insert_many.assert_not_called()


def test_insert_many_returns_string_ids(repo, collection):
    ids = [ObjectId(), ObjectId()]
    collection.insert_many.return_value = SimpleNamespace(inserted_ids=ids)

    result = repo.insert_many([MovieData(title="A"), MovieData(title="B", year=2001)])

    assert result.inserted_count == 2
    assert result.inserted_ids == [str(object_id) for object_id in ids]
    collection.insert_many.assert_called_once_with([{"title": "A"}, {"title": "B", "year": 2001}])


def test_update_by_id_returns_re_read_document(repo, collection):
    object_id = ObjectId(MOVIE_ID)
    collection.update_one.return_value = SimpleNamespace(matched_count=1, modified_count=1)
    collection.find_one.return_value = {"_id": object_id, "title": "Updated", "year": 1999}

    document = repo.update_by_id(MOVIE_ID, MovieUpdate(title="Updated", plot=None))

    collection.update_one.assert_called_once_with({"_id": object_id}, {"$set": {"title": "Updated"}})
    assert document["title"] == "Updated"


def test_update_by_id_missing_movie_raises_not_found(repo, collection):
    collection.update_one.return_value = SimpleNamespace(matched_count=0, modified_count=0)
    with pytest.raises(NotFoundError):
        repo.update_by_id(MOVIE_ID, MovieUpdate(title="Anything"))
    collection.find_one.assert_not_called()


def test_update_by_id_empty_update_is_rejected_without_writes(repo, collection):
    with pytest.raises(EmptyUpdateError):
        repo.update_by_id(MOVIE_ID, MovieUpdate(plot=None))
    collection.update_one.assert_not_called()


def test_update_by_filter_counts(repo, collection):
    collection.update_many.return_value = SimpleNamespace(matched_count=3, modified_count=2)

    result = repo.update_by_filter({"year": {"$lt": 1900}}, {"rated": "NOT RATED"})

    collection.update_many.assert_called_once_with(
        {"year": {"$lt": 1900}}, {"$set": {"rated": "NOT RATED"}}
    )
    assert (result.matched_count, result.modified_count) == (3, 2)


def test_update_by_filter_requires_both_parts(repo, collection):
    with pytest.raises(ValidationError):
        repo.update_by_filter(None, {"rated": "R"})
    with pytest.raises(ValidationError):
        repo.update_by_filter({"year": 1999}, None)
    with pytest.raises(ValidationError):
        repo.update_by_filter({}, {"rated": "R"})
    collection.update_many.assert_not_called()


def test_delete_by_filter_rejects_empty_filter_without_writes(repo, collection):
    for empty in ({}, None):
        with pytest.raises(ValidationError) as exc_info:
            repo.delete_by_filter(empty)
        assert "prevents accidental deletion" in exc_info.value.message
    collection.delete_many.assert_not_called()


def test_delete_by_filter_rejects_unknown_operator_without_writes(repo, collection):
    with pytest.raises(UnsupportedOperatorError):
        repo.delete_by_filter({"year": {"$where": "true"}})
    collection.delete_many.assert_not_called()


def test_delete_by_filter_returns_count(repo, collection):
    collection.delete_many.return_value = SimpleNamespace(deleted_count=4)
    assert repo.delete_by_filter({"year": 1893}).deleted_count == 4
    collection.delete_many.assert_called_once_with({"year": 1893})


def test_delete_by_id_missing_raises_not_found(repo, collection):
    collection.delete_one.return_value = SimpleNamespace(deleted_count=0)
    with pytest.raises(NotFoundError):
        repo.delete_by_id(MOVIE_ID)


def test_find_and_delete_returns_removed_document(repo, collection):
    removed = {"_id": ObjectId(MOVIE_ID), "title": "Gone"}
    collection.find_one_and_delete.return_value = removed
    assert repo.find_and_delete_by_id(MOVIE_ID) is removed

    collection.find_one_and_delete.return_value = None
    with pytest.raises(NotFoundError):
        repo.find_and_delete_by_id(MOVIE_ID)


def test_replace_by_id_returns_document_after_replacement(repo, collection):
    replaced = {"_id": ObjectId(MOVIE_ID), "title": "New"}
    collection.find_one_and_replace.return_value = replaced

    assert repo.replace_by_id(MOVIE_ID, MovieData(title="New")) is replaced
    args, kwargs = collection.find_one_and_replace.call_args
    assert args == ({"_id": ObjectId(MOVIE_ID)}, {"title": "New"})
    assert kwargs["return_document"] is pymongo.ReturnDocument.AFTER


def test_find_applies_clamped_page_sort_and_time_limit(repo, collection):
    collection.find.return_value = iter([{"title": "A"}])

    rows = repo.find({"year": 1999}, sort_by="year", sort_order="desc", limit=500, skip=-3)

    assert rows == [{"title": "A"}]
    collection.find.assert_called_once_with(
        {"year": 1999},
        sort=[("year", pymongo.DESCENDING)],
        skip=0,
        limit=100,
        max_time_ms=1500,
    )


def test_count_uses_list_query(repo, collection):
    collection.count_documents.return_value = 42
    assert repo.count(MovieQuery(year=1999)) == 42
    collection.count_documents.assert_called_once_with({"year": 1999}, maxTimeMS=1500)


def test_build_list_query_combines_parameters():
    query = MovieQuery(q=" matrix ", genre="sci", year=1999, min_rating=7.5)
    assert build_list_query(query) == {
        "$text": {"$search": "matrix"},
        "genres": {"$regex": "sci", "$options": "i"},
        "year": 1999,
        "imdb.rating": {"$gte": 7.5},
    }
    assert build_list_query(MovieQuery()) == {}


def test_count_accepts_raw_filter(repo, collection):
    collection.count_documents.return_value = 3
    assert repo.count({"year": {"$gte": 2000}}) == 3
    collection.count_documents.assert_called_once_with({"year": {"$gte": 2000}}, maxTimeMS=1500)


def test_update_by_id_keeps_the_title(repo, collection):
    with pytest.raises(ValidationError) as exc_info:
        repo.update_by_id(MOVIE_ID, MovieUpdate(title=CLEAR))
    assert exc_info.value.message == "Title is required"
    collection.update_one.assert_not_called()


def test_single_document_reads_carry_the_deadline(repo, collection):
    object_id = ObjectId(MOVIE_ID)
    collection.find_one.return_value = {"_id": object_id, "title": "A"}
    collection.find_one_and_delete.return_value = {"_id": object_id, "title": "A"}
    collection.find_one_and_replace.return_value = {"_id": object_id, "title": "B"}

    repo.get_by_id(MOVIE_ID)
    repo.find_and_delete_by_id(MOVIE_ID)
    repo.replace_by_id(MOVIE_ID, MovieData(title="B"))

    assert collection.find_one.call_args.kwargs == {"max_time_ms": 1500}
    assert collection.find_one_and_delete.call_args.kwargs == {"maxTimeMS": 1500}
    assert collection.find_one_and_replace.call_args.kwargs["maxTimeMS"] == 1500


def test_writes_run_under_client_side_timeout(repo, collection):
    collection.update_one.return_value = SimpleNamespace(matched_count=1, modified_count=1)
    collection.find_one.return_value = {"_id": ObjectId(MOVIE_ID), "title": "A"}
    collection.delete_many.return_value = SimpleNamespace(deleted_count=1)

    with mock.patch("mflix.db.pymongo.timeout") as timeout:
        repo.update_by_id(MOVIE_ID, MovieUpdate(title="A"))
        repo.delete_by_filter({"year": 1893})

    assert timeout.call_args_list == [mock.call(1.5), mock.call(1.5)]


def test_no_deadline_configured_leaves_calls_untouched(collection):
    repo = MovieRepository(collection)
    collection.find_one.return_value = {"_id": ObjectId(MOVIE_ID)}
    collection.delete_one.return_value = SimpleNamespace(deleted_count=1)

    with mock.patch("mflix.db.pymongo.timeout") as timeout:
        repo.get_by_id(MOVIE_ID)
        repo.delete_by_id(MOVIE_ID)

    collection.find_one.assert_called_once_with({"_id": ObjectId(MOVIE_ID)})
    timeout.assert_not_called()
