import pytest

from core.exceptions import DependencyUnavailableError
from schemas.user import UserSearchDocument
from utils.index_worker import IndexWorker
from utils.search_index import UserSearchIndex


@pytest.fixture
def populated_index(index):
    for doc in (
        UserSearchDocument(id=1, name="Ada Lovelace", email="ada@example.com", department_name="Engineering"),
        UserSearchDocument(id=2, name="Grace Hopper", email="grace.hopper@example.com", department_name="Engineering"),
        UserSearchDocument(id=3, name="Alan Turing", email="alan@example.com", department_name="HR"),
        UserSearchDocument(id=4, name="Sam Engineer", email="sam@example.com", department_name="Sales"),
    ):
        index.upsert(doc)
    return index


def test_typo_in_name_still_matches(populated_index):
    docs, total = populated_index.fuzzy_search("lovlace", 0, 5)
    assert total == 1
    assert docs[0].id == 1


def test_department_typo_matches_all_members(populated_index):
    docs, total = populated_index.fuzzy_search("enginering", 0, 5)
    # "Sam Engineer" matches on name, which is weighted higher
    assert [doc.id for doc in docs] == [4, 1, 2]
    assert total == 3


def test_name_match_outranks_department_match(populated_index):
    docs, _ = populated_index.fuzzy_search("engineer", 0, 5)
    assert docs[0].id == 4
    assert {doc.id for doc in docs} == {1, 2, 4}


def test_short_terms_need_an_exact_token(populated_index):
    docs, total = populated_index.fuzzy_search("hr", 0, 5)
    assert total == 1
    assert docs[0].id == 3


def test_pagination_reports_total(populated_index):
    docs, total = populated_index.fuzzy_search("example", 1, 3)
    assert total == 4
    assert len(docs) == 1


def test_blank_query_returns_nothing(populated_index):
    assert populated_index.fuzzy_search("   ", 0, 5) == ([], 0)


def test_upsert_replaces_and_delete_removes(populated_index):
    populated_index.upsert(
        UserSearchDocument(id=1, name="Augusta King", email="ada@example.com", department_name="Research")
    )
    assert populated_index.get(1).name == "Augusta King"
    assert populated_index.count() == 4

    populated_index.delete(1)
    assert populated_index.get(1) is None
    assert populated_index.count() == 3


def test_closed_index_raises_dependency_unavailable():
    closed = UserSearchIndex(":memory:")
    with pytest.raises(DependencyUnavailableError):
        closed.fuzzy_search("ada", 0, 5)


def test_worker_applies_updates_in_order(index, worker):
    doc = UserSearchDocument(id=9, name="Linus", email="linus@example.com", department_name="")
    worker.submit_upsert(doc)
    worker.submit_delete(9)
    worker.submit_upsert(doc.model_copy(update={"name": "Linus Torvalds"}))
    worker.drain(timeout=5)

    assert index.get(9).name == "Linus Torvalds"


def test_worker_swallows_index_failures(caplog):
    broken = UserSearchIndex(":memory:")  # never opened
    broken_worker = IndexWorker(broken).start()
    try:
        assert broken_worker.submit_upsert(
            UserSearchDocument(id=1, name="Ada", email="ada@example.com")
        )
        broken_worker.drain(timeout=5)
    finally:
        broken_worker.stop()
    assert "Search index update failed" in caplog.text


def test_stopped_worker_drops_updates(index):
    stopped = IndexWorker(index)
    assert stopped.submit_delete(1) is False
