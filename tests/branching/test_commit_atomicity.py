import pytest

from termquery.domain import Concept
from termquery.storage import CONCEPTS
from termquery.storage.filters import MATCH_ALL

MAIN = "MAIN"


class Boom(Exception):
    pass


def test_commit_writes_share_one_timestamp_and_advance_head(branches, backend):
    before = branches.find(MAIN).head_time
    with branches.open_commit(MAIN) as commit:
        first = commit.save(CONCEPTS, Concept(concept_id="1").to_document())
        second = commit.save(CONCEPTS, Concept(concept_id="2").to_document())

    assert first["start"] == second["start"] == commit.timestamp
    assert commit.timestamp > before
    assert branches.find(MAIN).head_time == commit.timestamp
    assert not commit.is_open


def test_uncommitted_writes_are_invisible_to_readers(branches, backend):
    with branches.open_commit(MAIN) as commit:
        commit.save(CONCEPTS, Concept(concept_id="1").to_document())
        outside = branches.criteria(MAIN)
        assert backend.count(CONCEPTS, outside.entity_filter) == 0
        assert backend.count(CONCEPTS, commit.criteria().entity_filter) == 1


def test_failed_commit_rolls_back_every_write(branches, backend):
    with branches.open_commit(MAIN) as commit:
        commit.save(CONCEPTS, Concept(concept_id="1", module_id="kept").to_document())
    head = branches.find(MAIN).head_time

    with pytest.raises(Boom):
        with branches.open_commit(MAIN) as commit:
            commit.save(CONCEPTS, Concept(concept_id="1", module_id="lost").to_document())
            commit.save(CONCEPTS, Concept(concept_id="2").to_document())
            raise Boom()

    assert branches.find(MAIN).head_time == head
    docs = list(backend.stream(CONCEPTS, MATCH_ALL))
    assert [(d["concept_id"], d["module_id"]) for d in docs] == [("1", "kept")]
    assert "end" not in docs[0]


def test_rollback_clears_pending_hidden_versions(branches, backend):
    with branches.open_commit(MAIN) as commit:
        commit.save(CONCEPTS, Concept(concept_id="1").to_document())
    branches.create("MAIN/X")

    with pytest.raises(Boom):
        with branches.open_commit("MAIN/X") as commit:
            commit.save(CONCEPTS, Concept(concept_id="1", module_id="task").to_document())
            assert commit.replaced
            raise Boom()

    assert branches.find("MAIN/X").versions_replaced == {}
    assert backend.count(CONCEPTS, branches.criteria("MAIN/X").entity_filter) == 1


def test_saving_twice_in_one_commit_keeps_latest_only(branches, backend):
    with branches.open_commit(MAIN) as commit:
        commit.save(CONCEPTS, Concept(concept_id="1", module_id="a").to_document())
        commit.save(CONCEPTS, Concept(concept_id="1", module_id="b").to_document())

    docs = list(backend.stream(CONCEPTS, MATCH_ALL))
    assert [d["module_id"] for d in docs] == ["b"]


def test_closed_commit_rejects_writes(branches):
    with branches.open_commit(MAIN) as commit:
        pass
    with pytest.raises(RuntimeError):
        commit.save(CONCEPTS, Concept(concept_id="1").to_document())


def test_commit_timestamps_strictly_increase_with_stalled_clock(branch_store, backend):
    from termquery.branching import BranchService

    service = BranchService(branch_store, backend, clock=lambda: 500)
    service.ensure_root()
    stamps = []
    for concept_id in ("1", "2", "3"):
        with service.open_commit(MAIN) as commit:
            commit.save(CONCEPTS, Concept(concept_id=concept_id).to_document())
        stamps.append(commit.timestamp)

    assert stamps == [501, 502, 503]


def test_failed_rebase_hook_reverts_the_rebase(branches, backend):
    branches.create("MAIN/X")
    with branches.open_commit(MAIN) as commit:
        commit.save(CONCEPTS, Concept(concept_id="1").to_document())
    before = branches.find("MAIN/X")
    seen = []

    def hook(commit):
        seen.append(commit.path)
        commit.save(CONCEPTS, Concept(concept_id="2").to_document())
        raise Boom()

    branches.add_rebase_hook(hook)
    with pytest.raises(Boom):
        branches.rebase("MAIN/X")

    assert seen == ["MAIN/X"]
    assert branches.find("MAIN/X") == before
    assert backend.count(CONCEPTS, branches.criteria("MAIN/X").entity_filter) == 0
    assert backend.count(CONCEPTS, MATCH_ALL) == 1
