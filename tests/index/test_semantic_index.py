import pytest

from termquery.domain import Concepts
from termquery.ecl import descendant_of
from termquery.index import QueryConcept, topological_order, transitive_closure
from termquery.shared.errors import ConceptNotFoundInIndex, CycleDetected, IndexInvariantViolation
from termquery.storage import QUERY_CONCEPTS, Term

MAIN = "MAIN"
ROOT = Concepts.ROOT


def test_closure_of_chain():
    parents = {"A": {"B"}, "B": {"C"}, "C": set()}

    closure = transitive_closure(parents)

    assert closure["A"] == {"B", "C"}
    assert closure["B"] == {"C"}
    assert closure["C"] == set()


def test_closure_handles_diamonds_and_unlisted_parents():
    parents = {"A": {"B", "C"}, "B": {"D"}, "C": {"D"}}

    closure = transitive_closure(parents)

    assert closure["A"] == {"B", "C", "D"}
    assert closure["D"] == set()
    order = topological_order(parents)
    assert order.index("D") < order.index("B") < order.index("A")


def test_cycle_is_detected():
    with pytest.raises(CycleDetected) as info:
        transitive_closure({"A": {"B"}, "B": {"C"}, "C": {"A"}, "D": {"A"}}, stated=True)
    assert info.value.concept_ids == {"A", "B", "C", "D"}
    assert info.value.stated is True


def test_index_entries_follow_concept_writes(hierarchy, index, branches):
    criteria = branches.criteria(MAIN)

    assert index.get_parents("30", criteria, False) == {"20"}
    assert index.get_ancestors("30", criteria, False) == {"20", "10", ROOT}
    entry = index.get_entry("20", criteria, False)
    assert entry.attributes == {"363698007": {"10"}}
    assert set(index.get_descendants_union(["10"], criteria, False)) == {"20", "30"}
    assert index.get_ancestors_union(["30", "40"], criteria, False) == {"20", "10", ROOT}


def test_stored_closure_matches_rebuild_from_raw_edges(hierarchy, index, branches, backend):
    criteria = branches.criteria(MAIN)
    stored = {
        doc["concept_id"]: set(doc["ancestors"])
        for doc in backend.stream(QUERY_CONCEPTS, index.entry_filter(criteria, False))
    }
    parents = {
        concept_id: index.get_parents(concept_id, criteria, False) for concept_id in stored
    }

    assert transitive_closure(parents) == stored


def test_single_lookup_of_missing_concept_raises(hierarchy, index, branches):
    criteria = branches.criteria(MAIN)
    with pytest.raises(ConceptNotFoundInIndex):
        index.get_ancestors("999", criteria, False)
    # Stated form has no relationships, but entries exist for every active concept
    assert index.get_parents("30", criteria, True) == set()


def test_duplicate_entries_surface_as_invariant_violation(hierarchy, index, branches, backend):
    criteria = branches.criteria(MAIN)
    duplicate = QueryConcept(concept_id="30", stated=False, parents={"20"}).to_document()
    duplicate.update(internal_id="dup", path=MAIN, start=criteria.head_time)
    backend.insert(QUERY_CONCEPTS, [duplicate])

    with pytest.raises(IndexInvariantViolation):
        index.get_entry("30", criteria, False)


def test_attribute_values(hierarchy, index, branches):
    criteria = branches.criteria(MAIN)

    assert index.get_attribute_values(["20"], ["363698007"], criteria, False) == ["10"]
    assert index.get_attribute_values(["20", "30"], [Concepts.IS_A], criteria, False) == ["20", "10"]
    assert index.get_attribute_values(["20"], None, criteria, False) == ["10"]
    assert index.get_attribute_values(["20"], [], criteria, False) == []


def test_reparenting_updates_descendants(hierarchy, concepts, index, branches, concept_factory):
    concepts.update(concept_factory("20", "40", fsn="Heart valve structure (body structure)"), MAIN)
    criteria = branches.criteria(MAIN)

    assert index.get_ancestors("20", criteria, False) == {"40", ROOT}
    assert index.get_ancestors("30", criteria, False) == {"20", "40", ROOT}
    assert set(index.get_descendants_union(["10"], criteria, False)) == set()


def test_inactivation_removes_index_entry(hierarchy, concepts, index, branches, concept_factory):
    concepts.update(concept_factory("40", ROOT, active=False), MAIN)
    criteria = branches.criteria(MAIN)

    with pytest.raises(ConceptNotFoundInIndex):
        index.get_entry("40", criteria, False)


def test_rebuild_rewrites_only_changed_entries(hierarchy, index, branches, backend):
    with branches.open_commit(MAIN) as commit:
        assert index.rebuild(commit, False) == 0

    with branches.open_commit(MAIN) as commit:
        commit.delete_all(QUERY_CONCEPTS, [("30", False)])
        assert index.rebuild(commit, False) == 1

    criteria = branches.criteria(MAIN)
    assert index.get_ancestors("30", criteria, False) == {"20", "10", ROOT}


def test_cycle_during_write_rolls_back(hierarchy, concepts, index, branches, concept_factory):
    with pytest.raises(CycleDetected):
        concepts.update(concept_factory("10", "30", fsn="Heart structure (body structure)"), MAIN)

    criteria = branches.criteria(MAIN)
    assert index.get_parents("10", criteria, False) == {ROOT}
    assert concepts.find("10", MAIN).relationships[0].destination_id == ROOT


def test_index_on_child_branch_is_isolated(hierarchy, concepts, index, branches, concept_factory):
    branches.create("MAIN/X")
    concepts.update(concept_factory("30", "40", fsn="Heart valve disorder (disorder)"), "MAIN/X")

    assert index.get_parents("30", branches.criteria("MAIN/X"), False) == {"40"}
    assert index.get_parents("30", branches.criteria(MAIN), False) == {"20"}


@pytest.fixture
def forked(concepts, branches, concept_factory):
    """
    MAIN: A and B under the root, C under A. MAIN/X edits C, then MAIN makes
    A a child of B as well, then MAIN/X is rebased.
    """
    concepts.create(concept_factory(ROOT, fsn="Root"), MAIN)
    concepts.create(concept_factory("A", ROOT), MAIN)
    concepts.create(concept_factory("B", ROOT), MAIN)
    concepts.create(concept_factory("C", "A"), MAIN)
    branches.create("MAIN/X")
    concepts.update(concept_factory("C", "A", attributes={"363698007": ["B"]}), "MAIN/X")
    concepts.update(concept_factory("A", ROOT, "B"), MAIN)
    branches.rebase("MAIN/X")
    return branches.criteria("MAIN/X")


def test_rebase_refreshes_entries_owned_by_the_child(forked, index, evaluator):
    assert index.get_ancestors("C", forked, False) == {"A", "B", ROOT}
    assert index.get_entry("C", forked, False).attributes == {"363698007": {"B"}}
    assert "C" in evaluator.evaluate(descendant_of("B"), forked, False)


def test_child_closure_matches_raw_edges_after_rebase(forked, index, branches, backend):
    stored = {
        doc["concept_id"]: set(doc["ancestors"])
        for doc in backend.stream(QUERY_CONCEPTS, index.entry_filter(forked, False))
    }
    parents = {
        concept_id: index.get_parents(concept_id, forked, False) for concept_id in stored
    }
    assert transitive_closure(parents) == stored

    with branches.open_commit("MAIN/X") as commit:
        assert index.rebuild(commit, False) == 0
