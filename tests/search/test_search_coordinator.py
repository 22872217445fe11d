import pytest

from termquery.domain import Concepts
from termquery.ecl import Compound, CompoundOperator, Operator, concept, descendant_of
from termquery.search import ConceptQuery, PageRequest
from termquery.shared.errors import BranchNotFound, InvalidPage
from termquery.shared.observability import get_metrics

MAIN = "MAIN"
ROOT = Concepts.ROOT


@pytest.fixture
def corpus(hierarchy, concept_factory):
    """Hierarchy plus concepts whose lexical rank differs from id order."""
    hierarchy.create(concept_factory("90", ROOT, synonyms=["Hearts"]), MAIN)
    hierarchy.create(
        concept_factory("5", "10", fsn="Heart murmur observation finding (finding)"), MAIN
    )
    return hierarchy


def heart():
    return ConceptQuery().with_term_prefix("heart")


def test_lexical_only_pages_in_relevance_order(coordinator, corpus):
    page = coordinator.search_for_ids(heart(), MAIN, PageRequest(size=3))

    assert page.items == ["10", "90", "20"]
    assert page.total == 7
    assert page.ordered


def test_combined_search_keeps_lexical_order(coordinator, corpus, branches):
    lexical = coordinator.lexical.all_matching_concept_ids(
        branches.criteria(MAIN), "heart", ["en"]
    )
    assert lexical == ["10", "90", "20", "30", "5"]

    query = heart().with_ecl(descendant_of(ROOT))
    page = coordinator.search_for_ids(query, MAIN, PageRequest(size=50))
    assert page.items == lexical
    assert page.items != sorted(page.items, key=lambda i: (len(i), i))

    query = heart().with_ecl(descendant_of("10"))
    first = coordinator.search_for_ids(query, MAIN, PageRequest(number=0, size=2))
    second = coordinator.search_for_ids(query, MAIN, PageRequest(number=1, size=2))
    assert first.items == ["20", "30"]
    assert second.items == ["5"]
    assert first.total == second.total == 3
    assert [i for i in lexical if i in {"20", "30", "5"}] == first.items + second.items


def test_short_term_prefix_returns_empty_page(coordinator, corpus):
    page = coordinator.search_for_ids(ConceptQuery().with_term_prefix("he"), MAIN, PageRequest())

    assert page.items == []
    assert page.total == 0
    assert "termquery_short_term_prefix_total" in get_metrics().decode("utf-8")

    page = coordinator.search_for_ids(ConceptQuery().with_term_prefix("hea"), MAIN, PageRequest())
    assert page.total > 0


def test_short_term_prefix_with_logical_criteria_is_still_empty(coordinator, corpus):
    query = ConceptQuery().with_term_prefix("he").with_ecl(descendant_of(ROOT))
    assert coordinator.search_for_ids(query, MAIN, PageRequest()).total == 0


def test_search_returns_summaries_in_id_page_order(coordinator, corpus):
    page = coordinator.search(heart().with_ecl(descendant_of("10")), MAIN, PageRequest(size=10))

    assert [s.concept_id for s in page.items] == ["20", "30", "5"]
    assert page.items[0].fsn == "Heart valve structure (body structure)"
    assert not page.items[0].is_primitive


def test_all_concepts_mode(coordinator, hierarchy):
    page = coordinator.search(ConceptQuery(), MAIN, PageRequest(size=2))

    assert [s.concept_id for s in page.items] == ["10", "20"]
    assert page.total == 5
    assert page.next_cursor is not None

    ids = coordinator.search_for_ids(ConceptQuery(), MAIN, PageRequest(number=2, size=2))
    assert ids.items == [ROOT]


def test_ecl_only_search_pages_by_id(coordinator, hierarchy):
    page = coordinator.search_for_ids(
        ConceptQuery().with_ecl(descendant_of(ROOT)), MAIN, PageRequest(number=1, size=3)
    )
    assert page.items == ["40"]
    assert page.total == 4


def test_literal_concept_ids_pass_through(coordinator, hierarchy):
    query = ConceptQuery().with_concept_ids(["40", "10", "999"])

    assert coordinator.search_for_ids(query, MAIN, PageRequest()).items == ["40", "10", "999"]
    summaries = coordinator.search(query, MAIN, PageRequest())
    assert [s.concept_id for s in summaries.items] == ["40", "10"]


def test_primitive_logical_clauses(coordinator, hierarchy):
    page = coordinator.search_for_ids(ConceptQuery().descendant("10"), MAIN, PageRequest())
    assert page.items == ["20", "30"]

    page = coordinator.search_for_ids(ConceptQuery().self_or_descendant("10"), MAIN, PageRequest())
    assert page.items == ["10", "20", "30"]


def test_definition_status_filter(coordinator, hierarchy):
    fully_defined = Concepts.FULLY_DEFINED

    ecl = ConceptQuery().with_ecl(descendant_of(ROOT)).with_definition_status_filter(fully_defined)
    assert coordinator.search_for_ids(ecl, MAIN, PageRequest()).items == ["20"]

    only_status = ConceptQuery().with_definition_status_filter(fully_defined)
    assert coordinator.search_for_ids(only_status, MAIN, PageRequest()).items == ["20"]

    combined = heart().with_definition_status_filter(fully_defined)
    assert coordinator.search_for_ids(combined, MAIN, PageRequest()).items == ["20"]


def test_inactive_concepts_come_from_concept_store(coordinator, hierarchy, concept_factory):
    hierarchy.create(
        concept_factory("60", ROOT, fsn="Heart disease old concept (finding)", active=False), MAIN
    )
    inactive = ConceptQuery().with_active_filter(False)

    assert coordinator.search_for_ids(inactive, MAIN, PageRequest()).items == ["60"]
    assert coordinator.search_for_ids(inactive.with_term_prefix("heart dis"), MAIN, PageRequest()).items == ["60"]
    # Only active concepts are indexed, so relationship conditions yield nothing
    assert coordinator.search_for_ids(inactive.with_ecl(descendant_of(ROOT)), MAIN, PageRequest()).total == 0
    assert coordinator.search_for_ids(inactive.descendant(ROOT), MAIN, PageRequest()).total == 0


def test_active_filter_excludes_inactive_lexical_matches(coordinator, hierarchy, concept_factory):
    hierarchy.create(
        concept_factory("60", ROOT, fsn="Heart disease old concept (finding)", active=False), MAIN
    )
    query = ConceptQuery().with_term_prefix("heart").with_active_filter(True)

    assert "60" not in coordinator.search_for_ids(query, MAIN, PageRequest()).items


def test_combined_with_empty_logical_match(coordinator, hierarchy):
    query = heart().with_ecl(
        Compound(CompoundOperator.AND, descendant_of("10"), concept("10", Operator.ANCESTOR_OF))
    )
    assert coordinator.search_for_ids(query, MAIN, PageRequest()).items == []


def test_language_codes_restrict_lexical_matches(coordinator, hierarchy):
    query = heart().with_language_codes(["fr"])
    assert coordinator.search_for_ids(query, MAIN, PageRequest()).total == 0


def test_find_descendants_is_branch_aware(coordinator, hierarchy, branches, concept_factory):
    branches.create("MAIN/X")
    hierarchy.update(concept_factory("30", "40", fsn="Heart valve disorder (disorder)"), "MAIN/X")

    on_main = coordinator.find_descendants("10", MAIN, False, PageRequest())
    on_task = coordinator.find_descendants("10", "MAIN/X", False, PageRequest())

    assert [s.concept_id for s in on_main.items] == ["20", "30"]
    assert [s.concept_id for s in on_task.items] == ["20"]


def test_page_size_limit_and_unknown_branch(coordinator, hierarchy):
    with pytest.raises(InvalidPage):
        coordinator.search(ConceptQuery(), MAIN, PageRequest(size=20000))
    with pytest.raises(BranchNotFound):
        coordinator.search(heart(), "MAIN/NOPE", PageRequest())
