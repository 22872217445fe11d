import pytest

from termquery.domain import Concepts, ReferenceSetMember
from termquery.ecl import (
    EMPTY_SET,
    UNCONSTRAINED,
    AttributeConstraint,
    Compound,
    CompoundOperator,
    Dotted,
    IdSet,
    Operator,
    Refined,
    RefinementConjunction,
    RefinementDisjunction,
    SubExpression,
    concept,
    descendant_of,
    descendant_or_self_of,
    member_of,
    nested,
    wildcard,
)
from termquery.ecl.evaluator import both, either, without
from termquery.shared.errors import ConceptNotFoundInIndex, UnsupportedConstraint
from termquery.storage import MEMBERS, Term
from termquery.storage.filters import MATCH_NONE

MAIN = "MAIN"
ROOT = Concepts.ROOT
FINDING_SITE = "363698007"


@pytest.fixture
def criteria(hierarchy, branches):
    with branches.open_commit(MAIN) as commit:
        commit.save_all(
            MEMBERS,
            [
                ReferenceSetMember(member_id="m1", refset_id="700", referenced_component_id="20").to_document(),
                ReferenceSetMember(member_id="m2", refset_id="800", referenced_component_id="40").to_document(),
                ReferenceSetMember(
                    member_id="m3", refset_id="700", referenced_component_id="30", active=False
                ).to_document(),
            ],
        )
    return branches.criteria(MAIN)


def ids(result):
    assert isinstance(result, IdSet), result
    return result.ids


@pytest.mark.parametrize(
    "node,expected",
    [
        (concept("20"), ("20",)),
        (descendant_of(ROOT), ("10", "20", "30", "40")),
        (descendant_or_self_of(ROOT), ("10", "20", "30", "40", ROOT)),
        (concept("30", Operator.ANCESTOR_OF), ("10", "20", ROOT)),
        (concept("30", Operator.ANCESTOR_OR_SELF_OF), ("10", "20", "30", ROOT)),
        (concept("10", Operator.CHILD_OF), ("20",)),
        (concept("30", Operator.PARENT_OF), ("20",)),
        (member_of("700"), ("20",)),
        (member_of(), ("20", "40")),
    ],
)
def test_operators_over_literal_focus(evaluator, criteria, node, expected):
    assert ids(evaluator.evaluate(node, criteria, False)) == expected


def test_chain_hierarchy_properties(evaluator, criteria, index):
    assert index.get_ancestors("30", criteria, False) == {"20", "10", ROOT}
    assert {"20", "30"} <= set(ids(evaluator.evaluate(descendant_of("10"), criteria, False)))
    assert {"10", "20", "30"} <= set(
        ids(evaluator.evaluate(descendant_or_self_of("10"), criteria, False))
    )


def test_descendants_and_ancestors_are_disjoint(evaluator, criteria):
    for concept_id in ("10", "20", "30", "40"):
        node = Compound(
            CompoundOperator.AND,
            descendant_of(concept_id),
            concept(concept_id, Operator.ANCESTOR_OF),
        )
        assert evaluator.evaluate(node, criteria, False) is EMPTY_SET


def test_wildcard_focus_is_unconstrained(evaluator, criteria):
    assert evaluator.evaluate(wildcard(), criteria, False) is UNCONSTRAINED
    assert evaluator.evaluate(nested(wildcard(), Operator.DESCENDANT_OF), criteria, False) is UNCONSTRAINED

    page, total = evaluator.select_page(wildcard(), criteria, False, offset=0, limit=10)
    assert total == 5


def test_unknown_literal_matches_nothing(evaluator, criteria):
    assert evaluator.evaluate(concept("999"), criteria, False) is EMPTY_SET


def test_nested_empty_operand_never_widens(evaluator, criteria):
    for operator in (
        Operator.DESCENDANT_OF,
        Operator.DESCENDANT_OR_SELF_OF,
        Operator.CHILD_OF,
        Operator.ANCESTOR_OF,
        Operator.PARENT_OF,
    ):
        node = nested(concept("999"), operator)
        assert evaluator.evaluate(node, criteria, False) is EMPTY_SET


def test_nested_operands_use_set_lookups(evaluator, criteria):
    children_of_root = concept(ROOT, Operator.CHILD_OF)

    assert ids(evaluator.evaluate(nested(children_of_root, Operator.DESCENDANT_OF), criteria, False)) == ("20", "30")
    assert ids(evaluator.evaluate(nested(children_of_root, Operator.ANCESTOR_OF), criteria, False)) == (ROOT,)
    # Union of parents across the operand set
    assert ids(
        evaluator.evaluate(
            nested(Compound(CompoundOperator.OR, concept("30"), concept("20")), Operator.PARENT_OF),
            criteria,
            False,
        )
    ) == ("10", "20")


def test_literal_single_lookup_of_unindexed_concept_raises(evaluator, criteria):
    with pytest.raises(ConceptNotFoundInIndex):
        evaluator.evaluate(concept("999", Operator.ANCESTOR_OF), criteria, False)


@pytest.mark.parametrize(
    "node",
    [
        nested(concept("700"), Operator.MEMBER_OF),
        nested(member_of("700"), Operator.MEMBER_OF),
        Compound(CompoundOperator.OR, concept("10"), nested(wildcard(), Operator.MEMBER_OF)),
        Refined(
            descendant_of(ROOT),
            AttributeConstraint(concept(FINDING_SITE), nested(concept("10"), Operator.MEMBER_OF)),
        ),
        Dotted(nested(concept("700"), Operator.MEMBER_OF), concept(FINDING_SITE)),
        nested(nested(concept("10"), Operator.MEMBER_OF), Operator.DESCENDANT_OF),
    ],
)
def test_member_of_nested_expression_is_unsupported(evaluator, criteria, node):
    with pytest.raises(UnsupportedConstraint):
        evaluator.evaluate(node, criteria, False)


def test_compound_operators(evaluator, criteria):
    disjunction = Compound(CompoundOperator.OR, concept(ROOT, Operator.CHILD_OF), concept("30"))
    exclusion = Compound(CompoundOperator.MINUS, descendant_of(ROOT), descendant_or_self_of("20"))

    assert ids(evaluator.evaluate(disjunction, criteria, False)) == ("10", "30", "40")
    assert ids(evaluator.evaluate(exclusion, criteria, False)) == ("10", "40")
    assert ids(evaluator.evaluate(Compound(CompoundOperator.MINUS, wildcard(), descendant_of(ROOT)), criteria, False)) == (ROOT,)
    assert evaluator.evaluate(Compound(CompoundOperator.MINUS, concept("10"), wildcard()), criteria, False) is EMPTY_SET


def test_refinements(evaluator, criteria):
    def refined(attribute, value):
        return Refined(descendant_or_self_of(ROOT), AttributeConstraint(attribute, value))

    assert ids(evaluator.evaluate(refined(concept(FINDING_SITE), concept("10")), criteria, False)) == ("20",)
    assert ids(evaluator.evaluate(refined(concept(FINDING_SITE), descendant_or_self_of(ROOT)), criteria, False)) == ("20",)
    assert ids(evaluator.evaluate(refined(concept(Concepts.IS_A), concept("10")), criteria, False)) == ("20",)
    assert ids(evaluator.evaluate(refined(wildcard(), concept("10")), criteria, False)) == ("20",)
    assert ids(evaluator.evaluate(refined(wildcard(), wildcard()), criteria, False)) == ("10", "20", "30", "40")
    assert evaluator.evaluate(refined(concept(FINDING_SITE), concept("999")), criteria, False) is EMPTY_SET


def test_refinement_groups(evaluator, criteria):
    site = AttributeConstraint(concept(FINDING_SITE), concept("10"))
    is_a_valve = AttributeConstraint(concept(Concepts.IS_A), concept("20"))

    conjunction = Refined(wildcard(), RefinementConjunction((site, is_a_valve)))
    disjunction = Refined(wildcard(), RefinementDisjunction((site, is_a_valve)))

    assert evaluator.evaluate(conjunction, criteria, False) is EMPTY_SET
    assert ids(evaluator.evaluate(disjunction, criteria, False)) == ("20", "30")


def test_dotted_attribute_navigation(evaluator, criteria):
    assert ids(evaluator.evaluate(Dotted(concept("20"), concept(FINDING_SITE)), criteria, False)) == ("10",)
    assert ids(
        evaluator.evaluate(Dotted(descendant_of(ROOT), concept(Concepts.IS_A)), criteria, False)
    ) == ("10", "20", ROOT)
    assert evaluator.evaluate(Dotted(concept("999"), concept(FINDING_SITE)), criteria, False) is EMPTY_SET


def test_literal_attribute_types_need_no_index_entry(evaluator, criteria, index):
    for type_id in (FINDING_SITE, Concepts.IS_A):
        with pytest.raises(ConceptNotFoundInIndex):
            index.get_entry(type_id, criteria, False)

    by_site = Refined(wildcard(), AttributeConstraint(concept(FINDING_SITE), concept("10")))
    by_parent = Refined(descendant_of(ROOT), AttributeConstraint(concept(Concepts.IS_A), concept("10")))

    assert ids(evaluator.evaluate(by_site, criteria, False)) == ("20",)
    assert ids(evaluator.evaluate(by_parent, criteria, False)) == ("20",)
    assert ids(evaluator.evaluate(Dotted(concept("20"), concept(FINDING_SITE)), criteria, False)) == ("10",)


def test_id_set_membership():
    result = IdSet(("30", "10", "20"))

    assert "10" in result
    assert "99" not in result
    assert result.members is result.as_set()
    assert result == IdSet(("30", "10", "20"))


def test_id_filter_bounds_the_match(evaluator, criteria):
    result = evaluator.evaluate(descendant_of(ROOT), criteria, False, id_filter=["30", "40", "999"])
    assert ids(result) == ("30", "40")


def test_select_page_pages_in_backend(evaluator, criteria):
    page, total = evaluator.select_page(descendant_of(ROOT), criteria, False, offset=1, limit=2)
    assert (page, total) == (["20", "30"], 4)
    assert evaluator.select_page(concept("999"), criteria, False) == ([], 0)


def test_stated_form_is_evaluated_separately(evaluator, criteria):
    assert evaluator.evaluate(descendant_of(ROOT), criteria, True) is EMPTY_SET


def test_combinators_are_pure():
    a, b = Term("concept_id", "1"), Term("concept_id", "2")

    assert both(UNCONSTRAINED, a) == a
    assert either(a, UNCONSTRAINED) is UNCONSTRAINED
    assert without(a, UNCONSTRAINED) == MATCH_NONE
    combined = both(a, b)
    assert either(combined, a) != combined


def test_sub_expression_requires_exactly_one_focus():
    with pytest.raises(ValueError):
        SubExpression(Operator.SELF, concept_id="1", wildcard=True)
    with pytest.raises(ValueError):
        SubExpression(Operator.SELF)
