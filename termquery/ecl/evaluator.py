"""
Expression constraint evaluator.

Each AST node compiles to a Constraint: either UNCONSTRAINED or an immutable
FilterExpr over semantic index entries. Frames combine their children's
constraints with ``all_of``/``any_of``/``negate`` and never mutate them, so a
nested frame cannot leak clauses into its siblings or parent.

Nested operands are resolved to concrete id sets first. A nested operand that
matches nothing compiles the enclosing operator against an empty set, which
yields MATCH_NONE rather than dropping the restriction.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple, Union

from termquery.branching.criteria import BranchCriteria
from termquery.index.semantic_index import SemanticIndex
from termquery.refset.membership import ReferenceSetMembership
from termquery.shared.errors import UnsupportedConstraint
from termquery.shared.observability import get_logger, trace_ecl
from termquery.storage.filters import (
    MATCH_ALL,
    MATCH_NONE,
    AnyMapValue,
    Exists,
    FilterExpr,
    all_of,
    any_of,
    negate,
    terms,
)

from .ast import (
    AttributeConstraint,
    Compound,
    CompoundOperator,
    Dotted,
    Expression,
    Operator,
    Refined,
    Refinement,
    RefinementConjunction,
    RefinementDisjunction,
    SubExpression,
)
from .results import EMPTY_SET, UNCONSTRAINED, EmptySet, Result, Unconstrained, id_set

logger = get_logger(__name__)

Constraint = Union[Unconstrained, FilterExpr]

CONCEPT_ID = "concept_id"
ANCESTORS = "ancestors"
PARENTS = "parents"
ATTRIBUTES = "attributes"


def both(left: Constraint, right: Constraint) -> Constraint:
    if left is UNCONSTRAINED:
        return right
    if right is UNCONSTRAINED:
        return left
    return all_of(left, right)


def either(left: Constraint, right: Constraint) -> Constraint:
    if left is UNCONSTRAINED or right is UNCONSTRAINED:
        return UNCONSTRAINED
    return any_of(left, right)


def without(left: Constraint, right: Constraint) -> Constraint:
    if right is UNCONSTRAINED:
        return MATCH_NONE
    if left is UNCONSTRAINED:
        return negate(right)
    return all_of(left, negate(right))


def _outcome(constraint: Constraint) -> str:
    if constraint is UNCONSTRAINED:
        return "unconstrained"
    if constraint == MATCH_NONE:
        return "empty"
    return "constrained"


class ExpressionConstraintEvaluator:
    def __init__(
        self,
        index: SemanticIndex,
        membership: ReferenceSetMembership,
    ) -> None:
        self.index = index
        self.membership = membership

    @property
    def is_a_type_id(self) -> str:
        return self.index.is_a_type_id

    # -------------------------------------------------------------- validation
    def validate(self, node: Expression) -> None:
        """
        Reject constraint shapes that cannot be compiled.

        Raises:
            UnsupportedConstraint: memberOf with a nested expression operand
        """
        if isinstance(node, SubExpression):
            if node.nested is not None:
                if node.operator is Operator.MEMBER_OF:
                    raise UnsupportedConstraint(
                        "MemberOf nested expression constraint is not supported."
                    )
                self.validate(node.nested)
        elif isinstance(node, Refined):
            self.validate(node.focus)
            self._validate_refinement(node.refinement)
        elif isinstance(node, Compound):
            self.validate(node.left)
            self.validate(node.right)
        elif isinstance(node, Dotted):
            self.validate(node.source)
            self.validate(node.attribute)
        else:
            raise UnsupportedConstraint(f"Unknown constraint node {type(node).__name__}")

    def _validate_refinement(self, refinement: Refinement) -> None:
        if isinstance(refinement, AttributeConstraint):
            self.validate(refinement.attribute)
            self.validate(refinement.value)
        elif isinstance(refinement, (RefinementConjunction, RefinementDisjunction)):
            for item in refinement.items:
                self._validate_refinement(item)
        else:
            raise UnsupportedConstraint(f"Unknown refinement node {type(refinement).__name__}")

    # ------------------------------------------------------------- public API
    def evaluate(
        self,
        node: Expression,
        criteria: BranchCriteria,
        stated: bool,
        id_filter: Optional[Iterable[str]] = None,
    ) -> Result:
        """
        Evaluate ``node`` to UNCONSTRAINED, EMPTY_SET or an IdSet.

        ``id_filter`` bounds the matched ids to a candidate list, which keeps
        the cost of a logical match proportional to the candidates.
        """
        self.validate(node)
        constraint = self._compile(node, criteria, stated)
        if constraint is UNCONSTRAINED:
            return UNCONSTRAINED
        if id_filter is not None:
            constraint = all_of(constraint, terms(CONCEPT_ID, id_filter))
        return self._select(constraint, criteria, stated)

    def select_page(
        self,
        node: Expression,
        criteria: BranchCriteria,
        stated: bool,
        *,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[str], int]:
        """One page of matching ids, ascending by id, plus the total count."""
        self.validate(node)
        constraint = self._compile(node, criteria, stated)
        flt = MATCH_ALL if constraint is UNCONSTRAINED else constraint
        if flt == MATCH_NONE:
            return [], 0
        return self.index.find_concept_ids(flt, criteria, stated, offset=offset, limit=limit)

    def compile(self, node: Expression, criteria: BranchCriteria, stated: bool) -> Constraint:
        self.validate(node)
        return self._compile(node, criteria, stated)

    # -------------------------------------------------------------- internals
    def _select(self, constraint: FilterExpr, criteria: BranchCriteria, stated: bool) -> Result:
        if constraint == MATCH_NONE:
            return EMPTY_SET
        return id_set(self.index.stream_concept_ids(constraint, criteria, stated))

    def _resolve(self, node: Expression, criteria: BranchCriteria, stated: bool) -> Result:
        constraint = self._compile(node, criteria, stated)
        if constraint is UNCONSTRAINED:
            return UNCONSTRAINED
        return self._select(constraint, criteria, stated)

    def _compile(self, node: Expression, criteria: BranchCriteria, stated: bool) -> Constraint:
        if isinstance(node, SubExpression):
            return self._compile_sub_expression(node, criteria, stated)
        if isinstance(node, Refined):
            with trace_ecl("refined") as outcome:
                constraint = both(
                    self._compile_sub_expression(node.focus, criteria, stated),
                    self._compile_refinement(node.refinement, criteria, stated),
                )
                outcome["value"] = _outcome(constraint)
                return constraint
        if isinstance(node, Compound):
            with trace_ecl(f"compound_{node.operator.value}") as outcome:
                left = self._compile(node.left, criteria, stated)
                right = self._compile(node.right, criteria, stated)
                if node.operator is CompoundOperator.AND:
                    constraint = both(left, right)
                elif node.operator is CompoundOperator.OR:
                    constraint = either(left, right)
                else:
                    constraint = without(left, right)
                outcome["value"] = _outcome(constraint)
                return constraint
        if isinstance(node, Dotted):
            with trace_ecl("dotted") as outcome:
                constraint = self._compile_dotted(node, criteria, stated)
                outcome["value"] = _outcome(constraint)
                return constraint
        raise UnsupportedConstraint(f"Unknown constraint node {type(node).__name__}")

    def _compile_sub_expression(
        self, node: SubExpression, criteria: BranchCriteria, stated: bool
    ) -> Constraint:
        with trace_ecl(node.operator.value) as outcome:
            if node.wildcard:
                if node.operator is Operator.MEMBER_OF:
                    constraint = terms(CONCEPT_ID, self.membership.members_of(criteria, None))
                else:
                    constraint = UNCONSTRAINED
            elif node.concept_id is not None:
                constraint = self._apply_operator(
                    node.operator, (node.concept_id,), criteria, stated, literal=True
                )
            else:
                operand = self._resolve(node.nested, criteria, stated)
                if operand is UNCONSTRAINED:
                    # Operators over a wildcard operand impose no restriction
                    constraint = UNCONSTRAINED
                else:
                    ids = () if isinstance(operand, EmptySet) else operand.ids
                    constraint = self._apply_operator(
                        node.operator, ids, criteria, stated, literal=False
                    )
            outcome["value"] = _outcome(constraint)
            return constraint

    def _apply_operator(
        self,
        operator: Operator,
        ids: Tuple[str, ...],
        criteria: BranchCriteria,
        stated: bool,
        *,
        literal: bool,
    ) -> FilterExpr:
        if operator is Operator.SELF:
            return terms(CONCEPT_ID, ids)
        if operator is Operator.DESCENDANT_OF:
            return terms(ANCESTORS, ids)
        if operator is Operator.DESCENDANT_OR_SELF_OF:
            return any_of(terms(ANCESTORS, ids), terms(CONCEPT_ID, ids))
        if operator is Operator.CHILD_OF:
            return terms(PARENTS, ids)
        if operator in (Operator.ANCESTOR_OF, Operator.ANCESTOR_OR_SELF_OF):
            if literal:
                ancestors = set()
                for concept_id in ids:
                    ancestors |= self.index.get_ancestors(concept_id, criteria, stated)
            else:
                ancestors = self.index.get_ancestors_union(ids, criteria, stated)
            if operator is Operator.ANCESTOR_OR_SELF_OF:
                ancestors |= set(ids)
            return terms(CONCEPT_ID, ancestors)
        if operator is Operator.PARENT_OF:
            if literal:
                parents = set()
                for concept_id in ids:
                    parents |= self.index.get_parents(concept_id, criteria, stated)
            else:
                parents = set(
                    self.index.get_attribute_values(ids, [self.is_a_type_id], criteria, stated)
                )
            return terms(CONCEPT_ID, parents)
        if operator is Operator.MEMBER_OF:
            members = set()
            for refset_id in ids:
                members |= self.membership.members_of(criteria, refset_id)
            return terms(CONCEPT_ID, members)
        raise UnsupportedConstraint(f"Unsupported operator {operator}")

    @staticmethod
    def _literal(node: Expression) -> Optional[str]:
        if (
            isinstance(node, SubExpression)
            and node.concept_id is not None
            and node.operator is Operator.SELF
        ):
            return node.concept_id
        return None

    def _refinement_operand(
        self, node: Expression, criteria: BranchCriteria, stated: bool
    ) -> Result:
        # Literal types and values are used as written, indexed or not
        literal = self._literal(node)
        if literal is not None:
            return id_set((literal,))
        return self._resolve(node, criteria, stated)

    def _attribute_types(
        self, node: Expression, criteria: BranchCriteria, stated: bool
    ) -> Optional[Tuple[str, ...]]:
        """Attribute type ids, or None for any attribute type."""
        resolved = self._refinement_operand(node, criteria, stated)
        if resolved is UNCONSTRAINED:
            return None
        if isinstance(resolved, EmptySet):
            return ()
        return resolved.ids

    def _attribute_filter(self, type_id: str, values: Optional[frozenset]) -> FilterExpr:
        field = PARENTS if type_id == self.is_a_type_id else f"{ATTRIBUTES}.{type_id}"
        if values is None:
            return Exists(field)
        return terms(field, values)

    def _compile_refinement(
        self, refinement: Refinement, criteria: BranchCriteria, stated: bool
    ) -> Constraint:
        if isinstance(refinement, RefinementConjunction):
            constraint: Constraint = UNCONSTRAINED
            for item in refinement.items:
                constraint = both(constraint, self._compile_refinement(item, criteria, stated))
            return constraint
        if isinstance(refinement, RefinementDisjunction):
            constraint = MATCH_NONE
            for item in refinement.items:
                constraint = either(constraint, self._compile_refinement(item, criteria, stated))
            return constraint

        with trace_ecl("attribute") as outcome:
            type_ids = self._attribute_types(refinement.attribute, criteria, stated)
            value = self._refinement_operand(refinement.value, criteria, stated)
            if type_ids == () or isinstance(value, EmptySet):
                constraint = MATCH_NONE
            else:
                values = None if value is UNCONSTRAINED else value.as_set()
                if type_ids is None:
                    if values is None:
                        # Every concept carrying an attribute also has a parent
                        constraint = Exists(PARENTS)
                    else:
                        constraint = any_of(
                            AnyMapValue(ATTRIBUTES, values), terms(PARENTS, values)
                        )
                else:
                    constraint = any_of(
                        *(self._attribute_filter(t, values) for t in type_ids)
                    )
            outcome["value"] = _outcome(constraint)
            return constraint

    def _compile_dotted(self, node: Dotted, criteria: BranchCriteria, stated: bool) -> Constraint:
        source = self._resolve(node.source, criteria, stated)
        if isinstance(source, EmptySet):
            return MATCH_NONE
        type_ids = self._attribute_types(node.attribute, criteria, stated)
        if type_ids == ():
            return MATCH_NONE
        source_ids = None if source is UNCONSTRAINED else source.ids
        values = self.index.get_attribute_values(source_ids, type_ids, criteria, stated)
        logger.debug(
            "Dotted attribute resolved",
            sources=None if source_ids is None else len(source_ids),
            values=len(values),
        )
        return terms(CONCEPT_ID, values)
