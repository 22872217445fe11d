"""
Expression constraint evaluation.
AST node types, the three-way Result and the evaluator that compiles
constraints into semantic index queries.
"""

from .ast import (
    AttributeConstraint,
    Compound,
    CompoundOperator,
    Dotted,
    Expression,
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
from .evaluator import ExpressionConstraintEvaluator
from .results import EMPTY_SET, UNCONSTRAINED, EmptySet, IdSet, Result, Unconstrained, id_set

__all__ = [
    # AST
    "Operator",
    "CompoundOperator",
    "SubExpression",
    "AttributeConstraint",
    "RefinementConjunction",
    "RefinementDisjunction",
    "Refined",
    "Compound",
    "Dotted",
    "Expression",
    "concept",
    "wildcard",
    "nested",
    "descendant_of",
    "descendant_or_self_of",
    "member_of",
    # Results
    "Result",
    "Unconstrained",
    "EmptySet",
    "IdSet",
    "UNCONSTRAINED",
    "EMPTY_SET",
    "id_set",
    # Evaluator
    "ExpressionConstraintEvaluator",
]
