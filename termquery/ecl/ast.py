"""
Expression constraint AST.

Nodes are produced by an external parser and only walked here. Every node is
an immutable value.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union


class Operator(str, Enum):
    SELF = "self"
    DESCENDANT_OF = "descendantOf"
    DESCENDANT_OR_SELF_OF = "descendantOrSelfOf"
    ANCESTOR_OF = "ancestorOf"
    ANCESTOR_OR_SELF_OF = "ancestorOrSelfOf"
    CHILD_OF = "childOf"
    PARENT_OF = "parentOf"
    MEMBER_OF = "memberOf"


class CompoundOperator(str, Enum):
    AND = "and"
    OR = "or"
    MINUS = "minus"


@dataclass(frozen=True)
class SubExpression:
    """
    Focus of a constraint: exactly one of a literal concept id, the wildcard
    ``*`` or a nested expression, qualified by an operator.
    """

    operator: Operator = Operator.SELF
    concept_id: Optional[str] = None
    wildcard: bool = False
    nested: Optional["Expression"] = None

    def __post_init__(self) -> None:
        given = sum((self.concept_id is not None, self.wildcard, self.nested is not None))
        if given != 1:
            raise ValueError(
                "SubExpression needs exactly one of concept_id, wildcard or nested"
            )


@dataclass(frozen=True)
class AttributeConstraint:
    """``attribute = value``; both sides are themselves expressions."""

    attribute: "Expression"
    value: "Expression"


@dataclass(frozen=True)
class RefinementConjunction:
    items: Tuple["Refinement", ...]


@dataclass(frozen=True)
class RefinementDisjunction:
    items: Tuple["Refinement", ...]


Refinement = Union[AttributeConstraint, RefinementConjunction, RefinementDisjunction]


@dataclass(frozen=True)
class Refined:
    """``focus : refinement``"""

    focus: SubExpression
    refinement: Refinement


@dataclass(frozen=True)
class Compound:
    operator: CompoundOperator
    left: "Expression"
    right: "Expression"


@dataclass(frozen=True)
class Dotted:
    """``source . attribute``: attribute values of the source concepts."""

    source: "Expression"
    attribute: "Expression"


Expression = Union[SubExpression, Refined, Compound, Dotted]


# Shorthand constructors, mostly for tests and programmatic queries


def concept(concept_id: str, operator: Operator = Operator.SELF) -> SubExpression:
    return SubExpression(operator=operator, concept_id=concept_id)


def wildcard(operator: Operator = Operator.SELF) -> SubExpression:
    return SubExpression(operator=operator, wildcard=True)


def nested(expression: Expression, operator: Operator = Operator.SELF) -> SubExpression:
    return SubExpression(operator=operator, nested=expression)


def descendant_of(concept_id: str) -> SubExpression:
    return concept(concept_id, Operator.DESCENDANT_OF)


def descendant_or_self_of(concept_id: str) -> SubExpression:
    return concept(concept_id, Operator.DESCENDANT_OR_SELF_OF)


def member_of(refset_id: Optional[str] = None) -> SubExpression:
    if refset_id is None:
        return wildcard(Operator.MEMBER_OF)
    return concept(refset_id, Operator.MEMBER_OF)
