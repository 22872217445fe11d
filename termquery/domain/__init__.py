# Terminology domain records
from .components import (
    Component,
    Concept,
    Concepts,
    ConceptSummary,
    Description,
    ReferenceSetMember,
    Relationship,
    characteristic_type,
    form_label,
)

__all__ = [
    "Component",
    "Concept",
    "Concepts",
    "ConceptSummary",
    "Description",
    "ReferenceSetMember",
    "Relationship",
    "characteristic_type",
    "form_label",
]
