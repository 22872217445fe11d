# Concept service package
from .service import ConceptService

__all__ = ["ConceptService"]
