"""
Terminology components and well-known concept identifiers.

Components are pydantic models. ``to_document`` produces the flat document
stored by a backend; nested collections (a concept's descriptions and
relationships) are stored in their own collections and joined on read.
"""

from typing import Any, ClassVar, Dict, List, Mapping, Optional

from pydantic import Field

from termquery.shared.models import TermQueryBaseModel


class Concepts:
    """Well-known concept identifiers."""

    ROOT = "138875005"
    IS_A = "116680003"

    FSN = "900000000000003001"
    SYNONYM = "900000000000013009"

    PRIMITIVE = "900000000000074008"
    FULLY_DEFINED = "900000000000073002"

    STATED_RELATIONSHIP = "900000000000010007"
    INFERRED_RELATIONSHIP = "900000000000011006"

    PREFERRED = "900000000000548007"
    ACCEPTABLE = "900000000000549004"

    CORE_MODULE = "900000000000207008"


def characteristic_type(stated: bool) -> str:
    return Concepts.STATED_RELATIONSHIP if stated else Concepts.INFERRED_RELATIONSHIP


def form_label(stated: bool) -> str:
    return "stated" if stated else "inferred"


class Component(TermQueryBaseModel):
    """Version fields written by a commit."""

    internal_id: Optional[str] = None
    path: Optional[str] = None
    start: Optional[int] = None
    end: Optional[int] = None

    _nested: ClassVar[frozenset] = frozenset()

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude=set(self._nested), exclude_none=True)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]):
        return cls.model_validate(dict(doc))


class Description(Component):
    description_id: str
    concept_id: str
    term: str
    active: bool = True
    module_id: str = Concepts.CORE_MODULE
    language_code: str = "en"
    type_id: str = Concepts.SYNONYM
    case_significance_id: Optional[str] = None
    # refset id -> acceptability id, joined from language reference set members
    acceptability: Dict[str, str] = Field(default_factory=dict)

    _nested = frozenset({"acceptability"})


class Relationship(Component):
    relationship_id: str
    source_id: str
    destination_id: str
    type_id: str
    active: bool = True
    module_id: str = Concepts.CORE_MODULE
    relationship_group: int = 0
    characteristic_type_id: str = Concepts.INFERRED_RELATIONSHIP

    @property
    def is_stated(self) -> bool:
        return self.characteristic_type_id == Concepts.STATED_RELATIONSHIP


class ReferenceSetMember(Component):
    member_id: str
    refset_id: str
    referenced_component_id: str
    active: bool = True
    module_id: str = Concepts.CORE_MODULE
    additional_fields: Dict[str, str] = Field(default_factory=dict)


class Concept(Component):
    concept_id: str
    active: bool = True
    module_id: str = Concepts.CORE_MODULE
    definition_status_id: str = Concepts.PRIMITIVE
    descriptions: List[Description] = Field(default_factory=list)
    relationships: List[Relationship] = Field(default_factory=list)

    _nested = frozenset({"descriptions", "relationships"})

    def fsn(self, language_codes: Optional[List[str]] = None) -> Optional[str]:
        for description in self.descriptions:
            if not description.active or description.type_id != Concepts.FSN:
                continue
            if language_codes and description.language_code not in language_codes:
                continue
            return description.term
        return None


class ConceptSummary(TermQueryBaseModel):
    """Lightweight concept view returned by searches."""

    concept_id: str
    active: bool
    definition_status_id: str
    module_id: Optional[str] = None
    fsn: Optional[str] = None

    @property
    def is_primitive(self) -> bool:
        return self.definition_status_id == Concepts.PRIMITIVE
