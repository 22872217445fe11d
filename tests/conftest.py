# Test fixtures: in-memory backend, branch store and fully wired services
# Every test runs against the in-memory backend; Neo4j is exercised with dummy drivers

import itertools
import os
import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment
os.environ["ENV"] = "development"
os.environ.setdefault("NEO4J_PASSWORD", "testpassword123")

from termquery.branching import BranchService, InMemoryBranchStore  # noqa: E402
from termquery.concepts import ConceptService  # noqa: E402
from termquery.domain import Concept, Concepts, Description, Relationship  # noqa: E402
from termquery.ecl import ExpressionConstraintEvaluator  # noqa: E402
from termquery.index import SemanticIndex  # noqa: E402
from termquery.refset import ReferenceSetMembership  # noqa: E402
from termquery.search import DescriptionSearch, SearchCoordinator  # noqa: E402
from termquery.shared.config import SearchConfig  # noqa: E402
from termquery.storage import InMemoryBackend  # noqa: E402

MAIN = "MAIN"


class StepClock:
    """Millisecond clock that advances by ``step`` on every read."""

    def __init__(self, start: int = 1000, step: int = 10):
        self._ticks = itertools.count(start, step)

    def __call__(self) -> int:
        return next(self._ticks)


def make_concept(concept_id, *parents, fsn=None, synonyms=(), attributes=None, stated=False, **fields):
    """
    Build a concept with is-a relationships to ``parents``.

    ``attributes`` maps attribute type id to destination concept ids.
    """
    characteristic = Concepts.STATED_RELATIONSHIP if stated else Concepts.INFERRED_RELATIONSHIP
    relationships = [
        Relationship(
            relationship_id=f"{concept_id}-isa-{parent}",
            source_id=concept_id,
            destination_id=parent,
            type_id=Concepts.IS_A,
            characteristic_type_id=characteristic,
        )
        for parent in parents
    ]
    for type_id, destinations in (attributes or {}).items():
        for destination in destinations:
            relationships.append(
                Relationship(
                    relationship_id=f"{concept_id}-{type_id}-{destination}",
                    source_id=concept_id,
                    destination_id=destination,
                    type_id=type_id,
                    characteristic_type_id=characteristic,
                )
            )
    descriptions = []
    if fsn:
        descriptions.append(
            Description(
                description_id=f"{concept_id}-fsn",
                concept_id=concept_id,
                term=fsn,
                type_id=Concepts.FSN,
            )
        )
    for i, synonym in enumerate(synonyms):
        descriptions.append(
            Description(
                description_id=f"{concept_id}-syn{i}",
                concept_id=concept_id,
                term=synonym,
            )
        )
    return Concept(
        concept_id=concept_id,
        descriptions=descriptions,
        relationships=relationships,
        **fields,
    )


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def branch_store():
    return InMemoryBranchStore()


@pytest.fixture
def branches(branch_store, backend, clock):
    service = BranchService(branch_store, backend, root_path=MAIN, clock=clock)
    service.ensure_root()
    return service


@pytest.fixture
def index(backend):
    return SemanticIndex(backend, batch_size=2)


@pytest.fixture
def membership(backend):
    return ReferenceSetMembership(backend)


@pytest.fixture
def evaluator(index, membership):
    return ExpressionConstraintEvaluator(index, membership)


@pytest.fixture
def concepts(backend, branches, index):
    return ConceptService(backend, branches, index)


@pytest.fixture
def search_config():
    return SearchConfig(large_page_size=3)


@pytest.fixture
def coordinator(backend, branches, concepts, index, evaluator, search_config):
    return SearchCoordinator(
        backend,
        branches,
        concepts,
        index,
        evaluator,
        DescriptionSearch(backend, batch_size=2),
        config=search_config,
    )


@pytest.fixture
def hierarchy(concepts):
    """
    Small inferred hierarchy on MAIN:

        138875005 root
          ├── 10 (heart structure)
          │     └── 20 (heart valve)  finding site -> 10
          │           └── 30 (heart valve disorder)
          └── 40 (lung structure)
    """
    concepts.create(make_concept(Concepts.ROOT, fsn="Clinical finding root"), MAIN)
    concepts.create(make_concept("10", Concepts.ROOT, fsn="Heart structure (body structure)", synonyms=["Heart"]), MAIN)
    concepts.create(
        make_concept(
            "20",
            "10",
            fsn="Heart valve structure (body structure)",
            synonyms=["Heart valve"],
            attributes={"363698007": ["10"]},
            definition_status_id=Concepts.FULLY_DEFINED,
        ),
        MAIN,
    )
    concepts.create(make_concept("30", "20", fsn="Heart valve disorder (disorder)"), MAIN)
    concepts.create(make_concept("40", Concepts.ROOT, fsn="Lung structure (body structure)"), MAIN)
    return concepts


@pytest.fixture
def concept_factory():
    return make_concept
