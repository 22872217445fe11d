# Engine assembly
# Wires backend, branch store and services from Config/Settings

from dataclasses import dataclass
from typing import Callable, Optional

from termquery.branching import BranchService, BranchStore, InMemoryBranchStore, Neo4jBranchStore
from termquery.branching.service import epoch_millis
from termquery.concepts import ConceptService
from termquery.ecl import ExpressionConstraintEvaluator
from termquery.index import SemanticIndex
from termquery.refset import ReferenceSetMembership
from termquery.search import DescriptionSearch, SearchCoordinator
from termquery.shared.config import Config, Settings
from termquery.shared.connections import ConnectionManager
from termquery.shared.observability import get_logger, init_tracing, setup_logging
from termquery.storage import DocumentBackend, InMemoryBackend, Neo4jBackend

logger = get_logger(__name__)


@dataclass
class Engine:
    """Everything a caller needs to read, write and search one terminology store"""

    config: Config
    backend: DocumentBackend
    branches: BranchService
    index: SemanticIndex
    membership: ReferenceSetMembership
    evaluator: ExpressionConstraintEvaluator
    concepts: ConceptService
    search: SearchCoordinator
    connections: Optional[ConnectionManager] = None

    def close(self) -> None:
        if self.connections is not None:
            self.connections.close()


def _storage(config: Config, connections: Optional[ConnectionManager]):
    if config.backend.kind == "neo4j":
        driver = connections.get_neo4j_driver()
        backend = Neo4jBackend(
            driver,
            database=config.backend.database,
            fulltext_index=config.backend.fulltext_index,
            fetch_size=config.backend.fetch_size,
        )
        backend.ensure_schema()
        store: BranchStore = Neo4jBranchStore(driver, database=config.backend.database)
        return backend, store
    return InMemoryBackend(), InMemoryBranchStore()


def build_engine(
    config: Config,
    settings: Optional[Settings] = None,
    *,
    clock: Callable[[], int] = epoch_millis,
    configure_observability: bool = False,
) -> Engine:
    """
    Build an engine for the configured backend and make sure the root branch exists.

    Args:
        config: YAML configuration
        settings: Environment settings; required for the neo4j backend
        clock: Millisecond clock used for commit timestamps
        configure_observability: Also set up logging and tracing from settings
    """
    settings = settings or Settings()
    if configure_observability:
        setup_logging(settings.log_level)
        init_tracing(
            service_name=settings.otel_service_name,
            service_version=config.app.version,
            endpoint=settings.otel_exporter_otlp_endpoint,
        )

    connections = ConnectionManager(settings) if config.backend.kind == "neo4j" else None
    backend, store = _storage(config, connections)

    branches = BranchService(
        store, backend, root_path=config.branching.root_path, clock=clock
    )
    branches.ensure_root()

    index = SemanticIndex(
        backend,
        batch_size=config.index.batch_size,
        is_a_type_id=config.index.is_a_type_id,
    )
    membership = ReferenceSetMembership(backend, batch_size=config.index.batch_size)
    evaluator = ExpressionConstraintEvaluator(index, membership)
    concepts = ConceptService(backend, branches, index, batch_size=config.index.batch_size)
    lexical = DescriptionSearch(backend, batch_size=config.search.large_page_size)
    coordinator = SearchCoordinator(
        backend,
        branches,
        concepts,
        index,
        evaluator,
        lexical,
        config=config.search,
    )

    logger.info(
        "Engine ready",
        backend=config.backend.kind,
        root=config.branching.root_path,
    )
    return Engine(
        config=config,
        backend=backend,
        branches=branches,
        index=index,
        membership=membership,
        evaluator=evaluator,
        concepts=concepts,
        search=coordinator,
        connections=connections,
    )
