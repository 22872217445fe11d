"""Backend health checks for runtime monitoring.

Verifies connectivity to the document store and reports whether the
terminology content has been loaded.
"""

import time
from dataclasses import dataclass
from typing import Optional

from neo4j import Driver

from termquery.shared.observability import get_logger

logger = get_logger(__name__)


@dataclass
class BackendHealthStatus:
    """Health check result for the Neo4j backend."""

    healthy: bool
    latency_ms: float
    concept_count: int
    has_content: bool
    message: str
    query_concept_count: Optional[int] = None
    description_count: Optional[int] = None


def check_backend_health(driver: Driver, *, detailed: bool = False) -> BackendHealthStatus:
    """Quick health check for the Neo4j connection and content.

    Args:
        driver: Neo4j driver instance
        detailed: If True, include semantic index and description counts

    Returns:
        BackendHealthStatus with health information
    """
    start = time.time()
    try:
        with driver.session() as session:
            record = session.run("MATCH (c:Concept) RETURN count(c) AS concept_count").single()
            concept_count = record["concept_count"] if record else 0
            latency_ms = (time.time() - start) * 1000

            query_concept_count = None
            description_count = None
            if detailed:
                query_concept_count = session.run(
                    "MATCH (q:QueryConcept) RETURN count(q) AS cnt"
                ).single()["cnt"]
                description_count = session.run(
                    "MATCH (d:Description) RETURN count(d) AS cnt"
                ).single()["cnt"]

            if concept_count > 0:
                message = f"OK - {concept_count} concept versions"
            else:
                message = "No concepts found - terminology content may not be loaded"

            return BackendHealthStatus(
                healthy=concept_count > 0,
                latency_ms=latency_ms,
                concept_count=concept_count,
                has_content=concept_count > 0,
                message=message,
                query_concept_count=query_concept_count,
                description_count=description_count,
            )

    except Exception as e:
        elapsed_ms = (time.time() - start) * 1000
        logger.error("Backend health check failed", error=str(e))
        return BackendHealthStatus(
            healthy=False,
            latency_ms=elapsed_ms,
            concept_count=0,
            has_content=False,
            message=f"Health check failed: {e}",
        )


def check_backend_connectivity(driver: Driver) -> bool:
    """Simple connectivity check.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        with driver.session() as session:
            session.run("RETURN 1").single()
        return True
    except Exception as e:
        logger.error("Backend connectivity check failed", error=str(e))
        return False
