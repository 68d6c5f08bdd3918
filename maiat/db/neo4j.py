"""
Maiat Database Layer

Neo4j connection management and schema initialization for the review graph:

    (:Reviewer)-[:WROTE]->(:Review)-[:ABOUT]->(:Project)
"""
from contextlib import contextmanager

from neo4j import GraphDatabase
import structlog

from maiat.config import get_settings

logger = structlog.get_logger()

_driver = None


def get_driver():
    """Get or create Neo4j driver (singleton)."""
    global _driver
    if _driver is None:
        settings = get_settings()
        _driver = GraphDatabase.driver(
            settings.NEO4J_URI,
            auth=(settings.NEO4J_USER, settings.NEO4J_PASSWORD),
        )
        logger.info("neo4j_connected", uri=settings.NEO4J_URI)
    return _driver


@contextmanager
def get_session():
    """Get a Neo4j session (context manager)."""
    driver = get_driver()
    session = driver.session()
    try:
        yield session
    finally:
        session.close()


def init_schema():
    """Initialize constraints and indexes for the review graph."""
    constraints = [
        "CREATE CONSTRAINT IF NOT EXISTS FOR (p:Project) REQUIRE p.id IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (p:Project) REQUIRE p.slug IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (u:Reviewer) REQUIRE u.id IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (u:Reviewer) REQUIRE u.address IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (r:Review) REQUIRE r.id IS UNIQUE",
    ]

    indexes = [
        "CREATE INDEX IF NOT EXISTS FOR (p:Project) ON (p.category)",
        "CREATE INDEX IF NOT EXISTS FOR (r:Review) ON (r.projectId)",
        "CREATE INDEX IF NOT EXISTS FOR (r:Review) ON (r.status)",
    ]

    with get_session() as session:
        for query in constraints + indexes:
            try:
                session.run(query)
            except Exception as e:
                logger.warning("schema_init_warning", query=query[:60], error=str(e))

    logger.info("schema_initialized", constraints=len(constraints), indexes=len(indexes))


def close():
    """Close the Neo4j driver."""
    global _driver
    if _driver:
        _driver.close()
        _driver = None
        logger.info("neo4j_disconnected")
