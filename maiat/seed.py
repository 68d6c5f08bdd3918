"""
Maiat — Demo catalog.

A handful of well-known projects for development servers running on the
in-process store.
"""
import structlog

from maiat.models import Project, ProjectCategory

logger = structlog.get_logger()

DEMO_PROJECTS = [
    Project(id="uniswap", slug="uniswap", name="Uniswap", category=ProjectCategory.DEFI,
            address="0x1f9840a85d5af5bf1d1762f925bdaddc4201f984",
            description="Decentralized exchange protocol"),
    Project(id="aave", slug="aave", name="Aave", category=ProjectCategory.DEFI,
            address="0x7fc66500c84a76ad7e9c93437bfc5ac33e2ddae9",
            description="Decentralized lending protocol"),
    Project(id="compound", slug="compound", name="Compound", category=ProjectCategory.DEFI,
            address="0xc00e94cb662c3520282e6f5717214004a7f26888",
            description="Algorithmic money markets"),
    Project(id="curve-finance", slug="curve-finance", name="Curve Finance", category=ProjectCategory.DEFI,
            address="0xd533a949740bb3306d119cc777fa900ba034cd52",
            description="Stablecoin exchange"),
    Project(id="aixbt", slug="aixbt", name="AIXBT", category=ProjectCategory.AGENT,
            description="Market intelligence agent"),
    Project(id="jerrys-coffee", slug="jerrys-coffee", name="Jerry's Coffee", category=ProjectCategory.MERCHANT,
            description="Coffee shop accepting on-chain payments"),
]


async def seed_demo_projects(store) -> int:
    for project in DEMO_PROJECTS:
        await store.add_project(Project(**project.__dict__))
    logger.info("demo_projects_seeded", count=len(DEMO_PROJECTS))
    return len(DEMO_PROJECTS)
