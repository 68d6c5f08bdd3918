"""
Maiat — Static lookup tables.

AI baseline scores per known project name, and which chains to probe for
usage per project category. Both are built once at import and never mutated.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Tuple

from maiat.models import ProjectCategory


def normalize_name(name: str) -> str:
    return " ".join((name or "").strip().lower().split())


@dataclass(frozen=True)
class BaselineTable:
    """Project name -> AI quality baseline (0-100)."""
    scores: Mapping[str, int]
    default_defi: int = 60
    default_other: int = 50

    def lookup(self, name: str, category: ProjectCategory) -> int:
        score = self.scores.get(normalize_name(name))
        if score is not None:
            return score
        if category == ProjectCategory.DEFI:
            return self.default_defi
        return self.default_other


@dataclass(frozen=True)
class ChainCandidateTable:
    """Project category -> ordered chains to probe."""
    chains: Mapping[ProjectCategory, Tuple[str, ...]]
    default: Tuple[str, ...] = ("ethereum", "base", "bsc")

    def for_category(self, category: ProjectCategory) -> Tuple[str, ...]:
        return self.chains.get(category, self.default)


BASELINES = BaselineTable(scores=MappingProxyType({
    # DeFi
    "aave": 88,
    "uniswap": 90,
    "lido": 85,
    "compound": 82,
    "curve finance": 84,
    "pancakeswap": 80,
    "ethena": 75,
    "ether.fi": 78,
    "morpho": 76,
    "pendle": 74,
    "sky (makerdao)": 86,
    # AI agents
    "aixbt": 82,
    "g.a.m.e": 78,
    "luna": 75,
    "vaderai": 72,
    "neurobro": 68,
    "billybets": 65,
    "ethy ai": 70,
    "music": 62,
    "tracy.ai": 60,
    "acolyt": 64,
    "1000x": 58,
    "araistotle": 56,
    "ribbita": 55,
    "mamo": 60,
    "freya protocol": 58,
}))

CHAIN_CANDIDATES = ChainCandidateTable(chains=MappingProxyType({
    ProjectCategory.AGENT: ("base", "ethereum"),
    ProjectCategory.DEFI: ("ethereum", "base", "bsc"),
}))
