from dataclasses import dataclass, field
from typing import Any, Optional

from ..datastruct import ContactStorage, ParticleStorage


@dataclass
class Rank:
    """State of one cooperative rank: its particles, contacts and broad phase."""
    rank: int
    storage: ParticleStorage = field(default_factory=ParticleStorage)
    contacts: ContactStorage = field(default_factory=ContactStorage)
    broad_phase: Optional[Any] = None
    creator: Optional[Any] = None


def make_ranks(num_ranks: int):
    return [Rank(rank=r) for r in range(num_ranks)]
