"""Delivery regions and agent pickup points."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional


@dataclass(frozen=True)
class PickupAgent:
    id: str
    name: str
    address: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "address": self.address}


DEFAULT_REGIONS = [
    "Dar es Salaam",
    "Arusha",
    "Mwanza",
    "Dodoma",
    "Mbeya",
    "Morogoro",
    "Tanga",
    "Other",
]

DEFAULT_AGENTS: Dict[str, List[PickupAgent]] = {
    "Dar es Salaam": [
        PickupAgent("posta", "Central Posta", "Posta Mpya, Dar es Salaam"),
        PickupAgent("kariakoo", "Kariakoo Market", "Kariakoo, Dar es Salaam"),
        PickupAgent("mbezi", "Mbezi Luis", "Mbezi Luis, Dar es Salaam"),
    ],
    "Arusha": [PickupAgent("arusha_central", "Arusha Central", "Soko Kuu, Arusha")],
    "Mwanza": [PickupAgent("mwanza_central", "Mwanza Central", "City Center, Mwanza")],
    "Dodoma": [PickupAgent("dodoma_central", "Dodoma Central", "City Center, Dodoma")],
    "Mbeya": [PickupAgent("mbeya_central", "Mbeya Central", "City Center, Mbeya")],
    "Morogoro": [PickupAgent("morogoro_central", "Morogoro Central", "City Center, Morogoro")],
    "Tanga": [PickupAgent("tanga_central", "Tanga Central", "City Center, Tanga")],
    "Other": [
        PickupAgent("regional_bus_terminal", "Regional Bus Terminal", "Main Bus Terminal, Regional Center")
    ],
}


class RegionDirectory:
    """Read-only reference of shippable regions and their pickup agents."""

    def __init__(
        self,
        regions: Optional[Iterable[str]] = None,
        agents: Optional[Dict[str, List[PickupAgent]]] = None,
    ) -> None:
        self._regions = list(regions if regions is not None else DEFAULT_REGIONS)
        self._agents = dict(agents if agents is not None else DEFAULT_AGENTS)

    @property
    def regions(self) -> List[str]:
        return list(self._regions)

    def is_known_region(self, region: str) -> bool:
        return region in self._regions

    def agents_for(self, region: str) -> List[PickupAgent]:
        return list(self._agents.get(region, []))

    def find_agent(self, region: str, agent_id: str) -> Optional[PickupAgent]:
        for agent in self._agents.get(region, []):
            if agent.id == agent_id:
                return agent
        return None
