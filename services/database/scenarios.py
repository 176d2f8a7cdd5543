"""
Scenario manager: scenario CRUD plus seeding of the built-in templates
"""

import logging
from typing import Dict, List, Optional

from .annotation_store import AnnotationStore
from .records import Scenario

logger = logging.getLogger(__name__)

BUILT_IN_SCENARIOS: List[Dict] = [
    {
        "name": "Protocol Field Extraction",
        "description": "Extract values, units, hex codes, bit ranges and conditions from protocol specifications",
        "entity_types": ["Value", "Unit", "HexCode", "Formula", "Enum", "Condition"],
    },
    {
        "name": "Product Parameter Extraction",
        "description": "Extract product names, specification parameters, tolerances and materials from datasheets",
        "entity_types": ["ProductName", "Spec", "Tolerance", "Material", "Value", "Unit"],
    },
    {
        "name": "Free Text Extraction",
        "description": "General-purpose scenario for user-defined key information in any domain",
        "entity_types": ["KeyInfo", "Person", "Organization", "Location", "Date", "Number"],
    },
]

class ScenarioManager:
    """Thin layer over the store for scenario lifecycle"""

    def __init__(self, store: AnnotationStore):
        self.store = store

    def ensure_built_in_scenarios(self) -> List[Scenario]:
        """Create any missing built-in scenario, matching names case-insensitively.

        Returns the scenarios created by this call.
        """
        existing = {s.name.lower() for s in self.store.list_scenarios()}
        created = []

        for template in BUILT_IN_SCENARIOS:
            if template["name"].lower() in existing:
                continue
            created.append(self.store.add_scenario(
                name=template["name"],
                description=template["description"],
                entity_types=template["entity_types"],
                is_built_in=True,
            ))

        if created:
            logger.info(f"Seeded {len(created)} built-in scenarios")
        return created

    def create_scenario(self, name: str, entity_types: List[str], description: str = "") -> Scenario:
        if not name or not name.strip():
            raise ValueError("Scenario name must not be empty")
        return self.store.add_scenario(name=name.strip(), entity_types=entity_types, description=description)

    def list_scenarios(self) -> List[Scenario]:
        return self.store.list_scenarios()

    def get_scenario(self, scenario_id: int) -> Optional[Scenario]:
        return self.store.get_scenario(scenario_id)

    def find_by_name(self, name: str) -> Optional[Scenario]:
        wanted = name.lower()
        for scenario in self.store.list_scenarios():
            if scenario.name.lower() == wanted:
                return scenario
        return None

    def delete_scenario(self, scenario_id: int) -> bool:
        return self.store.delete_scenario(scenario_id)
