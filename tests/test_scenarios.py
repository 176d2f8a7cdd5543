"""
Tests for built-in scenario seeding
"""

import pytest

from services.database.scenarios import ScenarioManager, BUILT_IN_SCENARIOS

class TestScenarioManager:
    """Test scenario manager behaviour"""

    def test_seeds_built_ins_once(self, store):
        manager = ScenarioManager(store)

        created = manager.ensure_built_in_scenarios()
        assert len(created) == len(BUILT_IN_SCENARIOS)
        assert all(s.is_built_in for s in created)

        assert manager.ensure_built_in_scenarios() == []
        assert len(manager.list_scenarios()) == len(BUILT_IN_SCENARIOS)

    def test_existing_name_matched_case_insensitively(self, store):
        store.add_scenario(BUILT_IN_SCENARIOS[0]["name"].upper(), ["Value"])
        manager = ScenarioManager(store)

        created = manager.ensure_built_in_scenarios()
        assert len(created) == len(BUILT_IN_SCENARIOS) - 1

    def test_protocol_scenario_labels(self, store):
        manager = ScenarioManager(store)
        manager.ensure_built_in_scenarios()

        protocol = manager.find_by_name("protocol field extraction")
        assert protocol.entity_types == ["Value", "Unit", "HexCode", "Formula", "Enum", "Condition"]

    def test_create_and_delete_user_scenario(self, store):
        manager = ScenarioManager(store)
        created = manager.create_scenario("  Custom  ", ["Part"])

        assert created.name == "Custom"
        assert manager.delete_scenario(created.id) is True
        assert manager.get_scenario(created.id) is None

    def test_empty_name_rejected(self, store):
        with pytest.raises(ValueError):
            ScenarioManager(store).create_scenario("   ", ["X"])
