# =============================================================================
# FINPLAN ENGINE - FINANCIAL OUTPUT STORE TESTS
# =============================================================================

import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from finplan.projection import projection_engine
from finplan.store import FinancialOutputStore, scenario_key


class TestReplace:
    """Tests for replacing a stored series."""

    def test_round_trip(self, store, full_inputs):
        outputs = projection_engine(full_inputs).outputs
        assert store.replace_outputs("acme", None, outputs) == 24
        assert store.load_outputs("acme") == outputs

    def test_shrinking_series_leaves_no_leftovers(self, store, make_series):
        long_series = make_series([{"revenue": 1}] * 36)
        store.replace_outputs("test", None, long_series)
        assert store.count_outputs("test") == 36

        short_series = make_series([{"revenue": 2}] * 12)
        store.replace_outputs("test", None, short_series)
        stored = store.load_outputs("test")
        assert len(stored) == 12
        assert all(row.revenue == 2 for row in stored)

    def test_recalculation_overwrites(self, store, make_series):
        store.replace_outputs("test", None, make_series([{"revenue": 1}] * 3))
        store.replace_outputs("test", None, make_series([{"revenue": 5}] * 3))
        assert [row.revenue for row in store.load_outputs("test")] == [5, 5, 5]

    def test_empty_replace_clears(self, store, make_series):
        store.replace_outputs("test", None, make_series([{}] * 3))
        assert store.replace_outputs("test", None, []) == 0
        assert not store.has_outputs("test")

    def test_load_is_chronological(self, store, make_series):
        series = make_series([{"revenue": i} for i in range(14)])
        store.replace_outputs("test", None, list(reversed(series)))
        stored = store.load_outputs("test")
        assert [(row.year, row.month) for row in stored] == [(row.year, row.month) for row in series]


class TestScenarioKeys:
    """Base case and scenarios are stored separately."""

    def test_scenario_key(self):
        assert scenario_key(None) == ""
        assert scenario_key("optimistic") == "optimistic"

    def test_series_are_independent(self, store, make_series):
        store.replace_outputs("test", None, make_series([{"revenue": 1}] * 2))
        store.replace_outputs("test", "up", make_series([{"revenue": 9, "scenario_id": "up"}] * 3))
        assert store.count_outputs("test") == 2
        assert store.count_outputs("test", "up") == 3
        assert store.load_outputs("test")[0].scenario_id is None
        assert store.load_outputs("test", "up")[0].scenario_id == "up"

        assert store.delete_outputs("test", "up") == 3
        assert store.count_outputs("test") == 2

    def test_projects_are_independent(self, store, make_series):
        store.replace_outputs("a", None, make_series([{}] * 2))
        store.replace_outputs("b", None, make_series([{}] * 4))
        assert store.delete_outputs("a") == 2
        assert store.count_outputs("b") == 4


class TestMetadata:
    """Tests for status queries."""

    def test_last_calculated_at(self, store, make_series):
        assert store.last_calculated_at("test") is None
        store.replace_outputs("test", None, make_series([{}]))
        assert store.last_calculated_at("test") is not None

    def test_nullable_dscr_survives(self, store, make_series):
        store.replace_outputs("test", None, make_series([{"dscr": None}, {"dscr": 1.25}]))
        assert [row.dscr for row in store.load_outputs("test")] == [None, 1.25]

    def test_persistent_file(self, tmp_path, make_series):
        url = f"sqlite:///{tmp_path / 'shared.db'}"
        FinancialOutputStore.from_url(url).replace_outputs("test", None, make_series([{}] * 2))
        assert FinancialOutputStore.from_url(url).count_outputs("test") == 2

    def test_unsupported_dialect(self, store, make_series, monkeypatch):
        store.replace_outputs("test", None, make_series([{"revenue": 5}]))
        monkeypatch.setattr(store.engine.dialect, "name", "mysql")
        with pytest.raises(ValueError, match="Unsupported database dialect for upsert: mysql"):
            store.replace_outputs("test", None, make_series([{"revenue": 7}] * 2))
        monkeypatch.undo()
        assert [row.revenue for row in store.load_outputs("test")] == [5]
