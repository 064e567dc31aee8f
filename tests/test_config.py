from __future__ import annotations

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from budget_ingest.config import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG,
    ConfigError,
    KeywordMatcher,
    config_from_dict,
    config_to_dict,
    load_config,
)
from budget_ingest.schema import classify_header_cell


class ConfigLoadingTests(unittest.TestCase):
    def test_no_path_and_no_env_gives_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertIs(load_config(), DEFAULT_CONFIG)

    def test_json_override_merges_onto_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "budget-ingest.json"
            path.write_text(
                json.dumps(
                    {
                        "thresholds": {"ground_truth_floor": 250000, "probe_rows": [3, 4]},
                        "summary_sheet_keywords": ["Síntese"],
                    }
                ),
                encoding="utf-8",
            )
            config = load_config(path)

        self.assertEqual(config.thresholds.ground_truth_floor, 250000.0)
        self.assertEqual(config.thresholds.probe_rows, (3, 4))
        self.assertEqual(config.thresholds.noise_threshold, DEFAULT_CONFIG.thresholds.noise_threshold)
        self.assertEqual(config.summary_sheet_keywords, ("SINTESE",))
        self.assertEqual(config.skip_code_keywords, DEFAULT_CONFIG.skip_code_keywords)

    def test_env_var_points_at_override(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "override.json"
            path.write_text(json.dumps({"thresholds": {"noise_threshold": 5}}), encoding="utf-8")
            with mock.patch.dict(os.environ, {CONFIG_ENV_VAR: str(path)}):
                config = load_config()

        self.assertEqual(config.thresholds.noise_threshold, 5.0)

    def test_yaml_is_rejected_with_clear_message(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.yaml"
            path.write_text("thresholds: {}\n", encoding="utf-8")
            with self.assertRaisesRegex(ConfigError, "YAML configs are not supported"):
                load_config(path)

    def test_missing_and_malformed_files(self):
        with self.assertRaisesRegex(ConfigError, "Config not found"):
            load_config("/nonexistent/budget-ingest.json")
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "broken.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertRaisesRegex(ConfigError, "Could not read config"):
                load_config(path)


class ConfigValidationTests(unittest.TestCase):
    def test_unknown_keys_are_rejected(self):
        with self.assertRaisesRegex(ConfigError, "Unknown config keys: colour"):
            config_from_dict({"colour": "blue"})
        with self.assertRaisesRegex(ConfigError, "Unknown thresholds"):
            config_from_dict({"thresholds": {"speed": 1}})
        with self.assertRaisesRegex(ConfigError, "Unknown profile"):
            config_from_dict({"profiles": {"invoices": {}}})

    def test_type_errors_are_rejected(self):
        with self.assertRaises(ConfigError):
            config_from_dict({"skip_code_keywords": "TOTAL"})
        with self.assertRaises(ConfigError):
            config_from_dict({"thresholds": {"noise_threshold": "100"}})
        with self.assertRaises(ConfigError):
            config_from_dict({"thresholds": {"prefer_detailed_sources": 1}})
        with self.assertRaises(ConfigError):
            KeywordMatcher("regex", ("A",))

    def test_profile_rules_can_be_replaced(self):
        config = config_from_dict(
            {
                "profiles": {
                    "budget": {
                        "rules": [
                            {"role": "code", "exact": ["WBS"]},
                            {"role": "description", "contains": ["Bezeichnung"]},
                            {"role": "total", "contains": ["Betrag"], "excludes": ["Einheit"]},
                        ],
                        "required_any": ["total"],
                    }
                }
            }
        )
        profile = config.budget_profile
        self.assertEqual(classify_header_cell("WBS", profile), "code")
        self.assertEqual(classify_header_cell("GESAMTBETRAG", profile), "total")
        self.assertIsNone(classify_header_cell("BETRAG JE EINHEIT", profile))
        self.assertEqual(profile.required_all, DEFAULT_CONFIG.budget_profile.required_all)

    def test_defaults_round_trip_through_dict(self):
        payload = json.loads(json.dumps(config_to_dict()))
        self.assertEqual(config_from_dict(payload), DEFAULT_CONFIG)


if __name__ == "__main__":
    unittest.main()
