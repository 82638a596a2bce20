"""Tests for correlating strategy JSON records with ground truth CSV rows."""

import json
import logging

import pytest

from ipaudit.correlation import (
    CorrelationSettings,
    InputError,
    MergedCase,
    correlate,
    load_inputs,
    parse_csv_rows,
    parse_strategies_json,
)


GROUND_TRUTH_CSV = (
    "\ufeffApplication Number,Granted Claims\n"
    "16123456,1. A device comprising an optical sensor.\n"
    "17999999,1. A method of brewing tea.\n"
)


def _strategy_record(app_number="16/123,456"):
    return {
        "application_number": app_number,
        "original_claims": "1. A device comprising a sensor.",
        "office_action": {"summary": "Claim 1 rejected under 102 over Smith."},
        "strategies": [
            {"name": "S1", "text": "Specify that the sensor is optical."},
            {"name": "S2", "text": "Argue Smith lacks a housing."},
        ],
        "description": "[0042] The sensor may be an optical sensor.",
    }


class TestParsing:

    def test_csv_headers_canonicalized_and_blank_rows_skipped(self):
        headers, rows = parse_csv_rows(GROUND_TRUTH_CSV + ",\n\n")
        assert headers == ["Application Number", "Granted Claims"]
        assert len(rows) == 2
        assert rows[0]["Application Number"] == "16123456"

    def test_empty_csv(self):
        assert parse_csv_rows("") == ([], [])

    def test_invalid_json_raises_input_error(self):
        with pytest.raises(InputError):
            parse_strategies_json('{"unterminated": ')

    def test_load_inputs_reads_both_files(self, tmp_path):
        json_path = tmp_path / "strategies.json"
        csv_path = tmp_path / "granted.csv"
        json_path.write_text("\ufeff" + json.dumps([_strategy_record()]), encoding="utf-8")
        csv_path.write_text(GROUND_TRUTH_CSV, encoding="utf-8")

        json_raw, headers, rows = load_inputs(str(json_path), str(csv_path))
        assert isinstance(json_raw, list)
        assert headers == ["Application Number", "Granted Claims"]
        assert len(rows) == 2

    def test_load_inputs_missing_file(self, tmp_path):
        csv_path = tmp_path / "granted.csv"
        csv_path.write_text(GROUND_TRUTH_CSV, encoding="utf-8")
        with pytest.raises(InputError, match="not found"):
            load_inputs(str(tmp_path / "missing.json"), str(csv_path))


class TestArrayRoot:

    def test_record_matched_to_ground_truth(self):
        headers, rows = parse_csv_rows(GROUND_TRUTH_CSV)
        result = correlate([_strategy_record()], rows, csv_headers=headers)

        assert len(result.cases) == 1
        case = result.cases[0]
        assert case.app_number == "16/123,456"
        assert case.normalized_id == "16123456"
        assert case.match_type == "exact"
        assert case.is_matched
        assert case.granted_claims == "1. A device comprising an optical sensor."
        assert case.original_claims == "1. A device comprising a sensor."
        assert case.office_action_summary == "Claim 1 rejected under 102 over Smith."
        assert case.generated_strategies == (
            "Specify that the sensor is optical.\n\nArgue Smith lacks a housing."
        )
        assert case.specification == "[0042] The sensor may be an optical sensor."
        assert result.matched_count == 1
        assert result.csv_id_column == "Application Number"
        assert result.csv_claims_column == "Granted Claims"
        assert result.warnings == []

    def test_one_case_per_record_in_order(self):
        _, rows = parse_csv_rows(GROUND_TRUTH_CSV)
        records = [_strategy_record("17/999,999"), _strategy_record("18/000,123"), _strategy_record()]
        result = correlate(records, rows)

        assert [c.app_number for c in result.cases] == ["17/999,999", "18/000,123", "16/123,456"]
        assert [c.is_matched for c in result.cases] == [True, False, True]
        assert result.matched_count == 2

    def test_nested_identifier(self):
        _, rows = parse_csv_rows(GROUND_TRUTH_CSV)
        record = {"application": {"number": "16/123,456", "filed": "2019-01-01"}, "claims": "1. A device."}
        case = correlate([record], rows).cases[0]
        assert case.app_number == "16/123,456"
        assert case.is_matched

    def test_record_without_identifier_is_unknown(self):
        _, rows = parse_csv_rows(GROUND_TRUTH_CSV)
        result = correlate([{"claims": "1. A device comprising a sensor."}], rows)
        case = result.cases[0]
        assert case.app_number == "Unknown"
        assert not case.is_matched
        assert any("no discoverable application number" in w for w in result.warnings)

    def test_non_object_items_are_kept(self):
        result = correlate(["just some text"], [])
        assert len(result.cases) == 1
        assert result.cases[0].app_number == "Unknown"


class TestKeyedObjectRoot:

    def test_top_level_key_is_the_identifier(self):
        csv_text = "Serial No,Allowed Claims\nUS 16123456,1. A device comprising an optical sensor.\n"
        headers, rows = parse_csv_rows(csv_text)
        json_raw = {
            "US16123456": {
                "claims": "1. A device comprising a sensor.",
                "rejection": "Obviousness over Smith in view of Jones.",
            }
        }
        result = correlate(json_raw, rows, csv_headers=headers)

        case = result.cases[0]
        assert case.app_number == "US16123456"
        assert case.is_matched
        assert case.original_claims == "1. A device comprising a sensor."
        assert case.office_action_summary == "Obviousness over Smith in view of Jones."

    def test_detected_id_never_leaks_into_content(self):
        json_raw = {"16123456": {"notes": "nothing relevant"}}
        case = correlate(json_raw, []).cases[0]
        assert "16123456" not in case.specification
        assert "16123456" not in case.original_claims

    def test_scalar_values_become_content(self):
        json_raw = {"16123456": "Strategy text for this application"}
        case = correlate(json_raw, []).cases[0]
        assert case.app_number == "16123456"
        assert case.specification == "Strategy text for this application"


class TestUnusableInputs:

    @pytest.mark.parametrize("root", [42, "text", None, True])
    def test_scalar_root_raises(self, root):
        with pytest.raises(InputError):
            correlate(root, [])

    def test_csv_without_identifier_column_is_non_fatal(self):
        headers, rows = parse_csv_rows("Foo,Bar\n16123456,1. A device.\n")
        result = correlate([_strategy_record()], rows, csv_headers=headers)

        assert len(result.cases) == 1
        assert not result.cases[0].is_matched
        assert result.csv_id_column is None
        warning = next(w for w in result.warnings if "No application number column" in w)
        assert '"Foo"' in warning and '"Bar"' in warning

    def test_empty_ground_truth(self):
        result = correlate([_strategy_record()], [])
        assert result.matched_count == 0
        assert "Ground truth CSV contains no data rows" in result.warnings

    def test_matched_row_with_empty_claims_counts_as_unmatched(self):
        _, rows = parse_csv_rows("Application Number,Granted Claims\n16123456,\n")
        case = correlate([_strategy_record()], rows).cases[0]
        assert not case.is_matched
        assert case.match_type is None


class TestSuffixMatching:

    def test_suffix_match_is_flagged(self, caplog):
        _, rows = parse_csv_rows("Application Number,Granted Claims\n2016123456,1. Granted claim.\n")
        with caplog.at_level(logging.WARNING, logger="ipaudit.correlation"):
            result = correlate([_strategy_record("16123456")], rows)

        case = result.cases[0]
        assert case.is_matched
        assert case.match_type == "suffix"
        assert result.fuzzy_matches == [case]
        assert "Fuzzy ID match" in caplog.text

    def test_short_suffix_rejected(self):
        _, rows = parse_csv_rows("Application Number,Granted Claims\n9912345,1. Granted claim.\n")
        case = correlate([_strategy_record("12345")], rows).cases[0]
        assert not case.is_matched

    def test_suffix_length_is_configurable(self):
        _, rows = parse_csv_rows("Application Number,Granted Claims\n9912345,1. Granted claim.\n")
        settings = CorrelationSettings(min_suffix_length=4)
        case = correlate([_strategy_record("12345")], rows, settings).cases[0]
        assert case.match_type == "suffix"

    def test_first_matching_row_wins(self):
        csv_text = (
            "Application Number,Granted Claims\n"
            "2016123456,1. Suffix claim.\n"
            "16123456,1. Exact claim.\n"
        )
        _, rows = parse_csv_rows(csv_text)
        case = correlate([_strategy_record("16123456")], rows).cases[0]
        assert case.granted_claims == "1. Suffix claim."


class TestSettingsAndSerialization:

    def test_settings_from_config(self):
        settings = CorrelationSettings.from_config({"correlation": {"min_suffix_length": 6, "max_depth": 3}})
        assert settings.min_suffix_length == 6
        assert settings.max_depth == 3

    def test_settings_defaults(self):
        settings = CorrelationSettings.from_config({})
        assert settings.min_suffix_length == 5
        assert settings.max_depth == 5

    def test_merged_case_to_dict(self):
        case = MergedCase(app_number="16/123,456", granted_claims="1. A device.")
        assert case.to_dict() == {
            "appNumber": "16/123,456",
            "originalClaims": "",
            "officeActionSummary": "",
            "generatedStrategies": "",
            "specification": "",
            "grantedClaims": "1. A device.",
        }


class TestStrategyTextByFallbackKey:

    def test_keyed_object_extracts_strategy_text(self):
        _, rows = parse_csv_rows("Application Number,Granted Claims\n16123456,1. Granted claim.\n")
        json_raw = {"16123456": {"strategy": "Narrow claim 1 to the optical sensor of [0042]."}}
        case = correlate(json_raw, rows).cases[0]
        assert case.app_number == "16123456"
        assert case.generated_strategies == "Narrow claim 1 to the optical sensor of [0042]."
        assert case.is_matched


class TestNumericIdentifiers:

    def test_float_identifier_matches_integer_csv_id(self):
        _, rows = parse_csv_rows(GROUND_TRUTH_CSV)
        record = dict(_strategy_record(), application_number=16123456.0)
        case = correlate([record], rows).cases[0]
        assert case.app_number == "16123456"
        assert case.normalized_id == "16123456"
        assert case.is_matched

    def test_spreadsheet_exported_csv_id(self):
        _, rows = parse_csv_rows("Application Number,Granted Claims\n16123456.0,1. Granted claim.\n")
        case = correlate([_strategy_record()], rows).cases[0]
        assert case.match_type == "exact"


class TestMalformedInputs:

    def test_long_claims_cell_is_parsed(self):
        claims = "1. A device " + "x" * 200000
        _, rows = parse_csv_rows(f"Application Number,Granted Claims\n16123456,{claims}\n")
        assert rows[0]["Granted Claims"] == claims

    def test_csv_parse_error_becomes_input_error(self, monkeypatch):
        monkeypatch.setattr("ipaudit.correlation.CSV_FIELD_SIZE_LIMIT", 100)
        with pytest.raises(InputError, match="could not be parsed"):
            parse_csv_rows("Application Number,Granted Claims\n16123456," + "x" * 500 + "\n")

    def test_load_inputs_with_oversized_cell(self, tmp_path):
        json_path = tmp_path / "strategies.json"
        csv_path = tmp_path / "granted.csv"
        json_path.write_text(json.dumps([_strategy_record()]), encoding="utf-8")
        csv_path.write_text("Application Number,Granted Claims\n16123456," + "y" * 200000 + "\n", encoding="utf-8")

        _, _, rows = load_inputs(str(json_path), str(csv_path))
        assert len(rows[0]["Granted Claims"]) == 200000

    def test_deeply_nested_json_becomes_input_error(self):
        depth = 200000
        with pytest.raises(InputError, match="nested too deeply"):
            parse_strategies_json("[" * depth + "]" * depth)

    def test_empty_correlation_section(self):
        settings = CorrelationSettings.from_config({"correlation": None})
        assert settings.min_suffix_length == 5
