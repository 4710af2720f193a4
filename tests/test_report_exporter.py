"""Tests for report_exporter.py."""
import csv
import json

import pytest

from analysis_engine import VmSizeSearchEngine
from helpers import make_size, make_usage
from constraint_validator import ClusterRequirement
from report_exporter import ReportExporter, export_report, quiet_lines


@pytest.fixture
def search_result(evaluator_factory):
    """X2 and X4 qualify, X8 is held back by family quota, X16 is not offered."""
    sizes = [make_size("X2", 2), make_size("X4", 4), make_size("X8", 8)]
    usages = [
        make_usage("cores", 10, 100),
        make_usage("X2Family", 0, 50),
        make_usage("X4Family", 0, 50),
        make_usage("X8Family", 20, 30),
    ]
    evaluator, _ = evaluator_factory(sizes, usages)
    engine = VmSizeSearchEngine(evaluator, preferred_sizes=["X4", "X8", "X16", "X2"])
    return engine.search("eastus", ClusterRequirement.for_nodes(3), subscription_id="sub-123")


class TestQuietLines:
    """Tests for the quiet output lines."""

    def test_ranked_prefix(self, search_result):
        assert quiet_lines(search_result, 5) == ["X2", "X4"]
        assert quiet_lines(search_result, 1) == ["X2"]

    def test_empty_when_nothing_qualifies(self, evaluator_factory):
        evaluator, _ = evaluator_factory([], [])
        result = VmSizeSearchEngine(evaluator, preferred_sizes=["X2"]).search(
            "eastus", ClusterRequirement.for_nodes(3)
        )
        assert quiet_lines(result, 5) == []


class TestReportExporter:
    """Tests for JSON and CSV export."""

    def test_export_json(self, search_result, tmp_path):
        path = tmp_path / "result.json"

        ReportExporter(search_result).export(str(path))
        data = json.loads(path.read_text())

        assert data["region"] == "eastus"
        assert data["subscription_id"] == "sub-123"
        assert data["requirement"] == {
            "node_count": 3,
            "min_total_vcpus": 6,
            "min_total_vcpus_source": "Baseline",
        }
        assert data["top_recommendation"] == "X2"
        assert data["ranked"] == ["X2", "X4"]
        assert data["summary"]["OK"] == 2
        assert data["summary"]["InsufficientFamilyQuota"] == 1
        assert data["summary"]["Unavailable"] == 1
        assert data["fallback"]["used"] is False
        assert data["not_evaluated"] == []
        assert [c["sku"] for c in data["candidates"]] == ["X4", "X8", "X16", "X2"]

    def test_json_candidate_details(self, search_result):
        candidates = {c["sku"]: c for c in ReportExporter(search_result).to_dict()["candidates"]}

        x8 = candidates["X8"]
        assert x8["status"] == "InsufficientFamilyQuota"
        assert x8["cluster_vcpus"] == 24
        assert x8["family_quota"]["available"] == 10
        assert x8["regional_quota"]["available"] == 90

        x16 = candidates["X16"]
        assert x16["vcpus"] is None
        assert x16["regional_quota"] is None

    def test_json_respects_limit(self, search_result):
        data = ReportExporter(search_result, limit=1).to_dict()
        assert data["ranked"] == ["X2"]

    def test_export_csv(self, search_result, tmp_path):
        path = tmp_path / "result.csv"

        export_report(search_result, str(path))
        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))

        assert [r["SKU"] for r in rows] == ["X4", "X8", "X16", "X2"]
        by_sku = {r["SKU"]: r for r in rows}
        assert by_sku["X2"]["Rank"] == "1"
        assert by_sku["X4"]["Rank"] == "2"
        assert by_sku["X8"]["Rank"] == ""
        assert by_sku["X8"]["Family Available"] == "10"
        assert by_sku["X16"]["Status"] == "Unavailable"
        assert all(r["Phase"] == "preferred" for r in rows)

    def test_format_override(self, search_result, tmp_path):
        path = tmp_path / "result.txt"

        export_report(search_result, str(path), output_format="csv")

        assert path.read_text().startswith("Phase,Rank,SKU")

    def test_unsupported_format(self, search_result, tmp_path):
        with pytest.raises(ValueError):
            export_report(search_result, str(tmp_path / "result.xml"), output_format="xml")
