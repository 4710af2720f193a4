"""
Report exporter module for VM size search results.
Supports the quiet line format and file exports: JSON, CSV.
"""
import csv
import json
from pathlib import Path
from typing import List, Dict, Any, Optional

from analysis_engine import SearchResult
from constraint_validator import CandidateVerdict
from azure_client import QuotaSnapshot


def quiet_lines(result: SearchResult, limit: int) -> List[str]:
    """SKU names for quiet mode: the first ``limit`` qualifying sizes, ranked."""
    return [verdict.sku_name for verdict in result.ranked(limit)]


class ReportExporter:
    """Export search results to various formats."""

    def __init__(self, result: SearchResult, limit: Optional[int] = None):
        """Initialize exporter with a search result.

        Args:
            result: The SearchResult to export
            limit: Length of the ranked list to include (all when None)
        """
        self.result = result
        self.limit = limit

    def export(self, output_path: str, output_format: Optional[str] = None) -> str:
        """Export result to file, auto-detecting format from extension.

        Args:
            output_path: Path to output file
            output_format: Optional format override ('json', 'csv').
                   If None, detected from file extension.

        Returns:
            Path to the exported file
        """
        if output_format is None:
            ext = Path(output_path).suffix.lower()
            format_map = {
                '.json': 'json',
                '.csv': 'csv',
            }
            output_format = format_map.get(ext, 'json')

        if output_format == 'json':
            return self.export_json(output_path)
        elif output_format == 'csv':
            return self.export_csv(output_path)
        else:
            raise ValueError(f"Unsupported export format: {output_format}")

    def to_dict(self) -> Dict[str, Any]:
        """Build the JSON document for the result."""
        result = self.result
        requirement = result.requirement
        top = result.top_recommendation

        return {
            "timestamp": result.timestamp.isoformat(),
            "subscription_id": result.subscription_id,
            "region": result.region,
            "requirement": {
                "node_count": requirement.node_count,
                "min_total_vcpus": requirement.min_total_vcpus.value,
                "min_total_vcpus_source": requirement.min_total_vcpus.kind.value,
            },
            "top_recommendation": top.sku_name if top else None,
            "ranked": [v.sku_name for v in result.ranked(self.limit)],
            "summary": {reason.value: count for reason, count in result.tally().items()},
            "not_evaluated": [v.sku_name for v in result.not_evaluated],
            "fallback": {
                "used": result.fallback_used,
                "min_cores": result.fallback_core_floor,
                "max_cores": result.fallback_core_ceiling,
                "candidates": [self._format_verdict_json(v) for v in result.fallback],
            },
            "candidates": [self._format_verdict_json(v) for v in result.preferred],
        }

    def export_json(self, output_path: str) -> str:
        """Export result as JSON.

        Args:
            output_path: Path to output JSON file

        Returns:
            Path to the exported file
        """
        with open(output_path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

        return output_path

    def export_csv(self, output_path: str) -> str:
        """Export result as CSV, one row per evaluated candidate.

        Args:
            output_path: Path to output CSV file

        Returns:
            Path to the exported file
        """
        ranks = {v.sku_name: i for i, v in enumerate(self.result.ranked(self.limit), 1)}

        with open(output_path, "w", newline='', encoding='utf-8') as f:
            writer = csv.writer(f)

            writer.writerow([
                "Phase",
                "Rank",
                "SKU",
                "vCPUs",
                "Memory (GB)",
                "Nodes",
                "Cluster vCPUs",
                "Status",
                "Quota Family",
                "Regional Available",
                "Family Available",
                "Details",
            ])

            phases = [("preferred", self.result.preferred), ("fallback", self.result.fallback)]
            for phase, verdicts in phases:
                for v in verdicts:
                    writer.writerow([
                        phase,
                        ranks.get(v.sku_name, "") if phase == "preferred" else "",
                        v.sku_name,
                        v.core_count if v.sku else "",
                        f"{v.sku.memory_gb:g}" if v.sku else "",
                        v.node_count,
                        v.total_cluster_vcpus if v.sku else "",
                        v.reason.value,
                        v.family_name,
                        self._available(v.subscription_quota),
                        self._available(v.family_quota),
                        v.message,
                    ])

        return output_path

    @staticmethod
    def _available(quota: Optional[QuotaSnapshot]) -> str:
        if quota is None or not quota.has_data:
            return ""
        return str(quota.available)

    @staticmethod
    def _format_quota_json(quota: Optional[QuotaSnapshot]) -> Optional[Dict[str, Any]]:
        if quota is None:
            return None
        return {
            "name": quota.name,
            "current": quota.current_value,
            "limit": quota.limit,
            "available": quota.available if quota.has_data else None,
        }

    def _format_verdict_json(self, verdict: CandidateVerdict) -> Dict[str, Any]:
        return {
            "sku": verdict.sku_name,
            "vcpus": verdict.core_count if verdict.sku else None,
            "memory_mb": verdict.sku.memory_mb if verdict.sku else None,
            "cluster_vcpus": verdict.total_cluster_vcpus if verdict.sku else None,
            "status": verdict.reason.value,
            "qualifies": verdict.qualifies,
            "quota_family": verdict.family_name or None,
            "regional_quota": self._format_quota_json(verdict.subscription_quota),
            "family_quota": self._format_quota_json(verdict.family_quota),
            "message": verdict.message,
        }


def export_report(
    result: SearchResult,
    output_path: str,
    output_format: Optional[str] = None,
    limit: Optional[int] = None,
) -> str:
    """Convenience function to export a search result.

    Args:
        result: The SearchResult to export
        output_path: Path to output file
        output_format: Optional format ('json', 'csv'). Auto-detected if None.
        limit: Length of the ranked list to include

    Returns:
        Path to the exported file
    """
    exporter = ReportExporter(result, limit=limit)
    return exporter.export(output_path, output_format)
