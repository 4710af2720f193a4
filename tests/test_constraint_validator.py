"""Tests for constraint_validator.py - requirement tagging, family mapping and candidate verdicts."""
from unittest.mock import MagicMock

import pytest
from rich.table import Table

from azure_client import QuotaScope, QuotaSnapshot
from helpers import make_size, make_usage
from constraint_validator import (
    CandidateVerdict,
    ClusterRequirement,
    MinimumKind,
    MinimumVCpus,
    QuotaFamilyResolver,
    VerdictReason,
    create_quota_table,
    create_verdict_table,
    get_quota_family,
)


AMPLE_USAGES = [
    make_usage("cores", 0, 100),
    make_usage("X1Family", 0, 100),
    make_usage("X2Family", 0, 100),
    make_usage("X4Family", 0, 100),
]


class TestMinimumVCpus:
    """Tests for the tagged cluster minimum."""

    def test_baseline_is_two_per_node(self):
        minimum = MinimumVCpus.baseline(3)
        assert minimum.value == 6
        assert minimum.kind is MinimumKind.BASELINE
        assert minimum.is_user_specified is False

    def test_user_specified(self):
        minimum = MinimumVCpus.user_specified(12)
        assert minimum.value == 12
        assert minimum.is_user_specified is True

    def test_user_value_equal_to_baseline_keeps_its_tag(self):
        requirement = ClusterRequirement.for_nodes(3, 6)
        assert requirement.enforces_minimum is True
        assert requirement.min_total_vcpus != MinimumVCpus.baseline(3)


class TestClusterRequirement:
    """Tests for ClusterRequirement construction and derived floors."""

    def test_no_minimum_uses_baseline(self):
        requirement = ClusterRequirement.for_nodes(5)
        assert requirement.enforces_minimum is False
        assert requirement.min_total_vcpus.value == 10

    def test_core_floor_without_minimum(self):
        assert ClusterRequirement.for_nodes(5).per_vm_core_floor == 1

    def test_core_floor_exact_division(self):
        assert ClusterRequirement.for_nodes(5, 30).per_vm_core_floor == 6

    def test_core_floor_rounds_up(self):
        assert ClusterRequirement.for_nodes(5, 31).per_vm_core_floor == 7

    def test_core_floor_never_below_one(self):
        assert ClusterRequirement.for_nodes(3, 0).per_vm_core_floor == 1

    def test_rejects_zero_nodes(self):
        with pytest.raises(ValueError):
            ClusterRequirement.for_nodes(0)

    def test_rejects_negative_minimum(self):
        with pytest.raises(ValueError):
            ClusterRequirement.for_nodes(3, -1)


class TestQuotaFamily:
    """Tests for SKU name -> quota family mapping."""

    @pytest.mark.parametrize("sku_name, family", [
        ("Standard_D2s_v5", "standardDSv5Family"),
        ("Standard_D2_v5", "standardDv5Family"),
        ("Standard_D4ds_v5", "standardDDSv5Family"),
        ("Standard_D2ads_v5", "standardDADSv5Family"),
        ("Standard_D2as_v5", "standardDASv5Family"),
        ("Standard_D2s_v4", "standardDSv4Family"),
        ("Standard_D4_v4", "standardDv4Family"),
        ("Standard_D2s_v3", "standardDSv3Family"),
        ("Standard_D16_v3", "standardDv3Family"),
        ("Standard_DS2_v2", "standardDSv2Family"),
        ("Standard_D3_v2", "standardDv2Family"),
        ("Standard_B2s", "standardBSFamily"),
        ("Standard_B2ms", "standardBSFamily"),
        ("Standard_B4ms", "standardBSFamily"),
        ("Standard_B2s_v2", "standardBsv2Family"),
        ("Standard_B2als_v2", "standardBasv2Family"),
        ("Standard_D2s_v6", "standardDSv6Family"),
        ("Standard_D4ds_v6", "standardDDSv6Family"),
        ("Standard_D2as_v6", "standardDASv6Family"),
        ("Standard_D2ads_v6", "standardDADSv6Family"),
        ("Standard_D2als_v6", "standardDALSv6Family"),
        ("Standard_D2ls_v6", "standardDLSv6Family"),
        ("Standard_D2pls_v6", "standardDPLSv6Family"),
        ("Standard_D2ps_v6", "standardDPSv6Family"),
    ])
    def test_known_patterns(self, sku_name, family):
        assert get_quota_family(sku_name) == family

    def test_unknown_pattern_is_empty(self):
        assert get_quota_family("Standard_E8s_v5") == ""
        assert get_quota_family("NotASku") == ""

    def test_first_match_wins(self):
        resolver = QuotaFamilyResolver([
            (r"^Standard_D\d+s_v5$", "specific"),
            (r"^Standard_D", "generic"),
        ])
        assert resolver("Standard_D2s_v5") == "specific"
        assert resolver("Standard_D2_v5") == "generic"


class TestCandidateEvaluator:
    """Tests for the per-candidate verdicts."""

    def test_ok(self, evaluator_factory):
        evaluator, _ = evaluator_factory([make_size("X2", 2)], AMPLE_USAGES)
        verdict = evaluator.evaluate("X2", ClusterRequirement.for_nodes(3), "eastus")

        assert verdict.reason is VerdictReason.OK
        assert verdict.qualifies is True
        assert verdict.total_cluster_vcpus == 6
        assert verdict.family_name == "X2Family"
        assert verdict.family_quota.available == 100

    def test_unavailable(self, evaluator_factory):
        evaluator, compute_client = evaluator_factory([make_size("X2", 2)], AMPLE_USAGES)
        verdict = evaluator.evaluate("X8", ClusterRequirement.for_nodes(3), "eastus")

        assert verdict.reason is VerdictReason.UNAVAILABLE
        assert verdict.qualifies is False
        assert verdict.sku is None
        compute_client.usage.list.assert_not_called()

    def test_baseline_never_rejects_small_sizes(self, evaluator_factory):
        # 1 vCPU x 3 nodes = 3, below the 6 vCPU baseline
        evaluator, _ = evaluator_factory([make_size("X1", 1)], AMPLE_USAGES)
        verdict = evaluator.evaluate("X1", ClusterRequirement.for_nodes(3), "eastus")
        assert verdict.reason is VerdictReason.OK

    def test_user_minimum_rejects_before_quota_lookup(self, evaluator_factory):
        evaluator, compute_client = evaluator_factory([make_size("X2", 2)], AMPLE_USAGES)
        verdict = evaluator.evaluate("X2", ClusterRequirement.for_nodes(5, 30), "eastus")

        assert verdict.reason is VerdictReason.INSUFFICIENT_CLUSTER_SIZE
        assert verdict.total_cluster_vcpus == 10
        assert verdict.subscription_quota is None
        compute_client.usage.list.assert_not_called()

    def test_user_minimum_equal_to_baseline_is_enforced(self, evaluator_factory):
        evaluator, _ = evaluator_factory([make_size("X1", 1)], AMPLE_USAGES)
        verdict = evaluator.evaluate("X1", ClusterRequirement.for_nodes(3, 6), "eastus")
        assert verdict.reason is VerdictReason.INSUFFICIENT_CLUSTER_SIZE

    def test_user_minimum_met_exactly(self, evaluator_factory):
        evaluator, _ = evaluator_factory([make_size("X4", 4)], AMPLE_USAGES)
        verdict = evaluator.evaluate("X4", ClusterRequirement.for_nodes(5, 20), "eastus")
        assert verdict.reason is VerdictReason.OK

    def test_insufficient_subscription_quota(self, evaluator_factory):
        usages = [make_usage("cores", 95, 100), make_usage("X4Family", 0, 100)]
        evaluator, _ = evaluator_factory([make_size("X4", 4)], usages)
        verdict = evaluator.evaluate("X4", ClusterRequirement.for_nodes(3), "eastus")

        assert verdict.reason is VerdictReason.INSUFFICIENT_SUBSCRIPTION_QUOTA
        assert verdict.family_quota is None

    def test_subscription_quota_exactly_enough(self, evaluator_factory):
        usages = [make_usage("cores", 88, 100), make_usage("X4Family", 0, 100)]
        evaluator, _ = evaluator_factory([make_size("X4", 4)], usages)
        verdict = evaluator.evaluate("X4", ClusterRequirement.for_nodes(3), "eastus")
        assert verdict.reason is VerdictReason.OK

    def test_insufficient_family_quota(self, evaluator_factory):
        usages = [make_usage("cores", 0, 100), make_usage("X2Family", 10, 10)]
        evaluator, _ = evaluator_factory([make_size("X2", 2)], usages)
        verdict = evaluator.evaluate("X2", ClusterRequirement.for_nodes(3), "eastus")

        assert verdict.reason is VerdictReason.INSUFFICIENT_FAMILY_QUOTA
        assert verdict.family_quota.available == 0

    def test_zero_subscription_limit_is_unknown(self, evaluator_factory):
        usages = [make_usage("cores", 0, 0), make_usage("X2Family", 0, 100)]
        evaluator, _ = evaluator_factory([make_size("X2", 2)], usages)
        verdict = evaluator.evaluate("X2", ClusterRequirement.for_nodes(3), "eastus")
        assert verdict.reason is VerdictReason.UNKNOWN_QUOTA

    def test_missing_subscription_quota_is_unknown(self, evaluator_factory):
        evaluator, _ = evaluator_factory([make_size("X2", 2)], [make_usage("X2Family", 0, 100)])
        verdict = evaluator.evaluate("X2", ClusterRequirement.for_nodes(3), "eastus")
        assert verdict.reason is VerdictReason.UNKNOWN_QUOTA

    def test_unknown_subscription_but_family_exhausted(self, evaluator_factory):
        usages = [make_usage("cores", 0, 0), make_usage("X2Family", 10, 10)]
        evaluator, _ = evaluator_factory([make_size("X2", 2)], usages)
        verdict = evaluator.evaluate("X2", ClusterRequirement.for_nodes(3), "eastus")
        assert verdict.reason is VerdictReason.INSUFFICIENT_FAMILY_QUOTA

    def test_missing_family_quota_is_unknown(self, evaluator_factory):
        evaluator, _ = evaluator_factory([make_size("X2", 2)], [make_usage("cores", 0, 100)])
        verdict = evaluator.evaluate("X2", ClusterRequirement.for_nodes(3), "eastus")
        assert verdict.reason is VerdictReason.UNKNOWN_QUOTA

    def test_zero_family_limit_is_unknown(self, evaluator_factory):
        usages = [make_usage("cores", 0, 100), make_usage("X2Family", 0, 0)]
        evaluator, _ = evaluator_factory([make_size("X2", 2)], usages)
        verdict = evaluator.evaluate("X2", ClusterRequirement.for_nodes(3), "eastus")
        assert verdict.reason is VerdictReason.UNKNOWN_QUOTA

    def test_unmapped_family_is_unknown_even_with_regional_quota(self, evaluator_factory):
        evaluator, compute_client = evaluator_factory(
            [make_size("X2", 2)], AMPLE_USAGES, family_resolver=lambda name: "",
        )
        verdict = evaluator.evaluate("X2", ClusterRequirement.for_nodes(3), "eastus")

        assert verdict.reason is VerdictReason.UNKNOWN_QUOTA
        assert verdict.qualifies is False
        assert verdict.family_name == ""
        assert verdict.family_quota is None
        assert "Unknown VM family" in verdict.message
        compute_client.usage.list.assert_called_once_with(location="eastus")

    def test_v6_family_quota_is_enforced(self, evaluator_factory):
        usages = [make_usage("cores", 0, 1000), make_usage("standardDSv6Family", 10, 10)]
        evaluator, _ = evaluator_factory(
            [make_size("Standard_D2s_v6", 2)], usages, family_resolver=get_quota_family,
        )
        verdict = evaluator.evaluate("Standard_D2s_v6", ClusterRequirement.for_nodes(3), "eastus")

        assert verdict.reason is VerdictReason.INSUFFICIENT_FAMILY_QUOTA
        assert verdict.family_name == "standardDSv6Family"
        assert verdict.family_quota.available == 0

    def test_unmapped_family_with_unknown_subscription_is_unknown(self, evaluator_factory):
        evaluator, _ = evaluator_factory(
            [make_size("X2", 2)], [make_usage("cores", 0, 0)], family_resolver=lambda name: "",
        )
        verdict = evaluator.evaluate("X2", ClusterRequirement.for_nodes(3), "eastus")
        assert verdict.reason is VerdictReason.UNKNOWN_QUOTA

    def test_provider_failure_after_availability_is_unknown_quota(self, evaluator_factory):
        def broken_resolver(name):
            raise RuntimeError("boom")

        evaluator, _ = evaluator_factory([make_size("X2", 2)], AMPLE_USAGES, family_resolver=broken_resolver)
        verdict = evaluator.evaluate("X2", ClusterRequirement.for_nodes(3), "eastus")

        assert verdict.reason is VerdictReason.UNKNOWN_QUOTA
        assert "boom" in verdict.message

    def test_provider_failure_before_availability_is_unavailable(self, evaluator_factory):
        evaluator, _ = evaluator_factory([make_size("X2", 2)], AMPLE_USAGES)
        evaluator.catalog.get_sku = MagicMock(side_effect=RuntimeError("catalog down"))
        verdict = evaluator.evaluate("X2", ClusterRequirement.for_nodes(3), "eastus")
        assert verdict.reason is VerdictReason.UNAVAILABLE

    def test_exactly_one_reason_and_total_invariant(self, evaluator_factory):
        sizes = [make_size("X1", 1), make_size("X2", 2), make_size("X4", 4)]
        usages = [make_usage("cores", 0, 100), make_usage("X1Family", 0, 100), make_usage("X2Family", 6, 10)]
        evaluator, _ = evaluator_factory(sizes, usages)
        requirement = ClusterRequirement.for_nodes(3, 5)

        verdicts = [evaluator.evaluate(name, requirement, "eastus") for name in ("X1", "X2", "X4", "X9")]
        reasons = [v.reason for v in verdicts]

        assert reasons == [
            VerdictReason.INSUFFICIENT_CLUSTER_SIZE,
            VerdictReason.INSUFFICIENT_FAMILY_QUOTA,
            VerdictReason.UNKNOWN_QUOTA,
            VerdictReason.UNAVAILABLE,
        ]
        for verdict in verdicts:
            assert verdict.qualifies == (verdict.reason is VerdictReason.OK)
            if verdict.sku:
                assert verdict.total_cluster_vcpus == verdict.sku.core_count * requirement.node_count


class TestTables:
    """Tests for rich table helpers."""

    def test_verdict_table_has_row_per_verdict(self):
        verdicts = [
            CandidateVerdict(sku_name="X2", node_count=3, reason=VerdictReason.OK),
            CandidateVerdict(sku_name="X4", node_count=3, reason=VerdictReason.UNAVAILABLE),
        ]
        table = create_verdict_table(verdicts)
        assert isinstance(table, Table)
        assert table.row_count == 2

    def test_quota_table_handles_unknown_limits(self):
        quotas = [
            QuotaSnapshot(QuotaScope.SUBSCRIPTION_CORES, "cores", 10, 100),
            QuotaSnapshot(QuotaScope.VM_FAMILY, "X2Family", 0, None, family_name="X2Family"),
        ]
        table = create_quota_table(quotas)
        assert table.row_count == 2
