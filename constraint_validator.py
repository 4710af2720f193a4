"""
Candidate evaluation for AKS node sizes.

Decides, for one VM size, whether an N-node cluster built from it:
- is offered in the region
- meets a user-specified minimum of total vCPUs
- fits in the regional (subscription-wide) vCPU quota
- fits in the VM family's vCPU quota
"""
from typing import List, Dict, Optional, Callable, Tuple, Union
from dataclasses import dataclass
from enum import Enum
import logging
import math
import re

from rich.table import Table
from rich import box

from azure_client import CatalogClient, QuotaClient, QuotaSnapshot, VmSkuSpec
from config import BASELINE_VCPUS_PER_NODE, QUOTA_FAMILY_PATTERNS

logger = logging.getLogger(__name__)


class MinimumKind(Enum):
    """Where a cluster vCPU minimum came from."""
    BASELINE = "Baseline"
    USER_SPECIFIED = "UserSpecified"


@dataclass(frozen=True)
class MinimumVCpus:
    """
    Minimum total vCPUs for the cluster, tagged with its origin.

    Only a user-specified minimum is enforced. The baseline (2 vCPUs per node)
    is informational, even when a user happens to pass the same number.
    """
    kind: MinimumKind
    value: int

    @classmethod
    def baseline(cls, node_count: int) -> "MinimumVCpus":
        return cls(MinimumKind.BASELINE, node_count * BASELINE_VCPUS_PER_NODE)

    @classmethod
    def user_specified(cls, value: int) -> "MinimumVCpus":
        return cls(MinimumKind.USER_SPECIFIED, value)

    @property
    def is_user_specified(self) -> bool:
        return self.kind is MinimumKind.USER_SPECIFIED


@dataclass(frozen=True)
class ClusterRequirement:
    """Node count plus the cluster-wide vCPU minimum."""
    node_count: int
    min_total_vcpus: MinimumVCpus

    def __post_init__(self):
        if self.node_count < 1:
            raise ValueError(f"node_count must be >= 1, got {self.node_count}")
        if self.min_total_vcpus.value < 0:
            raise ValueError(f"min_total_vcpus must be >= 0, got {self.min_total_vcpus.value}")

    @classmethod
    def for_nodes(cls, node_count: int, min_total_vcpus: Optional[int] = None) -> "ClusterRequirement":
        """Build a requirement; ``None`` means no user minimum (baseline)."""
        if min_total_vcpus is None:
            minimum = MinimumVCpus.baseline(node_count)
        else:
            minimum = MinimumVCpus.user_specified(min_total_vcpus)
        return cls(node_count=node_count, min_total_vcpus=minimum)

    @property
    def enforces_minimum(self) -> bool:
        return self.min_total_vcpus.is_user_specified

    @property
    def per_vm_core_floor(self) -> int:
        """Smallest per-VM core count worth searching for."""
        if not self.enforces_minimum:
            return 1
        return max(1, math.ceil(self.min_total_vcpus.value / self.node_count))


class VerdictReason(Enum):
    """Outcome of evaluating one candidate. Exactly one per candidate."""
    UNAVAILABLE = "Unavailable"
    INSUFFICIENT_CLUSTER_SIZE = "InsufficientClusterSize"
    INSUFFICIENT_SUBSCRIPTION_QUOTA = "InsufficientSubscriptionQuota"
    INSUFFICIENT_FAMILY_QUOTA = "InsufficientFamilyQuota"
    UNKNOWN_QUOTA = "UnknownQuota"
    OK = "OK"


QUOTA_LIMITED_REASONS = frozenset({
    VerdictReason.INSUFFICIENT_SUBSCRIPTION_QUOTA,
    VerdictReason.INSUFFICIENT_FAMILY_QUOTA,
    VerdictReason.UNKNOWN_QUOTA,
})


@dataclass
class CandidateVerdict:
    """Result of evaluating one VM size for the cluster."""
    sku_name: str
    node_count: int
    reason: VerdictReason
    sku: Optional[VmSkuSpec] = None
    total_cluster_vcpus: int = 0
    family_name: str = ""
    subscription_quota: Optional[QuotaSnapshot] = None
    family_quota: Optional[QuotaSnapshot] = None
    message: str = ""
    # False when the run deadline passed before this candidate finished
    evaluated: bool = True

    @property
    def qualifies(self) -> bool:
        return self.reason is VerdictReason.OK

    @property
    def core_count(self) -> int:
        return self.sku.core_count if self.sku else 0

    @property
    def is_available(self) -> bool:
        return self.reason is not VerdictReason.UNAVAILABLE

    @property
    def is_quota_limited(self) -> bool:
        return self.reason in QUOTA_LIMITED_REASONS


class QuotaFamilyResolver:
    """Maps a SKU name to its compute quota family with an ordered pattern table."""

    def __init__(self, patterns: Optional[List[Tuple[str, str]]] = None):
        self.patterns = [
            (re.compile(pattern), family)
            for pattern, family in (patterns if patterns is not None else QUOTA_FAMILY_PATTERNS)
        ]

    def __call__(self, sku_name: str) -> str:
        """Return the family name, or '' when no pattern matches."""
        for pattern, family in self.patterns:
            if pattern.match(sku_name):
                return family
        return ""


get_quota_family = QuotaFamilyResolver()


SkuInput = Union[str, VmSkuSpec]


class CandidateEvaluator:
    """Combines catalog and quota data into a verdict for one candidate."""

    def __init__(
        self,
        catalog: CatalogClient,
        quota: QuotaClient,
        family_resolver: Callable[[str], str] = get_quota_family,
    ):
        """
        Initialize with the catalog and quota clients.

        Args:
            catalog: Source of VM sizes and core counts
            quota: Source of regional and family quota snapshots
            family_resolver: SKU name -> quota family name ('' when unknown)
        """
        self.catalog = catalog
        self.quota = quota
        self.family_resolver = family_resolver

    def evaluate(self, candidate: SkuInput, requirement: ClusterRequirement, region: str) -> CandidateVerdict:
        """
        Evaluate one candidate. Never raises for provider trouble: a failure
        before the size is known becomes UNAVAILABLE, afterwards UNKNOWN_QUOTA.
        """
        sku_name = candidate.name if isinstance(candidate, VmSkuSpec) else candidate
        verdict = CandidateVerdict(
            sku_name=sku_name,
            node_count=requirement.node_count,
            reason=VerdictReason.UNAVAILABLE,
        )
        try:
            self._evaluate(verdict, requirement, region)
        except Exception as e:
            logger.warning(f"Evaluation of {sku_name} in {region} failed: {e}")
            if verdict.sku is None:
                verdict.reason = VerdictReason.UNAVAILABLE
                verdict.message = f"Could not determine availability: {e}"
            else:
                verdict.reason = VerdictReason.UNKNOWN_QUOTA
                verdict.message = f"Unable to determine quota status: {e}"
        return verdict

    def _evaluate(self, verdict: CandidateVerdict, requirement: ClusterRequirement, region: str) -> None:
        # Availability
        sku = self.catalog.get_sku(region, verdict.sku_name)
        if sku is None:
            verdict.reason = VerdictReason.UNAVAILABLE
            verdict.message = "Not available in region"
            return

        verdict.sku = sku
        total = sku.core_count * requirement.node_count
        verdict.total_cluster_vcpus = total

        # Cluster size, only against a user-specified minimum
        minimum = requirement.min_total_vcpus
        if minimum.is_user_specified and total < minimum.value:
            verdict.reason = VerdictReason.INSUFFICIENT_CLUSTER_SIZE
            verdict.message = (
                f"Cluster would have only {total} vCPUs "
                f"({requirement.node_count}x{sku.core_count}), need at least {minimum.value}"
            )
            return

        # Regional quota
        subscription_quota = self.quota.get_subscription_core_quota(region)
        verdict.subscription_quota = subscription_quota
        subscription_verified = subscription_quota.has_data
        if subscription_verified and not subscription_quota.allows(total):
            verdict.reason = VerdictReason.INSUFFICIENT_SUBSCRIPTION_QUOTA
            verdict.message = (
                f"Quota insufficient: {total} vCPUs needed, "
                f"only {subscription_quota.available} available"
            )
            return

        # Family quota
        family = self.family_resolver(sku.name)
        verdict.family_name = family
        # Without a family pool the cluster can't be confirmed to fit
        if not family:
            verdict.reason = VerdictReason.UNKNOWN_QUOTA
            verdict.message = f"Unknown VM family for quota lookup: {sku.name}"
            return

        family_quota = self.quota.get_family_quota(region, family)
        verdict.family_quota = family_quota
        if family_quota is not None and family_quota.has_data and not family_quota.allows(total):
            verdict.reason = VerdictReason.INSUFFICIENT_FAMILY_QUOTA
            verdict.message = (
                f"Family quota insufficient: {total} vCPUs needed, "
                f"only {family_quota.available} available in {family}"
            )
            return

        if not subscription_verified:
            verdict.reason = VerdictReason.UNKNOWN_QUOTA
            verdict.message = "Unable to determine regional vCPU quota"
        elif family_quota is None or not family_quota.has_data:
            verdict.reason = VerdictReason.UNKNOWN_QUOTA
            verdict.message = f"Unable to find quota for family: {family}"
        else:
            verdict.reason = VerdictReason.OK
            verdict.message = (
                f"Quota OK: {total} vCPUs needed, {subscription_quota.available} regional "
                f"and {family_quota.available} {family} available"
            )


REASON_LABELS: Dict[VerdictReason, str] = {
    VerdictReason.OK: "[green]✓ OK[/green]",
    VerdictReason.UNAVAILABLE: "[red]✗ Not in region[/red]",
    VerdictReason.INSUFFICIENT_CLUSTER_SIZE: "[yellow]⚠ Too small[/yellow]",
    VerdictReason.INSUFFICIENT_SUBSCRIPTION_QUOTA: "[red]✗ Regional quota[/red]",
    VerdictReason.INSUFFICIENT_FAMILY_QUOTA: "[red]✗ Family quota[/red]",
    VerdictReason.UNKNOWN_QUOTA: "[yellow]? Unknown quota[/yellow]",
}


def create_quota_table(quotas: List[QuotaSnapshot]) -> Table:
    """Create a rich table showing core quota usage."""
    table = Table(
        title="📊 vCPU Quota Usage",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold cyan",
    )

    table.add_column("Quota", style="white")
    table.add_column("Current", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Available", justify="right", style="green")
    table.add_column("Usage", justify="right")

    for quota in sorted(quotas, key=lambda q: q.usage_percent, reverse=True):
        label = quota.localized_name or quota.name
        if not quota.has_data:
            usage = "[dim]n/a[/dim]"
        elif quota.usage_percent >= 90:
            usage = f"[red]{quota.usage_percent:.1f}%[/red]"
        elif quota.usage_percent >= 70:
            usage = f"[yellow]{quota.usage_percent:.1f}%[/yellow]"
        else:
            usage = f"[green]{quota.usage_percent:.1f}%[/green]"

        table.add_row(
            label[:40] + "..." if len(label) > 40 else label,
            str(quota.current_value),
            str(quota.limit) if quota.limit is not None else "-",
            str(quota.available) if quota.has_data else "-",
            usage,
        )

    return table


def create_verdict_table(verdicts: List[CandidateVerdict], title: str = "🔍 Candidate VM Sizes") -> Table:
    """Create a rich table with one row per evaluated candidate."""
    table = Table(
        title=title,
        box=box.ROUNDED,
        show_header=True,
        header_style="bold cyan",
    )

    table.add_column("SKU", style="white")
    table.add_column("vCPUs", justify="right")
    table.add_column("Cluster vCPUs", justify="right")
    table.add_column("Family", style="dim")
    table.add_column("Status", justify="center")
    table.add_column("Details", style="dim")

    for verdict in verdicts:
        table.add_row(
            verdict.sku_name,
            str(verdict.core_count) if verdict.sku else "-",
            f"{verdict.total_cluster_vcpus} ({verdict.node_count}x{verdict.core_count})" if verdict.sku else "-",
            verdict.family_name or "-",
            REASON_LABELS[verdict.reason],
            verdict.message,
        )

    return table
