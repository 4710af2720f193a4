"""
Search engine for AKS node VM sizes.

Runs the candidate evaluator over the preferred size list and, only when none
qualifies, over a generated list of general purpose D-series sizes.

Performance notes:
- Candidates are evaluated concurrently on a small ThreadPoolExecutor
- The catalog and quota clients read each region once per run
- Ranking happens after all evaluations finished, so completion order never matters
"""
from typing import List, Dict, Optional, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
import concurrent.futures
import logging

from azure_client import VmSkuSpec
from constraint_validator import (
    CandidateEvaluator,
    CandidateVerdict,
    ClusterRequirement,
    SkuInput,
    VerdictReason,
)
from config import PREFERRED_VM_SIZES, FALLBACK_FAMILY_PREFIX, FALLBACK_MAX_CORES

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    """Everything one resolution run produced."""
    region: str
    requirement: ClusterRequirement
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    subscription_id: str = ""

    # Phase 1: preferred sizes, in preference order
    preferred: List[CandidateVerdict] = field(default_factory=list)

    # Phase 2: only populated when phase 1 found nothing
    fallback_used: bool = False
    fallback_core_floor: Optional[int] = None
    fallback_core_ceiling: int = FALLBACK_MAX_CORES
    fallback: List[CandidateVerdict] = field(default_factory=list)

    @property
    def qualifying(self) -> List[CandidateVerdict]:
        """Qualifying preferred sizes, fewest cores first (stable)."""
        return sorted(
            (v for v in self.preferred if v.qualifies),
            key=lambda v: v.core_count,
        )

    def ranked(self, limit: Optional[int] = None) -> List[CandidateVerdict]:
        """The ranked qualifying list, cut to ``limit`` entries."""
        ranked = self.qualifying
        return ranked if limit is None else ranked[:limit]

    @property
    def top_recommendation(self) -> Optional[CandidateVerdict]:
        ranked = self.qualifying
        return ranked[0] if ranked else None

    def additional_count(self, limit: int) -> int:
        """How many qualifying sizes a ``limit``-long ranking leaves out."""
        return max(0, len(self.qualifying) - limit)

    @property
    def quota_limited(self) -> List[CandidateVerdict]:
        return [v for v in self.preferred if v.is_quota_limited]

    @property
    def undersized(self) -> List[CandidateVerdict]:
        return [v for v in self.preferred if v.reason is VerdictReason.INSUFFICIENT_CLUSTER_SIZE]

    @property
    def unavailable(self) -> List[CandidateVerdict]:
        return [v for v in self.preferred if v.reason is VerdictReason.UNAVAILABLE]

    @property
    def fallback_qualifying(self) -> List[CandidateVerdict]:
        return [v for v in self.fallback if v.qualifies]

    @property
    def all_verdicts(self) -> List[CandidateVerdict]:
        return self.preferred + self.fallback

    @property
    def not_evaluated(self) -> List[CandidateVerdict]:
        """Candidates cut off by the deadline."""
        return [v for v in self.all_verdicts if not v.evaluated]

    @property
    def timed_out(self) -> bool:
        return bool(self.not_evaluated)

    def tally(self) -> Dict[VerdictReason, int]:
        """Count of verdicts per reason across both phases (every reason present)."""
        counts = Counter(v.reason for v in self.all_verdicts)
        return {reason: counts.get(reason, 0) for reason in VerdictReason}

    @property
    def needs_quota_guidance(self) -> bool:
        """Nothing qualified, or some candidate was held back by quota."""
        return not self.qualifying or any(v.is_quota_limited for v in self.all_verdicts)


class VmSizeSearchEngine:
    """Two-phase search: preferred sizes, then a D-series fallback window."""

    # Default concurrency settings
    DEFAULT_MAX_WORKERS = 4

    def __init__(
        self,
        evaluator: CandidateEvaluator,
        preferred_sizes: Optional[Sequence[str]] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        timeout: Optional[float] = None,
        fallback_prefix: str = FALLBACK_FAMILY_PREFIX,
        fallback_max_cores: int = FALLBACK_MAX_CORES,
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.evaluator = evaluator
        self.preferred_sizes = list(preferred_sizes if preferred_sizes is not None else PREFERRED_VM_SIZES)
        self.max_workers = max_workers
        self.timeout = timeout
        self.fallback_prefix = fallback_prefix
        self.fallback_max_cores = fallback_max_cores

    def search(self, region: str, requirement: ClusterRequirement, subscription_id: str = "") -> SearchResult:
        """Run the search for one region. Blocks until every evaluation finished
        or the configured deadline passed."""
        result = SearchResult(
            region=region,
            requirement=requirement,
            subscription_id=subscription_id,
            fallback_core_ceiling=self.fallback_max_cores,
        )

        result.preferred = self._run_preferred_phase(region, requirement)

        if not result.qualifying:
            result.fallback_used = True
            result.fallback_core_floor = requirement.per_vm_core_floor
            logger.info(
                f"No preferred size qualifies in {region}; searching {self.fallback_prefix}* "
                f"with {result.fallback_core_floor}-{self.fallback_max_cores} cores"
            )
            result.fallback = self._run_fallback_phase(region, requirement)

        tally = ", ".join(f"{reason.value}={count}" for reason, count in result.tally().items() if count)
        logger.info(f"Search in {region} finished: {tally or 'no candidates'}")
        return result

    def _run_preferred_phase(self, region: str, requirement: ClusterRequirement) -> List[CandidateVerdict]:
        return self._evaluate_all(self.preferred_sizes, requirement, region)

    def _run_fallback_phase(self, region: str, requirement: ClusterRequirement) -> List[CandidateVerdict]:
        candidates = self.evaluator.catalog.list_family_candidates(
            region,
            self.fallback_prefix,
            requirement.per_vm_core_floor,
            self.fallback_max_cores,
        )
        return self._evaluate_all(list(candidates), requirement, region)

    def _evaluate_all(
        self,
        candidates: Sequence[SkuInput],
        requirement: ClusterRequirement,
        region: str,
    ) -> List[CandidateVerdict]:
        """Evaluate candidates concurrently; verdicts come back in input order."""
        if not candidates:
            return []

        verdicts: List[Optional[CandidateVerdict]] = [None] * len(candidates)
        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, len(candidates)))
        try:
            futures = {
                executor.submit(self.evaluator.evaluate, candidate, requirement, region): index
                for index, candidate in enumerate(candidates)
            }
            try:
                for future in as_completed(futures, timeout=self.timeout):
                    index = futures[future]
                    try:
                        verdicts[index] = future.result()
                    except Exception as e:
                        logger.warning(f"Evaluation of {candidates[index]} failed: {e}")
                        verdicts[index] = self._failed_verdict(
                            candidates[index], requirement, f"Evaluation failed: {e}"
                        )
            except concurrent.futures.TimeoutError:
                pending = sum(1 for v in verdicts if v is None)
                logger.warning(f"Deadline of {self.timeout}s reached with {pending} candidates pending")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return [
            verdict if verdict is not None else self._failed_verdict(
                candidates[index], requirement, "Evaluation did not finish before the deadline", evaluated=False,
            )
            for index, verdict in enumerate(verdicts)
        ]

    @staticmethod
    def _failed_verdict(
        candidate: SkuInput,
        requirement: ClusterRequirement,
        message: str,
        evaluated: bool = True,
    ) -> CandidateVerdict:
        # A name-only candidate never got as far as the catalog lookup
        if isinstance(candidate, VmSkuSpec):
            return CandidateVerdict(
                sku_name=candidate.name,
                node_count=requirement.node_count,
                reason=VerdictReason.UNKNOWN_QUOTA,
                sku=candidate,
                total_cluster_vcpus=candidate.core_count * requirement.node_count,
                message=message,
                evaluated=evaluated,
            )
        return CandidateVerdict(
            sku_name=candidate,
            node_count=requirement.node_count,
            reason=VerdictReason.UNAVAILABLE,
            message=message,
            evaluated=evaluated,
        )
