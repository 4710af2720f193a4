"""
Azure client module for VM size resolution.
Handles authentication and the two read-only lookups the resolver needs:
the compute size catalog of a region and its core usage quotas.
"""
from typing import Optional, Dict, List, Any, Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
import functools
import logging
import subprocess
import threading
import time

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ServiceRequestError,
)
from azure.identity import DefaultAzureCredential, ClientSecretCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.subscription import SubscriptionClient

logger = logging.getLogger(__name__)


class SizerError(Exception):
    """Base class for errors that stop a resolution run."""


class ConfigurationError(SizerError):
    """Invalid invocation: missing/unknown region, bad numeric arguments."""


class ProviderContextError(SizerError):
    """Azure credentials or subscription context are unusable."""


def retry_on_transient(max_retries: int = 3, base_delay: float = 1.0):
    """Retry decorator with exponential backoff for throttling and transient Azure errors."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            last_exception = None
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except ClientAuthenticationError:
                    raise
                except HttpResponseError as e:
                    if e.status_code in (429, 500, 502, 503, 504):
                        last_exception = e
                    else:
                        raise
                except ServiceRequestError as e:
                    last_exception = e

                if attempt < max_retries:
                    delay = base_delay * (2 ** attempt)
                    logger.debug(f"Retry {attempt + 1}/{max_retries} after {delay}s: {last_exception}")
                    time.sleep(delay)

            raise last_exception
        return wrapper
    return decorator


def normalize_region(region: str) -> str:
    """'West Europe' -> 'westeurope'."""
    return region.replace(" ", "").lower()


@dataclass
class _CacheEntry:
    ready: threading.Event = field(default_factory=threading.Event)
    value: Any = None
    error: Optional[Exception] = None


class RegionCache:
    """
    Loads one value per region, once per instance.

    The first caller for a region runs the loader outside the lock. Other
    callers for that region wait for the result instead of loading again, and
    can give up after ``timeout`` seconds without being stuck behind the
    loader's retries.
    """

    def __init__(self, loader: Callable[[str], Any]):
        self._loader = loader
        self._entries: Dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, region: str, timeout: Optional[float] = None) -> Any:
        key = normalize_region(region)
        with self._lock:
            entry = self._entries.get(key)
            owner = entry is None
            if owner:
                entry = self._entries[key] = _CacheEntry()

        if owner:
            try:
                entry.value = self._loader(key)
            except Exception as e:
                entry.error = e
            finally:
                entry.ready.set()
        elif not entry.ready.wait(timeout):
            raise TimeoutError(f"Timed out after {timeout}s waiting for data of region {key}")

        if entry.error is not None:
            raise entry.error
        return entry.value

    def is_loaded(self, region: str) -> bool:
        with self._lock:
            entry = self._entries.get(normalize_region(region))
        return entry is not None and entry.ready.is_set()


@dataclass(frozen=True)
class VmSkuSpec:
    """A VM size offered in a region."""
    name: str
    core_count: int
    memory_mb: int = 0
    max_data_disks: int = 0

    @property
    def memory_gb(self) -> float:
        return self.memory_mb / 1024


class QuotaScope(Enum):
    """Which quota pool a snapshot describes."""
    SUBSCRIPTION_CORES = "SubscriptionCores"
    VM_FAMILY = "VmFamily"


@dataclass
class QuotaSnapshot:
    """Usage and limit of one compute quota in a region.

    A limit of ``None`` or ``0`` means the provider gave us nothing to judge
    against; that is reported as unknown, never as zero available.
    """
    scope: QuotaScope
    name: str
    current_value: int
    limit: Optional[int]
    family_name: Optional[str] = None
    localized_name: str = ""

    @property
    def has_data(self) -> bool:
        return bool(self.limit)

    @property
    def available(self) -> int:
        if not self.has_data:
            return 0
        return max(0, self.limit - self.current_value)

    @property
    def usage_percent(self) -> float:
        return (self.current_value / self.limit * 100) if self.has_data else 0

    def allows(self, required_vcpus: int) -> bool:
        """True when the quota is known and has room for ``required_vcpus``."""
        return self.has_data and required_vcpus <= self.available


class AzureClient:
    """Credential and subscription context shared by the catalog and quota clients."""

    def __init__(
        self,
        subscription_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        credential: Any = None,
    ):
        # Setup credentials
        if credential is not None:
            self.credential = credential
        elif client_id and client_secret and tenant_id:
            self.credential = ClientSecretCredential(
                tenant_id=tenant_id,
                client_id=client_id,
                client_secret=client_secret,
            )
        else:
            self.credential = DefaultAzureCredential()

        self._subscription_client = None
        self._compute_client = None
        self._subscription_name: Optional[str] = None
        self.subscription_id = subscription_id or self._auto_detect_subscription()

    def _auto_detect_subscription(self) -> str:
        """Auto-detect subscription ID from the Azure CLI, then the SDK."""
        try:
            result = subprocess.run(
                ["az", "account", "show", "--query", "id", "-o", "tsv"],
                check=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
            )
            sub_id = result.stdout.strip()
            if sub_id:
                logger.info(f"Using subscription from Azure CLI: {sub_id}")
                return sub_id
        except (subprocess.CalledProcessError, OSError):
            logger.debug("Could not get subscription from Azure CLI")

        # Fallback to SDK - get first enabled subscription
        try:
            for sub in self.subscription_client.subscriptions.list():
                if str(getattr(sub, "state", "")).lower().endswith("enabled"):
                    logger.info(f"Using first enabled subscription: {sub.subscription_id}")
                    return sub.subscription_id
        except AzureError as e:
            logger.debug(f"Could not list subscriptions: {e}")

        raise ProviderContextError(
            "Unable to determine an Azure subscription. Run 'az login', "
            "pass --subscription or set AZURE_SUBSCRIPTION_ID"
        )

    @property
    def subscription_client(self) -> SubscriptionClient:
        """Lazy-initialize subscription client."""
        if self._subscription_client is None:
            self._subscription_client = SubscriptionClient(self.credential)
        return self._subscription_client

    @property
    def compute_client(self) -> ComputeManagementClient:
        """Lazy-initialize compute client."""
        if self._compute_client is None:
            self._compute_client = ComputeManagementClient(
                self.credential,
                self.subscription_id,
            )
        return self._compute_client

    @property
    def subscription_name(self) -> str:
        """Get subscription display name."""
        if self._subscription_name is None:
            try:
                sub = self.subscription_client.subscriptions.get(self.subscription_id)
                self._subscription_name = sub.display_name or self.subscription_id
            except AzureError:
                self._subscription_name = self.subscription_id
        return self._subscription_name

    def validate_region(self, region: str) -> str:
        """
        Check that ``region`` is a location of the subscription.

        Returns:
            The normalized region name.

        Raises:
            ConfigurationError: The region is empty or not offered.
            ProviderContextError: Locations could not be listed (auth, network).
        """
        normalized = normalize_region(region or "")
        if not normalized:
            raise ConfigurationError("Region is required")

        try:
            locations = list(self.subscription_client.subscriptions.list_locations(self.subscription_id))
        except ClientAuthenticationError as e:
            raise ProviderContextError(f"Azure authentication failed: {e.message}") from e
        except AzureError as e:
            raise ProviderContextError(f"Could not list locations for subscription {self.subscription_id}: {e}") from e

        known = {normalize_region(loc.name) for loc in locations if loc.name}
        if normalized not in known:
            raise ConfigurationError(f"Unknown region '{region}' for subscription {self.subscription_id}")
        return normalized


class CatalogClient:
    """
    Which VM sizes a region offers, and how many cores each has.

    The region's size list is read once per client instance; a new client is
    built for every run so nothing is reused across invocations.
    """

    def __init__(self, compute_client: ComputeManagementClient):
        self.compute_client = compute_client
        self._sizes = RegionCache(self._load_sizes)

    @retry_on_transient(max_retries=3, base_delay=1.0)
    def _fetch_sizes(self, region: str) -> List[Any]:
        return list(self.compute_client.virtual_machine_sizes.list(location=region))

    def _load_sizes(self, region: str) -> Dict[str, VmSkuSpec]:
        sizes: Dict[str, VmSkuSpec] = {}
        try:
            for size in self._fetch_sizes(region):
                cores = size.number_of_cores or 0
                if not size.name or cores < 1:
                    continue
                sizes[size.name.lower()] = VmSkuSpec(
                    name=size.name,
                    core_count=cores,
                    memory_mb=size.memory_in_mb or 0,
                    max_data_disks=size.max_data_disk_count or 0,
                )
        except AzureError as e:
            logger.warning(f"Could not list VM sizes for {region}: {e}")
        return sizes

    def _get_sizes(self, region: str) -> Dict[str, VmSkuSpec]:
        return self._sizes.get(region)

    def get_sku(self, region: str, sku_name: str) -> Optional[VmSkuSpec]:
        """Return the size spec, or None when the region does not offer it."""
        return self._get_sizes(region).get(sku_name.lower())

    def list_sku_cores(self, region: str, sku_name: str) -> Optional[int]:
        """Core count of ``sku_name`` in ``region``, or None when not offered."""
        sku = self.get_sku(region, sku_name)
        return sku.core_count if sku else None

    def list_family_candidates(
        self,
        region: str,
        family_prefix: str,
        min_cores: int,
        max_cores: int,
    ) -> Iterator[VmSkuSpec]:
        """Yield sizes whose name starts with ``family_prefix`` and whose core
        count lies in ``[min_cores, max_cores]``, in name order."""
        sizes = self._get_sizes(region)
        for key in sorted(sizes):
            sku = sizes[key]
            if sku.name.startswith(family_prefix) and min_cores <= sku.core_count <= max_cores:
                yield sku


class QuotaClient:
    """Regional core usage/limit pairs, subscription-wide and per VM family."""

    SUBSCRIPTION_CORES_NAME = "cores"

    def __init__(self, compute_client: ComputeManagementClient):
        self.compute_client = compute_client
        self._usages = RegionCache(self._load_usages)

    @retry_on_transient(max_retries=3, base_delay=1.0)
    def _fetch_usages(self, region: str) -> List[Any]:
        return list(self.compute_client.usage.list(location=region))

    def _load_usages(self, region: str) -> Optional[List[Any]]:
        try:
            return self._fetch_usages(region)
        except AzureError as e:
            logger.warning(f"Could not read compute usage for {region}: {e}")
            return None

    def _get_usages(self, region: str) -> Optional[List[Any]]:
        """Usage entries for the region, or None when they could not be read."""
        return self._usages.get(region)

    def is_loaded(self, region: str) -> bool:
        """True once the region's usage list was read (or failed to read)."""
        return self._usages.is_loaded(region)

    @staticmethod
    def _usage_names(usage) -> tuple:
        name = getattr(usage, "name", None)
        if name is None:
            return "", ""
        return name.value or "", name.localized_value or ""

    def _snapshot(self, usage, scope: QuotaScope, family_name: Optional[str] = None) -> QuotaSnapshot:
        value, localized = self._usage_names(usage)
        return QuotaSnapshot(
            scope=scope,
            name=value,
            current_value=usage.current_value or 0,
            limit=usage.limit,
            family_name=family_name,
            localized_name=localized,
        )

    def get_subscription_core_quota(self, region: str) -> QuotaSnapshot:
        """Total regional vCPU quota. ``limit`` is None when it could not be read."""
        for usage in self._get_usages(region) or []:
            value, _ = self._usage_names(usage)
            if value.lower() == self.SUBSCRIPTION_CORES_NAME:
                return self._snapshot(usage, QuotaScope.SUBSCRIPTION_CORES)

        return QuotaSnapshot(
            scope=QuotaScope.SUBSCRIPTION_CORES,
            name=self.SUBSCRIPTION_CORES_NAME,
            current_value=0,
            limit=None,
        )

    def get_family_quota(self, region: str, family_name: str) -> Optional[QuotaSnapshot]:
        """Quota of one VM family, or None when it is unknown."""
        if not family_name:
            return None

        for usage in self._get_usages(region) or []:
            value, _ = self._usage_names(usage)
            if value.lower() == family_name.lower():
                return self._snapshot(usage, QuotaScope.VM_FAMILY, family_name=family_name)
        return None

    def list_core_quotas(self, region: str) -> List[QuotaSnapshot]:
        """Every core/vCPU quota of the region (regional total and all families)."""
        quotas = []
        for usage in self._get_usages(region) or []:
            value, localized = self._usage_names(usage)
            if "cores" in value.lower() or "family" in value.lower() or "vcpu" in localized.lower():
                if value.lower() == self.SUBSCRIPTION_CORES_NAME:
                    quotas.append(self._snapshot(usage, QuotaScope.SUBSCRIPTION_CORES))
                else:
                    quotas.append(self._snapshot(usage, QuotaScope.VM_FAMILY, family_name=value))
        return quotas
