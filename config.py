"""
Configuration and settings for AKS VM Sizer CLI.
"""
from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Azure Authentication
    azure_subscription_id: Optional[str] = Field(default=None, alias="AZURE_SUBSCRIPTION_ID")
    azure_tenant_id: Optional[str] = Field(default=None, alias="AZURE_TENANT_ID")
    azure_client_id: Optional[str] = Field(default=None, alias="AZURE_CLIENT_ID")
    azure_client_secret: Optional[str] = Field(default=None, alias="AZURE_CLIENT_SECRET")

    # Search defaults
    default_node_count: int = Field(default=3, alias="DEFAULT_NODE_COUNT")
    default_result_limit: int = Field(default=5, alias="DEFAULT_RESULT_LIMIT")

    # Concurrency against the Azure APIs
    max_workers: int = Field(default=4, alias="MAX_WORKERS")
    evaluation_timeout: Optional[float] = Field(default=None, alias="EVALUATION_TIMEOUT")  # seconds

    # Deployment parameter printed with the top recommendation
    deployment_parameter: str = Field(default="AKS_NODE_POOL_VM_SIZE", alias="DEPLOYMENT_PARAMETER")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True


# Each node gets at least this many vCPUs when no minimum is given
BASELINE_VCPUS_PER_NODE = 2

# Fallback search window (general purpose D-series only)
FALLBACK_FAMILY_PREFIX = "Standard_D"
FALLBACK_MAX_CORES = 16

QUOTA_PORTAL_URL = "https://portal.azure.com/#blade/Microsoft_Azure_Capacity/QuotaMenuBlade/myQuotas"

# Preferred AKS node sizes, in priority order
PREFERRED_VM_SIZES = [
    # General purpose D-series, 2 vCPUs, newest generation first
    "Standard_D2s_v5",
    "Standard_D2_v5",
    "Standard_D2s_v4",
    "Standard_D2_v4",
    "Standard_D2s_v3",
    "Standard_D2_v3",
    # General purpose D-series, 4 vCPUs
    "Standard_D4s_v5",
    "Standard_D4_v5",
    "Standard_D4s_v4",
    "Standard_D4_v4",
    "Standard_D4s_v3",
    "Standard_D4_v3",
    # Burstable
    "Standard_B2s",
    "Standard_B2ms",
    "Standard_B4ms",
    # Legacy DS-series
    "Standard_DS2_v2",
    "Standard_DS3_v2",
    "Standard_DS4_v2",
]

# SKU name pattern -> compute quota family (usage name.value).
# Evaluated top to bottom, first match wins, so longer disk/feature
# suffixes must come before the plain ones.
QUOTA_FAMILY_PATTERNS = [
    # D-series v6
    (r"^Standard_D\d+alds_v6$", "standardDALDSv6Family"),
    (r"^Standard_D\d+als_v6$", "standardDALSv6Family"),
    (r"^Standard_D\d+ads_v6$", "standardDADSv6Family"),
    (r"^Standard_D\d+as_v6$", "standardDASv6Family"),
    (r"^Standard_D\d+lds_v6$", "standardDLDSv6Family"),
    (r"^Standard_D\d+ls_v6$", "standardDLSv6Family"),
    (r"^Standard_D\d+plds_v6$", "standardDPLDSv6Family"),
    (r"^Standard_D\d+pls_v6$", "standardDPLSv6Family"),
    (r"^Standard_D\d+pds_v6$", "standardDPDSv6Family"),
    (r"^Standard_D\d+ps_v6$", "standardDPSv6Family"),
    (r"^Standard_D\d+ds_v6$", "standardDDSv6Family"),
    (r"^Standard_D\d+s_v6$", "standardDSv6Family"),
    # D-series v5
    (r"^Standard_D\d+ads_v5$", "standardDADSv5Family"),
    (r"^Standard_D\d+as_v5$", "standardDASv5Family"),
    (r"^Standard_D\d+lds_v5$", "standardDLDSv5Family"),
    (r"^Standard_D\d+ls_v5$", "standardDLSv5Family"),
    (r"^Standard_D\d+pds_v5$", "standardDPDSv5Family"),
    (r"^Standard_D\d+ps_v5$", "standardDPSv5Family"),
    (r"^Standard_D\d+ds_v5$", "standardDDSv5Family"),
    (r"^Standard_D\d+d_v5$", "standardDDv5Family"),
    (r"^Standard_D\d+s_v5$", "standardDSv5Family"),
    (r"^Standard_D\d+_v5$", "standardDv5Family"),
    # D-series v4
    (r"^Standard_D\d+as_v4$", "standardDASv4Family"),
    (r"^Standard_D\d+a_v4$", "standardDAv4Family"),
    (r"^Standard_D\d+ds_v4$", "standardDDSv4Family"),
    (r"^Standard_D\d+d_v4$", "standardDDv4Family"),
    (r"^Standard_D\d+s_v4$", "standardDSv4Family"),
    (r"^Standard_D\d+_v4$", "standardDv4Family"),
    # D-series v3
    (r"^Standard_D\d+s_v3$", "standardDSv3Family"),
    (r"^Standard_D\d+_v3$", "standardDv3Family"),
    # Legacy D/DS v2
    (r"^Standard_DS\d+_v2(_Promo)?$", "standardDSv2Family"),
    (r"^Standard_D\d+_v2(_Promo)?$", "standardDv2Family"),
    # Burstable
    (r"^Standard_B\d+a\w*_v2$", "standardBasv2Family"),
    (r"^Standard_B\d+p\w*_v2$", "standardBpsv2Family"),
    (r"^Standard_B\d+\w*_v2$", "standardBsv2Family"),
    (r"^Standard_B\d+\w*$", "standardBSFamily"),
]
