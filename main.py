#!/usr/bin/env python3
"""
AKS VM Sizer CLI - find VM sizes an AKS cluster can actually be deployed with.

Features:
- Checks which preferred node sizes a region offers
- Checks regional and VM-family vCPU quota for the whole cluster
- Ranks qualifying sizes by vCPUs (fewest first, most cost-effective)
- Falls back to a D-series search when no preferred size qualifies
- Quiet mode for automation, JSON/CSV export

Usage:
    python main.py find --region eastus2
    python main.py find -r swedencentral -n 5 -c 30
    python main.py find -r eastus2 -q
    python main.py quota --region eastus2
"""
import logging
from collections import Counter
import re
from typing import Optional, List

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich import box
from dotenv import load_dotenv

from config import Settings, QUOTA_FAMILY_PATTERNS, QUOTA_PORTAL_URL
from azure_client import AzureClient, CatalogClient, QuotaClient, QuotaSnapshot, SizerError, ConfigurationError
from constraint_validator import (
    CandidateEvaluator,
    ClusterRequirement,
    VerdictReason,
    create_quota_table,
    create_verdict_table,
    get_quota_family,
)
from analysis_engine import VmSizeSearchEngine, SearchResult
from report_exporter import export_report, quiet_lines

__version__ = "1.0.0"

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

# Initialize
app = typer.Typer(
    name="vm-sizer",
    help="""⎈ AKS VM Sizer - find deployable node sizes for a region

Checks region availability, cluster vCPU needs and vCPU quota for the
preferred AKS node sizes, and recommends the most cost-effective one.

[bold]Common Commands:[/bold]
  find       Rank VM sizes for an N-node cluster
  quota      Show regional vCPU quota usage
  families   Show the SKU to quota family mapping""",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()
err_console = Console(stderr=True)

REGION_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9 ]*$")
EXPORT_FORMATS = ("json", "csv")


def configure_logging(debug: bool = False, quiet: bool = False) -> None:
    """Route library logging to stderr; quiet mode silences everything but crashes."""
    if quiet:
        level = logging.CRITICAL
    elif debug:
        level = logging.DEBUG
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()],
        force=True,
    )
    # The Azure SDK logs every HTTP request at INFO
    logging.getLogger("azure").setLevel(max(level, logging.WARNING))


def create_header():
    """Print the compact CLI header."""
    console.print()
    console.print(f"  [bold bright_cyan]⎈ AKS VM Sizer[/] [dim]v{__version__}[/]")
    console.print()


def check_region_argument(region: str) -> str:
    """Reject obviously malformed region names before any Azure call."""
    region = (region or "").strip()
    if not region:
        raise ConfigurationError("Region is required")
    if not REGION_PATTERN.match(region):
        raise ConfigurationError(f"Invalid region name: '{region}'")
    return region


def build_azure_client(settings: Settings, subscription: Optional[str]) -> AzureClient:
    """Create the Azure client from CLI options and settings."""
    return AzureClient(
        subscription_id=subscription or settings.azure_subscription_id,
        tenant_id=settings.azure_tenant_id,
        client_id=settings.azure_client_id,
        client_secret=settings.azure_client_secret,
    )


def format_minimum(requirement: ClusterRequirement) -> str:
    """Describe the cluster vCPU minimum and where it came from."""
    minimum = requirement.min_total_vcpus
    if minimum.is_user_specified:
        return f"{minimum.value} (user-specified)"
    return f"{minimum.value} (baseline, not enforced)"


def create_context_panel(result: SearchResult, subscription_label: str) -> Panel:
    """Create the panel describing what is being searched."""
    requirement = result.requirement
    content = f"""
[bold]Subscription:[/bold] {subscription_label}
[bold]Region:[/bold] {result.region}
[bold]Planned AKS cluster:[/bold] {requirement.node_count} nodes
[bold]Minimum total vCPUs:[/bold] {format_minimum(requirement)}
"""
    return Panel(content, title="[bold cyan]🔍 VM Size Search[/bold cyan]", border_style="blue")


def print_ranked(result: SearchResult, limit: int, deployment_parameter: str) -> None:
    """Print the ranked qualifying sizes and the top recommendation."""
    requirement = result.requirement
    ranked = result.ranked(limit)

    console.print(
        f"\n[bold green]✅ VM sizes with sufficient quota for {requirement.node_count}-node cluster "
        f"(ordered by lowest resources):[/bold green]\n"
    )
    for i, verdict in enumerate(ranked, 1):
        sku = verdict.sku
        console.print(f"[green]{i}. {verdict.sku_name}[/green]")
        console.print(f"   Per VM: {sku.core_count} vCPUs, {sku.memory_gb:g} GB RAM, {sku.max_data_disks} data disks")
        console.print(f"   Total cluster: {verdict.total_cluster_vcpus} vCPUs ({verdict.node_count} nodes)")
        console.print()

    top = result.top_recommendation
    console.print(f"[bold green]🎯 TOP RECOMMENDATION (Most Cost-Effective): {top.sku_name}[/bold green]")
    console.print(
        f"[blue]   Cluster configuration: {top.node_count} nodes × {top.core_count} vCPUs "
        f"= {top.total_cluster_vcpus} total vCPUs[/blue]"
    )

    additional = result.additional_count(limit)
    if additional:
        console.print(
            f"[yellow]   Note: {additional} additional VM sizes available. "
            f"Use --limit to show more results.[/yellow]"
        )

    console.print("\nTo use this VM size in your deployment, set:")
    console.print(f"[blue]azd env set {deployment_parameter} {top.sku_name}[/blue]")


def print_fallback(result: SearchResult) -> None:
    """Print the outcome of the D-series fallback search (unranked)."""
    requirement = result.requirement
    console.print(
        f"\n[red]❌ No preferred VM sizes can provide sufficient quota for "
        f"{requirement.node_count}-node cluster in region {result.region}[/red]"
    )

    if requirement.enforces_minimum:
        console.print(
            f"[blue]Checking alternative D-series VMs (≥{result.fallback_core_floor} vCPUs per VM "
            f"for {requirement.min_total_vcpus.value} total):[/blue]"
        )
    else:
        console.print(
            f"[blue]Checking alternative D-series VMs (any size up to "
            f"{result.fallback_core_ceiling} vCPUs for {requirement.node_count} nodes):[/blue]"
        )

    if not result.fallback:
        if requirement.enforces_minimum:
            console.print(
                f"[red]No D-series VMs found that can provide {requirement.min_total_vcpus.value} "
                f"total vCPUs for {requirement.node_count} nodes[/red]"
            )
        else:
            console.print("[red]No D-series VMs found in this region[/red]")
        return

    for verdict in result.fallback:
        detail = (
            f"{verdict.sku_name} ({verdict.core_count} vCPUs × {verdict.node_count} "
            f"= {verdict.total_cluster_vcpus} total vCPUs"
        )
        if verdict.qualifies:
            console.print(f"[green]  ✓ {detail}, has quota)[/green]")
        else:
            console.print(f"[yellow]  - {detail}, {verdict.reason.value})[/yellow]")


def create_summary_panel(result: SearchResult) -> Panel:
    """Create the per-outcome tally panel."""
    requirement = result.requirement
    # Candidates cut off by the deadline get their own line
    tally = Counter(v.reason for v in result.all_verdicts if v.evaluated)
    quota_short = (
        tally[VerdictReason.INSUFFICIENT_SUBSCRIPTION_QUOTA]
        + tally[VerdictReason.INSUFFICIENT_FAMILY_QUOTA]
    )

    if requirement.enforces_minimum:
        title = (
            f"📋 Summary for {requirement.node_count}-node AKS cluster "
            f"(≥{requirement.min_total_vcpus.value} total vCPUs required)"
        )
    else:
        title = f"📋 Summary for {requirement.node_count}-node AKS cluster (evaluating all VM SKUs)"

    content = f"""
  • [green]✓ Available with quota: {tally[VerdictReason.OK]}[/green]
  • [yellow]- Available but insufficient quota: {quota_short}[/yellow]
  • [yellow]? Available but quota unknown: {tally[VerdictReason.UNKNOWN_QUOTA]}[/yellow]
  • [yellow]⚠ Available but insufficient total vCPUs: {tally[VerdictReason.INSUFFICIENT_CLUSTER_SIZE]}[/yellow]
  • [red]✗ Not available in region: {tally[VerdictReason.UNAVAILABLE]}[/red]
"""
    if result.timed_out:
        content += f"  • [dim]⏱ Not evaluated before the deadline: {len(result.not_evaluated)}[/dim]\n"
    return Panel(content, title=f"[bold]{title}[/bold]", border_style="yellow")


def print_quota_guidance(region: str) -> None:
    """Print how to request a quota increase."""
    console.print("\n[yellow]💡 To request quota increase:[/yellow]")
    console.print("[blue]1. Go to Azure Portal > Subscriptions > Usage + quotas[/blue]")
    console.print(f"[blue]2. Filter by region: {region}[/blue]")
    console.print("[blue]3. Search for 'vCPUs' quotas[/blue]")
    console.print("[blue]4. Request increase for needed VM families[/blue]")
    console.print(f"[link]{QUOTA_PORTAL_URL}[/link]")


def relevant_quotas(result: SearchResult, quotas: List[QuotaSnapshot]) -> List[QuotaSnapshot]:
    """Regional total plus the families of the evaluated candidates."""
    families = {v.family_name.lower() for v in result.all_verdicts if v.family_name}
    return [
        q for q in quotas
        if q.family_name is None or q.name.lower() in families
    ]


def render_report(
    result: SearchResult,
    limit: int,
    deployment_parameter: str,
    quotas: List[QuotaSnapshot],
    subscription_label: str = "",
) -> None:
    """Verbose mode: explain every candidate, the ranking and what to do next."""
    console.print(create_context_panel(result, subscription_label or result.subscription_id))
    console.print(create_verdict_table(result.preferred, title="🔍 Preferred VM Sizes"))

    if result.qualifying:
        print_ranked(result, limit, deployment_parameter)
    else:
        print_fallback(result)

    shown_quotas = relevant_quotas(result, quotas)
    if shown_quotas:
        console.print()
        console.print(create_quota_table(shown_quotas))

    console.print(f"\n[blue]Region and quota check complete for: {result.region}[/blue]\n")
    console.print(create_summary_panel(result))

    if result.needs_quota_guidance:
        print_quota_guidance(result.region)


@app.command()
def find(
    region: str = typer.Option(..., "--region", "-r", help="Azure region (e.g. eastus, westus2, swedencentral)"),
    subscription: Optional[str] = typer.Option(None, "--subscription", "-s", help="Azure Subscription ID (default: current)"),
    nodes: Optional[int] = typer.Option(None, "--nodes", "-n", min=1, help="Number of AKS nodes (default: 3)"),
    min_vcpus: Optional[int] = typer.Option(
        None, "--min-vcpus", "-c", min=0,
        help="Minimum total vCPUs for the cluster (enforced; default: not enforced)",
    ),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", min=1, help="Maximum number of results (default: 5)"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only output SKU names of matches"),
    workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Concurrent Azure lookups (default: 4)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", min=0.0, help="Deadline in seconds for all evaluations"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Export results to file (.json, .csv)"),
    output_format: Optional[str] = typer.Option(None, "--format", "-f", help="Export format: json or csv"),
    debug: bool = typer.Option(False, "--debug", help="Print debug logging to stderr"),
):
    """
    🎯 Find compatible VM sizes for an AKS cluster.

    Checks the preferred node sizes for availability, cluster vCPUs and
    quota, and ranks the qualifying ones by vCPUs (fewest first).
    """
    configure_logging(debug=debug, quiet=quiet)
    settings = Settings()

    node_count = nodes or settings.default_node_count
    result_limit = limit or settings.default_result_limit

    try:
        region = check_region_argument(region)
        if output_format is not None and output_format.lower() not in EXPORT_FORMATS:
            raise ConfigurationError(f"Unsupported export format: {output_format}")
        requirement = ClusterRequirement.for_nodes(node_count, min_vcpus)

        azure_client = build_azure_client(settings, subscription)
        region = azure_client.validate_region(region)
    except (SizerError, ValueError) as e:
        err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    evaluator = CandidateEvaluator(
        CatalogClient(azure_client.compute_client),
        QuotaClient(azure_client.compute_client),
    )
    engine = VmSizeSearchEngine(
        evaluator,
        max_workers=workers or settings.max_workers,
        timeout=timeout if timeout is not None else settings.evaluation_timeout,
    )

    if quiet:
        result = engine.search(region, requirement, subscription_id=azure_client.subscription_id)
        for line in quiet_lines(result, result_limit):
            typer.echo(line)
    else:
        create_header()
        with console.status(f"[bold cyan]Checking VM sizes for region {region}..."):
            result = engine.search(region, requirement, subscription_id=azure_client.subscription_id)
            # Past the deadline, only show usage that is already loaded
            if result.timed_out and not evaluator.quota.is_loaded(region):
                logger.warning(f"Skipping quota table for {region}: usage data not loaded before the deadline")
                quotas = []
            else:
                quotas = evaluator.quota.list_core_quotas(region)
        subscription_label = f"{azure_client.subscription_name} ({azure_client.subscription_id})"
        render_report(result, result_limit, settings.deployment_parameter, quotas, subscription_label)

    if output:
        try:
            path = export_report(
                result,
                output,
                output_format.lower() if output_format else None,
                limit=result_limit,
            )
        except OSError as e:
            err_console.print(f"[red]Error: Could not write {output}: {e}[/red]")
            raise typer.Exit(1)
        if not quiet:
            console.print(f"\n[green]✓ Results exported to {path}[/green]")


@app.command()
def quota(
    region: str = typer.Option(..., "--region", "-r", help="Azure region to check"),
    subscription: Optional[str] = typer.Option(None, "--subscription", "-s", help="Azure Subscription ID"),
    family: Optional[str] = typer.Option(None, "--family", "-f", help="Filter by quota name (e.g. DSv5)"),
    debug: bool = typer.Option(False, "--debug", help="Print debug logging to stderr"),
):
    """
    📊 Show regional vCPU quota usage.

    Lists the regional vCPU total and every VM family quota.
    """
    configure_logging(debug=debug)
    create_header()
    settings = Settings()

    try:
        region = check_region_argument(region)
        azure_client = build_azure_client(settings, subscription)
        region = azure_client.validate_region(region)
    except SizerError as e:
        err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    with console.status("[bold cyan]Fetching quota information..."):
        quotas = QuotaClient(azure_client.compute_client).list_core_quotas(region)

    if family:
        quotas = [
            q for q in quotas
            if family.lower() in q.name.lower() or family.lower() in q.localized_name.lower()
        ]

    if not quotas:
        console.print(f"[yellow]No quota information found for {region}[/yellow]")
        return

    console.print(create_quota_table(quotas))

    critical = [q for q in quotas if q.has_data and q.usage_percent >= 90]
    if critical:
        console.print("\n[bold red]⚠️ Critical Quota Warnings:[/bold red]")
        for q in critical:
            console.print(f"  • {q.localized_name or q.name}: {q.current_value}/{q.limit} ({q.usage_percent:.1f}%)")
        console.print("\n[dim]Consider requesting a quota increase for these families[/dim]")


@app.command()
def families(
    sku: Optional[str] = typer.Option(None, "--sku", help="Resolve the quota family of one SKU"),
):
    """
    🧬 Show how VM size names map to quota families.
    """
    if sku:
        family = get_quota_family(sku)
        if family:
            console.print(f"{sku} → [cyan]{family}[/cyan]")
        else:
            console.print(f"[yellow]{sku} → no known quota family[/yellow]")
        return

    table = Table(
        title="🧬 Quota Family Patterns (first match wins)",
        box=box.ROUNDED,
        header_style="bold cyan",
    )
    table.add_column("#", justify="right", style="dim")
    table.add_column("SKU Pattern", style="white")
    table.add_column("Quota Family", style="cyan")

    for i, (pattern, family) in enumerate(QUOTA_FAMILY_PATTERNS, 1):
        table.add_row(str(i), pattern, family)

    console.print(table)


@app.command()
def version():
    """Show version information."""
    console.print(f"AKS VM Sizer v{__version__}")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
