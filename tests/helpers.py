"""Fake Azure SDK objects for the sizer tests."""
from types import SimpleNamespace
from unittest.mock import MagicMock


def make_size(name, cores, memory_mb=None, max_data_disks=4):
    """A VirtualMachineSize as returned by virtual_machine_sizes.list()."""
    return SimpleNamespace(
        name=name,
        number_of_cores=cores,
        memory_in_mb=memory_mb if memory_mb is not None else cores * 4096,
        max_data_disk_count=max_data_disks,
    )


def make_usage(name, current, limit, localized=None):
    """A compute Usage as returned by usage.list()."""
    return SimpleNamespace(
        name=SimpleNamespace(value=name, localized_value=localized or name),
        current_value=current,
        limit=limit,
        unit="Count",
    )


def make_compute_client(sizes=None, usages=None):
    """MagicMock ComputeManagementClient serving fixed sizes and usages."""
    compute_client = MagicMock()
    compute_client.virtual_machine_sizes.list.return_value = list(sizes or [])
    compute_client.usage.list.return_value = list(usages or [])
    return compute_client


def sku_family(sku_name):
    """Family resolver for made-up SKU names: 'X2' -> 'X2Family'."""
    return f"{sku_name}Family"
