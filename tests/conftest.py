"""Shared test fixtures for the sizer tests."""
import pytest

from azure_client import CatalogClient, QuotaClient
from constraint_validator import CandidateEvaluator
from helpers import make_compute_client, sku_family


@pytest.fixture
def evaluator_factory():
    """Build a CandidateEvaluator over fake sizes/usages.

    Returns (evaluator, compute_client) so tests can inspect API calls.
    """
    def factory(sizes=None, usages=None, family_resolver=sku_family):
        compute_client = make_compute_client(sizes, usages)
        evaluator = CandidateEvaluator(
            CatalogClient(compute_client),
            QuotaClient(compute_client),
            family_resolver=family_resolver,
        )
        return evaluator, compute_client
    return factory
