"""BDD tests for reading ingestion and broadcast through the connection hub."""

import pytest
from pytest_bdd import scenarios

scenarios(".")

pytestmark = [pytest.mark.tier(2), pytest.mark.hub]
