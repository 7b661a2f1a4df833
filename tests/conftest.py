"""
Test configuration and fixtures
"""
import sys
from pathlib import Path

# Add src to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

import pytest
from prometheus_client import CollectorRegistry

from vaultledger.core.access_control import OwnerAccessControl
from vaultledger.core.clock import ManualClock
from vaultledger.core.contracts.token import FungibleToken
from vaultledger.core.metrics import LedgerMetrics

OWNER = "0xowner"
ALICE = "0xalice"
BOB = "0xbob"


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return LedgerMetrics(registry=registry)


@pytest.fixture
def clock():
    return ManualClock(start_time=0)


@pytest.fixture
def access_control():
    return OwnerAccessControl(OWNER)


@pytest.fixture
def token():
    return FungibleToken(symbol="VLT")
