import sys
from pathlib import Path

import pytest
from solders.keypair import Keypair

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tests.fakes import make_identity, unsigned_payload


@pytest.fixture
def keypair():
    return Keypair()


@pytest.fixture
def identity():
    return make_identity(1)


@pytest.fixture
def identities():
    return [make_identity(i) for i in range(1, 4)]


@pytest.fixture
def payload_for():
    """Factory: unsigned transaction bytes for a given keypair."""
    return unsigned_payload
