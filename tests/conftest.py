"""
Pytest configuration and shared fixtures for the tlsgate test suite.

Certificate generation is done once per session; live listeners run on an
ephemeral loopback port in a background event loop thread.
"""

import sys
from pathlib import Path
from typing import Generator

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from tlsgate.certificates import CertificateBundle, provision  # noqa: E402
from tlsgate.tls import TLSServerConfig  # noqa: E402

from tests.tls_client import LiveServer  # noqa: E402


# ============================================================================
# Session-level fixtures
# ============================================================================

@pytest.fixture(scope="session")
def bundle() -> CertificateBundle:
    """Self-signed bundle for ``localhost`` and ``::1``."""
    return provision(["localhost", "::1"])


@pytest.fixture(scope="session")
def other_bundle() -> CertificateBundle:
    """A second, unrelated bundle for mismatch tests."""
    return provision(["example.com"])


@pytest.fixture(scope="session")
def tls_config(bundle: CertificateBundle) -> TLSServerConfig:
    return TLSServerConfig(bundle=bundle)


# ============================================================================
# Module-level fixtures
# ============================================================================

@pytest.fixture(scope="module")
def live_server(tls_config: TLSServerConfig) -> Generator[LiveServer, None, None]:
    """Listener with the default handler and no timeouts."""
    with LiveServer(tls_config) as server:
        yield server
