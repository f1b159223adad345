"""
Shared fixtures for the SM Automation test suite.
"""

import os
import sys
from pathlib import Path

import pytest

# Add src to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))
sys.path.insert(0, str(PROJECT_ROOT))

from sm_automation.core.config import Config  # noqa: E402
from sm_automation.credentials.store import MemoryCredentialStore  # noqa: E402
from sm_automation.models.results import Credentials  # noqa: E402
from tests.helpers import FakeLauncher, ManualClock  # noqa: E402


# =============================================================================
# Environment Helpers
# =============================================================================


@pytest.fixture
def clean_env(monkeypatch):
    """Remove SM_*, TRAIL_* and Supabase env vars to ensure clean state."""
    for key in list(os.environ.keys()):
        if key.startswith(("SM_", "TRAIL_")) or "SUPABASE" in key:
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def config(tmp_path, clean_env):
    """Config with short waits and a throwaway profile root."""
    return Config(
        field_wait_timeout=0.05,
        submit_settle_timeout=0.1,
        snapshot_idle_timeout=0.1,
        snapshot_settle_delay=0.0,
        profile_root=tmp_path / "profiles",
        credentials_file=str(tmp_path / "credentials.json"),
        supabase_url="",
        supabase_service_key="",
    )


# =============================================================================
# Sample Data
# =============================================================================


@pytest.fixture
def credentials():
    return Credentials(identity="manager@allerton.example", secret="s3cret-pass")


@pytest.fixture
def credential_store(credentials):
    """Store holding credentials for allerton only."""
    return MemoryCredentialStore({"allerton": credentials})


# =============================================================================
# Fakes
# =============================================================================


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def clock():
    return ManualClock()
