"""
Pytest configuration and fixtures for Shoal tests.

This module provides shared fixtures used across unit and integration tests.
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest

from shoal.service import GovernanceService
from shoal.store import ShoalDB


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    """Path for a fresh SQLite database."""
    return temp_dir / "shoal.db"


@pytest.fixture
def db(db_path: Path) -> Generator[ShoalDB, None, None]:
    """Create a database instance."""
    database = ShoalDB(db_path)
    yield database
    database.close()


@pytest.fixture
def service(db: ShoalDB) -> GovernanceService:
    """GovernanceService backed by the temporary database."""
    return GovernanceService(policies=db, approvals=db, audit=db)


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a config YAML with one policy per category."""
    return """
db_path: shoal.db
log_level: info
policies:
  - category: content_filter
    name: no-secrets
    rules:
      blockedTerms: [forbidden, "top secret"]
  - category: tool_restriction
    name: no-wire-transfers
    rules:
      denyTools: [wire_transfer]
      rolesAllowed: [admin, member]
  - category: approval_required
    name: gate-email
    rules:
      actionTypes: [tool_call]
      toolNames: [send_email]
"""
