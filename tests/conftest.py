"""
================================================================================
PYTEST CONFIGURATION
================================================================================

Pytest configuration and shared fixtures for the entire test suite.

Global Setup:
    - TEST_MODE=1 so provider retries run without delays
    - Run context 'test' (quiet console, zero retry backoff)

Fixtures:
    - workspace: temporary working directory with configs/ and outputs/
    - owner_context: OwnerContext for the default test wallet

Test Isolation Strategy:
    Modules that read or write files get explicit paths under tmp_path;
    nothing is written to the real project directories.

Author: robertbiv
================================================================================
"""
import os
import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path for module imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

TESTS_DIR = Path(__file__).parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))


def pytest_configure(config):
    os.environ['TEST_MODE'] = '1'
    os.environ['PYTEST_RUNNING'] = '1'
    from src.utils.logger import set_run_context
    set_run_context('test')


def pytest_unconfigure(config):
    for name in ('TEST_MODE', 'PYTEST_RUNNING'):
        os.environ.pop(name, None)


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Temporary working directory laid out like a project checkout."""
    for d in ('configs', 'outputs/logs', 'inputs'):
        (tmp_path / d).mkdir(parents=True, exist_ok=True)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def owner_context():
    from src.core.models import OwnerContext
    from test_common import OWNER, OWNER_TOKEN_ACCOUNTS
    return OwnerContext.build(OWNER, OWNER_TOKEN_ACCOUNTS)
