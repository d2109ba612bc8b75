"""Integration test configuration.

These tests require platform credentials and are skipped by default.
Set the GH_PAT environment variable to a GitHub token to enable them.
"""

import os

import pytest


@pytest.fixture()
def github_token():
    token = os.environ.get("GH_PAT")
    if not token:
        pytest.skip("Integration tests require GH_PAT env var")
    return token
