"""Pytest configuration and shared fixtures for agent tests."""

# Import fixtures from fixture modules to make them available
pytest_plugins = [
    "tests.fixtures.k8s_fixtures",
    "tests.fixtures.cert_fixtures",
]
