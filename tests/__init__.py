# =============================================================================
# BACKPORT BOT - TEST PACKAGE
# =============================================================================
"""
Test Package

This package contains tests for the backport bot.

Test Structure:
    tests/
    ├── __init__.py                 # This file
    ├── conftest.py                 # Shared fixtures
    ├── fakes.py                    # In-memory GitHubGateway
    ├── test_event_models.py        # Webhook payload models, fix commits
    ├── test_backport_service.py    # Backport operations
    ├── test_event_service.py       # Backport decisions per event
    ├── test_github_client.py       # REST client
    ├── test_gateway.py             # REST gateway
    ├── test_webhook_handler.py     # Webhook endpoint
    ├── test_main.py                # Configuration and command line
    ├── test_logger.py              # Logging and audit trail
    ├── test_metrics.py             # Prometheus collector
    └── test_scenarios.py           # End-to-end flows on the fake gateway

Running Tests:
    # Run all tests
    pytest

    # Run specific test file
    pytest tests/test_backport_service.py -v

    # Run with coverage
    pytest tests/ --cov=backport_bot --cov=monitoring

Test Categories:
    - Unit tests: Test individual components in isolation
    - Integration tests: Test component interactions
    - End-to-end tests: Test full workflows on the fake gateway
"""
