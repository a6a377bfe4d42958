"""
FLEETWATCH Test Suite

Unit tests for the alert engine. Nothing here talks to a real SMTP server
or modem; transports are replaced by recording doubles or patched clients.

Test Organization:
    tests/
    ├── __init__.py          # This file
    ├── conftest.py          # Shared fixtures (clock, config, engine)
    └── unit/                # One module per component

Running Tests:
    # Run all tests
    pytest tests/

    # Run with coverage
    pytest tests/ --cov=fleetwatch --cov=services --cov-report=html

Requirements:
    pip install -e ".[test]"
"""
