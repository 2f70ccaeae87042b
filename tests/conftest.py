"""Pytest configuration and fixtures for robotsmith tests.

This module provides pytest hooks and fixtures that apply across all tests.
"""

import gc
import logging

import pytest

console_logger = logging.getLogger(__name__)


@pytest.hookimpl(tryfirst=True)
def pytest_runtest_teardown(item, nextitem):
    """Force garbage collection after each test to release MuJoCo model/data objects."""
    gc.collect()
    console_logger.debug(f"Garbage collection completed after test: {item.nodeid}")


@pytest.hookimpl(trylast=True)
def pytest_sessionfinish(session, exitstatus):  # noqa: ARG001
    """Force final garbage collection after all tests complete.

    Native MuJoCo buffers held by engine adapters are freed before pytest exits.
    """
    del session, exitstatus  # Unused but required by hookspec.
    gc.collect()
    console_logger.debug("Final garbage collection completed after test session")
