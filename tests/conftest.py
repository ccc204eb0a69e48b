"""Pytest configuration and fixtures."""

import shutil
import tempfile

import pytest


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    temp_path = tempfile.mkdtemp()
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def sample_heartbeat_body():
    """Sample heartbeat body as posted by the emitter."""
    return {
        "doc_identifier": "doc-1",
        "title": "Quarterly plan",
        "domain": "docs.google.com",
        "url": "https://docs.google.com/document/d/doc-1/edit",
        "email": "a@x.com",
    }


@pytest.fixture
def sample_page_html():
    """Sample markup of a tracked document page."""
    return (
        "<html><head><title>Quarterly plan - Google Docs</title></head>"
        "<body><div class='docs-title-input'> Quarterly plan </div></body></html>"
    )


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "unit: mark test as unit test")
