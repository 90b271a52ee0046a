"""
Pytest configuration and shared fixtures.
"""

import os
import tempfile

# Keep test log files out of the project tree
os.environ.setdefault("HELPDESK_LOG_DIR", tempfile.mkdtemp(prefix="helpdesk-test-logs-"))

import pytest  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

from tests.factories import NOW, make_article, make_ticket, make_user  # noqa: E402


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def customer():
    return make_user("customer")


@pytest.fixture
def agent():
    return make_user("agent")


@pytest.fixture
def supervisor():
    return make_user("supervisor")


@pytest.fixture
def admin():
    return make_user("admin")


@pytest.fixture
def sample_ticket(customer):
    return make_ticket(customer_id=customer.id)


@pytest.fixture
def sample_article():
    return make_article()


@pytest.fixture
def mock_cursor():
    return MagicMock()
