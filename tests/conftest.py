"""Pytest configuration and fixtures."""

import pytest
from unittest.mock import MagicMock

from pynsxt_errors import NotAvailable
from pynsxt_nsx import InMemoryCollection
from pynsxt_specs import KIND_GROUP, KIND_TIER0, KIND_TIER1


class FakeSession:
    """Stands in for pynsxt_session.Session, serving in-memory collections."""

    def __init__(self, collections=None, domains=("default",)):
        self.base_url = "https://nsxmgr.test"
        self.username = "admin"
        self.version = "3.2.1.0.0"
        self.collections = collections or {}
        self.domains = set(domains)
        self.connected = False
        self.closed = False

    def connect(self):
        self.connected = True
        return self.version

    def get_collection(self, kind, domain="default"):
        if kind not in self.collections:
            raise NotAvailable(f'Resource kind "{kind}" is not supported.')
        if kind == KIND_GROUP and domain not in self.domains:
            raise NotAvailable(f'Domain "{domain}" does not exist.')
        return self.collections[kind]

    def close(self):
        self.closed = True


@pytest.fixture
def make_response():
    """Factory for mocked requests.Response objects."""

    def _make(status_code=200, json_data=None):
        response = MagicMock()
        response.status_code = status_code
        response.json.return_value = json_data if json_data is not None else {}
        response.content = b"{...}" if json_data is not None else b""
        return response

    return _make


@pytest.fixture
def cond1():
    return {
        "resource_type": "Condition",
        "member_type": "VirtualMachine",
        "key": "Name",
        "operator": "STARTSWITH",
        "value": "web",
    }


@pytest.fixture
def cond2():
    return {
        "resource_type": "Condition",
        "member_type": "VirtualMachine",
        "key": "Tag",
        "operator": "EQUALS",
        "value": "prod",
    }


@pytest.fixture
def empty_groups():
    return InMemoryCollection(KIND_GROUP)


@pytest.fixture
def old_groups():
    """A group collection holding G1 with description 'old'."""
    return InMemoryCollection(KIND_GROUP, [
        {"id": "g1-id", "display_name": "G1", "description": "old", "expression": [], "tags": []},
    ])


@pytest.fixture
def fake_session():
    return FakeSession({
        KIND_GROUP: InMemoryCollection(KIND_GROUP),
        KIND_TIER0: InMemoryCollection(KIND_TIER0),
        KIND_TIER1: InMemoryCollection(KIND_TIER1),
    })


@pytest.fixture
def session_factory_for():
    """Builds a FakeSession over the given collections and domains."""
    return FakeSession
