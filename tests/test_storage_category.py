"""
Tests for CategoryClient and the category tree builder.
"""

import pytest
from unittest.mock import MagicMock
from uuid import uuid4

from core.schemas import Category
from core.storage_category import CategoryClient, build_category_tree
from tests.factories import mock_connection


def _category(name, parent_id=None, sort_order=0):
    return Category(id=uuid4(), name=name, slug=name.lower(), parent_id=parent_id, sort_order=sort_order)


@pytest.fixture
def client():
    return CategoryClient(connection_pool=MagicMock())


class TestBuildCategoryTree:
    def test_nests_children_in_order(self):
        accounts = _category("Accounts", sort_order=1)
        network = _category("Network", sort_order=0)
        vpn = _category("VPN", parent_id=network.id, sort_order=2)
        wifi = _category("WiFi", parent_id=network.id, sort_order=1)

        tree = build_category_tree([accounts, vpn, wifi, network])

        assert [c.name for c in tree] == ["Network", "Accounts"]
        assert [c.name for c in tree[0].children] == ["WiFi", "VPN"]

    def test_ties_break_on_name(self):
        tree = build_category_tree([_category("Billing"), _category("Access")])

        assert [c.name for c in tree] == ["Access", "Billing"]

    def test_orphans_dropped(self):
        orphan = _category("Orphan", parent_id=uuid4())

        assert build_category_tree([orphan]) == []

    def test_input_not_mutated(self):
        parent = _category("Parent")
        child = _category("Child", parent_id=parent.id)

        build_category_tree([parent, child])

        assert parent.children == []


class TestCategoryClient:
    def test_create_checks_parent(self, client, mock_cursor):
        mock_cursor.fetchone.return_value = None
        mock_connection(client, mock_cursor)

        with pytest.raises(ValueError, match="Parent category"):
            client.create_category("VPN", parent_id=uuid4())

    def test_update_rejects_self_parent(self, client, mock_cursor):
        mock_connection(client, mock_cursor)
        category_id = uuid4()

        with pytest.raises(ValueError, match="own parent"):
            client.update_category(category_id, {"parent_id": category_id})

    def test_update_rejects_cycle(self, client, mock_cursor):
        category_id = uuid4()
        descendant = uuid4()
        mock_cursor.fetchall.return_value = [(descendant,), (category_id,)]
        mock_connection(client, mock_cursor)

        with pytest.raises(ValueError, match="cycle"):
            client.update_category(category_id, {"parent_id": descendant})

    def test_update_requires_fields(self, client):
        with pytest.raises(ValueError, match="No fields"):
            client.update_category(uuid4(), {})

    def test_delete_with_children_rejected(self, client, mock_cursor):
        mock_cursor.fetchone.return_value = (2,)
        mock_connection(client, mock_cursor)

        with pytest.raises(ValueError, match="child categories"):
            client.delete_category(uuid4())

    def test_delete_detaches_articles(self, client, mock_cursor):
        mock_cursor.fetchone.return_value = (0,)
        mock_cursor.rowcount = 1
        mock_connection(client, mock_cursor)

        client.delete_category(uuid4())

        statements = [c[0][0] for c in mock_cursor.execute.call_args_list]
        assert "UPDATE articles SET category_id = NULL" in statements[1]
        assert "DELETE FROM categories" in statements[2]
