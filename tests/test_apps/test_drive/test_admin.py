"""Tests for drive admin configuration."""

import pytest
from django.contrib import admin

from server.apps.drive.admin import NodeAdmin, _format_bytes
from server.apps.drive.models import Node


@pytest.fixture
def node_admin():
    """NodeAdmin bound to the default admin site."""
    return NodeAdmin(Node, admin.site)


@pytest.mark.django_db
class TestNodeAdmin:
    """Tests for NodeAdmin."""

    def test_cannot_add_nodes(self, node_admin, rf, admin_user):
        """Test nodes cannot be created from the admin."""
        request = rf.get('/admin/drive/node/add/')
        request.user = admin_user

        assert node_admin.has_add_permission(request) is False

    def test_structure_is_read_only(
        self,
        node_admin,
        rf,
        admin_user,
        user,
        make_folder,
    ):
        """Test owner, name and position cannot be edited."""
        folder = make_folder(user, 'Holidays')
        request = rf.get(f'/admin/drive/node/{folder.pk}/change/')
        request.user = admin_user

        readonly_fields = node_admin.get_readonly_fields(request, folder)

        assert {'owner', 'name', 'parent', 'kind'} <= set(readonly_fields)
        assert 'is_starred' not in readonly_fields

    def test_change_form_has_only_flag_fields(
        self,
        node_admin,
        rf,
        admin_user,
        user,
        make_folder,
    ):
        """Test the change form only edits the star flag."""
        folder = make_folder(user, 'Holidays')
        request = rf.get(f'/admin/drive/node/{folder.pk}/change/')
        request.user = admin_user

        form_class = node_admin.get_form(request, folder)

        assert list(form_class.base_fields) == ['is_starred']


class TestFormatBytes:
    """Tests for _format_bytes helper."""

    @pytest.mark.parametrize(('size_bytes', 'expected'), [
        (512, '512 B'),
        (1536, '1.5 KB'),
        (5 * 1024 * 1024, '5.0 MB'),
        (10 * 1024 * 1024 * 1024, '10.0 GB'),
    ])
    def test_format(self, size_bytes, expected):
        """Test sizes pick the largest fitting unit."""
        assert _format_bytes(size_bytes) == expected
