"""
tests/test_dependencies.py -- Unit tests for the role guard factory in
auth/dependencies.py. The request-time behaviour is covered end to end in
test_auth_routes.py and test_ioc_routes.py.
"""

import pytest

from auth.dependencies import require_roles
from auth.models import Role


def test_guard_name_reflects_roles():
    assert require_roles(Role.RESEARCHER, Role.ADMIN).__name__ == "require_researcher_or_admin"


def test_string_roles_are_coerced():
    assert require_roles("admin").__name__ == "require_admin"


def test_unknown_role_fails_at_registration():
    with pytest.raises(ValueError):
        require_roles("superuser")


def test_empty_role_set_rejected():
    with pytest.raises(ValueError):
        require_roles()
