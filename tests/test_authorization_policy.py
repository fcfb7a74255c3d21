import pytest

from apps.tracker.domain.errors import AuthorizationError
from apps.tracker.domain.models import Role, TicketStatus
from apps.tracker.policy.authorization import STAFF_ROLES, AuthorizationPolicy

policy = AuthorizationPolicy()


@pytest.mark.parametrize("role", sorted(STAFF_ROLES, key=lambda item: item.value))
def test_staff_may_do_everything_on_any_ticket(role):
    assert policy.can_view_ticket(role, is_owner=False)
    assert policy.can_comment(role, is_owner=False)
    assert policy.can_mutate_field(role, False, "assigned_to")
    for status in TicketStatus:
        assert policy.can_set_status(role, False, status)


def test_client_is_limited_to_owned_tickets():
    assert policy.can_view_ticket(Role.CLIENT, is_owner=True)
    assert not policy.can_view_ticket(Role.CLIENT, is_owner=False)
    assert not policy.can_comment(Role.CLIENT, is_owner=False)
    assert not policy.can_attach(Role.CLIENT, is_owner=False)
    assert not policy.can_mutate_field(Role.CLIENT, False, "title")


def test_client_field_rules():
    for field in ("title", "description", "category", "priority", "tags", "status"):
        assert policy.can_mutate_field(Role.CLIENT, True, field)
    assert not policy.can_mutate_field(Role.CLIENT, True, "assigned_to")


@pytest.mark.parametrize(
    ("status", "allowed"),
    [
        (TicketStatus.CLOSED, True),
        (TicketStatus.REOPENED, True),
        (TicketStatus.IN_PROGRESS, False),
        (TicketStatus.RESOLVED, False),
        (TicketStatus.NEW, False),
    ],
)
def test_client_status_rules(status, allowed):
    assert policy.can_set_status(Role.CLIENT, True, status) is allowed


def test_delete_and_category_management_are_admin_only():
    assert policy.can_delete_ticket(Role.ADMIN)
    assert policy.can_manage_categories(Role.ADMIN)
    for role in Role:
        if role is Role.ADMIN:
            continue
        assert not policy.can_delete_ticket(role)
        assert not policy.can_manage_categories(role)


def test_ensure_helpers_raise_with_context():
    with pytest.raises(AuthorizationError) as exc:
        policy.ensure_can_set_status(Role.CLIENT, True, TicketStatus.IN_PROGRESS)
    assert exc.value.action == "change_status"
    assert exc.value.field == "status"

    with pytest.raises(AuthorizationError) as exc:
        policy.ensure_can_mutate_fields(Role.CLIENT, True, ["title", "assigned_to"])
    assert exc.value.field == "assigned_to"

    with pytest.raises(AuthorizationError):
        policy.ensure_can_view(Role.CLIENT, False)
    with pytest.raises(AuthorizationError):
        policy.ensure_can_delete(Role.SUPPORT)
    with pytest.raises(AuthorizationError):
        policy.ensure_can_manage_categories(Role.MANAGER)


def test_ensure_helpers_pass_silently_when_allowed():
    policy.ensure_can_view(Role.CLIENT, True)
    policy.ensure_can_comment(Role.DEVELOPER, False)
    policy.ensure_can_attach(Role.CLIENT, True)
    policy.ensure_can_mutate_fields(Role.QA, False, ["assigned_to", "status"])
    policy.ensure_can_set_status(Role.CLIENT, True, TicketStatus.CLOSED)
    policy.ensure_can_delete(Role.ADMIN)
