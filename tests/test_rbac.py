import pytest

from mentalspace.rbac import ROLES, allowed_actions, has_permission


@pytest.mark.parametrize(
    'role,resource,action,expected',
    [
        ('admin', 'client', 'delete', True),
        ('admin', 'audit', 'read', True),
        ('admin', 'audit', 'delete', False),
        ('clinician', 'note', 'create', True),
        ('clinician', 'note', 'delete', False),
        ('clinician', 'audit', 'read', False),
        ('supervisor', 'note', 'approve', True),
        ('scheduler', 'appointment', 'delete', True),
        ('scheduler', 'billing', 'read', False),
        ('biller', 'billing', 'delete', True),
        ('biller', 'client', 'create', False),
    ],
)
def test_permission_matrix(role, resource, action, expected):
    assert has_permission(role, resource, action) is expected


def test_roles():
    assert ROLES == {'admin', 'clinician', 'supervisor', 'scheduler', 'biller'}
    assert allowed_actions('clinician', 'client') == {'read', 'create', 'update'}
    assert allowed_actions(None, 'client') == frozenset()


def test_unknown_role_is_denied_and_audited(audit, transport):
    assert has_permission('intern', 'note', 'read', audit=audit, user_id='7') is False
    payload = transport.sent[-1]
    assert payload['action'] == 'UNAUTHORIZED_ACCESS'
    assert payload['severity'] == 'warning'
    assert payload['userId'] == '7'


def test_unknown_resource_is_denied_and_audited(audit, transport):
    assert has_permission('admin', 'payroll', 'read', audit=audit) is False
    assert transport.actions() == ['UNAUTHORIZED_ACCESS']


def test_sensitive_resources_audit_every_decision(audit, transport):
    assert has_permission('clinician', 'note', 'read', audit=audit)
    assert not has_permission('clinician', 'billing', 'delete', audit=audit)
    assert transport.actions() == ['ACCESS_GRANTED', 'ACCESS_DENIED']
    assert transport.sent[1]['severity'] == 'warning'


def test_non_sensitive_resources_are_not_audited(audit, transport):
    assert has_permission('clinician', 'dashboard', 'read', audit=audit)
    assert transport.sent == []
