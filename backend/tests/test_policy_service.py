import threading
import pytest
import policy_engine
from policy_engine import get_db
from policy_engine.constants.permissions import ALL_PERMISSIONS
from policy_engine.errors import InvalidPermission, PolicyTimeout, UnknownRole, UnknownUser
from policy_engine.models.audit import AuditLog
from policy_engine.models.authz import RolePolicy
from policy_engine.services.catalog import PermissionCatalog
from policy_engine.services.policy import PolicyService
from policy_engine.services.resolver import OverrideState, Source
from tests.test_utils_seed import ensure_user

SCENARIO_CATALOG = PermissionCatalog(['dashboard_view', 'pos_access', 'inventory_manage'])


@pytest.fixture()
def scenario(app_instance):
    """Catalog {dashboard_view, pos_access, inventory_manage}; sales_rep = {dashboard_view, pos_access}; U1 is a sales_rep."""
    svc = PolicyService(catalog=SCENARIO_CATALOG, lock_timeout=1.0)
    svc.set_role_policy('sales_rep', ['dashboard_view', 'pos_access'])
    svc.register_user('U1', 'U1', 'u1@example.com', 'sales_rep')
    return svc


def _audit_count():
    return get_db().query(AuditLog).count()


# --- Scenarios ---

def test_scenario_a_inherits_role_defaults(scenario):
    denied = scenario.resolve('U1', 'inventory_manage')
    assert denied.allowed is False and denied.source is Source.DEFAULT_DENY
    allowed = scenario.resolve('U1', 'pos_access')
    assert allowed.allowed is True and allowed.source is Source.DEFAULT_ALLOW


def test_scenario_b_override_takes_precedence(scenario):
    stored = scenario.set_user_override('U1', 'inventory_manage', True)
    assert stored is OverrideState.ALLOW
    decision = scenario.resolve('U1', 'inventory_manage')
    assert decision.allowed is True and decision.source is Source.OVERRIDE
    assert scenario.get_user_overrides('U1') == {'inventory_manage': True}


def test_scenario_c_role_change_sweeps_redundant_override(scenario):
    scenario.set_user_override('U1', 'inventory_manage', True)
    result = scenario.set_role_policy('sales_rep', ['dashboard_view', 'pos_access', 'inventory_manage'])
    assert result['pruned_overrides'] == 1
    assert scenario.get_user_overrides('U1') == {}
    decision = scenario.resolve('U1', 'inventory_manage')
    assert decision.allowed is True and decision.source is Source.DEFAULT_ALLOW


def test_scenario_d_unknown_role_leaves_policy_unchanged(scenario):
    session = get_db()
    before = scenario.role_policies.snapshot_all(session)
    audits = _audit_count()
    with pytest.raises(UnknownRole) as exc:
        scenario.set_role_policy('unknown_role', ['pos_access'])
    assert exc.value.kind == 'unknown_role'
    assert scenario.role_policies.snapshot_all(session) == before
    assert _audit_count() == audits


# --- Properties against the full catalog ---

def test_inheritance_for_every_role_and_permission(service):
    for role in service.list_roles():
        user = ensure_user(service, f'user-{role}', role)
        defaults = set(service.get_role_policy(role))
        for perm in ALL_PERMISSIONS:
            assert service.is_allowed(user.id, perm) == (perm in defaults), (role, perm)


def test_effective_permissions_complete_and_ordered(service):
    ensure_user(service, 'tech-1', 'technician')
    service.set_user_override('tech-1', 'pos_access', True)
    decisions = service.get_effective_permissions('tech-1')
    assert len(decisions) == len(ALL_PERMISSIONS)
    assert [d.permission for d in decisions] == list(ALL_PERMISSIONS)
    assert 'pos_access' in service.allowed_permissions('tech-1')


def test_override_equal_to_default_is_not_stored(service):
    ensure_user(service, 'tech-1', 'technician')
    assert service.set_user_override('tech-1', 'repairs_manage', True) is OverrideState.INHERIT
    assert service.set_user_override('tech-1', 'banking_manage', False) is OverrideState.INHERIT
    assert service.get_user_overrides('tech-1') == {}
    assert service.set_user_override('tech-1', 'repairs_manage', False) is OverrideState.DENY
    assert service.get_user_overrides('tech-1') == {'repairs_manage': False}
    # flipping back to the default removes the stored entry
    service.set_user_override('tech-1', 'repairs_manage', True)
    assert service.get_user_overrides('tech-1') == {}


def test_sweep_keeps_overrides_that_still_differ(service):
    ensure_user(service, 'rep-1', 'sales_rep')
    ensure_user(service, 'rep-2', 'sales_rep')
    ensure_user(service, 'tech-1', 'technician')
    service.set_user_override('rep-1', 'inventory_manage', True)
    service.set_user_override('rep-2', 'pos_access', False)
    service.set_user_override('rep-2', 'banking_view', True)
    service.set_user_override('tech-1', 'inventory_manage', True)

    new_set = set(service.get_role_policy('sales_rep')) | {'inventory_manage'}
    result = service.set_role_policy('sales_rep', new_set)

    assert result['pruned_overrides'] == 1
    assert service.get_user_overrides('rep-1') == {}
    assert service.get_user_overrides('rep-2') == {'pos_access': False, 'banking_view': True}
    # other roles are not swept
    assert service.get_user_overrides('tech-1') == {'inventory_manage': True}

    # removing pos_access makes rep-2's deny redundant
    service.set_role_policy('sales_rep', new_set - {'pos_access'})
    assert service.get_user_overrides('rep-2') == {'banking_view': True}


def test_set_role_policy_is_idempotent(service):
    ensure_user(service, 'rep-1', 'sales_rep')
    service.set_user_override('rep-1', 'repairs_view', True)
    target = ['dashboard_view', 'repairs_view']
    first = service.set_role_policy('sales_rep', target)
    state = (service.get_role_policy('sales_rep'), service.get_user_overrides('rep-1'))
    second = service.set_role_policy('sales_rep', target)
    assert (service.get_role_policy('sales_rep'), service.get_user_overrides('rep-1')) == state
    assert first['pruned_overrides'] == 1 and second['pruned_overrides'] == 0
    assert state == (['dashboard_view', 'repairs_view'], {})


def test_set_override_is_idempotent(service):
    ensure_user(service, 'rep-1', 'sales_rep')
    service.set_user_override('rep-1', 'inventory_manage', True)
    service.set_user_override('rep-1', 'inventory_manage', True)
    assert service.get_user_overrides('rep-1') == {'inventory_manage': True}


def test_toggle_role_permission_is_idempotent(service):
    service.toggle_role_permission('customer', 'pos_access', True)
    service.toggle_role_permission('customer', 'pos_access', True)
    assert service.get_role_policy('customer').count('pos_access') == 1
    service.toggle_role_permission('customer', 'pos_access', False)
    service.toggle_role_permission('customer', 'pos_access', False)
    assert 'pos_access' not in service.get_role_policy('customer')


def test_toggle_runs_the_sweep(service):
    ensure_user(service, 'cust-1', 'customer')
    service.set_user_override('cust-1', 'pos_access', True)
    result = service.toggle_role_permission('customer', 'pos_access', True)
    assert result['pruned_overrides'] == 1
    assert service.get_user_overrides('cust-1') == {}


def test_clear_and_null_both_return_to_inheriting(service):
    ensure_user(service, 'rep-1', 'sales_rep')
    service.set_user_override('rep-1', 'inventory_manage', True)
    assert service.clear_user_override('rep-1', 'inventory_manage') is True
    assert service.clear_user_override('rep-1', 'inventory_manage') is False
    service.set_user_override('rep-1', 'inventory_manage', True)
    assert service.set_user_override('rep-1', 'inventory_manage', None) is OverrideState.INHERIT
    assert service.get_user_overrides('rep-1') == {}


def test_empty_role_policy_is_valid(service):
    ensure_user(service, 'cust-1', 'customer')
    service.set_role_policy('customer', [])
    assert service.get_role_policy('customer') == []
    assert service.allowed_permissions('cust-1') == []


def test_missing_role_entry_is_an_error_not_a_fallback(service):
    ensure_user(service, 'res-1', 'reseller')
    session = get_db()
    session.delete(session.get(RolePolicy, 'reseller'))
    session.commit()
    with pytest.raises(UnknownRole):
        service.get_role_policy('reseller')
    with pytest.raises(UnknownRole):
        service.resolve('res-1', 'dashboard_view')


def test_unknown_identifiers_rejected_without_writes(service):
    ensure_user(service, 'rep-1', 'sales_rep')
    audits = _audit_count()
    with pytest.raises(UnknownUser):
        service.set_user_override('ghost', 'pos_access', True)
    with pytest.raises(UnknownUser):
        service.get_effective_permissions('ghost')
    with pytest.raises(UnknownUser):
        service.get_user_overrides('ghost')
    with pytest.raises(InvalidPermission):
        service.set_user_override('rep-1', 'pos_refund', True)
    with pytest.raises(InvalidPermission):
        service.resolve('rep-1', 'pos_refund')
    with pytest.raises(TypeError):
        service.set_user_override('rep-1', 'pos_access', 'yes')
    assert service.get_user_overrides('rep-1') == {}
    assert _audit_count() == audits


def test_invalid_permission_leaves_role_policy_unchanged(service):
    before = service.get_role_policy('technician')
    with pytest.raises(InvalidPermission):
        service.set_role_policy('technician', ['repairs_view', 'repairs_delete'])
    assert service.get_role_policy('technician') == before


def test_sweep_failure_rolls_back_policy_change(service, monkeypatch):
    ensure_user(service, 'rep-1', 'sales_rep')
    service.set_user_override('rep-1', 'inventory_manage', True)
    before = service.get_role_policy('sales_rep')
    version = service.version

    def boom(*a, **kw):
        raise RuntimeError('storage failure mid-sweep')
    monkeypatch.setattr(service.overrides, '_prune', boom)

    with pytest.raises(RuntimeError):
        service.set_role_policy('sales_rep', before + ['inventory_manage'])
    monkeypatch.undo()
    assert service.get_role_policy('sales_rep') == before
    assert service.get_user_overrides('rep-1') == {'inventory_manage': True}
    assert service.version == version + 2
    assert service.version % 2 == 0


def test_writer_lock_timeout(service):
    ensure_user(service, 'rep-1', 'sales_rep')
    assert service._lock.acquire()
    try:
        with pytest.raises(PolicyTimeout):
            service.set_user_override('rep-1', 'inventory_manage', True, timeout=0.01)
    finally:
        service._lock.release()
    assert service.get_user_overrides('rep-1') == {}


def test_role_reassignment_recanonicalizes_overrides(service):
    ensure_user(service, 'rep-1', 'sales_rep')
    service.set_user_override('rep-1', 'repairs_view', True)
    service.set_user_override('rep-1', 'banking_manage', True)
    result = service.set_user_role('rep-1', 'technician')
    assert result == {'user_id': 'rep-1', 'role': 'technician', 'pruned_overrides': 1}
    assert service.get_user_overrides('rep-1') == {'banking_manage': True}
    assert service.resolve('rep-1', 'repairs_manage').source is Source.DEFAULT_ALLOW

    with pytest.raises(UnknownRole):
        service.set_user_role('rep-1', 'janitor')
    assert service.get_user('rep-1').role == 'technician'


def test_replace_overrides_stores_canonical_map(service):
    ensure_user(service, 'rep-1', 'sales_rep')
    service.set_user_override('rep-1', 'banking_view', True)
    stored = service.replace_user_overrides('rep-1', {
        'inventory_manage': True,
        'pos_access': True,       # equals default, dropped
        'messages_manage': False,
        'repairs_view': None,     # inherit
    })
    assert stored == {'inventory_manage': True, 'messages_manage': False}
    assert service.get_user_overrides('rep-1') == stored

    with pytest.raises(InvalidPermission):
        service.replace_user_overrides('rep-1', {'repairs_view': True, 'bogus': True})
    assert service.get_user_overrides('rep-1') == stored


def test_register_user_requires_known_role(service):
    with pytest.raises(UnknownRole):
        service.register_user('x-1', 'X', 'x@example.com', 'superuser')


def test_mutations_write_audit_entries(service):
    ensure_user(service, 'rep-1', 'sales_rep')
    service.set_user_override('rep-1', 'inventory_manage', True)
    service.set_role_policy('sales_rep', service.get_role_policy('sales_rep') + ['inventory_manage'], actor='admin-1')
    entry = get_db().query(AuditLog).filter(AuditLog.action == 'ROLE.POLICY.SET').order_by(AuditLog.id.desc()).first()
    assert entry is not None
    assert entry.actor_user_id == 'admin-1'
    assert entry.entity_id == 'sales_rep'
    assert entry.meta['pruned_overrides'] == 1
    actions = {a for (a,) in get_db().query(AuditLog.action)}
    assert {'USER.REGISTER', 'USER.OVERRIDE.SET', 'ROLE.POLICY.SET'} <= actions


def test_seed_role_policies_does_not_overwrite(service):
    service.set_role_policy('customer', ['dashboard_view'])
    assert service.seed_role_policies() == 0
    assert service.get_role_policy('customer') == ['dashboard_view']


# --- Concurrency ---

def _spawn(fn, errors):
    def run():
        try:
            fn()
        except Exception as exc:
            errors.append(exc)
        finally:
            policy_engine.SessionLocal.remove()
    t = threading.Thread(target=run, daemon=True)
    t.start()
    return t


def _assert_canonical(snap):
    for perm, allowed in snap.overrides.items():
        assert allowed != (perm in snap.defaults), (perm, dict(snap.overrides))


def _pause_sweep(service, monkeypatch, fail=False):
    in_sweep, resume = threading.Event(), threading.Event()
    original = service.overrides._prune

    def paused(*a, **kw):
        in_sweep.set()
        assert resume.wait(5)
        if fail:
            raise RuntimeError('storage failure mid-sweep')
        return original(*a, **kw)
    monkeypatch.setattr(service.overrides, '_prune', paused)
    return in_sweep, resume


@pytest.mark.parametrize('fail', [False, True])
def test_reader_never_sees_half_applied_role_change(service, monkeypatch, fail):
    ensure_user(service, 'rep-1', 'sales_rep')
    service.set_user_override('rep-1', 'inventory_manage', True)
    before = service.get_role_policy('sales_rep')
    in_sweep, resume = _pause_sweep(service, monkeypatch, fail=fail)

    errors, seen = [], []
    writer = _spawn(lambda: service.set_role_policy('sales_rep', before + ['inventory_manage']), errors)
    assert in_sweep.wait(5)
    assert service.version % 2 == 1

    reader = _spawn(lambda: seen.append(service.snapshot('rep-1')), errors)
    reader.join(0.2)
    assert reader.is_alive()  # held off until the write settles

    resume.set()
    writer.join(5)
    reader.join(5)
    assert service.version % 2 == 0

    snap = seen[0]
    _assert_canonical(snap)
    if fail:
        assert [type(e) for e in errors] == [RuntimeError]
        assert 'inventory_manage' not in snap.defaults
        assert dict(snap.overrides) == {'inventory_manage': True}
    else:
        assert errors == []
        assert 'inventory_manage' in snap.defaults
        assert dict(snap.overrides) == {}


def test_concurrent_writers_serialize_and_readers_stay_canonical(service):
    ensure_user(service, 'rep-1', 'sales_rep')
    granted = ['inventory_manage', 'repairs_view', 'banking_view', 'reports_view']
    revoked = ['messages_manage', 'work_items_view']
    for perm in granted:
        service.set_user_override('rep-1', perm, True)
    start_version = service.version
    audits = _audit_count()

    errors, snapshots = [], []
    done = threading.Event()

    def read_loop():
        while not done.is_set():
            snapshots.append(service.snapshot('rep-1'))
    reader = _spawn(read_loop, errors)

    barrier = threading.Barrier(len(granted) + len(revoked))

    def toggle(perm):
        barrier.wait(5)
        service.toggle_role_permission('sales_rep', perm, True)

    def deny(perm):
        barrier.wait(5)
        service.set_user_override('rep-1', perm, False)

    writers = [_spawn(lambda p=p: toggle(p), errors) for p in granted]
    writers += [_spawn(lambda p=p: deny(p), errors) for p in revoked]
    for t in writers:
        t.join(10)
    done.set()
    reader.join(5)

    assert errors == []
    assert snapshots
    for snap in snapshots:
        _assert_canonical(snap)

    # no lost updates: every toggle landed and swept the matching override
    policy = service.get_role_policy('sales_rep')
    assert set(granted) <= set(policy)
    assert service.get_user_overrides('rep-1') == {'messages_manage': False, 'work_items_view': False}
    assert service.version == start_version + 2 * len(writers)
    assert _audit_count() == audits + len(writers)
