import logging
import threading

import pytest

from cep_deployer.core.auth import ANONYMOUS
from cep_deployer.models import DefinitionKind, DispatchOutbox
from cep_deployer.services.definitions import DefinitionService, KeyedLocks, build_services
from cep_deployer.services.store import DefinitionStore


def _create(service, name="r1", content="X"):
    result = service.create(name, content)
    assert result.ok, result
    return result.definition


def _active(service, name="r1", content="X"):
    created = _create(service, name, content)
    assert service.deploy(created.id).ok
    return service.get_by_id(created.id).definition


def test_create_starts_as_draft_without_messages(service, dispatcher):
    created = _create(service)
    assert created.ready_to_deploy is False
    assert created.deployed is False
    assert dispatcher.sent == []


def test_create_duplicate_name(service):
    _create(service, "dup")
    result = service.create("dup", "Y")
    assert not result.ok
    assert result.error == "name_conflict"
    assert len(service.find_by_name("dup")) == 1


@pytest.mark.parametrize("name, content", [("", "X"), ("r1", ""), ("r1", "x" * 3000)])
def test_create_rejects_invalid_fields(service, name, content):
    result = service.create(name, content)
    assert not result.ok
    assert result.error == "invalid_definition"
    assert service.list_all() == []


def test_get_missing(service):
    result = service.get_by_id(99)
    assert not result.ok
    assert result.error == "not_found"


@pytest.mark.parametrize("op", ["stage", "unstage", "deploy", "undeploy", "delete"])
def test_operations_on_missing_definition(service, dispatcher, op):
    result = getattr(service, op)(99)
    assert not result.ok
    assert result.error == "not_found"
    assert dispatcher.sent == []


def test_update_missing_definition(service):
    result = service.update(99, name="a", content="b")
    assert result.error == "not_found"


def test_stage_and_unstage_send_nothing(service, dispatcher):
    created = _create(service)
    staged = service.stage(created.id)
    assert staged.ok
    assert staged.definition.ready_to_deploy is True
    unstaged = service.unstage(created.id)
    assert unstaged.ok
    assert unstaged.definition.ready_to_deploy is False
    assert dispatcher.sent == []


def test_deploy_sends_content_once(service, dispatcher):
    created = _create(service, content="rule-body")
    result = service.deploy(created.id)
    assert result.ok
    assert result.definition.deployed is True
    assert result.definition.ready_to_deploy is False
    assert dispatcher.sent == [("deploy", "rule-body")]


def test_undeploy_sends_name_once(service, dispatcher):
    active = _active(service, name="rule-a")
    dispatcher.sent.clear()
    result = service.undeploy(active.id)
    assert result.ok
    assert result.definition.deployed is False
    assert dispatcher.sent == [("undeploy", "rule-a")]


def test_stage_active_flips_ready_flag_without_messages(service, dispatcher):
    active = _active(service)
    dispatcher.sent.clear()
    result = service.stage(active.id)
    assert result.ok
    assert result.definition.ready_to_deploy is True
    assert result.definition.deployed is True
    assert dispatcher.sent == []

    stored = service.get_by_id(active.id).definition
    assert (stored.ready_to_deploy, stored.deployed) == (True, True)
    assert service.update(active.id, name="B", content="Y").error == "illegal_transition"
    assert service.delete(active.id).error == "illegal_transition"
    assert dispatcher.sent == []


def test_edit_draft_changes_fields_only(service, dispatcher):
    created = _create(service, "A", "X")
    result = service.update(created.id, name="B", content="Y")
    assert result.ok
    assert (result.definition.name, result.definition.content) == ("B", "Y")
    assert result.definition.deployed is False
    assert dispatcher.sent == []


def test_edit_staged_is_rejected_and_unchanged(service, dispatcher):
    created = _create(service, "A", "X")
    service.stage(created.id)
    before = service.get_by_id(created.id).definition
    result = service.update(created.id, name="B", content="Y")
    assert not result.ok
    assert result.error == "illegal_transition"
    assert service.get_by_id(created.id).definition == before
    assert dispatcher.sent == []


def test_edit_active_redeploys_under_new_content(service, dispatcher):
    active = _active(service, "A", "X")
    dispatcher.sent.clear()
    result = service.update(active.id, name="B", content="Y")
    assert result.ok
    assert result.definition.deployed is True
    assert dispatcher.sent == [("undeploy", "A"), ("deploy", "Y")]


def test_edit_to_taken_name_conflicts(service, dispatcher):
    _create(service, "taken")
    active = _active(service, "mine")
    dispatcher.sent.clear()
    result = service.update(active.id, name="taken", content="Y")
    assert not result.ok
    assert result.error == "name_conflict"
    assert dispatcher.sent == []


def test_edit_with_empty_content_is_invalid(service):
    created = _create(service)
    result = service.update(created.id, name="r1", content="")
    assert result.error == "invalid_definition"


def test_delete_draft(service, dispatcher):
    created = _create(service)
    result = service.delete(created.id)
    assert result.ok
    assert service.get_by_id(created.id).error == "not_found"
    assert dispatcher.sent == []


@pytest.mark.parametrize("setup", ["stage", "deploy"])
def test_delete_requires_draft(service, setup):
    created = _create(service)
    getattr(service, setup)(created.id)
    before = service.get_by_id(created.id).definition
    result = service.delete(created.id)
    assert not result.ok
    assert result.error == "illegal_transition"
    assert service.get_by_id(created.id).definition == before


def test_staged_definition_can_be_deleted_after_unstage(service, dispatcher):
    created = _create(service, "r1", "rule body")
    assert service.stage(created.id).ok
    staged = service.get_by_id(created.id).definition

    rejected = service.delete(created.id)
    assert rejected.error == "illegal_transition"
    assert service.get_by_id(created.id).definition == staged

    assert service.unstage(created.id).ok
    assert service.delete(created.id).ok
    assert service.get_by_id(created.id).error == "not_found"
    assert service.find_by_name("r1") == []
    assert dispatcher.sent == []


def test_full_lifecycle(service, dispatcher):
    created = _create(service, "r1", "X")
    rid = created.id
    assert service.stage(rid).ok
    assert service.deploy(rid).ok
    assert service.undeploy(rid).ok
    assert service.delete(rid).ok
    assert dispatcher.sent == [("deploy", "X"), ("undeploy", "r1")]
    assert service.find_by_name("r1") == []


def test_dispatch_failure_keeps_committed_write(store, make_dispatcher, caplog):
    failing = make_dispatcher(fail_on={"deploy"})
    service = DefinitionService(store, failing)
    created = _create(service)

    with caplog.at_level(logging.WARNING, logger="definitions"):
        result = service.deploy(created.id)

    assert not result.ok
    assert result.error == "dispatch_unavailable"
    assert result.definition.deployed is True
    assert store.get(created.id).deployed is True
    assert any("out of sync" in r.getMessage() for r in caplog.records)


def test_edit_active_with_failed_deploy_reports_unavailable(store, make_dispatcher):
    dispatcher = make_dispatcher()
    service = DefinitionService(store, dispatcher)
    active = _active(service, "A", "X")
    dispatcher.sent.clear()
    dispatcher.fail_on.add("deploy")

    result = service.update(active.id, name="B", content="Y")

    assert result.error == "dispatch_unavailable"
    assert dispatcher.sent == [("undeploy", "A")]
    assert store.get(active.id).name == "B"


def test_outbox_mode_records_messages_instead_of_sending(session_factory, store, dispatcher):
    service = DefinitionService(store, dispatcher, dispatch_mode="outbox")
    active = _active(service, "A", "X")
    assert service.update(active.id, name="B", content="Y").ok

    assert dispatcher.sent == []
    with session_factory() as db:
        rows = db.query(DispatchOutbox).order_by(DispatchOutbox.id.asc()).all()
    assert [(r.queue, r.body) for r in rows] == [("deploy", "X"), ("undeploy", "A"), ("deploy", "Y")]
    assert all(r.status == "PENDING" for r in rows)


def test_unknown_dispatch_mode(store, dispatcher):
    with pytest.raises(ValueError):
        DefinitionService(store, dispatcher, dispatch_mode="sometimes")


def test_audit_log_names_principal(service, caplog):
    created = _create(service)
    with caplog.at_level(logging.INFO, logger="definitions"):
        service.stage(created.id, principal="alice")
    messages = [r.getMessage() for r in caplog.records]
    assert f"Event type with id: {created.id} has been set as ready to deploy by alice" in messages


def test_default_principal_is_anonymous(service, caplog):
    with caplog.at_level(logging.INFO, logger="definitions"):
        _create(service)
    assert any(ANONYMOUS in r.getMessage() for r in caplog.records)


def test_build_services_covers_both_kinds(session_factory, dispatcher):
    services = build_services(session_factory, dispatcher)
    assert set(services) == set(DefinitionKind)
    assert services[DefinitionKind.EVENT_TYPE]._locks is services[DefinitionKind.EVENT_PATTERN]._locks
    types = services[DefinitionKind.EVENT_TYPE]
    patterns = services[DefinitionKind.EVENT_PATTERN]
    a = _create(types, "same")
    b = _create(patterns, "same")
    assert a.id != b.id
    assert types.get_by_id(b.id).error == "not_found"
    assert patterns.find_by_name("same")[0].kind is DefinitionKind.EVENT_PATTERN


def test_concurrent_mutations_of_one_definition_serialize(session_factory, dispatcher):
    store = DefinitionStore(session_factory, DefinitionKind.EVENT_TYPE)
    service = DefinitionService(store, dispatcher)
    created = _create(service)
    results = []

    def _deploy():
        results.append(service.deploy(created.id))

    threads = [threading.Thread(target=_deploy) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert all(r.ok for r in results)
    assert dispatcher.sent == [("deploy", "X")] * 4
    assert store.get(created.id).deployed is True
    assert len(service._locks) == 0


def test_keyed_locks_release_unused_keys():
    locks = KeyedLocks()
    with locks.hold("a"):
        assert len(locks) == 1
        with locks.hold("b"):
            assert len(locks) == 2
    assert len(locks) == 0
