import asyncio

import pytest

from agent_gateway.models import ProviderKind, SessionStatus
from agent_gateway.services.session_registry import SessionConflictError, SessionRegistry

from conftest import FakeHandle


def test_add_get_and_idempotent_remove():
    reg = SessionRegistry()
    handle = FakeHandle()
    entry = reg.add("s1", ProviderKind.PROCESS, handle)

    assert reg.get("s1") is entry
    assert entry.handle is handle
    assert reg.is_active("s1")
    assert [e.id for e in reg.list_active()] == ["s1"]

    assert reg.remove("s1") is entry
    assert reg.remove("s1") is None
    assert reg.remove("never-added") is None
    assert len(reg) == 0


def test_add_conflict_on_active_id():
    reg = SessionRegistry()
    reg.add("s1", ProviderKind.SDK, FakeHandle())
    with pytest.raises(SessionConflictError):
        reg.add("s1", ProviderKind.SDK, FakeHandle())


def test_remove_with_expected_entry_keeps_newer_run():
    reg = SessionRegistry()
    old = reg.add("s1", ProviderKind.SDK, FakeHandle())
    reg.remove("s1")
    newer = reg.add("s1", ProviderKind.SDK, FakeHandle())

    assert reg.remove("s1", expected=old) is None
    assert reg.get("s1") is newer


def test_provisional_ids_do_not_collide():
    reg = SessionRegistry()
    first = reg.provisional_id()
    reg.add(first, ProviderKind.PROCESS, FakeHandle())
    second = reg.provisional_id()
    assert second != first
    assert second not in reg


def test_rekey_preserves_handle_and_aux(tmp_path):
    reg = SessionRegistry()
    aux = tmp_path / "img.png"
    aux.write_bytes(b"x")
    handle = FakeHandle()
    entry = reg.add("1700000000000", ProviderKind.PROCESS, handle, [aux])

    moved = reg.rekey("1700000000000", "engine-id")

    assert moved is entry
    assert entry.id == "engine-id"
    assert reg.get("engine-id").handle is handle
    assert reg.get("engine-id").aux_resources == [aux]
    assert reg.get("1700000000000") is None


def test_rekey_unknown_or_taken_key():
    reg = SessionRegistry()
    reg.add("a", ProviderKind.SDK, FakeHandle())
    reg.add("b", ProviderKind.SDK, FakeHandle())
    with pytest.raises(KeyError):
        reg.rekey("missing", "c")
    with pytest.raises(SessionConflictError):
        reg.rekey("a", "b")
    assert "a" in reg and "b" in reg


def test_abort_by_provisional_id_before_rekey():
    async def _run():
        reg = SessionRegistry()
        handle = FakeHandle()
        reg.add("prov", ProviderKind.PROCESS, handle)
        assert await reg.abort("prov") is True
        assert handle.terminated
        assert "prov" not in reg

    asyncio.run(_run())


def test_abort_only_by_confirmed_id_after_rekey():
    async def _run():
        reg = SessionRegistry()
        handle = FakeHandle()
        entry = reg.add("prov", ProviderKind.PROCESS, handle)
        reg.rekey("prov", "confirmed")

        assert await reg.abort("prov") is False
        assert not handle.terminated
        assert await reg.abort("confirmed") is True
        assert handle.terminated
        assert entry.status == SessionStatus.ABORTED

    asyncio.run(_run())


def test_abort_unknown_id_is_not_found():
    assert asyncio.run(SessionRegistry().abort("nope")) is False


def test_abort_twice_is_a_no_op():
    async def _run():
        reg = SessionRegistry()
        reg.add("s1", ProviderKind.SDK, FakeHandle())
        assert await reg.abort("s1") is True
        assert await reg.abort("s1") is False

    asyncio.run(_run())


def test_abort_removes_entry_and_releases_aux_when_termination_fails(tmp_path):
    async def _run():
        reg = SessionRegistry()
        folder = tmp_path / "images"
        folder.mkdir()
        image = folder / "image_0.png"
        image.write_bytes(b"png")
        reg.add("s1", ProviderKind.SDK, FakeHandle(fail=True), [image, folder])

        assert await reg.abort("s1") is True
        assert "s1" not in reg
        assert not image.exists()
        assert not folder.exists()

    asyncio.run(_run())


def test_to_dict_uses_wire_names():
    reg = SessionRegistry()
    entry = reg.add("s1", ProviderKind.SDK, FakeHandle())
    data = entry.to_dict()
    assert data["sessionId"] == "s1"
    assert data["provider"] == "sdk"
    assert data["status"] == "active"
    assert isinstance(data["startedAt"], float)
