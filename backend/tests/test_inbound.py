import asyncio

import pytest

from fakes import FAST, FakeServer, make_note, settle
from notesync.client.connection import ConnectionManager
from notesync.client.inbound import InboundUpdateDispatcher
from notesync.client.state import NotesState
from notesync.models.notes import NotesList


class FakeEditor:
    def __init__(self, on_change=None):
        self.contents = []
        self.titles = []
        self.on_change = on_change

    def set_content(self, serialized):
        self.contents.append(serialized)
        # real editors fire their change callback when content is loaded
        if self.on_change is not None:
            self.on_change(serialized)

    def set_title(self, title):
        self.titles.append(title)


async def _setup(user_id="me"):
    server = FakeServer()
    conn = ConnectionManager("ws://test/ws", server.factory, FAST)
    state = NotesState()
    state.replace_lists(NotesList(own=[make_note("n1"), make_note("n2")]))
    inbound = InboundUpdateDispatcher(conn, user_id, state=state, grace=FAST.remote_apply_grace)
    await conn.connect("token")
    return server, conn, state, inbound


@pytest.mark.asyncio
async def test_remote_update_reaches_surface_and_state():
    server, conn, state, inbound = await _setup()
    editor = FakeEditor()
    inbound.bind("n1", editor)

    server.current.push("note-updated", {"noteId": "n1", "userId": "other", "content": "<p>remote</p>"})
    await settle()

    assert editor.contents == ["<p>remote</p>"]
    assert state.find("n1").content == "<p>remote</p>"
    await conn.dispose()


@pytest.mark.asyncio
async def test_self_echo_is_ignored():
    server, conn, _, inbound = await _setup(user_id="me")
    editor = FakeEditor()
    inbound.bind("n1", editor)

    server.current.push("note-updated", {"noteId": "n1", "userId": "me", "content": "mine"})
    await settle()

    assert editor.contents == []
    await conn.dispose()


@pytest.mark.asyncio
async def test_updates_for_other_notes_are_ignored():
    server, conn, state, inbound = await _setup()
    editor = FakeEditor()
    inbound.bind("n1", editor)

    server.current.push("note-updated", {"noteId": "n2", "userId": "other", "content": "elsewhere"})
    await settle()

    assert editor.contents == []
    assert state.find("n2").content == "c"
    await conn.dispose()


@pytest.mark.asyncio
async def test_burst_is_coalesced_to_latest_per_field():
    server, conn, _, inbound = await _setup()
    editor = FakeEditor()
    inbound.bind("n1", editor)

    for i in range(5):
        server.current.push("note-updated", {"noteId": "n1", "userId": "other", "content": f"v{i}"})
    server.current.push("note-updated", {"noteId": "n1", "userId": "other", "title": "T"})
    await settle(30)

    assert editor.contents == ["v4"]
    assert editor.titles == ["T"]
    await conn.dispose()


@pytest.mark.asyncio
async def test_applying_flag_outlives_the_apply_by_the_grace_period():
    server, conn, _, inbound = await _setup()
    seen_while_applying = []
    editor = FakeEditor(on_change=lambda _: seen_while_applying.append(inbound.applying_remote))
    inbound.bind("n1", editor)

    server.current.push("note-updated", {"noteId": "n1", "userId": "other", "content": "x"})
    await settle()

    assert seen_while_applying == [True]
    assert inbound.applying_remote
    await asyncio.sleep(FAST.remote_apply_grace * 2)
    assert not inbound.applying_remote
    await conn.dispose()


@pytest.mark.asyncio
async def test_rebinding_replaces_the_handler():
    server, conn, _, inbound = await _setup()
    first, second = FakeEditor(), FakeEditor()
    inbound.bind("n1", first)
    inbound.bind("n2", second)

    server.current.push("note-updated", {"noteId": "n1", "userId": "other", "content": "for n1"})
    server.current.push("note-updated", {"noteId": "n2", "userId": "other", "content": "for n2"})
    await settle()

    assert first.contents == []
    assert second.contents == ["for n2"]
    await conn.dispose()


@pytest.mark.asyncio
async def test_unbind_stops_delivery():
    server, conn, _, inbound = await _setup()
    editor = FakeEditor()
    inbound.bind("n1", editor)
    inbound.unbind()

    server.current.push("note-updated", {"noteId": "n1", "userId": "other", "content": "late"})
    await settle()

    assert editor.contents == []
    assert inbound.note_id is None
    await conn.dispose()


@pytest.mark.asyncio
async def test_load_sets_surface_without_counting_as_local_edit():
    _, conn, _, inbound = await _setup()
    editor = FakeEditor()
    inbound.bind("n1", editor)

    inbound.load(make_note("n1", title="Loaded", content="<p>body</p>"))

    assert editor.titles == ["Loaded"]
    assert editor.contents == ["<p>body</p>"]
    assert inbound.applying_remote
    await conn.dispose()
