"""Tests for the sync engine."""

import copy
import json
from pathlib import Path

import httpx
import pytest
import respx

from linkdeck.client import LinkDeckClient
from linkdeck.forms import GroupForm, LinkForm, PasswordForm
from linkdeck.sync.engine import (
    EXPORT_FAILED,
    IMPORT_FAILED,
    IMPORT_SUCCEEDED,
    Completion,
    SyncEngine,
)
from linkdeck.sync.session import MemoryStore, SessionCoordinator

BASE_URL = "http://linkdeck.test"


@pytest.fixture
def api():
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as mock:
        yield mock


@pytest.fixture
def coordinator() -> SessionCoordinator:
    tab = SessionCoordinator(MemoryStore(), "tab")
    tab.login("secret-token", "admin")
    return tab


@pytest.fixture
def engine(coordinator: SessionCoordinator) -> SyncEngine:
    return SyncEngine(LinkDeckClient(BASE_URL, coordinator, retry_delay=0), coordinator)


async def loaded(engine: SyncEngine, api, payload: list[dict]) -> respx.Route:
    route = api.get("/api/admin/link-groups").mock(return_value=httpx.Response(200, json=payload))
    assert await engine.load() is Completion.DONE
    return route


def sent_json(route: respx.Route) -> dict:
    return json.loads(route.calls.last.request.content)


class TestLoad:
    """Tests for wholesale snapshot loading."""

    @pytest.mark.asyncio
    async def test_load(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        await loaded(engine, api, payload)
        assert engine.snapshot.counts() == (3, 4)
        assert not engine.loading
        assert engine.error is None

    @pytest.mark.asyncio
    async def test_public_load(self, coordinator: SessionCoordinator, api, payload: list[dict]) -> None:
        api.get("/api/links").mock(return_value=httpx.Response(200, json=payload))
        engine = SyncEngine(LinkDeckClient(BASE_URL, coordinator), coordinator, admin=False)
        assert await engine.load() is Completion.DONE
        assert engine.snapshot.group(1).name == "Work"

    @pytest.mark.asyncio
    async def test_load_failure_keeps_snapshot(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        route = await loaded(engine, api, payload)
        before = engine.snapshot
        route.mock(return_value=httpx.Response(500))
        assert await engine.load() is Completion.FAILED
        assert engine.error == "Failed to load link groups"
        assert engine.snapshot is before

    @pytest.mark.asyncio
    async def test_load_unauthorized(self, engine: SyncEngine, coordinator: SessionCoordinator, api) -> None:
        api.get("/api/admin/link-groups").mock(return_value=httpx.Response(401))
        assert await engine.load() is Completion.UNAUTHORIZED
        assert coordinator.is_expired
        assert engine.error is None

    @pytest.mark.asyncio
    async def test_listeners_notified(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        seen: list[bool] = []
        engine.subscribe(lambda e: seen.append(e.loading))
        await loaded(engine, api, payload)
        assert seen[0] is True
        assert seen[-1] is False


class TestPessimisticEdits:
    """Creates, updates and deletes persist first, then reload."""

    @pytest.mark.asyncio
    async def test_add_group_reloads(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        listing = await loaded(engine, api, payload)
        create = api.post("/api/admin/link-groups").mock(
            return_value=httpx.Response(200, json={"id": 4, "message": "Link group created successfully"})
        )
        updated = copy.deepcopy(payload) + [{"id": 4, "name": "News", "sort_order": 3, "links": []}]
        listing.mock(return_value=httpx.Response(200, json=updated))

        result = await engine.add_group(GroupForm(name="News", sort_order=3))

        assert result is Completion.DONE
        assert sent_json(create) == {"name": "News", "sort_order": 3}
        assert engine.snapshot.counts() == (4, 4)
        assert engine.snapshot.group(4).position == 3

    @pytest.mark.asyncio
    async def test_add_group_failure_keeps_snapshot(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        listing = await loaded(engine, api, payload)
        api.post("/api/admin/link-groups").mock(return_value=httpx.Response(500))
        before = engine.snapshot

        result = await engine.add_group(GroupForm(name="News"))

        assert result is Completion.FAILED
        assert engine.error == "Failed to add group"
        assert engine.snapshot is before
        assert listing.call_count == 1

    @pytest.mark.asyncio
    async def test_add_link(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        await loaded(engine, api, payload)
        create = api.post("/api/admin/links").mock(
            return_value=httpx.Response(200, json={"id": 20, "message": "Link created successfully"})
        )
        form = LinkForm(name="Docs", url="https://docs.example.com/start", sort_order=0)

        assert await engine.add_link(2, form) is Completion.DONE
        assert sent_json(create)["group_id"] == 2
        assert sent_json(create)["url"] == "https://docs.example.com/start"

    @pytest.mark.asyncio
    async def test_update_link_moves_group(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        await loaded(engine, api, payload)
        update = api.put("/api/admin/links/30").mock(
            return_value=httpx.Response(200, json={"message": "Link updated successfully"})
        )
        form = LinkForm(name="Regex", url="https://regex.example.com/", sort_order=0)

        assert await engine.update_link(30, 2, form) is Completion.DONE
        assert sent_json(update)["group_id"] == 2

    @pytest.mark.asyncio
    async def test_delete_group_removes_links(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        listing = await loaded(engine, api, payload)
        delete = api.delete("/api/admin/link-groups/1").mock(
            return_value=httpx.Response(200, json={"message": "Link group deleted successfully"})
        )
        listing.mock(return_value=httpx.Response(200, json=payload[1:]))

        assert await engine.delete_group(1) is Completion.DONE
        assert delete.called
        assert engine.snapshot.counts() == (2, 1)
        assert [g.position for g in engine.snapshot.groups] == [0, 1]

    @pytest.mark.asyncio
    async def test_delete_cancelled(self, coordinator: SessionCoordinator, api, payload: list[dict]) -> None:
        engine = SyncEngine(LinkDeckClient(BASE_URL, coordinator), coordinator, confirm=lambda q: False)
        await loaded(engine, api, payload)
        delete = api.delete("/api/admin/links/10")

        assert await engine.delete_link(10) is Completion.CANCELLED
        assert not delete.called
        assert engine.snapshot.counts() == (3, 4)

    @pytest.mark.asyncio
    async def test_async_confirm(self, coordinator: SessionCoordinator, api, payload: list[dict]) -> None:
        questions: list[str] = []

        async def confirm(question: str) -> bool:
            questions.append(question)
            return True

        engine = SyncEngine(LinkDeckClient(BASE_URL, coordinator), coordinator, confirm=confirm)
        await loaded(engine, api, payload)
        api.delete("/api/admin/links/10").mock(return_value=httpx.Response(200, json={"message": "ok"}))

        assert await engine.delete_link(10) is Completion.DONE
        assert questions == ["Are you sure you want to delete this link?"]

    @pytest.mark.asyncio
    async def test_unauthorized_edit(
        self, engine: SyncEngine, coordinator: SessionCoordinator, api, payload: list[dict]
    ) -> None:
        await loaded(engine, api, payload)
        api.put("/api/admin/link-groups/2").mock(return_value=httpx.Response(401))

        result = await engine.update_group(2, GroupForm(name="Later", sort_order=1))

        assert result is Completion.UNAUTHORIZED
        assert coordinator.is_expired
        assert coordinator.banner_visible


class TestOptimisticReorder:
    """Reorders update the snapshot first and persist each changed entity."""

    @pytest.mark.asyncio
    async def test_reorder_groups(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        await loaded(engine, api, payload)
        routes = {
            gid: api.put(f"/api/admin/link-groups/{gid}").mock(
                return_value=httpx.Response(200, json={"message": "ok"})
            )
            for gid in (1, 2, 3)
        }

        saved = engine.reorder_groups(0, 2)
        assert [(g.id, g.position) for g in engine.snapshot.groups] == [(2, 0), (3, 1), (1, 2)]
        assert await saved == [True, True, True]

        assert sent_json(routes[1]) == {"name": "Work", "sort_order": 2}
        assert sent_json(routes[2]) == {"name": "Reading", "sort_order": 0}
        assert sent_json(routes[3]) == {"name": "Tools", "sort_order": 1}
        assert engine.pending == 0

    @pytest.mark.asyncio
    async def test_only_changed_positions_persisted(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        await loaded(engine, api, payload)
        first = api.put("/api/admin/link-groups/1")
        others = [
            api.put(f"/api/admin/link-groups/{gid}").mock(return_value=httpx.Response(200, json={}))
            for gid in (2, 3)
        ]

        await engine.reorder_groups(2, 1)

        assert not first.called
        assert all(route.called for route in others)

    @pytest.mark.asyncio
    async def test_colliding_stored_orders_are_rewritten(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        for group in payload:
            group["sort_order"] = 0
        listing = await loaded(engine, api, payload)
        routes = {
            gid: api.put(f"/api/admin/link-groups/{gid}").mock(return_value=httpx.Response(200, json={}))
            for gid in (1, 2, 3)
        }

        assert await engine.reorder_groups(0, 1) == [True, True]

        assert not routes[2].called
        assert sent_json(routes[1])["sort_order"] == 1
        assert sent_json(routes[3])["sort_order"] == 2

        stored = {2: 0, 1: 1, 3: 2}
        reloaded = [dict(group, sort_order=stored[group["id"]]) for group in payload]
        listing.mock(return_value=httpx.Response(200, json=reloaded))
        await engine.load()
        assert [g.name for g in engine.snapshot.groups] == ["Reading", "Work", "Tools"]

    @pytest.mark.asyncio
    async def test_colliding_link_orders_are_rewritten(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        for link in payload[0]["links"]:
            link["sort_order"] = 0
        await loaded(engine, api, payload)
        routes = {
            lid: api.put(f"/api/admin/links/{lid}").mock(return_value=httpx.Response(200, json={}))
            for lid in (10, 11, 12)
        }

        await engine.reorder_links(1, 2, 1)

        assert not routes[10].called
        assert sent_json(routes[12])["sort_order"] == 1
        assert sent_json(routes[11])["sort_order"] == 2

    @pytest.mark.asyncio
    async def test_noop_reorder(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        await loaded(engine, api, payload)
        before = engine.snapshot
        assert await engine.reorder_groups(1, 1) == []
        assert await engine.reorder_groups(0, 7) == []
        assert engine.snapshot is before

    @pytest.mark.asyncio
    async def test_failure_is_not_rolled_back(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        await loaded(engine, api, payload)
        api.put("/api/admin/link-groups/1").mock(return_value=httpx.Response(500))
        api.put("/api/admin/link-groups/2").mock(return_value=httpx.Response(200, json={}))
        api.put("/api/admin/link-groups/3").mock(return_value=httpx.Response(200, json={}))

        saved = await engine.reorder_groups(0, 2)

        assert saved == [True, True, False]
        assert [g.id for g in engine.snapshot.groups] == [2, 3, 1]
        assert engine.error == "Failed to update group order"
        assert engine.unconfirmed == {("group", 1)}

    @pytest.mark.asyncio
    async def test_reload_clears_unconfirmed(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        await loaded(engine, api, payload)
        api.put("/api/admin/link-groups/1").mock(return_value=httpx.Response(500))
        api.put("/api/admin/link-groups/2").mock(return_value=httpx.Response(500))

        await engine.reorder_groups(0, 1)
        assert engine.unconfirmed == {("group", 1), ("group", 2)}

        await engine.load()
        assert engine.unconfirmed == set()
        assert [g.id for g in engine.snapshot.groups] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_reorder_unauthorized(
        self, engine: SyncEngine, coordinator: SessionCoordinator, api, payload: list[dict]
    ) -> None:
        await loaded(engine, api, payload)
        api.put("/api/admin/link-groups/1").mock(return_value=httpx.Response(401))
        api.put("/api/admin/link-groups/2").mock(return_value=httpx.Response(401))

        await engine.reorder_groups(1, 0)

        assert coordinator.is_expired
        assert engine.error is None
        assert [g.id for g in engine.snapshot.groups] == [2, 1, 3]

    @pytest.mark.asyncio
    async def test_reorder_links(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        await loaded(engine, api, payload)
        routes = {
            lid: api.put(f"/api/admin/links/{lid}").mock(return_value=httpx.Response(200, json={}))
            for lid in (10, 11, 12)
        }

        await engine.reorder_links(1, 2, 0)

        links = engine.snapshot.group(1).links
        assert [(link.id, link.position) for link in links] == [(12, 0), (10, 1), (11, 2)]
        assert sent_json(routes[12]) == {
            "group_id": 1,
            "name": "CI",
            "url": "https://ci.example.com",
            "sort_order": 0,
        }
        engine.snapshot.validate()

    @pytest.mark.asyncio
    async def test_reorder_links_unknown_group(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        await loaded(engine, api, payload)
        assert await engine.reorder_links(99, 0, 1) == []

    @pytest.mark.asyncio
    async def test_link_failure_message(self, engine: SyncEngine, api, payload: list[dict]) -> None:
        await loaded(engine, api, payload)
        api.put("/api/admin/links/10").mock(return_value=httpx.Response(200, json={}))
        api.put("/api/admin/links/11").mock(side_effect=httpx.ConnectError("down"))

        await engine.reorder_links(1, 0, 1)

        assert engine.error == "Failed to update link order"
        assert engine.unconfirmed == {("link", 11)}


class TestAccount:
    """Tests for password change."""

    @pytest.mark.asyncio
    async def test_change_password(self, engine: SyncEngine, api) -> None:
        route = api.post("/api/admin/change-password").mock(
            return_value=httpx.Response(200, json={"message": "Password changed successfully"})
        )
        form = PasswordForm(old_password="admin", new_password="hunter22", confirm_password="hunter22")
        assert await engine.change_password(form) is Completion.DONE
        assert sent_json(route) == {"old_password": "admin", "new_password": "hunter22"}

    @pytest.mark.asyncio
    async def test_wrong_old_password(self, engine: SyncEngine, coordinator: SessionCoordinator, api) -> None:
        api.post("/api/admin/change-password").mock(
            return_value=httpx.Response(400, json={"detail": "Current password is incorrect"})
        )
        form = PasswordForm(old_password="nope", new_password="hunter22", confirm_password="hunter22")
        assert await engine.change_password(form) is Completion.FAILED
        assert engine.error == "Failed to change password"
        assert coordinator.authenticated


class TestBulkReplace:
    """Tests for export and import."""

    @pytest.mark.asyncio
    async def test_export(self, engine: SyncEngine, api, tmp_path: Path) -> None:
        api.get("/api/admin/export").mock(
            return_value=httpx.Response(
                200,
                content=b'{"link_groups": []}',
                headers={"Content-Disposition": 'attachment; filename="backup.json"'},
            )
        )
        written = await engine.export_to(tmp_path)
        assert written == tmp_path / "backup.json"
        assert written.read_bytes() == b'{"link_groups": []}'

    @pytest.mark.asyncio
    async def test_export_failure(self, engine: SyncEngine, api, tmp_path: Path) -> None:
        api.get("/api/admin/export").mock(return_value=httpx.Response(500))
        assert await engine.export_to(tmp_path) is None
        assert engine.error == EXPORT_FAILED

    @pytest.mark.asyncio
    async def test_import_malformed_never_uploads(
        self, engine: SyncEngine, api, payload: list[dict], tmp_path: Path
    ) -> None:
        await loaded(engine, api, payload)
        upload = api.post("/api/admin/import")
        before = engine.snapshot
        bad = tmp_path / "deck.json"
        bad.write_text("{ not json")

        result = await engine.import_from(bad)

        assert result is Completion.FAILED
        assert engine.error == IMPORT_FAILED
        assert not upload.called
        assert engine.snapshot is before

    @pytest.mark.asyncio
    async def test_import_rejected_by_store(
        self, engine: SyncEngine, api, payload: list[dict], tmp_path: Path
    ) -> None:
        listing = await loaded(engine, api, payload)
        api.post("/api/admin/import").mock(return_value=httpx.Response(400, json={"detail": "Invalid"}))
        deck = tmp_path / "deck.json"
        deck.write_text('{"link_groups": []}')

        assert await engine.import_from(deck) is Completion.FAILED
        assert engine.error == IMPORT_FAILED
        assert listing.call_count == 1

    @pytest.mark.asyncio
    async def test_import_yaml_reloads(
        self, engine: SyncEngine, api, payload: list[dict], tmp_path: Path
    ) -> None:
        listing = await loaded(engine, api, payload)
        upload = api.post("/api/admin/import").mock(
            return_value=httpx.Response(200, json={"message": "Data imported successfully"})
        )
        listing.mock(
            return_value=httpx.Response(200, json=[{"id": 7, "name": "Only", "sort_order": 0, "links": []}])
        )
        deck = tmp_path / "deck.yaml"
        deck.write_text("link_groups:\n  - name: Only\n    sort_order: 0\n    links: []\n")

        result = await engine.import_from(deck)

        assert result is Completion.DONE
        assert engine.status == IMPORT_SUCCEEDED
        assert engine.snapshot.counts() == (1, 0)
        assert b'filename="deck.json"' in upload.calls.last.request.content
