import pytest

from appdeck.core.exceptions import NotFoundError, StoreIOError
from appdeck.core.database import MetadataStore
from appdeck.models import App, Deployment, Domain


def _app_data(name: str = "blog"):
    return {
        "name": name,
        "display_name": name.title(),
        "path": f"/srv/projects/{name}",
        "process_name": f"appdeck-{name}",
        "start_command": "node server.js",
        "port": 4000,
    }


class TestMetadataStore:
    def test_insert_get_list(self, store: MetadataStore) -> None:
        app = store.insert(App, _app_data())

        assert app.id is not None
        assert store.get(App, app.id).name == "blog"
        assert [a.name for a in store.list(App)] == ["blog"]
        assert store.get(App, 999) is None

    def test_list_filters_by_field(self, store: MetadataStore) -> None:
        store.insert(App, _app_data("blog"))
        store.insert(App, {**_app_data("shop"), "status": "running"})

        assert [a.name for a in store.list(App, status="running")] == ["shop"]

    def test_update_persists(self, store: MetadataStore) -> None:
        app = store.insert(App, _app_data())

        store.update(App, app.id, {"status": "running"})

        assert store.get(App, app.id).status == "running"

    def test_update_unknown_id_raises(self, store: MetadataStore) -> None:
        with pytest.raises(NotFoundError):
            store.update(App, 42, {"status": "running"})

    def test_delete_cascades_to_children(self, store: MetadataStore) -> None:
        app = store.insert(App, _app_data())
        store.insert(Deployment, {"app_id": app.id, "version": "v1", "status": "success"})
        store.insert(Domain, {"app_id": app.id, "hostname": "blog.example.com"})

        assert store.delete(App, app.id) is True

        assert store.list(Deployment) == []
        assert store.list(Domain) == []
        assert store.delete(App, app.id) is False

    def test_failed_write_is_rolled_back(self, store: MetadataStore) -> None:
        store.insert(App, _app_data())

        with pytest.raises(StoreIOError):
            store.insert(App, _app_data())

        assert len(store.list(App)) == 1

    def test_transaction_rolls_back_on_error(self, store: MetadataStore) -> None:
        with pytest.raises(RuntimeError):
            with store.transaction() as db:
                db.add(App(**_app_data()))
                db.flush()
                raise RuntimeError("boom")

        assert store.list(App) == []

    def test_writes_survive_reopen(self, store: MetadataStore, tmp_path) -> None:
        store.insert(App, _app_data())
        store.dispose()

        reopened = MetadataStore(store.db_path)
        try:
            assert [a.name for a in reopened.list(App)] == ["blog"]
        finally:
            reopened.dispose()
