import io
import tarfile
import zipfile

import pytest

from appdeck.core.exceptions import ValidationError
from appdeck.external.archive import ArtifactStore, ZipUnpacker


class TestZipUnpacker:
    def test_unpack_zip(self, make_zip, tmp_path) -> None:
        dest = tmp_path / "app"

        ZipUnpacker().unpack(make_zip({"server.js": "x", "lib/util.js": "y"}), dest)

        assert (dest / "server.js").read_text() == "x"
        assert (dest / "lib" / "util.js").read_text() == "y"

    def test_unpack_tar(self, tmp_path) -> None:
        archive = tmp_path / "upload.tar.gz"
        with tarfile.open(archive, "w:gz") as tf:
            data = b"console.log(1)"
            info = tarfile.TarInfo("project/server.js")
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))

        ZipUnpacker().unpack(archive, tmp_path / "app")

        assert (tmp_path / "app" / "server.js").exists()

    def test_path_traversal_rejected(self, tmp_path) -> None:
        archive = tmp_path / "evil.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("../escape.js", "x")

        with pytest.raises(ValidationError):
            ZipUnpacker().unpack(archive, tmp_path / "app")
        assert not (tmp_path / "escape.js").exists()


class TestArtifactStore:
    def test_snapshot_excludes_env_and_logs(self, tmp_path) -> None:
        source = tmp_path / "app"
        source.mkdir()
        for name in ("server.js", ".env", "out.log", "error.log"):
            (source / name).write_text(name)
        store = ArtifactStore(tmp_path / "backups")

        snapshot = store.snapshot("blog", "v1", source)

        with zipfile.ZipFile(snapshot) as zf:
            assert zf.namelist() == ["server.js"]
        assert store.locate("blog", "v1") == snapshot
        assert store.versions("blog") == ["v1"]

    def test_locate_unknown_version(self, tmp_path) -> None:
        store = ArtifactStore(tmp_path / "backups")

        assert store.locate("blog", "v9") is None
        assert store.locate("blog", None) is None
        assert store.versions("blog") == []

    def test_discard(self, tmp_path) -> None:
        source = tmp_path / "app"
        source.mkdir()
        (source / "server.js").write_text("x")
        store = ArtifactStore(tmp_path / "backups")
        store.snapshot("blog", "v1", source)

        store.discard("blog")

        assert store.versions("blog") == []
