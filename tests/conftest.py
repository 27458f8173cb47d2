import zipfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from appdeck.core.crypto import SecretCodec, derive_key
from appdeck.core.database import MetadataStore
from appdeck.core.exceptions import SupervisorError
from appdeck.external.archive import ArtifactStore
from appdeck.external.supervisor import ProcessInfo, ProcessSpec, ProcessSupervisor
from appdeck.services.deployment_service import DeploymentService

# La dérivation scrypt est lente : une seule fois pour toute la session
_TEST_KEY = derive_key("test-secret", "appdeck-salt")


class FakeSupervisor(ProcessSupervisor):
    """Superviseur en mémoire; `fail_start` simule un échec de démarrage"""

    def __init__(self) -> None:
        self.processes: Dict[str, ProcessInfo] = {}
        self.started: List[ProcessSpec] = []
        self.stopped: List[str] = []
        self.fail_start = False
        self.fail_describe = False

    def start(self, spec: ProcessSpec) -> None:
        if self.fail_start:
            raise SupervisorError(f"script {spec.script} introuvable")
        self.started.append(spec)
        self.processes[spec.name] = ProcessInfo(name=spec.name, status="online", pid=4242)

    def stop(self, name: str) -> None:
        self.stopped.append(name)
        self.processes.pop(name, None)

    def describe(self, name: str) -> Optional[ProcessInfo]:
        if self.fail_describe:
            raise SupervisorError("pm2 injoignable")
        return self.processes.get(name)


@pytest.fixture
def codec() -> SecretCodec:
    return SecretCodec("test-secret", key=_TEST_KEY)


@pytest.fixture
def store(tmp_path: Path):
    store = MetadataStore(str(tmp_path / "db" / "appdeck.db"))
    yield store
    store.dispose()


@pytest.fixture
def supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def projects_dir(tmp_path: Path) -> Path:
    return tmp_path / "projects"


@pytest.fixture
def backups_dir(tmp_path: Path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def service(store, codec, supervisor, projects_dir, backups_dir) -> DeploymentService:
    return DeploymentService(
        store=store,
        codec=codec,
        supervisor=supervisor,
        projects_dir=projects_dir,
        artifacts=ArtifactStore(backups_dir),
    )


@pytest.fixture
def make_zip(tmp_path: Path):
    """Fabrique une archive zip à partir d'un dict {chemin: contenu}"""
    counter = {"n": 0}

    def _make(files: Dict[str, str], prefix: str = "") -> Path:
        counter["n"] += 1
        archive = tmp_path / "uploads" / f"upload-{counter['n']}.zip"
        archive.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive, "w") as zf:
            for name, content in files.items():
                zf.writestr(f"{prefix}{name}", content)
        return archive

    return _make
