import logging
import os
import tarfile
import zipfile
from pathlib import Path
from typing import List, Optional, Union

from appdeck.core import filesystem
from appdeck.core.exceptions import ValidationError, DirectoryRemovalError

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT = "zip"
SNAPSHOT_EXCLUDES = (".env", "out.log", "error.log")


class ZipUnpacker:
    """Extraction d'archives zip / tar dans un répertoire neuf"""

    def unpack(self, archive_path: Union[str, Path], dest_dir: Union[str, Path]) -> None:
        archive_path = Path(archive_path)
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)

        if zipfile.is_zipfile(archive_path):
            with zipfile.ZipFile(archive_path) as zf:
                for member in zf.namelist():
                    self._check_member(dest_dir, member)
                zf.extractall(dest_dir)
        elif tarfile.is_tarfile(archive_path):
            with tarfile.open(archive_path) as tf:
                tf.extractall(dest_dir, filter="data")
        else:
            raise ValidationError(f"Archive non supportée: {archive_path.name}")

        self._flatten(dest_dir)

    @staticmethod
    def _check_member(dest_dir: Path, member: str):
        target = (dest_dir / member).resolve()
        if not target.is_relative_to(dest_dir.resolve()):
            raise ValidationError(f"Chemin interdit dans l'archive: {member}")

    @staticmethod
    def _flatten(dest_dir: Path):
        """Remonte le contenu d'un unique dossier racine (archive 'projet/...')"""
        items = list(dest_dir.iterdir())
        if len(items) != 1 or not items[0].is_dir():
            return

        nested = dest_dir / f".flatten-{items[0].name}"
        items[0].rename(nested)
        for child in nested.iterdir():
            child.rename(dest_dir / child.name)
        nested.rmdir()


class ArtifactStore:
    """
    Instantanés du code déployé, un par version : <BACKUPS_DIR>/<app>/<version>.zip

    Pris juste après l'extraction, avant l'écriture du .env : aucun secret
    n'est archivé.
    """

    def __init__(self, backups_dir: Union[str, Path]):
        self.backups_dir = Path(backups_dir)

    def _app_dir(self, app_name: str) -> Path:
        return self.backups_dir / app_name

    def snapshot(self, app_name: str, version: str, source_dir: Union[str, Path]) -> Path:
        app_dir = self._app_dir(app_name)
        app_dir.mkdir(parents=True, exist_ok=True)
        target = app_dir / f"{version}.{SNAPSHOT_FORMAT}"
        source_dir = Path(source_dir)

        with zipfile.ZipFile(target, "w", zipfile.ZIP_DEFLATED) as zf:
            for root, dirs, files in os.walk(source_dir):
                for filename in files:
                    full = Path(root) / filename
                    rel = full.relative_to(source_dir)
                    if str(rel) in SNAPSHOT_EXCLUDES:
                        continue
                    zf.write(full, rel.as_posix())
        logger.info(f"Instantané {version} de '{app_name}' enregistré: {target}")
        return target

    def locate(self, app_name: str, version: Optional[str]) -> Optional[Path]:
        if not version:
            return None
        candidate = self._app_dir(app_name) / f"{version}.{SNAPSHOT_FORMAT}"
        return candidate if candidate.is_file() else None

    def versions(self, app_name: str) -> List[str]:
        app_dir = self._app_dir(app_name)
        if not app_dir.is_dir():
            return []
        return sorted(p.stem for p in app_dir.glob(f"*.{SNAPSHOT_FORMAT}"))

    def discard(self, app_name: str) -> None:
        """Supprime les instantanés d'une application; différé si verrouillé"""
        app_dir = self._app_dir(app_name)
        try:
            filesystem.remove(app_dir)
        except DirectoryRemovalError as e:
            if not e.recoverable:
                logger.warning(f"Instantanés de '{app_name}' non supprimés: {e}")
                return
            try:
                filesystem.mark_for_deletion(app_dir)
            except DirectoryRemovalError as mark_error:
                logger.warning(f"Instantanés de '{app_name}' non marqués: {mark_error}")
