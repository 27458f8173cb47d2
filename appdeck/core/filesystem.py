"""
Cycle de vie des répertoires d'applications.

    Active(path) --mark_for_deletion--> Marked(path, since) --sweep--> Purged

L'état ``Marked`` n'existe que dans le nom du répertoire
(``.deleted-<nom>-<horodatage ns>``) : il survit aux redémarrages et seul un
sweep le fait disparaître.
"""
import errno
import logging
import os
import re
import shutil
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from appdeck.core.exceptions import DirectoryRemovalError, LockedResourceError
from appdeck.core.locks import AppLockRegistry

logger = logging.getLogger(__name__)

MARKER_PREFIX = ".deleted-"
MARKER_PATTERN = re.compile(r"^\.deleted-(?P<name>.+)-(?P<since>\d+)$")

LOCKED_ERRNOS = {errno.EBUSY, errno.ETXTBSY, errno.EPERM, errno.EACCES}
TRANSIENT_ERRNOS = {errno.ENOTEMPTY, errno.EAGAIN}

MAX_RETRIES = 3
RETRY_DELAY = 0.1

_stamp_lock = threading.Lock()
_last_stamp = 0

# Une entrée marquée n'est traitée que par un sweep à la fois
_sweep_locks = AppLockRegistry()


@dataclass(frozen=True)
class Active:
    path: Path


@dataclass(frozen=True)
class Marked:
    path: Path
    original_name: str
    since: int


DirectoryState = Union[Active, Marked]


@dataclass
class SweepResult:
    cleaned: int = 0
    still_locked: List[str] = field(default_factory=list)
    abandoned: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "cleaned": self.cleaned,
            "still_locked": list(self.still_locked),
            "abandoned": list(self.abandoned),
        }


def next_stamp() -> int:
    """Horodatage en nanosecondes strictement croissant dans le processus"""
    global _last_stamp
    with _stamp_lock:
        _last_stamp = max(time.time_ns(), _last_stamp + 1)
        return _last_stamp


def classify(path: Union[str, Path]) -> DirectoryState:
    """Interprète la convention de nommage d'un répertoire"""
    path = Path(path)
    match = MARKER_PATTERN.match(path.name)
    if match:
        return Marked(path=path, original_name=match.group("name"), since=int(match.group("since")))
    return Active(path=path)


def remove(path: Union[str, Path]) -> bool:
    """
    Suppression récursive idempotente.

    Retourne True si cet appel a supprimé l'entrée, False si elle était déjà
    absente (ou a disparu sous l'effet d'un autre appel).

    Raises:
        LockedResourceError: répertoire occupé, à différer (pas de retry synchrone)
        DirectoryRemovalError: toute autre erreur, non récupérable
    """
    path = Path(path)
    if not os.path.lexists(path):
        return False
    attempt = 0
    while True:
        attempt += 1
        try:
            if path.is_symlink() or path.is_file():
                path.unlink()
            else:
                shutil.rmtree(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            if e.errno in LOCKED_ERRNOS:
                raise LockedResourceError(
                    f"Répertoire verrouillé par un autre processus: {e}",
                    str(path),
                    errno.errorcode.get(e.errno, "UNKNOWN")
                ) from e
            if e.errno in TRANSIENT_ERRNOS and attempt < MAX_RETRIES:
                logger.debug(f"Suppression de {path} : erreur transitoire, tentative {attempt}")
                time.sleep(RETRY_DELAY)
                continue
            raise DirectoryRemovalError(
                f"Suppression du répertoire impossible: {e}",
                str(path),
                errno.errorcode.get(e.errno, "UNKNOWN") if e.errno else "UNKNOWN"
            ) from e


def mark_for_deletion(path: Union[str, Path]) -> Path:
    """Renomme le répertoire en .deleted-<nom>-<horodatage> pour nettoyage différé"""
    path = Path(path)
    marked = path.parent / f"{MARKER_PREFIX}{path.name}-{next_stamp()}"
    try:
        os.rename(path, marked)
    except OSError as e:
        raise DirectoryRemovalError(
            f"Marquage pour suppression impossible: {e}",
            str(path),
            errno.errorcode.get(e.errno, "UNKNOWN") if e.errno else "UNKNOWN"
        ) from e
    logger.info(f"Répertoire {path} marqué pour suppression différée: {marked}")
    return marked


def list_marked(base_dir: Union[str, Path]) -> List[Marked]:
    """Entrées marquées sous base_dir, par ordre chronologique"""
    try:
        entries = list(os.scandir(base_dir))
    except OSError:
        return []

    marked = []
    for entry in entries:
        state = classify(entry.path)
        if isinstance(state, Marked):
            marked.append(state)
    return sorted(marked, key=lambda m: (m.since, m.path.name))


def sweep(base_dir: Union[str, Path], skip: Optional[set] = None) -> SweepResult:
    """
    Tente de supprimer chaque entrée marquée de base_dir.

    Ne touche qu'aux entrées déjà marquées; une entrée en échec reste pour le
    passage suivant. Un base_dir absent ou illisible est un no-op.
    """
    result = SweepResult()
    for marked in list_marked(base_dir):
        if skip and str(marked.path) in skip:
            result.abandoned.append(str(marked.path))
            continue
        try:
            with _sweep_locks.hold(str(marked.path)):
                if remove(marked.path):
                    result.cleaned += 1
        except LockedResourceError:
            result.still_locked.append(str(marked.path))
        except DirectoryRemovalError as e:
            logger.warning(f"Sweep: échec de suppression de {marked.path}: {e}")
            result.still_locked.append(str(marked.path))
    if result.cleaned or result.still_locked:
        logger.info(f"Sweep de {base_dir}: {result.cleaned} supprimé(s), {len(result.still_locked)} verrouillé(s)")
    return result
