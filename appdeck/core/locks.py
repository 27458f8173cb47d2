import threading
from contextlib import contextmanager
from typing import Dict, Generator, List


class AppLockRegistry:
    """
    Un verrou par clé (nom d'application, chemin) : sérialise les mutations d'une même clé.

    L'entrée d'une clé disparaît dès que plus personne ne la tient ni ne
    l'attend : le registre ne garde que les clés en cours d'utilisation.
    """

    def __init__(self):
        # clé -> [verrou, nombre de détenteurs + attentes]
        self._locks: Dict[str, List] = {}
        self._guard = threading.Lock()

    def _acquire_entry(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _release_entry(self, key: str):
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: str) -> Generator[None, None, None]:
        lock = self._acquire_entry(key)
        try:
            with lock:
                yield
        finally:
            self._release_entry(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
