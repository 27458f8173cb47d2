import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

PACKAGE_MANAGERS = ("npm", "yarn", "pnpm")


@dataclass
class ProcessSpec:
    name: str
    script: str
    cwd: str
    args: Optional[str] = None
    interpreter: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    out_file: Optional[str] = None
    error_file: Optional[str] = None


@dataclass
class ProcessInfo:
    name: str
    status: str
    pid: Optional[int] = None
    restarts: int = 0
    uptime: Optional[int] = None
    cpu: float = 0.0
    memory: int = 0

    @property
    def is_running(self) -> bool:
        return self.status in ("online", "running", "launching")


def parse_start_command(command: str) -> Dict[str, Optional[str]]:
    """Découpe une commande de démarrage en script / args / interpréteur"""
    parts = command.strip().split()
    if not parts:
        return {"script": "", "args": None, "interpreter": None}

    if parts[0] in PACKAGE_MANAGERS:
        return {"script": parts[0], "args": " ".join(parts[1:]) or None, "interpreter": "none"}

    if parts[0] == "node" and len(parts) > 1:
        return {"script": parts[1], "args": " ".join(parts[2:]) or None, "interpreter": "node"}

    return {"script": parts[0], "args": " ".join(parts[1:]) or None, "interpreter": None}


def start_script_exists(spec: ProcessSpec) -> bool:
    """
    Le script lancé directement doit exister dans le répertoire de l'application.

    Les gestionnaires de paquets (interpréteur "none") ne sont pas vérifiés; une
    commande sans interpréteur peut aussi être un exécutable du PATH.
    """
    if spec.interpreter == "none" or not spec.script:
        return True
    if (Path(spec.cwd) / spec.script).is_file():
        return True
    return spec.interpreter is None and shutil.which(spec.script) is not None


class ProcessSupervisor(ABC):
    """
    Contrat du superviseur de processus externe.

    `start` n'est pas supposé idempotent sur un nom déjà lancé : l'appelant
    arrête d'abord le processus quand il veut un redémarrage propre.
    """

    @abstractmethod
    def start(self, spec: ProcessSpec) -> None:
        ...

    @abstractmethod
    def stop(self, name: str) -> None:
        ...

    @abstractmethod
    def describe(self, name: str) -> Optional[ProcessInfo]:
        """Statut du processus, None s'il est inconnu du superviseur"""

    def restart(self, spec: ProcessSpec) -> None:
        """Arrêt puis démarrage : le superviseur ne recharge pas l'environnement à chaud"""
        self.stop(spec.name)
        self.start(spec)

    def is_running(self, name: str) -> bool:
        info = self.describe(name)
        return info is not None and info.is_running
