from typing import Any, Dict, List, Optional


class AppDeckError(Exception):
    """Erreur de base du coeur de déploiement"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(AppDeckError):
    """Configuration invalide, rejetée avant tout effet de bord"""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message, {"errors": errors or []})
        self.errors = errors or []


class ConflictError(AppDeckError):
    """Une application porte déjà ce nom"""


class NotFoundError(AppDeckError):
    """Identifiant inconnu"""


class DirectoryRemovalError(AppDeckError):
    """Suppression de répertoire impossible"""

    recoverable = False

    def __init__(self, message: str, path: str, code: str = "UNKNOWN"):
        super().__init__(message, {"path": path, "code": code})
        self.path = path
        self.code = code


class LockedResourceError(DirectoryRemovalError):
    """Répertoire verrouillé par un processus : suppression à différer"""

    recoverable = True


class ArtifactUnavailableError(AppDeckError):
    """Le code du déploiement cible n'est plus disponible"""


class RollbackTargetError(AppDeckError):
    """Aucun déploiement cible pour le rollback"""


class SupervisorError(AppDeckError):
    """Échec d'une commande du superviseur de processus"""


class StoreIOError(AppDeckError):
    """Échec de persistance du catalogue"""


class AppFileError(AppDeckError):
    """Lecture ou écriture d'un fichier de l'application (.env, logs) impossible"""
