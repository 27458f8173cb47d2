import errno
import logging
import os
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from appdeck.core import filesystem
from appdeck.core.crypto import SecretCodec
from appdeck.core.database import MetadataStore
from appdeck.core.exceptions import (
    AppFileError,
    ArtifactUnavailableError,
    ConflictError,
    DirectoryRemovalError,
    LockedResourceError,
    NotFoundError,
    RollbackTargetError,
    StoreIOError,
    SupervisorError,
    ValidationError,
)
from appdeck.core.locks import AppLockRegistry
from appdeck.external.archive import ArtifactStore, ZipUnpacker
from appdeck.external.supervisor import (
    ProcessInfo,
    ProcessSpec,
    ProcessSupervisor,
    parse_start_command,
    start_script_exists,
)
from appdeck.models.app import App, AppStatus
from appdeck.models.deployment import Deployment, DeploymentStatus
from appdeck.models.domain import Domain
from appdeck.repositories.app_repository import AppRepository
from appdeck.repositories.deployment_repository import DeploymentRepository
from appdeck.repositories.domain_repository import DomainRepository
from appdeck.schemas.app import AppCreate, AppView, DeleteResult, DeploymentView, DomainCreate, EnvUpdate
from appdeck.services.env_service import (
    DEFAULT_PORT,
    build_effective_env,
    decode_env_blob,
    encode_env_blob,
    format_env_file,
    parse_env_file,
    write_env_file,
)
from appdeck.services.log_service import DEFAULT_TAIL_LINES, ERROR_LOG, OUT_LOG, tail_file, truncate_file

logger = logging.getLogger(__name__)

ArchiveRef = Union[str, Path]


def _validate(schema, data):
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"{schema.__name__} invalide", errors=e.errors(include_url=False)) from e


class DeploymentService:
    """
    Orchestrateur du cycle de vie des applications.

    Received -> Validated -> Unpacked -> Configured -> (Started | StartFailed) -> Recorded

    Les mutations d'une même application sont sérialisées par un verrou par
    nom; le catalogue sérialise en plus toutes les écritures.
    """

    def __init__(
            self,
            store: MetadataStore,
            codec: SecretCodec,
            supervisor: ProcessSupervisor,
            projects_dir: Union[str, Path],
            artifacts: ArtifactStore,
            unpacker: Optional[ZipUnpacker] = None,
            process_prefix: str = "appdeck-",
            default_port: int = DEFAULT_PORT,
            locks: Optional[AppLockRegistry] = None
    ):
        self.store = store
        self.codec = codec
        self.supervisor = supervisor
        self.projects_dir = Path(projects_dir)
        self.artifacts = artifacts
        self.unpacker = unpacker or ZipUnpacker()
        self.process_prefix = process_prefix
        self.default_port = default_port
        self.locks = locks or AppLockRegistry()

    # === CRÉATION ===
    def create_app(self, config: Union[AppCreate, Dict[str, Any]], archive_path: ArchiveRef) -> App:
        """Crée, configure et démarre une nouvelle application"""
        config = _validate(AppCreate, config)
        name = config.sanitized_name
        app_path = self.projects_dir / name

        with self.locks.hold(name):
            with self.store.session() as db:
                if AppRepository(db).name_exists(name):
                    raise ConflictError(f"L'application '{name}' existe déjà", {"name": name})
            if app_path.exists():
                raise ConflictError(f"Le répertoire de '{name}' existe déjà", {"path": str(app_path)})

            self.projects_dir.mkdir(parents=True, exist_ok=True)
            try:
                self.unpacker.unpack(archive_path, app_path)
            except Exception:
                logger.error(f"Extraction de l'archive de '{name}' échouée, nettoyage de {app_path}")
                self._discard_dir(app_path)
                raise
            version = self._snapshot(name, app_path)

            user_vars = config.env_vars or {}
            try:
                app = self.store.insert(App, {
                    "name": name,
                    "display_name": config.display_name,
                    "path": str(app_path),
                    "process_name": f"{self.process_prefix}{name}",
                    "start_command": config.start_command,
                    "port": config.port,
                    "env_vars": encode_env_blob(self.codec, user_vars),
                    "status": AppStatus.DEPLOYING.value,
                    "deploy_method": config.deploy_method,
                    "git_url": config.git_url,
                    "git_branch": config.git_branch,
                    "last_commit": config.last_commit,
                })
            except StoreIOError:
                self._discard_dir(app_path)
                self.artifacts.discard(name)
                raise
            logger.info(f"Application '{name}' enregistrée (id={app.id}, {len(user_vars)} variable(s))")

            self._launch(app, build_effective_env(app.port, user_vars, self.default_port),
                         version, "Déploiement initial")
            return self.store.get_or_raise(App, app.id)

    # === REDÉPLOIEMENT / ROLLBACK ===
    def redeploy(self, app_id: int, archive_path: ArchiveRef) -> Deployment:
        """Remplace entièrement le code de l'application; les variables ne changent pas"""
        with self._locked_app(app_id) as app:
            return self._deploy_archive(app, archive_path, notes="Redéploiement")

    def rollback(self, app_id: int, deployment_id: Optional[int] = None,
                 version: Optional[str] = None) -> Deployment:
        """Redéploie le code d'un déploiement antérieur (id, version, ou précédent)"""
        with self._locked_app(app_id) as app:
            target = self._resolve_rollback_target(app, deployment_id, version)
            artifact = self.artifacts.locate(app.name, target.version)
            if artifact is None:
                raise ArtifactUnavailableError(
                    f"Code de la version {target.version} indisponible pour '{app.name}'",
                    {"deployment_id": target.id, "version": target.version}
                )
            logger.info(f"Rollback de '{app.name}' vers {target.version} (déploiement {target.id})")
            return self._deploy_archive(app, artifact, version=target.version,
                                        notes=f"Rollback vers {target.version}")

    def _resolve_rollback_target(self, app: App, deployment_id: Optional[int],
                                 version: Optional[str]) -> Deployment:
        with self.store.session() as db:
            repo = DeploymentRepository(db)
            if deployment_id is not None:
                target = repo.get_by_id(deployment_id)
                if target is None or target.app_id != app.id:
                    raise NotFoundError(f"Déploiement {deployment_id} introuvable pour '{app.name}'")
                return target

            if version is not None:
                target = repo.get_by_version(app.id, version)
                if target is None:
                    raise NotFoundError(f"Version {version} introuvable pour '{app.name}'")
                return target

            current = repo.get_current(app.id)
            if current is None:
                raise RollbackTargetError(f"Aucun historique de déploiement pour '{app.name}'")
            target = repo.get_previous_success(app.id, current)
            if target is None:
                raise RollbackTargetError(
                    f"Aucun déploiement antérieur à {current.version} pour '{app.name}'"
                )
            return target

    def _deploy_archive(self, app: App, archive_path: ArchiveRef, notes: str,
                        version: Optional[str] = None) -> Deployment:
        """Unpacked -> Configured -> Started -> Recorded sur une application existante"""
        app_path = Path(app.path)
        staging = app_path.parent / f".staging-{app.name}-{filesystem.next_stamp()}"

        try:
            self.unpacker.unpack(archive_path, staging)
        except Exception as e:
            self._discard_dir(staging)
            self._record(app.id, None, False, f"{notes} : extraction échouée ({e})")
            raise
        if version is None:
            version = self._snapshot(app.name, staging)

        self.store.update(App, app.id, {"status": AppStatus.DEPLOYING.value})
        self._stop_quietly(app)

        try:
            previous = self._swap_live_dir(app_path, staging)
        except DirectoryRemovalError as e:
            self._discard_dir(staging)
            self.store.update(App, app.id, {"status": AppStatus.STOPPED.value})
            self._record(app.id, None, False, f"{notes} : remplacement du code impossible ({e.message})")
            raise
        if previous is not None:
            self._discard_dir(previous)

        user_vars = decode_env_blob(self.codec, app.env_vars, app.name)
        return self._launch(app, build_effective_env(app.port, user_vars, self.default_port), version, notes)

    def _swap_live_dir(self, app_path: Path, staging: Path) -> Optional[Path]:
        """
        Met le code extrait en place par deux renommages.

        L'ancien répertoire est d'abord marqué pour suppression; si la mise en
        place échoue, il reprend son nom et le code en service reste intact.
        """
        previous = filesystem.mark_for_deletion(app_path) if app_path.exists() else None
        try:
            os.rename(staging, app_path)
        except OSError as e:
            if previous is not None:
                try:
                    os.rename(previous, app_path)
                except OSError as restore_error:
                    logger.error(f"Ancien code de {app_path} non restauré ({previous}): {restore_error}")
            raise DirectoryRemovalError(
                f"Mise en place du nouveau code impossible: {e}",
                str(app_path),
                errno.errorcode.get(e.errno, "UNKNOWN") if e.errno else "UNKNOWN"
            ) from e
        return previous

    # === SUPPRESSION ===
    def delete_app(self, app_id: int) -> DeleteResult:
        """
        Supprime le répertoire puis la ligne du catalogue.

        Répertoire verrouillé : arrêt du processus, nouvel essai, puis marquage
        pour suppression différée. Erreur non récupérable : rien n'est supprimé
        du catalogue.
        """
        with self._locked_app(app_id) as app:
            deferred = None
            try:
                filesystem.remove(app.path)
            except LockedResourceError:
                logger.info(f"Répertoire de '{app.name}' verrouillé, arrêt du processus puis nouvel essai")
                self._stop_quietly(app)
                try:
                    filesystem.remove(app.path)
                except LockedResourceError:
                    deferred = str(filesystem.mark_for_deletion(app.path))
                    logger.warning(f"'{app.name}' : suppression du répertoire différée ({deferred})")

            self.store.delete(App, app.id)
            if deferred is None:
                self._stop_quietly(app)
            self.artifacts.discard(app.name)
            logger.info(f"Application '{app.name}' supprimée")
            return DeleteResult(deleted=True, deferred=deferred)

    # === ENVIRONNEMENT ===
    def set_env(self, app_id: int, env_vars: Dict[str, str]) -> None:
        """
        Remplace les variables : .env réécrit, catalogue chiffré, redémarrage si actif.

        Le fichier est écrit avant le catalogue; si le catalogue refuse
        l'écriture, l'ancien .env est remis en place.
        """
        env_vars = _validate(EnvUpdate, {"env_vars": env_vars}).env_vars
        with self._locked_app(app_id) as app:
            previous = decode_env_blob(self.codec, app.env_vars, app.name)
            env = build_effective_env(app.port, env_vars, self.default_port)
            self._materialize(app, env)
            try:
                app = self.store.update(App, app.id, {"env_vars": encode_env_blob(self.codec, env_vars)})
            except StoreIOError:
                try:
                    self._materialize(app, build_effective_env(app.port, previous, self.default_port))
                except AppFileError as e:
                    logger.error(f"'{app.name}' : .env non restauré après échec du catalogue: {e}")
                raise

            info = self._describe(app)
            if info is not None and info.is_running:
                logger.info(f"Redémarrage de '{app.name}' avec le nouvel environnement")
                self._restart(app, env)

    def get_env(self, app_id: int) -> Dict[str, str]:
        app = self.store.get_or_raise(App, app_id)
        return decode_env_blob(self.codec, app.env_vars, app.name)

    def import_env(self, app_id: int, text: str) -> Dict[str, str]:
        """Remplace les variables par celles d'un fichier .env téléversé"""
        app = self.store.get_or_raise(App, app_id)
        defaults = build_effective_env(app.port, None, self.default_port)
        # Un fichier exporté contient les valeurs par défaut : on ne les fige pas
        user_vars = {key: value for key, value in parse_env_file(text).items() if defaults.get(key) != value}
        self.set_env(app_id, user_vars)
        return user_vars

    def export_env(self, app_id: int) -> str:
        """Contenu du .env effectif, reconstruit depuis le catalogue"""
        app = self.store.get_or_raise(App, app_id)
        user_vars = decode_env_blob(self.codec, app.env_vars, app.name)
        return format_env_file(build_effective_env(app.port, user_vars, self.default_port))

    # === CONTRÔLE DU PROCESSUS ===
    def start_app(self, app_id: int) -> None:
        """Démarrage explicite (reprise après un échec de démarrage)"""
        with self._locked_app(app_id) as app:
            env = build_effective_env(app.port, decode_env_blob(self.codec, app.env_vars, app.name),
                                      self.default_port)
            self._materialize(app, env)
            self._restart(app, env)

    def restart_app(self, app_id: int) -> None:
        self.start_app(app_id)

    def stop_app(self, app_id: int) -> None:
        with self._locked_app(app_id) as app:
            self.supervisor.stop(app.process_name)
            self.store.update(App, app.id, {"status": AppStatus.STOPPED.value})

    # === LOGS ===
    def read_logs(self, app_id: int, lines: int = DEFAULT_TAIL_LINES) -> Dict[str, Optional[str]]:
        """Fin des logs du processus; None pour un fichier pas encore créé"""
        if lines < 1:
            raise ValidationError("Le nombre de lignes doit être positif", errors=[{"lines": lines}])
        app = self.store.get_or_raise(App, app_id)
        try:
            return {
                "out": tail_file(Path(app.path) / OUT_LOG, lines),
                "error": tail_file(Path(app.path) / ERROR_LOG, lines),
            }
        except OSError as e:
            raise AppFileError(f"Lecture des logs de '{app.name}' impossible: {e}") from e

    def clear_logs(self, app_id: int) -> None:
        app = self.store.get_or_raise(App, app_id)
        try:
            for filename in (OUT_LOG, ERROR_LOG):
                truncate_file(Path(app.path) / filename)
        except OSError as e:
            raise AppFileError(f"Effacement des logs de '{app.name}' impossible: {e}") from e
        logger.info(f"Logs de '{app.name}' effacés")

    # === LECTURE ===
    def list_apps(self) -> List[AppView]:
        """Applications du catalogue, décorées du statut live du superviseur"""
        return [self._to_view(app) for app in self.store.list(App)]

    def get_app(self, app_id: int) -> AppView:
        return self._to_view(self.store.get_or_raise(App, app_id))

    def list_deployments(self, app_id: int) -> List[DeploymentView]:
        self.store.get_or_raise(App, app_id)
        with self.store.session() as db:
            return [DeploymentView.model_validate(d) for d in DeploymentRepository(db).get_history(app_id)]

    # === DOMAINES ===
    def add_domain(self, app_id: int, domain: Union[DomainCreate, Dict[str, Any]]) -> Domain:
        domain = _validate(DomainCreate, domain)
        self.store.get_or_raise(App, app_id)
        with self.store.transaction() as db:
            repo = DomainRepository(db)
            if repo.get_by_hostname(domain.hostname) is not None:
                raise ConflictError(f"Le domaine {domain.hostname} est déjà lié")
            return repo.create({"app_id": app_id, **domain.model_dump()})

    def list_domains(self, app_id: int) -> List[Domain]:
        self.store.get_or_raise(App, app_id)
        with self.store.session() as db:
            return DomainRepository(db).get_by_app(app_id)

    def mark_domain_verified(self, domain_id: int) -> Domain:
        return self.store.update(Domain, domain_id, {"verified": True, "verified_at": datetime.utcnow()})

    def remove_domain(self, domain_id: int) -> None:
        if not self.store.delete(Domain, domain_id):
            raise NotFoundError(f"Domaine {domain_id} introuvable")

    # === NETTOYAGE ===
    def sweep_once(self, base_dir: Optional[Union[str, Path]] = None,
                   skip: Optional[set] = None) -> filesystem.SweepResult:
        """Finalise les suppressions différées (projets et instantanés par défaut)"""
        if base_dir is not None:
            return filesystem.sweep(base_dir, skip=skip)

        result = filesystem.SweepResult()
        for directory in (self.projects_dir, self.artifacts.backups_dir):
            partial = filesystem.sweep(directory, skip=skip)
            result.cleaned += partial.cleaned
            result.still_locked.extend(partial.still_locked)
            result.abandoned.extend(partial.abandoned)
        return result

    # === INTERNE ===
    @contextmanager
    def _locked_app(self, app_id: int) -> Iterator[App]:
        """Verrou de l'application, puis relecture de la ligne sous verrou"""
        app = self.store.get_or_raise(App, app_id)
        with self.locks.hold(app.name):
            yield self.store.get_or_raise(App, app_id)

    def _launch(self, app: App, env: Dict[str, str], version: Optional[str], notes: str) -> Deployment:
        """Configured -> Started | StartFailed -> Recorded"""
        try:
            self._materialize(app, env)
            self.supervisor.start(self._process_spec(app, env))
            started = True
        except (SupervisorError, AppFileError) as e:
            logger.error(f"Démarrage de '{app.name}' échoué: {e}")
            notes = f"{notes} : démarrage échoué ({e})"
            started = False

        self.store.update(App, app.id, {
            "status": AppStatus.RUNNING.value if started else AppStatus.STOPPED.value,
            "last_deployed_at": datetime.utcnow(),
        })
        return self._record(app.id, version, started, notes)

    def _restart(self, app: App, env: Dict[str, str]):
        try:
            self.supervisor.restart(self._process_spec(app, env))
        except SupervisorError:
            self.store.update(App, app.id, {"status": AppStatus.STOPPED.value})
            raise
        self.store.update(App, app.id, {"status": AppStatus.RUNNING.value})

    def _materialize(self, app: App, env: Dict[str, str]):
        try:
            write_env_file(app.path, env)
        except OSError as e:
            raise AppFileError(f"Écriture du .env de '{app.name}' impossible: {e}", {"path": app.path}) from e

    def _process_spec(self, app: App, env: Dict[str, str]) -> ProcessSpec:
        """Spécification pm2; refuse un script de démarrage absent du code déployé"""
        command = parse_start_command(app.start_command)
        spec = ProcessSpec(
            name=app.process_name,
            script=command["script"],
            args=command["args"],
            interpreter=command["interpreter"],
            cwd=app.path,
            env=env,
            out_file=str(Path(app.path) / OUT_LOG),
            error_file=str(Path(app.path) / ERROR_LOG),
        )
        if not start_script_exists(spec):
            raise SupervisorError(
                f"Script de démarrage introuvable: {spec.script} (vérifier l'archive ou utiliser \"npm start\")",
                {"script": spec.script}
            )
        return spec

    def _describe(self, app: App) -> Optional[ProcessInfo]:
        try:
            return self.supervisor.describe(app.process_name)
        except SupervisorError as e:
            logger.warning(f"Statut de '{app.process_name}' indisponible: {e}")
            return None

    def _stop_quietly(self, app: App):
        try:
            self.supervisor.stop(app.process_name)
        except SupervisorError as e:
            logger.warning(f"Arrêt de '{app.process_name}' échoué: {e}")

    def _record(self, app_id: int, version: Optional[str], success: bool, notes: str) -> Deployment:
        return self.store.insert(Deployment, {
            "app_id": app_id,
            "version": version,
            "status": DeploymentStatus.SUCCESS.value if success else DeploymentStatus.FAILED.value,
            "notes": notes,
        })

    def _snapshot(self, app_name: str, source_dir: Path) -> str:
        version = datetime.utcnow().strftime("%Y_%m_%d_%H-%M-%S-%f")
        try:
            self.artifacts.snapshot(app_name, version, source_dir)
        except OSError as e:
            logger.warning(f"Instantané de '{app_name}' non enregistré, rollback impossible vers {version}: {e}")
        return version

    def _discard_dir(self, path: Path):
        """Suppression au mieux; un répertoire déjà marqué reste pour le sweep"""
        try:
            filesystem.remove(path)
        except LockedResourceError:
            if isinstance(filesystem.classify(path), filesystem.Marked):
                logger.info(f"Répertoire {path} verrouillé, laissé au nettoyage différé")
                return
            try:
                filesystem.mark_for_deletion(path)
            except DirectoryRemovalError as e:
                logger.warning(f"Répertoire {path} non marqué: {e}")
        except DirectoryRemovalError as e:
            logger.warning(f"Répertoire {path} non nettoyé: {e}")

    def _to_view(self, app: App) -> AppView:
        data = {column.name: getattr(app, column.name) for column in App.__table__.columns}
        data["env_vars"] = decode_env_blob(self.codec, app.env_vars, app.name)
        info = self._describe(app)
        if info is not None:
            data.update(process_status=info.status, pid=info.pid, restarts=info.restarts)
        else:
            data["process_status"] = "absent"
        return AppView(**data)

