import logging
from typing import Optional

from appdeck.config import DEV_ENCRYPTION_KEY, Settings
from appdeck.core.crypto import SecretCodec
from appdeck.core.database import MetadataStore
from appdeck.external.archive import ArtifactStore
from appdeck.external.pm2_client import Pm2Supervisor
from appdeck.external.supervisor import ProcessSupervisor
from appdeck.services.deployment_service import DeploymentService
from appdeck.workers.sweep_worker import SweepWorker

logger = logging.getLogger(__name__)


# === COMPOSANTS ===
def get_secret_codec(settings: Settings) -> SecretCodec:
    """Codec des secrets; clé de développement si ENCRYPTION_KEY est absente"""
    secret = settings.ENCRYPTION_KEY
    if not secret:
        logger.warning("ENCRYPTION_KEY non définie : utilisation de la clé de développement")
        secret = DEV_ENCRYPTION_KEY
    return SecretCodec(secret, salt=settings.ENCRYPTION_SALT)


def get_metadata_store(settings: Settings) -> MetadataStore:
    return MetadataStore(settings.DB_PATH)


def get_supervisor(settings: Settings) -> ProcessSupervisor:
    return Pm2Supervisor(binary=settings.PM2_BINARY, timeout=settings.SUPERVISOR_TIMEOUT_SECONDS)


# === SERVICES ===
def build_deployment_service(
        settings: Settings,
        store: Optional[MetadataStore] = None,
        supervisor: Optional[ProcessSupervisor] = None
) -> DeploymentService:
    """Assemble l'orchestrateur; store et superviseur injectables"""
    return DeploymentService(
        store=store or get_metadata_store(settings),
        codec=get_secret_codec(settings),
        supervisor=supervisor or get_supervisor(settings),
        projects_dir=settings.PROJECTS_DIR,
        artifacts=ArtifactStore(settings.BACKUPS_DIR),
        process_prefix=settings.PROCESS_PREFIX,
        default_port=settings.DEFAULT_PORT,
    )


# === WORKERS ===
def build_sweep_worker(settings: Settings, service: DeploymentService) -> SweepWorker:
    return SweepWorker(
        service,
        interval=settings.SWEEP_INTERVAL_SECONDS,
        max_attempts=settings.SWEEP_MAX_ATTEMPTS,
    )
