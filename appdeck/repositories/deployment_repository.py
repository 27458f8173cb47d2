from typing import List, Optional
from sqlalchemy.orm import Session
from appdeck.repositories.base_repository import BaseRepository
from appdeck.models.deployment import Deployment, DeploymentStatus


class DeploymentRepository(BaseRepository[Deployment]):
    def __init__(self, db: Session):
        super().__init__(Deployment, db)

    def get_history(self, app_id: int) -> List[Deployment]:
        """Historique d'une application, du plus récent au plus ancien"""
        return (self.db.query(Deployment)
                .filter(Deployment.app_id == app_id)
                .order_by(Deployment.id.desc())
                .all())

    def get_current(self, app_id: int) -> Optional[Deployment]:
        """Dernier déploiement ayant produit du code (version non nulle)"""
        return (self.db.query(Deployment)
                .filter(Deployment.app_id == app_id, Deployment.version.isnot(None))
                .order_by(Deployment.id.desc())
                .first())

    def get_by_version(self, app_id: int, version: str) -> Optional[Deployment]:
        """Dernier déploiement portant cette version"""
        return (self.db.query(Deployment)
                .filter(Deployment.app_id == app_id, Deployment.version == version)
                .order_by(Deployment.id.desc())
                .first())

    def get_previous_success(self, app_id: int, current: Deployment) -> Optional[Deployment]:
        """Dernier déploiement réussi antérieur à `current`, avec une autre version"""
        query = (self.db.query(Deployment)
                 .filter(Deployment.app_id == app_id,
                         Deployment.id < current.id,
                         Deployment.status == DeploymentStatus.SUCCESS.value))
        if current.version is not None:
            query = query.filter(Deployment.version != current.version)
        return query.order_by(Deployment.id.desc()).first()
