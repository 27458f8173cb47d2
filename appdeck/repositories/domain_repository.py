from typing import List, Optional
from sqlalchemy.orm import Session
from appdeck.repositories.base_repository import BaseRepository
from appdeck.models.domain import Domain


class DomainRepository(BaseRepository[Domain]):
    def __init__(self, db: Session):
        super().__init__(Domain, db)

    def get_by_app(self, app_id: int) -> List[Domain]:
        """Récupère tous les domaines liés à une application"""
        return self.get_many_by_field("app_id", app_id)

    def get_by_hostname(self, hostname: str) -> Optional[Domain]:
        return self.get_by_field("hostname", hostname)
