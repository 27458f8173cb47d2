from typing import Optional
from sqlalchemy.orm import Session
from appdeck.repositories.base_repository import BaseRepository
from appdeck.models.app import App


class AppRepository(BaseRepository[App]):
    def __init__(self, db: Session):
        super().__init__(App, db)

    def get_by_name(self, name: str) -> Optional[App]:
        """Récupère une application par son nom"""
        return self.get_by_field("name", name)

    def name_exists(self, name: str) -> bool:
        return self.get_by_name(name) is not None
