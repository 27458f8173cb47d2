# appdeck/repositories/base_repository.py
from typing import TypeVar, Generic, List, Optional, Type, Dict, Any
from sqlalchemy.orm import Session
from appdeck.core.database import Base

# Type générique pour les modèles
ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Repository générique pour les opérations CRUD de base.

    Ne committe pas : la session appartient à MetadataStore.transaction(),
    qui committe ou annule l'ensemble.
    """

    def __init__(self, model: Type[ModelType], db: Session):
        self.model = model
        self.db = db

    def get_by_id(self, id: int) -> Optional[ModelType]:
        """Récupère un enregistrement par son ID"""
        return self.db.get(self.model, id)

    def get_all(self, **filters: Any) -> List[ModelType]:
        """Récupère tous les enregistrements, filtrés par égalité de champs"""
        query = self.db.query(self.model)
        for field, value in filters.items():
            query = query.filter(getattr(self.model, field) == value)
        return query.order_by(self.model.id).all()

    def get_by_field(self, field: str, value: Any) -> Optional[ModelType]:
        """Récupère un enregistrement par un champ spécifique"""
        return self.db.query(self.model).filter(getattr(self.model, field) == value).first()

    def get_many_by_field(self, field: str, value: Any) -> List[ModelType]:
        """Récupère plusieurs enregistrements par un champ spécifique"""
        return (self.db.query(self.model)
                .filter(getattr(self.model, field) == value)
                .order_by(self.model.id)
                .all())

    def create(self, obj_data: Dict[str, Any]) -> ModelType:
        """Crée un nouvel enregistrement"""
        db_obj = self.model(**obj_data)
        self.db.add(db_obj)
        self.db.flush()
        return db_obj

    def update(self, id: int, obj_data: Dict[str, Any]) -> Optional[ModelType]:
        """Met à jour un enregistrement existant"""
        db_obj = self.get_by_id(id)
        if db_obj:
            for field, value in obj_data.items():
                if hasattr(db_obj, field):
                    setattr(db_obj, field, value)
            self.db.flush()
        return db_obj

    def delete(self, id: int) -> bool:
        """Supprime un enregistrement"""
        db_obj = self.get_by_id(id)
        if db_obj:
            self.db.delete(db_obj)
            self.db.flush()
            return True
        return False
