# appdeck/core/database.py
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Type, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from appdeck.core.exceptions import NotFoundError, StoreIOError

Base = declarative_base()

ModelType = TypeVar("ModelType")

logger = logging.getLogger(__name__)


def _enable_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.close()


class MetadataStore:
    """
    Catalogue durable des applications, déploiements et domaines.

    Chaque écriture est committée avant de rendre la main, sous un verrou
    d'écriture global. Les lectures ne prennent pas ce verrou.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"check_same_thread": False},
            echo=False
        )
        event.listen(self._engine, "connect", _enable_sqlite_pragmas)

        self._session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self._engine
        )
        self._write_lock = threading.Lock()
        self.create_tables()

    def create_tables(self):
        """Crée toutes les tables"""
        # Import des modèles pour enregistrer les tables sur Base.metadata
        import appdeck.models  # noqa: F401
        try:
            Base.metadata.create_all(bind=self._engine)
        except SQLAlchemyError as e:
            raise StoreIOError(f"Initialisation du catalogue impossible: {e}") from e

    def dispose(self):
        self._engine.dispose()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Session de lecture"""
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            raise StoreIOError(f"Lecture du catalogue impossible: {e}") from e
        finally:
            db.close()

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """Session d'écriture : commit complet ou rien, sous le verrou global"""
        with self._write_lock:
            db = self._session_factory()
            try:
                yield db
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Écriture du catalogue annulée: {e}")
                raise StoreIOError(f"Écriture du catalogue impossible: {e}") from e
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    # === CRUD générique ===
    def get(self, model: Type[ModelType], id: int) -> Optional[ModelType]:
        with self.session() as db:
            return _repository(model, db).get_by_id(id)

    def get_or_raise(self, model: Type[ModelType], id: int) -> ModelType:
        obj = self.get(model, id)
        if obj is None:
            raise NotFoundError(f"{model.__name__} {id} introuvable", {"id": id})
        return obj

    def list(self, model: Type[ModelType], **filters: Any) -> List[ModelType]:
        with self.session() as db:
            return _repository(model, db).get_all(**filters)

    def insert(self, model: Type[ModelType], data: Dict[str, Any]) -> ModelType:
        with self.transaction() as db:
            return _repository(model, db).create(data)

    def update(self, model: Type[ModelType], id: int, data: Dict[str, Any]) -> ModelType:
        with self.transaction() as db:
            obj = _repository(model, db).update(id, data)
            if obj is None:
                raise NotFoundError(f"{model.__name__} {id} introuvable", {"id": id})
            return obj

    def delete(self, model: Type[ModelType], id: int) -> bool:
        with self.transaction() as db:
            return _repository(model, db).delete(id)


def _repository(model, db: Session):
    from appdeck.repositories.base_repository import BaseRepository
    return BaseRepository(model, db)
