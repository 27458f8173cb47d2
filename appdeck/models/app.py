# appdeck/models/app.py
import enum

from sqlalchemy import Column, String, Integer, DateTime, Text
from sqlalchemy.orm import relationship

from .base import BaseModel


class AppStatus(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    DEPLOYING = "deploying"


class DeployMethod(str, enum.Enum):
    ZIP = "zip"
    GIT = "git"


class App(BaseModel):
    __tablename__ = "apps"

    # Identité (immuable : détermine le répertoire et le nom du processus)
    name = Column(String(50), unique=True, nullable=False, index=True)
    display_name = Column(String(100), nullable=False)
    path = Column(Text, nullable=False)
    process_name = Column(String(100), nullable=False)

    # Exécution
    start_command = Column(Text, nullable=False)
    port = Column(Integer, nullable=True)
    env_vars = Column(Text, nullable=True)  # enveloppe chiffrée du JSON utilisateur
    status = Column(String(20), nullable=False, default=AppStatus.STOPPED.value)

    # Source
    deploy_method = Column(String(20), nullable=False, default=DeployMethod.ZIP.value)
    git_url = Column(Text, nullable=True)
    git_branch = Column(String(255), nullable=True)
    last_commit = Column(String(64), nullable=True)
    last_deployed_at = Column(DateTime, nullable=True)

    # Relations (suppression en cascade côté SQLite)
    deployments = relationship(
        "Deployment", back_populates="app", cascade="all, delete-orphan", passive_deletes=True
    )
    domains = relationship(
        "Domain", back_populates="app", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self):
        return f"<App(name='{self.name}', status={self.status})>"
