import enum
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey
from sqlalchemy.orm import relationship

from .base import BaseModel


class DeploymentStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


class Deployment(BaseModel):
    __tablename__ = "deployments"

    app_id = Column(Integer, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False, index=True)

    # Version = clé de l'instantané du code dans BACKUPS_DIR
    version = Column(String(64), nullable=True)
    deployed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    status = Column(String(20), nullable=False, default=DeploymentStatus.SUCCESS.value)
    notes = Column(Text, nullable=True)

    app = relationship("App", back_populates="deployments")
