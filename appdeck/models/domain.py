from sqlalchemy import Column, String, DateTime, Integer, Boolean, Text, ForeignKey
from sqlalchemy.orm import relationship

from .base import BaseModel


class Domain(BaseModel):
    __tablename__ = "domains"

    app_id = Column(Integer, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False, index=True)
    hostname = Column(String(255), nullable=False)

    # Certificats (émis par le service externe)
    cert_path = Column(Text, nullable=True)
    key_path = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    # Vérification
    verified = Column(Boolean, default=False, nullable=False)
    verified_at = Column(DateTime, nullable=True)

    app = relationship("App", back_populates="domains")
