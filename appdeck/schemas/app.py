import re
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

HOSTNAME_PATTERN = r"^([a-z0-9-]+\.)+[a-z]{2,}$"


class AppCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50, pattern=r"^[a-zA-Z0-9_-]+$")
    display_name: str = Field(..., min_length=1, max_length=100)
    start_command: str = Field(..., min_length=1)
    port: Optional[int] = Field(None, ge=1, le=65535)
    env_vars: Optional[Dict[str, str]] = None

    # Métadonnées Git (le clonage lui-même est externe)
    deploy_method: str = Field("zip", pattern=r"^(zip|git)$")
    git_url: Optional[str] = None
    git_branch: Optional[str] = None
    last_commit: Optional[str] = None

    @field_validator("start_command")
    @classmethod
    def command_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("start_command ne peut pas être vide")
        return v.strip()

    @field_validator("env_vars")
    @classmethod
    def env_keys_valid(cls, v: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        return validate_env_vars(v) if v is not None else None

    @property
    def sanitized_name(self) -> str:
        """Nom canonique : minuscules, '_' remplacé par '-'"""
        return self.name.lower().replace("_", "-")


class EnvUpdate(BaseModel):
    env_vars: Dict[str, str]

    @field_validator("env_vars")
    @classmethod
    def env_keys_valid(cls, v: Dict[str, str]) -> Dict[str, str]:
        return validate_env_vars(v)


class DomainCreate(BaseModel):
    hostname: str = Field(..., max_length=255)
    cert_path: Optional[str] = None
    key_path: Optional[str] = None
    expires_at: Optional[datetime] = None

    @field_validator("hostname")
    @classmethod
    def hostname_valid(cls, v: str) -> str:
        hostname = v.strip().lower()
        if not re.match(HOSTNAME_PATTERN, hostname):
            raise ValueError("Format de domaine invalide")
        return hostname


class AppView(BaseModel):
    """Application telle que listée : variables déchiffrées + statut live du superviseur"""
    id: int
    name: str
    display_name: str
    path: str
    start_command: str
    port: Optional[int]
    process_name: str
    status: str
    deploy_method: str
    git_url: Optional[str] = None
    git_branch: Optional[str] = None
    last_commit: Optional[str] = None
    last_deployed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    env_vars: Dict[str, str] = {}
    process_status: Optional[str] = None
    pid: Optional[int] = None
    restarts: int = 0

    model_config = ConfigDict(from_attributes=True)


class DeploymentView(BaseModel):
    id: int
    app_id: int
    version: Optional[str]
    deployed_at: datetime
    status: str
    notes: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class DeleteResult(BaseModel):
    deleted: bool = True
    deferred: Optional[str] = None


def validate_env_vars(env_vars: Dict[str, str]) -> Dict[str, str]:
    for key, value in env_vars.items():
        if not key or not key.strip() or "=" in key or "\n" in key:
            raise ValueError(f"Nom de variable invalide: {key!r}")
        if "\n" in value:
            raise ValueError(f"La variable {key} contient un retour à la ligne")
    return {key.strip(): value for key, value in env_vars.items()}
