from .base import BaseModel
from .app import App, AppStatus, DeployMethod
from .deployment import Deployment, DeploymentStatus
from .domain import Domain

__all__ = ["BaseModel", "App", "AppStatus", "DeployMethod", "Deployment", "DeploymentStatus", "Domain"]
