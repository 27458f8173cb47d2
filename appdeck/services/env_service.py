import json
import logging
import os
import re
from pathlib import Path
from typing import Dict, Optional, Union

from appdeck.core.crypto import SecretCodec

logger = logging.getLogger(__name__)

ENV_FILENAME = ".env"
DEFAULT_PORT = 3000
RUNTIME_MODE = ("NODE_ENV", "production")

_NEEDS_QUOTES = re.compile(r"\s")
_QUOTE_CHARS = ('"', "'")


def build_effective_env(port: Optional[int], user_vars: Optional[Dict[str, str]] = None,
                        default_port: int = DEFAULT_PORT) -> Dict[str, str]:
    """Variables par défaut (PORT, NODE_ENV) fusionnées avec celles de l'utilisateur, qui priment"""
    env = {
        "PORT": str(port if port is not None else default_port),
        RUNTIME_MODE[0]: RUNTIME_MODE[1],
    }
    env.update(user_vars or {})
    return env


def _format_value(value: str) -> str:
    needs_quotes = bool(_NEEDS_QUOTES.search(value)) or value.startswith(_QUOTE_CHARS)
    escaped = value.replace('"', '\\"')
    return f'"{escaped}"' if needs_quotes else escaped


def format_env_file(env: Dict[str, str]) -> str:
    """Rend KEY=VALUE dans l'ordre d'insertion"""
    return "\n".join(f"{key}={_format_value(str(value))}" for key, value in env.items())


def parse_env_file(text: str) -> Dict[str, str]:
    """Parse un fichier .env; les lignes mal formées sont ignorées"""
    env: Dict[str, str] = {}
    for raw in text.split("\n"):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTE_CHARS:
            value = value[1:-1]
        env[key] = value.replace('\\"', '"')
    return env


def write_env_file(app_dir: Union[str, Path], env: Dict[str, str]) -> Path:
    """
    Écrit le .env en clair, lisible par le propriétaire seulement.

    Ne crée jamais le répertoire de l'application.
    """
    env_path = Path(app_dir) / ENV_FILENAME
    fd = os.open(env_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(format_env_file(env))
    # umask ou fichier préexistant : on force les permissions
    os.chmod(env_path, 0o600)
    return env_path


def encode_env_blob(codec: SecretCodec, user_vars: Optional[Dict[str, str]]) -> Optional[str]:
    """Blob chiffré pour le catalogue; None quand il n'y a aucune variable"""
    if not user_vars:
        return None
    return codec.seal(json.dumps(user_vars))


def decode_env_blob(codec: SecretCodec, blob: Optional[str], app_name: str = "?") -> Dict[str, str]:
    """Déchiffre le blob du catalogue; {} si corrompu, sans jamais lever"""
    if not blob:
        return {}
    plaintext = codec.open(blob)
    if codec.is_sealed(plaintext):
        logger.warning(f"Intégrité : variables de l'application '{app_name}' indéchiffrables, ignorées")
        return {}
    try:
        data = json.loads(plaintext)
    except ValueError:
        logger.warning(f"Intégrité : variables de l'application '{app_name}' illisibles, ignorées")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Intégrité : variables de l'application '{app_name}' mal formées, ignorées")
        return {}
    return {str(k): str(v) for k, v in data.items()}
