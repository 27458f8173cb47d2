import logging
from collections import deque
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

OUT_LOG = "out.log"
ERROR_LOG = "error.log"
DEFAULT_TAIL_LINES = 100


def tail_file(path: Union[str, Path], lines: int = DEFAULT_TAIL_LINES) -> Optional[str]:
    """Les `lines` dernières lignes du fichier, None s'il n'existe pas encore"""
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return "".join(deque(f, maxlen=lines))
    except FileNotFoundError:
        return None


def truncate_file(path: Union[str, Path]) -> bool:
    """Vide un fichier de log existant; ne crée rien"""
    path = Path(path)
    if not path.is_file():
        return False
    with open(path, "w", encoding="utf-8"):
        pass
    logger.debug(f"Log {path} vidé")
    return True
