import logging
import sys
from typing import Optional


def setup_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """
    Configure le logging pour l'application

    Args:
        level: Niveau de log (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_string: Format personnalisé pour les logs
        log_file: Fichier de log optionnel
    """
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(format_string)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Le parsing des sorties pm2 est bavard en DEBUG
    logging.getLogger("appdeck.external").setLevel(max(log_level, logging.INFO))
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
