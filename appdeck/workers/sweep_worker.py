import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from appdeck.core.filesystem import SweepResult
from appdeck.services.deployment_service import DeploymentService

logger = logging.getLogger(__name__)


class SweepWorker:
    """
    Finalise périodiquement les suppressions différées.

    Chaque entrée encore verrouillée est retentée au passage suivant, au plus
    `max_attempts` fois; au-delà elle est signalée puis ignorée jusqu'au
    prochain redémarrage du processus.
    """

    def __init__(self, service: DeploymentService, interval: float = 300.0,
                 max_attempts: Optional[int] = 100):
        self.service = service
        self.interval = interval
        self.max_attempts = max_attempts
        self.running = False
        self._task = None
        self.failures: Dict[str, int] = {}
        self.last_result: Dict[str, Any] = {"timestamp": None, "cleaned": 0, "still_locked": [], "abandoned": []}

    async def start(self):
        """Démarre la boucle de nettoyage"""
        if self.running:
            return

        self.running = True
        self._task = asyncio.current_task()
        logger.info(f"Worker de nettoyage démarré (intervalle {self.interval}s)")

        while self.running:
            try:
                await self.run_once()
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                logger.info("Worker de nettoyage annulé")
                break
            except Exception as e:
                logger.error(f"Erreur pendant le nettoyage différé: {e}")
                if self.running:
                    await asyncio.sleep(self.interval)

        logger.info("Worker de nettoyage arrêté")

    def stop(self):
        """Arrête le worker"""
        self.running = False

    def is_healthy(self) -> bool:
        return self.running and self._task is not None and not self._task.done()

    async def run_once(self) -> SweepResult:
        """Un passage de sweep, exécuté hors de la boucle d'événements"""
        result = await asyncio.to_thread(self.service.sweep_once, None, self._abandoned())
        self._track(result)
        self.last_result = {"timestamp": datetime.utcnow().isoformat(), **result.to_dict()}
        return result

    def _abandoned(self) -> set:
        if self.max_attempts is None:
            return set()
        return {path for path, count in self.failures.items() if count >= self.max_attempts}

    def _track(self, result: SweepResult):
        for path in result.still_locked:
            count = self.failures.get(path, 0) + 1
            self.failures[path] = count
            if self.max_attempts is not None and count >= self.max_attempts:
                logger.error(f"{path} toujours verrouillé après {count} tentatives, abandon jusqu'au redémarrage")
            else:
                logger.debug(f"{path} toujours verrouillé (tentative {count})")

        # Les entrées disparues (supprimées ou retirées à la main) sortent du suivi
        seen = set(result.still_locked) | set(result.abandoned)
        for path in list(self.failures):
            if path not in seen:
                del self.failures[path]
