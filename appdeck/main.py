import argparse
import asyncio
import json
import logging

from appdeck.config import Settings
from appdeck.core.logging import setup_logging
from appdeck.dependencies import build_deployment_service, build_sweep_worker

logger = logging.getLogger(__name__)


async def serve(worker):
    """Fait tourner le worker jusqu'à interruption, puis l'arrête proprement"""
    task = asyncio.create_task(worker.start())
    try:
        await task
    finally:
        worker.stop()
        if not task.done():
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=10.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                logger.warning("Worker forcé à s'arrêter")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="appdeck", description="Nettoyage différé AppDeck")
    parser.add_argument("--once", action="store_true", help="un seul passage de sweep, puis sortie")
    args = parser.parse_args(argv)

    settings = Settings()
    setup_logging(level=settings.LOG_LEVEL, log_file=settings.LOG_FILE)
    logger.info(f"Démarrage de {settings.APP_NAME} (projets: {settings.PROJECTS_DIR})")

    service = build_deployment_service(settings)
    worker = build_sweep_worker(settings, service)
    try:
        if args.once:
            result = asyncio.run(worker.run_once())
            print(json.dumps(result.to_dict(), indent=2))
        else:
            asyncio.run(serve(worker))
    except KeyboardInterrupt:
        logger.info("Interruption reçue, arrêt")
    finally:
        service.store.dispose()


if __name__ == "__main__":
    main()
