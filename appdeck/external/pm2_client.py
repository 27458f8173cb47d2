import json
import logging
import os
import shlex
import subprocess
from typing import Dict, List, Optional

from appdeck.core.exceptions import SupervisorError
from appdeck.external.supervisor import ProcessInfo, ProcessSpec, ProcessSupervisor

logger = logging.getLogger(__name__)


class Pm2Supervisor(ProcessSupervisor):
    """Adaptateur vers la CLI pm2"""

    def __init__(self, binary: str = "pm2", timeout: float = 60.0, max_memory_restart: str = "500M"):
        self.binary = binary
        self.timeout = timeout
        self.max_memory_restart = max_memory_restart

    def _run(self, args: List[str], env: Optional[Dict[str, str]] = None) -> str:
        command = [self.binary] + args
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env={**os.environ, **env} if env else None,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SupervisorError(f"Commande pm2 impossible ({' '.join(args[:2])}): {e}") from e

        if completed.returncode != 0:
            raise SupervisorError(
                f"pm2 {args[0]} a échoué: {completed.stderr.strip() or completed.stdout.strip()}",
                {"returncode": completed.returncode}
            )
        return completed.stdout

    def start(self, spec: ProcessSpec) -> None:
        args = [
            "start", spec.script,
            "--name", spec.name,
            "--cwd", spec.cwd,
            "--max-memory-restart", self.max_memory_restart,
            "--min-uptime", "10000",
            "--max-restarts", "15",
            "--merge-logs",
            "--time",
        ]
        if spec.interpreter:
            args += ["--interpreter", spec.interpreter]
        if spec.out_file:
            args += ["--output", spec.out_file]
        if spec.error_file:
            args += ["--error", spec.error_file]
        if spec.args:
            args += ["--"] + shlex.split(spec.args)

        logger.info(f"Démarrage du processus pm2 {spec.name} ({spec.script})")
        self._run(args, env=spec.env)

    def stop(self, name: str) -> None:
        # delete plutôt que stop : le prochain start repart avec le nouvel environnement
        try:
            self._run(["delete", name])
        except SupervisorError as e:
            if "not found" in e.message.lower():
                return
            raise
        logger.info(f"Processus pm2 {name} arrêté")

    def list_processes(self) -> List[ProcessInfo]:
        output = self._run(["jlist"])
        try:
            raw = json.loads(output or "[]")
        except ValueError as e:
            raise SupervisorError(f"Sortie pm2 jlist illisible: {e}") from e
        return [self._to_info(proc) for proc in raw]

    def describe(self, name: str) -> Optional[ProcessInfo]:
        for info in self.list_processes():
            if info.name == name:
                return info
        return None

    @staticmethod
    def _to_info(proc: Dict) -> ProcessInfo:
        pm2_env = proc.get("pm2_env") or {}
        monit = proc.get("monit") or {}
        return ProcessInfo(
            name=proc.get("name", ""),
            status=pm2_env.get("status", "unknown"),
            pid=proc.get("pid"),
            restarts=pm2_env.get("restart_time", 0) or 0,
            uptime=pm2_env.get("pm_uptime"),
            cpu=monit.get("cpu", 0) or 0,
            memory=monit.get("memory", 0) or 0,
        )
