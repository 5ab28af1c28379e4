"""
Collection of container logs for failure diagnostics.
"""
import logging
import os
from typing import Optional

from ..exceptions import log_tail

logger = logging.getLogger(__name__)


class LogAggregator:
    """
    Captures the logs of failed containers, logs their tail and optionally
    keeps the full text on disk.
    """
    def __init__(self, log_dir: Optional[str] = None, tail_lines: int = 50):
        """
        Initializes the log aggregator.

        :param log_dir: Directory to write <service>.log files to; None keeps logs in memory only.
        :param tail_lines: Number of lines to echo into the log on failure.
        """
        self.log_dir = log_dir
        self.tail_lines = tail_lines

    def capture(self, handle) -> str:
        """
        Pulls the full stdout/stderr of a container and reports its tail.

        :param handle: The ContainerHandle of the failed service.
        :return: The full log text ("" if unavailable).
        """
        return self.report(handle.name, handle.logs())

    def report(self, name: str, logs: str) -> str:
        """
        Reports already captured logs of a failed service.
        """
        if not logs:
            logger.warning("[%s] No container logs available", name)
            return ""
        logger.error("[%s] Last %d log lines:\n%s", name, self.tail_lines, log_tail(logs, self.tail_lines))
        if self.log_dir:
            self._write(name, logs)
        return logs

    def _write(self, name: str, logs: str):
        os.makedirs(self.log_dir, exist_ok=True)
        path = os.path.join(self.log_dir, f"{name}.log")
        with open(path, "w") as f:
            f.write(logs)
        logger.info("[%s] Full container log written to %s", name, path)
