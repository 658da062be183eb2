"""Common utilities shared by the broker's deployment core."""

import logging
import subprocess
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

# Prefix used for every broker log line
LOG_PREFIX = 'on-demand-service-broker'

# Accepted wherever an operation takes a request-scoped logger
Log = Union[logging.Logger, logging.LoggerAdapter]


class RequestLoggerAdapter(logging.LoggerAdapter):
    """Prefix log lines with the broker name and a request identifier."""

    def process(self, msg, kwargs):
        request_id = self.extra.get('request_id') if self.extra else None
        if request_id:
            return f"[{LOG_PREFIX}] [{request_id}] {msg}", kwargs
        return f"[{LOG_PREFIX}] {msg}", kwargs


def request_logger(request_id: Optional[str] = None, name: str = LOG_PREFIX) -> RequestLoggerAdapter:
    """Build a logger for one broker request or errand run.

    Args:
        request_id: Correlation id added to every line (omitted if None)
        name: Underlying logger name

    Returns:
        LoggerAdapter accepted as the ``log`` argument of deployer operations
    """
    return RequestLoggerAdapter(logging.getLogger(name), {'request_id': request_id})


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: int = 600,
    capture: bool = True,
    env: Optional[dict] = None
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    logger.debug(f"Running: {cmd[0]} {cmd[1] if len(cmd) > 1 else ''}".rstrip())
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=env,
            check=False  # Callers map return codes to errors
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except OSError as e:
        return -1, '', str(e)
