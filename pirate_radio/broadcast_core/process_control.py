"""
Child process teardown shared by the decode and emission stages.

Both stages are spawned in their own process group (os.setsid) so that a
terminal Ctrl-C reaches only the station and so that terminating a stage also
terminates anything it forked.
"""

import logging
import os
import signal
import subprocess
from typing import Optional

logger = logging.getLogger(__name__)


def terminate_process_group(
    proc: Optional[subprocess.Popen],
    grace_period_seconds: float,
    label: str,
) -> Optional[int]:
    """
    Terminate a child process group, escalating to SIGKILL after the grace period.

    Safe to call repeatedly and from several threads at once.

    Args:
        proc: Process to terminate (None is ignored)
        grace_period_seconds: Time to wait for a clean exit after SIGTERM
        label: Log tag identifying the stage, e.g. "DECODER"

    Returns:
        The exit code of the process, or None if it could not be reaped
    """
    if proc is None:
        return None

    if proc.poll() is not None:
        logger.debug(f"[{label}] Process already exited (pid={proc.pid}, code={proc.returncode})")
        return proc.returncode

    try:
        pgid = os.getpgid(proc.pid)
        logger.debug(f"[{label}] SIGTERM sent (pid={proc.pid}, pgid={pgid})")
        os.killpg(pgid, signal.SIGTERM)

        try:
            return proc.wait(timeout=grace_period_seconds)
        except subprocess.TimeoutExpired:
            logger.warning(f"[{label}] SIGKILL sent (timeout exceeded, pid={proc.pid}, pgid={pgid})")
            os.killpg(pgid, signal.SIGKILL)
            try:
                return proc.wait(timeout=1)
            except subprocess.TimeoutExpired:
                logger.error(f"[{label}] Process group did not exit after SIGKILL (pid={proc.pid}, pgid={pgid})")
                return None
    except ProcessLookupError:
        # Process exited between poll() and killpg()
        logger.debug(f"[{label}] Process already exited (pid={proc.pid})")
        return proc.wait()
    except OSError as e:
        logger.error(f"[{label}] Error terminating process (pid={proc.pid}): {e}", exc_info=True)
        # Fallback: kill just the process (not the process group)
        try:
            if proc.poll() is None:
                proc.kill()
            return proc.wait(timeout=1)
        except (OSError, subprocess.TimeoutExpired):
            return None
