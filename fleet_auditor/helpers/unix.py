import logging
import subprocess

logger = logging.getLogger(__name__)

# Shell conventions, so callers can tell "missing tool" from "tool said no".
RC_TIMEOUT = 124
RC_NOT_FOUND = 127


def run_cmd(cmd: list[str], timeout_s: float = 10) -> tuple[int, str, str]:
    """
    Run a command and return:
      - return code (rc)
      - stdout (string)
      - stderr (string)

    A missing binary returns rc 127 and a timeout returns rc 124 instead of
    raising, so fallback chains can move on to the next command.
    """
    try:
        p = subprocess.run(
            cmd,
            text=True,              # decode output to str instead of bytes
            capture_output=True,    # capture stdout/stderr
            timeout=timeout_s
        )
    except FileNotFoundError as e:
        logger.debug("command not found: %s", cmd[0])
        return RC_NOT_FOUND, "", f"{type(e).__name__}: {e}"
    except subprocess.TimeoutExpired:
        logger.debug("command timed out after %ss: %s", timeout_s, " ".join(cmd))
        return RC_TIMEOUT, "", f"timed out after {timeout_s}s"

    # Normalise None → "" and strip whitespace
    return p.returncode, (p.stdout or "").strip(), (p.stderr or "").strip()


def get_evidence(cmd, rc, stdout, stderr):

    return {
        "cmd": " ".join(cmd) if isinstance(cmd, (list, tuple)) else cmd,
        "rc": rc,
        "stdout": stdout,
        "stderr": stderr
    }
