import logging
import subprocess
from pathlib import Path

COLLECTOR_VERSION = "1.0.0"

logger = logging.getLogger(__name__)


def get_version() -> str:
    """
    Version string stamped into every match record.

    Appends the git short hash when running from a checkout so records from
    development builds can be told apart.
    """
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            cwd=Path(__file__).resolve().parent,
            capture_output=True,
            text=True,
            check=True,
            timeout=1
        )
        git_hash = result.stdout.strip()
        return f"{COLLECTOR_VERSION}+{git_hash}" if git_hash else COLLECTOR_VERSION
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"Could not get git version: {e}")
        return COLLECTOR_VERSION
