"""Root access probe."""

import logging

from ..engine.executor import ShellExecutor
from ..models.state import RootState


logger = logging.getLogger(__name__)


def check_root_access(executor: ShellExecutor) -> RootState:
    result = executor.run("id -u")
    if result.is_success and result.stdout and result.stdout[0].strip() == "0":
        return RootState.GRANTED
    logger.info(f"Root access denied for shell {executor.shell!r}")
    return RootState.DENIED
