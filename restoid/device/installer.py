"""Package installer sessions: create, write splits, then commit or abandon."""

import logging
import os
import shlex
from typing import List

from ..engine.executor import ShellExecutor
from ..errors import CommitFailed, SessionCreateFailed, SplitWriteFailed


logger = logging.getLogger(__name__)


class InstallSessionManager:
    """Installs one app's APK splits through `pm install-*` session commands."""

    def __init__(self, executor: ShellExecutor):
        self.executor = executor

    def create_session(self, allow_downgrade: bool = False) -> str:
        flags = "-r -d" if allow_downgrade else "-r"
        result = self.executor.run(f"pm install-create {flags}")
        session_id = None
        if result.is_success and result.stdout:
            # "Success: created install session [1234]"
            line = result.stdout[0]
            if "[" in line and "]" in line:
                session_id = line.rsplit("[", 1)[1].split("]", 1)[0].strip()
        if not session_id:
            raise SessionCreateFailed("Failed to create install session.")
        logger.debug(f"Created install session {session_id}")
        return session_id

    def write_split(self, session_id: str, index: int, apk_file: str):
        size = os.path.getsize(apk_file)
        name = f"{index}_{os.path.basename(apk_file)}"
        command = (f"pm install-write -S {size} {session_id} "
                   f"{shlex.quote(name)} {shlex.quote(apk_file)}")
        result = self.executor.run(command)
        if not result.is_success:
            raise SplitWriteFailed(f"Failed to write split {name}: {result.err}")

    def abandon(self, session_id: str):
        result = self.executor.run(f"pm install-abandon {session_id}")
        if not result.is_success:
            logger.warning(f"Failed to abandon install session {session_id}: {result.err}")

    def commit(self, session_id: str):
        """Commit a session; the installer may exit 0 while reporting failure text."""
        result = self.executor.run(f"pm install-commit {session_id}")
        if not result.is_success or not any("Success" in line for line in result.stdout):
            detail = " ".join(result.stderr) or " ".join(result.stdout)
            raise CommitFailed(f"Install commit failed: {detail}")

    def install(self, apk_files: List[str], allow_downgrade: bool = False):
        """Install all splits in one session, abandoning it on the first write failure."""
        session_id = self.create_session(allow_downgrade)
        for index, apk_file in enumerate(apk_files):
            try:
                self.write_split(session_id, index, apk_file)
            except SplitWriteFailed as e:
                logger.warning(f"Abandoning install session {session_id}: {e}")
                self.abandon(session_id)
                raise
            except OSError as e:
                logger.warning(f"Abandoning install session {session_id}: {e}")
                self.abandon(session_id)
                raise SplitWriteFailed(f"Failed to read split {apk_file}: {e}") from e
        self.commit(session_id)
