"""Shell command execution with optional line streaming and cancellation."""

import logging
import os
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..errors import OperationCancelled


logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of one shell command."""
    exit_code: int
    stdout: List[str] = field(default_factory=list)
    stderr: List[str] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return self.exit_code == 0

    @property
    def out(self) -> str:
        return "\n".join(self.stdout)

    @property
    def err(self) -> str:
        return "\n".join(self.stderr)


class ShellExecutor:
    """Runs commands through ``<shell> -c <command>``.

    With ``shell="su"`` every command runs with root privileges on a rooted
    device, which is what the planner, restic and the package installer need.
    """

    def __init__(self, shell: str = "sh", timeout: Optional[int] = None):
        self.shell = shell
        self.timeout = timeout

    def _argv(self, command: str) -> List[str]:
        return [self.shell, "-c", command]

    def run(self, command: str, timeout: Optional[int] = None,
            cancel_event: Optional[threading.Event] = None) -> CommandResult:
        """Run a command to completion and capture its output.

        With a ``cancel_event`` the command runs in its own process group
        and is killed when the event is set (see ``stream``).
        """
        if cancel_event is not None:
            return self.stream(command, lambda line: None, cancel_event)

        logger.debug(f"Running: {command}")
        try:
            completed = subprocess.run(
                self._argv(command),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                universal_newlines=True,
                timeout=timeout or self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Command timed out: {command[:120]}")
            return CommandResult(exit_code=-1, stderr=["Command timed out"])
        except OSError as e:
            logger.error(f"Failed to start shell {self.shell!r}: {e}")
            return CommandResult(exit_code=-1, stderr=[str(e)])

        return CommandResult(
            exit_code=completed.returncode,
            stdout=completed.stdout.splitlines(),
            stderr=completed.stderr.splitlines(),
        )

    def succeeds(self, command: str) -> bool:
        return self.run(command).is_success

    def stream(self, command: str, on_line: Callable[[str], None],
               cancel_event: Optional[threading.Event] = None) -> CommandResult:
        """Run a command, handing each stdout line to ``on_line`` as it arrives.

        Setting ``cancel_event`` kills the whole process group and raises
        OperationCancelled once the process is gone.
        """
        logger.debug(f"Streaming: {command}")
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled()
        try:
            process = subprocess.Popen(
                self._argv(command),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                universal_newlines=True,
                bufsize=1,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Failed to start shell {self.shell!r}: {e}")
            return CommandResult(exit_code=-1, stderr=[str(e)])

        stderr_lines: List[str] = []
        stdout_lines: List[str] = []

        def drain_stderr():
            for err_line in process.stderr:
                stderr_lines.append(err_line.rstrip("\n"))

        stderr_thread = threading.Thread(target=drain_stderr, daemon=True)
        stderr_thread.start()

        finished = threading.Event()
        watcher = None
        if cancel_event is not None:
            def watch_cancel():
                while not finished.is_set():
                    if cancel_event.wait(0.1):
                        self._kill(process)
                        return

            watcher = threading.Thread(target=watch_cancel, daemon=True)
            watcher.start()

        try:
            for line in process.stdout:
                line = line.rstrip("\n")
                stdout_lines.append(line)
                if cancel_event is not None and cancel_event.is_set():
                    continue
                on_line(line)
            exit_code = process.wait()
        except BaseException:
            self._kill(process)
            process.wait()
            raise
        finally:
            finished.set()
            stderr_thread.join(timeout=5)
            if watcher is not None:
                watcher.join(timeout=5)
            process.stdout.close()
            process.stderr.close()

        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled()

        return CommandResult(exit_code=exit_code, stdout=stdout_lines, stderr=stderr_lines)

    @staticmethod
    def _kill(process: subprocess.Popen):
        if process.poll() is not None:
            return
        logger.info(f"Killing process group {process.pid}")
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            process.kill()
