"""Driver for the restic command line."""

import json
import logging
import os
import shlex
import tempfile
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from ..config.settings import Config
from ..errors import EngineCommandError, EngineNotInstalled, OperationCancelled
from ..models.snapshot import SnapshotInfo, TAG_BACKUP, TAG_METADATA, TAG_PRODUCT
from ..models.state import EngineState
from ..utils.observable import Observable
from .executor import CommandResult, ShellExecutor


logger = logging.getLogger(__name__)

BACKUP_TAGS = (TAG_PRODUCT, TAG_BACKUP)
METADATA_TAGS = (TAG_PRODUCT, TAG_METADATA)
METADATA_SNAPSHOTS_TO_KEEP = 5


def _q(value: str) -> str:
    return shlex.quote(str(value))


def _tag_flags(tags) -> str:
    return " ".join(f"--tag {_q(tag)}" for tag in tags)


def backup_args(file_list: str, tags, excludes: List[str]) -> str:
    """Arguments of the main backup command."""
    args = f"backup --files-from {_q(file_list)} --json --verbose=2 {_tag_flags(tags)}"
    for pattern in excludes:
        args += f" --exclude {_q(pattern)}"
    return args


def restore_args(snapshot_id: str, target: str, includes: List[str]) -> str:
    """Arguments of a streamed restore into ``target``."""
    args = (f"restore {_q(snapshot_id)} --target {_q(target)} "
            f"--exclude-xattr {_q('security.selinux')}")
    for path in includes:
        args += f" --include {_q(path)}"
    return args + " --json"


def parse_snapshots(output: str) -> List[SnapshotInfo]:
    """Parse `snapshots --json` output (a JSON array, or one object per line)."""
    text = output.strip()
    if not text:
        return []

    try:
        data = json.loads(text)
        items = data if isinstance(data, list) else [data]
    except (ValueError, RecursionError):
        items = []
        for line in text.splitlines():
            line = line.strip()
            if not line.startswith("{"):
                continue
            try:
                items.append(json.loads(line))
            except (ValueError, RecursionError):
                continue

    snapshots = []
    for item in items:
        if isinstance(item, dict):
            snapshot = SnapshotInfo.from_dict(item)
            if snapshot:
                snapshots.append(snapshot)
    return snapshots


class ResticEngine:
    """Runs restic against a repository.

    The repository password is written to a private temporary file and
    passed through ``RESTIC_PASSWORD_FILE``; it never appears in a command
    line.
    """

    def __init__(self, config: Config, executor: ShellExecutor):
        self.config = config
        self.executor = executor
        self.state = Observable(EngineState.idle())
        self.snapshots = Observable(None)

    # Binary state

    def check_status(self) -> EngineState:
        """Probe the configured binary with `restic version`."""
        binary = self.config.restic_binary
        result = self.executor.run(f"{_q(binary)} version")
        if result.is_success and result.stdout:
            state = EngineState.installed(binary, result.stdout[0].strip() or "Unknown version")
        elif result.exit_code == 127:
            state = EngineState.not_installed()
        else:
            state = EngineState.error(result.err or "Binary corrupted or invalid")
        self.state.set(state)
        logger.info(f"Restic state: {state.describe()}")
        return state

    def _binary(self) -> str:
        state = self.state.value
        if not state.is_installed:
            raise EngineNotInstalled()
        return state.path

    # Command plumbing

    @contextmanager
    def password_file(self, password: str, prefix: str = "restic-pass") -> Iterator[str]:
        """A 0600 temporary file holding ``password``, removed on exit."""
        fd, path = tempfile.mkstemp(prefix=prefix, suffix=".tmp", dir=self.config.cache_dir)
        try:
            with os.fdopen(fd, 'w') as f:
                f.write(password)
            yield path
        finally:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass

    def build_command(self, repo_path: str, password_path: str, args: str,
                      env: Optional[Dict[str, str]] = None) -> str:
        prefix = "".join(f"{key}={_q(value)} " for key, value in (env or {}).items())
        return (f"{prefix}RESTIC_PASSWORD_FILE={_q(password_path)} "
                f"{_q(self._binary())} -r {_q(repo_path)} {args}")

    def execute(self, repo_path: str, password: str, args: str,
                failure_message: str = "Restic command failed",
                env: Optional[Dict[str, str]] = None,
                cancel_event: Optional[threading.Event] = None) -> str:
        """Run a restic command and return its stdout, raising EngineCommandError on failure.

        Setting ``cancel_event`` kills the command and raises OperationCancelled.
        """
        logger.debug(f"restic {args.split(' ', 1)[0]}")
        with self.password_file(password) as password_path:
            command = self.build_command(repo_path, password_path, args, env)
            result = self.executor.run(command, cancel_event=cancel_event)
        return self._check(result, failure_message)

    def stream(self, repo_path: str, password: str, args: str,
               on_line: Callable[[str], None],
               cancel_event: Optional[threading.Event] = None,
               env: Optional[Dict[str, str]] = None) -> CommandResult:
        """Run a restic command streaming stdout lines; the caller checks the result."""
        with self.password_file(password) as password_path:
            command = self.build_command(repo_path, password_path, args, env)
            return self.executor.stream(command, on_line, cancel_event)

    @staticmethod
    def _check(result: CommandResult, failure_message: str) -> str:
        if result.is_success:
            return result.out
        raise EngineCommandError(result.err or failure_message,
                                 exit_code=result.exit_code, stderr=result.err)

    # Repository level commands

    def init(self, repo_path: str, password: str) -> str:
        return self.execute(repo_path, password, "init", "Failed to initialize repository")

    def verify_password(self, repo_path: str, password: str) -> bool:
        try:
            self.execute(repo_path, password, "list keys --no-lock", "Invalid password")
        except EngineCommandError:
            return False
        return True

    def get_config(self, repo_path: str, password: str) -> Dict:
        """The repository config; its ``id`` keys the local metadata store."""
        output = self.execute(repo_path, password, "cat config --json", "Failed to get repo config")
        try:
            config = json.loads(output)
        except ValueError as e:
            raise EngineCommandError(f"Failed to parse repo config: {e}")
        if not isinstance(config, dict) or not config.get("id"):
            raise EngineCommandError("Repository config has no id")
        return config

    def get_snapshots(self, repo_path: str, password: str) -> List[SnapshotInfo]:
        output = self.execute(repo_path, password, "snapshots --json", "Failed to load snapshots")
        snapshots = parse_snapshots(output)
        self.snapshots.set(snapshots)
        return snapshots

    def refresh_snapshots(self, repo_path: str, password: str) -> Optional[List[SnapshotInfo]]:
        """Reload the snapshot cache, logging instead of raising."""
        try:
            return self.get_snapshots(repo_path, password)
        except Exception as e:
            logger.warning(f"Failed to refresh snapshots: {e}")
            return None

    def clear_snapshots(self):
        self.snapshots.set(None)

    def restore(self, repo_path: str, password: str, snapshot_id: str, target: str,
                includes: Optional[List[str]] = None) -> str:
        args = f"restore {_q(snapshot_id)} --target {_q(target)}"
        for path in includes or []:
            args += f" --include {_q(path)}"
        return self.execute(repo_path, password, args, "Failed to restore snapshot")

    def unlock(self, repo_path: str, password: str,
               cancel_event: Optional[threading.Event] = None) -> str:
        return self.execute(repo_path, password, "unlock", "Failed to unlock repository",
                            cancel_event=cancel_event)

    def prune(self, repo_path: str, password: str,
              cancel_event: Optional[threading.Event] = None) -> str:
        return self.execute(repo_path, password, "prune", "Failed to prune repository",
                            cancel_event=cancel_event)

    def check(self, repo_path: str, password: str, read_data: bool = False,
              cancel_event: Optional[threading.Event] = None) -> str:
        args = "check --read-data" if read_data else "check"
        return self.execute(repo_path, password, args, "Failed to check repository",
                            cancel_event=cancel_event)

    def forget(self, repo_path: str, password: str, keep_last: int = 0, keep_daily: int = 0,
               keep_weekly: int = 0, keep_monthly: int = 0,
               cancel_event: Optional[threading.Event] = None) -> str:
        """Apply a keep policy to backup snapshots only; metadata snapshots are untouched."""
        policy = ""
        for flag, value in (("--keep-last", keep_last), ("--keep-daily", keep_daily),
                            ("--keep-weekly", keep_weekly), ("--keep-monthly", keep_monthly)):
            if value and value > 0:
                policy += f" {flag} {int(value)}"
        if not policy:
            raise EngineCommandError("No 'keep' policy was specified for the forget operation.")
        return self.execute(repo_path, password, f"forget{policy} {_tag_flags(BACKUP_TAGS)}",
                            "Failed to forget snapshots", cancel_event=cancel_event)

    def forget_snapshot(self, repo_path: str, password: str, snapshot_id: str) -> str:
        output = self.execute(repo_path, password, f"forget {_q(snapshot_id)}",
                              "Failed to delete snapshot")
        self.refresh_snapshots(repo_path, password)
        return output

    def forget_metadata_snapshots(self, repo_path: str, password: str,
                                  cancel_event: Optional[threading.Event] = None) -> str:
        return self.execute(
            repo_path, password,
            f"forget --keep-last {METADATA_SNAPSHOTS_TO_KEEP} {_tag_flags(METADATA_TAGS)}",
            "Failed to forget metadata snapshots",
            cancel_event=cancel_event,
        )

    def backup_metadata(self, repository_id: str, repo_path: str, password: str,
                        cancel_event: Optional[threading.Event] = None) -> Optional[str]:
        """Back up the local metadata store directory of one repository.

        Runs from the metadata root so the snapshot records the relative
        ``<repository_id>`` path. Returns a warning message instead of
        raising; the caller treats this step as best effort. Cancellation
        still raises OperationCancelled.
        """
        metadata_root = self.config.metadata_dir
        if not os.path.isdir(os.path.join(metadata_root, repository_id)):
            return None

        try:
            binary = self._binary()
            with self.password_file(password, prefix="restic-pass-meta") as password_path:
                command = (f"cd {_q(metadata_root)} && RESTIC_PASSWORD_FILE={_q(password_path)} "
                           f"{_q(binary)} -r {_q(repo_path)} backup {_q(repository_id)} --json "
                           f"{_tag_flags(METADATA_TAGS)}")
                result = self.executor.run(command, cancel_event=cancel_event)
        except OperationCancelled:
            raise
        except Exception as e:
            logger.error(f"Exception during metadata backup: {e}")
            return f"Metadata backup failed: {e}"

        if not result.is_success:
            logger.error(f"Metadata backup failed: {result.err}")
            return f"Metadata backup failed: {result.err or 'unknown error'}"

        try:
            self.forget_metadata_snapshots(repo_path, password, cancel_event)
            logger.debug("Forgot old metadata snapshots")
        except OperationCancelled:
            raise
        except Exception as e:
            logger.warning(f"Forgetting old metadata snapshots failed: {e}")
        return None

    def change_password(self, repo_path: str, old_password: str, new_password: str):
        binary = self._binary()
        with self.password_file(old_password, prefix="restic-old-pass") as old_path, \
                self.password_file(new_password, prefix="restic-new-pass") as new_path:
            command = (f"{_q(binary)} -r {_q(repo_path)} --password-file {_q(old_path)} "
                       f"key passwd --new-password-file {_q(new_path)}")
            result = self.executor.run(command)
        self._check(result, "Failed to change password")
