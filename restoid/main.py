"""Main CLI entry point for restoid."""

import argparse
import getpass
import json
import logging
import os
import sys
from typing import Any, Dict

from .config.settings import Config
from .device.root import check_root_access
from .models.app import BackupTypeSet
from .models.state import AddRepositoryStatus
from .operations.backup import BackupOperation
from .operations.maintenance import MaintenanceOperation, MaintenanceOptions
from .operations.overview import SnapshotOverview
from .operations.pipeline import Operation, OperationPipeline
from .operations.restore import RestoreOperation
from .operations.snapshots import forget_snapshot
from .services import Services, build_services
from .utils.logger import setup_logging
from .utils.progress import ProgressReporter
from .workers.operation_worker import OperationWorker


logger = logging.getLogger(__name__)


def print_json_output(data: Dict[str, Any]):
    """Print formatted JSON output."""
    print(json.dumps(data, indent=2))


def fail(operation: str, error: Exception):
    logger.error(f"{operation} failed: {error}")
    print_json_output({
        "Operation": operation,
        "Status": "Failed",
        "Error": str(error)
    })
    sys.exit(1)


def type_set(value: str) -> BackupTypeSet:
    """argparse type for a comma separated list of backup types."""
    names = [name.strip() for name in value.split(",") if name.strip()]
    try:
        return BackupTypeSet.from_names(names)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def read_password(prompt: str = "Repository password: ") -> str:
    password = os.environ.get('RESTOID_PASSWORD')
    if password:
        return password
    return getpass.getpass(prompt)


def load_services() -> Services:
    services = build_services(Config())
    services.engine.check_status()
    return services


def run_operation(operation: Operation, label: str) -> Dict[str, Any]:
    """Run an operation on the background worker while rendering its progress."""
    pipeline = OperationPipeline()
    worker = OperationWorker(pipeline)
    try:
        with ProgressReporter(pipeline.progress, label):
            future = worker.start(operation)
            try:
                future.result()
            except KeyboardInterrupt:
                worker.cancel()
                future.result()
    finally:
        worker.shutdown()

    progress = pipeline.progress.value
    output = {
        "Operation": operation.name,
        "Status": "Success" if progress.succeeded else "Failed",
        "Summary": progress.final_summary,
    }
    if progress.error:
        output["Error"] = progress.error
    if progress.snapshot_id:
        output["Snapshot"] = progress.snapshot_id
    output["Progress"] = progress.to_dict()
    print_json_output(output)
    return output


def handle_status(args):
    """Handle status command."""
    try:
        services = load_services()
        repo = services.repositories.selected
        print_json_output({
            "Operation": "Status",
            "Restic": services.engine.state.value.describe(),
            "Root": check_root_access(services.executor).value,
            "Repository": repo.path if repo else None,
            "RepositoryId": repo.id if repo else None,
            "HasPassword": services.repositories.has_password(repo.path) if repo else False,
        })
    except Exception as e:
        fail("Status", e)


def handle_repo(args):
    """Handle repo sub-commands."""
    try:
        services = load_services()
        repositories = services.repositories

        if args.repo_command == 'add':
            state = repositories.add_repository(args.path, read_password(), args.save_password)
            if state.status is not AddRepositoryStatus.SUCCESS:
                raise RuntimeError(state.message)
        elif args.repo_command == 'select':
            repositories.select(os.path.abspath(os.path.expanduser(args.path)))
        elif args.repo_command == 'remove':
            if not repositories.remove_repository(os.path.abspath(os.path.expanduser(args.path))):
                raise ValueError(f"Unknown repository: {args.path}")
        elif args.repo_command == 'passwd':
            repo = repositories.selected
            if repo is None:
                raise ValueError("No backup repository selected.")
            old_password = repositories.get_password(repo.path) or getpass.getpass("Current password: ")
            new_password = getpass.getpass("New password: ")
            services.engine.change_password(repo.path, old_password, new_password)
            if repositories.passwords.has_stored(repo.path):
                repositories.passwords.save(repo.path, new_password)
            else:
                repositories.passwords.save_temporary(repo.path, new_password)

        selected = repositories.selected_repository.value
        print_json_output({
            "Operation": "Repositories",
            "Selected": selected,
            "Repositories": [
                dict(r.to_dict(), HasPassword=repositories.has_password(r.path))
                for r in repositories.repositories.value
            ],
        })
    except Exception as e:
        fail("Repositories", e)


def handle_apps(args):
    """Handle apps command."""
    try:
        services = load_services()
        apps = services.inspector.list_user_apps()
        print_json_output({
            "Operation": "Apps",
            "Apps": [
                {"Package": a.package_name, "VersionName": a.version_name, "VersionCode": a.version_code}
                for a in apps
            ],
        })
    except Exception as e:
        fail("Apps", e)


def handle_snapshots(args):
    """Handle snapshots command."""
    try:
        services = load_services()
        overview = SnapshotOverview(services.repositories, services.engine, services.metadata_store)
        try:
            state = overview.load()
        finally:
            overview.close()
        if state.error:
            raise RuntimeError(state.error)

        if args.all:
            snapshots = [s.to_dict() for s in services.engine.snapshots.value or []]
        else:
            snapshots = [s.to_dict() for s in state.snapshots]
        print_json_output({
            "Operation": "Snapshots",
            "Repository": state.selected_repository,
            "Snapshots": snapshots,
        })
    except Exception as e:
        fail("Snapshots", e)


def handle_show(args):
    """Handle show command."""
    try:
        services = load_services()
        snapshot, details = services.details_loader.load(args.snapshot)
        print_json_output({
            "Operation": "Show",
            "Snapshot": snapshot.to_dict(),
            "Apps": [d.to_dict() for d in details],
        })
    except Exception as e:
        fail("Show", e)


def handle_backup(args):
    """Handle backup command."""
    try:
        services = load_services()
        config = services.config

        types = args.types or config.backup_types
        config.backup_types = types
        config.save()

        apps = services.inspector.list_user_apps()
        if args.packages:
            apps = [a for a in apps if a.package_name in args.packages]
            missing = set(args.packages) - {a.package_name for a in apps}
            for package_name in sorted(missing):
                logger.warning(f"Package {package_name} is not installed, skipping")

        output = run_operation(BackupOperation(services, apps, types), "Backup")
        if output["Status"] != "Success":
            sys.exit(1)
    except Exception as e:
        fail("Backup", e)


def handle_restore(args):
    """Handle restore command."""
    try:
        services = load_services()
        config = services.config

        types = args.types or config.restore_types
        allow_downgrade = args.allow_downgrade or config.allow_downgrade
        config.restore_types = types
        config.allow_downgrade = allow_downgrade
        config.save()

        snapshot, details = services.details_loader.load(args.snapshot)
        if args.packages:
            for detail in details:
                detail.app.is_selected = detail.package_name in args.packages

        operation = RestoreOperation(services, snapshot, details, types, allow_downgrade)
        output = run_operation(operation, "Restore")
        if output["Status"] != "Success":
            sys.exit(1)
    except Exception as e:
        fail("Restore", e)


def handle_maintenance(args):
    """Handle maintenance command."""
    try:
        services = load_services()
        config = services.config

        settings = config.maintenance
        requested = {task: getattr(args, task) for task in ('unlock', 'forget', 'prune', 'check')}
        if any(requested.values()):
            settings.update(requested)
        if args.read_data:
            settings['read_data'] = True
        for key in ('keep_last', 'keep_daily', 'keep_weekly', 'keep_monthly'):
            if getattr(args, key) is not None:
                settings[key] = getattr(args, key)
        config.maintenance = settings
        config.save()

        operation = MaintenanceOperation(services, MaintenanceOptions.from_dict(settings))
        output = run_operation(operation, "Maintenance")
        if output["Status"] != "Success":
            sys.exit(1)
    except Exception as e:
        fail("Maintenance", e)


def handle_forget(args):
    """Handle forget command."""
    try:
        services = load_services()
        repositories = services.repositories
        repo = repositories.selected
        if repo is None:
            raise ValueError("No backup repository selected.")
        password = repositories.get_password(repo.path)
        if password is None:
            raise ValueError("Password for repository not found.")

        snapshot, _ = services.details_loader.load(args.snapshot)
        warning = forget_snapshot(services.engine, services.metadata_store, repo, password, snapshot.id)

        output = {
            "Operation": "Forget",
            "Snapshot": snapshot.id,
            "Status": "Success",
        }
        if warning:
            output["Warning"] = warning
        print_json_output(output)
    except Exception as e:
        fail("Forget", e)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='restoid',
        description='Backs up and restores Android apps and their data with restic.'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default='INFO',
        help='Set logging level (default: INFO)'
    )
    parser.add_argument(
        '--log-file',
        help='Log to file in addition to console'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    status_parser = subparsers.add_parser('status', help='Show restic, root and repository state')
    status_parser.set_defaults(func=handle_status)

    # Repository bookkeeping
    repo_parser = subparsers.add_parser('repo', help='Manage backup repositories')
    repo_subparsers = repo_parser.add_subparsers(dest='repo_command')
    repo_subparsers.add_parser('list', help='List known repositories')
    add_parser = repo_subparsers.add_parser(
        'add',
        help='Open or initialize a repository',
        description='Opens an existing restic repository, or initializes a new one at PATH.'
    )
    add_parser.add_argument('path', help='Repository directory')
    add_parser.add_argument(
        '--save-password',
        action='store_true',
        help='Store the password on disk instead of keeping it for this process only'
    )
    select_parser = repo_subparsers.add_parser('select', help='Select the repository to operate on')
    select_parser.add_argument('path', help='Repository directory')
    remove_parser = repo_subparsers.add_parser('remove', help='Forget a repository (its data is kept)')
    remove_parser.add_argument('path', help='Repository directory')
    repo_subparsers.add_parser('passwd', help='Change the password of the selected repository')
    repo_parser.set_defaults(func=handle_repo, repo_command='list')

    apps_parser = subparsers.add_parser('apps', help='List installed third-party apps')
    apps_parser.set_defaults(func=handle_apps)

    snapshots_parser = subparsers.add_parser('snapshots', help='List backup snapshots')
    snapshots_parser.add_argument(
        '--all',
        action='store_true',
        help='Include snapshots not created by restoid'
    )
    snapshots_parser.set_defaults(func=handle_snapshots)

    show_parser = subparsers.add_parser('show', help='Show the apps held by a snapshot')
    show_parser.add_argument('snapshot', help='Snapshot id or unique prefix')
    show_parser.set_defaults(func=handle_show)

    # Backup command
    backup_parser = subparsers.add_parser(
        'backup',
        help='Back up apps',
        description='Backs up the selected apps (default: all installed user apps) into the selected repository.'
    )
    backup_parser.add_argument('packages', nargs='*', help='Packages to back up')
    backup_parser.add_argument(
        '--types',
        type=type_set,
        help='Comma separated backup types: apk,data,user_de,external_data,obb,media '
             '(default: last used)'
    )
    backup_parser.set_defaults(func=handle_backup)

    # Restore command
    restore_parser = subparsers.add_parser(
        'restore',
        help='Restore apps from a snapshot',
        description='Restores apps (default: every app in the snapshot) from a snapshot of the selected repository.'
    )
    restore_parser.add_argument('snapshot', help='Snapshot id or unique prefix')
    restore_parser.add_argument('packages', nargs='*', help='Packages to restore')
    restore_parser.add_argument(
        '--types',
        type=type_set,
        help='Comma separated types to restore (default: last used)'
    )
    restore_parser.add_argument(
        '--allow-downgrade',
        action='store_true',
        help='Restore apps whose backed up version is older than the installed one'
    )
    restore_parser.set_defaults(func=handle_restore)

    # Maintenance command
    maintenance_parser = subparsers.add_parser(
        'maintenance',
        help='Run repository maintenance',
        description='Runs the selected maintenance tasks in order: unlock, forget, prune, check. '
                    'Without task flags the last used selection is run.'
    )
    maintenance_parser.add_argument('--unlock', action='store_true', help='Remove stale locks')
    maintenance_parser.add_argument('--forget', action='store_true', help='Apply the keep policy to backups')
    maintenance_parser.add_argument('--prune', action='store_true', help='Remove unreferenced data')
    maintenance_parser.add_argument('--check', action='store_true', help='Check repository integrity')
    maintenance_parser.add_argument('--read-data', action='store_true', help='Also verify pack data when checking')
    for key in ('last', 'daily', 'weekly', 'monthly'):
        maintenance_parser.add_argument(
            f'--keep-{key}',
            dest=f'keep_{key}',
            type=int,
            help=f'Forget policy: number of {key} snapshots to keep'
        )
    maintenance_parser.set_defaults(func=handle_maintenance)

    forget_parser = subparsers.add_parser('forget', help='Forget one snapshot and its metadata')
    forget_parser.add_argument('snapshot', help='Snapshot id or unique prefix')
    forget_parser.set_defaults(func=handle_forget)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.log_level, args.log_file)

    args.func(args)


if __name__ == '__main__':
    main()
