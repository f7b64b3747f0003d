"""Command-line front-end of rubac.

Options change the profile configuration; at most one command flag picks
what to do with the selected clients afterwards.
"""

import argparse
import logging
import os
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from rubac import __version__
from rubac.commands import (
    LIST_COMPACT,
    CommandContext,
    GenerationSearch,
    Restorer,
    SettingsLister,
    prune_generation,
    show_history,
)
from rubac.config import ConfigStore, UpdateOperation, normalize_include
from rubac.environment import RubacEnvironment, default_datadir, profile_name
from rubac.exceptions import (
    RECOVERABLE_ERRORS,
    ConfigError,
    InvalidOperationError,
    PreconditionError,
    RubacError,
)
from rubac.generations import GenerationTable, SelectResolver
from rubac.logging import (
    LoggingConfig,
    configure_logging,
    get_default_log_dir,
    get_default_log_filename,
    get_log_file,
)
from rubac.mail import Mailer, NotificationBuffer, batch_subject, disk_usage_report
from rubac.manifest import ManifestStore
from rubac.rsync import check_rsync_version
from rubac.run_controller import RunController, RunMode

LOG_NAME = "rubac"
INIT_MARKER = "rubac.init"
INIT_MARKER_MODE = 0o600


class Command(Enum):
    """Commands selectable on the command line."""

    RUN = "run"
    UPDATE = "update"
    SNAPSHOT = "snapshot"
    LIST = "list"
    HISTORY = "history"
    SEARCH = "search"
    PRUNE = "prune"
    RESTORE = "restore"
    VERSION = "version"
    CONFIGURE = "configure"


# Commands acting on generations need an initialized destination.
GENERATION_COMMANDS = frozenset(
    {
        Command.RUN,
        Command.UPDATE,
        Command.SNAPSHOT,
        Command.HISTORY,
        Command.SEARCH,
        Command.PRUNE,
        Command.RESTORE,
    },
)
# These never default to every configured client and mail their log.
NOTIFY_COMMANDS = frozenset(
    {Command.RUN, Command.UPDATE, Command.SNAPSHOT, Command.PRUNE, Command.RESTORE},
)
RSYNC_COMMANDS = frozenset({Command.RUN, Command.UPDATE, Command.SNAPSHOT, Command.RESTORE})


class CommandAction(argparse.Action):
    """Records a command flag, in order, and stores its value if it takes one."""

    def __init__(
        self,
        option_strings: list[str],
        dest: str,
        command: Command,
        append: bool = False,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("nargs", 0)
        super().__init__(option_strings, dest, **kwargs)
        self.command = command
        self.append = append

    def __call__(
        self,
        parser: argparse.ArgumentParser,
        namespace: argparse.Namespace,
        values: Any,
        option_string: str | None = None,
    ) -> None:
        """Record the command and its value."""
        commands = list(getattr(namespace, "commands", None) or [])
        commands.append(self.command)
        namespace.commands = commands
        if self.nargs == 0:
            return
        if self.append:
            items = list(getattr(namespace, self.dest, None) or [])
            items.append(values)
            setattr(namespace, self.dest, items)
        else:
            setattr(namespace, self.dest, values)


class RestoreAction(argparse.Action):
    """-R PATH restores a path; a bare -R restores what a search finds."""

    def __call__(
        self,
        parser: argparse.ArgumentParser,
        namespace: argparse.Namespace,
        values: Any,
        option_string: str | None = None,
    ) -> None:
        """Record a restore path or the request to restore search hits."""
        if values is None:
            namespace.search_restore = True
            return
        namespace.commands = [*(namespace.commands or []), Command.RESTORE]
        namespace.restore = [*(namespace.restore or []), values]


def non_negative_int(value: str) -> int:
    """Parse a retention depth."""
    try:
        number = int(value)
    except ValueError as e:
        error_msg = f"invalid number: {value!r}"
        raise argparse.ArgumentTypeError(error_msg) from e
    if number < 0:
        error_msg = f"number of incrementals must be greater than or equal to 0, got {number}"
        raise argparse.ArgumentTypeError(error_msg)
    return number


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="rubac",
        description="Generation based incremental backups with rsync.",
    )
    parser.set_defaults(commands=None, restore=None, search_restore=False)

    scope = parser.add_argument_group("profile and clients")
    scope.add_argument("-g", "--global", dest="global_scope", action="store_true", help="Apply includes, excludes, opts etc. to the global settings")
    scope.add_argument("-p", "--profile", help="Name of the backup profile (default is rubac)")
    scope.add_argument("-D", "--datadir", type=Path, help="Configuration directory (/etc/rubac for root, otherwise ~/.rubac)")
    scope.add_argument("-c", "--client", dest="clients", action="append", help="Client to back up, may be repeated")
    scope.add_argument("-a", "--address", help="Set the client host address (default is the client name)")
    scope.add_argument("-i", "--include", dest="includes", action="append", help="Include path, comma separate multiple paths")
    scope.add_argument("-x", "--exclude", dest="excludes", action="append", help="Exclude path, comma separate multiple paths")
    scope.add_argument("-o", "--opts", action="append", help="Extra rsync options")
    scope.add_argument("--delete", nargs="?", const="", action="append", metavar="CLIENT", help="Delete the given includes, excludes, opts, or the client configuration")
    scope.add_argument("-d", "--dest", help="Initialize and set the backup destination path")
    scope.add_argument("-I", "--incremental", type=non_negative_int, help="Number of incremental backups (default is 5)")
    scope.add_argument("-z", "--compress", action="store_true", help="Compress the file data during backup")

    logs = parser.add_argument_group("logging and notification")
    logs.add_argument("-L", "--logdir", help="Directory for logging (root default is /var/log/rubac, otherwise TMP/rubac)")
    logs.add_argument("--log", help="Name of the log file (default is <profile>.<date>.log)")
    logs.add_argument("-m", "--mail", help="Notification email, comma separated list")
    logs.add_argument("--smtp", help="SMTP server (default is localhost)")
    logs.add_argument("-q", "--quiet", action="store_true", help="Output as little as possible, overrides verbose")
    logs.add_argument("-V", "--verbose", action="store_true", help="Verbose output")
    logs.add_argument("--env-file", type=Path, help="Read RUBAC_* variables from this dotenv file")

    commands = parser.add_argument_group("commands")
    commands.add_argument("-l", "--list", dest="list_key", nargs="?", const="", choices=["", LIST_COMPACT], action=CommandAction, command=Command.LIST, help="List the settings of the profile")
    commands.add_argument("-r", "--run", action=CommandAction, command=Command.RUN, help="Run a backup")
    commands.add_argument("-u", "--update", action=CommandAction, command=Command.UPDATE, help="Update the newest backup in place")
    commands.add_argument("-s", "--snapshot", nargs=1, action=CommandAction, command=Command.SNAPSHOT, metavar="NAME", help="Create a snapshot linked to the selected or newest backup")
    commands.add_argument("-n", "--dry-run", action="store_true", help="Perform a trial run")
    commands.add_argument("-H", "--history", nargs="?", type=int, action=CommandAction, command=Command.HISTORY, metavar="INDEX", help="Backup history, or the manifest of one backup")
    commands.add_argument("-P", "--prune", action=CommandAction, command=Command.PRUNE, help="Delete the selected backup or snapshot")
    commands.add_argument("--select", help="Select a backup: slot number, newest, oldest or a name")
    commands.add_argument("-R", "--restore", nargs="?", action=RestoreAction, metavar="PATH", help="Restore a path, or without PATH the search results")
    commands.add_argument("--restore-to", help="Restore to [host:]path (default is client:TMP/rubac/client)")
    commands.add_argument("--restore-from", nargs=1, type=Path, action=CommandAction, command=Command.RESTORE, metavar="FILE", help="Restore the paths listed in FILE")
    commands.add_argument("-S", "--search", nargs=1, action=CommandAction, command=Command.SEARCH, append=True, metavar="PATTERN", help="Search the backup history, may be repeated")
    commands.add_argument("-v", "--version", action=CommandAction, command=Command.VERSION, help="Display the version")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse and normalize the command line."""
    args = build_parser().parse_args(argv)
    # nargs=1 options arrive as one element lists
    if isinstance(args.snapshot, list):
        args.snapshot = args.snapshot[0]
    if isinstance(args.restore_from, list):
        args.restore_from = args.restore_from[0]
    if args.search:
        args.search = [pattern for item in args.search for pattern in item]
    if args.quiet:
        args.verbose = False
    return args


def select_command(args: argparse.Namespace, logger: logging.Logger) -> Command:
    """Return the first command flag given; later ones are ignored."""
    commands = args.commands or []
    if not commands:
        return Command.CONFIGURE
    for ignored in commands[1:]:
        if ignored is not commands[0]:
            logger.warning(f"Ignoring {ignored.value}, already running {commands[0].value}")
    return commands[0]


def log_level(args: argparse.Namespace) -> str:
    """Return the log level for --quiet and --verbose."""
    if args.quiet:
        return "WARNING"
    if args.verbose:
        return "DEBUG"
    return "INFO"


def initialize_destination(dest: Path, logger: logging.Logger) -> None:
    """Create a backup destination and its init marker.

    Raises:
        PreconditionError: If the destination cannot be initialized

    """
    try:
        dest.mkdir(parents=True, exist_ok=True)
        fd = os.open(dest / INIT_MARKER, os.O_CREAT | os.O_EXCL | os.O_WRONLY, INIT_MARKER_MODE)
    except FileExistsError:
        logger.warning(f"Backup destination {dest} is already initialized")
        return
    except OSError as e:
        error_msg = f"Initializing destination {dest} failed: {e}"
        raise PreconditionError(error_msg, original_error=e) from e
    os.close(fd)
    logger.info(f"Initialized backup destination {dest}")


def check_destination(dest: str) -> Path:
    """Return the initialized backup destination.

    Raises:
        PreconditionError: If it is unset, missing or not initialized

    """
    if not dest:
        error_msg = "Backup destination not set, use --dest"
        raise PreconditionError(error_msg)
    path = Path(dest)
    if not (path / INIT_MARKER).is_file():
        error_msg = f"Destination {dest} not initialized, mount or re-initialize with --dest {dest}"
        raise PreconditionError(error_msg)
    return path


def bootstrap_profile(
    path: Path,
    logger: logging.Logger,
    prompt: Callable[[str], str] = input,
) -> str | None:
    """Ask whether to create a missing profile and for its destination.

    Returns:
        The destination entered, if any

    Raises:
        PreconditionError: If the operator declines

    """
    logger.warning(f"Profile {path} does not exist")
    try:
        answer = prompt("Do you want to create a new profile? [yn] ").strip().lower()
    except EOFError:
        answer = ""
    if not answer.startswith("y"):
        error_msg = "Aborting"
        raise PreconditionError(error_msg)

    try:
        dest = prompt("Backup destination directory: ").strip()
    except EOFError:
        dest = ""
    if not dest:
        return None
    dest_path = Path(dest)
    if not dest_path.exists():
        logger.warning(f"Destination directory {dest} not found")
    elif not dest_path.is_dir():
        error_msg = f"Destination {dest} is not a directory"
        raise PreconditionError(error_msg)
    return dest


def apply_configuration(
    args: argparse.Namespace,
    store: ConfigStore,
    clients: list[str],
    logger: logging.Logger,
) -> None:
    """Apply the configuration options of the command line to the store."""
    if args.log:
        store.set_global("logname", Path(args.log).name)
    store.set_global("logdir", args.logdir)
    store.set_global("email", args.mail)
    store.set_global("smtp", args.smtp)

    if args.dest:
        initialize_destination(Path(args.dest), logger)
        store.set_global("dest", args.dest)

    operation = UpdateOperation.DELETE if args.delete is not None else UpdateOperation.ADD
    includes = [normalize_include(inc) for item in args.includes for inc in item.split(",")] if args.includes else None
    compress = True if args.compress else None

    if args.global_scope:
        store.update_global(operation, "includes", includes, ",")
        store.update_global(operation, "excludes", args.excludes, ",")
        store.update_global(operation, "opts", args.opts, " ")
        store.update_global(operation, "ninc", args.incremental)
        store.update_global(operation, "compress", compress)
    else:
        for client in clients:
            store.update_client(client, operation, "includes", includes, ",")
            store.update_client(client, operation, "excludes", args.excludes, ",")
            store.update_client(client, operation, "opts", args.opts, " ")
            store.update_client(client, operation, "address", args.address)
            store.update_client(client, operation, "ninc", args.incremental)
            store.update_client(client, operation, "compress", compress)

    for client in args.delete or []:
        if client:
            logger.info(f"Deleting client {client}")
            store.delete_client(client)


@dataclass
class Session:
    """Collaborators shared by the command handlers of one invocation."""

    args: argparse.Namespace
    env: RubacEnvironment
    profile: str
    logger: logging.Logger
    config_store: ConfigStore
    table: GenerationTable
    resolver: SelectResolver
    ctx: CommandContext
    controller: RunController
    lister: SettingsLister

    def selected(self, client: str) -> str | None:
        """Resolve --select for a client."""
        name = self.resolver.resolve(client, self.args.select)
        if name and self.args.select:
            self.logger.info(f"Selected backup {self.args.select} {name}")
        return name


def _backup(session: Session, client: str, mode: RunMode) -> None:
    session.logger.info(f"##### {mode.value} for {client} #####")
    link_name = session.selected(client) if mode is RunMode.SNAPSHOT else None
    result = session.controller.run(
        client,
        mode,
        snapshot_label=session.args.snapshot,
        link_name=link_name,
    )
    stats = result.stats
    session.logger.info(
        f"\tsent {stats.sent} bytes, recv {stats.received} bytes, "
        f"size {stats.total_size}, speedup {stats.speedup}",
    )


def handle_run(session: Session, client: str) -> None:
    """Full run with rotation."""
    _backup(session, client, RunMode.FULL)


def handle_update(session: Session, client: str) -> None:
    """Update of the newest generation in place."""
    _backup(session, client, RunMode.UPDATE)


def handle_snapshot(session: Session, client: str) -> None:
    """Snapshot linked to the selected or newest generation."""
    _backup(session, client, RunMode.SNAPSHOT)


def handle_list(session: Session, client: str) -> None:
    """List global and client settings."""
    if session.args.verbose:
        session.logger.debug("##### Configuration #####")
        session.logger.debug(session.config_store.dump())
    session.lister.list_globals()
    if not session.args.global_scope:
        session.lister.list_client(client)


def handle_history(session: Session, client: str) -> None:
    """Show the history, or one generation's manifest."""
    show_history(session.ctx, client, session.args.history)


def handle_search(session: Session, client: str) -> None:
    """Search manifests, restoring the hits when asked to."""
    session.logger.info(f"##### search for {client} #####")
    hits = GenerationSearch(session.ctx).search(client, session.args.search, session.selected(client))
    if not session.args.search_restore or not hits:
        return

    by_generation: dict[str, list[str]] = {}
    for hit in hits:
        by_generation.setdefault(hit.generation, []).append(hit.path)
    restorer = Restorer(session.ctx)
    for generation, paths in by_generation.items():
        restorer.restore(client, generation, paths, restore_to=session.args.restore_to)


def handle_prune(session: Session, client: str) -> None:
    """Delete the selected generation."""
    session.logger.info(f"##### prune for {client} #####")
    prune_generation(session.ctx, client, session.selected(client))


def handle_restore(session: Session, client: str) -> None:
    """Restore paths from the selected or newest generation."""
    session.logger.info(f"##### restore for {client} #####")
    Restorer(session.ctx).restore(
        client,
        session.selected(client),
        session.args.restore or [],
        session.args.restore_from,
        session.args.restore_to,
    )


def handle_configure(session: Session, client: str) -> None:
    """Report the lists a configuration change touched."""
    if not (session.args.includes or session.args.excludes or session.args.opts):
        return
    settings = session.config_store.client_settings(client)
    if session.args.includes:
        session.logger.info(f"{client}:includes={','.join(settings.includes)}")
    if session.args.excludes:
        session.logger.info(f"{client}:excludes={','.join(settings.excludes)}")
    if session.args.opts:
        session.logger.info(f"{client}:opts={' '.join(settings.opts)}")


CLIENT_HANDLERS: dict[Command, Callable[[Session, str], None]] = {
    Command.RUN: handle_run,
    Command.UPDATE: handle_update,
    Command.SNAPSHOT: handle_snapshot,
    Command.LIST: handle_list,
    Command.HISTORY: handle_history,
    Command.SEARCH: handle_search,
    Command.PRUNE: handle_prune,
    Command.RESTORE: handle_restore,
    Command.CONFIGURE: handle_configure,
}


def process_clients(session: Session, command: Command, clients: list[str]) -> int:
    """Run a command for each client in turn.

    Errors that only concern one client are logged and the batch goes on.

    Returns:
        0 if every client succeeded, 1 otherwise

    """
    logger = session.logger
    handler = CLIENT_HANDLERS[command]
    status = 0

    buffer: NotificationBuffer | None = None
    email = session.config_store.get_global("email")
    if command in NOTIFY_COMMANDS and email:
        buffer = NotificationBuffer()
        logger.addHandler(buffer)

    try:
        for client in clients:
            logger.debug(f">>>>> Running {command.value} for {client}")
            try:
                handler(session, client)
            except InvalidOperationError:
                raise
            except (ConfigError, *RECOVERABLE_ERRORS) as e:
                logger.error(f"{client}: {e}")
                status = 1
            logger.debug(f"<<<<< Done running {command.value} for {client}")
    finally:
        if buffer is not None:
            logger.removeHandler(buffer)
            footer = [disk_usage_report(session.ctx.dest)]
            log_file = get_log_file(logger)
            if log_file is not None:
                footer.append(f"See {log_file} for details")
            mailer = Mailer(logger, email, session.config_store.get_global("smtp", "localhost"))
            subject = batch_subject(command.value, session.profile, clients)
            logger.info(f"Send notification with subject={subject}")
            buffer.send(mailer, subject, footer)
    return status


def _unique(items: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(item.strip() for item in items if item.strip()))


def run_cli(argv: Sequence[str] | None = None, prompt: Callable[[str], str] = input) -> int:  # noqa: PLR0911
    """Execute rubac for the given command line.

    Returns:
        The process exit status

    """
    args = parse_args(argv)
    level = log_level(args)
    logger = configure_logging(LoggingConfig(log_name=LOG_NAME, log_level=level, enable_file=False))

    try:
        env = RubacEnvironment.from_env(args.env_file, logger)
        profile = profile_name(args.profile) if args.profile else env.profile
        datadir = args.datadir or env.datadir or default_datadir()
        datadir.mkdir(parents=True, exist_ok=True)
        store = ConfigStore(datadir, logger)
        if not store.load(profile):
            dest = bootstrap_profile(store.profile_path(profile), logger, prompt)
            if dest and not args.dest:
                args.dest = dest
    except OSError as e:
        logger.error(f"Failed to prepare data directory: {e}")
        return 1
    except RubacError as e:
        logger.error(str(e))
        return 1

    logdir = args.logdir or store.get_global("logdir") or str(get_default_log_dir(env.tmp_dir))
    logname = Path(args.log).name if args.log else store.get_global("logname") or get_default_log_filename(profile)
    logger = configure_logging(
        LoggingConfig(log_name=LOG_NAME, log_filename=logname, log_level=level, log_dir=Path(logdir)),
    )
    store.logger = logger
    logger.debug(f"log={Path(logdir) / logname}")
    logger.debug(f"rubac {__version__}, profile version {store.version}")

    command = select_command(args, logger)
    explicit_clients = _unique(args.clients or env.clients)
    try:
        clients = explicit_clients or store.clients()
        apply_configuration(args, store, clients, logger)
        deleted = set(args.delete or [])
        clients = [client for client in clients if client not in deleted]
        store.save(profile)

        if command is Command.VERSION:
            logger.info(f"rubac {__version__} (profile version {store.version})")
            return 0

        dest = store.get_global("dest")
        if command in GENERATION_COMMANDS:
            dest_path = check_destination(dest)
        else:
            dest_path = Path(dest) if dest else Path()
            if command is Command.LIST and dest and not (dest_path / INIT_MARKER).is_file():
                logger.warning(f"Destination {dest} not initialized")

        if command in NOTIFY_COMMANDS and not explicit_clients:
            error_msg = "Must specify at least one client"
            raise PreconditionError(error_msg)
        if command in RSYNC_COMMANDS:
            check_rsync_version(env.rsync, logger)
    except InvalidOperationError:
        logger.exception("Invalid operation")
        return 1
    except RubacError as e:
        logger.error(str(e))
        return 1

    table = GenerationTable(store, profile, logger)
    manifest_store = ManifestStore(logger)
    ctx = CommandContext(
        config_store=store,
        table=table,
        manifest_store=manifest_store,
        logger=logger,
        dest=dest_path,
        dry_run=args.dry_run,
        verbose=args.verbose,
        rsync=env.rsync,
        tmp_dir=env.tmp_dir,
    )
    session = Session(
        args=args,
        env=env,
        profile=profile,
        logger=logger,
        config_store=store,
        table=table,
        resolver=SelectResolver(table, logger),
        ctx=ctx,
        controller=RunController(
            store,
            manifest_store,
            table,
            logger,
            dest_path,
            rsync=env.rsync,
            base_options=env.base_options,
            dry_run=args.dry_run,
            tmp_dir=env.tmp_dir,
        ),
        lister=SettingsLister(
            store,
            logger,
            profile,
            env.base_options,
            compact=args.list_key == LIST_COMPACT,
        ),
    )

    if args.dry_run:
        logger.info("Running in DRY RUN mode - no actual changes will be made")

    try:
        return process_clients(session, command, clients)
    except InvalidOperationError:
        logger.exception("Invalid operation")
        return 1
    except Exception:
        logger.exception("Unexpected error")
        return 1


def main() -> None:
    """Execute the main entry point for the rubac command."""
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
