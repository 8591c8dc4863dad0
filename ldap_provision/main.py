"""
Command-line entry point for LDAP Provision.

Subcommands:
    create                Create the tree, then create or update the users
    list                  Print every entry below a base DN
    create-default-files  Write template users.json and tree.json
"""

import sys
import logging
import argparse
import itertools
from typing import Dict, Any, Callable, List, Optional, TextIO
from ldap_provision import __version__
from ldap_provision.config import load_config, ConfigurationError
from ldap_provision.descriptors import load_tree, load_users, write_default_files, DescriptorError
from ldap_provision.ldap_client import (
    DirectoryClient,
    DirectorySession,
    LDAPConnectionError,
    DirectoryOperationError
)
from ldap_provision.lister import list_entries, format_entry
from ldap_provision.logging_setup import setup_logging
from ldap_provision.synchronizer import (
    check_dn_format,
    create_tree,
    sync_users,
    summarize,
    UserSyncError,
    CREATED,
    UPDATED,
    FAILED
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_DIRECTORY_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_CONNECTION_ERROR = 3
EXIT_DESCRIPTOR_ERROR = 4
EXIT_UNEXPECTED_ERROR = 5


class ProvisionRunner:
    """
    Runs one CLI command against the directory.

    Maps every fatal error to a diagnostic log line and an exit code. The
    directory connection is opened per command and always closed.
    """

    def __init__(self, config: Dict[str, Any],
                 client_factory: Callable[[Dict[str, Any]], DirectorySession] = DirectoryClient,
                 output: Optional[TextIO] = None):
        """
        Args:
            config: Loaded configuration
            client_factory: Builds a directory session from the ``ldap`` config section
            output: Stream for command output (defaults to stdout)
        """
        self.config = config
        self.client_factory = client_factory
        self.output = output or sys.stdout

    def create(self, dn_format: Optional[str] = None, tree_file: Optional[str] = None,
               user_file: Optional[str] = None) -> int:
        provisioning = self.config['provisioning']
        dn_format = dn_format or provisioning['user_dn_format']
        tree_file = tree_file or provisioning['tree_file']
        user_file = user_file or provisioning['user_file']

        def command():
            check_dn_format(dn_format)
            tree = load_tree(tree_file)
            users = load_users(user_file)

            with self.client_factory(self.config['ldap']) as session:
                create_tree(session, tree)
                try:
                    results = sync_users(session, users, dn_format)
                except UserSyncError as e:
                    self._log_summary(e.results)
                    raise

            self._log_summary(results)
            return EXIT_OK

        return self._run(command)

    def list(self, base_dn: Optional[str] = None) -> int:
        base_dn = base_dn or self.config['provisioning']['search_base']

        def command():
            with self.client_factory(self.config['ldap']) as session:
                entries = list_entries(session, base_dn)
                # Header only once the search has succeeded
                first = next(entries, None)
                print("Directory Structure:", file=self.output)
                if first is None:
                    return EXIT_OK
                for dn, object_class in itertools.chain([first], entries):
                    print(format_entry(dn, object_class), file=self.output)
            return EXIT_OK

        return self._run(command)

    def create_default_files(self, path: str = '.') -> int:
        def command():
            for written in write_default_files(path):
                print(written, file=self.output)
            return EXIT_OK

        return self._run(command)

    def _run(self, command: Callable[[], int]) -> int:
        try:
            return command()
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIG_ERROR
        except DescriptorError as e:
            logger.error(f"Descriptor error: {e}")
            return EXIT_DESCRIPTOR_ERROR
        except LDAPConnectionError as e:
            logger.error(f"LDAP connection error: {e}")
            return EXIT_CONNECTION_ERROR
        except DirectoryOperationError as e:
            logger.error(str(e))
            return EXIT_DIRECTORY_ERROR
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            return EXIT_UNEXPECTED_ERROR

    def _log_summary(self, results):
        counts = summarize(results)
        logger.info(f"Users: {counts[CREATED]} created, {counts[UPDATED]} updated, {counts[FAILED]} failed")
        for result in results:
            if result.outcome == FAILED:
                logger.warning(f"User {result.username} ({result.dn}) failed: {result.reason}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='ldap-provision', description='LDAP management commands')
    parser.add_argument('--config', '-c', help='Path to YAML settings file')
    parser.add_argument('--log-level', help='Override the configured log level')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', metavar='command')
    subparsers.required = True

    create_parser = subparsers.add_parser('create', help='Creates an ldap tree and users')
    create_parser.add_argument('--dn', '-d', dest='dn_format',
                               help='Format for user DN, %%s will be replaced with username')
    create_parser.add_argument('--tree-file', '-t', help='file path to tree file')
    create_parser.add_argument('--user-file', '-u', help='file path to users file')

    list_parser = subparsers.add_parser('list', help='List ldap')
    list_parser.add_argument('--base', '-b', dest='base_dn', help='base DN to start searching')

    files_parser = subparsers.add_parser('create-default-files', help='Creates default files for ldap')
    files_parser.add_argument('--files-path', '-p', default='.', help='path to create files')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, require_ldap=args.command != 'create-default-files')
    except ConfigurationError as e:
        setup_logging(None)
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    logging_config = dict(config['logging'])
    if args.log_level:
        logging_config['level'] = args.log_level
        logging_config['console_level'] = args.log_level
    setup_logging(logging_config)

    runner = ProvisionRunner(config)

    if args.command == 'create':
        return runner.create(args.dn_format, args.tree_file, args.user_file)
    elif args.command == 'list':
        return runner.list(args.base_dn)
    return runner.create_default_files(args.files_path)


if __name__ == "__main__":
    sys.exit(main())
