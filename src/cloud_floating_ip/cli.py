"""
Command-line entry point.

    cloud-floating-ip [status|preempt|destroy] --ip ADDRESS [options]

The --ip argument is mandatory. Other settings can be guessed from the
instance's metadata when running from an AWS or GCE instance. status is
the default command and prints exactly "owner" or "standby" on stdout.

This is the only place that decides the process exit code: every error
raised by the core is caught here, logged, and turned into exit code 1.
"""

import argparse
import sys
import time
import uuid
from enum import Enum
from typing import Optional, Sequence, TextIO

from .config import Config, load_config, validate_configuration
from .exceptions import ConfigurationError, FloatingIPError
from .logging_setup import setup_logger
from .registry import HosterRegistry, build_registry
from .structured_events import ActionResult, StructuredEventLogger

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


class Operation(Enum):
    # Display the status of the instance (owner or standby)
    STATUS = "status"
    # Preempt the IP address and route it to this instance
    PREEMPT = "preempt"
    # Delete the routes managed by cloud-floating-ip
    DESTROY = "destroy"


def _common_options() -> argparse.ArgumentParser:
    # SUPPRESS keeps unset flags out of the namespace so they don't
    # override the config file or the environment.
    common = argparse.ArgumentParser(add_help=False, argument_default=argparse.SUPPRESS)
    common.add_argument('-c', '--config', help='config file (default is /etc/cloud-floating-ip.yaml)')
    common.add_argument('-i', '--ip', help='IP address')
    common.add_argument('-o', '--hoster', help='hosting provider (aws or gce)')
    common.add_argument('-t', '--instance', help='instance name')
    common.add_argument('-d', '--dry-run', dest='dry-run', action='store_true', help='dry-run mode')
    common.add_argument('-q', '--quiet', action='store_true', help='quiet mode')
    common.add_argument('-p', '--project', help='(GCP) project id')
    common.add_argument('-r', '--region', help='(AWS) region name')
    common.add_argument('-z', '--zone', help='(GCP) zone name')
    common.add_argument('-m', '--ignore-main-table', dest='ignore-main-table', action='store_true',
                        help='(AWS) ignore routes in main table')
    common.add_argument('-f', '--interface', help='network interface ID')
    common.add_argument('-s', '--subnet', help='subnet ID')
    common.add_argument('-g', '--target-ip', dest='target-ip', help='target private IP')
    common.add_argument('-b', '--table', action='append',
                        help='(AWS) only consider this route table (may be specified several times)')
    common.add_argument('-a', '--aws-access-key-id', '--access-key', dest='access-key',
                        help='(AWS) access key Id')
    common.add_argument('-k', '--aws-secret-key', '--secret-key', dest='secret-key',
                        help='(AWS) secret key')
    common.add_argument('--gcp-credentials', dest='gcp-credentials',
                        help='(GCP) service account key file')
    common.add_argument('--log-level', dest='log-level', help='log level (DEBUG, INFO, WARNING, ERROR)')
    common.add_argument('--log-file', dest='log-file', help='also log to this file')
    common.add_argument('--structured-console', dest='structured-console', action='store_true',
                        help='log structured JSON events on the console')
    return common


def build_parser() -> argparse.ArgumentParser:
    common = _common_options()
    parser = argparse.ArgumentParser(
        prog='cloud-floating-ip',
        description='Implement a floating IP by modifying GCE or AWS routes.',
        epilog='The --ip argument is mandatory. Other settings can be guessed from '
               "instance's metadata when running from an AWS or GCE instance.",
        parents=[common],
    )
    subparsers = parser.add_subparsers(dest='command')
    subparsers.add_parser('status', parents=[common],
                          help='Display the status of the instance (owner or standby)')
    subparsers.add_parser('preempt', parents=[common],
                          help='Preempt an IP address and route it to an instance')
    subparsers.add_parser('destroy', parents=[common],
                          help='Delete the routes managed by cloud-floating-ip')
    return parser


def run(cfg: Config, operation: Operation, registry: HosterRegistry, out: TextIO = None) -> None:
    """Select the hoster, initialize it and execute the operation."""
    out = out or sys.stdout
    hoster = registry.resolve(cfg.hoster or None)
    hoster.initialize()

    if operation is Operation.STATUS:
        print("owner" if hoster.status() else "standby", file=out)
    elif operation is Operation.PREEMPT:
        hoster.preempt()
    elif operation is Operation.DESTROY:
        hoster.destroy()


def main(argv: Optional[Sequence[str]] = None, registry: Optional[HosterRegistry] = None,
         out: TextIO = None) -> int:
    args = vars(build_parser().parse_args(argv))
    operation = Operation(args.pop('command', None) or 'status')
    config_file = args.pop('config', None)

    try:
        cfg = load_config(args, config_file=config_file)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    logger = setup_logger(
        name=cfg.logger_name,
        level=cfg.log_level,
        log_file=cfg.log_file,
        max_bytes=cfg.log_max_bytes,
        backup_count=cfg.log_backup_count,
        quiet=cfg.quiet,
        enable_structured_console=cfg.enable_structured_console,
    )
    structured_logger = StructuredEventLogger(cfg.logger_name)
    structured_logger.set_correlation_id(str(uuid.uuid4()))

    exit_code = EXIT_OK
    error_message = None
    start_time = time.time()
    try:
        errors = validate_configuration(cfg)
        if errors:
            for i, error in enumerate(errors, 1):
                logger.error(f"  {i}. {error}")
            raise ConfigurationError(f"Invalid configuration: {'; '.join(errors)}")

        if cfg.dry_run:
            logger.info("Dry-run mode: route changes will be displayed, not applied")

        if registry is None:
            registry = build_registry(cfg, structured_logger)
        run(cfg, operation, registry, out=out)
    except FloatingIPError as e:
        logger.critical(f"Failed to {operation.value}: {e}")
        exit_code = EXIT_FAILURE
        error_message = str(e)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, aborting")
        exit_code = EXIT_INTERRUPTED
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        exit_code = EXIT_FAILURE
        error_message = str(e)
    finally:
        structured_logger.log_lifecycle(
            command=operation.value,
            result=ActionResult.SUCCESS if exit_code == EXIT_OK else ActionResult.FAILURE,
            dry_run=cfg.dry_run,
            duration_ms=int((time.time() - start_time) * 1000),
            error_message=error_message,
        )
        for h in logger.handlers:
            h.flush()
    return exit_code
