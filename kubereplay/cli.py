from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from kubereplay.audit.providers import CloudWatchProvider, FileProvider
from kubereplay.audit.providers.base import Provider
from kubereplay.errors import ConfigurationError, KubeReplayError, ProviderError
from kubereplay.objects import Dispatcher, QueryIntent, default_registry
from kubereplay.render import OUTPUT_FORMATS, render_describe, render_get
from kubereplay.replay import ReplayRequest, replay
from kubereplay.settings import ReplaySettings, get_settings
from kubereplay.timeutil import TimeWindow, parse_duration, parse_instant

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PROVIDER_ERROR = 1
EXIT_USAGE = 2

_EPILOG = """\
examples:
  # Current state of a pod from a local audit log
  kubereplay get pod nginx -n default -f /var/log/kubernetes/audit.log

  # Lifecycle timeline of a node from CloudWatch Logs
  kubereplay describe node ip-10-0-1-23.ec2.internal -g /aws/eks/prod/cluster -r us-west-2

  # Pod state as of a given instant
  kubereplay get pod nginx -n web -f audit.log --start 72h --at 2024-05-01T12:00:00Z
"""


def _source_args() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("kind", help="Object type: pod (po, pods) or node (no, nodes)")
    common.add_argument("name", help="Object name")
    common.add_argument("-n", "--namespace", default="default", help="Namespace (ignored for nodes)")
    common.add_argument("-f", "--audit-log", default="", help="Path to a local audit log file (JSON lines)")
    common.add_argument("-g", "--log-group", default="", help="AWS CloudWatch log group name")
    common.add_argument("-r", "--region", default="", help="AWS region for the CloudWatch log group")
    common.add_argument(
        "--start",
        default=None,
        help="Look-back where the window starts, from --at or now (e.g. 24h). "
        "Audit log files are read in full when omitted; log groups default to 24h",
    )
    common.add_argument("--end", default="0", help="Look-back from now where the window ends (e.g. 1h)")
    common.add_argument("--at", default="", help="RFC3339 instant to reconstruct state at; overrides --end")
    common.add_argument("--workers", type=int, default=None, help="Threads used to classify records")
    common.add_argument("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
    return common


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kubereplay",
        description="Reconstruct Kubernetes object state from API-server audit logs.",
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="subcommand", required=True)
    common = _source_args()

    get = sub.add_parser("get", parents=[common], help="Print the object as last recorded")
    get.add_argument("-o", "--output", choices=OUTPUT_FORMATS, default="yaml", help="Output format")

    sub.add_parser("describe", parents=[common], help="Print the object's lifecycle timeline")
    return parser


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _provider(args: argparse.Namespace, settings: ReplaySettings) -> Provider:
    if args.audit_log and args.log_group:
        raise ConfigurationError("cannot specify both --audit-log and --log-group")
    if not args.audit_log and not args.log_group:
        raise ConfigurationError("either --audit-log or --log-group must be specified")
    if args.audit_log:
        return FileProvider(args.audit_log)
    return CloudWatchProvider(
        args.log_group,
        region=args.region or settings.region,
        timeout_s=settings.query_timeout_s,
        poll_interval_s=settings.poll_interval_s,
    )


def run(args: argparse.Namespace, settings: ReplaySettings) -> int:
    registry = default_registry(settings)
    handler = registry.resolve(args.kind)

    provider = _provider(args, settings)
    # An archived file is replayed in full unless a look-back is asked for;
    # a log-group query always needs a bounded start.
    start = args.start if args.audit_log else (args.start or settings.default_start)
    window = TimeWindow.from_flags(
        start=parse_duration(start) if start else None,
        end=parse_duration(args.end),
        at=parse_instant(args.at) if args.at else None,
    )
    workers = args.workers if args.workers is not None else settings.max_workers
    if workers < 1:
        raise ConfigurationError("--workers must be at least 1")

    identity = handler.identity_for(args.name, args.namespace)

    outcome = replay(
        ReplayRequest(
            intent=QueryIntent(args.subcommand),
            handler=handler,
            identity=identity,
            window=window,
        ),
        provider,
        Dispatcher(registry),
        max_workers=workers,
    )
    if outcome.snapshot is None:
        print(f"No events found for: {identity}")
        return EXIT_OK

    if args.subcommand == "get":
        print(render_get(outcome.snapshot, args.output))
    else:
        print(render_describe(outcome.snapshot))
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_USAGE

    _configure_logging(args.log_level or settings.log_level)

    try:
        return run(args, settings)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_USAGE
    except ProviderError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_PROVIDER_ERROR
    except KubeReplayError as e:
        logger.debug("unhandled replay error", exc_info=True)
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_PROVIDER_ERROR
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
