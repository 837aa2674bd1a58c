#!/usr/bin/env python3

import argparse
import asyncio
from typing import List, Optional

from .settings import Settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cloudflare Origin CA Issuer")
    parser.add_argument("--log-level", default=None,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Set logging level")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the operator")
    run_parser.add_argument("--cluster-resource-namespace",
                            help="Namespace holding secrets for ClusterOriginIssuers")
    run_parser.add_argument("--api-endpoint",
                            help="Override the Cloudflare Origin CA endpoint")
    run_parser.add_argument("--request-timeout", type=float,
                            help="Timeout in seconds for signing calls")
    run_parser.add_argument("-n", "--namespace", action="append", dest="namespaces",
                            help="Namespace to watch (repeatable)")
    run_parser.add_argument("-A", "--all-namespaces", action="store_true",
                            help="Watch all namespaces, ignoring WATCH_NAMESPACES")

    return parser


def settings_from_args(args: argparse.Namespace, base: Optional[Settings] = None) -> Settings:
    """Apply CLI flags on top of environment-derived settings."""
    settings = base or Settings()
    overrides = {}

    if args.log_level:
        overrides["log_level"] = args.log_level
    if getattr(args, "cluster_resource_namespace", None):
        overrides["cluster_resource_namespace"] = args.cluster_resource_namespace
    if getattr(args, "api_endpoint", None):
        overrides["api_endpoint"] = args.api_endpoint
    if getattr(args, "request_timeout", None):
        overrides["api_timeout"] = args.request_timeout
    if getattr(args, "all_namespaces", False):
        overrides["watch_namespaces"] = ""
    elif getattr(args, "namespaces", None):
        overrides["watch_namespaces"] = ",".join(args.namespaces)

    return settings.model_copy(update=overrides)


def main(argv: Optional[List[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "run":
        from .main import main as run_operator
        asyncio.run(run_operator(settings_from_args(args)))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
