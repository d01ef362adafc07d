"""Command-line interface for B2C Commerce code management."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import signal
import sys
from collections.abc import Iterable

import httpx

from b2c_tooling.deploy import find_and_deploy_cartridges
from b2c_tooling.errors import B2CError, ConfigurationError
from b2c_tooling.instance import B2CInstance
from b2c_tooling.log import configure_logging
from b2c_tooling.settings import LOG_LEVELS
from b2c_tooling.versions import (
    activate_code_version,
    delete_code_version,
    list_code_versions,
    reload_code_version,
)
from b2c_tooling.watcher import watch_cartridges


def _split_names(values: Iterable[str] | None) -> list[str] | None:
    """Flatten repeated and comma separated cartridge names."""
    names = [name.strip() for value in values or () for name in value.split(",") if name.strip()]
    return names or None


def _build_instance(args: argparse.Namespace) -> B2CInstance:
    overrides = {
        "hostname": args.server,
        "webdav_hostname": args.webdav_server,
        "code_version": args.code_version,
        "username": args.username,
        "password": args.password,
        "client_id": args.client_id,
        "client_secret": args.client_secret,
    }
    return B2CInstance.from_config(overrides, instance=args.instance, config_path=args.config)


async def _wait_for_shutdown() -> None:
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop_requested.set)
            installed.append(sig)

    try:
        await stop_requested.wait()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


async def _run_watch(args: argparse.Namespace) -> int:
    try:
        instance = _build_instance(args)
        instance.require_webdav_credentials()
    except B2CError as exc:
        print(f"Watch failed: {exc}", file=sys.stderr)
        return 1

    async with instance:
        try:
            session = await watch_cartridges(
                instance,
                args.path,
                include=_split_names(args.cartridge),
                exclude=_split_names(args.exclude_cartridge),
                on_upload=lambda files: print(f"[UPLOAD] {len(files)} file(s)"),
                on_delete=lambda files: print(f"[DELETE] {len(files)} file(s)"),
                on_error=lambda error: print(f"Error: {error}", file=sys.stderr),
            )
        except B2CError as exc:
            print(f"Watch failed: {exc}", file=sys.stderr)
            return 1

        print(f"Watching {len(session.cartridges)} cartridge(s) on {instance.config.hostname} ({session.code_version})...")
        for cartridge in session.cartridges:
            print(f"  {cartridge.name}")
        print("Press Ctrl+C to stop")

        try:
            await _wait_for_shutdown()
        finally:
            print("Stopping watcher...")
            await session.stop()

    return 0


async def _run_deploy(args: argparse.Namespace) -> int:
    async with _build_instance(args) as instance:
        instance.require_webdav_credentials()
        result = await find_and_deploy_cartridges(
            instance,
            args.path,
            include=_split_names(args.cartridge),
            exclude=_split_names(args.exclude_cartridge),
            reload=args.reload,
            delete=args.delete,
        )

    print(f"Deployed {len(result.cartridges)} cartridge(s) to {result.code_version}")
    for cartridge in result.cartridges:
        print(f"  {cartridge.name}")
    if result.reloaded:
        print(f"Code version {result.code_version} reloaded")
    return 0


async def _run_list(args: argparse.Namespace) -> int:
    async with _build_instance(args) as instance:
        versions = await list_code_versions(instance)

    if args.json:
        print(json.dumps([version.model_dump(mode="json") for version in versions], indent=2))
        return 0

    if not versions:
        print("No code versions found")
        return 0

    for version in versions:
        modified = version.last_modification_time.isoformat() if version.last_modification_time else "-"
        active = "active" if version.active else ""
        print(f"{version.id}\t{active}\t{modified}\t{len(version.cartridges)} cartridge(s)")
    return 0


async def _run_activate(args: argparse.Namespace) -> int:
    async with _build_instance(args) as instance:
        version = args.version or instance.config.code_version
        if args.reload:
            await reload_code_version(instance, version)
            print(f"Code version {version or 'active'} reloaded")
            return 0

        if not version:
            raise ConfigurationError("Code version required (argument, --code-version or dw.json)")
        await activate_code_version(instance, version)

    print(f"Code version {version} activated")
    return 0


async def _run_delete(args: argparse.Namespace) -> int:
    if not args.force:
        answer = input(f"Delete code version {args.version}? [y/N] ")
        if answer.strip().lower() not in {"y", "yes"}:
            print("Aborted")
            return 1

    async with _build_instance(args) as instance:
        await delete_code_version(instance, args.version)

    print(f"Code version {args.version} deleted")
    return 0


def _add_cartridge_filters(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", nargs="?", default=".", help="Project directory to search for cartridges")
    parser.add_argument("-c", "--cartridge", action="append", help="Only these cartridges (repeatable, comma separated)")
    parser.add_argument(
        "-x",
        "--exclude-cartridge",
        action="append",
        help="Skip these cartridges (repeatable, comma separated)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="b2c")
    parser.add_argument("-s", "--server", default=None, help="Instance hostname (SFCC_SERVER)")
    parser.add_argument("--webdav-server", default=None, help="Separate WebDAV hostname (SFCC_WEBDAV_SERVER)")
    parser.add_argument("-v", "--code-version", default=None, help="Code version (SFCC_CODE_VERSION)")
    parser.add_argument("-u", "--username", default=None)
    parser.add_argument("-p", "--password", default=None)
    parser.add_argument("--client-id", default=None)
    parser.add_argument("--client-secret", default=None)
    parser.add_argument("-i", "--instance", default=None, help="Named instance from dw.json")
    parser.add_argument("--config", default=None, help="Path to dw.json")
    parser.add_argument("--log-level", choices=LOG_LEVELS, default=None)

    subparsers = parser.add_subparsers(dest="command", required=True)

    code_parser = subparsers.add_parser("code", help="Manage cartridge code")
    code_subparsers = code_parser.add_subparsers(dest="code_command", required=True)

    watch_parser = code_subparsers.add_parser("watch", help="Upload cartridge changes as they happen")
    _add_cartridge_filters(watch_parser)
    watch_parser.set_defaults(handler=_run_watch)

    deploy_parser = code_subparsers.add_parser("deploy", help="Upload all cartridges")
    _add_cartridge_filters(deploy_parser)
    deploy_parser.add_argument("--reload", action="store_true", help="Reload the code version after deploying")
    deploy_parser.add_argument("--delete", action="store_true", help="Delete remote cartridges before uploading")
    deploy_parser.set_defaults(handler=_run_deploy)

    list_parser = code_subparsers.add_parser("list", help="List code versions")
    list_parser.add_argument("--json", action="store_true")
    list_parser.set_defaults(handler=_run_list)

    activate_parser = code_subparsers.add_parser("activate", help="Activate a code version")
    activate_parser.add_argument("version", nargs="?", default=None)
    activate_parser.add_argument("--reload", action="store_true", help="Toggle activation to force a reload")
    activate_parser.set_defaults(handler=_run_activate)

    delete_parser = code_subparsers.add_parser("delete", help="Delete a code version")
    delete_parser.add_argument("version")
    delete_parser.add_argument("--force", action="store_true", help="Skip the confirmation prompt")
    delete_parser.set_defaults(handler=_run_delete)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        return asyncio.run(args.handler(args))
    except (B2CError, httpx.HTTPError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
