"""Main entry point for Bedrock Server Manager."""

import argparse
import asyncio
import logging
import sys

from .config import Config
from .errors import ManagerError


def setup_logging():
    """Configure logging from LOG_LEVEL."""
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Quiet third-party libraries
    logging.getLogger("docker").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_manager():
    """Create the lifecycle manager and command executor from Config."""
    from .core.commands import CommandExecutor
    from .core.docker_client import DockerClient
    from .core.lifecycle import LifecycleManager

    docker_client = DockerClient()
    return LifecycleManager(docker_client=docker_client), CommandExecutor(docker_client)


async def recreate_servers(manager) -> int:
    """
    Recreate containers for every server directory.

    Returns:
        Process exit code
    """
    try:
        print(f"Data directory: {manager.data_root}")
        print(f"Docker network: {manager.builder.default_network or 'default (bridge)'}")
        print(f"SSH enabled: {manager.builder.enable_ssh}")

        report = await manager.recreate_all()
    finally:
        await manager.close()

    print("=" * 50)
    print(f"Created: {len(report.created)}")
    print(f"Already present: {len(report.existing)}")
    if report.skipped:
        print(f"Skipped (no metadata.json): {len(report.skipped)}")
    for server_id, reason in sorted(report.failed.items()):
        print(f"Failed: {server_id}: {reason}")
    print("=" * 50)

    return 1 if report.failure_count else 0


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(prog="bedrock-manager", description="Manage Bedrock server containers")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("dashboard", help="Run the terminal dashboard (default)")
    subparsers.add_parser("recreate", help="Recreate containers from existing server directories")
    args = parser.parse_args(argv)

    setup_logging()

    try:
        # Validate configuration (data directory, Docker)
        Config.validate()
        manager, executor = build_manager()

        if args.command == "recreate":
            sys.exit(asyncio.run(recreate_servers(manager)))

        from .app import BedrockManagerApp
        app = BedrockManagerApp(manager, executor)
        app.run()

    except (RuntimeError, ManagerError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)
    except Exception as e:
        logging.getLogger(__name__).debug("Unhandled error", exc_info=True)
        print(f"Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
