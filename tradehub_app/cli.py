#!/usr/bin/env python3
"""
Command-Line Interface for the Trade Hub Controller

Usage:
    python -m tradehub_app                       # Run with default config
    python -m tradehub_app -c config.yaml        # Run with custom config
    python -m tradehub_app --api                 # Run with REST API server
    python -m tradehub_app --check               # Validate config and exit
"""

import argparse
import asyncio
import sys

from .controller import TradeHubController
from .models import HubConfig
from .titles import resolve_title


def check_config(config: HubConfig) -> bool:
    """Print the resolved bots and titles. Returns False if any title is invalid."""
    ok = True

    print("\n" + "=" * 50)
    print("TRADE HUB CONFIGURATION")
    print("=" * 50)
    print(f"Queue capacity:  {config.max_queue_size}")
    print(f"Payload folder:  {config.payload_folder}")
    print(f"History:         {config.storage.db_path if config.storage.enabled else 'disabled'}")
    print(f"API:             {config.api.host}:{config.api.port} "
          f"({'enabled' if config.api.enabled else 'disabled'})")
    print("-" * 50)

    if not config.bots:
        print("No bots configured")

    for bot in config.bots:
        try:
            profile = resolve_title(bot.title, config.titles)
        except (KeyError, ValueError) as e:
            print(f"{bot.name:<16} {bot.host}:{bot.port}  ERROR: {e}")
            ok = False
            continue

        state = "" if bot.enabled else "  (disabled)"
        print(f"{bot.name:<16} {bot.host}:{bot.port}  {profile.display_name}{state}")

    print("=" * 50)
    return ok


def main():
    """Command-line entry point."""
    parser = argparse.ArgumentParser(
        description="Trade Hub Controller",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m tradehub_app                         # Run with default config
  python -m tradehub_app -c config.yaml          # Run with custom config
  python -m tradehub_app --check                 # Validate config and exit
  python -m tradehub_app --api                   # Run with REST API server
  python -m tradehub_app --api --api-port 8000   # Custom API port
        """
    )
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate the config, print bots and titles, and exit",
    )
    parser.add_argument(
        "--api",
        action="store_true",
        help="Run with REST API server for web access",
    )
    parser.add_argument(
        "--api-host",
        default=None,
        help="API server host (default: from config or 0.0.0.0)",
    )
    parser.add_argument(
        "--api-port",
        type=int,
        default=None,
        help="API server port (default: from config or 8100)",
    )

    args = parser.parse_args()

    # Load config
    try:
        config = HubConfig.from_yaml(args.config)
    except FileNotFoundError:
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)
    except Exception as e:
        print(f"Error loading config: {e}")
        sys.exit(1)

    # Handle --check
    if args.check:
        sys.exit(0 if check_config(config) else 1)

    hub = TradeHubController(config)
    use_api = args.api or config.api.enabled

    if use_api:
        print("\n" + "=" * 50)
        print("TRADE HUB + REST API")
        print("=" * 50)
        print(f"API Host:        {args.api_host or config.api.host}")
        print(f"API Port:        {args.api_port or config.api.port}")
        print(f"Bots:            {len(config.bots)}")
        print("=" * 50)

    try:
        asyncio.run(hub.run(api=use_api, api_host=args.api_host, api_port=args.api_port))
    except KeyboardInterrupt:
        hub.logger.info("Interrupted by user")


if __name__ == "__main__":
    main()
