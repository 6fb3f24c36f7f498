"""Run a notification client for one user until interrupted.

    python -m notify_sync.main --user-id 42 --role student
"""
import argparse
import asyncio
import logging
import sys

from notify_sync.domain.common.errors import ConfigError
from notify_sync.services.alert_router import Alert
from notify_sync.services.realtime_client import RealtimeClient
from notify_sync.settings import get_config_store, get_settings, use_config_file

logger = logging.getLogger(__name__)


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Realtime notification client")
    parser.add_argument("--user-id", type=int, required=True)
    parser.add_argument("--role", choices=("student", "teacher"), required=True)
    parser.add_argument("--config", help="YAML or JSON config file (default: NOTIFY_SYNC_CONFIG_FILE or ./notify_sync.yaml)")
    parser.add_argument("--api-base-url", help="Override settings.api_base_url")
    parser.add_argument("--session-cookie", help="Session cookie value forwarded to the backend")
    parser.add_argument("--poll-mode", choices=("always", "fallback", "off"))
    parser.add_argument("--log-level", help="Override settings.log_level")
    return parser.parse_args(argv)


def _log_alert(alert: Alert) -> None:
    logger.info("[ALERT] %s | %s: %s (%s)", alert.category.value.upper(), alert.title, alert.message, alert.link or "-")


async def run(user_id: int, role: str) -> None:
    client = RealtimeClient.from_settings(get_settings())
    client.router.subscribe(_log_alert)
    client.store.feed.subscribe(lambda feed: logger.info("[STORE] %d pending notifications", len(feed.items)))
    client.manager.state.subscribe(lambda state: logger.info("[STREAM] State: %s", state.value))
    try:
        await client.set_auth(user_id, role)
        await asyncio.Event().wait()
    finally:
        await client.aclose()


def main(argv=None) -> int:
    args = _parse_args(argv)
    if args.config:
        use_config_file(args.config)
    overrides = {
        key: value
        for key, value in (
            ("api_base_url", args.api_base_url),
            ("session_cookie", args.session_cookie),
            ("poll_mode", args.poll_mode),
            ("log_level", args.log_level),
        )
        if value is not None
    }
    try:
        get_settings()
    except ConfigError as e:
        print(f"Invalid configuration: {e.message}", file=sys.stderr)
        return 2
    if overrides and not get_config_store().update(overrides):
        print(f"Invalid options: {sorted(overrides)}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        asyncio.run(run(args.user_id, args.role))
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
