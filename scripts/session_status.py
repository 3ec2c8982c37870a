"""
Show the transport session's persisted age and ask the gateway who it is.

Usage:
    python scripts/session_status.py
    python scripts/session_status.py --no-probe    # Only read the session info file
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.config import load_config
from core.models.lifecycle import severity_for_age
from session.session_info import SessionInfoStore
from transport import WhatsAppGatewaySession


async def show_status(probe: bool) -> int:
    config = load_config()
    info = SessionInfoStore(config.session.session_info_path).load()

    print(f"Session info file: {config.session.session_info_path}")
    if info.last_auth is None:
        print("Last authentication: never recorded")
    else:
        age_hours = (datetime.now(timezone.utc) - info.last_auth).total_seconds() / 3600
        print(f"Last authentication: {info.last_auth.isoformat()} ({age_hours:.1f}h ago)")
        if age_hours >= config.session.alert_threshold_hours:
            print(f"Age alert level: {severity_for_age(age_hours).value}")
        if age_hours >= config.session.staleness_threshold_hours:
            print("Session is stale and will be refreshed on the next health check")
    if info.last_alert_at is not None:
        print(f"Last age alert: {info.last_alert_at.isoformat()}")

    if not probe:
        return 0

    gateway = WhatsAppGatewaySession(config.transport)
    try:
        result = await gateway.probe_state()
    finally:
        await gateway.close()

    print(f"Gateway {config.transport.gateway_url} session '{config.transport.session_name}': {result.status.value}")
    if result.identity:
        print(f"  Identity: {result.identity}")
    if result.detail:
        print(f"  Detail: {result.detail}")
    return 0 if result.connected else 1


def main():
    parser = argparse.ArgumentParser(description="Show transport session status")
    parser.add_argument("--no-probe", action="store_true", help="Do not contact the gateway")
    args = parser.parse_args()
    sys.exit(asyncio.run(show_status(probe=not args.no_probe)))


if __name__ == "__main__":
    main()
