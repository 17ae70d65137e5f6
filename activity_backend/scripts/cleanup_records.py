from __future__ import annotations

import argparse
import json
import logging

from activity_backend.config import load_config
from activity_backend.logging_config import configure_logging
from activity_backend.services import admin_service, configure_services
from activity_backend.storage import init_storage

LOGGER = logging.getLogger("activity.scripts.cleanup")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Remove pending:* players and 'Anonymous Player' usernames from stored player records.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report how many player files exist; do not modify anything.",
    )
    args = parser.parse_args()

    config = load_config()
    configure_logging(config)
    configure_services(config)
    store = init_storage(config)

    if args.dry_run:
        ids = store.list_ids()
        pending = sum(1 for player_id in ids if player_id.startswith(admin_service.PENDING_PREFIX))
        print(json.dumps({"dryRun": True, "players": len(ids), "pendingPlayers": pending}, indent=2))
        return

    LOGGER.info("Cleaning player records in %s", config.players_dir)
    result = admin_service.cleanup_records(store)
    flush = store.flush_dirty()
    print(json.dumps({"dryRun": False, **result, "flushFailed": flush["failed"]}, indent=2))


if __name__ == "__main__":
    main()
