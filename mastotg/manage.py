"""
Command line interface for the Mastodon to Telegram forwarder.
Runs the poll loop and provides migration and ledger maintenance commands.
"""
import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from mastotg.config import ConfigurationError, Settings, get_settings, normalize_channel
from mastotg.database import DatabaseManager
from mastotg.main import MastotgApplication, configure_logging, run_async
from mastotg.management import AdminCommands, MigrationCommands


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='mastotg',
        description="Forward posts from a Mastodon account to Telegram channels"
    )
    parser.add_argument('--db', type=Path, help='Path to the SQLite ledger (overrides DATABASE_PATH)')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Logging level (overrides LOG_LEVEL)')
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # run
    run_parser = subparsers.add_parser('run', help='Poll the feed and forward new posts')
    run_parser.add_argument('--once', action='store_true', help='Run a single round and exit')
    run_parser.add_argument('--interval', type=int, help='Seconds between rounds (overrides POLL_INTERVAL_SECONDS)')
    run_parser.add_argument('--dry-run', action='store_true',
                            help='Print messages as JSON instead of sending; the ledger is not updated')
    run_parser.add_argument('--feed-url', help='RSS feed URL or local file (overrides FEED_URL)')
    run_parser.add_argument('--channel', action='append', dest='channels',
                            help='Telegram channel to forward to; repeat for several (overrides TELEGRAM_CHANNELS)')
    run_parser.add_argument('--forward-backlog', action='store_true',
                            help='On the first run, forward the posts already in the feed')

    # migrate
    migration_parser = subparsers.add_parser('migrate', help='Database migration commands')
    migration_subparsers = migration_parser.add_subparsers(dest='migrate_action')
    migrate_run_parser = migration_subparsers.add_parser('run', help='Apply pending migrations')
    migrate_run_parser.add_argument('--target', type=int, help='Stop at this schema version')
    migration_subparsers.add_parser('status', help='Show schema version and pending migrations')

    # ledger
    ledger_parser = subparsers.add_parser('ledger', help='Forwarding ledger maintenance')
    ledger_subparsers = ledger_parser.add_subparsers(dest='ledger_action')
    ledger_subparsers.add_parser('stats', help='Show ledger statistics')
    prune_parser = ledger_subparsers.add_parser('prune', help='Delete old ledger entries')
    prune_parser.add_argument('--days', type=int, default=90, help='Days old to prune (default: 90)')
    forget_parser = ledger_subparsers.add_parser('forget', help='Remove a post so it is forwarded again')
    forget_parser.add_argument('post_id', help='Post GUID')
    mark_parser = ledger_subparsers.add_parser('mark', help='Record a post as forwarded without sending it')
    mark_parser.add_argument('post_id', help='Post GUID')

    # feed
    feed_parser = subparsers.add_parser('feed', help='Source feed commands')
    feed_subparsers = feed_parser.add_subparsers(dest='feed_action')
    preview_parser = feed_subparsers.add_parser('preview', help='Fetch the feed and print the parsed posts')
    preview_parser.add_argument('--limit', type=int, help='Only show the newest N posts')
    preview_parser.add_argument('--feed-url', help='RSS feed URL or local file (overrides FEED_URL)')

    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Return settings updated with the command line flags that were given."""
    update = {}
    if args.db:
        args.db.parent.mkdir(parents=True, exist_ok=True)
        update['database_path'] = args.db
    if args.log_level:
        update['log_level'] = args.log_level
    if getattr(args, 'interval', None) is not None:
        if args.interval < 1:
            raise ConfigurationError("--interval must be at least 1 second")
        update['poll_interval_seconds'] = args.interval
    if getattr(args, 'feed_url', None):
        update['feed_url'] = args.feed_url
    if getattr(args, 'channels', None):
        update['telegram_channels'] = [normalize_channel(c) for c in args.channels]
    if getattr(args, 'forward_backlog', False):
        update['skip_backlog'] = False
    return settings.model_copy(update=update) if update else settings


async def handle_run_command(args, settings: Settings) -> int:
    app = MastotgApplication(settings, dry_run=args.dry_run)

    if args.once:
        result = await app.run_once()
        print(json.dumps(result.as_dict()), file=sys.stderr)
        return 1 if result.failed else 0

    await app.run()
    return 0


async def handle_migration_commands(args, settings: Settings) -> int:
    """Handle migration-related commands."""
    migration_commands = MigrationCommands(DatabaseManager(settings.database_url))

    if args.migrate_action == 'run':
        print("🚀 Applying migrations...")
        result = await migration_commands.run_migrations(args.target)

        if result['success']:
            for migration in result['applied']:
                print(f"   - applied {migration['version']}: {migration['name']}")
            print(f"✅ Schema at version {result['current_version']}")
            return 0
        print(f"❌ Migration failed: {result.get('error', 'Unknown error')}")
        return 1

    if args.migrate_action == 'status':
        status = await migration_commands.get_migration_status()
        if not status['success']:
            print(f"❌ {status.get('error', 'Unknown error')}")
            return 1

        print(f"📈 Schema version {status['current_version']} (latest {status['latest_version']})")
        for migration in status['applied']:
            print(f"   ✅ {migration['version']}: {migration['name']} ({migration['applied_at']})")
        for migration in status['pending']:
            print(f"   ⏳ {migration['version']}: {migration['name']}")
        return 0

    print("Usage: mastotg migrate {run,status}")
    return 1


async def handle_ledger_commands(args, settings: Settings) -> int:
    """Handle ledger maintenance commands."""
    admin_commands = AdminCommands(DatabaseManager(settings.database_url), settings)

    if args.ledger_action == 'stats':
        result = await admin_commands.get_ledger_stats()
        if not result['success']:
            print(f"❌ {result.get('error', 'Unknown error')}")
            return 1

        stats = result['stats']
        print("📊 Ledger statistics")
        print(f"   Forwarded posts: {stats['forwarded_posts']}")
        print(f"   Oldest entry: {stats['oldest_forwarded_at'] or '-'}")
        print(f"   Newest entry: {stats['newest_forwarded_at'] or '-'}")
        print(f"   First round run at: {stats['initialized_at'] or '-'}")
        for chat_id, count in stats['deliveries_by_chat'].items():
            print(f"   Deliveries to {chat_id}: {count}")
        return 0

    if args.ledger_action == 'prune':
        print(f"🧹 Pruning ledger entries older than {args.days} days...")
        result = await admin_commands.prune_ledger(args.days)
    elif args.ledger_action == 'forget':
        result = await admin_commands.forget_post(args.post_id)
    elif args.ledger_action == 'mark':
        result = await admin_commands.mark_post(args.post_id)
    else:
        print("Usage: mastotg ledger {stats,prune,forget,mark}")
        return 1

    if result['success']:
        print(f"✅ {result['message']}")
        return 0
    print(f"❌ {result.get('message', result.get('error', 'Unknown error'))}")
    return 1


async def handle_feed_commands(args, settings: Settings) -> int:
    if args.feed_action != 'preview':
        print("Usage: mastotg feed preview [--limit N]")
        return 1

    result = await AdminCommands(settings=settings).preview_feed(args.limit)
    if not result['success']:
        print(f"❌ {result['error']}")
        return 1
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


async def dispatch(args, settings: Settings) -> int:
    if args.command == 'run':
        return await handle_run_command(args, settings)
    if args.command == 'migrate':
        return await handle_migration_commands(args, settings)
    if args.command == 'ledger':
        return await handle_ledger_commands(args, settings)
    if args.command == 'feed':
        return await handle_feed_commands(args, settings)
    print(f"Unknown command: {args.command}")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        settings = apply_overrides(get_settings(), args)
        configure_logging(settings)
        return run_async(dispatch(args, settings))
    except KeyboardInterrupt:
        print("\n⏹️  Operation cancelled by user")
        return 1
    except Exception as e:
        print(f"❌ Error: {e}")
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
