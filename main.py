#!/usr/bin/env python3
"""
Main CLI entry point for the helpdesk backend.

Scheduled and maintenance jobs that run outside the API process:
article embedding, semantic search checks, the periodic SLA run and
ticket statistics.

Usage examples:
    # Embed published articles that have no embedding yet
    python main.py embed

    # Re-embed every published article
    python main.py embed --all

    # Try a semantic search against the stored embeddings
    python main.py search "how do I reset my password" --limit 3

    # Evaluate SLAs, record breaches and run escalations (cron every minute)
    python main.py sla-check

    # Ticket statistics for a date window, printed as JSON
    python main.py stats --from 2024-01-01 --to 2024-01-31
"""

import argparse
import json
import sys
from datetime import datetime, timedelta, timezone

from core.config import get_database_settings
from core.embedding import EmbeddingGenerator
from core.embeddings_service import EmbeddingsService
from core.notifications import Notifier
from core.sla import SLATracker
from core.status_workflow import StatusWorkflow
from core.storage_article import ArticleClient
from core.storage_audit import AuditLogClient
from core.storage_embedding import EmbeddingStorage
from core.storage_notification import NotificationClient
from core.storage_sla import SLAStateClient
from core.storage_team import TeamClient
from core.storage_ticket import TicketClient
from core.storage_user import UserClient
from core.ticket_service import TicketService
from utils.logger import get_logger, set_log_level

logger = get_logger(__name__)


def setup_argparse() -> argparse.ArgumentParser:
    """
    Configure and return the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description="Helpdesk backend - CLI for scheduled and maintenance jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Embed published articles missing an embedding
  python main.py embed

  # Rebuild all article embeddings with debug logging
  python main.py --log-level DEBUG embed --all

  # Semantic search with a custom threshold
  python main.py search "vpn not connecting" --threshold 0.6

  # Periodic SLA evaluation
  python main.py sla-check

  # Ticket statistics for January
  python main.py stats --from 2024-01-01 --to 2024-01-31
        """,
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Set logging level (default: INFO)",
    )
    parser.add_argument("--version", action="version", version="%(prog)s 1.0.0")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # ========== EMBED COMMAND ==========
    embed_parser = subparsers.add_parser(
        "embed",
        help="Generate embeddings for published articles",
        description="Index published knowledge base articles for semantic search.",
    )
    embed_parser.add_argument(
        "--all",
        action="store_true",
        help="Re-embed every published article, not only those without an embedding",
    )

    # ========== SEARCH COMMAND ==========
    search_parser = subparsers.add_parser(
        "search",
        help="Run a semantic search",
        description="Search stored article embeddings by meaning.",
    )
    search_parser.add_argument("query", help="Natural language query")
    search_parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Minimum cosine similarity between 0 and 1 (default: HELPDESK_SEARCH_MATCH_THRESHOLD)",
    )
    search_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of results (default: HELPDESK_SEARCH_MATCH_COUNT)",
    )

    # ========== SLA-CHECK COMMAND ==========
    subparsers.add_parser(
        "sla-check",
        help="Evaluate ticket SLAs",
        description="Record SLA breaches, run escalations and apply status automations.",
    )

    # ========== STATS COMMAND ==========
    stats_parser = subparsers.add_parser(
        "stats",
        help="Print ticket statistics as JSON",
        description="Aggregate ticket statistics for tickets created in a date window.",
    )
    stats_parser.add_argument(
        "--from",
        dest="start",
        type=parse_date,
        default=None,
        help="Window start, ISO date or datetime (default: 30 days before --to)",
    )
    stats_parser.add_argument(
        "--to",
        dest="end",
        type=parse_date,
        default=None,
        help="Window end, ISO date or datetime (default: now)",
    )

    return parser


def parse_date(value: str) -> datetime:
    """Parse an ISO date/datetime argument; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date: '{value}' (expected ISO format)")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_ticket_service() -> TicketService:
    """Wire a TicketService from direct-connection storage clients."""
    ticket_client = TicketClient()
    team_client = TeamClient()
    audit_client = AuditLogClient()
    notifier = Notifier(NotificationClient(), ticket_client, team_client, UserClient())
    sla_tracker = SLATracker(SLAStateClient())
    workflow = StatusWorkflow(ticket_client, sla_tracker, notifier, audit_client)
    return TicketService(ticket_client, sla_tracker, workflow, notifier, team_client, audit_client)


def build_embeddings_service() -> EmbeddingsService:
    generator = EmbeddingGenerator()
    storage = EmbeddingStorage(embedding_dim=generator.expected_dim)
    return EmbeddingsService(generator, storage, ArticleClient())


def command_embed(args: argparse.Namespace) -> int:
    """
    Execute the embed command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, 1 if any article failed)
    """
    logger.info("=" * 80)
    logger.info(f"COMMAND: EMBED ARTICLES ({'ALL' if args.all else 'MISSING ONLY'})")
    logger.info("=" * 80)

    try:
        service = build_embeddings_service()
        stats = service.reindex_articles(only_missing=not args.all)
    except Exception as e:
        logger.error(f"Embedding generation failed: {str(e)}", exc_info=True)
        return 1

    logger.info("\n" + "=" * 80)
    logger.info("EMBEDDING COMPLETE")
    logger.info("=" * 80)
    logger.info(f"Indexed: {stats['indexed']}")
    logger.info(f"Skipped: {stats['skipped']}")
    logger.info(f"Failed:  {stats['failed']}")
    logger.info("=" * 80)

    return 1 if stats["failed"] else 0


def command_search(args: argparse.Namespace) -> int:
    """Execute the search command and print matches to stdout."""
    logger.info("=" * 80)
    logger.info("COMMAND: SEMANTIC SEARCH")
    logger.info("=" * 80)

    try:
        service = build_embeddings_service()
        results = service.search_similar_content(args.query, threshold=args.threshold, limit=args.limit)
    except ValueError as e:
        logger.error(f"Invalid search: {e}")
        return 1
    except Exception as e:
        logger.error(f"Search failed: {str(e)}", exc_info=True)
        return 1

    if not results:
        print("No matching articles found.")
        return 0

    for rank, result in enumerate(results, 1):
        print(f"{rank}. [{result.similarity:.3f}] {result.title}")
        if result.url:
            print(f"   {result.url}")
    return 0


def command_sla_check(args: argparse.Namespace) -> int:
    """
    Execute the sla-check command.

    Returns:
        Exit code (0 for success, 1 if the run failed or any ticket errored)
    """
    logger.info("=" * 80)
    logger.info("COMMAND: SLA CHECK")
    logger.info("=" * 80)

    try:
        stats = build_ticket_service().run_sla_checks()
    except Exception as e:
        logger.error(f"SLA check failed: {str(e)}", exc_info=True)
        return 1

    logger.info("\n" + "=" * 80)
    logger.info("SLA CHECK COMPLETE")
    logger.info("=" * 80)
    for key, value in stats.items():
        logger.info(f"{key.replace('_', ' ').capitalize():<20} {value}")
    logger.info("=" * 80)

    return 1 if stats.get("errors") else 0


def command_stats(args: argparse.Namespace) -> int:
    """Execute the stats command, printing the statistics JSON to stdout."""
    end = args.end or datetime.now(timezone.utc)
    start = args.start or end - timedelta(days=30)

    logger.info(f"Ticket statistics from {start.isoformat()} to {end.isoformat()}")

    try:
        stats = TicketClient().get_ticket_stats(start, end)
    except ValueError as e:
        logger.error(f"Invalid window: {e}")
        return 1
    except Exception as e:
        logger.error(f"Statistics failed: {str(e)}", exc_info=True)
        return 1

    print(json.dumps(stats, indent=2, default=str))
    return 0


COMMANDS = {
    "embed": command_embed,
    "search": command_search,
    "sla-check": command_sla_check,
    "stats": command_stats,
}


def main(argv=None) -> int:
    """
    Main entry point for the CLI application.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = setup_argparse()
    args = parser.parse_args(argv)

    set_log_level(args.log_level)

    start_time = datetime.now()
    logger.info(f"Helpdesk backend - Starting at {start_time.isoformat()}")
    logger.info(f"Command: {args.command or 'none'}")

    if not args.command:
        parser.print_help()
        return 1

    try:
        get_database_settings()
        logger.debug("Configuration loaded successfully")
    except Exception as e:
        logger.error(f"Configuration error: {str(e)}")
        logger.error("Please ensure all required environment variables are set in .env file")
        return 1

    handler = COMMANDS.get(args.command)
    if handler is None:
        logger.error(f"Unknown command: {args.command}")
        parser.print_help()
        return 1

    try:
        exit_code = handler(args)
    except KeyboardInterrupt:
        logger.warning("\nOperation cancelled by user")
        exit_code = 130  # Standard exit code for SIGINT
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}", exc_info=True)
        exit_code = 1

    duration = (datetime.now() - start_time).total_seconds()
    logger.info(f"\nCompleted in {duration:.2f} seconds")
    logger.info(f"Exit code: {exit_code}")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
