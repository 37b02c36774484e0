"""
Social Client Command Line

Thin command line driver for the client core. It logs in with the configured
(or given) credentials, runs one operation and prints the result as JSON.
Errors are reported with their kind so scripts can branch on them.

Usage:
    python main.py timeline --limit 10
    python main.py timeline --public
    python main.py post "Hello from the client core"
    python main.py like at://did:plc:.../app.bsky.feed.post/...
    python main.py thread at://did:plc:.../app.bsky.feed.post/...
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional, List, Dict, Any

from config import settings
from config.validators import validate_settings, get_config_summary
from data.models import Page, Post, Session
from services.protocols import SocialClientProtocol
from services.social_service import SocialService
from utils.logger import get_logger, setup_file_logging
from utils.exceptions import SocialClientError, ValidationError

logger = get_logger(__name__)


def _page_to_dict(page: Page) -> Dict[str, Any]:
    return {"items": [post.to_dict() for post in page.items], "cursor": page.cursor}


class ClientRunner:
    """
    Runs a single command against the client facade.

    The facade is injectable so the runner can be exercised without a network.
    """

    def __init__(self, client: Optional[SocialClientProtocol] = None, validate: bool = True):
        if validate:
            validate_settings()
        self.client = client or SocialService()

    async def _session(self, args: argparse.Namespace) -> Session:
        identifier = args.identifier or settings.AT_PROTOCOL_USERNAME
        password = args.password or settings.AT_PROTOCOL_PASSWORD
        if not identifier or not password:
            raise ValidationError("Missing credentials: pass --identifier/--password "
                                  "or set AT_PROTOCOL_USERNAME/AT_PROTOCOL_PASSWORD")
        return await self.client.login(args.service, identifier, password)

    async def run(self, args: argparse.Namespace) -> Dict[str, Any]:
        """
        Execute the command described by ``args``.

        Returns:
            Dict[str, Any]: JSON-serializable result.
        """
        if args.command == "timeline" and args.public:
            page = await self.client.get_timeline(args.service, None, cursor=args.cursor, limit=args.limit)
            return _page_to_dict(page)

        session = await self._session(args)

        if args.command == "login":
            return {"did": session.did, "handle": session.handle,
                    "expires_at": session.expires_at.isoformat()}
        if args.command == "timeline":
            page = await self.client.get_timeline(args.service, session, cursor=args.cursor, limit=args.limit)
            return _page_to_dict(page)
        if args.command == "post":
            uri = await self.client.create_post(args.service, session, args.text)
            return {"uri": uri}
        if args.command == "like":
            liked = await self.client.like_post(args.service, session, args.uri)
            return {"liked": liked}
        if args.command == "thread":
            post: Post = await self.client.get_post_detail(args.service, session, args.uri)
            replies = await self.client.get_post_replies(args.service, session, args.uri,
                                                         cursor=args.cursor, limit=args.limit)
            return {"post": post.to_dict(), "replies": _page_to_dict(replies)}

        raise ValidationError(f"Unknown command: {args.command}")


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='AT Protocol client core')
    parser.add_argument('--service', type=str, default=settings.DEFAULT_SERVICE, help='Service endpoint')
    parser.add_argument('--identifier', type=str, default=None, help='Handle or email')
    parser.add_argument('--password', type=str, default=None, help='App password')
    parser.add_argument('--log-file', type=str, default=settings.LOG_FILE or None, help='Log file path')
    parser.add_argument('--log-level', type=str, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default=settings.LOG_LEVEL, help='Logging level')

    sub = parser.add_subparsers(dest='command', required=True)
    sub.add_parser('login', help='Log in and show the account')

    timeline = sub.add_parser('timeline', help='Show one page of the timeline')
    timeline.add_argument('--cursor', type=str, default=None)
    timeline.add_argument('--limit', type=int, default=None)
    timeline.add_argument('--public', action='store_true', help='Fetch the public feed without logging in')

    post = sub.add_parser('post', help='Publish a post')
    post.add_argument('text', type=str)

    like = sub.add_parser('like', help='Like a post')
    like.add_argument('uri', type=str)

    thread = sub.add_parser('thread', help='Show a post and its replies')
    thread.add_argument('uri', type=str)
    thread.add_argument('--cursor', type=str, default=None)
    thread.add_argument('--limit', type=int, default=None)

    return parser.parse_args(argv)


async def _run(runner: ClientRunner, args: argparse.Namespace) -> Dict[str, Any]:
    try:
        return await runner.run(args)
    finally:
        await runner.client.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the command line."""
    args = parse_arguments(argv)

    logging.getLogger().setLevel(args.log_level)
    if args.log_file:
        setup_file_logging(args.log_file, args.log_level)

    logger.debug(f"Configuration: {get_config_summary()}")

    try:
        runner = ClientRunner()
        result = asyncio.run(_run(runner, args))
        print(json.dumps(result, indent=2, ensure_ascii=False))
        exit_code = 0
    except SocialClientError as e:
        logger.error(f"{args.command} failed ({e.kind}): {e}")
        print(json.dumps({"error": e.kind, "message": str(e)}), file=sys.stderr)
        exit_code = 1

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
