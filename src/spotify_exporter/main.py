from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv
from tqdm import tqdm

from .config import AppConfig, get_config
from .crawler import Crawler
from .errors import CrawlError
from .output import CsvPlaylistWriter
from .spotify_client import Credentials, authorization_url, exchange_code_for_tokens
from .token_cache import load_refresh_token, save_refresh_token


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spotify-export",
        description="Export every playlist of your Spotify account to CSV files.",
    )
    parser.add_argument("code", nargs="?", help="authorization code from the Spotify redirect")
    parser.add_argument("--output-dir", help="directory for the CSV files (default: EXPORT_OUTPUT_DIR or .)")
    parser.add_argument("--connections", type=int, help="number of concurrent requests")
    parser.add_argument("--token-cache", help="path of the encrypted refresh-token cache")
    parser.add_argument("--no-progress", action="store_true", help="hide the progress bar")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    return parser


def apply_overrides(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    if args.output_dir:
        cfg.output_dir = args.output_dir
    if args.connections is not None:
        if args.connections < 1:
            raise ValueError("--connections must be at least 1")
        cfg.connection_count = args.connections
    if args.token_cache:
        cfg.token_cache_path = args.token_cache
    return cfg


def initial_credentials(cfg: AppConfig, code: Optional[str]) -> Optional[Credentials]:
    """Credentials from the authorization code, else from the token cache."""
    if code:
        return exchange_code_for_tokens(code, cfg)
    if cfg.token_cache_enabled:
        refresh_token = load_refresh_token(cfg.token_cache_path, cfg.fernet_key)
        if refresh_token:
            logger.info("Using cached refresh token from %s", cfg.token_cache_path)
            return Credentials(refresh_token=refresh_token)
    return None


def store_refresh_token(cfg: AppConfig, refresh_token: str) -> None:
    """Write the token cache when it is enabled; a failed write is logged, not raised."""
    if not (cfg.token_cache_enabled and refresh_token):
        return
    try:
        save_refresh_token(cfg.token_cache_path, refresh_token, cfg.fernet_key)
    except (OSError, ValueError) as exc:
        logger.warning("Couldn't save the token cache %s: %s", cfg.token_cache_path, exc)


def run(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        cfg = apply_overrides(get_config(), args)
    except (RuntimeError, ValueError) as exc:
        logger.error("Error: %s", exc)
        return 1

    try:
        credentials = initial_credentials(cfg, args.code)
    except CrawlError as exc:
        logger.error("Error: %s", exc)
        return 1
    if credentials is None:
        print("Open this URL, allow access and pass the code from the redirect URL:")
        print(authorization_url(cfg))
        return 2

    with tqdm(unit="playlist", desc="Playlists", disable=args.no_progress) as progress:
        writer = CsvPlaylistWriter(cfg.output_dir, progress=progress)
        crawler = Crawler(cfg, credentials, writer)
        try:
            written = asyncio.run(crawler.run())
        except CrawlError as exc:
            logger.error("Error: %s", exc)
            return 1
        finally:
            store_refresh_token(cfg, crawler.credentials.refresh_token)

    if writer.failed_count:
        logger.warning("%d playlists could not be written", writer.failed_count)
    logger.info("Done, %d playlists written to %s", written, cfg.output_dir)
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
