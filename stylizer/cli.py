"""
Command-line front end.

Usage:
    stylizer transform photo.jpg --output styled.png
    stylizer config --env production > .env
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import List, Optional

import aiofiles
import aiohttp
import structlog

from .models.schemas import ImageSource, TransformationRequest, TransformOutcome, TransformState
from .services.stylizer import StylizerSession
from .utils.cancellation import CancellationToken
from .utils.config import AppSettings, create_config_file, get_settings, validate_config
from .utils.exceptions import ConfigurationError
from .utils.monitoring import init_monitoring

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_CANCELLED = 130

DOWNLOAD_CHUNK_SIZE = 64 * 1024


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stylizer",
        description="Stylize photos with a remote inference service"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    transform = subparsers.add_parser("transform", help="Transform an image and print the result URL")
    transform.add_argument("image", type=Path, help="Path to the source image")
    transform.add_argument("--token", help="API token (defaults to REPLICATE_API_TOKEN)")
    transform.add_argument(
        "--no-optimize",
        dest="optimize",
        action="store_false",
        default=None,
        help="Upload the original image with full inference steps"
    )
    transform.add_argument("--output", type=Path, help="Download the result to this path")
    transform.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override LOG_LEVEL"
    )

    config = subparsers.add_parser("config", help="Print a sample .env file")
    config.add_argument(
        "--env",
        default="development",
        choices=["development", "staging", "production"],
        help="Target environment (default: development)"
    )

    return parser


def resolve_credential(token: Optional[str], settings: AppSettings) -> str:
    """Pick the per-call token, falling back to configuration."""

    if token:
        return token
    if settings.replicate.api_token is not None:
        return settings.replicate.api_token.get_secret_value()
    raise ConfigurationError("No API token: pass --token or set REPLICATE_API_TOKEN")


async def download_result(session: aiohttp.ClientSession, url: str, destination: Path) -> int:
    """Stream the artifact at ``url`` to ``destination``; returns bytes written."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    async with session.get(url) as response:
        response.raise_for_status()
        async with aiofiles.open(destination, "wb") as f:
            async for chunk in response.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                await f.write(chunk)
                written += len(chunk)

    logger.info("Result downloaded", path=str(destination), size=written)
    return written


def _report(outcome: TransformOutcome):
    if outcome.state is TransformState.LOADING:
        print("Transforming image...", file=sys.stderr)


async def run_transform(args: argparse.Namespace, settings: AppSettings) -> int:
    credential = resolve_credential(args.token, settings)

    try:
        image = await ImageSource.from_path(args.image)
    except OSError as e:
        print(f"Cannot read {args.image}: {e}", file=sys.stderr)
        return EXIT_FAILED

    optimize = settings.processing.optimize_by_default if args.optimize is None else args.optimize
    request = TransformationRequest(image=image, credential=credential, optimize=optimize)

    cancel_token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_token.cancel, "Interrupted")
        handles_sigint = True
    except (NotImplementedError, RuntimeError, ValueError):
        handles_sigint = False  # no signal support on this platform

    async with StylizerSession(settings=settings) as session:
        try:
            outcome = await session.run(request, cancel_token=cancel_token, listener=_report)
        finally:
            if handles_sigint:
                loop.remove_signal_handler(signal.SIGINT)

        if outcome.state is TransformState.CANCELLED:
            print("Cancelled", file=sys.stderr)
            return EXIT_CANCELLED
        if outcome.state is not TransformState.SUCCEEDED:
            print(f"Failed to transform image ({outcome.error_kind}): {outcome.message}", file=sys.stderr)
            return EXIT_FAILED

        print(outcome.result_ref)

        if args.output:
            try:
                await download_result(session.client.session, outcome.result_ref, args.output)
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                print(f"Download failed: {e}", file=sys.stderr)
                return EXIT_FAILED

    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "config":
        print(create_config_file(args.env), end="")
        return EXIT_OK

    settings = get_settings()
    if args.log_level:
        settings.monitoring.log_level = args.log_level
    init_monitoring(settings)

    for warning in validate_config(settings):
        logger.warning("Configuration warning", warning=warning)

    try:
        return asyncio.run(run_transform(args, settings))
    except ConfigurationError as e:
        print(e.message, file=sys.stderr)
        return EXIT_CONFIG


if __name__ == "__main__":
    sys.exit(main())
