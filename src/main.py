import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from src.domain.exceptions import PinnerException
from src.infrastructure.github_client import GitHubRestClient
from src.infrastructure.rules import load_rules
from src.infrastructure.settings import PinnerSettings
from src.application.pinner_service import PinnerService

logger = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Pin the latest release of selected GitHub repositories into a generated Nix file.",
    )
    parser.add_argument("--rules", type=str, default=None, help="selection rules file (default: plugins.txt)")
    parser.add_argument("--output", type=str, default=None, help="generated file to rewrite (default: data.nix)")
    parser.add_argument(
        "--skip-untagged", action="store_true", default=None,
        help="skip repositories without release tags instead of failing",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    return parser.parse_args(argv)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.StreamHandler(sys.stderr)
        ]
    )


async def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)

    settings = PinnerSettings.from_env(
        rules_file=args.rules,
        output_file=args.output,
        skip_untagged=args.skip_untagged,
    )
    if not settings.github_auth:
        logger.warning("GITHUB_AUTH is not set; using unauthenticated access with a reduced quota.")

    # SIGTERM cancels the run so the artifact gets restored on the way out.
    task = asyncio.current_task()
    with contextlib.suppress(NotImplementedError):
        asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, task.cancel)

    service = PinnerService(
        github_client=GitHubRestClient.from_settings(settings),
        artifact_path=settings.output_file,
        skip_untagged=settings.skip_untagged,
    )

    try:
        rules = load_rules(settings.rules_file)
        await service.run(rules)
    except PinnerException as e:
        logger.error(f"{e} {settings.output_file} was left unchanged.")
        return EXIT_FAILURE
    except OSError as e:
        logger.error(f"I/O error: {e}")
        return EXIT_FAILURE
    except Exception as e:
        logger.exception(f"An unexpected error occurred: {e}")
        return EXIT_FAILURE
    return 0


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Run interrupted; generated file left unchanged.")
        sys.exit(EXIT_INTERRUPTED)
    except asyncio.CancelledError:
        logger.info("Run terminated; generated file left unchanged.")
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    run()
