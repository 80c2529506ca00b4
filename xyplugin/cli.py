from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence

from xyplugin.application.container import get_job_runner
from xyplugin.application.runner import read_job_context
from xyplugin.config import get_settings
from xyplugin.domain.errors import JobInputError
from xyplugin.infra.logging.setup import configure_logging, shutdown_logging

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="xyplugin",
        description="Run one xyOps job: read the job JSON from stdin and report on stdout.",
    )
    parser.add_argument("--log-level", default=None, help="Diagnostic log level written to stderr.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    if args.log_level:
        settings.log_level = args.log_level
    configure_logging(settings)
    try:
        try:
            ctx = read_job_context(sys.stdin)
        except JobInputError as exc:
            logger.error("job input rejected", extra={"event": "job.input.rejected", "error": str(exc)})
            sys.stderr.write(f"xyplugin: {exc}\n")
            return 1
        try:
            get_job_runner().run(ctx)
        except SyntaxError as exc:
            logger.error(
                "command compilation failed",
                extra={"event": "command.compile.failed", "error_type": type(exc).__name__, "error": str(exc)},
            )
            sys.stderr.write(f"xyplugin: command does not compile: {exc}\n")
            return 1
        return 0
    finally:
        shutdown_logging()


if __name__ == "__main__":
    sys.exit(main())
