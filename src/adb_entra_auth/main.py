"""Console entry point: configure from the environment and run the pipeline."""

from __future__ import annotations

import asyncio
import logging
import sys

from rich.console import Console
from rich.markup import escape

from adb_entra_auth.config import ConfigurationError, Settings

console = Console(highlight=False, soft_wrap=True)


def _report(exc: BaseException) -> None:
    console.print(f"\n[red]Error:[/red] {escape(str(exc))}")
    inner = exc.__cause__
    if inner is None and not exc.__suppress_context__:
        inner = exc.__context__
    if inner is not None:
        console.print(f"[red]Inner error:[/red] {escape(str(inner))}")


def main() -> None:
    try:
        settings = Settings.from_env()
    except ConfigurationError as exc:
        _report(exc)
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.WARNING),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    from adb_entra_auth.pipeline import run_pipeline

    try:
        asyncio.run(run_pipeline(settings, console))
    except Exception as exc:
        logging.getLogger(__name__).debug("Pipeline failed", exc_info=True)
        _report(exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
