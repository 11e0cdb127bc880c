import sys
from pathlib import Path

import typer
from loguru import logger

from log_relay.config import get_settings
from log_relay.models import LogLevel
from log_relay.pipeline import build_pipeline
from log_relay.sinks import SINK_WRITES_TOTAL, RetentionSweeper

app = typer.Typer(help="log-relay CLI (retention, delivery checks)")


def _sink_writes(status: str) -> float:
    """Sum of sink write calls with ``status`` across all sinks and modes."""
    total = 0.0
    for family in SINK_WRITES_TOTAL.collect():
        for sample in family.samples:
            if sample.name.endswith("_total") and sample.labels.get("status") == status:
                total += sample.value
    return total


@app.command()
def prune(
    directory: Path = typer.Argument(..., help="Log directory to sweep"),
    retention_days: int = typer.Option(14, "--retention-days", min=1, help="Days to keep, today included"),
    name: str = typer.Option("log-relay-index-file", "--name", help="Sweep marker name"),
):
    """Delete expired JSONL log files now, ignoring the daily throttle."""
    try:
        if not directory.is_dir():
            logger.error(f"Not a directory: {directory}")
            sys.exit(1)

        logger.info(f"Pruning {directory} (keeping {retention_days} day(s))")
        removed = RetentionSweeper(directory, retention_days, name=name).prune()
        for path in removed:
            logger.info(f"Removed {path.name}")
        logger.success(f"Pruned {len(removed)} file(s)")

    except Exception as e:
        logger.error(f"Failed to prune {directory}: {e}")
        sys.exit(1)


@app.command("send-test")
def send_test(
    channel: str = typer.Argument(..., help="Channel to deliver to (e.g. search, broker, index_file)"),
    message: str = typer.Option("log_relay_test", "--message", help="Message text"),
    level: str = typer.Option("info", "--level", help="Log level"),
):
    """Push one test entry through the configured pipeline and flush it."""
    try:
        settings = get_settings()
        pipeline = build_pipeline(settings)
        logger.info(f"Sending test entry to channel {channel!r}")

        pipeline.buffer.defer(
            channel,
            LogLevel.parse(level),
            message,
            {"log_index": settings.SEARCH_DEFAULT_INDEX, "test": True},
        )
        registered = channel in pipeline.registry.channels
        successes, failures = _sink_writes("success"), _sink_writes("failure")
        flushed = pipeline.buffer.flush()
        delivered = _sink_writes("success") > successes
        failed = _sink_writes("failure") > failures
        pipeline.close()

        if not registered:
            logger.warning(f"No sink registered for {channel!r}; {flushed} entry written to the fallback logger")
        elif failed and not delivered:
            logger.error(f"Delivery to {channel!r} failed; see sink errors above")
            sys.exit(1)
        else:
            logger.success(f"Delivered {flushed} entry to {channel!r}")

    except Exception as e:
        logger.error(f"Failed to send test entry: {e}")
        sys.exit(1)


if __name__ == "__main__":
    app()
