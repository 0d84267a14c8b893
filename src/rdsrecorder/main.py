"""Main entry point for the rdsrecorder CLI."""

import asyncio
import signal
import sys
from collections.abc import Awaitable
from pathlib import Path
from typing import Any, Callable, Optional

import click
import structlog
from prometheus_client import CollectorRegistry

from rdsrecorder.aws_clients import BotoObjectStoreApi, BotoRDSApi, verify_aws_credentials
from rdsrecorder.config import RecorderConfig, load_config
from rdsrecorder.exceptions import ConfigurationError, RecorderError
from rdsrecorder.metrics import RecorderMetrics
from rdsrecorder.metrics_server import MetricsServer
from rdsrecorder.planner import WindowPlanner
from rdsrecorder.run import RunHandle, create_run_handle
from rdsrecorder.timeutils import TIMESTAMP_FORMAT
from utils.logging import bind_run_context, configure_logging


@click.group()
@click.option("--debug", is_flag=True, default=False, help="Enable debug logging")
@click.option(
    "--start",
    default="",
    help=f"Actions from this time onward. Format({TIMESTAMP_FORMAT})",
)
@click.option(
    "--finish",
    default="",
    help=f"Stop actions at this time. Format({TIMESTAMP_FORMAT})",
)
@click.option(
    "--bucket",
    default=None,
    help="Bucket identifier name. Default value is obtained from AWS_S3_BUCKET_NAME env var",
)
@click.option("--db-identifier", default=None, help="Database identifier name")
@click.option(
    "--metrics-address",
    default=None,
    help="Address to bind HTTP metrics listener (default: 0.0.0.0)",
)
@click.option(
    "--metrics-port",
    default=None,
    type=click.IntRange(1, 65535),
    help="Port to bind HTTP metrics listener (default: 9445)",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    default=None,
    type=click.Path(exists=True, path_type=Path),
    help="Optional configuration file (YAML); flags take precedence",
)
@click.option(
    "--log-format",
    default="console",
    type=click.Choice(["console", "json"], case_sensitive=False),
    help="Log format: 'console' for human-readable output, 'json' for structured logs",
)
@click.pass_context
def cli(
    ctx: click.Context,
    debug: bool,
    start: str,
    finish: str,
    bucket: Optional[str],
    db_identifier: Optional[str],
    metrics_address: Optional[str],
    metrics_port: Optional[int],
    config_path: Optional[Path],
    log_format: str,
) -> None:
    """Save Postgres logs/snapshots from AWS."""
    run = create_run_handle()
    logger = configure_logging(
        log_level="DEBUG" if debug else "INFO",
        log_format=log_format,
        correlation_id=run.pid,
    ).bind(component="main")
    bind_run_context(command=ctx.invoked_subcommand)
    logger.info("starting process", recovery=run.is_recovery)

    ctx.obj = {
        "run": run,
        "logger": logger,
        "start": start,
        "finish": finish,
        "bucket": bucket,
        "db_identifier": db_identifier,
        "metrics_address": metrics_address,
        "metrics_port": metrics_port,
        "config_path": config_path,
    }


def _load_effective_config(options: dict[str, Any]) -> RecorderConfig:
    """Configuration file (or defaults) with command line overrides applied."""
    config = load_config(options["config_path"])
    if options["bucket"]:
        config.bucket = options["bucket"]
    if options["db_identifier"]:
        config.db_identifier = options["db_identifier"]
    if options["metrics_address"]:
        config.metrics.address = options["metrics_address"]
    if options["metrics_port"]:
        config.metrics.port = options["metrics_port"]
    return config


async def _execute(
    run: RunHandle,
    config: RecorderConfig,
    metrics: RecorderMetrics,
    logger: structlog.BoundLogger,
    operation: Callable[[], Awaitable[Any]],
) -> Any:
    """Run an operation with signal handling and the metrics endpoint around it."""
    loop = asyncio.get_running_loop()

    def on_signal(sig: signal.Signals) -> None:
        logger.warning("signal received, cancelling the run", signal=sig.name)
        run.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, on_signal, sig)
        except NotImplementedError:
            logger.debug("signal handlers not supported on this platform", signal=sig.name)

    server: Optional[MetricsServer] = None
    if config.metrics.enabled:
        server = MetricsServer(
            metrics,
            address=config.metrics.address,
            port=config.metrics.port,
            shutdown_grace_seconds=config.metrics.shutdown_grace_seconds,
            logger=logger,
        )
        try:
            await server.start()
        except OSError as e:
            logger.error("server.not-started", error=str(e))
            server = None

    try:
        return await operation()
    finally:
        if server is not None:
            await server.stop()


def _run_command(
    options: dict[str, Any],
    build_operation: Callable[[WindowPlanner, RecorderConfig], Callable[[], Awaitable[Any]]],
) -> Any:
    run: RunHandle = options["run"]
    logger: structlog.BoundLogger = options["logger"]

    try:
        config = _load_effective_config(options)
        bind_run_context(db_identifier=config.db_identifier, bucket=config.bucket)
        verify_aws_credentials(config.aws, logger=logger)
    except ConfigurationError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)

    metrics = RecorderMetrics(logger=logger, registry=CollectorRegistry())
    planner = WindowPlanner(
        run,
        BotoRDSApi(config.aws, logger=logger),
        BotoObjectStoreApi(config.aws, logger=logger),
        config=config,
        metrics=metrics,
        logger=logger,
    )

    try:
        return asyncio.run(
            _execute(run, config, metrics, logger, build_operation(planner, config))
        )
    except RecorderError as e:
        logger.error("the process finished with an error", error=str(e))
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error", error=str(e))
        sys.exit(1)


@cli.command()
@click.pass_obj
def sync(options: dict[str, Any]) -> None:
    """Save logs for the period of time provided & take a snapshot at the start time."""

    def build(planner: WindowPlanner, config: RecorderConfig) -> Callable[[], Awaitable[Any]]:
        return lambda: planner.sync(
            config.db_identifier, options["start"], options["finish"], config.bucket
        )

    _run_command(options, build)


@cli.command()
@click.pass_obj
def snapshot(options: dict[str, Any]) -> None:
    """Take a snapshot at the start time, or right now."""

    def build(planner: WindowPlanner, config: RecorderConfig) -> Callable[[], Awaitable[Any]]:
        return lambda: planner.snapshot(config.db_identifier, options["start"])

    _run_command(options, build)


@cli.command()
@click.pass_obj
def pid(options: dict[str, Any]) -> None:
    """Create a PID for rdsrecorder."""
    click.echo(options["run"].pid)


if __name__ == "__main__":
    cli()
