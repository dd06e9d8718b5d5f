"""Command-line entry point for es-verify.

Commands:
    es-verify index-exists: Wait for an index prefix to be present (or absent)
    es-verify wait-workload: Wait for a Deployment/StatefulSet/CronJob/Job

Exit codes are meant for CI scripts: 0 when the expectation held, 1 when
the deadline passed, 2 for any other verification error.

Example:
    $ es-verify index-exists simple-prod-jaeger- --namespace storage --secure
    $ es-verify index-exists simple-prod-jaeger- --absent --timeout 600
    $ es-verify wait-workload Deployment simple-prod-query --namespace observability
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from enum import IntEnum
from typing import TYPE_CHECKING, Any

import click
import structlog
from pydantic import ValidationError

from es_verify import __version__
from es_verify.config import VerificationConfig
from es_verify.errors import DeadlineExceededError, VerificationError
from es_verify.kube import KubernetesWorkloadReader, create_api_client
from es_verify.logging import configure_logging
from es_verify.verification import CRON_EXTRA_TIMEOUT, IndexCleanerScenario
from es_verify.workloads import (
    JobWatchTarget,
    WorkloadKind,
    WorkloadWatch,
    cleaner_job_name,
)

if TYPE_CHECKING:
    from typing import NoReturn

logger = structlog.get_logger(__name__)


class ExitCode(IntEnum):
    """Process exit codes."""

    SUCCESS = 0
    DEADLINE_EXCEEDED = 1
    VERIFICATION_ERROR = 2


def error_exit(message: str, exit_code: ExitCode) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(exit_code)


def _build_config(**overrides: Any) -> VerificationConfig:
    """Build a VerificationConfig from the options the user actually passed."""
    try:
        return VerificationConfig(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        raise click.UsageError(str(e)) from e


def _run(action: str, step: Callable[[], None]) -> None:
    try:
        step()
    except DeadlineExceededError as e:
        logger.warning("cli.deadline_exceeded", action=action, error=str(e))
        error_exit(str(e), ExitCode.DEADLINE_EXCEEDED)
    except VerificationError as e:
        logger.error("cli.verification_failed", action=action, error_type=type(e).__name__)
        error_exit(str(e), ExitCode.VERIFICATION_ERROR)
    except Exception as e:
        # Exit status 1 is reserved for deadlines
        logger.exception("cli.unexpected_error", action=action, error=str(e))
        error_exit(f"{type(e).__name__}: {e}", ExitCode.VERIFICATION_ERROR)


namespace_option = click.option(
    "--namespace",
    "-n",
    default=None,
    help="Namespace of the target resources [env: ES_VERIFY_STORAGE_NAMESPACE].",
)
interval_option = click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between checks [env: ES_VERIFY_RETRY_INTERVAL].",
)
timeout_option = click.option(
    "--timeout",
    type=float,
    default=None,
    help="Seconds before giving up [env: ES_VERIFY_TIMEOUT].",
)


@click.group(
    name="es-verify",
    help="Verify eventual state of Elasticsearch-backed tracing deployments.",
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(version=__version__, prog_name="es-verify")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
)
@click.option("--json-logs/--console-logs", default=False, help="Emit logs as JSON lines.")
def cli(log_level: str, json_logs: bool) -> None:
    """Root command group."""
    configure_logging(log_level.upper(), json_output=json_logs)


@cli.command(name="index-exists")
@click.argument("prefix")
@click.option("--absent", is_flag=True, help="Wait for the prefix to disappear instead.")
@namespace_option
@click.option(
    "--secure",
    is_flag=True,
    help="Query over mutual TLS using the admin secret [env: ES_VERIFY_SECURE].",
)
@interval_option
@timeout_option
def index_exists_command(
    prefix: str,
    absent: bool,
    namespace: str | None,
    secure: bool,
    interval: float | None,
    timeout: float | None,
) -> None:
    """Wait until an index whose name contains PREFIX exists (or, with --absent, does not)."""
    config = _build_config(
        storage_namespace=namespace,
        secure_transport=True if secure else None,
        retry_interval=interval,
        timeout=timeout,
    )

    def step() -> None:
        scenario = IndexCleanerScenario.from_config(config)
        scenario.index_with_prefix_exists(prefix, expected=not absent)

    _run("index-exists", step)
    click.echo(f"Index prefix '{prefix}' is {'absent' if absent else 'present'}")


@cli.command(name="wait-workload")
@click.argument(
    "kind",
    type=click.Choice([kind.value for kind in WorkloadKind], case_sensitive=False),
)
@click.argument("name")
@namespace_option
@click.option(
    "--replicas",
    type=click.IntRange(min=0),
    default=None,
    help="Also require this many desired replicas (Deployment/StatefulSet).",
)
@interval_option
@timeout_option
def wait_workload_command(
    kind: str,
    name: str,
    namespace: str | None,
    replicas: int | None,
    interval: float | None,
    timeout: float | None,
) -> None:
    """Wait until workload NAME of KIND is ready.

    \b
    Deployment/StatefulSet: all desired replicas ready.
    CronJob: NAME's index-cleaner CronJob exists.
    Job: a Job spawned by NAME's index-cleaner CronJob completed.
    """
    workload_kind = next(k for k in WorkloadKind if k.value.lower() == kind.lower())
    config = _build_config(
        storage_namespace=namespace,
        retry_interval=interval,
        timeout=timeout,
    )
    extra = CRON_EXTRA_TIMEOUT
    if workload_kind in (WorkloadKind.DEPLOYMENT, WorkloadKind.STATEFUL_SET):
        extra = 0.0
    owner = cleaner_job_name(name) if workload_kind is WorkloadKind.JOB else name
    target = JobWatchTarget(config.storage_namespace, owner, workload_kind)

    def step() -> None:
        api_client = create_api_client(config.kubeconfig_path, config.context)
        reader = KubernetesWorkloadReader.from_api_client(api_client)
        WorkloadWatch(reader, target, replicas).wait(config.poll_spec(extra=extra))

    _run("wait-workload", step)
    click.echo(f"{target} is ready")


def main(argv: list[str] | None = None) -> None:
    """Console-script entry point."""
    cli(args=argv, prog_name="es-verify")


if __name__ == "__main__":
    main()
