"""Workload readiness watcher.

Check closures for the poll engine that read workload status through the
narrow WorkloadStatusReader interface: deployment and statefulset replica
readiness, scheduled (cron) job existence and triggered job completion.
A triggered job that reaches a terminal "Failed" condition raises
WorkloadFailedError instead of being polled until the deadline, so a broken
index cleaner is reported as such.

Example:
    from es_verify.workloads import JobWatchTarget, WorkloadKind, WorkloadWatch

    target = JobWatchTarget("observability", "simple-prod", WorkloadKind.JOB)
    WorkloadWatch(reader, target).wait(config.poll_spec())
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import structlog

from es_verify.errors import (
    DeadlineExceededError,
    WatchFinishedError,
    WorkloadFailedError,
)
from es_verify.polling import PollSpec, wait_until

logger = structlog.get_logger(__name__)

CLEANER_SUFFIX = "-es-index-cleaner"


def cleaner_job_name(owner_name: str) -> str:
    """Name of the index-cleaner cron job created for an instance."""
    return f"{owner_name}{CLEANER_SUFFIX}"


class WorkloadKind(str, Enum):
    """Kinds of workload the watcher can observe."""

    CRON_JOB = "CronJob"
    JOB = "Job"
    DEPLOYMENT = "Deployment"
    STATEFUL_SET = "StatefulSet"


class WatchState(str, Enum):
    """Lifecycle of a single watch. Terminal states never return to PENDING."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class JobWatchTarget:
    """Identity of the resource a watch polls.

    Attributes:
        namespace: Namespace of the resource.
        owner_name: Resource name, or the owner's name for owned jobs.
        kind: Kind of workload.
    """

    namespace: str
    owner_name: str
    kind: WorkloadKind

    def __str__(self) -> str:
        return f"{self.kind.value} {self.namespace}/{self.owner_name}"


@dataclass(frozen=True)
class ReplicaStatus:
    """Desired vs ready replicas of a Deployment or StatefulSet."""

    desired: int
    ready: int

    @property
    def is_ready(self) -> bool:
        return self.ready == self.desired


@dataclass(frozen=True)
class JobStatus:
    """Completion state of one Job run.

    Attributes:
        name: Job name.
        succeeded: Number of succeeded pods.
        conditions: Condition type -> True for conditions with status "True".
        failure_reason: Reason/message of the Failed condition, if any.
    """

    name: str
    succeeded: int = 0
    conditions: dict[str, bool] = field(default_factory=dict)
    failure_reason: str = ""

    @property
    def complete(self) -> bool:
        return self.conditions.get("Complete", False) or self.succeeded > 0

    @property
    def failed(self) -> bool:
        return self.conditions.get("Failed", False)


class WorkloadStatusReader(Protocol):
    """Read access to workload status fields, keyed by namespace and name.

    Implementations raise WorkloadFetchError when the API call fails for
    any reason other than the resource not existing yet.
    """

    def replica_status(
        self, kind: WorkloadKind, namespace: str, name: str
    ) -> ReplicaStatus | None:
        """Replica counts of a Deployment or StatefulSet, None if it does not exist."""
        ...

    def cron_job_exists(self, namespace: str, name: str) -> bool:
        """Whether a CronJob with this name exists."""
        ...

    def jobs_owned_by(self, namespace: str, owner_name: str) -> list[JobStatus]:
        """Status of every Job whose owner reference names ``owner_name``."""
        ...


def replicas_ready_check(
    reader: WorkloadStatusReader,
    target: JobWatchTarget,
    replicas: int | None = None,
) -> Callable[[], bool]:
    """Build a check that is True once all desired replicas are ready.

    A resource that does not exist yet counts as not ready: the operator
    creates workloads asynchronously after the custom resource is applied.

    Args:
        reader: Workload status reader.
        target: Deployment or StatefulSet to watch.
        replicas: If given, the desired count must also equal this value.
    """
    if target.kind not in (WorkloadKind.DEPLOYMENT, WorkloadKind.STATEFUL_SET):
        msg = f"replica readiness is not defined for {target.kind.value}"
        raise ValueError(msg)

    def check() -> bool:
        status = reader.replica_status(target.kind, target.namespace, target.owner_name)
        if status is None:
            logger.debug("workload.not_found", target=str(target))
            return False
        if replicas is not None and status.desired != replicas:
            logger.debug(
                "workload.replicas_pending",
                target=str(target),
                desired=status.desired,
                wanted=replicas,
            )
            return False
        logger.debug(
            "workload.replicas",
            target=str(target),
            ready=status.ready,
            desired=status.desired,
        )
        return status.is_ready

    return check


def deployment_ready_check(
    reader: WorkloadStatusReader,
    target: JobWatchTarget,
    replicas: int | None = None,
) -> Callable[[], bool]:
    """Check that a Deployment's ready replicas equal its desired replicas."""
    return replicas_ready_check(reader, target, replicas)


def stateful_set_ready_check(
    reader: WorkloadStatusReader,
    target: JobWatchTarget,
    replicas: int | None = None,
) -> Callable[[], bool]:
    """Check that a StatefulSet's ready replicas equal its desired replicas."""
    return replicas_ready_check(reader, target, replicas)


def cron_job_exists_check(
    reader: WorkloadStatusReader,
    target: JobWatchTarget,
) -> Callable[[], bool]:
    """Check that the owner's index-cleaner CronJob exists."""
    name = cleaner_job_name(target.owner_name)

    def check() -> bool:
        return reader.cron_job_exists(target.namespace, name)

    return check


def job_completed_check(
    reader: WorkloadStatusReader,
    target: JobWatchTarget,
) -> Callable[[], bool]:
    """Check that at least one Job owned by ``target.owner_name`` completed.

    Raises:
        WorkloadFailedError: From the check, as soon as an owned Job carries
            a terminal Failed condition.
    """

    def check() -> bool:
        jobs = reader.jobs_owned_by(target.namespace, target.owner_name)
        for job in jobs:
            if job.failed:
                logger.error(
                    "workload.job_failed",
                    namespace=target.namespace,
                    owner=target.owner_name,
                    job=job.name,
                    reason=job.failure_reason,
                )
                raise WorkloadFailedError(
                    WorkloadKind.JOB.value,
                    job.name,
                    namespace=target.namespace,
                    reason=job.failure_reason,
                )
        done = any(job.complete for job in jobs)
        logger.debug(
            "workload.jobs",
            namespace=target.namespace,
            owner=target.owner_name,
            jobs=len(jobs),
            complete=done,
        )
        return done

    return check


def check_for(
    reader: WorkloadStatusReader,
    target: JobWatchTarget,
    replicas: int | None = None,
) -> Callable[[], bool]:
    """Pick the check closure matching the target's kind."""
    if target.kind is WorkloadKind.CRON_JOB:
        return cron_job_exists_check(reader, target)
    if target.kind is WorkloadKind.JOB:
        return job_completed_check(reader, target)
    return replicas_ready_check(reader, target, replicas)


class WorkloadWatch:
    """One watch over one workload: PENDING -> READY | FAILED | TIMED_OUT.

    Args:
        reader: Workload status reader.
        target: Resource to watch.
        replicas: Desired replica count for Deployments/StatefulSets.
    """

    def __init__(
        self,
        reader: WorkloadStatusReader,
        target: JobWatchTarget,
        replicas: int | None = None,
    ) -> None:
        self.target = target
        self._check = check_for(reader, target, replicas)
        self._state = WatchState.PENDING

    @property
    def state(self) -> WatchState:
        return self._state

    def wait(self, spec: PollSpec) -> None:
        """Poll until the workload is ready.

        Raises:
            WatchFinishedError: If this watch already reached a terminal state.
            DeadlineExceededError: If the workload was not ready in time.
            WorkloadFailedError: If an owned job failed.
            WorkloadFetchError: If the status could not be read.
        """
        if self._state is not WatchState.PENDING:
            raise WatchFinishedError(str(self.target), self._state.value)

        if not spec.expected:
            msg = "workload watches wait for readiness; spec.expected must be True"
            raise ValueError(msg)

        try:
            wait_until(self._check, spec, description=str(self.target))
        except DeadlineExceededError:
            self._state = WatchState.TIMED_OUT
            raise
        except Exception:
            self._state = WatchState.FAILED
            raise
        self._state = WatchState.READY
        logger.info("workload.ready", target=str(self.target))


def _watch(
    reader: WorkloadStatusReader,
    target: JobWatchTarget,
    spec: PollSpec,
    replicas: int | None = None,
) -> None:
    WorkloadWatch(reader, target, replicas).wait(spec)


def wait_for_deployment(
    reader: WorkloadStatusReader,
    namespace: str,
    name: str,
    spec: PollSpec,
    replicas: int | None = None,
) -> None:
    """Wait until a Deployment has all desired replicas ready."""
    _watch(reader, JobWatchTarget(namespace, name, WorkloadKind.DEPLOYMENT), spec, replicas)


def wait_for_stateful_set(
    reader: WorkloadStatusReader,
    namespace: str,
    name: str,
    spec: PollSpec,
    replicas: int | None = None,
) -> None:
    """Wait until a StatefulSet has all desired replicas ready."""
    _watch(reader, JobWatchTarget(namespace, name, WorkloadKind.STATEFUL_SET), spec, replicas)


def wait_for_cron_job(
    reader: WorkloadStatusReader,
    namespace: str,
    owner_name: str,
    spec: PollSpec,
) -> None:
    """Wait until the instance's ``<owner>-es-index-cleaner`` CronJob exists."""
    _watch(reader, JobWatchTarget(namespace, owner_name, WorkloadKind.CRON_JOB), spec)


def wait_for_job_of_owner(
    reader: WorkloadStatusReader,
    namespace: str,
    owner_name: str,
    spec: PollSpec,
) -> None:
    """Wait until a Job owned by ``owner_name`` completes; fail fast if one fails."""
    _watch(reader, JobWatchTarget(namespace, owner_name, WorkloadKind.JOB), spec)


__all__ = [
    "CLEANER_SUFFIX",
    "JobStatus",
    "JobWatchTarget",
    "ReplicaStatus",
    "WatchState",
    "WorkloadKind",
    "WorkloadStatusReader",
    "WorkloadWatch",
    "check_for",
    "cleaner_job_name",
    "cron_job_exists_check",
    "deployment_ready_check",
    "job_completed_check",
    "replicas_ready_check",
    "stateful_set_ready_check",
    "wait_for_cron_job",
    "wait_for_deployment",
    "wait_for_job_of_owner",
    "wait_for_stateful_set",
]
