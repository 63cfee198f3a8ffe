"""Dependency-ordered executor for provisioning and teardown."""

from __future__ import annotations

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stackweaver.core.errors import AuthError, StackWeaverError, TransientError
from stackweaver.descriptors.models import DescriptorSet, ResourceDescriptor
from stackweaver.descriptors.substitution import resolve_references
from stackweaver.logging import bind_context
from stackweaver.orchestration.recorder import StateRecorder
from stackweaver.orchestration.results import ResultCollector, RunReport
from stackweaver.orchestration.state import ExecutionState, ResourceStatus
from stackweaver.providers.base import ProviderAdapter, ResourceConfig, create_resource

ProgressCallback = Callable[[ResourceDescriptor, ResourceStatus, Optional[str]], None]


@dataclass
class _Outcome:
    handle: str | None = None
    error: Exception | None = None


class Executor:
    """Walks a descriptor set in dependency order against one provider adapter.

    State changes are serialized behind a single lock and saved after every
    transition, so a crashed or cancelled run can be resumed. With
    ``max_workers > 1`` independent branches run on a thread pool.
    """

    def __init__(
        self,
        descriptors: DescriptorSet,
        adapter: ProviderAdapter,
        recorder: StateRecorder,
        *,
        max_attempts: int = 3,
        backoff_multiplier: float = 1.0,
        backoff_max: float = 30.0,
        max_workers: int = 1,
        sleep: Callable[[float], None] = time.sleep,
        progress: ProgressCallback | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._descriptors = descriptors
        self._adapter = adapter
        self._recorder = recorder
        self._max_attempts = max_attempts
        self._backoff_multiplier = backoff_multiplier
        self._backoff_max = backoff_max
        self._max_workers = max(1, max_workers)
        self._sleep = sleep
        self._progress = progress
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._abort_reason: str | None = None
        self._state: ExecutionState | None = None
        self._collector: ResultCollector | None = None
        self._log = bind_context(deployment=descriptors.deployment, provider=adapter.name)

    def cancel(self) -> None:
        """Stop scheduling new resources; calls already in flight finish."""
        self._cancel.set()

    # --- provisioning ---

    def provision(self) -> RunReport:
        """Create every resource that is not already created."""
        started = time.monotonic()
        self._begin()
        order = self._descriptors.topological_order()

        for descriptor in order:
            record = self._state.ensure(descriptor.id, descriptor.kind.value)
            if record.status is ResourceStatus.CREATED:
                self._collector.record(descriptor, record.provider_handle)
                self._log.debug("resource_already_created", resource=descriptor.id)
            elif record.status is ResourceStatus.UNKNOWN:
                self._log.warning("resource_reconciling", resource=descriptor.id)
        self._save()

        remaining = [d for d in order if self._state.status_of(d.id) is not ResourceStatus.CREATED]
        self._log.info("provision_started", total=len(order), remaining=len(remaining))

        try:
            if self._max_workers == 1:
                self._walk_sequential(remaining)
            else:
                self._walk_concurrent(remaining)
        except KeyboardInterrupt:
            self._cancel.set()
            self._mark_in_flight_unknown()

        return self._finish("provision", ResourceStatus.CREATED, started)

    def _walk_sequential(self, remaining: list[ResourceDescriptor]) -> None:
        for descriptor in remaining:
            if self._stopped():
                break
            if self._block_if_needed(descriptor):
                continue
            config = self._start(descriptor)
            if config is None:
                continue
            self._complete(descriptor, self._attempt(descriptor, config))

    def _walk_concurrent(self, remaining: list[ResourceDescriptor]) -> None:
        pending = list(remaining)
        in_flight: dict[Future, ResourceDescriptor] = {}
        pool = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="stackweaver")
        try:
            while pending or in_flight:
                if not self._stopped():
                    for descriptor in list(pending):
                        if len(in_flight) >= self._max_workers:
                            break
                        unsettled = {d.id for d in pending}
                        if self._block_if_needed(descriptor, unsettled):
                            pending.remove(descriptor)
                            continue
                        if not self._dependencies_created(descriptor):
                            continue
                        pending.remove(descriptor)
                        config = self._start(descriptor)
                        if config is not None:
                            in_flight[pool.submit(self._attempt, descriptor, config)] = descriptor
                if not in_flight:
                    break
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for future in done:
                    descriptor = in_flight.pop(future)
                    self._complete(descriptor, future.result())
        except KeyboardInterrupt:
            self._cancel.set()
            raise
        finally:
            pool.shutdown(wait=not self._cancel.is_set(), cancel_futures=True)

    def _stopped(self) -> bool:
        return self._cancel.is_set() or self._abort_reason is not None

    def _dependencies_created(self, descriptor: ResourceDescriptor) -> bool:
        return all(self._state.status_of(dep) is ResourceStatus.CREATED for dep in descriptor.depends_on)

    def _block_if_needed(self, descriptor: ResourceDescriptor, unsettled: set[str] = frozenset()) -> bool:
        """Mark ``descriptor`` blocked when a dependency failed or is blocked.

        Dependencies in ``unsettled`` have not been attempted yet in this run,
        so their status is still the one left by a previous run.
        """
        failed = sorted(
            dep
            for dep in descriptor.depends_on
            if dep not in unsettled and self._state.status_of(dep) in (ResourceStatus.FAILED, ResourceStatus.BLOCKED)
        )
        if not failed:
            return False
        cause = f"blocked by {', '.join(failed)}"
        self._transition(descriptor, ResourceStatus.BLOCKED, error=cause)
        self._collector.record_error(descriptor, cause)
        return True

    def _start(self, descriptor: ResourceDescriptor) -> ResourceConfig | None:
        """Mark ``creating`` and resolve ${ID} references; None if resolution failed."""
        self._transition(descriptor, ResourceStatus.CREATING)
        try:
            with self._lock:
                return self._resolve(descriptor, self._state.handles())
        except StackWeaverError as e:
            self._complete(descriptor, _Outcome(error=e))
            return None

    def _attempt(self, descriptor: ResourceDescriptor, config: ResourceConfig) -> _Outcome:
        """Invoke the adapter, retrying TransientError with exponential backoff."""
        log = self._log.bind(resource=descriptor.id, kind=descriptor.kind.value)
        retrying = self._retrying(log)

        def call() -> str:
            attempts = self._bump_attempts(descriptor)
            log.debug("provider_call", attempt=attempts)
            return self._call(create_resource, descriptor.kind, config)

        try:
            return _Outcome(handle=retrying(call))
        except StackWeaverError as e:
            return _Outcome(error=e)
        except Exception as e:
            log.error("provider_call_crashed", error=str(e), exc_info=True)
            return _Outcome(error=e)

    def _call(self, operation: Callable[..., Any], *args: Any) -> Any:
        try:
            return operation(self._adapter, *args)
        except TimeoutError as e:
            raise TransientError("Provider call timed out", details={"error": str(e)}) from e

    def _complete(self, descriptor: ResourceDescriptor, outcome: _Outcome) -> None:
        if outcome.error is None:
            self._transition(descriptor, ResourceStatus.CREATED, handle=outcome.handle)
            self._collector.record(descriptor, outcome.handle)
            self._log.info("resource_created", resource=descriptor.id, handle=outcome.handle)
            return

        cause = _describe_error(outcome.error)
        self._transition(descriptor, ResourceStatus.FAILED, error=cause)
        self._collector.record_error(descriptor, cause)
        self._log.error(
            "resource_failed",
            resource=descriptor.id,
            kind=descriptor.kind.value,
            error_type=type(outcome.error).__name__,
            error=cause,
        )
        if isinstance(outcome.error, AuthError):
            self._abort_reason = f"authentication failed at {descriptor.id}: {cause}"
            self._log.error("provision_aborted", reason=self._abort_reason)

    def _mark_in_flight_unknown(self) -> None:
        for descriptor in self._descriptors:
            if self._state.status_of(descriptor.id) is ResourceStatus.CREATING:
                self._transition(descriptor, ResourceStatus.UNKNOWN, error="interrupted during provider call")
                self._collector.record_error(descriptor, "interrupted during provider call")

    # --- teardown ---

    def teardown(self) -> RunReport:
        """Delete created resources in reverse dependency order.

        A resource is only deleted once nothing that depends on it still
        exists. Failed deletes leave the resource ``created`` with its error.
        """
        started = time.monotonic()
        self._begin()
        order = self._descriptors.topological_order()
        errors: list[str] = []

        for descriptor in order:
            record = self._state.ensure(descriptor.id, descriptor.kind.value)
            if record.status is ResourceStatus.CREATED:
                self._collector.record(descriptor, record.provider_handle)

        self._log.info("teardown_started", total=len(order))
        try:
            for descriptor in reversed(order):
                if self._stopped():
                    break
                if self._state.status_of(descriptor.id) not in (ResourceStatus.CREATED, ResourceStatus.UNKNOWN):
                    continue
                survivors = sorted(
                    rid
                    for rid in self._descriptors.dependents(descriptor.id)
                    if self._state.status_of(rid) in (ResourceStatus.CREATED, ResourceStatus.UNKNOWN)
                )
                if survivors:
                    cause = f"still required by {', '.join(survivors)}"
                    self._note_error(descriptor, cause)
                    errors.append(f"{descriptor.id}: {cause}")
                    continue
                error = self._delete(descriptor)
                if error is None:
                    self._transition(descriptor, ResourceStatus.DELETED)
                    self._collector.forget(descriptor)
                    self._log.info("resource_deleted", resource=descriptor.id)
                    continue
                cause = _describe_error(error)
                self._note_error(descriptor, cause)
                errors.append(f"{descriptor.id}: {cause}")
                self._log.error("resource_delete_failed", resource=descriptor.id, error=cause)
                if isinstance(error, AuthError):
                    self._abort_reason = f"authentication failed at {descriptor.id}: {cause}"
        except KeyboardInterrupt:
            self._cancel.set()

        report = self._finish("teardown", ResourceStatus.DELETED, started)
        report.errors.extend(errors)
        return report

    def _delete(self, descriptor: ResourceDescriptor) -> Exception | None:
        record = self._state.resources[descriptor.id]
        try:
            config = self._resolve(descriptor, self._state.handles())
        except StackWeaverError:
            config = {"name": descriptor.name}

        retrying = self._retrying(self._log.bind(resource=descriptor.id, kind=descriptor.kind.value))
        try:
            retrying(self._call, _delete_resource, descriptor, config, record.provider_handle)
        except StackWeaverError as e:
            return e
        except Exception as e:
            self._log.error("provider_delete_crashed", resource=descriptor.id, error=str(e), exc_info=True)
            return e
        return None

    # --- shared plumbing ---

    def _retrying(self, log: structlog.stdlib.BoundLogger) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._backoff_multiplier, max=self._backoff_max),
            retry=retry_if_exception_type(TransientError),
            sleep=self._sleep,
            reraise=True,
            before_sleep=lambda rs: _log_retry(log, rs),
        )

    def _begin(self) -> None:
        self._cancel.clear()
        self._abort_reason = None
        self._state = self._recorder.load()
        self._collector = ResultCollector(self._descriptors.deployment)

    def _finish(self, operation: str, target: ResourceStatus, started: float) -> RunReport:
        self._save()
        report = RunReport(
            deployment=self._descriptors.deployment,
            operation=operation,
            resources=[self._state.resources[rid] for rid in self._descriptors.ids],
            result=self._collector.finalize(),
            duration_seconds=time.monotonic() - started,
            cancelled=self._cancel.is_set(),
            aborted_reason=self._abort_reason,
            target_status=target,
        )
        self._log.info(
            f"{operation}_finished",
            success=report.success,
            cancelled=report.cancelled,
            statuses=report.status_counts(),
            duration_seconds=round(report.duration_seconds, 3),
        )
        return report

    def _resolve(self, descriptor: ResourceDescriptor, handles: dict[str, str]) -> ResourceConfig:
        config = resolve_references(descriptor.configuration, handles)
        config.setdefault("name", descriptor.name)
        return config

    def _transition(
        self,
        descriptor: ResourceDescriptor,
        status: ResourceStatus,
        *,
        handle: str | None = None,
        error: str | None = None,
    ) -> None:
        with self._lock:
            self._state.transition(descriptor.id, status, handle=handle, error=error)
            self._recorder.save(self._state)
        if self._progress is not None:
            self._progress(descriptor, status, error)

    def _note_error(self, descriptor: ResourceDescriptor, error: str) -> None:
        with self._lock:
            self._state.note_error(descriptor.id, error)
            self._recorder.save(self._state)

    def _bump_attempts(self, descriptor: ResourceDescriptor) -> int:
        with self._lock:
            record = self._state.resources[descriptor.id]
            record.attempts += 1
            return record.attempts

    def _save(self) -> None:
        with self._lock:
            self._recorder.save(self._state)


def _delete_resource(adapter: ProviderAdapter, descriptor: ResourceDescriptor, config, handle) -> None:
    adapter.delete(descriptor.kind, config, handle)


def _describe_error(error: Exception) -> str:
    if isinstance(error, StackWeaverError):
        return f"{type(error).__name__}: {error.message}"
    return f"{type(error).__name__}: {error}"


def _log_retry(log: structlog.stdlib.BoundLogger, retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    log.warning(
        "provider_call_retrying",
        attempt=retry_state.attempt_number,
        wait_seconds=round(retry_state.next_action.sleep, 2) if retry_state.next_action else None,
        error=str(exc),
    )
