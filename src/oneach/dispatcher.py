"""Fleet-wide execution engine for oneach.

A Dispatcher runs one operation (a command, or a file transfer in either
direction) on every target selected by a scope. Setup happens in a fixed
sequence of stages, each depending on the previous one:

    resolve configuration -> load topology -> pick a bind address (file
    transfers only) -> set up the transport -> resolve the scope

followed by either a dry-run report or the execution itself. The first stage
that fails ends the run. Whatever happens, the topology and transport handles
are released exactly once when the run finishes.

Execution uses a fixed pool of workers. Each target produces exactly one
ExecutionResult: failures to carry out an operation (timeouts, transport
errors, bad transfer paths) are reported as that target's result rather than
failing the run. Results arrive in completion order.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import sys
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Collection, Sequence, TextIO

from .config import Config, default_config_path, load_config
from .errors import (
    ConfigurationError,
    OneachError,
    PathValidationError,
    TransportConnectError,
    TransportError,
)
from .operations import ExecutionRequest, PullFile, PushFile, RunCommand, is_transfer
from .results import (
    Completed,
    ExecutionResult,
    Failed,
    FailureKind,
    Outcome,
    RunCounters,
    Target,
)
from .scope import (
    DISALLOWED_SERVICES,
    ScopeSpec,
    check_services_allowed,
    resolve_scope,
    validate_scope,
)
from .script import check_script, validate_zone_path, wrap_script, zone_path
from .sysinfo import HostIdentity, local_identity
from .topology import TopologyProvider, TopologySnapshot, YamlTopologyProvider
from .transport import Transport, TransportFactory, create_ssh_transport

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10
DEFAULT_EXEC_TIMEOUT = 60.0

# Room in the result queue beyond one slot per worker.
RESULT_QUEUE_SLACK = 4


class DispatcherState(Enum):
    """Progress of a Dispatcher through its run."""

    CREATED = "created"
    CONFIG_RESOLVED = "config resolved"
    TOPOLOGY_LOADED = "topology loaded"
    BIND_ADDRESS_RESOLVED = "bind address resolved"
    TRANSPORT_READY = "transport ready"
    SCOPE_RESOLVED = "scope resolved"
    DRY_RUN_REPORTED = "dry run reported"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class DispatchOptions:
    """Tuning parameters for one run."""

    concurrency: int = DEFAULT_CONCURRENCY
    exec_timeout: float = DEFAULT_EXEC_TIMEOUT  # seconds, per operation
    dry_run: bool = False
    bind_ip: str | None = None

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {self.concurrency}")
        if self.exec_timeout <= 0:
            raise ValueError(f"exec_timeout must be positive, got {self.exec_timeout}")


# Type aliases for callbacks and injected collaborators
ResultCallback = Callable[[ExecutionResult], None]
StatusCallback = Callable[[DispatcherState], None]
TopologyFactory = Callable[[Path], TopologyProvider]
HostIdentityLookup = Callable[[Config], Awaitable[HostIdentity]]


async def _default_host_identity(config: Config) -> HostIdentity:
    return await local_identity(config.sysinfo_command, config.zonename_command)


class WorkerPool:
    """Runs ``worker`` on every item with at most ``concurrency`` at a time."""

    def __init__(self, concurrency: int, worker: Callable[[Target], Awaitable[None]]):
        self.concurrency = concurrency
        self.worker = worker

    async def run(self, items: Sequence[Target]) -> None:
        queue: asyncio.Queue[Target] = asyncio.Queue()
        for item in items:
            queue.put_nowait(item)

        nworkers = min(self.concurrency, len(items))
        tasks = [asyncio.create_task(self._work(queue)) for _ in range(nworkers)]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            # Workers must be gone before the transport is released.
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _work(self, queue: asyncio.Queue[Target]) -> None:
        while True:
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            await self.worker(item)


_END = object()


class Dispatcher:
    """Runs one operation on every target in a scope."""

    def __init__(
        self,
        scope: ScopeSpec,
        request: ExecutionRequest,
        options: DispatchOptions | None = None,
        config: Config | None = None,
        config_path: str | Path | None = None,
        topology_factory: TopologyFactory | None = None,
        transport_factory: TransportFactory | None = None,
        host_identity: HostIdentityLookup | None = None,
        disallowed_services: Collection[str] = DISALLOWED_SERVICES,
        status_stream: TextIO | None = None,
        on_result: ResultCallback | None = None,
        on_status: StatusCallback | None = None,
    ):
        self.scope = scope
        self.request = request
        self.options = options or DispatchOptions()
        self.config = config or Config()
        self.config_path = Path(config_path) if config_path else None
        self.topology_factory = topology_factory or YamlTopologyProvider
        self.transport_factory = transport_factory or create_ssh_transport
        self.host_identity = host_identity or _default_host_identity
        self.disallowed_services = frozenset(disallowed_services)
        self.status_stream = status_stream
        self.on_result = on_result
        self.on_status = on_status

        self.state = DispatcherState.CREATED
        self.counters = RunCounters()
        self.results: list[ExecutionResult] = []
        self.targets: list[Target] = []
        self.bind_ip = self.options.bind_ip

        self._run_started: datetime | None = None
        self._provider: TopologyProvider | None = None
        self._topology: TopologySnapshot | None = None
        self._transport: Transport | None = None
        self._scripts: dict[Target, str] = {}
        self._queue: asyncio.Queue | None = None
        self._log_dir: Path | None = None
        self._closed = False

        logger.info(
            "dispatcher created (scope=%s request=%s concurrency=%d "
            "exec_timeout=%s dry_run=%s bind_ip=%s)",
            scope,
            request,
            self.options.concurrency,
            self.options.exec_timeout,
            self.options.dry_run,
            self.options.bind_ip,
        )

    @property
    def transport_errors(self) -> int:
        """Targets on which the operation could not be carried out at all."""
        return self.counters.transport_errors

    def _set_state(self, state: DispatcherState) -> None:
        logger.debug("state: %s -> %s", self.state.value, state.value)
        self.state = state
        if self.on_status:
            self.on_status(state)

    def _stages(self) -> list[Callable[[], Awaitable[None]]]:
        stages: list[Callable[[], Awaitable[None]]] = [self._stage_resolve_config]
        stages.append(self._stage_load_topology)
        if is_transfer(self.request) and self.bind_ip is None:
            stages.append(self._stage_resolve_bind_ip)
        stages.append(self._stage_setup_transport)
        stages.append(self._stage_resolve_scope)
        if self.options.dry_run:
            stages.append(self._stage_dry_run)
        else:
            stages.append(self._stage_execute)
        return stages

    async def run(self) -> list[ExecutionResult]:
        """Run the operation on every target and return the results.

        Raises OneachError for failures that prevent the run from starting.
        A Dispatcher can only be run once.
        """
        if self._run_started is not None:
            raise RuntimeError("Dispatcher.run() cannot be invoked more than once")
        self._run_started = datetime.now()

        error: BaseException | None = None
        try:
            self._preflight()
            for stage in self._stages():
                await stage()
        except BaseException as e:
            error = e
            self._set_state(DispatcherState.FAILED)
            if isinstance(e, OneachError):
                logger.error("run failed: %s", e)
            raise
        else:
            self._set_state(DispatcherState.SUCCEEDED)
            logger.info(
                "done: %d started, %d completed, %d transport errors",
                self.counters.started,
                self.counters.completed,
                self.counters.transport_errors,
            )
        finally:
            try:
                if error is None:
                    self.counters.check()
                elif self.counters.started != self.counters.completed:
                    # Operations in flight when the run was cut short.
                    logger.warning(
                        "run ended with %d of %d operations outstanding",
                        self.counters.started - self.counters.completed,
                        self.counters.started,
                    )
            finally:
                self.close()

        return self.results

    async def stream(self) -> AsyncIterator[ExecutionResult]:
        """Run, yielding each result as it completes.

        Results pass through a queue bounded by the concurrency, so workers
        wait for the consumer. Errors that end the run are raised once the
        results produced before them have been consumed.
        """
        self._queue = asyncio.Queue(maxsize=self.options.concurrency + RESULT_QUEUE_SLACK)
        task = asyncio.create_task(self._run_into_queue())
        try:
            while True:
                item = await self._queue.get()
                if item is _END:
                    break
                yield item
            await task
        finally:
            if not task.done():
                task.cancel()
                await asyncio.wait({task})

    async def _run_into_queue(self) -> None:
        assert self._queue is not None
        try:
            await self.run()
        except asyncio.CancelledError:
            # The consumer is gone.
            raise
        except BaseException:
            await self._queue.put(_END)
            raise
        await self._queue.put(_END)

    def _preflight(self) -> None:
        """Checks that need nothing but the arguments."""
        validate_scope(self.scope)
        check_services_allowed(self.scope, self.disallowed_services)
        if isinstance(self.request, RunCommand):
            check_script(self.request.script)

    async def _stage_resolve_config(self) -> None:
        """Fill in settings that the caller left unspecified."""
        if not self.config.complete:
            path = self.config_path or default_config_path()
            logger.debug("loading config from %s", path)
            try:
                file_config = load_config(path)
            except (OSError, ValueError) as e:
                raise ConfigurationError(f"auto-configuring transport: {e}") from e
            self.config = self.config.merged_over(file_config)

        self.config.transport = self.config.transport.with_defaults()
        if self.config.topology is None:
            raise ConfigurationError("no topology file configured")

        try:
            self._setup_log_dir()
        except OSError as e:
            raise ConfigurationError(f"setting up log directory: {e}") from e
        self._set_state(DispatcherState.CONFIG_RESOLVED)

    async def _stage_load_topology(self) -> None:
        assert self.config.topology is not None
        self._provider = self.topology_factory(self.config.topology)
        self._topology = await self._provider.load()
        self._set_state(DispatcherState.TOPOLOGY_LOADED)

    async def _stage_resolve_bind_ip(self) -> None:
        """Pick the local address that file transfers bind to.

        This must be on the admin network: it is reachable from every compute
        node, and the local system may have no other network at all.
        """
        assert self._topology is not None
        logger.debug("determining local bind IP for file transfer")
        identity = await self.host_identity(self.config)
        self.bind_ip = self._topology.find_admin_ip(
            identity.belongs_to_type, identity.belongs_to_uuid
        )
        logger.debug("using bind IP %s", self.bind_ip)
        self._set_state(DispatcherState.BIND_ADDRESS_RESOLVED)

    async def _stage_setup_transport(self) -> None:
        assert self._topology is not None
        self._transport = self.transport_factory(
            self.config.transport,
            self._topology.node_address,
            self.bind_ip if is_transfer(self.request) else None,
        )
        timeout = self.config.transport.connect_timeout
        try:
            await asyncio.wait_for(self._transport.connect(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TransportConnectError(
                f"transport not ready after {timeout:g}s"
            ) from e
        self._set_state(DispatcherState.TRANSPORT_READY)

    async def _stage_resolve_scope(self) -> None:
        assert self._topology is not None
        self.targets = resolve_scope(self._topology, self.scope, self.disallowed_services)

        if isinstance(self.request, RunCommand):
            for target in self.targets:
                if target.zonename is None:
                    self._scripts[target] = self.request.script
                else:
                    self._scripts[target] = wrap_script(
                        target.zonename, self.request.script
                    )

        self._set_state(DispatcherState.SCOPE_RESOLVED)

    async def _stage_dry_run(self) -> None:
        """Report what would be done without touching the transport."""
        out = self.status_stream or sys.stderr
        description = self.request.describe()

        if self.scope.use_host_context:
            for target in self.targets:
                out.write(f"host {target.compute_node_id}: {description}\n")
        else:
            by_node: dict[str, list[Target]] = defaultdict(list)
            for target in self.targets:
                by_node[target.compute_node_id].append(target)
            for node_id, targets in by_node.items():
                plural = "" if len(targets) == 1 else "s"
                out.write(f"host {node_id}: {len(targets)} command{plural}\n")
                for target in targets:
                    out.write(f"    zone {target.zonename}: {description}\n")

        out.write("\nLeave off --dry-run to execute.\n")
        out.flush()
        self._set_state(DispatcherState.DRY_RUN_REPORTED)

    async def _stage_execute(self) -> None:
        self._set_state(DispatcherState.EXECUTING)
        logger.debug("begin execution on %d targets", len(self.targets))
        pool = WorkerPool(self.options.concurrency, self._execute_one)
        await pool.run(self.targets)

    async def _execute_one(self, target: Target) -> None:
        """Carry out the operation on one target and report its result."""
        operation = self.request.operation
        self.counters.start()
        logger.debug("start %s on %s", operation, target)

        outcome: Outcome
        try:
            outcome = await asyncio.wait_for(
                self._perform(target), timeout=self.options.exec_timeout
            )
        except asyncio.TimeoutError:
            outcome = Failed(
                FailureKind.TIMEOUT,
                f"{operation}: timed out after {self.options.exec_timeout:g}s",
            )
        except PathValidationError as e:
            outcome = Failed(
                FailureKind.VALIDATION, f"{operation}: cannot start transfer: {e}"
            )
        except TransportError as e:
            outcome = Failed(FailureKind.TRANSPORT, f"{operation}: {e}")
        except Exception as e:
            # One target's failure must not take down the others.
            logger.exception("%s on %s failed unexpectedly", operation, target)
            outcome = Failed(FailureKind.TRANSPORT, f"{operation}: unexpected error: {e!r}")

        result = ExecutionResult(target=target, outcome=outcome)
        self.counters.finish(result)
        logger.debug("done %s on %s: %s", operation, target, outcome)
        await self._emit(result)

    async def _perform(self, target: Target) -> Completed:
        assert self._transport is not None
        request = self.request
        node_id = target.compute_node_id

        if isinstance(request, RunCommand):
            return await self._transport.exec(node_id, self._scripts[target])

        if isinstance(request, PushFile):
            remote_dir = request.remote_dir
            if target.zonename is not None:
                remote_dir = zone_path(target.zonename, remote_dir)
                validate_zone_path(remote_dir, target.zonename)
            await self._transport.push(
                node_id, request.local_path, remote_dir, request.clobber
            )
        elif isinstance(request, PullFile):
            remote_file = request.remote_file
            if target.zonename is not None:
                remote_file = zone_path(target.zonename, remote_file)
                validate_zone_path(remote_file, target.zonename)
            local_file = os.path.join(request.local_dir, target.zonename or node_id)
            await self._transport.pull(node_id, remote_file, local_file)
        else:
            raise TypeError(f"unsupported request: {request!r}")

        return Completed(exit_status=0, stdout=b"ok", stderr=b"")

    async def _emit(self, result: ExecutionResult) -> None:
        self.results.append(result)
        self._write_target_log(result)
        if self.on_result:
            self.on_result(result)
        if self._queue is not None:
            await self._queue.put(result)

    def _setup_log_dir(self) -> None:
        """Set up the per-run log directory with timestamp."""
        if self.config.log_dir is None or self._run_started is None:
            return
        timestamp = self._run_started.strftime("%Y%m%d_%H%M%S")
        self._log_dir = self.config.log_dir / timestamp
        self._log_dir.mkdir(parents=True, exist_ok=True)

        # Copy the source config file to the log directory
        if self.config.source_path and self.config.source_path.exists():
            shutil.copy(self.config.source_path, self._log_dir / "config.yaml")

        with open(self._log_dir / "run.log", "a") as f:
            f.write(f"scope: {self.scope}\n")
            f.write(f"request: {self.request}\n")

    def _write_target_log(self, result: ExecutionResult) -> None:
        if self._log_dir is None:
            return
        target = result.target
        try:
            with open(self._log_dir / f"{target.label}.log", "a") as f:
                f.write(
                    f"=== {target.label} on {target.hostname} ({target.compute_node_id})\n"
                )
                if isinstance(result.outcome, Completed):
                    f.write(f"exit status: {result.outcome.exit_status}\n")
                f.write(result.output_text())
        except OSError as e:
            # The result is still reported; only its log copy is lost.
            logger.warning("writing log for %s: %s", target.label, e)

    def close(self) -> None:
        """Release the topology and transport handles."""
        if self._closed:
            return
        self._closed = True
        logger.debug("close")

        if self._provider is not None:
            self._provider.close()
        if self._transport is not None:
            self._transport.close()
