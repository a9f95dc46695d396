"""
Concatenation service with thread-per-run architecture.

Wires the CandidateMatcher and the ConcatenationEngine to the Order/Job
repositories and object storage. Builds can run inline (the request waits
for the archive) or on a background thread per run.

Thread Safety:
    - Each run thread reads Orders/Jobs through its own short transactions
    - ConcatenationRunStore is the ONLY channel from run threads back to
      request threads, guarded by threading.Lock
    - Stored ConcatenationRun records are replaced, never mutated

Flow (background):
    1. Request thread calls submit(order_ids) and gets a run_id
    2. Run thread resolves Orders, builds the package, uploads it
    3. Run thread stores the finished ConcatenationRun
    4. Request threads poll get_run(run_id), then download the artifact

Orders are never moved by a concatenation; lifecycle changes stay with the
QueueStateMachine.
"""

from __future__ import annotations

import threading
import uuid
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple

from core.deadline import Deadline
from core.exceptions import NotFoundError, PrintQueueError
from core.repository import JobRepository, OrderRepository
from core.storage import ObjectStorage
from models.concatenation import (
    ConcatenationCandidate,
    ConcatenationProposal,
    ConcatenationResult,
    ConcatenationRun,
)
from models.job import Job
from models.order import QUEUE_STATES, Order
from modules.candidate_matcher import MIXED_PRINTERS, UNKNOWN_MATERIAL, UNKNOWN_PRINTER, CandidateMatcher
from modules.concatenation_engine import ConcatenationEngine
from services.analysis_service import AnalysisService
from logging_config import bind_run, get_logger


logger = get_logger(__name__)


class ConcatenationRunStore:
    """
    Thread-safe storage for run records.

    Run threads WRITE records here; request threads READ them. Records stay
    until cleared so a finished run can be polled more than once.
    """

    def __init__(self):
        self._runs: Dict[str, ConcatenationRun] = {}
        self._lock = threading.Lock()

    def put_run(self, run: ConcatenationRun) -> None:
        with self._lock:
            self._runs[run.run_id] = run
            logger.debug(f"Stored run {run.run_id[:8]} ({run.status.value})")

    def get_run(self, run_id: str) -> Optional[ConcatenationRun]:
        with self._lock:
            return self._runs.get(run_id)

    def list_runs(self) -> List[ConcatenationRun]:
        with self._lock:
            return sorted(self._runs.values(), key=lambda r: r.submitted_at)

    def clear(self) -> int:
        """
        Remove all stored runs.

        Returns:
            Number of runs removed
        """
        with self._lock:
            count = len(self._runs)
            self._runs.clear()
            logger.info(f"Cleared {count} runs from store")
            return count


def candidate_for_orders(orders: List[Order], jobs: Dict[int, Job], print_settings_name: str) -> ConcatenationCandidate:
    """Candidate covering exactly the given Orders."""
    job_ids = list(OrderedDict.fromkeys(o.job_id for o in orders))
    printers = {(jobs[j].printer or "").strip() or UNKNOWN_PRINTER for j in job_ids}
    materials = {(jobs[j].material or "").strip() or UNKNOWN_MATERIAL for j in job_ids}

    return ConcatenationCandidate(
        order_ids=[o.id for o in orders],
        job_ids=job_ids,
        printer=printers.pop() if len(printers) == 1 else MIXED_PRINTERS,
        material_name=materials.pop() if len(materials) == 1 else "Mixed",
        print_settings_name=print_settings_name,
        total_quantity=sum(o.quantity for o in orders),
        is_same_gcode=len(job_ids) == 1,
    )


class ConcatenationService:
    """
    Find and execute concatenations.

    Attributes:
        run_store: ConcatenationRunStore for reading background run records
    """

    def __init__(
        self,
        orders: OrderRepository,
        jobs: JobRepository,
        storage: ObjectStorage,
        engine: ConcatenationEngine,
        matcher: Optional[CandidateMatcher] = None,
        analysis: Optional[AnalysisService] = None,
        artifact_prefix: str = "concatenated",
        backfill_batch_size: int = 5,
        storage_timeout_seconds: Optional[float] = None,
        run_timeout_seconds: Optional[float] = None,
    ):
        self._orders = orders
        self._jobs = jobs
        self._storage = storage
        self._engine = engine
        self._matcher = matcher or CandidateMatcher()
        self._analysis = analysis
        self._artifact_prefix = artifact_prefix.strip("/")
        self._backfill_batch_size = backfill_batch_size
        self._storage_timeout = storage_timeout_seconds
        self._run_timeout = run_timeout_seconds

        self._run_store = ConcatenationRunStore()

        # Track active run threads for cleanup
        self._active_threads: Dict[str, threading.Thread] = {}
        self._threads_lock = threading.Lock()

        logger.info("ConcatenationService initialized")

    @property
    def run_store(self) -> ConcatenationRunStore:
        return self._run_store

    # =========================================================================
    # PROPOSALS
    # =========================================================================

    def find_proposals(self) -> List[ConcatenationProposal]:
        """
        Proposals over the current queue.

        A few Jobs without a printer are re-analyzed first so they land in
        the right bucket.
        """
        if self._analysis is not None and self._backfill_batch_size > 0:
            self._analysis.backfill_printers(self._backfill_batch_size)

        orders = self._orders.list(states=QUEUE_STATES)
        jobs = {job.id: job for job in self._jobs.list(ids={o.job_id for o in orders})}
        return self._matcher.find_proposals(orders, jobs)

    # =========================================================================
    # INLINE EXECUTION
    # =========================================================================

    def execute(
        self,
        order_ids: Iterable[int],
        base_job_id: Optional[int] = None,
        upload: bool = False,
        deadline: Optional[Deadline] = None,
        run_logger=None,
    ) -> Tuple[ConcatenationResult, Optional[str]]:
        """
        Build the package for a set of Orders.

        Quantities come from the Orders themselves (summed per Job). The
        package of ``base_job_id`` (default: the first Job) is cloned around
        the joined stream.

        Returns:
            (result, artifact storage key or None when not uploaded)

        Raises:
            ValueError: If no Order ids are given or the base Job is not included
            NotFoundError: If an Order, Job or package is missing
            ParseError, SizeLimitError, ValidationError, RemoteIOError
        """
        log = run_logger or logger
        deadline = deadline or Deadline(self._run_timeout)

        order_ids = list(OrderedDict.fromkeys(order_ids))
        if not order_ids:
            raise ValueError("At least one order id is required")

        found = {o.id: o for o in self._orders.list(ids=order_ids)}
        missing = [i for i in order_ids if i not in found]
        if missing:
            raise NotFoundError("Order", missing[0] if len(missing) == 1 else missing)
        orders = [found[i] for i in order_ids]

        jobs = {job.id: job for job in self._jobs.list(ids={o.job_id for o in orders})}
        for order in orders:
            if order.job_id not in jobs:
                raise NotFoundError("Job", order.job_id)

        quantities: Dict[int, int] = {}
        for order in orders:
            quantities[order.job_id] = quantities.get(order.job_id, 0) + order.quantity

        candidate = candidate_for_orders(orders, jobs, self._matcher.automatic_profile_name)
        if base_job_id is None:
            base_job_id = candidate.job_ids[0]
        elif base_job_id not in jobs:
            raise ValueError(f"Base job {base_job_id} is not part of the selected orders")

        def _load(job_id: int) -> bytes:
            return self._storage.download(jobs[job_id].storage_path, deadline.shorter(self._storage_timeout))

        log.info(f"Concatenating {len(orders)} order(s) over {len(candidate.job_ids)} job(s)")
        result = self._engine.build(
            candidate,
            quantities,
            base_job_id,
            _load,
            deadline=deadline,
            source_names={job_id: jobs[job_id].file_name for job_id in candidate.job_ids},
        )

        artifact_path = None
        if upload:
            artifact_path = self._upload(result, deadline)
            log.info(f"Artifact uploaded to {artifact_path}")
        return result, artifact_path

    def artifact_name(self, result: ConcatenationResult) -> str:
        checksum = next(iter(result.summary.checksums.values()), "package")
        return f"concatenated_{result.included_segments}x_{checksum[:12]}.gcode.3mf"

    def _upload(self, result: ConcatenationResult, deadline: Deadline) -> str:
        path = f"{self._artifact_prefix}/{self.artifact_name(result)}" if self._artifact_prefix else self.artifact_name(result)
        # Same content always lands on the same key, so overwriting is harmless
        return self._storage.upload(
            path,
            result.package.data,
            deadline=deadline.shorter(self._storage_timeout),
            upsert=True,
        )

    # =========================================================================
    # BACKGROUND RUNS
    # =========================================================================

    def submit(self, order_ids: Iterable[int], base_job_id: Optional[int] = None, run_id: Optional[str] = None) -> str:
        """
        Start a background run.

        Returns immediately; poll get_run(run_id) for the outcome.
        """
        if run_id is None:
            run_id = str(uuid.uuid4())
        order_ids = list(order_ids)

        self._run_store.put_run(ConcatenationRun.create_pending(run_id, order_ids))
        logger.info(f"Submitting concatenation run {run_id[:8]} for {len(order_ids)} order(s)")

        thread = threading.Thread(
            target=self._run_thread_main,
            args=(run_id, order_ids, base_job_id),
            name=f"Concat-{run_id[:8]}",
            daemon=True,
        )

        with self._threads_lock:
            self._active_threads[run_id] = thread

        thread.start()
        return run_id

    def get_run(self, run_id: str) -> ConcatenationRun:
        run = self._run_store.get_run(run_id)
        if run is None:
            raise NotFoundError("Run", run_id)
        return run

    def is_run_pending(self, run_id: str) -> bool:
        with self._threads_lock:
            thread = self._active_threads.get(run_id)
            return thread is not None and thread.is_alive()

    def download_artifact(self, run_id: str) -> Tuple[str, bytes]:
        """
        (file name, bytes) of a completed run's artifact.

        Raises:
            NotFoundError: If the run is unknown or has no artifact
        """
        run = self.get_run(run_id)
        if not run.artifact_path:
            raise NotFoundError("Artifact", run_id)
        data = self._storage.download(run.artifact_path, Deadline(self._storage_timeout))
        return run.artifact_path.rsplit("/", 1)[-1], data

    def shutdown(self, timeout_per_thread: float = 5.0) -> None:
        """
        Wait for all active run threads to complete.

        Call this during application shutdown.
        """
        with self._threads_lock:
            active = list(self._active_threads.items())

        if not active:
            logger.info("No active run threads to wait for")
            return

        logger.info(f"Waiting for {len(active)} run threads to complete...")
        for run_id, thread in active:
            if thread.is_alive():
                thread.join(timeout=timeout_per_thread)
                if thread.is_alive():
                    logger.warning(f"Run thread {run_id[:8]} did not complete in time")

        logger.info("Concatenation service shutdown complete")

    def _run_thread_main(self, run_id: str, order_ids: List[int], base_job_id: Optional[int]) -> None:
        run_logger = bind_run(run_id)
        run_logger.info("Run thread starting")

        run = self._run_store.get_run(run_id) or ConcatenationRun.create_pending(run_id, order_ids)
        self._run_store.put_run(run.mark_running())
        final = run.mark_failed("Run interrupted")

        try:
            result, artifact_path = self.execute(
                order_ids,
                base_job_id=base_job_id,
                upload=True,
                deadline=Deadline(self._run_timeout),
                run_logger=run_logger,
            )
            final = run.mark_completed(artifact_path, result.summary, result.warnings)
            run_logger.info(f"Run completed: {result.included_segments} segment(s)")

        except PrintQueueError as e:
            run_logger.error(f"Run failed: {e}")
            final = run.mark_failed(e.message, e.details)

        except Exception as e:
            run_logger.error(f"Run failed unexpectedly: {e}", exc_info=True)
            final = run.mark_failed(str(e))

        finally:
            # Store the record before the thread stops counting as active
            self._run_store.put_run(final)

            with self._threads_lock:
                self._active_threads.pop(run_id, None)

            run_logger.info("Run thread exiting")
