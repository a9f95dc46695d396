"""
Job analysis service.

Downloads a Job's package, runs the JobAnalyzer on it and stores the
figures it finds. Used for single re-analysis, for the batch that fills
every Job still missing a value, and for the small printer backfill that
runs before candidate matching.

Analyses are cached by storage path in an injected TTLCache, so a package
re-read within the TTL (e.g. backfill followed by a manual analyze) is not
downloaded twice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.cache import TTLCache
from core.deadline import Deadline
from core.exceptions import PrintQueueError
from core.repository import JobRepository
from core.storage import ObjectStorage
from models.job import Job, JobAnalysis
from modules.job_analyzer import JobAnalyzer
from modules.package_validator import PackageValidator
from modules.package_reader import summarize_entries
from logging_config import get_logger


logger = get_logger(__name__)

MAX_SAMPLE_ERRORS = 10


@dataclass
class BatchResult:
    """Per-item outcome counts of a batch re-analysis."""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    sample_errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.skipped

    def record_error(self, job_id: Optional[int], message: str) -> None:
        self.failed += 1
        if len(self.sample_errors) < MAX_SAMPLE_ERRORS:
            self.sample_errors.append({"job_id": job_id, "error": message})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "sample_errors": list(self.sample_errors),
        }


class AnalysisService:
    """
    Analyze stored packages and persist what they reveal.

    Args:
        jobs: Job repository
        storage: Object storage holding the packages
        analyzer: Package analyzer
        cache: Optional analysis cache keyed by storage path
        storage_timeout_seconds: Per-download deadline
    """

    def __init__(
        self,
        jobs: JobRepository,
        storage: ObjectStorage,
        analyzer: Optional[JobAnalyzer] = None,
        cache: Optional[TTLCache] = None,
        storage_timeout_seconds: Optional[float] = None,
    ):
        self._jobs = jobs
        self._storage = storage
        self._analyzer = analyzer or JobAnalyzer()
        self._cache = cache
        self._storage_timeout = storage_timeout_seconds

    # =========================================================================
    # SINGLE JOB
    # =========================================================================

    def analyze_job(self, job_id: int, overwrite: bool = False) -> Tuple[Job, JobAnalysis]:
        """
        Analyze one Job's package and store the values found.

        Without ``overwrite`` only unset fields are written.

        Raises:
            NotFoundError: If the Job or its package does not exist
            ParseError: If the package cannot be read
            RemoteIOError: If the download fails or times out
        """
        job = self._jobs.get(job_id)
        analysis = self._analyze_path(job.storage_path)

        updates = analysis.as_updates()
        if updates:
            job = self._jobs.update_analysis(job_id, updates, overwrite=overwrite)

        logger.info(f"Job {job_id} analyzed: {sorted(updates) or 'nothing found'}")
        return job, analysis

    def inspect(self, data: bytes, filename: str, validator: Optional[PackageValidator] = None) -> Dict[str, Any]:
        """Analyze and validate uploaded bytes without storing anything."""
        validator = validator or PackageValidator()
        analysis = self._analyzer.analyze(data, filename)

        report: Dict[str, Any] = {"filename": filename, "analysis": analysis.to_dict()}
        if not self._analyzer.is_bare_gcode(data, filename):
            entries = self._analyzer.reader.read_entries(data, source=filename)
            report["validation"] = validator.validate_entries(entries).to_dict()
            report["entries"] = [{"name": n, "size": s} for n, s in summarize_entries(entries)]
        return report

    # =========================================================================
    # BATCHES
    # =========================================================================

    def reanalyze_missing(self, job_ids: Optional[Iterable[int]] = None, limit: Optional[int] = None) -> BatchResult:
        """
        Re-analyze every Job that still has an unset analysis field.

        Failures are isolated per Job; the batch always runs to the end.
        """
        result = BatchResult()
        candidates = self._jobs.list_missing_analysis(ids=job_ids, limit=limit)
        logger.info(f"Re-analyzing {len(candidates)} job(s) with missing values")

        for job in candidates:
            try:
                _, analysis = self.analyze_job(job.id)
            except PrintQueueError as e:
                logger.warning(f"Re-analysis of job {job.id} failed: {e.message}")
                result.record_error(job.id, e.message)
                continue
            except Exception as e:
                logger.error(f"Re-analysis of job {job.id} failed unexpectedly: {e}", exc_info=True)
                result.record_error(job.id, str(e))
                continue

            if analysis.as_updates():
                result.succeeded += 1
            else:
                result.skipped += 1

        logger.info(
            f"Re-analysis finished: {result.succeeded} succeeded, "
            f"{result.failed} failed, {result.skipped} skipped"
        )
        return result

    def backfill_printers(self, batch_size: int = 5) -> int:
        """
        Fill the printer of up to ``batch_size`` Jobs that lack one.

        Returns:
            Number of Jobs that gained a printer
        """
        if batch_size <= 0:
            return 0

        filled = 0
        for job in self._jobs.list_missing_analysis(fields=("printer",), limit=batch_size):
            try:
                updated, _ = self.analyze_job(job.id)
            except PrintQueueError as e:
                logger.warning(f"Printer backfill skipped job {job.id}: {e.message}")
                continue
            except Exception as e:
                logger.error(f"Printer backfill skipped job {job.id} unexpectedly: {e}", exc_info=True)
                continue
            if updated.printer:
                filled += 1

        if filled:
            logger.info(f"Printer backfill filled {filled} job(s)")
        return filled

    def null_stats(self) -> Dict[str, int]:
        return self._jobs.null_stats()

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _analyze_path(self, storage_path: str) -> JobAnalysis:
        if self._cache is not None:
            cached = self._cache.get(storage_path)
            if cached is not None:
                logger.debug(f"Analysis cache hit for {storage_path}")
                return cached

        data = self._storage.download(storage_path, Deadline(self._storage_timeout))
        analysis = self._analyzer.analyze(data, storage_path.rsplit("/", 1)[-1])

        if self._cache is not None:
            self._cache.set(storage_path, analysis)
        return analysis
