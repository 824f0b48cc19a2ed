"""
Batch Orchestrator
==================

Scores many reference/degraded pairs listed in a CSV file.

Features:
- Input CSV with ``reference,degraded`` columns
- Parallel scoring across a process pool (one engine per worker)
- Per-pair error capture: a failing pair never stops the batch
- Results CSV, summary statistics and config snapshot

Usage:
    orchestrator = BatchOrchestrator({"sample_rate": 48000}, n_workers=4)
    df = orchestrator.run("pairs.csv", results_csv="results/scores.csv")
"""

import json
import logging
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from tqdm import tqdm

from .config import ConfigLike, EngineConfig, as_config
from .engine import QualityEngine, create
from .errors import InvalidConfigError, QualityError
from .preprocessing import load_pair, native_sample_rate

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("reference", "degraded")
SUMMARY_FILENAME = "summary_statistics.json"
CONFIG_SNAPSHOT_FILENAME = "config_snapshot.json"


@dataclass
class BatchJob:
    """One reference/degraded pair"""
    index: int
    reference_path: str
    degraded_path: str

    def to_dict(self) -> Dict:
        return {
            "index": self.index,
            "reference": self.reference_path,
            "degraded": self.degraded_path,
        }


@dataclass
class BatchResult:
    """Outcome of scoring one pair (kept small so it pickles cheaply)"""
    job: BatchJob
    moslqo: Optional[float] = None
    vnsim: Optional[float] = None
    fvnsim: List[float] = field(default_factory=list)
    skipped_patches: Optional[int] = None
    error: Optional[str] = None
    processing_time_sec: float = 0.0
    details: Optional[Dict] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.moslqo is not None

    def to_csv_row(self, num_bands: int) -> Dict:
        """Flatten result for CSV export"""
        row = {
            "reference": self.job.reference_path,
            "degraded": self.job.degraded_path,
            "moslqo": self.moslqo,
            "vnsim": self.vnsim,
            "skipped_patches": self.skipped_patches,
            "error": self.error,
        }
        for band in range(num_bands):
            row[f"fvnsim_{band}"] = self.fvnsim[band] if band < len(self.fvnsim) else np.nan
        return row


def read_batch_csv(csv_path: str) -> List[BatchJob]:
    """
    Read the batch input file.

    Raises:
        InvalidConfigError: file missing or without the required columns
    """
    if not Path(csv_path).is_file():
        raise InvalidConfigError(f"Batch input CSV not found: {csv_path}")

    df = pd.read_csv(csv_path, dtype=str, skipinitialspace=True)
    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise InvalidConfigError(
            f"Batch input CSV {csv_path} is missing column(s): {', '.join(missing)}"
        )

    df = df.dropna(subset=list(REQUIRED_COLUMNS))
    jobs = [
        BatchJob(index=i, reference_path=ref.strip(), degraded_path=deg.strip())
        for i, (ref, deg) in enumerate(zip(df["reference"], df["degraded"]))
    ]
    logger.info(f"Read {len(jobs)} pairs from {csv_path}")
    return jobs


# ============================================================================
# WORKER
# ============================================================================

_worker_engine: Optional[QualityEngine] = None


def _init_worker(config: EngineConfig):
    """Process-pool initializer: one engine per worker process"""
    global _worker_engine
    _worker_engine = create(config)


def process_single_job(job: BatchJob, engine: Optional[QualityEngine] = None,
                       include_details: bool = False) -> BatchResult:
    """
    Score one pair (worker function).

    Uses the worker's engine unless one is passed explicitly.
    """
    engine = engine or _worker_engine
    start_time = time.time()
    result = BatchResult(job=job)

    try:
        reference, degraded = load_pair(
            job.reference_path, job.degraded_path, engine.config.sample_rate
        )
        score = engine.measure(reference, degraded)
        result.moslqo = score.moslqo
        result.vnsim = score.vnsim
        result.fvnsim = score.fvnsim.tolist()
        result.skipped_patches = score.skipped_patches
        if include_details:
            result.details = score.to_dict(include_patches=True)
    except QualityError as e:
        result.error = str(e)
        logger.error(f"Scoring failed for {job.degraded_path}: {e}")

    result.processing_time_sec = time.time() - start_time
    return result


# ============================================================================
# ORCHESTRATOR
# ============================================================================

class BatchOrchestrator:
    """
    Batch scorer with multiprocessing support.

    The engine configuration is validated in the parent process before any
    worker starts, so configuration errors surface once and immediately.
    """

    def __init__(self, config: ConfigLike, n_workers: int = 1,
                 show_progress: bool = True, include_details: bool = False):
        self.config = as_config(config)
        self.n_workers = max(1, int(n_workers))
        self.show_progress = show_progress
        self.include_details = include_details

        self.results: List[BatchResult] = []
        self._run_metadata: Dict = {}
        self._num_bands = 0

    def run(self, batch_csv: str, results_csv: Optional[str] = None) -> pd.DataFrame:
        """
        Score every pair in ``batch_csv``.

        Args:
            batch_csv: Input CSV with reference/degraded columns
            results_csv: Output CSV; summary and config snapshot are written
                next to it

        Returns:
            DataFrame with one row per pair, in input order

        Raises:
            ConfigError: invalid batch file or engine configuration
        """
        start_time = time.time()
        jobs = read_batch_csv(batch_csv)
        if not jobs:
            logger.warning("No pairs found in batch input!")
            self.results = []
            return pd.DataFrame(columns=list(REQUIRED_COLUMNS))

        config = self._resolve_sample_rate(jobs)
        engine = create(config)
        self._num_bands = engine.num_bands
        self._run_metadata = {
            "batch_csv": batch_csv,
            "config_hash": config.config_hash,
            "mode": engine.mode.label,
            "start_time": datetime.now().isoformat(),
            "n_workers": self.n_workers,
            "total_pairs": len(jobs),
        }
        logger.info(f"Scoring {len(jobs)} pairs ({engine.mode.label} mode, {self.n_workers} workers)")

        try:
            if self.n_workers > 1:
                results = self._process_parallel(jobs, config)
            else:
                results = self._process_sequential(jobs, engine)
        finally:
            engine.close()

        self.results = sorted(results, key=lambda r: r.job.index)
        df = self._generate_dataframe()

        elapsed = time.time() - start_time
        successful = sum(1 for r in self.results if r.success)
        self._run_metadata.update({
            "end_time": datetime.now().isoformat(),
            "elapsed_sec": elapsed,
            "successful": successful,
            "failed": len(self.results) - successful,
        })

        if results_csv:
            self._save_results(df, Path(results_csv), config)

        logger.info(f"Batch complete: {successful}/{len(self.results)} successful in {elapsed:.1f}s")
        return df

    def _resolve_sample_rate(self, jobs: List[BatchJob]) -> EngineConfig:
        """Take the first reference's rate when none is configured"""
        if self.config.sample_rate:
            return self.config
        try:
            sample_rate = native_sample_rate(jobs[0].reference_path)
        except QualityError as e:
            raise InvalidConfigError(
                f"Cannot determine the batch sample rate from {jobs[0].reference_path}: {e.message}"
            ) from e
        logger.info(f"Using sample rate {sample_rate}Hz from {jobs[0].reference_path}")
        return self.config.with_options(sample_rate=sample_rate)

    def _process_parallel(self, jobs: List[BatchJob], config: EngineConfig) -> List[BatchResult]:
        """Process jobs across worker processes"""
        results = []

        with ProcessPoolExecutor(max_workers=self.n_workers,
                                 initializer=_init_worker,
                                 initargs=(config,)) as executor:
            future_to_job = {
                executor.submit(process_single_job, job, None, self.include_details): job
                for job in jobs
            }

            iterator = as_completed(future_to_job)
            if self.show_progress:
                iterator = tqdm(iterator, total=len(jobs), desc="Scoring")

            for future in iterator:
                job = future_to_job[future]
                try:
                    results.append(future.result())
                except Exception as e:
                    logger.error(f"Job failed: {job.degraded_path}: {e}")
                    results.append(BatchResult(job=job, error=str(e)))

        return results

    def _process_sequential(self, jobs: List[BatchJob], engine: QualityEngine) -> List[BatchResult]:
        """Process jobs in this process with one engine"""
        iterator = tqdm(jobs, desc="Scoring") if self.show_progress else jobs
        return [process_single_job(job, engine, self.include_details) for job in iterator]

    def _generate_dataframe(self) -> pd.DataFrame:
        rows = [r.to_csv_row(self._num_bands) for r in self.results]
        return pd.DataFrame(rows)

    def _save_results(self, df: pd.DataFrame, csv_path: Path, config: EngineConfig):
        """Write results CSV, summary statistics and config snapshot"""
        output_dir = csv_path.parent
        output_dir.mkdir(parents=True, exist_ok=True)

        df.to_csv(csv_path, index=False)
        logger.info(f"Saved CSV: {csv_path}")

        summary = compute_summary(df)
        summary["run"] = self._run_metadata
        summary_path = output_dir / SUMMARY_FILENAME
        with open(summary_path, "w") as f:
            json.dump(summary, f, indent=2, default=str)
        logger.info(f"Saved summary: {summary_path}")

        config.save(str(output_dir / CONFIG_SNAPSHOT_FILENAME))

    def write_details(self, path: str):
        """Write per-pair scores with patch detail (requires include_details)"""
        details = [
            {**r.job.to_dict(), "error": r.error, "score": r.details}
            for r in self.results
        ]
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(details, f, indent=2, default=str)
        logger.info(f"Saved debug output: {path}")


def compute_summary(df: pd.DataFrame) -> Dict:
    """Summary statistics of a results DataFrame"""
    if "error" in df.columns:
        failed = int(df["error"].notna().sum())
    else:
        failed = 0
    summary = {
        "total_pairs": len(df),
        "successful": len(df) - failed,
        "failed": failed,
    }

    for metric in ("moslqo", "vnsim", "skipped_patches"):
        if metric in df.columns:
            valid = pd.to_numeric(df[metric], errors="coerce").dropna()
            if len(valid) > 0:
                summary[f"{metric}_mean"] = float(valid.mean())
                summary[f"{metric}_std"] = float(valid.std()) if len(valid) > 1 else 0.0
                summary[f"{metric}_min"] = float(valid.min())
                summary[f"{metric}_max"] = float(valid.max())
                summary[f"{metric}_median"] = float(valid.median())

    band_columns = [c for c in df.columns if str(c).startswith("fvnsim_")]
    if band_columns and len(df) > 0:
        summary["fvnsim_mean"] = [
            float(v) if pd.notna(v) else None
            for v in df[band_columns].apply(pd.to_numeric, errors="coerce").mean()
        ]

    return summary
