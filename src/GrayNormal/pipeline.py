"""Run the heightmap-to-normal transform over a batch of input files.

`BatchExecutor` picks one of three dispatch strategies from the config:

* sequential -- one file after another on the calling thread,
* parallel   -- one task per file on a :class:`WorkerPool`,
* merge      -- average every input into one heightmap, write one output.

By default the first failing file aborts the batch (`BatchAbortedError`);
with ``fail_fast=False`` every file is attempted and the aggregate
`BatchResult` reports what failed.
"""

import functools
import logging
import os
import time
from collections import Counter
from typing import Callable, Iterable, List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from .config import VALID_MERGE_ROUNDING, PipelineConfig
from .core import (
    BatchResult, FileResult, WorkerPool,
    load_heightmap, read_heightmap_size, save_normal_map,
    get_output_path, get_merge_output_path,
)
from .core.records import STATUS_CANCELLED, STATUS_FAILED
from .errors import (
    BatchAbortedError, DimensionMismatchError, ImageDecodeError, UsageError,
)
from .phases.normal import NormalMapGenerator

logger = logging.getLogger("gray_normal")

# Seconds between liveness checks while waiting on worker outcomes.
_OUTCOME_POLL_SECONDS = 0.2


class HeightmapAccumulator:
    """Fold equally sized uint8 heightmaps into a running average one at a time.

    Only the accumulator is kept, so callers can drop each heightmap as soon
    as it has been added. ``count`` is the number of heightmaps the caller
    plans to add; ``legacy`` rounding divides every input by it up front.
    """

    def __init__(self, shape: Tuple[int, int], count: int, rounding: str = "exact"):
        if rounding not in VALID_MERGE_ROUNDING:
            raise ValueError(f"unknown rounding mode '{rounding}'")
        if count < 1:
            raise ValueError("HeightmapAccumulator needs a count of at least one")
        self.shape = tuple(shape)
        self.count = count
        self.rounding = rounding
        self.added = 0
        dtype = np.uint32 if rounding == "legacy" else np.int64
        self._acc = np.zeros(self.shape, dtype=dtype)

    def add(self, heightmap: np.ndarray) -> None:
        if heightmap.shape != self.shape:
            raise ValueError(f"heightmap shape {heightmap.shape} does not match {self.shape}")
        if self.added >= self.count:
            raise ValueError(f"more than {self.count} heightmap(s) added")
        if self.rounding == "legacy":
            self._acc += heightmap.astype(np.uint32) // self.count
        else:
            self._acc += heightmap
        self.added += 1

    def result(self) -> np.ndarray:
        """Return the averaged uint8 heightmap."""
        if self.added == 0:
            raise ValueError("no heightmap was added")
        if self.rounding == "legacy":
            return self._acc.astype(np.uint8)
        n = self.added
        return ((self._acc + n // 2) // n).astype(np.uint8)


def average_heightmaps(heightmaps: List[np.ndarray], rounding: str = "exact") -> np.ndarray:
    """Average equally sized uint8 heightmaps into one uint8 heightmap.

    ``exact`` sums at full precision and divides once (rounding half up).
    ``legacy`` divides every input by N before summing, truncating each
    contribution separately.
    """
    if not heightmaps:
        raise ValueError("average_heightmaps() needs at least one heightmap")
    acc = HeightmapAccumulator(heightmaps[0].shape, len(heightmaps), rounding)
    for hm in heightmaps:
        acc.add(hm)
    return acc.result()


class BatchExecutor:
    """Generate normal maps for a list of heightmap files."""

    def __init__(
        self,
        config: PipelineConfig,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ):
        self.config = config
        self._progress_callback = progress_callback
        self._generator = NormalMapGenerator(config)

    # ------------------------------------------
    # Helpers
    # ------------------------------------------

    def _report_progress(self, done: int, total: int) -> None:
        if self._progress_callback is None:
            return
        try:
            self._progress_callback(done, total)
        except Exception:
            logger.debug("Progress callback failed (ignored).", exc_info=True)

    def _plan(self, inputs: List[str]) -> List[Tuple[str, str]]:
        """Pair every input with its output path before anything is decoded."""
        cfg = self.config.normal
        jobs = [
            (path, get_output_path(path, self.config.output_dir, cfg.suffix, cfg.output_ext))
            for path in inputs
        ]
        dupes = [out for out, count in Counter(out for _, out in jobs).items() if count > 1]
        for out in dupes:
            logger.warning("Several inputs map to the same output %s; last write wins.", out)
        return jobs

    @staticmethod
    def _cancelled(jobs: Iterable[Tuple[str, str]], reason: str) -> List[FileResult]:
        return [
            FileResult(input_path=inp, output_path=out, status=STATUS_CANCELLED, error=reason)
            for inp, out in jobs
        ]

    def _show_progress(self) -> bool:
        return bool(self.config.show_progress)

    # ------------------------------------------
    # Entry point
    # ------------------------------------------

    def run(self, inputs: Iterable[str]) -> BatchResult:
        """Process ``inputs`` with the configured strategy and return the batch result."""
        inputs = [os.fspath(p) for p in inputs]
        if not inputs:
            raise UsageError("No input files given")

        mode = self.config.mode
        jobs = None if mode == "merge" else self._plan(inputs)
        os.makedirs(self.config.output_dir, exist_ok=True)

        logger.info(
            "Generating normal maps: %d input(s), mode=%s, scale=%g, output_dir=%s",
            len(inputs), mode, self.config.normal.scale, self.config.output_dir,
        )
        start = time.perf_counter()
        if mode == "merge":
            result = self._run_merge(inputs)
        elif mode == "parallel":
            result = self._run_parallel(jobs)
        else:
            result = self._run_sequential(jobs)
        logger.info(
            "Batch finished in %.2fs: %d succeeded, %d failed, %d cancelled",
            time.perf_counter() - start, result.succeeded, result.failed, result.cancelled,
        )
        return result

    # ------------------------------------------
    # Strategies
    # ------------------------------------------

    def _run_sequential(self, jobs: List[Tuple[str, str]]) -> BatchResult:
        result = BatchResult(mode="sequential")
        total = len(jobs)
        with tqdm(total=total, desc="Normal maps", disable=not self._show_progress()) as pbar:
            for i, (inp, out) in enumerate(jobs):
                try:
                    file_result = self._generator.process(inp, out)
                except Exception as e:
                    logger.error("Failed %s: %s", inp, e)
                    result.files.append(FileResult(
                        input_path=inp, output_path=out, status=STATUS_FAILED, error=str(e),
                    ))
                    if self.config.fail_fast:
                        reason = f"Cancelled after failure on {inp}"
                        result.files.extend(self._cancelled(jobs[i + 1:], reason))
                        raise BatchAbortedError(
                            f"Aborted on {inp}: {e}", result=result, cause=e,
                        ) from e
                else:
                    result.files.append(file_result)
                    result.outputs.append(out)
                finally:
                    pbar.update(1)
                    self._report_progress(i + 1, total)
        return result

    def _run_parallel(self, jobs: List[Tuple[str, str]]) -> BatchResult:
        result = BatchResult(mode="parallel")
        total = len(jobs)
        files: List[Optional[FileResult]] = [None] * total
        first_error: Optional[Exception] = None
        first_failed: Optional[str] = None

        pool = WorkerPool(self.config.workers, order=self.config.task_order, name="normal")
        try:
            for idx, (inp, out) in enumerate(jobs):
                # partial binds inp/out now; a closure would see the last loop values.
                pool.add(functools.partial(self._generator.process, inp, out), key=idx)

            expected = total
            received = 0
            with tqdm(total=total, desc="Normal maps", disable=not self._show_progress()) as pbar:
                while received < expected:
                    outcome = pool.next_outcome(timeout=_OUTCOME_POLL_SECONDS)
                    if outcome is None:
                        if pool.alive == 0:
                            raise RuntimeError(
                                f"All workers exited with {expected - received} task(s) unreported"
                            )
                        continue
                    received += 1
                    idx = outcome.key
                    inp, out = jobs[idx]
                    if outcome.ok:
                        files[idx] = outcome.result
                    else:
                        logger.error("Failed %s: %s", inp, outcome.error)
                        files[idx] = FileResult(
                            input_path=inp, output_path=out,
                            status=STATUS_FAILED, error=str(outcome.error),
                        )
                        if self.config.fail_fast and first_error is None:
                            first_error, first_failed = outcome.error, inp
                            dropped = pool.cancel()
                            reason = f"Cancelled after failure on {inp}"
                            for key in dropped:
                                files[key] = self._cancelled([jobs[key]], reason)[0]
                            expected -= len(dropped)
                            pbar.update(len(dropped))
                    pbar.update(1)
                    self._report_progress(received + (total - expected), total)
        except BaseException:
            pool.cancel()
            raise
        finally:
            pool.join()

        result.files = [f for f in files if f is not None]
        result.outputs = [f.output_path for f in result.files if f.ok]
        if first_error is not None:
            raise BatchAbortedError(
                f"Aborted on {first_failed}: {first_error}", result=result, cause=first_error,
            ) from first_error
        return result

    def _run_merge(self, inputs: List[str]) -> BatchResult:
        result = BatchResult(mode="merge")
        out = get_merge_output_path(self.config.merge.output_name, self.config.output_dir)
        max_pixels = self.config.max_image_pixels
        total = len(inputs)

        def fail(i: int, inp: str, file_result: FileResult, e: Exception) -> None:
            file_result.status = STATUS_FAILED
            file_result.error = str(e)
            if self.config.fail_fast:
                reason = f"Cancelled after failure on {inp}"
                pending = [r for r in result.files[i + 1:] if r.ok]
                for r in pending:
                    r.status, r.error = STATUS_CANCELLED, reason
                result.files.extend(
                    self._cancelled(((p, out) for p in inputs[len(result.files):]), reason)
                )
                raise BatchAbortedError(f"Aborted on {inp}: {e}", result=result, cause=e) from e
            logger.warning("Skipping %s in merge: %s", inp, e)

        # Headers first: dimensions are checked before any pixel is decoded.
        expected_shape = None
        for i, inp in enumerate(inputs):
            file_result = FileResult(input_path=inp, output_path=out)
            result.files.append(file_result)
            try:
                shape = read_heightmap_size(inp, max_pixels=max_pixels)
            except ImageDecodeError as e:
                fail(i, inp, file_result, e)
                continue
            if expected_shape is None:
                expected_shape = shape
            elif shape != expected_shape:
                raise DimensionMismatchError(inp, expected_shape, shape)
            file_result.height, file_result.width = shape

        readable = [(i, r) for i, r in enumerate(result.files) if r.ok]
        if not readable:
            raise BatchAbortedError(
                "No heightmap could be decoded; nothing to merge", result=result,
            )

        acc = HeightmapAccumulator(expected_shape, len(readable), self.config.merge.rounding)
        with tqdm(total=total, desc="Merging heightmaps", disable=not self._show_progress()) as pbar:
            done = total - len(readable)
            pbar.update(done)
            for i, file_result in readable:
                inp = file_result.input_path
                try:
                    heightmap = load_heightmap(inp, max_pixels=max_pixels)
                    if heightmap.shape != expected_shape:
                        raise DimensionMismatchError(inp, expected_shape, heightmap.shape)
                    acc.add(heightmap)
                    del heightmap
                except ImageDecodeError as e:
                    fail(i, inp, file_result, e)
                finally:
                    done += 1
                    pbar.update(1)
                    self._report_progress(done, total)

        if acc.added == 0:
            raise BatchAbortedError(
                "No heightmap could be decoded; nothing to merge", result=result,
            )
        merged = acc.result()
        logger.info(
            "Merged %d heightmap(s) (%dx%d, rounding=%s)",
            acc.added, merged.shape[1], merged.shape[0], acc.rounding,
        )

        try:
            save_normal_map(self._generator.generate(merged), out)
        except Exception as e:
            logger.error("Failed to write merged normal map %s: %s", out, e)
            for file_result in result.files:
                if file_result.ok:
                    file_result.status = STATUS_FAILED
                    file_result.error = str(e)
            raise BatchAbortedError(
                f"Aborted writing {out}: {e}", result=result, cause=e,
            ) from e
        result.outputs.append(out)
        logger.info("Merged normal map written to %s", out)
        return result
