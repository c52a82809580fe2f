"""In-process timer that runs the sweeps on independent intervals."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SweepJob:
	name: str
	interval_seconds: float
	run: Callable[[asyncio.Event], Awaitable[object]]


class SweepScheduler:
	"""Runs each job immediately and then every ``interval_seconds`` until stopped.

	A failing run is logged and the job keeps its schedule.  ``stop()`` sets
	the shared stop event, which sweeps check between sensors, and cancels
	whatever is still running after ``stop_grace_seconds``.
	"""

	def __init__(self, jobs: Sequence[SweepJob], *, stop_grace_seconds: float = 5.0):
		self.jobs = list(jobs)
		self.stop_grace_seconds = stop_grace_seconds
		self._stop = asyncio.Event()
		self._tasks: list[asyncio.Task[None]] = []

	@property
	def running(self) -> bool:
		return any(not task.done() for task in self._tasks)

	def start(self) -> None:
		if self.running:
			return
		self._stop.clear()
		self._tasks = [asyncio.create_task(self._loop(job), name=f"sweep:{job.name}") for job in self.jobs]
		logger.info("sweep_scheduler_started", jobs=[job.name for job in self.jobs])

	async def stop(self) -> None:
		self._stop.set()
		if not self._tasks:
			return
		_done, pending = await asyncio.wait(self._tasks, timeout=self.stop_grace_seconds)
		for task in pending:
			task.cancel()
		await asyncio.gather(*self._tasks, return_exceptions=True)
		self._tasks = []
		logger.info("sweep_scheduler_stopped", cancelled=len(pending))

	async def _loop(self, job: SweepJob) -> None:
		while not self._stop.is_set():
			try:
				await job.run(self._stop)
			except Exception as exc:
				logger.error("sweep_run_failed", job=job.name, error=str(exc))
			try:
				await asyncio.wait_for(self._stop.wait(), timeout=job.interval_seconds)
			except TimeoutError:
				continue
