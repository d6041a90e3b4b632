"""Block until every matrix shard job of a workflow reaches a terminal state."""

import asyncio
import logging
from enum import Enum

from pydantic import BaseModel, Field

from ciflow.e2e_pipeline.models.circleci import Job
from ciflow.e2e_pipeline.providers.circleci import CircleCIClient

logger = logging.getLogger(__name__)

DEBUG_LISTING_TICK = 5


class PollState(str, Enum):
    """Poller states."""

    POLLING = "polling"
    DONE = "done"


class DoneReason(str, Enum):
    """Why the poller stopped."""

    COMPLETED = "completed"
    NO_JOBS = "no_jobs"
    TIMEOUT = "timeout"


class PollStatus(BaseModel):
    """Counts observed on one tick."""

    total: int = 0
    done: int = 0
    pending: int = 0
    jobs: list[Job] = Field(default_factory=list)


class PollOutcome(BaseModel):
    """Final result of a wait."""

    reason: DoneReason
    ticks: int
    status: PollStatus


class CompletionPoller:
    """Two-state poller (Polling -> Done) over a workflow's shard jobs.

    The poller never fails on slowness: an exceeded deadline or jobs that
    never appear both end in Done so reporting can run on what exists.
    """

    def __init__(
        self,
        client: CircleCIClient,
        workflow_id: str,
        prefixes: list[str],
        poll_interval: float = 10,
        timeout: float = 3600,
        max_empty_polls: int = 30,
    ) -> None:
        """Initialize the poller for one workflow."""
        self.client = client
        self.workflow_id = workflow_id
        self.prefixes = prefixes
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.max_empty_polls = max_empty_polls
        self.state = PollState.POLLING
        self.reason: DoneReason | None = None
        self.empty_polls = 0
        self.ticks = 0

    def _finish(self, reason: DoneReason) -> None:
        self.state = PollState.DONE
        self.reason = reason

    async def tick(self) -> PollStatus:
        """Fetch jobs once and advance the state machine."""
        self.ticks += 1
        jobs = await self.client.list_jobs(self.workflow_id)
        matching = [j for j in jobs if j.matches(self.prefixes)]

        if not matching:
            self.empty_polls += 1
            logger.info("No E2E jobs found yet")
            if self.empty_polls == DEBUG_LISTING_TICK:
                logger.info("All jobs in workflow:")
                for job in jobs:
                    logger.info(f"  - {job.name} ({job.status})")
            if self.empty_polls > self.max_empty_polls:
                logger.info(
                    f"No E2E jobs found after {self.max_empty_polls} checks; "
                    "proceeding anyway"
                )
                self._finish(DoneReason.NO_JOBS)
            return PollStatus()

        done = sum(1 for j in matching if j.is_terminal)
        status = PollStatus(
            total=len(matching), done=done, pending=len(matching) - done, jobs=matching
        )
        logger.info(f"{done}/{len(matching)} E2E jobs done; pending={status.pending}")
        if status.pending == 0:
            self._finish(DoneReason.COMPLETED)
        return status

    async def wait(self) -> PollOutcome:
        """Tick until Done, sleeping between ticks and honoring the deadline."""
        logger.info(f"Looking for jobs matching prefixes: {', '.join(self.prefixes)}")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        while True:
            status = await self.tick()
            if self.state is PollState.DONE:
                break
            if loop.time() >= deadline:
                logger.error("Timeout waiting for E2E jobs; continuing to report")
                self._finish(DoneReason.TIMEOUT)
                break
            await asyncio.sleep(self.poll_interval)

        reason = self.reason or DoneReason.TIMEOUT
        return PollOutcome(reason=reason, ticks=self.ticks, status=status)
