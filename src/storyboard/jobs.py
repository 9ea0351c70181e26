"""
Per-prompt image jobs dispatched across a rotating token pool.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import replace

from tqdm.asyncio import tqdm

from .credentials import CredentialPool, mask_token
from .errors import AuthenticationError, PolicyError
from .models import AspectRatio, ImageJob, JobState

logger = logging.getLogger("storyboard")

ImageGenerator = Callable[[str, AspectRatio, str], Awaitable[str]]
PromptSanitizer = Callable[[str], Awaitable[str]]

NO_VALID_TOKEN = "No valid token left to retry with"


class ImageJobDispatcher:
    """
    Run one image job per prompt and keep each job's state.

    ``dispatch`` assigns tokens round robin over the tokens that are valid
    when it starts and runs every job at once. Retries pick a random valid
    token. A 401/403 disables the token in the pool for all later picks.
    """

    def __init__(
        self,
        pool: CredentialPool,
        generate: ImageGenerator,
        sanitize: PromptSanitizer | None = None,
        aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE,
        rng: random.Random | None = None,
    ) -> None:
        self.pool = pool
        self.generate = generate
        self.sanitize = sanitize
        self.aspect_ratio = aspect_ratio
        self.rng = rng or random.Random()
        self._jobs: dict[int, ImageJob] = {}

    @property
    def jobs(self) -> list[ImageJob]:
        return [self._jobs[k] for k in sorted(self._jobs)]

    def get(self, job_id: int) -> ImageJob:
        return self._jobs[job_id]

    def successful_jobs(self) -> list[ImageJob]:
        return [j for j in self.jobs if j.state is JobState.SUCCESS]

    def failed_jobs(self) -> list[ImageJob]:
        return [j for j in self.jobs if j.state is JobState.FAILED]

    def _update(self, job_id: int, **changes) -> ImageJob:
        job = replace(self._jobs[job_id], **changes)
        self._jobs[job_id] = job
        return job

    async def _execute(self, job_id: int, token: str) -> ImageJob:
        prompt = self._jobs[job_id].prompt
        try:
            image_data = await self.generate(prompt, self.aspect_ratio, token)
        except AuthenticationError as e:
            self.pool.mark_invalid(token)
            logger.warning(f"Job {job_id}: token {mask_token(token)} rejected: {e}")
            return self._update(job_id, state=JobState.FAILED, error=str(e), image_data=None)
        except Exception as e:
            logger.warning(f"Job {job_id} failed: {e}")
            return self._update(job_id, state=JobState.FAILED, error=str(e) or type(e).__name__, image_data=None)
        return self._update(job_id, state=JobState.SUCCESS, error=None, image_data=image_data)

    async def dispatch(
        self,
        prompts: list[str],
        on_progress: Callable[[float], None] | None = None,
    ) -> list[ImageJob]:
        """Start a fresh run with one job per non-blank prompt."""
        prompts = [p for p in prompts if p.strip()]
        if not prompts:
            raise PolicyError("No prompts to generate images for")
        tokens = self.pool.valid_tokens()
        if not tokens:
            raise PolicyError("No valid token available")

        self._jobs = {i: ImageJob(id=i, prompt=p) for i, p in enumerate(prompts)}
        total = len(prompts)
        completed = 0
        logger.info(f"Generating {total} images with {len(tokens)} token(s)")

        async def run(job_id: int) -> ImageJob:
            nonlocal completed
            try:
                return await self._execute(job_id, tokens[job_id % len(tokens)])
            finally:
                completed += 1
                if on_progress:
                    on_progress(completed / total * 100)

        await tqdm.gather(*(run(i) for i in self._jobs), desc="Images", unit="img")
        logger.info(f"Images done: {len(self.successful_jobs())} ok, {len(self.failed_jobs())} failed")
        return self.jobs

    async def retry(self, job_id: int) -> ImageJob:
        """Retry one job with a random valid token."""
        token = self.pool.pick_random(self.rng)
        if token is None:
            return self._update(job_id, state=JobState.FAILED, error=NO_VALID_TOKEN, image_data=None)
        self._update(job_id, state=JobState.PENDING, error=None, image_data=None)
        return await self._execute(job_id, token)

    async def retry_failed(self) -> list[ImageJob]:
        """Retry every failed job concurrently."""
        failed = [j.id for j in self.failed_jobs()]
        logger.info(f"Retrying {len(failed)} failed job(s)")
        await asyncio.gather(*(self.retry(job_id) for job_id in failed))
        return self.jobs

    async def _repair(self, job_id: int) -> ImageJob:
        try:
            fixed = await self.sanitize(self._jobs[job_id].prompt)
        except Exception as e:
            logger.warning(f"Job {job_id}: prompt repair failed: {e}")
            return self._update(job_id, state=JobState.FAILED, error=f"Prompt repair failed: {e}")
        self._update(job_id, prompt=fixed)
        return await self.retry(job_id)

    async def repair_failed(self) -> list[ImageJob]:
        """Rewrite each failed prompt with the sanitizer, then retry it."""
        if self.sanitize is None:
            raise PolicyError("No prompt sanitizer configured")
        failed = [j.id for j in self.failed_jobs()]
        logger.info(f"Repairing {len(failed)} failed prompt(s)")
        await asyncio.gather(*(self._repair(job_id) for job_id in failed))
        return self.jobs

    async def edit_and_retry(self, job_id: int, prompt: str) -> ImageJob:
        """Replace a job's prompt and run it again."""
        self._update(job_id, prompt=prompt)
        return await self.retry(job_id)
