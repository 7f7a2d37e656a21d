"""
RunComfy GPU workflow client

Two ways in: run_workflow() answers synchronously through a deployment,
start_run() queues a run that is then polled with wait_for_run().
"""

import asyncio
import logging

import httpx

from aktion.services.providers import (
    TRANSIENT_POLL_ERRORS,
    ProviderClient,
    ProviderEnvelopeError,
    ProviderTaskFailed,
    ProviderTimeout,
)

logger = logging.getLogger(__name__)

RUN_SUCCEEDED = ("succeeded", "completed")
RUN_FAILED = ("failed", "error")


class RunComfyClient(ProviderClient):
    name = "RunComfy"

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str,
        base_url: str,
        deployment_id: str = "",
        poll_interval: float = 5.0,
        poll_max_attempts: int = 60,
    ):
        super().__init__(http, api_key, base_url)
        self.deployment_id = deployment_id
        self.poll_interval = poll_interval
        self.poll_max_attempts = poll_max_attempts

    async def run_workflow(self, workflow_id: str, inputs: dict) -> dict:
        response = await self._send(
            "POST",
            "/workflows/run",
            json={
                "workflow_id": workflow_id,
                "deployment_id": self.deployment_id or None,
                "input": inputs,
            },
        )
        return self._json(response, self.name) or {}

    async def start_run(self, workflow_id: str, deployment_id: str, overrides: dict) -> str:
        """Queue a run with node input overrides and return its id."""
        response = await self._send(
            "POST",
            "/runs",
            json={
                "workflow_id": workflow_id,
                "deployment_id": deployment_id,
                "overrides": overrides,
            },
        )
        data = self._json(response, self.name) or {}
        run_id = data.get("id") or data.get("run_id")
        if not run_id:
            raise ProviderEnvelopeError(self.name, "No run ID returned")
        return run_id

    async def wait_for_run(self, run_id: str, label: str = "Run") -> str:
        """Poll /runs/{run_id} until it succeeds and return its video URL."""
        for attempt in range(1, self.poll_max_attempts + 1):
            await asyncio.sleep(self.poll_interval)

            try:
                response = await self._send("GET", f"/runs/{run_id}")
                data = self._json(response, self.name) or {}
            except TRANSIENT_POLL_ERRORS as e:
                logger.warning(f"Run {run_id} poll {attempt} failed, retrying: {e}")
                continue

            status = data.get("status")
            logger.info(f"Run {run_id} poll {attempt}: {status}")

            if status in RUN_SUCCEEDED:
                url = self.video_url(data.get("outputs") or [])
                if not url:
                    raise ProviderEnvelopeError(self.name, "No output returned")
                return url
            if status in RUN_FAILED:
                raise ProviderTaskFailed(
                    self.name, f"{label} failed: {data.get('error') or 'Unknown error'}"
                )

        raise ProviderTimeout(self.name, "Video generation timed out. Please try again.")

    @staticmethod
    def video_url(outputs: list) -> str | None:
        """Prefer an output that looks like a video, else the first one."""
        if not outputs:
            return None
        for output in outputs:
            nested = output.get("data") or {}
            url = output.get("url") or nested.get("url") or ""
            if url and ("video" in (output.get("type"), nested.get("type")) or ".mp4" in url):
                return url
        return outputs[0].get("url")

    @staticmethod
    def output_url(result: dict) -> str:
        """Workflows report either a flat output_url or a list of outputs."""
        url = result.get("output_url")
        if not url:
            outputs = result.get("outputs") or []
            url = outputs[0].get("url") if outputs else None
        if not url:
            raise ProviderEnvelopeError(RunComfyClient.name, "No output returned")
        return url
