"""Commit status sink for source-control hosts with a GitHub-style statuses API."""

from __future__ import annotations

import logging
from typing import Final

import httpx

from conveyor.constants import PIPELINE_STATUS_CONTEXT
from conveyor.domain.errors import StatusDeliveryFailed
from conveyor.domain.events import StatusEvent, StatusState

logger = logging.getLogger(__name__)

COMMIT_STATE_BY_STATUS: Final[dict[StatusState, str]] = {
    StatusState.RUNNING: "pending",
    StatusState.SUCCESS: "success",
    StatusState.FAILED: "failure",
}
_MAX_DESCRIPTION_LENGTH: Final[int] = 140


class CommitStatusSink:
    """POSTs each event to ``/repos/{repository}/statuses/{commit_sha}``.

    The pipeline-level event is reported under ``<context_prefix>`` itself;
    stage events under ``<context_prefix>/<stage>``.
    """

    def __init__(
        self,
        *,
        api_url: str,
        repository: str,
        commit_sha: str,
        token: str | None = None,
        context_prefix: str = "ci/conveyor",
        target_url: str | None = None,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not repository.strip() or "/" not in repository:
            raise ValueError("repository must be an 'owner/name' slug")
        if not commit_sha.strip():
            raise ValueError("commit_sha must not be empty")
        self._repository = repository.strip()
        self._commit_sha = commit_sha.strip()
        self._context_prefix = context_prefix.rstrip("/")
        self._target_url = target_url

        headers = {"Accept": "application/vnd.github+json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if client is None:
            self._client = httpx.Client(
                base_url=api_url.rstrip("/"), headers=headers, timeout=timeout_seconds
            )
            self._owns_client = True
        else:
            client.headers.update(headers)
            self._client = client
            self._owns_client = False

    @property
    def path(self) -> str:
        return f"/repos/{self._repository}/statuses/{self._commit_sha}"

    def context_for(self, stage: str) -> str:
        if stage == PIPELINE_STATUS_CONTEXT:
            return self._context_prefix
        return f"{self._context_prefix}/{stage}"

    def deliver(self, event: StatusEvent) -> None:
        payload: dict[str, str] = {
            "state": COMMIT_STATE_BY_STATUS[event.state],
            "context": self.context_for(event.stage),
            "description": event.description[:_MAX_DESCRIPTION_LENGTH],
        }
        if self._target_url:
            payload["target_url"] = self._target_url

        try:
            response = self._client.post(self.path, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StatusDeliveryFailed(
                f"commit status rejected with HTTP {exc.response.status_code} "
                f"for {payload['context']}"
            ) from exc
        except httpx.HTTPError as exc:
            raise StatusDeliveryFailed(f"commit status request failed: {exc}") from exc

        logger.debug(
            "commit status delivered",
            extra={"status_context": payload["context"], "commit_state": payload["state"]},
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> CommitStatusSink:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["COMMIT_STATE_BY_STATUS", "CommitStatusSink"]
