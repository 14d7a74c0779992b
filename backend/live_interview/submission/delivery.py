from __future__ import annotations

import logging
from typing import Optional

import httpx

from core.config import API_BASE_URL, API_TOKEN, HTTP_TIMEOUT_SEC
from live_interview.errors import SubmissionError, UploadError

logger = logging.getLogger("answer_delivery")

FULL_SESSION_QUESTION_ID = "full-session"


class HttpAnswerDelivery:
    """
    Answer delivery over the interview REST API.

    upload_video    POST /upload/{interviewId}/{questionId}   multipart "video" -> {fileUrl}
    submit_answer   POST /interviews/{interviewId}/questions/{questionId}/answer
    complete        POST /interviews/{interviewId}/complete
    """

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        token: str = API_TOKEN,
        timeout: float = HTTP_TIMEOUT_SEC,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = str(base_url or "").rstrip("/")
        self.token = str(token or "").strip()
        self.timeout = float(timeout)
        self._client = client

    def _headers(self) -> dict:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _post(self, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        if self._client is not None:
            return await self._client.post(url, headers=self._headers(), **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, headers=self._headers(), **kwargs)

    async def upload_video(
        self,
        interview_id: str,
        question_id: str,
        video: bytes,
        full_session: bool = False,
    ) -> str:
        filename = f"{question_id}.webm"
        data = {"isFullSession": "true"} if full_session else None
        try:
            response = await self._post(
                f"/upload/{interview_id}/{question_id}",
                files={"video": (filename, bytes(video or b""), "video/webm")},
                data=data,
            )
        except httpx.HTTPError as exc:
            raise UploadError(f"video upload failed: {exc}") from exc

        if response.status_code >= 400:
            raise UploadError(f"video upload rejected with status {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            raise UploadError("video upload returned a non-JSON body") from exc

        file_url = str((body or {}).get("fileUrl") or "").strip()
        if not file_url:
            raise UploadError("video upload response had no fileUrl")
        return file_url

    async def submit_answer(self, interview_id: str, question_id: str, payload: dict) -> None:
        try:
            response = await self._post(
                f"/interviews/{interview_id}/questions/{question_id}/answer",
                json=payload,
            )
        except httpx.HTTPError as exc:
            raise SubmissionError(f"answer submission failed: {exc}") from exc

        if response.status_code >= 400:
            raise SubmissionError(
                f"answer submission rejected with status {response.status_code}",
                status_code=response.status_code,
            )

    async def complete_interview(self, interview_id: str, full_session_video_url: str | None = None) -> None:
        body = {"fullSessionVideoUrl": full_session_video_url} if full_session_video_url else {}
        try:
            response = await self._post(f"/interviews/{interview_id}/complete", json=body)
        except httpx.HTTPError as exc:
            raise SubmissionError(f"interview completion failed: {exc}") from exc

        if response.status_code >= 400:
            raise SubmissionError(
                f"interview completion rejected with status {response.status_code}",
                status_code=response.status_code,
            )
        logger.info("Interview marked complete | interview=%s", interview_id)
