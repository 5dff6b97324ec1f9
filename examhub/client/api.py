"""
Thin async HTTP client for the exam-taking endpoints.

Error envelopes from the server are raised back as the matching
`ExamHubError` subclass, so callers handle the same taxonomy on both sides.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from examhub.core.errors import ERRORS_BY_TYPE, ExamHubError

logger = logging.getLogger(__name__)


class ExamApiClient:
    def __init__(self, base_url: str = "http://localhost:8000", token: Optional[str] = None,
                 prefix: str = "/v1", client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self._headers = headers
        self.prefix = prefix

    async def __aenter__(self) -> "ExamApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        r = await self._client.request(method, f"{self.prefix}{path}", headers=self._headers, **kwargs)
        if r.is_success:
            return r.json() if r.content else None
        try:
            err = r.json().get("error", {})
        except ValueError:
            err = {}
        cls = ERRORS_BY_TYPE.get(err.get("type"), ExamHubError)
        exc = cls(err.get("message") or f"HTTP {r.status_code}")
        exc.status_code = r.status_code
        raise exc

    async def get_exam(self, exam_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/exams/{exam_id}")

    async def list_questions(self, exam_id: int) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/exams/{exam_id}/questions")

    async def start_attempt(self, exam_id: int) -> Dict[str, Any]:
        return await self._request("POST", f"/exams/{exam_id}/attempts")

    async def get_attempt(self, attempt_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/attempts/{attempt_id}")

    async def submit_answer(self, attempt_id: int, question_id: int, answer: str) -> Dict[str, Any]:
        return await self._request("POST", f"/attempts/{attempt_id}/answers",
                                   json={"question_id": question_id, "answer": answer})

    async def complete_attempt(self, attempt_id: int) -> Dict[str, Any]:
        return await self._request("PUT", f"/attempts/{attempt_id}/complete")
