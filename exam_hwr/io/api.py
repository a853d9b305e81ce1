"""
HTTP clients for the exam backend.

ENDPOINTS:
- GET  /api/predictions?questionId=..&studentId=..
- POST /api/predictions
- PUT  /api/predictions
- POST /api/coupage-dimage          (line segmentation)

Every request carries the caller's bearer token and an explicit timeout.
Transport failures and non-2xx answers are raised as TransportError; retry
policy belongs to whoever re-submits the task.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from exam_hwr.core.models import PredictionRecord
from exam_hwr.errors import InputValidationError, MissingCredentialError, TransportError

from .images import from_base64, to_base64

logger = logging.getLogger(__name__)


class _BackendClient:
    def __init__(
        self,
        base_url: str,
        auth_token: Optional[str],
        timeout_seconds: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        if not base_url:
            raise ValueError("base_url is required")
        if not auth_token or not str(auth_token).strip():
            raise MissingCredentialError("a bearer token is required for backend calls")

        self._base_url = str(base_url).rstrip("/")
        self._timeout = float(timeout_seconds)
        self._headers = {
            "Authorization": f"Bearer {auth_token}",
            "Content-Type": "application/json",
        }
        self._owns_session = session is None
        self._session = session or requests.Session()

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self._base_url}{path}"
        try:
            resp = self._session.request(method, url, headers=self._headers, timeout=self._timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if not resp.ok:
            body = (resp.text or "")[:200]
            raise TransportError(f"{method} {path} returned HTTP {resp.status_code}: {body}")
        return resp

    @staticmethod
    def _json(resp: requests.Response, what: str) -> Any:
        try:
            return resp.json() if resp.content else None
        except ValueError as e:
            raise TransportError(f"{what}: response is not JSON") from e


class PredictionApiClient(_BackendClient):
    """Prediction records stored by the exam backend."""

    def lookup_prediction(self, question_id: int, student_id: int) -> Optional[PredictionRecord]:
        resp = self._request(
            "GET",
            "/api/predictions",
            params={"questionId": question_id, "studentId": student_id},
        )
        data = self._json(resp, "lookup prediction") or []
        if not isinstance(data, list):
            raise TransportError(f"lookup prediction: expected a list, got {type(data).__name__}")

        # the backend filters on questionId only
        for item in data:
            if item.get("studentId") == student_id:
                return PredictionRecord.from_payload(item)
        return None

    def create_prediction(self, record: PredictionRecord) -> int:
        if record.id is not None:
            raise ValueError(f"record already has id {record.id}; use update_prediction")
        resp = self._request("POST", "/api/predictions", json=record.to_payload())
        data = self._json(resp, "create prediction") or {}
        record_id = data.get("id") if isinstance(data, dict) else None
        if record_id is None:
            raise TransportError("create prediction: response has no id")
        logger.debug(
            "Created prediction record",
            extra={"record_id": record_id, "student_id": record.student_id, "question_id": record.question_id},
        )
        return int(record_id)

    def update_prediction(self, record: PredictionRecord) -> None:
        if record.id is None:
            raise ValueError("cannot update a record without id")
        self._request("PUT", "/api/predictions", json=record.to_payload())


class SegmentationApiClient(_BackendClient):
    """Line segmentation ("coupage") service."""

    def segment(self, image_png: bytes) -> list[bytes]:
        body: Dict[str, str] = {"image": to_base64(image_png)}
        resp = self._request("POST", "/api/coupage-dimage", json=body)
        data = self._json(resp, "segmentation") or {}
        lines = data.get("refinedLines") if isinstance(data, dict) else None
        try:
            return [from_base64(line) for line in (lines or [])]
        except InputValidationError as e:
            raise TransportError(f"segmentation: malformed line image: {e}") from e
