"""Gemini vision client for OmniTech.

``GeminiVisionClient`` talks to ``generateContent`` either through the
Gemini API (API key) or Vertex AI (Application Default Credentials) and
turns every failure into the analysis error taxonomy.
``InferenceClient`` sits on top of it: one attempt per call, fallback
substitution when the service is over quota or unreachable, and exactly
one session log entry per call.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any, Optional

import httpx
from google.auth import default as google_auth_default
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from pydantic import ValidationError

from ..constitution import REPORT_INSTRUCTIONS, build_instructions, build_report_prompt, build_user_prompt
from ..schemas import AnalysisResult
from ..settings import Settings
from .errors import (
    AnalysisError,
    CaptureUnavailable,
    QuotaExceeded,
    ResponseCorrupt,
    ServiceError,
    ServiceUnreachable,
)
from .fallback import FallbackGenerator
from .protocol import LogSource, OperatingMode
from .reports import EventLog


logger = logging.getLogger("omnitech")

VERTEX_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
QUOTA_STATUSES = {"RESOURCE_EXHAUSTED"}
REPORT_MAX_OUTPUT_TOKENS = 500
REPORT_TEMPERATURE = 0.7


def _read_field(payload: dict[str, Any], snake_name: str) -> Any:
    """Read either snake_case or lowerCamelCase from a dict."""
    if snake_name in payload:
        return payload[snake_name]
    parts = snake_name.split("_")
    camel_name = parts[0] + "".join(part.capitalize() for part in parts[1:])
    return payload.get(camel_name)


def _strip_code_fence(text: str) -> str:
    clean = text.strip()
    if clean.startswith("```"):
        clean = clean.split("\n", 1)[1] if "\n" in clean else ""
        if clean.rstrip().endswith("```"):
            clean = clean.rstrip()[:-3]
    return clean.strip()


class GeminiVisionClient:
    """Single-shot ``generateContent`` transport."""

    def __init__(
        self,
        *,
        model_id: str,
        api_key: str = "",
        api_base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        use_vertex: bool = False,
        location: str = "us-central1",
        project_id: str = "",
        timeout: float = 30.0,
        max_output_tokens: int = 600,
        temperature: float = 0.4,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.model_id = model_id
        self.api_key = api_key
        self.api_base_url = api_base_url.rstrip("/")
        self.use_vertex = use_vertex
        self.location = location
        self.project_id = project_id
        self.timeout = timeout
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature
        self._transport = transport
        self._credentials = None
        self._auth_request: Request | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiVisionClient":
        return cls(
            model_id=settings.model_id,
            api_key=settings.api_key,
            api_base_url=settings.api_base_url,
            use_vertex=settings.use_vertex,
            location=settings.location,
            project_id=settings.project_id,
            timeout=settings.request_timeout_seconds,
            max_output_tokens=settings.max_output_tokens,
            temperature=settings.temperature,
        )

    async def submit(self, instructions: str, image: bytes, context: str) -> dict[str, Any]:
        """Classify one JPEG frame and return the decoded JSON object."""
        body = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": context},
                        {
                            "inlineData": {
                                "mimeType": "image/jpeg",
                                "data": base64.b64encode(image).decode("ascii"),
                            }
                        },
                    ],
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "maxOutputTokens": self.max_output_tokens,
                "temperature": self.temperature,
            },
            "systemInstruction": {"parts": [{"text": instructions}]},
        }
        text = await self._generate(body)
        try:
            parsed = json.loads(_strip_code_fence(text))
        except json.JSONDecodeError as exc:
            raise ResponseCorrupt("Inference response was not valid JSON.") from exc
        if not isinstance(parsed, dict):
            raise ResponseCorrupt("Inference response was not a JSON object.")
        return parsed

    async def summarize(self, log_text: str) -> str:
        """Ask the model for a free-text incident report over the log."""
        body = {
            "contents": [{"role": "user", "parts": [{"text": build_report_prompt(log_text)}]}],
            "generationConfig": {
                "maxOutputTokens": REPORT_MAX_OUTPUT_TOKENS,
                "temperature": REPORT_TEMPERATURE,
            },
            "systemInstruction": {"parts": [{"text": REPORT_INSTRUCTIONS}]},
        }
        text = (await self._generate(body)).strip()
        if not text:
            raise ResponseCorrupt("Report response was empty.")
        return text

    async def _generate(self, body: dict[str, Any]) -> str:
        headers = await self._headers()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self._endpoint(), headers=headers, json=body)
        except httpx.TimeoutException as exc:
            raise ServiceUnreachable(f"request timed out after {self.timeout}s") from exc
        except httpx.TransportError as exc:
            raise ServiceUnreachable(str(exc) or exc.__class__.__name__) from exc

        self._raise_for_status(response)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ResponseCorrupt("Inference service returned a non-JSON body.") from exc
        return self._extract_text(payload)

    def _endpoint(self) -> str:
        if self.use_vertex:
            host = "aiplatform.googleapis.com" if self.location == "global" else f"{self.location}-aiplatform.googleapis.com"
            return (
                f"https://{host}/v1/projects/{self.project_id}/locations/{self.location}/"
                f"publishers/google/models/{self.model_id}:generateContent"
            )
        return f"{self.api_base_url}/models/{self.model_id}:generateContent"

    async def _headers(self) -> dict[str, str]:
        if self.use_vertex:
            token = await self._get_access_token()
            return {"Authorization": f"Bearer {token}"}
        return {"x-goog-api-key": self.api_key}

    async def _get_access_token(self) -> str:
        try:
            if self._credentials is None:
                credentials, detected_project_id = await asyncio.to_thread(
                    google_auth_default,
                    scopes=[VERTEX_SCOPE],
                )
                self._credentials = credentials
                self._auth_request = Request()
                if not self.project_id:
                    self.project_id = detected_project_id or ""
            await asyncio.to_thread(self._credentials.refresh, self._auth_request)
        except GoogleAuthError as exc:
            raise ServiceError(None, f"Google credentials unavailable: {exc}") from exc
        if not self.project_id:
            raise ServiceError(None, "Google Cloud project id is unavailable. Set OMNITECH_PROJECT_ID.")
        if not self._credentials.token:
            raise ServiceError(None, "Unable to acquire an access token for Vertex AI")
        return str(self._credentials.token)

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        detail = ""
        remote_status = ""
        try:
            error = response.json().get("error", {})
            if isinstance(error, dict):
                detail = str(error.get("message", ""))
                remote_status = str(error.get("status", ""))
        except (ValueError, AttributeError):
            detail = response.text[:200]
        if response.status_code == 429 or remote_status in QUOTA_STATUSES:
            raise QuotaExceeded(detail or "Inference quota exceeded.")
        raise ServiceError(response.status_code, detail)

    @staticmethod
    def _extract_text(payload: Any) -> str:
        if not isinstance(payload, dict):
            raise ResponseCorrupt("Inference response was not a JSON object.")
        candidates = payload.get("candidates") or []
        if not isinstance(candidates, list):
            raise ResponseCorrupt("Inference response candidates were not a list.")
        if not candidates:
            feedback = _read_field(payload, "prompt_feedback") or {}
            reason = _read_field(feedback, "block_reason") if isinstance(feedback, dict) else None
            raise ResponseCorrupt(f"Inference response had no candidates ({reason})." if reason else "Inference response had no candidates.")
        candidate = candidates[0]
        content = candidate.get("content") if isinstance(candidate, dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            raise ResponseCorrupt("Inference response candidate had no content parts.")
        texts = [
            str(part["text"])
            for part in parts
            if isinstance(part, dict) and part.get("text") and not part.get("thought")
        ]
        if not texts:
            raise ResponseCorrupt("Inference response contained no text.")
        return "".join(texts)


class InferenceClient:
    """Issues one analysis attempt and reports it in the session log."""

    def __init__(
        self,
        service: GeminiVisionClient,
        log: EventLog,
        fallback: FallbackGenerator,
        *,
        available: bool = True,
        fallback_on_unreachable: bool = True,
    ) -> None:
        self.service = service
        self.log = log
        self.fallback = fallback
        self.available = available
        self.fallback_on_unreachable = fallback_on_unreachable

    async def analyze(
        self,
        mode: OperatingMode | str,
        frame: Optional[bytes],
        user_context: Optional[str] = None,
    ) -> tuple[AnalysisResult, bool]:
        """Return ``(result, synthetic)`` or raise an ``AnalysisError``."""
        mode = OperatingMode(mode)
        if not frame:
            error = CaptureUnavailable()
            self.log.append(LogSource.ERROR, error.message)
            raise error
        if not self.available:
            return self._substitute(mode, "Inference offline")

        try:
            payload = await self.service.submit(
                build_instructions(mode),
                frame,
                build_user_prompt(user_context),
            )
            result = AnalysisResult.model_validate(payload)
        except QuotaExceeded as exc:
            logger.warning("Inference quota exceeded: %s", exc.message)
            return self._substitute(mode, "Inference quota exceeded")
        except ServiceUnreachable as exc:
            if not self.fallback_on_unreachable:
                self.log.append(LogSource.ERROR, exc.message)
                raise
            logger.warning("Inference service unreachable: %s", exc.message)
            return self._substitute(mode, "Inference service unreachable")
        except ValidationError as exc:
            error = ResponseCorrupt("Inference result did not match the expected schema.")
            self.log.append(LogSource.ERROR, error.message)
            raise error from exc
        except AnalysisError as exc:
            self.log.append(LogSource.ERROR, exc.message)
            raise

        if mode is OperatingMode.REPAIR_GUIDE:
            self.log.append(LogSource.ANALYZER, f"Repair guide ready: {len(result.repair_steps)} steps.")
        else:
            result.repair_steps = []
            self.log.append(LogSource.ANALYZER, result.reasoning or result.headline or result.status)
        logger.info("Analysis %s finished with status %s", mode.value, result.status)
        return result, False

    def _substitute(self, mode: OperatingMode, notice: str) -> tuple[AnalysisResult, bool]:
        result = self.fallback.next_result(mode)
        self.log.append(LogSource.SYSTEM, f"{notice}; using simulated result: {result.headline}.")
        return result, True
