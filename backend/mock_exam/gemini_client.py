from __future__ import annotations
import base64
import logging
import httpx
from typing import Any, Dict, List, Optional
from .errors import GeminiError
from .settings import settings

logger = logging.getLogger(__name__)

class GeminiClient:
	def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None, model: Optional[str] = None, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.provider = settings.gemini_provider
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			# Vertex AI Generative REST endpoint (API key via header)
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			# Google AI Studio (Generative Language API)
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		self._client = httpx.AsyncClient(timeout=timeout or settings.gemini_timeout_seconds, transport=transport)

	async def generate(self, prompt: str, *, response_schema: Optional[Dict[str, Any]] = None) -> str:
		payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
		if response_schema is not None:
			payload["generationConfig"] = {
				"responseMimeType": "application/json",
				"responseSchema": response_schema,
			}
		data = await self._post_payload(payload)
		try:
			return data["candidates"][0]["content"]["parts"][0]["text"]
		except (KeyError, IndexError, TypeError):
			raise GeminiError("Unexpected Gemini response: no text part", raw_text=str(data))

	async def generate_speech(self, text: str, *, voice: Optional[str] = None) -> bytes:
		"""Synthesize ``text`` and return the raw 16-bit PCM payload (24 kHz mono)."""
		payload: Dict[str, Any] = {
			"contents": [{"parts": [{"text": text}]}],
			"generationConfig": {
				"responseModalities": ["AUDIO"],
				"speechConfig": {
					"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice or settings.gemini_tts_voice}},
				},
			},
		}
		data = await self._post_payload(payload)
		inline = _first_inline_data(data)
		if inline is None or not inline.get("data"):
			raise GeminiError("No audio data returned", raw_text=str(data)[:500])
		try:
			return base64.b64decode(inline["data"])
		except (ValueError, TypeError) as err:
			raise GeminiError(f"Audio payload is not valid base64: {err}")

	async def generate_image(self, prompt: str, *, aspect_ratio: str = "1:1") -> str:
		"""Generate one image and return it as a ``data:`` URL."""
		payload: Dict[str, Any] = {
			"contents": [{"parts": [{"text": prompt}]}],
			"generationConfig": {
				"responseModalities": ["IMAGE"],
				"imageConfig": {"aspectRatio": aspect_ratio},
			},
		}
		data = await self._post_payload(payload)
		inline = _first_inline_data(data)
		if inline is None or not inline.get("data"):
			raise GeminiError("No image generated", raw_text=str(data)[:500])
		mime_type = inline.get("mimeType") or "image/png"
		return f"data:{mime_type};base64,{inline['data']}"

	async def _post_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		try:
			r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			logger.warning("Gemini %s returned HTTP %s", self.model, http_err.response.status_code)
			raise GeminiError(f"Gemini call failed with HTTP {http_err.response.status_code}", raw_text=http_err.response.text) from http_err
		except httpx.RequestError as net_err:
			logger.warning("Gemini %s request error: %s", self.model, net_err)
			raise GeminiError(f"Gemini request failed: {net_err}") from net_err
		try:
			return r.json()
		except ValueError as err:
			raise GeminiError(f"Unexpected Gemini response: {r.text[:200]}", raw_text=r.text) from err

	async def aclose(self) -> None:
		await self._client.aclose()


def _first_inline_data(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
	try:
		parts: List[Dict[str, Any]] = data["candidates"][0]["content"]["parts"] or []
	except (KeyError, IndexError, TypeError):
		return None
	for part in parts:
		inline = part.get("inlineData") or part.get("inline_data")
		if inline:
			return inline
	return None
