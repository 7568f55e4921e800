from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

import httpx

from .errors import ReportingFailure
from .models import UserInfo
from .session import percentage
from .settings import settings

logger = logging.getLogger(__name__)


def build_report_row(info: UserInfo, score: int, total: int, *, now: datetime) -> Dict[str, str]:
	"""Form fields expected by the Apps Script ``doPost`` that appends the sheet row."""
	return {
		"timestamp": now.strftime("%d.%m.%Y, %H:%M:%S"),
		"name": info.name,
		"nativeLanguage": info.native_language,
		"phone": info.phone,
		"score": str(score),
		"total": str(total),
		"percentage": f"{percentage(score, total)}%",
	}


class SheetsReporter:
	"""Posts final results to a Google Apps Script web app.

	The script's response is never read; only transport errors count as a
	failed submission.
	"""

	def __init__(self, url: Optional[str] = None, *, timeout: float = 30.0, clock: Callable[[], datetime] = datetime.now, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
		self.url = url if url is not None else settings.sheets_webhook_url
		self.timeout = timeout
		self._clock = clock
		self._transport = transport

	async def __call__(self, info: UserInfo, score: int, total: int) -> None:
		if not self.url:
			logger.warning("SHEETS_WEBHOOK_URL is not configured; result was not saved")
			raise ReportingFailure("Google Sheets integration is not set up yet. Result was not saved.")
		row = build_report_row(info, score, total, now=self._clock())
		try:
			async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True, transport=self._transport) as client:
				await client.post(self.url, data=row)
		except httpx.RequestError as err:
			logger.error("Error submitting result to Google Sheets: %s", err)
			raise ReportingFailure(
				"There was an error saving your results to the sheet. Please check your internet connection."
			) from err
		logger.info("Submitted result to Google Sheets (%s/%s)", score, total)
