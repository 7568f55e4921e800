import logging

from fastapi import FastAPI

from .settings import settings
from .routers import quiz

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)

app = FastAPI(title="German A1 Mock Exam API")
app.include_router(quiz.router)

@app.get("/info")
def root():
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"sheets_configured": bool(settings.sheets_webhook_url),
	}

@app.on_event("shutdown")
async def shutdown_event():
	# Let pending result submissions finish and cancel media fetches
	await quiz.close_all_sessions()
