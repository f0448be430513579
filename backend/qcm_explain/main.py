import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .db import SessionLocal, init_db
from .errors import AlreadyGenerated, ExplanationError, ValidationError
from .logging_setup import setup_logging
from .schemas import explanation_to_dict
from .settings import settings
from .routers import ai, auth, explanations

logger = logging.getLogger(__name__)


app = FastAPI(title="QCM Explanations API")
app.include_router(auth.router)
app.include_router(explanations.router)
app.include_router(ai.router)


@app.exception_handler(ExplanationError)
async def explanation_error_handler(request: Request, exc: ExplanationError):
	body = exc.to_dict()
	if isinstance(exc, AlreadyGenerated) and exc.existing is not None:
		body["data"] = explanation_to_dict(exc.existing)
	if exc.status_code >= 500:
		logger.error("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
	return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
	# Malformed or missing fields get the same envelope as service errors
	fields = [
		{"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", ""), "type": err.get("type", "")}
		for err in exc.errors()
	]
	summary = "; ".join("{}: {}".format(".".join(f["loc"]), f["msg"]) for f in fields)
	error = ValidationError(f"Invalid request: {summary}", errors=fields)
	return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.get("/info")
def root():
	return {"status": "ok", "gemini_configured": bool(settings.gemini_api_key)}


@app.on_event("startup")
def startup_event():
	setup_logging()
	# Initialize DB schema
	init_db()
	db = SessionLocal()
	try:
		auth.ensure_seed_admin(db)
	finally:
		db.close()
	logger.info("Explanation service started")
