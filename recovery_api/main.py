import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .admin import router as admin_router
from .bookings import router as bookings_router
from .config import LOG_LEVEL
from .db import Base, engine
from .errors import ApiError
from .individual_services import router as individual_services_router
from .shared_tickets import router as shared_tickets_router
from .team_passes import router as team_passes_router

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Recovery Bookings API", version="1.0.0")

app.include_router(team_passes_router)
app.include_router(shared_tickets_router)
app.include_router(bookings_router)
app.include_router(individual_services_router)
app.include_router(admin_router)

# Create DB tables (migrations are not managed by this service)
Base.metadata.create_all(bind=engine)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/health")
async def health():
    return {"ok": True}
