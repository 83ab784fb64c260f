from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from rfpgate.core.config import settings
from rfpgate.core.logging import setup_logging, get_logger
from rfpgate.db.session import init_db
from rfpgate.api import access, access_requests, documents, ndas
from rfpgate.api.outcomes import error_detail

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    init_db()
    yield


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(access.router)
app.include_router(documents.router)
app.include_router(ndas.router)
app.include_router(access_requests.router)


# Error handlers
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed path identifiers cannot name a record, so they are not found."""
    if any(tuple(error.get("loc", ()))[:1] == ("path",) for error in exc.errors()):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": error_detail("not_found", f"No resource at {request.url.path}")},
        )
    return await request_validation_exception_handler(request, exc)


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.APP_NAME, "version": settings.APP_VERSION}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
