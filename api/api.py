from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn
from fastapi.middleware.cors import CORSMiddleware
from api.routes.teach_routes import teach_routes
from api.bootstrap import build_container
from api.config import SessionLocal, create_db, settings
from api.errors import AgentNotFoundError, LessonNotFoundError, ProfileNotFoundError
from api.utils.logger import configure_logging, set_request_id, clear_request_id
from fastapi import Request
from starlette.responses import Response, JSONResponse
from starlette.status import HTTP_404_NOT_FOUND, HTTP_500_INTERNAL_SERVER_ERROR, HTTP_503_SERVICE_UNAVAILABLE
from fastapi.exceptions import RequestValidationError
from fastapi import HTTPException

logger = configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    container = getattr(app.state, "container", None)
    if container is not None:
        # Let in-flight evidence/validation writes finish before the process exits.
        await container.runner.drain(timeout=15)


app = FastAPI(lifespan=lifespan)
create_db()
app.state.container = build_container(settings, SessionLocal)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def request_logger(request: Request, call_next):
    rid = set_request_id(request.headers.get("x-request-id"))
    try:
        logger.info("request start method=%s path=%s client=%s", request.method, request.url.path, request.client)
        response: Response = await call_next(request)
        logger.info("request end status=%s method=%s path=%s", response.status_code, request.method, request.url.path)
        response.headers["x-request-id"] = rid
        return response
    except Exception:
        logger.exception("request error method=%s path=%s", request.method, request.url.path)
        raise
    finally:
        clear_request_id()


@app.exception_handler(LessonNotFoundError)
@app.exception_handler(ProfileNotFoundError)
async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("not found method=%s path=%s detail=%s", request.method, request.url.path, exc)
    return JSONResponse(status_code=HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(AgentNotFoundError)
async def agent_unavailable_handler(request: Request, exc: AgentNotFoundError) -> JSONResponse:
    logger.error("agent unavailable method=%s path=%s agent=%s", request.method, request.url.path, exc.name)
    return JSONResponse(status_code=HTTP_503_SERVICE_UNAVAILABLE, content={"detail": "Tutor agent unavailable"})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    # Log server-side errors with stack traces; client errors as warnings.
    if exc.status_code >= 500:
        logger.exception("http error status=%s method=%s path=%s detail=\n%s", exc.status_code, request.method, request.url.path, exc.detail)
    else:
        logger.warning("http error status=%s method=%s path=%s detail=\n%s", exc.status_code, request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("validation error method=%s path=%s errors=\n%s", request.method, request.url.path, exc.errors())
    return JSONResponse(status_code=422, content={"detail": exc.errors()})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Never leak internal exception details to clients.
    logger.exception("unhandled error method=%s path=%s", request.method, request.url.path)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal Server Error"},
    )


@app.get("/")
def read_root():
    return {"message": "Tutor orchestrator is healthy"}

app.include_router(teach_routes, prefix="/tutor")

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
