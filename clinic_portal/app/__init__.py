import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import error_body


def validation_details(exc: RequestValidationError):
    details = []
    for err in exc.errors():
        path = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        details.append({"path": ".".join(path), "message": err.get("msg", "Invalid value")})
    return details


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content=error_body(exc),
                            headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400,
                            content={"error": "Validation failed", "details": validation_details(exc)})

    @app.exception_handler(Exception)
    async def unexpected_exception_handler(request: Request, exc: Exception):
        logging.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app() -> FastAPI:
    app = FastAPI(title="Clinic Portal API")

    register_exception_handlers(app)

    from .routes import router as main_router
    app.include_router(main_router)

    return app
