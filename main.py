from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware import Middleware
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.v1.chat import router as chat_router
from api.v1.ws import router as ws_router
from api.v1.department import router as department_router
from core.exceptions import ChatError
from core.logger import app_logger
from init_db import init_db, close_db
from services.chat_service import ChatService
from services.entity_hooks import entity_events

middleware = [
    Middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
]

app = FastAPI(
    title="Workspace Chat Backend",
    middleware=middleware
)


# ----------------------------------------
# خطاها با قالب {success, error}
# ----------------------------------------
@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": f"{field}: {first.get('msg', 'invalid value')}" if field else "Invalid request",
            "code": "VALIDATION_ERROR",
        },
    )


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    app_logger.exception(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "code": "UNEXPECTED"},
    )


@app.on_event("startup")
async def startup():
    await init_db()
    ChatService().register_entity_hooks(entity_events)
    app_logger.info("🚀 Chat backend started")


@app.on_event("shutdown")
async def shutdown():
    await close_db()


app.include_router(chat_router)
app.include_router(ws_router)
app.include_router(department_router)
