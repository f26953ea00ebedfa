import json
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse

from .backend import InferenceBackend, WorkersAIBackend
from .config import Settings
from .errors import GatewayError, InvalidRequestError
from .models import ChatCompletionResponse, ModelCard, ModelList
from .responder import CompletionResponder, parse_request

logger = logging.getLogger("gateway")

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
}


def create_app(settings: Settings, backend: Optional[InferenceBackend] = None) -> FastAPI:
    app = FastAPI(title="workers-ai-gateway")
    app.state.settings = settings
    app.state.responder = CompletionResponder(backend or WorkersAIBackend(settings))

    @app.middleware("http")
    async def bearer_auth(request: Request, call_next):
        """所有路由都要求 Authorization: Bearer <token>。"""
        if not settings.auth_token:
            logger.error("未配置 AUTH_TOKEN，拒绝所有请求")
            return JSONResponse({"error": "Server is missing AUTH_TOKEN configuration."}, status_code=500)

        auth_header = request.headers.get("Authorization", "")
        token = auth_header[7:].strip() if auth_header.startswith("Bearer ") else ""
        if not token or token != settings.auth_token:
            logger.warning(f"鉴权失败: {request.method} {request.url.path}")
            return JSONResponse({"error": "Unauthorized"}, status_code=401)

        return await call_next(request)

    # 跨域放在最外层，预检请求不经过鉴权
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        return JSONResponse(exc.to_body(), status_code=exc.status_code)

    @app.get("/")
    async def index():
        return {
            "name": "workers-ai-gateway",
            "status": "ok",
            "endpoints": {
                "models": "GET /v1/models",
                "chatCompletions": "POST /v1/chat/completions",
            },
        }

    @app.get("/v1/models")
    async def list_models():
        return ModelList(
            data=[ModelCard(id=model_id, owned_by=settings.model_owner) for model_id in settings.supported_models]
        ).model_dump()

    @app.get("/models")
    async def models_alias():
        return RedirectResponse("/v1/models", status_code=307)

    @app.post("/v1/chat/completions")
    async def chat_completions(request: Request):
        try:
            body = await request.json()
        except ValueError:
            raise InvalidRequestError("Invalid JSON body.")

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"原始请求: {json.dumps(body, indent=2, ensure_ascii=False)}")

        completion_request = parse_request(body, settings.default_model)
        result = await app.state.responder.respond(completion_request)

        if isinstance(result, ChatCompletionResponse):
            return result.model_dump()
        return StreamingResponse(result, media_type="text/event-stream; charset=utf-8", headers=SSE_HEADERS)

    @app.post("/chat")
    @app.post("/chat/completions")
    async def chat_alias():
        return RedirectResponse("/v1/chat/completions", status_code=307)

    return app


app = create_app(Settings.from_env())


if __name__ == "__main__":
    import uvicorn

    settings = app.state.settings
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host=settings.host, port=settings.port)
