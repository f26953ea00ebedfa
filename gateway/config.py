# config.py
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

DEFAULT_MODEL = "@cf/meta/llama-3.1-8b-instruct"
SUPPORTED_MODELS = (
    "@cf/meta/llama-3.1-8b-instruct",
    "@cf/meta/llama-3.1-8b-instruct-fast",
    "@cf/meta/llama-3.1-70b-instruct",
    "@cf/meta/llama-3.3-70b-instruct-fp8-fast",
    "@cf/meta/llama-3.2-3b-instruct",
    "@cf/meta/llama-3.2-1b-instruct",
    "@cf/meta/llama-4-scout-17b-16e-instruct",
    "@cf/openai/gpt-oss-120b",
    "@cf/openai/gpt-oss-20b",
    "@cf/qwen/qwen3-30b-a3b-fp8",
    "@cf/mistral/mistral-small-3.1-24b-instruct",
    "@cf/google/gemma-3-12b-it",
)
MODEL_OWNER = "cloudflare-workers-ai"
WORKERS_AI_ENDPOINT = "https://api.cloudflare.com/client/v4"


def _split_list(raw: Optional[str], default: Tuple[str, ...]) -> Tuple[str, ...]:
    if not raw:
        return default
    items = tuple(item.strip() for item in raw.split(",") if item.strip())
    return items or default


@dataclass(frozen=True)
class Settings:
    """启动时构造一次的只读配置，显式传给 create_app。"""

    auth_token: Optional[str] = None
    default_model: str = DEFAULT_MODEL
    supported_models: Tuple[str, ...] = SUPPORTED_MODELS
    model_owner: str = MODEL_OWNER
    account_id: Optional[str] = None
    api_token: Optional[str] = None
    endpoint: str = WORKERS_AI_ENDPOINT
    timeout: float = 120.0
    cors_origins: Tuple[str, ...] = field(default=("*",))
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            auth_token=env.get("AUTH_TOKEN") or None,
            default_model=env.get("DEFAULT_MODEL") or DEFAULT_MODEL,
            supported_models=_split_list(env.get("SUPPORTED_MODELS"), SUPPORTED_MODELS),
            model_owner=env.get("MODEL_OWNER") or MODEL_OWNER,
            account_id=env.get("CLOUDFLARE_ACCOUNT_ID") or None,
            api_token=env.get("CLOUDFLARE_API_TOKEN") or None,
            endpoint=(env.get("WORKERS_AI_ENDPOINT") or WORKERS_AI_ENDPOINT).rstrip("/"),
            timeout=float(env.get("WORKERS_AI_TIMEOUT") or 120),
            cors_origins=_split_list(env.get("CORS_ORIGINS"), ("*",)),
            host=env.get("HOST") or "0.0.0.0",
            port=int(env.get("PORT") or 8000),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )
