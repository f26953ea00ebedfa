"""OpenAI 兼容的 Workers AI 网关。"""

__version__ = "0.1.0"
