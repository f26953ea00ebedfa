# errors.py


class GatewayError(Exception):
    """会被渲染成 OpenAI 错误结构的异常基类。"""

    status_code = 500
    error_type = "server_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_body(self) -> dict:
        return {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "param": None,
                "code": None,
            }
        }


class InvalidRequestError(GatewayError):
    """请求体或消息列表不合法，不可重试。"""

    status_code = 400
    error_type = "invalid_request_error"


class BackendError(GatewayError):
    """推理后端调用失败或流读取失败。"""

    status_code = 500
    error_type = "server_error"
