"""
安全服务的异常定义。
每个异常携带 kind 字段，便于调用方按类别而非类型名处理错误。
"""

from __future__ import annotations


class SecurityServiceError(RuntimeError):
    """安全服务所有错误的基类。"""

    kind: str = "SecurityService"


class TransportError(SecurityServiceError):
    """构造请求、提交请求或读取响应体失败。"""

    kind = "Transport"


class UnexpectedStatusError(SecurityServiceError):
    """API 返回了非 200 状态码，消息中附带完整的响应转储。"""

    kind = "UnexpectedStatus"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(SecurityServiceError, ValueError):
    """响应体无法解析为预期的 JSON。"""

    kind = "Decode"


class RandomSourceError(SecurityServiceError):
    kind = "RandomSource"


class ParentParseError(SecurityServiceError, ValueError):
    """父 CA 的 PEM 中没有可用的块，或块内容不是合法的 X.509 证书。"""

    kind = "ParentParse"


class EncodeError(SecurityServiceError):
    kind = "Encode"
