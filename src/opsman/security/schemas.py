"""
安全服务的数据模型定义。
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RootCACertificateResponse(BaseModel):
    """
    GET /api/v0/security/root_ca_certificate 的响应体。
    缺失字段时返回空字符串，其余字段忽略。
    """

    root_ca_certificate_pem: str = ""

    @model_validator(mode="before")
    @classmethod
    def null_as_empty(cls, data: Any) -> Any:
        # JSON null（整体或字段）按缺失处理
        if data is None:
            return {}
        if isinstance(data, dict) and data.get("root_ca_certificate_pem", "") is None:
            return {**data, "root_ca_certificate_pem": ""}
        return data


class LeafTemplate(BaseModel):
    """
    叶子证书模板，每次签发时构造一次。
    """

    model_config = ConfigDict(frozen=True)

    serial_number: int = Field(ge=0, lt=2**128, description="128 位随机序列号")
    organization: list[str] = Field(default_factory=lambda: ["Pivotal"])
    not_before: datetime
    not_after: datetime
    dns_names: list[str] = Field(default_factory=list, description="写入 SAN 扩展的 DNS 名称")
    digital_signature: bool = True
    key_encipherment: bool = True
    server_auth: bool = True
    basic_constraints_valid: bool = True

    @model_validator(mode="after")
    def check_validity(self) -> "LeafTemplate":
        if self.not_before >= self.not_after:
            raise ValueError("not_before 必须早于 not_after")
        return self


class IssuedCertificate(BaseModel):
    """签发结果：DER 证书、PEM 证书与叶子私钥。"""

    certificate_der: bytes
    certificate_pem: str
    private_key_pem: str  # PKCS8，未加密
    serial_number: int
    signed_by_parent: bool = Field(description="是否由父 CA 私钥签名")
