"""
HTTP 调用接口：服务层只依赖 HttpClient 协议，具体实现由调用方注入。
httpx.Client（以及 fastapi.testclient.TestClient）天然满足该协议。
"""

from __future__ import annotations

from typing import Protocol

import httpx
from loguru import logger

from src.opsman.config import Config, config as default_config


class HttpClient(Protocol):
    def build_request(self, method: str, url: str) -> httpx.Request: ...

    def send(self, request: httpx.Request, *, stream: bool = False) -> httpx.Response: ...


def new_http_client(cfg: Config | None = None) -> httpx.Client:
    """
    根据配置创建指向 Ops Manager 的 httpx.Client。
    :param cfg: 配置对象，缺省使用全局 config。
    :return: 已设置 base_url、证书校验、超时与（可选）令牌的客户端。
    """
    cfg = cfg or default_config
    headers = {}
    if cfg.token:
        headers["Authorization"] = f"Bearer {cfg.token}"
    if cfg.skip_ssl_validation:
        logger.warning(f"已关闭 TLS 证书校验: {cfg.target}")
    return httpx.Client(
        base_url=cfg.target,
        verify=not cfg.skip_ssl_validation,
        timeout=cfg.request_timeout,
        headers=headers,
    )
