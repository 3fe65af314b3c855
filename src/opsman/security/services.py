"""
安全服务的业务逻辑层。
此模块封装了核心逻辑，对外提供获取根 CA 证书与签发叶子证书两个操作。
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Callable, Iterable, Union

import httpx
from cryptography.hazmat.primitives import serialization
from loguru import logger
from pydantic import ValidationError

from src.opsman.config import Config, config as default_config
from src.opsman.http import HttpClient

from . import core
from .exceptions import (
    DecodeError,
    SecurityServiceError,
    TransportError,
    UnexpectedStatusError,
)
from .schemas import IssuedCertificate, RootCACertificateResponse


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SecurityService:
    """
    Ops Manager 安全相关 API 的客户端。
    无内部状态，只要注入的 HTTP 客户端线程安全，实例即可在并发调用方之间共享。
    """

    def __init__(
        self,
        client: HttpClient,
        random_bits: Callable[[int], int] = secrets.randbits,
        clock: Callable[[], datetime] = _utcnow,
        cfg: Config | None = None,
    ):
        self._client = client
        self._random_bits = random_bits
        self._clock = clock
        self._config = cfg or default_config

    def fetch_root_ca_cert(self) -> str:
        """
        获取平台根 CA 证书。
        :return: 响应中的 PEM 文本，原样返回，不做格式校验。
        :raises TransportError: 构造、提交请求或读取响应体失败。
        :raises UnexpectedStatusError: 响应状态码不是 200。
        :raises DecodeError: 响应体不是预期的 JSON。
        """
        try:
            request = self._client.build_request("GET", core.ROOT_CA_CERTIFICATE_PATH)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError, TypeError) as e:
            raise TransportError(f"failed constructing request: {e}") from e

        logger.debug(f"GET {core.ROOT_CA_CERTIFICATE_PATH}")
        try:
            response = self._client.send(request, stream=True)
        except (httpx.HTTPError, OSError) as e:
            raise TransportError(f"failed to submit request: {e}") from e

        try:
            if response.status_code != httpx.codes.OK:
                try:
                    out = core.dump_response(response)
                except (httpx.HTTPError, OSError) as e:
                    raise UnexpectedStatusError(
                        f"request failed: unexpected response: {e}",
                        status_code=response.status_code,
                    ) from e
                logger.debug(f"非预期响应:\n{out}")
                raise UnexpectedStatusError(
                    f"could not make api request: unexpected response.\n{out}",
                    status_code=response.status_code,
                )

            try:
                body = response.read()
            except (httpx.HTTPError, OSError) as e:
                raise TransportError(f"failed to read response body: {e}") from e
        finally:
            response.close()

        try:
            cert_response = RootCACertificateResponse.model_validate_json(body)
        except ValidationError as e:
            raise DecodeError(f"failed to unmarshal response: {e.errors()[0]['msg']}") from e

        return cert_response.root_ca_certificate_pem

    def issue_leaf_certificate(
        self,
        parent_pem: Union[bytes, str],
        dns_names: Iterable[str],
        parent_key=None,
    ) -> IssuedCertificate:
        """
        签发叶子证书，并返回证书与新生成的叶子私钥。
        :param parent_pem: 父 CA 证书 PEM，只使用第一个块。
        :param dns_names: 写入 SAN 扩展的 DNS 名称。
        :param parent_key: 父 CA 私钥（PEM 或私钥对象）。缺省时用叶子私钥自签，
                           证书可以解析，但无法通过父 CA 的签名校验。
        :raises RandomSourceError / ParentParseError / EncodeError
        """
        try:
            serial = core.draw_serial_number(self._random_bits)
            template = core.build_leaf_template(
                serial,
                dns_names,
                now=self._clock(),
            )
            parent = core.load_parent_certificate(parent_pem)
            leaf_key = core.generate_leaf_key(self._config.leaf_key_size)

            if parent_key is None:
                logger.warning(
                    f"未提供父 CA 私钥，证书 {serial:x} 将由叶子私钥自签，无法通过 {parent.subject.rfc4514_string()} 的校验"
                )
                signing_key = leaf_key
            else:
                signing_key = core.load_signing_key(parent_key)
                core.check_key_matches(parent, signing_key)

            cert = core.sign_certificate(template, parent, leaf_key.public_key(), signing_key)
        except SecurityServiceError as e:
            logger.error(f"签发叶子证书失败 ({e.kind}): {e}")
            raise

        logger.info(f"已签发叶子证书 serial={serial:x} dns_names={template.dns_names}")
        der = cert.public_bytes(serialization.Encoding.DER)
        return IssuedCertificate(
            certificate_der=der,
            certificate_pem=cert.public_bytes(serialization.Encoding.PEM).decode("ascii"),
            private_key_pem=core.private_key_to_pem(leaf_key),
            serial_number=serial,
            signed_by_parent=parent_key is not None,
        )

    def generate_rsa_cert(
        self,
        parent_pem: Union[bytes, str],
        dns_names: Iterable[str],
        parent_key=None,
    ) -> bytes:
        """签发叶子证书并只返回 DER 字节（非 PEM）。"""
        return self.issue_leaf_certificate(parent_pem, dns_names, parent_key=parent_key).certificate_der
