"""
安全服务的核心逻辑实现。
包括序列号生成、叶子证书模板构造、父 CA 证书解析、证书签名以及响应转储等。
"""

import base64
import binascii
import re
from datetime import datetime, timedelta
from typing import Callable, Iterable, Tuple, Union

import httpx
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.asymmetric.types import (
    CertificateIssuerPrivateKeyTypes,
    CertificateIssuerPublicKeyTypes,
)
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .exceptions import EncodeError, ParentParseError, RandomSourceError
from .schemas import LeafTemplate

ROOT_CA_CERTIFICATE_PATH = "/api/v0/security/root_ca_certificate"
SERIAL_NUMBER_BITS = 128
LEAF_ORGANIZATION = "Pivotal"
LEAF_VALIDITY = timedelta(days=365)

_ISSUER_PRIVATE_KEY_TYPES = (
    rsa.RSAPrivateKey,
    ec.EllipticCurvePrivateKey,
    dsa.DSAPrivateKey,
    ed25519.Ed25519PrivateKey,
    ed448.Ed448PrivateKey,
)

_PEM_BLOCK_RE = re.compile(
    rb"-----BEGIN ([^\r\n-]+)-----\r?\n(.*?)-----END \1-----", re.DOTALL
)


def draw_serial_number(random_bits: Callable[[int], int]) -> int:
    """
    从随机源抽取 128 位序列号。
    :param random_bits: 形如 secrets.randbits 的随机源。
    :return: 位于 [0, 2^128) 的整数。
    :raises RandomSourceError: 随机源失败或返回值越界。
    """
    try:
        serial = random_bits(SERIAL_NUMBER_BITS)
    except Exception as e:
        raise RandomSourceError(f"failed to generate serial number: {e}") from e
    if not isinstance(serial, int) or not 0 <= serial < 2**SERIAL_NUMBER_BITS:
        raise RandomSourceError(f"random source returned out of range serial number: {serial!r}")
    return serial


def build_leaf_template(
    serial_number: int,
    dns_names: Iterable[str],
    now: datetime,
) -> LeafTemplate:
    """
    构造叶子证书模板。not_before 与 not_after 基于同一个 now，保证有效期恰好为 365 天。
    """
    return LeafTemplate(
        serial_number=serial_number,
        organization=[LEAF_ORGANIZATION],
        not_before=now,
        not_after=now + LEAF_VALIDITY,
        dns_names=list(dns_names),
    )


def first_pem_block(data: Union[bytes, str]) -> Tuple[str, bytes]:
    """
    取出输入中的第一个 PEM 块，不检查块类型。
    :param data: PEM 文本。
    :return: (块类型, DER 字节)。
    :raises ParentParseError: 没有 PEM 块或块内容不是合法的 Base64。
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    match = _PEM_BLOCK_RE.search(data)
    if match is None:
        raise ParentParseError("failed to decode parent certificate: no PEM block found")
    block_type = match.group(1).decode("ascii", errors="replace")
    # 跳过 RFC 1421 风格的块头（如 Proc-Type），只保留 Base64 正文
    body = b"".join(
        line.strip() for line in match.group(2).splitlines() if line.strip() and b":" not in line
    )
    try:
        return block_type, base64.b64decode(body, validate=True)
    except binascii.Error as e:
        raise ParentParseError(f"failed to decode parent certificate: {e}") from e


def load_parent_certificate(parent_pem: Union[bytes, str]) -> x509.Certificate:
    """
    解析父 CA 证书：取第一个 PEM 块，按 DER 解析为 X.509 证书。
    :raises ParentParseError: 解析失败。
    """
    _, der = first_pem_block(parent_pem)
    try:
        return x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise ParentParseError(f"failed to parse parent certificate: {e}") from e


def load_signing_key(
    key: Union[bytes, str, CertificateIssuerPrivateKeyTypes],
) -> CertificateIssuerPrivateKeyTypes:
    """加载父 CA 私钥，支持 PEM 文本或已加载的私钥对象。"""
    if isinstance(key, _ISSUER_PRIVATE_KEY_TYPES):
        return key
    if not isinstance(key, (bytes, str)):
        raise EncodeError(f"failed to load parent private key: unsupported type {type(key).__name__}")
    if isinstance(key, str):
        key = key.encode("utf-8")
    try:
        loaded = serialization.load_pem_private_key(key, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise EncodeError(f"failed to load parent private key: {e}") from e
    if not isinstance(loaded, _ISSUER_PRIVATE_KEY_TYPES):
        raise EncodeError(f"failed to load parent private key: {type(loaded).__name__} cannot sign certificates")
    return loaded


def _spki(public_key) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def check_key_matches(parent: x509.Certificate, signing_key: CertificateIssuerPrivateKeyTypes) -> None:
    """确认私钥与父证书中的公钥成对，否则签出的证书无法通过校验。"""
    if _spki(signing_key.public_key()) != _spki(parent.public_key()):
        raise EncodeError("parent private key does not match parent certificate")


def generate_leaf_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    try:
        return rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    except ValueError as e:
        raise EncodeError(f"failed to generate leaf key: {e}") from e


def sign_certificate(
    template: LeafTemplate,
    parent: x509.Certificate,
    public_key: CertificateIssuerPublicKeyTypes,
    signing_key: CertificateIssuerPrivateKeyTypes,
) -> x509.Certificate:
    """
    按模板签发叶子证书，签发者名称取自父证书主体。
    :raises EncodeError: 模板字段非法或签名失败。
    """
    try:
        subject = x509.Name(
            [x509.NameAttribute(NameOID.ORGANIZATION_NAME, org) for org in template.organization]
        )
        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(parent.subject)
            .public_key(public_key)
            .serial_number(template.serial_number)
            .not_valid_before(template.not_before)
            .not_valid_after(template.not_after)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=template.digital_signature,
                    key_encipherment=template.key_encipherment,
                    key_cert_sign=False,
                    crl_sign=False,
                    content_commitment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
        )
        if template.server_auth:
            builder = builder.add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False
            )
        if template.basic_constraints_valid:
            builder = builder.add_extension(
                x509.BasicConstraints(ca=False, path_length=None), critical=True
            )
        if template.dns_names:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.DNSName(name) for name in template.dns_names]),
                critical=False,
            )
        # 只有父 CA 私钥签名时，AKI 才指向真实的签名密钥
        if _spki(signing_key.public_key()) == _spki(parent.public_key()):
            try:
                ski = parent.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
                builder = builder.add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski.value),
                    critical=False,
                )
            except x509.ExtensionNotFound:
                pass

        # Ed25519/Ed448 不接受单独的摘要算法
        algorithm = (
            None
            if isinstance(signing_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey))
            else hashes.SHA256()
        )
        return builder.sign(private_key=signing_key, algorithm=algorithm)
    except (ValueError, TypeError) as e:
        raise EncodeError(f"failed to create certificate: {e}") from e


def der_to_pem(der: bytes) -> str:
    """将 DER 证书包装为 CERTIFICATE 类型的 PEM 文本。"""
    try:
        cert = x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise EncodeError(f"failed to encode certificate as PEM: {e}") from e
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def private_key_to_pem(key: rsa.RSAPrivateKey) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def dump_response(response: httpx.Response) -> str:
    """
    转储完整响应（状态行、响应头、响应体），用于调试非 200 响应。
    :raises httpx.HTTPError / OSError: 读取响应体失败。
    """
    body = response.read()
    lines = [f"{response.http_version} {response.status_code} {response.reason_phrase}"]
    lines.extend(f"{name}: {value}" for name, value in response.headers.items())
    return "\r\n".join(lines) + "\r\n\r\n" + body.decode("utf-8", errors="replace")
