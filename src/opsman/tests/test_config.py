"""
测试 config.py 的多来源配置加载。
"""

import json

import pytest
from pydantic import ValidationError

from src.opsman.config import Config


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """隔离工作目录与 OM_ 环境变量"""
    monkeypatch.chdir(tmp_path)
    for name in ("OM_TARGET", "OM_TOKEN", "OM_CONFIG_FILE", "OM_LEAF_KEY_SIZE", "OM_SKIP_SSL_VALIDATION"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    cfg = Config(_env_file=None)
    assert cfg.target == "https://localhost"
    assert cfg.token is None
    assert cfg.skip_ssl_validation is False
    assert cfg.leaf_key_size == 2048


def test_env_vars(monkeypatch):
    monkeypatch.setenv("OM_TARGET", "https://opsman.example.com")
    monkeypatch.setenv("OM_SKIP_SSL_VALIDATION", "true")
    cfg = Config(_env_file=None)
    assert cfg.target == "https://opsman.example.com"
    assert cfg.skip_ssl_validation is True


def test_json_file_in_cwd(tmp_path):
    (tmp_path / "om.json").write_text(json.dumps({"target": "https://from-json", "leaf_key_size": 4096}))
    cfg = Config(_env_file=None)
    assert cfg.target == "https://from-json"
    assert cfg.leaf_key_size == 4096


def test_env_overrides_json_file(tmp_path, monkeypatch):
    """环境变量优先于配置文件"""
    path = tmp_path / "custom.json"
    path.write_text(json.dumps({"target": "https://from-json", "token": "json-token"}))
    monkeypatch.setenv("OM_CONFIG_FILE", str(path))
    monkeypatch.setenv("OM_TARGET", "https://from-env")
    cfg = Config(_env_file=None)
    assert cfg.target == "https://from-env"
    assert cfg.token == "json-token"


def test_dotenv_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("OM_TOKEN=dotenv-token\n")
    assert Config(_env_file=str(env_file)).token == "dotenv-token"


def test_explicit_json_file_must_be_object(tmp_path, monkeypatch):
    """OM_CONFIG_FILE 指定的文件无效时报错"""
    path = tmp_path / "custom.json"
    path.write_text("[1, 2]")
    monkeypatch.setenv("OM_CONFIG_FILE", str(path))
    with pytest.raises(ValueError, match="JSON"):
        Config(_env_file=None)


@pytest.mark.parametrize("content", ["[1]", "{not json"])
def test_invalid_json_file_in_cwd_is_ignored(tmp_path, content):
    """工作目录下的无效 om.json 只告警，回退为默认值"""
    (tmp_path / "om.json").write_text(content)
    cfg = Config(_env_file=None)
    assert cfg.target == "https://localhost"
    assert cfg.leaf_key_size == 2048


def test_leaf_key_size_too_small():
    with pytest.raises(ValidationError, match="leaf_key_size"):
        Config(_env_file=None, leaf_key_size=1024)


def test_request_timeout_must_be_positive():
    with pytest.raises(ValidationError):
        Config(_env_file=None, request_timeout=0)
