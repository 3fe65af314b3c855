"""
配置加载模块：支持 .env、OM_ 前缀环境变量、工作目录 om.json（或 OM_CONFIG_FILE 指定）多来源合并。
公开接口：
- Config: 读取配置的设置类
- config: Config 的单例实例
内部方法：
- Config.settings_customise_sources: 自定义配置来源顺序
- Config.check_leaf_key_size: 校验叶子 RSA 密钥长度
- Config.check_positive: 校验超时为正数
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Tuple

from loguru import logger
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource


class Config(BaseSettings):
    target: str = "https://localhost"
    token: str | None = None
    skip_ssl_validation: bool = False
    request_timeout: float = 30.0

    leaf_key_size: int = 2048

    model_config = SettingsConfigDict(
        env_prefix="OM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("leaf_key_size")
    @classmethod
    def check_leaf_key_size(cls, value: int) -> int:
        if value < 2048:
            raise ValueError("leaf_key_size 不能小于 2048")
        return value

    @field_validator("request_timeout")
    @classmethod
    def check_positive(cls, value):
        if value <= 0:
            raise ValueError("必须为正数")
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """自定义配置来源顺序：入参 > 环境变量 > .env > om.json > secrets。"""

        class JsonFileSettingsSource(PydanticBaseSettingsSource):
            """从工作目录的 om.json（或 OM_CONFIG_FILE 指定路径）加载配置。"""

            def __init__(self, settings_cls):
                super().__init__(settings_cls)
                self._data: Dict[str, Any] | None = None

            def _load(self) -> None:
                if self._data is not None:
                    return
                cfg_path = os.environ.get("OM_CONFIG_FILE")
                path = Path(cfg_path) if cfg_path else Path.cwd() / "om.json"
                if not path.exists():
                    self._data = {}
                    return
                try:
                    with path.open("r", encoding="utf-8") as f:
                        data = json.load(f)
                    if not isinstance(data, dict):
                        raise ValueError(f"配置文件必须是 JSON 对象: {path}")
                except ValueError as e:
                    # 显式指定的配置文件损坏时直接报错；工作目录下的 om.json 只告警
                    if cfg_path:
                        raise
                    logger.warning(f"忽略无效的配置文件 {path}: {e}")
                    data = {}
                self._data = data

            def __call__(self) -> Dict[str, Any]:
                self._load()
                return dict(self._data or {})

            def get_field_value(self, field, field_name):  # type: ignore[override]
                self._load()
                data = self._data or {}
                if field_name in data:
                    return data[field_name], field_name, False
                return None, field_name, False

        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonFileSettingsSource(settings_cls),
            file_secret_settings,
        )


config = Config()
