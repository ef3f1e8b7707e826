# -*- coding: utf-8 -*-
"""
@Time    : 2025/10/28
@Author  : Pedro
@File    : config.py
@Software: PyCharm

Homestay-Promo 配置
---------------------------------------------------
加载顺序：代码默认值 → app/config/{APP_ENV}.yaml → 环境变量占位符
YAML 中可写 ${VAR} 或 ${VAR:-默认值}；整值占位符未设置时得到 None
"""

import os
import re
from functools import lru_cache
from typing import Any, Dict, List, Literal, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../../"))
CONFIG_DIR = os.path.join(BASE_DIR, "app", "config")

_env_file = os.path.join(BASE_DIR, ".env")
if os.path.exists(_env_file):
    load_dotenv(_env_file, override=True)

_PLACEHOLDER = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")


# ======================================================
# 🧩 分段配置
# ======================================================
class AppConfig(BaseModel):
    name: str = "Homestay-Promo"
    version: str = "0.1.0"
    env: str = "dev"
    debug: bool = True
    host: str = "127.0.0.1"
    port: int = 8080
    cors_origins: List[str] = ["*"]


class FirebaseConfig(BaseModel):
    project_id: Optional[str] = None
    database_url: Optional[str] = None
    service_account_path: Optional[str] = None


class GoogleConfig(BaseModel):
    firebase: FirebaseConfig = FirebaseConfig()


class StoreConfig(BaseModel):
    backend: Literal["firestore", "memory"] = "firestore"


class VoucherConfig(BaseModel):
    """券码 / 事务重试 / 校验开关"""
    code_length: int = Field(default=8, ge=4)
    code_max_attempts: int = Field(default=5, ge=1)
    per_user_limit: int = Field(default=1, ge=1)
    tx_max_attempts: int = Field(default=5, ge=1)
    tx_base_delay: float = 0.05
    tx_max_delay: float = 1.0
    operation_timeout: float = 10.0
    # 发券时检查 homestays/rooms 是否存在
    verify_scope_targets: bool = False


class PromotionConfig(BaseModel):
    max_duration_minutes: int = Field(default=60, ge=1)
    code_prefix: str = "FLASH"
    code_length: int = 4
    # None → 领取后的券长期有效 (2099-12-31)
    claimed_voucher_valid_days: Optional[int] = None


# ======================================================
# 🧠 YAML 读取
# ======================================================
def _resolve(text: str) -> Optional[str]:
    whole = _PLACEHOLDER.fullmatch(text)
    if whole:
        return os.getenv(whole["name"]) or whole["default"]

    def repl(m: re.Match) -> str:
        return os.getenv(m["name"]) or m["default"] or m.group(0)

    return _PLACEHOLDER.sub(repl, text)


def substitute_env_vars(value: Any) -> Any:
    """递归替换 ${VAR} / ${VAR:-default}"""
    if isinstance(value, str):
        return _resolve(value)
    if isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_env_vars(v) for v in value]
    return value


def deep_merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            value = deep_merge(merged[key], value)
        merged[key] = value
    return merged


def load_yaml_config(env: str, config_dir: str = CONFIG_DIR) -> Dict[str, Any]:
    path = os.path.join(config_dir, f"{env}.yaml")
    if not os.path.isfile(path):
        logger.warning(f"⚠️ 配置文件不存在: {path}，只用默认值")
        return {}
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    logger.info(f"✅ 已加载配置文件: {path}")
    return substitute_env_vars(raw)


# ======================================================
# 🌍 Settings
# ======================================================
class Settings(BaseSettings):
    app: AppConfig = AppConfig()
    google: GoogleConfig = GoogleConfig()
    store: StoreConfig = StoreConfig()
    voucher: VoucherConfig = VoucherConfig()
    promotion: PromotionConfig = PromotionConfig()

    model_config = SettingsConfigDict(env_file_encoding="utf-8", extra="ignore")

    @classmethod
    def load(cls, env: Optional[str] = None, **overrides) -> "Settings":
        """按环境读取 YAML，再叠加调用方传入的分段覆盖"""
        env = env or os.getenv("APP_ENV", "dev")
        defaults = cls().model_dump()
        data = deep_merge(defaults, load_yaml_config(env))
        data = deep_merge(data, overrides)
        data.setdefault("app", {})["env"] = env
        return cls.model_validate(data)

    def summary(self):
        logger.info(f"🌍 [{self.app.env}] {self.app.name} store={self.store.backend}")
        for name in ("voucher", "promotion"):
            logger.debug(f"🧩 {name}: {getattr(self, name).model_dump()}")


@lru_cache()
def get_settings() -> Settings:
    settings = Settings.load()
    settings.summary()
    return settings
