"""
Settings 全局访问点
--------------------------------
pedro.config 依赖 loguru / yaml，logger 又需要读配置，
所以这里延迟导入 get_settings，避免 config ↔ pedro 循环导入
"""

from typing import TYPE_CHECKING, Optional

from fastapi import FastAPI

if TYPE_CHECKING:
    from app.pedro.config import Settings

_current: Optional["Settings"] = None


def get_current_settings() -> "Settings":
    global _current
    if _current is None:
        from app.pedro.config import get_settings
        _current = get_settings()
    return _current


def init_settings(app: Optional[FastAPI] = None, settings: Optional["Settings"] = None) -> "Settings":
    """
    绑定当前 settings，并挂到 app.state.settings
    传入 settings 时替换全局实例（测试 / 多环境脚本使用）
    """
    global _current
    if settings is not None:
        _current = settings
    current = get_current_settings()
    if app is not None:
        app.state.settings = current
    return current
