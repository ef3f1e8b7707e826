# -*- coding: utf-8 -*-
"""
Homestay-Promo 启动入口
--------------------------------
APP_ENV=production python starter.py
或：uvicorn starter:app --host 0.0.0.0 --port 8080
"""

import uvicorn

from app import create_app
from app.config.settings_manager import get_current_settings

settings = get_current_settings()
app = create_app(settings=settings)

if __name__ == "__main__":
    uvicorn.run(
        "starter:app",
        host=settings.app.host,
        port=settings.app.port,
        reload=settings.app.debug,
        # 日志已由 loguru 接管
        log_config=None,
    )
