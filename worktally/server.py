"""Run the HTTP API with uvicorn."""

from __future__ import annotations

import logging

from .config import Settings

logger = logging.getLogger(__name__)


def run_server(settings: Settings | None = None, log_level: str = "warning") -> int:
    try:
        import uvicorn
    except ImportError as exc:
        print(f"启动失败：缺少依赖（fastapi/uvicorn）。{exc}")
        print("请先安装：pip install fastapi uvicorn")
        return 2

    from .api.app import create_app

    resolved = settings or Settings.from_env()
    app = create_app(settings=resolved)
    logger.info("Serving WorkTally API on http://%s:%s", resolved.host, resolved.port)
    logging.getLogger("uvicorn.error").setLevel(log_level.upper())
    uvicorn.run(app, host=resolved.host, port=resolved.port, log_level=log_level)
    return 0
