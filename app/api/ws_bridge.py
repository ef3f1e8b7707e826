"""
WebSocket 推送桥
--------------------------------
存储的 watch 回调可能来自后台线程，这里经 call_soon_threadsafe 转进事件循环队列，
再由推送任务逐条发给客户端；客户端断开后取消推送任务并退订
"""
import asyncio
from typing import Any, Callable

from loguru import logger
from starlette.websockets import WebSocket, WebSocketDisconnect

from app.extension.store.base import Unsubscribe
from app.pedro.response import serialize
from app.pedro.utils import utcnow


async def relay(ws: WebSocket, subscribe: Callable[[Callable[[Any], None]], Unsubscribe], event: str):
    """每条消息：{"event", "serverTime", "data"}；serverTime 供前端校正本地时钟"""
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = subscribe(lambda data: loop.call_soon_threadsafe(queue.put_nowait, data))

    async def _push():
        while True:
            data = await queue.get()
            await ws.send_json({"event": event, "serverTime": utcnow().isoformat(), "data": serialize(data)})

    pusher = asyncio.create_task(_push())
    try:
        while True:
            await ws.receive_text()  # 心跳；断开时抛 WebSocketDisconnect
    except WebSocketDisconnect:
        logger.info(f"⚠️ {event} WebSocket 客户端断开")
    finally:
        pusher.cancel()
        try:
            await pusher
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"⚠️ {event} 推送任务异常退出: {e}")
        unsubscribe()
