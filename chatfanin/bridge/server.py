"""
브라우저 확장 브리지 서버

확장 프로그램이 사용자의 브라우저에서 라이브 페이지 댓글을 읽어 이 서버로 보낸다.
- ws://127.0.0.1:9876/<platform-hint> : JSON 텍스트 프레임 (줄바꿈으로 여러 개 가능)
- 일반 HTTP GET : {"status": "ok", "clients": n} (헬스 체크)
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import socket
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState

from ..chat.base_client import ChatMessage
from .comment_parser import CommentParser

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9876
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PING_INTERVAL = 30.0
GOING_AWAY = 1001

MessageSink = Callable[[ChatMessage], Union[None, Awaitable[None]]]
ClientCallback = Callable[[str], Union[None, Awaitable[None]]]


def _now_ms() -> int:
    return int(datetime.now().timestamp() * 1000)


class SessionState(str, Enum):
    """연결 하나의 상태"""
    ACCEPTING = "accepting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class BridgeSession:
    """확장 연결 세션 (연결이 열려 있는 동안만 존재, 메시지는 보관하지 않음)"""
    client_id: str
    websocket: WebSocket
    platform_hint: Optional[str] = None
    connected_at: datetime = field(default_factory=datetime.now)
    state: SessionState = SessionState.ACCEPTING
    last_pong: Optional[datetime] = None
    comments_accepted: int = 0
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    ping_task: Optional[asyncio.Task] = field(default=None, repr=False)


class _BridgeUvicornServer(uvicorn.Server):
    """종료 신호는 앱이 처리하므로 uvicorn이 가로채지 않게 함"""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


class ExtensionBridgeServer:
    """확장 프로그램용 WebSocket 서버"""

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        host: str = DEFAULT_HOST,
        on_message: Optional[MessageSink] = None,
        on_client_connected: Optional[ClientCallback] = None,
        on_client_disconnected: Optional[ClientCallback] = None,
        ping_interval: Optional[float] = DEFAULT_PING_INTERVAL,
        parser: Optional[CommentParser] = None,
    ):
        """
        Args:
            port: 리슨 포트 (0이면 OS가 고름, 실제 포트는 start() 후 self.port)
            host: 리슨 주소
            on_message: 댓글 → ChatMessage 변환 결과를 받을 싱크 (ChatBus.publish 등)
            on_client_connected / on_client_disconnected: client_id를 받는 콜백
            ping_interval: 서버 → 확장 ping 주기 (초). None/0이면 보내지 않음
            parser: comment 파서 (기본 CommentParser)
        """
        self.host = host
        self.port = port
        self.on_message = on_message
        self.on_client_connected = on_client_connected
        self.on_client_disconnected = on_client_disconnected
        self.ping_interval = ping_interval
        self.parser = parser or CommentParser()

        self._sessions: dict[str, BridgeSession] = {}
        self._server: Optional[_BridgeUvicornServer] = None
        self._serve_task: Optional[asyncio.Task] = None
        self._sock: Optional[socket.socket] = None
        self.app = self._build_app()

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="chatfanin Extension Bridge", docs_url=None, redoc_url=None, openapi_url=None)
        app.add_api_route("/", self._status, methods=["GET"])
        app.add_api_route("/{path:path}", self._status_any, methods=["GET"])
        app.add_api_websocket_route("/", self._websocket_endpoint)
        app.add_api_websocket_route("/{platform_hint}", self._websocket_endpoint)
        return app

    @property
    def client_count(self) -> int:
        return len(self._sessions)

    @property
    def sessions(self) -> list[BridgeSession]:
        return list(self._sessions.values())

    @property
    def is_running(self) -> bool:
        return self._serve_task is not None and not self._serve_task.done()

    # ---- HTTP ----

    async def _status(self):
        """헬스 체크: 연결된 확장 수 반환"""
        return JSONResponse({"status": "ok", "clients": self.client_count})

    async def _status_any(self, path: str):
        return await self._status()

    # ---- 서버 수명 주기 ----

    def _bind_socket(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            if os.name != "nt":
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
        except OSError:
            sock.close()
            raise
        return sock

    async def start(self):
        """리스너 바인딩 후 서버 시작. 바인딩 실패(포트 사용 중, 권한 없음)는 OSError로 전파"""
        if self.is_running:
            return

        try:
            sock = self._bind_socket()
        except OSError as e:
            logger.error("[ExtensionBridge] 포트 %s 바인딩 실패 (%s:%s): %s", self.port, self.host, self.port, e)
            raise
        self.port = sock.getsockname()[1]

        config = uvicorn.Config(
            self.app,
            log_config=None,
            lifespan="off",
            access_log=False,
            timeout_graceful_shutdown=5,
        )
        server = _BridgeUvicornServer(config)
        task = asyncio.create_task(server.serve(sockets=[sock]), name=f"extension-bridge-{self.port}")
        self._sock, self._server, self._serve_task = sock, server, task

        while not server.started:
            if task.done():
                self._server, self._serve_task, self._sock = None, None, None
                sock.close()
                exc = None if task.cancelled() else task.exception()
                raise RuntimeError(f"브리지 서버 시작 실패 (port={self.port})") from exc
            await asyncio.sleep(0.01)

        logger.info("[ExtensionBridge] WebSocket 서버 시작: ws://%s:%s", self.host, self.port)

    async def stop(self, timeout: float = 10.0):
        """모든 세션을 닫고 서버 종료. 여러 번 호출해도 안전하며 예외를 던지지 않음"""
        server, task, sock = self._server, self._serve_task, self._sock
        self._server, self._serve_task, self._sock = None, None, None
        if server is None or task is None:
            return

        try:
            for session in self.sessions:
                await self._close_session(session, GOING_AWAY, "server shutting down")

            server.should_exit = True
            _, pending = await asyncio.wait({task}, timeout=timeout)
            if pending:
                logger.warning("[ExtensionBridge] 종료 대기 시간 초과, 강제 종료")
                server.force_exit = True
                task.cancel()
                await asyncio.wait({task}, timeout=1.0)
            elif not task.cancelled() and task.exception() is not None:
                logger.warning("[ExtensionBridge] 서버 태스크 오류: %s", task.exception())
        except Exception as e:
            logger.error("[ExtensionBridge] 서버 종료 중 오류: %s", e, exc_info=True)
        finally:
            if sock is not None:
                sock.close()
            self._sessions.clear()
        logger.info("[ExtensionBridge] 서버 종료")

    async def wait_closed(self):
        """서버 태스크가 끝날 때까지 대기"""
        task = self._serve_task
        if task is not None:
            await asyncio.wait({task})

    # ---- WebSocket ----

    async def _websocket_endpoint(self, websocket: WebSocket, platform_hint: str = ""):
        session = BridgeSession(
            client_id=uuid.uuid4().hex[:8],
            websocket=websocket,
            platform_hint=platform_hint or None,
        )
        await websocket.accept()
        session.state = SessionState.OPEN
        self._sessions[session.client_id] = session
        logger.info("[ExtensionBridge] 클라이언트 연결: %s, path=/%s", session.client_id, platform_hint)
        await self._notify(self.on_client_connected, session.client_id)

        if self.ping_interval:
            session.ping_task = asyncio.create_task(self._ping_loop(session))
        try:
            await self._receive_loop(session)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.warning("[ExtensionBridge] 클라이언트 처리 오류 (%s): %s", session.client_id, e, exc_info=True)
        finally:
            if session.ping_task is not None:
                session.ping_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await session.ping_task
            self._sessions.pop(session.client_id, None)
            await self._close_session(session)
            session.state = SessionState.CLOSED
            logger.info("[ExtensionBridge] 클라이언트 해제: %s", session.client_id)
            await self._notify(self.on_client_disconnected, session.client_id)

    async def _receive_loop(self, session: BridgeSession):
        websocket = session.websocket
        while True:
            event = await websocket.receive()
            if event["type"] == "websocket.disconnect":
                return
            text = event.get("text")
            if text is None:
                try:
                    text = (event.get("bytes") or b"").decode("utf-8")
                except UnicodeDecodeError:
                    logger.warning("[ExtensionBridge] UTF-8이 아닌 프레임 무시 (%s)", session.client_id)
                    continue
            await self.handle_frame(text, session)

    async def _close_session(self, session: BridgeSession, code: int = 1000, reason: str = ""):
        if session.state == SessionState.CLOSED:
            return
        session.state = SessionState.CLOSING
        websocket = session.websocket
        if websocket.application_state != WebSocketState.CONNECTED:
            return
        if websocket.client_state != WebSocketState.CONNECTED:
            return
        try:
            await websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug("[ExtensionBridge] 세션 종료 중 오류 (%s): %s", session.client_id, e)

    async def _ping_loop(self, session: BridgeSession):
        try:
            while session.state == SessionState.OPEN:
                await asyncio.sleep(self.ping_interval)
                if session.state != SessionState.OPEN:
                    return
                await self._send(session, {"type": "ping", "timestamp": _now_ms()})
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug("[ExtensionBridge] ping 전송 실패 (%s): %s", session.client_id, e)

    async def _send(self, session: BridgeSession, payload: dict[str, Any]):
        async with session.send_lock:
            await session.websocket.send_text(json.dumps(payload, ensure_ascii=False))

    # ---- 프로토콜 ----

    async def handle_frame(self, raw: str, session: Optional[BridgeSession] = None) -> int:
        """
        텍스트 프레임 하나 처리. 줄바꿈으로 구분된 JSON 여러 개를 각각 처리한다.
        잘못된 JSON은 그 문서만 버리고 연결은 유지.

        Returns:
            싱크로 넘긴 댓글 수
        """
        try:
            documents = [json.loads(raw)]
        except json.JSONDecodeError:
            documents = []
            for line in raw.splitlines():
                line = line.strip()
                if not line:
                    continue
                try:
                    documents.append(json.loads(line))
                except json.JSONDecodeError as e:
                    logger.warning("[ExtensionBridge] JSON 파싱 오류 (%s): %s", self._client_of(session), e)

        accepted = 0
        for payload in documents:
            try:
                if await self._handle_payload(payload, session):
                    accepted += 1
            except Exception as e:
                logger.warning("[ExtensionBridge] 메시지 처리 오류 (%s): %s", self._client_of(session), e, exc_info=True)
        return accepted

    async def _handle_payload(self, payload: Any, session: Optional[BridgeSession]) -> bool:
        if not isinstance(payload, dict):
            return False

        msg_type = payload.get("type")
        logger.debug("[ExtensionBridge] 메시지 수신: type=%s, client=%s", msg_type, self._client_of(session))

        if msg_type == "comment":
            hint = session.platform_hint if session else None
            message = self.parser.parse(payload.get("data"), platform_hint=hint)
            if message is None:
                return False
            logger.debug("[ExtensionBridge] 댓글 [%s] @%s: %s", message.platform.value, message.display_name, message.text)
            await self._deliver(message)
            if session is not None:
                session.comments_accepted += 1
            return True

        if msg_type == "connected":
            platform = payload.get("platform")
            logger.info("[ExtensionBridge] 확장 연결됨: platform=%s, url=%s", platform, payload.get("url"))
            # 경로 힌트가 없으면 확장이 알려준 플랫폼을 이후 댓글의 기본값으로 사용
            if session is not None and not session.platform_hint and isinstance(platform, str):
                session.platform_hint = platform
        elif msg_type == "status":
            logger.debug("[ExtensionBridge] 확장 상태: %s", payload)
        elif msg_type == "pong":
            if session is not None:
                session.last_pong = datetime.now()
        elif msg_type == "ping":
            if session is not None:
                await self._send(session, {"type": "pong", "timestamp": _now_ms()})
        return False

    async def _deliver(self, message: ChatMessage):
        if not self.on_message:
            return
        try:
            cb = self.on_message(message)
            if asyncio.iscoroutine(cb):
                await cb
        except Exception as e:
            logger.error("[ExtensionBridge] 메시지 싱크 오류: %s", e, exc_info=True)

    async def _notify(self, callback: Optional[ClientCallback], client_id: str):
        if not callback:
            return
        try:
            cb = callback(client_id)
            if asyncio.iscoroutine(cb):
                await cb
        except Exception as e:
            logger.error("[ExtensionBridge] 클라이언트 이벤트 콜백 오류: %s", e, exc_info=True)

    @staticmethod
    def _client_of(session: Optional[BridgeSession]) -> str:
        return session.client_id if session else "-"

    async def broadcast(self, payload: dict[str, Any]) -> int:
        """열린 모든 세션에 JSON 전송. 전송 성공 수 반환"""
        sent = 0
        for session in self.sessions:
            if session.state != SessionState.OPEN:
                continue
            try:
                await self._send(session, payload)
                sent += 1
            except Exception as e:
                logger.warning("[ExtensionBridge] broadcast 오류 (%s): %s", session.client_id, e)
        return sent
