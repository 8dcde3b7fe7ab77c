"""
트위치 IRC 클라이언트
irc.chat.twitch.tv 에 접속해 채널 채팅(PRIVMSG)을 수신합니다.
OAuth 토큰이 없으면 justinfan 익명 계정으로 읽기 전용 접속.

참고: https://dev.twitch.tv/docs/irc/
"""

import asyncio
import logging
import random
import re
import ssl
from datetime import datetime
from typing import Optional

from .base_client import (
    ChatIngestor,
    ChatMessage,
    ChatMessageType,
    ChatPlatform,
    FatalIngestorError,
)

logger = logging.getLogger(__name__)

TWITCH_IRC_HOST = "irc.chat.twitch.tv"
TWITCH_IRC_PORT = 6667
TWITCH_IRC_SSL_PORT = 6697

# @tags :user!user@user.tmi.twitch.tv PRIVMSG #channel :message
PRIVMSG_PATTERN = re.compile(
    r"^(?:@(?P<tags>\S+)\s)?:(?P<user>[^!\s]+)!\S+\s+PRIVMSG\s+#(?P<channel>\S+)\s+:(?P<text>.*)$"
)
AUTH_FAILURE_MARKERS = (
    "Login authentication failed",
    "Login unsuccessful",
    "Improperly formatted auth",
    "Invalid NICK",
)

# IRCv3 태그 값 이스케이프 (끝에 홀로 남은 역슬래시는 버림)
TAG_ESCAPES = {"s": " ", ":": ";", "\\": "\\", "r": "\r", "n": "\n"}
TAG_ESCAPE_PATTERN = re.compile(r"\\(.?)")


def parse_tags(raw: str) -> dict[str, str]:
    """IRCv3 태그 문자열("a=1;b=2")을 딕셔너리로"""
    tags: dict[str, str] = {}
    if not raw:
        return tags
    for part in raw.split(";"):
        key, _, value = part.partition("=")
        tags[key] = TAG_ESCAPE_PATTERN.sub(lambda m: TAG_ESCAPES.get(m.group(1), m.group(1)), value)
    return tags


class TwitchIrcIngestor(ChatIngestor):
    """트위치 IRC 인제스터"""

    @property
    def platform(self) -> ChatPlatform:
        return ChatPlatform.TWITCH

    def __init__(
        self,
        channel_id: str,
        oauth_token: Optional[str] = None,
        bot_username: Optional[str] = None,
        use_ssl: bool = False,
        host: str = TWITCH_IRC_HOST,
        port: Optional[int] = None,
        **kwargs,
    ):
        """
        Args:
            channel_id: 트위치 채널명 (# 없이)
            oauth_token: "oauth:..." 형식 토큰 (없으면 익명)
            bot_username: 토큰 소유 계정명
            use_ssl: TLS 사용 여부 (6697 포트)
            host, port: 접속 대상 (테스트용으로 바꿀 수 있음)
            **kwargs: ChatIngestor 공통 인자 (on_message, reconnect_delay 등)
        """
        super().__init__(channel_id.strip().lstrip("#").lower(), **kwargs)
        self.oauth_token = oauth_token
        self.bot_username = bot_username
        self.use_ssl = use_ssl
        self.host = host
        self.port = port or (TWITCH_IRC_SSL_PORT if use_ssl else TWITCH_IRC_PORT)

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self.is_authenticated = False

    @property
    def channel(self) -> str:
        return self.identifier

    async def connect(self):
        """TCP(TLS) 연결 후 로그인, 태그 capability 요청, 채널 JOIN"""
        logger.info(f"[{self.platform_name}] #{self.channel} 연결 시도 ({self.host}:{self.port})")
        self._reader, self._writer = await asyncio.open_connection(
            self.host,
            self.port,
            ssl=ssl.create_default_context() if self.use_ssl else None,
        )

        if self.oauth_token and self.bot_username:
            token = self.oauth_token if self.oauth_token.startswith("oauth:") else f"oauth:{self.oauth_token}"
            await self._send(f"PASS {token}")
            await self._send(f"NICK {self.bot_username.lower()}")
            self.is_authenticated = True
        else:
            anon = f"justinfan{random.randint(10000, 99999)}"
            await self._send("PASS SCHMOOPIIE")
            await self._send(f"NICK {anon}")
            self.is_authenticated = False
            logger.info(f"[{self.platform_name}] 익명 접속: {anon}")

        await self._send("CAP REQ :twitch.tv/tags twitch.tv/commands")
        await self._send(f"JOIN #{self.channel}")

    async def disconnect(self):
        writer, self._writer = self._writer, None
        self._reader = None
        if writer is None:
            return
        try:
            if not writer.is_closing():
                writer.write(f"PART #{self.channel}\r\n".encode("utf-8"))
                writer.close()
            await writer.wait_closed()
        except (OSError, ConnectionError) as e:
            logger.debug(f"[{self.platform_name}] 연결 종료 중 오류 (무시): {e}")
        logger.info(f"[{self.platform_name}] IRC 연결 종료")

    async def listen(self):
        """한 줄씩 읽어 처리. EOF면 반환(재연결 대상)"""
        reader = self._reader
        if reader is None:
            raise ConnectionError("IRC 연결이 없습니다")

        while True:
            raw = await reader.readline()
            if not raw:
                logger.warning(f"[{self.platform_name}] 서버가 연결을 종료했습니다")
                return
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line:
                continue
            await self._handle_line(line)

    async def _handle_line(self, line: str):
        if line.startswith("PING"):
            await self._send("PONG" + line[4:])
            return

        if " NOTICE " in line and any(marker in line for marker in AUTH_FAILURE_MARKERS):
            raise FatalIngestorError("트위치 로그인 실패: OAuth 토큰이 잘못되었거나 만료되었습니다")

        if " RECONNECT" in line and "PRIVMSG" not in line:
            # 서버 재시작 예고. 연결을 닫고 재연결 루프에 맡김
            raise ConnectionResetError("트위치 서버가 RECONNECT를 요청했습니다")

        message = self.parse_privmsg(line)
        if message is not None:
            await self._publish(message)

    def parse_privmsg(self, line: str) -> Optional[ChatMessage]:
        """PRIVMSG 한 줄을 ChatMessage로. 채팅이 아니면 None"""
        match = PRIVMSG_PATTERN.match(line)
        if not match:
            return None

        tags = parse_tags(match.group("tags") or "")
        user = match.group("user")
        text = match.group("text").strip()
        if not text:
            return None

        badges = tags.get("badges", "")
        badge_names = {b.split("/", 1)[0] for b in badges.split(",") if b}
        bits = tags.get("bits")

        sent_ts = tags.get("tmi-sent-ts")
        timestamp = None
        if sent_ts and sent_ts.isdigit():
            timestamp = datetime.fromtimestamp(int(sent_ts) / 1000)

        # id 태그가 없으면(태그 capability 미적용) 시각+사용자로 대체
        message_id = tags.get("id") or f"{user}:{sent_ts or datetime.now().timestamp()}"

        return self._create_message(
            message_id=message_id,
            user=user,
            text=text,
            timestamp=timestamp,
            display_name=tags.get("display-name") or user,
            is_moderator=bool(badge_names & {"moderator", "broadcaster"}) or tags.get("mod") == "1",
            is_owner="broadcaster" in badge_names,
            is_verified=bool(badge_names & {"vip", "partner"}),
            message_type=ChatMessageType.SUPERCHAT if bits else ChatMessageType.NORMAL,
        )

    async def send_message(self, text: str) -> bool:
        """채널에 채팅 전송 (OAuth 로그인 필요)"""
        if not self.is_authenticated:
            logger.warning(f"[{self.platform_name}] 메시지 전송에는 OAuth 로그인이 필요합니다")
            return False
        if self._writer is None:
            logger.warning(f"[{self.platform_name}] 연결이 없어 메시지를 보낼 수 없습니다")
            return False
        await self._send(f"PRIVMSG #{self.channel} :{text}")
        return True

    async def _send(self, line: str):
        if self._writer is None:
            raise ConnectionError("IRC 연결이 없습니다")
        self._writer.write(f"{line}\r\n".encode("utf-8"))
        await self._writer.drain()
