"""
조립 지점: 설정 → 인제스터 생성 → 버스 연결 → 실행 → 정리

실행: python -m chatfanin.app  (또는 설치 후 chatfanin)
"""

import asyncio
import logging
from typing import Optional

from .chat.base_client import ChatIngestor, ChatMessage, ConnectionState, StateChange
from .chat.chat_bus import ChatBus
from .chat.client_factory import IngestorFactory
from .utils.logging_config import setup_logging
from .utils.settings import Settings, load_settings

logger = logging.getLogger(__name__)


class ChatAggregator:
    """버스 하나와 설정된 인제스터들의 수명 주기를 관리"""

    def __init__(self, settings: Settings, bus: Optional[ChatBus] = None):
        self.settings = settings
        self.bus = bus or ChatBus(
            cache_capacity=settings.dedup_capacity,
            max_messages_per_second=settings.max_messages_per_second,
            stats_interval=settings.stats_interval,
        )
        self.ingestors: list[ChatIngestor] = []
        self._stopped = False

    def build_ingestors(self) -> list[ChatIngestor]:
        """설정에 있는 플랫폼만 인제스터 생성"""
        s = self.settings
        common = {
            "reconnect_delay": s.reconnect_delay,
            "max_reconnect_attempts": s.max_reconnect_attempts,
            "on_state_change": self._on_state_change,
        }
        ingestors: list[ChatIngestor] = []

        if s.bridge_enabled:
            ingestors.append(IngestorFactory.create(
                "extension",
                host=s.bridge_host,
                port=s.bridge_port,
                ping_interval=s.bridge_ping_interval,
                **common,
            ))

        if s.twitch_channel:
            ingestors.append(IngestorFactory.create(
                "twitch",
                channel_id=s.twitch_channel,
                oauth_token=s.twitch_oauth_token,
                bot_username=s.twitch_username,
                use_ssl=s.twitch_use_ssl,
                **common,
            ))

        if s.chzzk_channel_id and s.chzzk_access_token:
            ingestors.append(IngestorFactory.create(
                "chzzk",
                channel_id=s.chzzk_channel_id,
                access_token=s.chzzk_access_token,
                **common,
            ))
        elif s.chzzk_channel_id:
            logger.warning("CHZZK_ACCESS_TOKEN이 없어 치지직 인제스터를 건너뜁니다")

        if not ingestors:
            logger.warning("활성화된 인제스터가 없습니다 (.env 설정 확인)")
        self.ingestors = ingestors
        return list(ingestors)

    def _on_state_change(self, ingestor: ChatIngestor, change: StateChange):
        if change.new == ConnectionState.ERROR:
            logger.error(f"[{ingestor.platform_name}] 인제스터 오류 상태: {change.reason}")
        else:
            logger.info(f"[{ingestor.platform_name}] {change.old.value} → {change.new.value}")

    async def start(self):
        """인제스터를 버스에 연결하고 시작"""
        if not self.ingestors:
            self.build_ingestors()
        for ingestor in self.ingestors:
            self.bus.attach(ingestor)
        for ingestor in self.ingestors:
            await ingestor.start()

    async def stop(self):
        """인제스터 중지 후 버스 정리. 여러 번 호출해도 안전"""
        if self._stopped:
            return
        self._stopped = True
        for ingestor in self.ingestors:
            await ingestor.stop()
        self.bus.dispose()
        logger.info("채팅 수집 종료")

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None):
        """stop_event가 설정되거나 모든 인제스터가 끝날 때까지 실행 (끝나면 stop)"""
        await self.start()
        watchers = {asyncio.ensure_future(asyncio.gather(*(i.wait_until_stopped() for i in self.ingestors)))}
        if stop_event is not None:
            watchers.add(asyncio.ensure_future(stop_event.wait()))
        try:
            await asyncio.wait(watchers, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in watchers:
                fut.cancel()
            await self.stop()


def print_message(message: ChatMessage):
    """콘솔 구독자"""
    print(f"[{message.timestamp:%H:%M:%S}] {message}")


async def main(env_file: Optional[str] = None):
    log_dir = setup_logging()
    try:
        settings = load_settings(env_file)
    except ValueError as e:
        logger.error(f"설정 오류: {e}")
        print(f"❌ {e}")
        return

    aggregator = ChatAggregator(settings)
    aggregator.bus.subscribe(print_message)

    print(f"로그 저장 경로: {log_dir}")
    if settings.bridge_enabled:
        print(f"확장 브리지: ws://{settings.bridge_host}:{settings.bridge_port}")
    print("채팅 수신 중... (종료: Ctrl+C)\n")
    await aggregator.run_forever()


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
