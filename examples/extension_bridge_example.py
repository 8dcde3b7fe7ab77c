"""
브라우저 확장 브리지 + 트위치 채팅 수신 예제

.env에 BRIDGE_PORT(기본 9876), TWITCH_CHANNEL 등 설정 후 실행.
확장 프로그램을 켜고 Instagram/TikTok 라이브 페이지를 열면 댓글이 출력됩니다.

실행: python examples/extension_bridge_example.py  (프로젝트 루트에서)
"""

import sys
from pathlib import Path

# 프로젝트 루트를 path에 넣어서 'import chatfanin' 가능하게 함
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio

from chatfanin.app import ChatAggregator
from chatfanin.chat import ChatMessage, ChatMessageType
from chatfanin.utils import load_settings, setup_logging

LOG_DIR = setup_logging()


async def on_chat_message(message: ChatMessage):
    badge = "💰 " if message.message_type == ChatMessageType.SUPERCHAT else ""
    print(f"[{message.timestamp:%H:%M:%S}] {badge}[{message.platform.value}] {message.display_name}: {message.text}")


async def main():
    settings = load_settings(Path(__file__).resolve().parent.parent / ".env")
    aggregator = ChatAggregator(settings)
    aggregator.bus.subscribe(on_chat_message)

    print(f"인제스터: {[i.platform_name for i in aggregator.build_ingestors()]}")
    print(f"로그 저장 경로: {LOG_DIR}")
    print("채팅 수신 중... (종료: Ctrl+C)\n")
    await aggregator.run_forever()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
