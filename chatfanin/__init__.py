"""chatfanin: 여러 라이브 플랫폼 채팅을 하나로 합치는 fan-in 버스"""

__version__ = "0.1.0"
