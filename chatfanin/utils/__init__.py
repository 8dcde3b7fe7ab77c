"""유틸리티 모듈"""
from .logging_config import setup_logging
from .settings import Settings, load_settings

__all__ = ["Settings", "load_settings", "setup_logging"]
