"""
로깅 유틸리티 - 이름별 로거를 한 번만 구성해 재사용

LOG_LEVEL 환경 변수가 있으면 호출 측에서 넘긴 레벨보다 우선한다.
"""
import logging
import os
import sys
from typing import Dict

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _resolve_level(level: int) -> int:
    override = os.getenv("LOG_LEVEL")
    if not override:
        return level
    if override.isdigit():
        return int(override)
    resolved = getattr(logging, override.upper(), None)
    return resolved if isinstance(resolved, int) else level


class LoggerSingleton:
    """
    서비스 모듈별 로거 팩토리 (allocator, appointment, payment, admin ...)
    """
    _loggers: Dict[str, logging.Logger] = {}

    @classmethod
    def get_logger(cls, logger_name: str = "app", level: int = logging.INFO) -> logging.Logger:
        """
        지정된 이름의 로거를 반환합니다. 처음 요청될 때만 stdout 핸들러를 붙입니다.

        Args:
            logger_name: 로거 이름
            level: 로그 레벨 (기본값: INFO, LOG_LEVEL 로 덮어씀)

        Returns:
            logging.Logger: 설정된 로거 인스턴스
        """
        if logger_name in cls._loggers:
            return cls._loggers[logger_name]

        resolved = _resolve_level(level)
        logger = logging.getLogger(logger_name)
        logger.setLevel(resolved)

        if not logger.handlers:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(resolved)
            console_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
            logger.addHandler(console_handler)

        cls._loggers[logger_name] = logger
        return logger
