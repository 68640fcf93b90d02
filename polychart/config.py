import logging
import os
from datetime import datetime, timezone
from typing import Optional


class Config:
    """Centralized configuration management"""
    # REST API settings
    REST_BASE_URL: str = "https://api.polygon.io"
    API_KEY: str = os.environ.get("POLYGON_API_KEY", "")
    REQUEST_TIMEOUT: float = 30.0
    PAGE_SIZE: int = 10000
    ADJUSTED: bool = True

    # Retry settings (REST client only)
    RETRY_ATTEMPTS: int = 5
    RETRY_MIN_WAIT: float = 2.0
    RETRY_MAX_WAIT: float = 30.0

    # WebSocket settings
    WS_BASE_URL: str = "wss://socket.polygon.io"
    SUBSCRIBE_TRADES: bool = False
    INITIAL_RECONNECT_DELAY: float = 1.0
    MAX_RECONNECT_DELAY: float = 60.0
    RECONNECT_MULTIPLIER: float = 1.5
    FILL_GAPS_ON_RECONNECT: bool = True

    # Market calendar
    EXCHANGE_TZ: str = "America/New_York"
    SESSION_OPEN_HOUR: int = 4   # pre-market
    SESSION_CLOSE_HOUR: int = 20  # end of after-hours
    START_OF_DATA_MS: int = int(
        datetime(2003, 9, 10, tzinfo=timezone.utc).timestamp() * 1000
    )

    # Default selection
    TICKER: str = "X:BTCUSD"
    RESOLUTION: str = "1"
    HISTORY_DAYS: int = 7

    # Blocking fetches run in a thread pool
    FETCH_WORKERS: int = 2

    # Logging
    LOG_LEVEL: int = logging.INFO
    LOG_FORMAT: str = "%(asctime)s | %(name)-18s | %(levelname)-8s | %(message)s"
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_DIR: Optional[str] = "logs"  # None disables the log file
    # Chatty client libraries are held at this level
    LIBRARY_LOG_LEVEL: int = logging.WARNING
