"""
Configuration module for the voice relay.

This module provides centralized configuration management for the entire application,
including constants, logging setup, and environment-based settings.

Key components:
- constants: Protocol message names, vendor endpoints, backoff parameters, timings
  and fallback phrases shared across modules.
- logging_config: Console and rotating-file logging under a single named logger.
- settings: Pydantic ``RelaySettings`` built from environment variables and the
  ``SessionTimings`` used by each voice session.

Usage examples:
```python
from voice_relay.config.constants import LOGGER_NAME
from voice_relay.config.logging_config import configure_logging
from voice_relay.config.settings import RelaySettings

logger = configure_logging()
settings = RelaySettings.from_env()
logger.info(f"Max sessions: {settings.max_sessions}")
```
"""
