from .trading_config import TradingConfig, CONFIG
from .settings import RuntimeSettings, load_settings, configure_logging

__all__ = ['TradingConfig', 'CONFIG', 'RuntimeSettings', 'load_settings', 'configure_logging']
