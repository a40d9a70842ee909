"""chanbot 的配置模块。"""

from chanbot.config.loader import get_config_path, load_config, save_config
from chanbot.config.schema import Config

__all__ = ["Config", "load_config", "save_config", "get_config_path"]
