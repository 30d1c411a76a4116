from .base import ConfigProvider
from .dotenv_provider import DotEnvProvider, parse_env_file
from .env_provider import EnvVarProvider

__all__ = ["ConfigProvider", "DotEnvProvider", "EnvVarProvider", "parse_env_file"]
