"""使用 Pydantic 的配置模式。"""

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DiscordConfig(BaseModel):
    """Discord 通道配置。"""
    enabled: bool = False
    token: str = ""  # 来自 Discord 开发者门户的机器人令牌


class ChannelMappingConfig(BaseModel):
    """单个通道的映射。"""
    channel_id: str
    name: str = ""
    folder: str | None = None  # 为空时使用 <workspace>/channels/<channel_id>
    tenant_id: str | None = None  # 为空时使用 quota.tenant_id


class ChannelsConfig(BaseModel):
    """聊天通道的配置。"""
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    mappings: list[ChannelMappingConfig] = Field(default_factory=list)


class SchedulerConfig(BaseModel):
    """调度器配置。"""
    default_timezone: str = "UTC"
    one_time_retry_s: int = 60  # 一次性任务被配额阻止后的重试间隔


class SessionsConfig(BaseModel):
    """会话归档配置。"""
    archive_after_days: float = 30
    sweep_interval_s: int = 24 * 60 * 60
    sweep_enabled: bool = True


class QuotaConfig(BaseModel):
    """远程配额服务配置。"""
    enabled: bool = False
    service_url: str = ""
    tenant_id: str = ""  # 默认租户
    fail_open: bool = True  # 配额服务不可达时是否放行
    timeout_s: float = 10.0


class EngineConfig(BaseModel):
    """对话引擎配置。"""
    model: str = "anthropic/claude-sonnet-4-5"
    api_key: str = ""
    api_base: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7
    max_tool_iterations: int = 20


class Config(BaseSettings):
    """chanbot 的根配置。"""
    model_config = SettingsConfigDict(env_prefix="CHANBOT_", env_nested_delimiter="__")

    workspace: str = "~/.chanbot/workspace"
    data_dir: str = "~/.chanbot/data"
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    quota: QuotaConfig = Field(default_factory=QuotaConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)

    @property
    def workspace_path(self) -> Path:
        """获取展开的工作空间路径。"""
        return Path(self.workspace).expanduser()

    @property
    def data_path(self) -> Path:
        """获取展开的数据目录路径。"""
        return Path(self.data_dir).expanduser()
