"""用于组装系统提示词的上下文构建器。"""

from datetime import datetime

from chanbot.channels.base import ChannelDirectory


class ContextBuilder:
    """
    为每个通道构建系统提示词。

    由核心身份和通道目录中的引导文件组成。
    """

    BOOTSTRAP_FILES = ["CHANNEL.md"]

    def __init__(self, directory: ChannelDirectory | None = None):
        self.directory = directory

    def build_system_prompt(self, channel_id: str) -> str:
        """构建通道的系统提示词。"""
        parts = [self._get_identity(channel_id)]
        bootstrap = self._load_bootstrap_files(channel_id)
        if bootstrap:
            parts.append(bootstrap)
        return "\n\n---\n\n".join(parts)

    def _get_identity(self, channel_id: str) -> str:
        now = datetime.now().astimezone().strftime("%Y-%m-%d %H:%M %Z (%A)")
        name = channel_id
        if self.directory:
            mapping = self.directory.get(channel_id)
            if mapping and mapping.name:
                name = f"#{mapping.name}"

        return f"""# chanbot

You are chanbot, an assistant working inside the chat channel {name}.

## Current time
{now}

## Scheduling
- Use schedule_one_time for tasks that run once ("tomorrow at 9pm", "in 10 minutes").
- Use schedule_recurring with a cron expression for repeating tasks.
- Use schedule_list and schedule_remove to review or cancel tasks in this channel.
Always pass the user's IANA timezone. Ask for it if you do not know it.

Reply with plain text. Keep answers short and accurate."""

    def _load_bootstrap_files(self, channel_id: str) -> str:
        """加载通道目录中的引导文件。"""
        if not self.directory:
            return ""

        folder = self.directory.folder_for(channel_id)
        parts = []
        for filename in self.BOOTSTRAP_FILES:
            file_path = folder / filename
            if file_path.exists():
                content = file_path.read_text(encoding="utf-8")
                parts.append(f"## {filename}\n\n{content}")
        return "\n\n".join(parts)
