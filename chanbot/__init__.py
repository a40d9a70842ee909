"""
chanbot - 按通道绑定会话并执行定时任务的聊天运维机器人
"""

__version__ = "0.1.0"
__logo__ = "⏰"
