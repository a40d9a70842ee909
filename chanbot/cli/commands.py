"""chanbot 的 CLI 命令。"""

import asyncio
import sys
import time

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from chanbot import __logo__, __version__

app = typer.Typer(
    name="chanbot",
    help=f"{__logo__} chanbot - 聊天通道的任务调度与会话编排",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} chanbot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """chanbot - 聊天通道的任务调度与会话编排。"""
    pass


def _set_verbose(verbose: bool) -> None:
    if verbose:
        logger.remove()
        logger.add(sys.stderr, level="DEBUG")


def _fmt_ms(ms: int | None) -> str:
    if not ms:
        return ""
    return time.strftime("%Y-%m-%d %H:%M", time.localtime(ms / 1000))


# ============================================================================
# Runtime wiring
# ============================================================================


def _make_directory(config):
    from chanbot.channels.base import ChannelDirectory, ChannelMapping

    directory = ChannelDirectory(config.workspace_path, default_tenant=config.quota.tenant_id)
    for m in config.channels.mappings:
        directory.add(ChannelMapping(
            channel_id=m.channel_id,
            name=m.name,
            folder=m.folder,
            tenant_id=m.tenant_id,
        ))
    return directory


def _make_engine(config, require_key: bool = True):
    """从配置创建 LiteLLMEngine。需要 API 密钥但未配置时退出。"""
    from chanbot.providers.litellm_provider import LiteLLMEngine

    engine_cfg = config.engine
    if require_key and not engine_cfg.api_key and not engine_cfg.model.startswith("bedrock/"):
        console.print("[red]错误：未配置 API 密钥。[/red]")
        console.print("在 ~/.chanbot/config.json 的 engine.apiKey 中设置")
        raise typer.Exit(1)
    return LiteLLMEngine(
        api_key=engine_cfg.api_key or None,
        api_base=engine_cfg.api_base,
        default_model=engine_cfg.model,
        max_tokens=engine_cfg.max_tokens,
        temperature=engine_cfg.temperature,
        max_tool_iterations=engine_cfg.max_tool_iterations,
    )


def _make_quota(config):
    from chanbot.quota.authority import HttpQuotaAuthority
    from chanbot.quota.gate import QuotaGate

    if not (config.quota.enabled and config.quota.service_url):
        return None
    authority = HttpQuotaAuthority(config.quota.service_url, timeout=config.quota.timeout_s)
    return QuotaGate(authority, fail_open=config.quota.fail_open)


def _make_sessions(config, engine):
    from chanbot.session.manager import SessionManager

    return SessionManager(config.data_path / "sessions.json", engine)


def _make_scheduler(config, directory=None, **kwargs):
    from chanbot.scheduler.service import SchedulerService
    from chanbot.scheduler.store import ScheduleStore

    directory = directory or _make_directory(config)
    return SchedulerService(
        ScheduleStore(directory),
        tenant_for=directory.tenant_for,
        one_time_retry_s=config.scheduler.one_time_retry_s,
        **kwargs,
    )


def _build_runtime(config):
    """组装完整的运行时：总线、引擎、会话、配额、调度器和编排循环。"""
    from chanbot.agent.loop import AgentLoop
    from chanbot.bus.queue import MessageBus

    directory = _make_directory(config)
    bus = MessageBus()
    engine = _make_engine(config)
    sessions = _make_sessions(config, engine)
    quota = _make_quota(config)
    scheduler = _make_scheduler(config, directory, sessions=sessions, quota=quota)
    agent = AgentLoop(
        bus=bus,
        engine=engine,
        sessions=sessions,
        scheduler=scheduler,
        quota=quota,
        directory=directory,
    )
    # 调度器需要编排循环来执行任务
    scheduler.on_task = agent.run_scheduled
    return directory, bus, sessions, quota, scheduler, agent


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """初始化 chanbot 配置和工作空间。"""
    from chanbot.config.loader import get_config_path, save_config
    from chanbot.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]配置已存在于 {config_path}[/yellow]")
        if not typer.confirm("覆盖？"):
            raise typer.Exit()

    config = Config()
    save_config(config)
    console.print(f"[green]✓[/green] 已在 {config_path} 创建配置")

    workspace = config.workspace_path
    (workspace / "channels").mkdir(parents=True, exist_ok=True)
    config.data_path.mkdir(parents=True, exist_ok=True)
    console.print(f"[green]✓[/green] 已在 {workspace} 创建工作空间")

    console.print(f"\n{__logo__} chanbot 已就绪！")
    console.print("\n后续步骤：")
    console.print("  1. 将 API 密钥添加到 [cyan]~/.chanbot/config.json[/cyan] 的 engine.apiKey")
    console.print("  2. 在 channels.mappings 中添加通道，并启用 channels.discord")
    console.print("  3. 聊天：[cyan]chanbot agent -m \"你好！\"[/cyan]")


# ============================================================================
# Gateway / Server
# ============================================================================


def _print_gateway_summary(config, directory, sessions, quota, channels) -> None:
    """打印网关启动时的诊断信息。"""
    if channels.enabled_channels:
        console.print(f"[green]✓[/green] 已启用通道：{', '.join(channels.enabled_channels)}")
    else:
        console.print("[yellow]警告：未启用任何通道[/yellow]")

    if directory.channel_ids():
        console.print(f"[green]✓[/green] 通道映射：{len(directory.channel_ids())} 个")
    console.print(f"[green]✓[/green] 活跃会话：{sessions.get_active_count()} 个")
    if quota:
        console.print(f"[green]✓[/green] 配额服务：{config.quota.service_url}")
    console.print(
        f"[green]✓[/green] 会话归档：超过 {config.sessions.archive_after_days} 天未活跃"
    )


@app.command()
def gateway(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="详细输出"),
):
    """启动 chanbot 网关。"""
    from chanbot.channels.manager import ChannelManager
    from chanbot.config.loader import load_config
    from chanbot.session.sweeper import ArchiveSweeper

    _set_verbose(verbose)
    console.print(f"{__logo__} 正在启动 chanbot 网关...")

    config = load_config()
    directory, bus, sessions, quota, scheduler, agent = _build_runtime(config)

    sweeper = ArchiveSweeper(
        sessions,
        threshold_days=config.sessions.archive_after_days,
        interval_s=config.sessions.sweep_interval_s,
        enabled=config.sessions.sweep_enabled,
    )
    channels = ChannelManager(config, bus, directory, scheduler=scheduler, sessions=sessions)

    _print_gateway_summary(config, directory, sessions, quota, channels)

    async def run():
        try:
            await scheduler.start()
            await sweeper.start()
            await channels.start_all()
            await agent.run()
        except (KeyboardInterrupt, asyncio.CancelledError):
            console.print("\n正在关闭...")
        finally:
            sweeper.stop()
            scheduler.stop_all()
            agent.stop()
            await channels.stop_all()
            if quota:
                await quota.authority.close()

    asyncio.run(run())


# ============================================================================
# Agent Commands
# ============================================================================


@app.command()
def agent(
    message: str = typer.Option(None, "--message", "-m", help="发送给机器人的消息"),
    channel_id: str = typer.Option("cli", "--channel", "-c", help="消息所属的通道 ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="详细输出"),
):
    """以某个通道的身份直接与机器人交互。"""
    from chanbot.config.loader import load_config

    _set_verbose(verbose)
    config = load_config()
    _, _, _, _, _, agent_loop = _build_runtime(config)

    if message:
        async def run_once():
            response = await agent_loop.process_direct(message, channel_id=channel_id)
            console.print(f"\n{__logo__} {response}")

        asyncio.run(run_once())
    else:
        console.print(f"{__logo__} 交互模式（Ctrl+C 退出）\n")

        async def run_interactive():
            while True:
                try:
                    user_input = console.input("[bold blue]您：[/bold blue] ")
                    if not user_input.strip():
                        continue

                    response = await agent_loop.process_direct(user_input, channel_id=channel_id)
                    console.print(f"\n{__logo__} {response}\n")
                except (KeyboardInterrupt, EOFError):
                    console.print("\n再见！")
                    break

        asyncio.run(run_interactive())


# ============================================================================
# Schedule Commands
# ============================================================================


schedule_app = typer.Typer(help="管理已调度的任务")
app.add_typer(schedule_app, name="schedule")


def _parse_trigger(cron_expr: str | None, at: str | None, tz: str):
    """根据 --cron / --at 构建触发器，出错时退出。"""
    from chanbot.scheduler import timeparse
    from chanbot.scheduler.errors import TimeResolutionError
    from chanbot.scheduler.types import Trigger

    if cron_expr:
        return Trigger.cron(cron_expr, tz), None
    if at:
        try:
            target = timeparse.resolve(at, tz)
        except TimeResolutionError as e:
            console.print(f"[red]错误：{e}[/red]")
            raise typer.Exit(1)
        return Trigger.at(int(target.timestamp() * 1000), tz), at

    console.print("[red]错误：必须指定 --cron 或 --at[/red]")
    raise typer.Exit(1)


@schedule_app.command("list")
def schedule_list(
    channel_id: str = typer.Option(None, "--channel", "-c", help="只显示该通道的任务"),
):
    """列出已调度的任务。"""
    from chanbot.config.loader import load_config

    service = _make_scheduler(load_config())
    tasks = service.list_tasks(channel_id)

    if not tasks:
        console.print("没有已调度的任务。")
        return

    table = Table(title="Scheduled Tasks")
    table.add_column("ID", style="cyan")
    table.add_column("Channel")
    table.add_column("Name")
    table.add_column("Schedule")
    table.add_column("Status")
    table.add_column("Last Run")
    table.add_column("Next Run")

    for task in tasks:
        if task.trigger.kind == "cron":
            sched = f"{task.trigger.expr} ({task.trigger.tz})"
        else:
            sched = f"一次性 {task.natural_time or ''}".strip()

        status = "[green]已启用[/green]" if task.enabled else "[dim]已禁用[/dim]"
        if task.last_status == "error":
            status += " [red]✗[/red]"

        table.add_row(
            task.id,
            task.channel_id,
            task.name,
            sched,
            status,
            _fmt_ms(task.last_run_at_ms),
            _fmt_ms(service.next_run_at(task)),
        )

    console.print(table)


@schedule_app.command("add")
def schedule_add(
    channel_id: str = typer.Option(..., "--channel", "-c", help="任务所属的通道 ID"),
    task: str = typer.Option(..., "--task", "-t", help="触发时执行的指令"),
    name: str = typer.Option(None, "--name", "-n", help="任务名称"),
    cron_expr: str = typer.Option(None, "--cron", help="Cron 表达式（例如 '0 9 * * *'）"),
    at: str = typer.Option(None, "--at", help="一次性运行的时间（例如 'tomorrow at 9pm'）"),
    tz: str = typer.Option(None, "--tz", help="IANA 时区"),
):
    """添加已调度的任务。"""
    from chanbot.config.loader import load_config
    from chanbot.scheduler.errors import InvalidTrigger

    config = load_config()
    trigger, natural_time = _parse_trigger(cron_expr, at, tz or config.scheduler.default_timezone)
    service = _make_scheduler(config)

    try:
        task_id = service.schedule(
            trigger, task, channel_id=channel_id, name=name, natural_time=natural_time
        )
    except InvalidTrigger as e:
        console.print(f"[red]错误：{e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] 已添加任务 '{service.get(task_id).name}' ({task_id})")


@schedule_app.command("remove")
def schedule_remove(
    task_id: str = typer.Argument(..., help="要移除的任务 ID"),
):
    """移除已调度的任务。"""
    from chanbot.config.loader import load_config

    service = _make_scheduler(load_config())
    if service.remove(task_id):
        console.print(f"[green]✓[/green] 已移除任务 {task_id}")
    else:
        console.print(f"[red]未找到任务 {task_id}[/red]")


@schedule_app.command("enable")
def schedule_enable(
    task_id: str = typer.Argument(..., help="任务 ID"),
    disable: bool = typer.Option(False, "--disable", help="禁用而不是启用"),
):
    """启用或禁用任务。"""
    from chanbot.config.loader import load_config

    service = _make_scheduler(load_config())
    task = service.set_enabled(task_id, enabled=not disable)
    if task:
        status = "已禁用" if disable else "已启用"
        console.print(f"[green]✓[/green] 任务 '{task.name}' {status}")
    else:
        console.print(f"[red]未找到任务 {task_id}[/red]")


@schedule_app.command("update")
def schedule_update(
    task_id: str = typer.Argument(..., help="任务 ID"),
    cron_expr: str = typer.Option(None, "--cron", help="新的 cron 表达式"),
    at: str = typer.Option(None, "--at", help="新的一次性运行时间"),
    tz: str = typer.Option(None, "--tz", help="IANA 时区"),
):
    """更换任务的触发器。"""
    from chanbot.config.loader import load_config
    from chanbot.scheduler.errors import InvalidTrigger

    config = load_config()
    service = _make_scheduler(config)
    existing = service.get(task_id)
    if not existing:
        console.print(f"[red]未找到任务 {task_id}[/red]")
        raise typer.Exit(1)

    trigger, _ = _parse_trigger(cron_expr, at, tz or existing.trigger.tz)
    try:
        task = service.update_schedule(task_id, trigger)
    except InvalidTrigger as e:
        console.print(f"[red]错误：{e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] 任务 '{task.name}' 的触发器已更新为 {trigger.describe()}")


@schedule_app.command("run")
def schedule_run(
    task_id: str = typer.Argument(..., help="要运行的任务 ID"),
    force: bool = typer.Option(False, "--force", "-f", help="即使已禁用也运行"),
):
    """手动运行任务并显示投递的结果。"""
    from chanbot.config.loader import load_config

    _, bus, _, quota, scheduler, _ = _build_runtime(load_config())

    async def run():
        try:
            ok = await scheduler.run_task(task_id, force=force)
            while bus.outbound_size:
                msg = await bus.consume_outbound()
                console.print(f"\n{__logo__} [{msg.channel_id}] {msg.content}")
            return ok
        finally:
            if quota:
                await quota.authority.close()

    if asyncio.run(run()):
        console.print("[green]✓[/green] 任务已执行")
    else:
        console.print(f"[red]运行任务 {task_id} 失败[/red]")


# ============================================================================
# Session Commands
# ============================================================================


sessions_app = typer.Typer(help="管理通道会话")
app.add_typer(sessions_app, name="sessions")


@sessions_app.command("list")
def sessions_list(
    channel_id: str = typer.Option(None, "--channel", "-c", help="只显示该通道的会话"),
    all: bool = typer.Option(False, "--all", "-a", help="包含已归档的会话"),
):
    """列出会话。"""
    from chanbot.config.loader import load_config

    config = load_config()
    sessions = _make_sessions(config, _make_engine(config, require_key=False))
    items = [s for s in sessions.list_sessions(channel_id) if all or s.is_active]

    if not items:
        console.print("没有会话。")
        return

    table = Table(title="Sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Channel")
    table.add_column("Status")
    table.add_column("Created")
    table.add_column("Last Active")

    for s in items:
        status = "[green]活跃[/green]" if s.is_active else "[dim]已归档[/dim]"
        table.add_row(s.id, s.channel_id, status, _fmt_ms(s.created_at_ms), _fmt_ms(s.last_active_at_ms))

    console.print(table)


@sessions_app.command("archive")
def sessions_archive(
    days: float = typer.Option(None, "--days", "-d", help="归档超过该天数未活跃的会话"),
):
    """立即归档不活跃的会话。"""
    from chanbot.config.loader import load_config

    config = load_config()
    sessions = _make_sessions(config, _make_engine(config, require_key=False))
    count = sessions.archive_old_sessions(days if days is not None else config.sessions.archive_after_days)
    console.print(f"[green]✓[/green] 已归档 {count} 个会话")


# ============================================================================
# Status Commands
# ============================================================================


@app.command()
def status():
    """显示 chanbot 状态。"""
    from chanbot.config.loader import get_config_path, load_config

    config_path = get_config_path()
    config = load_config()
    workspace = config.workspace_path

    console.print(f"{__logo__} chanbot 状态\n")

    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Workspace: {workspace} {'[green]✓[/green]' if workspace.exists() else '[red]✗[/red]'}")

    if not config_path.exists():
        return

    console.print(f"Model: {config.engine.model}")
    console.print(f"API key: {'[green]✓[/green]' if config.engine.api_key else '[dim]not set[/dim]'}")
    console.print(f"Discord: {'[green]✓[/green]' if config.channels.discord.enabled else '[dim]disabled[/dim]'}")
    console.print(f"Channels: {len(config.channels.mappings)} mapped")
    if config.quota.enabled:
        console.print(f"Quota: [green]✓ {config.quota.service_url}[/green] (tenant {config.quota.tenant_id or '-'})")
    else:
        console.print("Quota: [dim]disabled[/dim]")

    scheduler = _make_scheduler(config)
    sched_status = scheduler.status()
    next_wake = sched_status["next_wake_at_ms"]
    console.print(f"Tasks: {sched_status['tasks']}" + (f" (next run {_fmt_ms(next_wake)})" if next_wake else ""))

    sessions = _make_sessions(config, _make_engine(config, require_key=False))
    console.print(f"Active sessions: {sessions.get_active_count()}")


if __name__ == "__main__":
    app()
