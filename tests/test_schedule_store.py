import json

from chanbot.channels.base import ChannelMapping
from chanbot.scheduler.store import ScheduleStore, task_from_dict, task_to_dict
from chanbot.scheduler.types import ScheduledTask, Trigger


def sample_task(**overrides) -> ScheduledTask:
    fields = dict(
        id="task_1a2b3c4d",
        name="standup",
        trigger=Trigger.cron("0 9 * * 1-5", "Europe/London"),
        instruction="Post the standup reminder",
        channel_id="c1",
        created_at_ms=1000,
        updated_at_ms=2000,
        last_run_at_ms=3000,
        last_status="ok",
    )
    fields.update(overrides)
    return ScheduledTask(**fields)


# 测试持久化格式使用 camelCase 键
def test_task_dict_uses_camel_case() -> None:
    data = task_to_dict(sample_task())
    assert data["channelId"] == "c1"
    assert data["lastRunAtMs"] == 3000
    assert data["trigger"] == {"kind": "cron", "expr": "0 9 * * 1-5", "atMs": None, "tz": "Europe/London"}

    one_time = sample_task(trigger=Trigger.at(5000, "Asia/Tokyo"), one_time=True, natural_time="in 5 seconds")
    assert task_from_dict(json.loads(json.dumps(task_to_dict(one_time)))) == one_time


# 测试按通道目录保存文档
def test_save_uses_channel_folder(directory, tmp_path) -> None:
    directory.add(ChannelMapping(channel_id="c2", name="ops", folder=str(tmp_path / "ops")))
    store = ScheduleStore(directory)

    store.save_channel("c1", [sample_task()])
    store.save_channel("c2", [sample_task(id="task_2", channel_id="c2")])

    assert (directory.channels_root / "c1" / "schedules.json").exists()
    assert (tmp_path / "ops" / "schedules.json").exists()
    assert json.loads(store.path_for("c2").read_text())["version"] == 1

    loaded = store.load_channel("c1")
    assert loaded.tasks == [sample_task()]


# 测试磁盘上未映射的通道也会被加载
def test_load_all_includes_unmapped_channels(store) -> None:
    store.save_channel("c9", [sample_task(id="task_9", channel_id="c9", created_at_ms=5)])
    store.save_channel("c1", [sample_task(created_at_ms=10)])

    assert set(store.known_channels()) == {"c1", "c9"}
    assert [t.id for t in store.load_all()] == ["task_9", "task_1a2b3c4d"]


# 测试损坏的文档被视为空
def test_corrupt_document_is_empty(store) -> None:
    path = store.path_for("c1")
    path.parent.mkdir(parents=True)
    path.write_text("{ not json")

    assert store.load_channel("c1").tasks == []
    assert store.load_channel("missing").tasks == []
