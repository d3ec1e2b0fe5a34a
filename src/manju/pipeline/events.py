"""Human-readable progress log shown to the user, newest entry first."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator

logger = logging.getLogger(__name__)

__all__ = ["LogEntry", "EventLog", "Messages"]


class Messages:
    """Progress message templates emitted by the stage controller."""

    QUEUE_INITIALISED = "正在初始化分析队列..."
    SENDING_TO_ANALYSIS = "将文本发送至分析引擎..."
    ANALYSIS_DONE = "分析完成。识别题材: {genre}"
    THEMES_EXTRACTED = "提取关键词: {themes}"
    BUILDING_STRUCTURE = "正在构建叙事架构..."
    DUPLICATES_RENUMBERED = "检测到重复集数 {numbers}，已按顺序重新编号。"
    PLAN_DONE = "架构生成完毕。已规划 {count} 集内容。"
    ARTIFACTS_PURGED = "已清除 {count} 个旧剧本。"
    RUN_FAILED = "错误: {reason}"
    SCRIPT_STARTED = "正在启动第 {episode} 集的剧本生成协议..."
    SCRIPT_DONE = "第 {episode} 集剧本编译成功。"
    SCRIPT_FAILED = "第 {episode} 集剧本生成失败"
    ALL_SCRIPTED = "全部 {count} 集剧本已生成，流程完成。"


@dataclass(frozen=True, slots=True)
class LogEntry:
    message: str
    level: int = logging.INFO
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, str]:
        return {
            "message": self.message,
            "level": logging.getLevelName(self.level),
            "created_at": self.created_at.isoformat(timespec="seconds"),
        }


class EventLog:
    """Append-only log that iterates most-recent-first.

    Entries are never reordered. Without ``max_entries`` the log grows for
    the lifetime of the process; long-running hosts should set a cap, which
    evicts the oldest entries once reached.
    """

    def __init__(self, *, max_entries: int | None = None) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)

    @property
    def max_entries(self) -> int | None:
        return self._entries.maxlen

    def append(self, message: str, *, level: int = logging.INFO) -> LogEntry:
        entry = LogEntry(message=message, level=level)
        self._entries.appendleft(entry)
        logger.log(level, message)
        return entry

    def messages(self) -> list[str]:
        return [entry.message for entry in self._entries]

    def latest(self) -> LogEntry | None:
        return self._entries[0] if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(list(self._entries))

    def __getitem__(self, index: int) -> LogEntry:
        return self._entries[index]
