# src/maday/reports/weekly.py

from __future__ import annotations

"""
Weekly report.

Aggregates tracked time of one Monday..Sunday week:
- per day: total seconds and the tasks that contributed,
- per category: seconds and share of the week.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Protocol

from ..tracking.models import Category, DailyTaskInstance, TaskTemplate

UNCATEGORIZED = "Uncategorized"
UNCATEGORIZED_COLOR = "#C7C7CC"


class ReportSource(Protocol):
    def list_instances_between(self, start_day: date, end_day: date) -> list[DailyTaskInstance]: ...
    def list_templates(self) -> list[TaskTemplate]: ...
    def list_categories(self) -> list[Category]: ...


@dataclass(frozen=True, slots=True)
class TaskDuration:
    instance_id: int
    title: str
    seconds: float


@dataclass(frozen=True, slots=True)
class DayTotal:
    day: date
    seconds: float
    tasks: list[TaskDuration]


@dataclass(frozen=True, slots=True)
class CategoryShare:
    name: str
    color: str
    seconds: float
    percentage: float


@dataclass(frozen=True, slots=True)
class WeeklyReport:
    start_day: date
    days: list[DayTotal]
    categories: list[CategoryShare]

    @property
    def end_day(self) -> date:
        return self.start_day + timedelta(days=6)

    @property
    def total_seconds(self) -> float:
        return sum(d.seconds for d in self.days)


def week_start(day: date) -> date:
    """Monday of the week containing `day`."""
    return day - timedelta(days=day.weekday())


def build_weekly_report(source: ReportSource, start_day: date) -> WeeklyReport:
    start_day = week_start(start_day)
    end_day = start_day + timedelta(days=6)

    instances = source.list_instances_between(start_day, end_day)
    template_category = {t.id: t.category_id for t in source.list_templates()}
    categories = {c.id: c for c in source.list_categories()}

    per_day: dict[date, list[TaskDuration]] = {start_day + timedelta(days=i): [] for i in range(7)}
    per_category: dict[str, tuple[str, float]] = {}

    for inst in instances:
        if inst.accumulated_seconds <= 0:
            continue
        per_day[inst.day].append(TaskDuration(inst.id, inst.title, inst.accumulated_seconds))

        category_id = template_category.get(inst.template_id) if inst.template_id is not None else None
        category = categories.get(category_id) if category_id is not None else None
        name, color = (category.name, category.color) if category else (UNCATEGORIZED, UNCATEGORIZED_COLOR)
        _, seconds = per_category.get(name, (color, 0.0))
        per_category[name] = (color, seconds + inst.accumulated_seconds)

    days = [
        DayTotal(
            day=d,
            seconds=sum(t.seconds for t in tasks),
            tasks=sorted(tasks, key=lambda t: t.seconds, reverse=True),
        )
        for d, tasks in per_day.items()
    ]

    week_total = sum(seconds for _, seconds in per_category.values())
    shares = [
        CategoryShare(
            name=name,
            color=color,
            seconds=seconds,
            percentage=(seconds / week_total * 100.0) if week_total > 0 else 0.0,
        )
        for name, (color, seconds) in per_category.items()
    ]
    shares.sort(key=lambda s: (-s.seconds, s.name))

    return WeeklyReport(start_day=start_day, days=days, categories=shares)


def format_duration(seconds: float) -> str:
    """Compact duration: "1h 20m", "5m 3s", "12s"."""
    total = max(0, int(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_clock(seconds: float) -> str:
    total = max(0, int(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
