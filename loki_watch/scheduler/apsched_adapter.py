"""Background scheduling of trigger polls on APScheduler."""

from __future__ import annotations

from typing import Callable

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED, JobEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import ScheduleConfig, ScheduleType, TriggerConfig
from ..logging_conf import configure_logging

JOB_PREFIX = "trigger::"


class APSchedulerAdapter:
    """One job per trigger; a tick that finds the previous poll still running is dropped.

    ``max_instances=1`` keeps a single cycle in flight per trigger and
    ``coalesce=True`` folds a backlog of missed ticks into one run. Dropped and
    missed ticks are logged through the job event listener.
    """

    def __init__(self, scheduler: BackgroundScheduler | None = None) -> None:
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self.logger = configure_logging().bind(component="scheduler")
        self.started = False
        self.scheduler.add_listener(
            self._on_job_event, EVENT_JOB_MAX_INSTANCES | EVENT_JOB_MISSED | EVENT_JOB_ERROR
        )

    def start(self) -> None:
        if self.started:
            return
        self.scheduler.start()
        self.started = True
        self.logger.info("scheduler_started", jobs=len(self.list_jobs()))

    def shutdown(self) -> None:
        if not self.started:
            return
        self.scheduler.shutdown(wait=False)
        self.started = False
        self.logger.info("scheduler_stopped")

    @staticmethod
    def job_id(trigger_id: str) -> str:
        return f"{JOB_PREFIX}{trigger_id}"

    def schedule_trigger(self, trigger: TriggerConfig, callback: Callable[[TriggerConfig], None]) -> None:
        self.scheduler.add_job(
            callback,
            trigger=self._build_trigger(trigger),
            id=self.job_id(trigger.trigger_id),
            name=trigger.resolved_state_key(),
            args=[trigger],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info(
            "trigger_scheduled",
            trigger=trigger.trigger_id,
            schedule=trigger.schedule.model_dump(mode="json"),
        )

    def remove_trigger(self, trigger_id: str) -> bool:
        job = self.scheduler.get_job(self.job_id(trigger_id))
        if job is None:
            return False
        job.remove()
        self.logger.info("trigger_unscheduled", trigger=trigger_id)
        return True

    def _build_trigger(self, trigger: TriggerConfig) -> BaseTrigger:
        schedule: ScheduleConfig = trigger.schedule
        if schedule.type is ScheduleType.CRON:
            fields = str(schedule.value).split()
            if len(fields) != 5:
                raise ValueError(f"Cron schedule for {trigger.trigger_id!r} needs 5 fields: {schedule.value!r}")
            minute, hour, day, month, day_of_week = fields
            return CronTrigger(
                minute=minute,
                hour=hour,
                day=day,
                month=month,
                day_of_week=day_of_week,
                jitter=schedule.jitter,
                timezone="UTC",
            )
        if isinstance(schedule.value, dict):
            return IntervalTrigger(jitter=schedule.jitter, **schedule.value)
        if isinstance(schedule.value, (int, float)):
            return IntervalTrigger(seconds=float(schedule.value), jitter=schedule.jitter)
        raise ValueError(f"Interval schedule for {trigger.trigger_id!r} needs seconds or IntervalTrigger kwargs")

    def _on_job_event(self, event: JobEvent) -> None:
        if not event.job_id.startswith(JOB_PREFIX):
            return
        trigger_id = event.job_id[len(JOB_PREFIX):]
        if event.code == EVENT_JOB_MAX_INSTANCES:
            self.logger.warning("poll_skipped_still_running", trigger=trigger_id)
        elif event.code == EVENT_JOB_MISSED:
            self.logger.warning("poll_missed", trigger=trigger_id)
        else:
            self.logger.error("poll_job_crashed", trigger=trigger_id, error=str(getattr(event, "exception", "")))

    def list_jobs(self) -> list[dict]:
        return [
            {
                "id": job.id,
                "next_run_time": getattr(job, "next_run_time", None),
                "trigger": str(job.trigger),
            }
            for job in self.scheduler.get_jobs()
        ]


__all__ = ["APSchedulerAdapter", "JOB_PREFIX"]
