"""Countdown / stopwatch state machine and the terminal tick loop."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from sprinttracker.display import console, create_timer_progress
from sprinttracker.errors import TimerError
from sprinttracker.formatting import DEFAULT_TITLE, format_clock, format_title, parse_time_input
from sprinttracker.models import TimerMode, TimerSnapshot, TimerState

log = logging.getLogger(__name__)

TICK_SECONDS = 1.0

CompletionHandler = Callable[[TimerSnapshot, datetime], None]
DisplayHandler = Callable[[str], None]


class SprintTimer:
    """Timer for a single work interval.

    Elapsed time is measured from clock readings (accumulated running time
    plus ``now - last_start``), so ticks only refresh the value and never
    drive it. Countdown elapsed time is clamped to the target.
    """

    def __init__(
        self,
        mode: TimerMode = TimerMode.MINUTES_15,
        *,
        clock: Callable[[], datetime] = datetime.now,
        on_complete: Optional[CompletionHandler] = None,
        on_display_update: Optional[DisplayHandler] = None,
        project_name: Optional[str] = None,
    ) -> None:
        self._clock = clock
        self._on_complete = on_complete
        self._on_display_update = on_display_update
        self.project_name = project_name

        self._mode = mode
        self._state = TimerState.IDLE
        self._custom_target = 0
        self._accumulated = 0.0
        self._elapsed = 0.0
        self._last_start: Optional[datetime] = None
        self._started_at: Optional[datetime] = None

    # -- read-only views ----------------------------------------------------

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def mode(self) -> TimerMode:
        return self._mode

    @property
    def started_at(self) -> Optional[datetime]:
        return self._started_at

    @property
    def target_time(self) -> int:
        """Countdown target in seconds (0 for the stopwatch)."""
        if self._mode is TimerMode.CUSTOM:
            return self._custom_target
        return self._mode.preset_seconds

    @property
    def elapsed_time(self) -> int:
        return int(self._elapsed)

    @property
    def remaining_time(self) -> int:
        if not self._mode.is_countdown:
            return 0
        return max(0, self.target_time - self.elapsed_time)

    @property
    def progress(self) -> float:
        """Percentage of the countdown target reached; 0 for the stopwatch."""
        target = self.target_time
        if not self._mode.is_countdown or target <= 0:
            return 0.0
        return min(self._elapsed / target * 100, 100.0)

    @property
    def display_time(self) -> str:
        return format_clock(self._display_seconds())

    @property
    def title(self) -> str:
        if self._state is TimerState.RUNNING:
            return format_title(self._display_seconds(), self.project_name)
        return DEFAULT_TITLE

    def snapshot(self) -> TimerSnapshot:
        return TimerSnapshot(
            state=self._state,
            mode=self._mode,
            target_time=self.target_time,
            elapsed_time=self.elapsed_time,
            started_at=self._started_at,
            paused_accumulated_time=self._accumulated,
            custom_target_seconds=self._custom_target,
        )

    # -- transitions ----------------------------------------------------------

    def start(self) -> None:
        """Start from idle, or resume from paused."""
        if self._state not in (TimerState.IDLE, TimerState.PAUSED):
            raise TimerError(f"Cannot start a timer that is {self._state.value}.")
        if self._mode.is_countdown and self.target_time <= 0:
            raise TimerError("Set a custom duration before starting.")

        now = self._clock()
        if self._state is TimerState.IDLE:
            self._started_at = now
            self._accumulated = 0.0
            self._elapsed = 0.0
        self._last_start = now
        self._state = TimerState.RUNNING
        log.debug("Timer running (%s, elapsed %.1fs)", self._mode.value, self._accumulated)
        self._emit_display()

    def pause(self) -> None:
        if self._state is not TimerState.RUNNING:
            raise TimerError(f"Cannot pause a timer that is {self._state.value}.")
        reached_at = self._reached_at()
        self._freeze()
        if self._target_reached():
            self._finish(reached_at)
            return
        self._state = TimerState.PAUSED
        self._emit_display()

    def complete(self) -> TimerSnapshot:
        """Stop the timer, hand the interval to the completion handler, reset."""
        if self._state not in (TimerState.RUNNING, TimerState.PAUSED):
            raise TimerError(f"Cannot complete a timer that is {self._state.value}.")
        if self._state is TimerState.RUNNING:
            self._freeze()
        return self._finish()

    def tick(self) -> None:
        """Refresh elapsed time; completes a countdown that reached its target."""
        if self._state is not TimerState.RUNNING:
            return
        self._elapsed = self._clamp(self._running_total(self._clock()))
        if self._target_reached():
            reached_at = self._reached_at()
            self._freeze()
            self._finish(reached_at)
            return
        self._emit_display()

    def reset(self) -> None:
        """Discard any in-progress interval and return to idle."""
        self._state = TimerState.IDLE
        self._accumulated = 0.0
        self._elapsed = 0.0
        self._last_start = None
        self._started_at = None
        self._emit_display()

    def set_mode(self, mode: TimerMode) -> None:
        if self._state is not TimerState.IDLE:
            raise TimerError("Stop the timer before switching modes.")
        self._mode = mode
        self.reset()

    def set_custom_target(self, text: str) -> int:
        """Arm the custom countdown from free text. Returns the target in seconds."""
        seconds = parse_time_input(text)
        if seconds <= 0:
            raise ValueError(f"Could not read a duration from {text!r}.")
        return self.set_custom_seconds(seconds)

    def set_custom_seconds(self, seconds: int) -> int:
        if self._state is not TimerState.IDLE:
            raise TimerError("Stop the timer before changing its duration.")
        if seconds <= 0:
            raise ValueError("A custom countdown needs a positive duration.")
        self._custom_target = seconds
        self._mode = TimerMode.CUSTOM
        self.reset()
        return seconds

    # -- internals --------------------------------------------------------------

    def _running_total(self, now: datetime) -> float:
        if self._last_start is None:
            return self._accumulated
        return self._accumulated + max(0.0, (now - self._last_start).total_seconds())

    def _clamp(self, seconds: float) -> float:
        if self._mode.is_countdown:
            return min(seconds, float(self.target_time))
        return seconds

    def _freeze(self) -> None:
        self._accumulated = self._clamp(self._running_total(self._clock()))
        self._elapsed = self._accumulated
        self._last_start = None

    def _reached_at(self) -> Optional[datetime]:
        """Instant the running countdown hit its target, if it has."""
        if self._last_start is None or not self._mode.is_countdown:
            return None
        return self._last_start + timedelta(seconds=self.target_time - self._accumulated)

    def _target_reached(self) -> bool:
        return self._mode.is_countdown and self._elapsed >= self.target_time

    def _finish(self, completed_at: Optional[datetime] = None) -> TimerSnapshot:
        self._state = TimerState.COMPLETED
        completed_at = completed_at or self._clock()
        snapshot = self.snapshot()
        log.info(
            "Timer completed after %ss (%s)", snapshot.elapsed_time, self._mode.value
        )
        try:
            if self._on_complete is not None:
                self._on_complete(snapshot, completed_at)
        finally:
            self.reset()
        return snapshot

    def _display_seconds(self) -> float:
        if not self._mode.is_countdown:
            return self._elapsed
        if self._state is TimerState.IDLE:
            return self.target_time
        if self._state in (TimerState.RUNNING, TimerState.PAUSED):
            return max(0.0, self.target_time - self._elapsed)
        return self._elapsed

    def _emit_display(self) -> None:
        if self._on_display_update is not None:
            self._on_display_update(self.title)


def run_timer(timer: SprintTimer, label: str = "Sprint") -> bool:
    """Drive a timer in the terminal. Returns True if a countdown ran to its end.

    Ctrl-C completes the interval early, so stopwatch runs are always
    ended that way.
    """
    if timer.state is TimerState.IDLE:
        timer.start()

    countdown = timer.mode.is_countdown
    progress = create_timer_progress(countdown=countdown)

    try:
        with progress:
            task = progress.add_task(
                label,
                total=timer.target_time if countdown else None,
                clock=timer.display_time,
            )
            while timer.state is TimerState.RUNNING:
                time.sleep(TICK_SECONDS)
                timer.tick()
                finished = timer.state is not TimerState.RUNNING
                progress.update(
                    task,
                    completed=timer.target_time if finished else timer.elapsed_time,
                    clock=timer.display_time,
                )
    except KeyboardInterrupt:
        console.print("\n[yellow]Timer stopped early.[/yellow]")
        if timer.state in (TimerState.RUNNING, TimerState.PAUSED):
            timer.complete()
        return False

    # Bell notification
    console.print("\a", end="")
    return True
