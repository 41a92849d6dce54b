"""Smoothing of remote participant poses.

Each inbound pose for a remote participant becomes the goal of a
:class:`ReconciliationTask` that morphs the rendered pose towards it over one
reconciliation window:

* the position is linearly interpolated between the rendered position at task
  start and the goal position;
* the rotation is spherically interpolated between the rendered rotation at
  task start and the goal rotation;
* both use ``elapsed / duration`` clamped to ``[0, 1]``.

A new goal for the same participant replaces the running task and starts from
whatever is currently rendered, never from the previous goal, so a late or
dropped update cannot cause a visible jump. A dropped update is not
compensated: the next one simply starts a fresh full-length task.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from .context import SessionContext
from .ticker import Ticker
from .types import Pose, Quaternion, RemoteParticipant, Vector3

logger = logging.getLogger(__name__)

# Below this angle slerp degenerates; fall back to normalized lerp
_SLERP_EPSILON = 1e-6


def lerp_vector(start: Vector3, goal: Vector3, ratio: float) -> Vector3:
    return Vector3(
        start.x + (goal.x - start.x) * ratio,
        start.y + (goal.y - start.y) * ratio,
        start.z + (goal.z - start.z) * ratio,
    )


def _normalize(q: Quaternion) -> Quaternion:
    length = math.sqrt(q.x * q.x + q.y * q.y + q.z * q.z + q.w * q.w)
    if length == 0.0:
        return Quaternion()
    return Quaternion(q.x / length, q.y / length, q.z / length, q.w / length)


def slerp(start: Quaternion, goal: Quaternion, ratio: float) -> Quaternion:
    """Spherical interpolation along the shortest arc."""
    cos_omega = start.x * goal.x + start.y * goal.y + start.z * goal.z + start.w * goal.w
    gx, gy, gz, gw = goal.x, goal.y, goal.z, goal.w
    if cos_omega < 0.0:
        cos_omega = -cos_omega
        gx, gy, gz, gw = -gx, -gy, -gz, -gw

    if 1.0 - cos_omega > _SLERP_EPSILON:
        omega = math.acos(min(cos_omega, 1.0))
        sin_omega = math.sin(omega)
        scale0 = math.sin((1.0 - ratio) * omega) / sin_omega
        scale1 = math.sin(ratio * omega) / sin_omega
    else:
        scale0 = 1.0 - ratio
        scale1 = ratio

    return _normalize(
        Quaternion(
            scale0 * start.x + scale1 * gx,
            scale0 * start.y + scale1 * gy,
            scale0 * start.z + scale1 * gz,
            scale0 * start.w + scale1 * gw,
        )
    )


def interpolate(start: Pose, goal: Pose, ratio: float) -> Pose:
    """Pose between ``start`` and ``goal``; ``ratio`` is clamped to ``[0, 1]``."""
    if ratio >= 1.0:
        return goal
    if ratio <= 0.0:
        return start
    return Pose(
        position=lerp_vector(start.position, goal.position, ratio),
        rotation=slerp(start.rotation, goal.rotation, ratio),
    )


@dataclass
class ReconciliationTask:
    target_id: str
    start_pose: Pose
    goal_pose: Pose
    start_time: float
    duration: float

    def ratio(self, now: float) -> float:
        if self.duration <= 0:
            return 1.0
        return min(max((now - self.start_time) / self.duration, 0.0), 1.0)

    def pose_at(self, now: float) -> Pose:
        return interpolate(self.start_pose, self.goal_pose, self.ratio(now))


class ParticipantReconciler:
    """Owns one reconciliation task per remote participant and steps them.

    All methods expect to be called on the session timeline (holding
    ``ctx.lock``); the internal ticker acquires it itself.
    """

    def __init__(self, ctx: SessionContext) -> None:
        self._ctx = ctx
        self._tasks: dict[str, ReconciliationTask] = {}
        self._ticker: Ticker | None = None
        self._stopped = False

    @property
    def duration(self) -> float:
        return self._ctx.config.reconciliation_duration

    def start(self) -> None:
        """Start stepping tasks on a background ticker. No-op once stopped."""
        if self._ticker is not None or self._stopped:
            return
        self._ticker = Ticker(
            "worldsync-reconciler",
            self._ctx.config.reconcile_step_interval,
            self._step_on_timeline,
        )
        self._ticker.start()

    def stop(self) -> None:
        """Stop the ticker and discard every task."""
        self._stopped = True
        if self._ticker is not None:
            self._ticker.stop()
        with self._ctx.lock:
            self.cancel_all()

    def submit(
        self, participant: RemoteParticipant, goal: Pose, now: float | None = None
    ) -> ReconciliationTask:
        """Replace the participant's task with one heading for ``goal``."""
        if now is None:
            now = self._ctx.clock()
        self._tasks.pop(participant.participant_id, None)
        task = ReconciliationTask(
            target_id=participant.participant_id,
            start_pose=participant.rendered_pose,
            goal_pose=goal,
            start_time=now,
            duration=self.duration,
        )
        self._tasks[participant.participant_id] = task
        return task

    def cancel(self, participant_id: str) -> None:
        """Drop the participant's task. No-op if it has none."""
        self._tasks.pop(participant_id, None)

    def cancel_all(self) -> None:
        self._tasks.clear()

    def get_task(self, participant_id: str) -> ReconciliationTask | None:
        return self._tasks.get(participant_id)

    def active_count(self) -> int:
        return len(self._tasks)

    def step(self, now: float | None = None) -> int:
        """Advance every task to ``now``. Returns the number of poses updated."""
        if now is None:
            now = self._ctx.clock()
        world = self._ctx.world
        if world is None:
            return 0

        updated = 0
        for participant_id, task in list(self._tasks.items()):
            participant = world.remotes.get(participant_id)
            if participant is None:
                # Entity vanished without going through cancel()
                self._tasks.pop(participant_id, None)
                continue

            participant.rendered_pose = task.pose_at(now)
            updated += 1
            self._ctx.events.on_participant_pose_updated.invoke(
                participant_id, participant.rendered_pose
            )
            if task.ratio(now) >= 1.0:
                self._tasks.pop(participant_id, None)

        return updated

    def _step_on_timeline(self) -> None:
        with self._ctx.lock:
            self.step()
