"""
Movement patterns for the headless client.

Each strategy turns elapsed time into a position around a start point; the
CLI feeds the result to ``SessionSupervisor.set_local_pose`` and faces the
participant along its direction of travel.
"""

import math
import random
from abc import ABC, abstractmethod
from enum import Enum

from .types import Vector3


class MovementPattern(Enum):
    """Available movement patterns for the headless client."""

    CIRCLE = "circle"
    FIGURE8 = "figure8"
    RANDOM_WALK = "random_walk"
    STILL = "still"


class MovementStrategy(ABC):
    """Abstract base class for movement strategies."""

    def __init__(self, start: Vector3, speed: float = 1.0, radius: float = 3.0):
        self.start = start
        self.speed = speed
        self.radius = radius
        self.current_position = start
        self.previous_position = start

    @abstractmethod
    def position_at(self, elapsed_time: float, delta_time: float) -> Vector3:
        """Return the position for ``elapsed_time`` seconds into the walk."""

    def advance(self, elapsed_time: float, delta_time: float) -> Vector3:
        self.previous_position = self.current_position
        self.current_position = self.position_at(elapsed_time, delta_time)
        return self.current_position

    def heading(self) -> float | None:
        """Yaw in degrees facing the last step, or None when standing still."""
        dx = self.current_position.x - self.previous_position.x
        dz = self.current_position.z - self.previous_position.z
        if math.sqrt(dx * dx + dz * dz) > 0.01:
            return math.degrees(math.atan2(dx, dz))
        return None

    @property
    def is_moving(self) -> bool:
        return self.heading() is not None


class CircleMovement(MovementStrategy):
    def position_at(self, elapsed_time: float, delta_time: float) -> Vector3:
        angle = elapsed_time * self.speed
        return Vector3(
            self.start.x + math.cos(angle) * self.radius,
            self.start.y,
            self.start.z + math.sin(angle) * self.radius,
        )


class Figure8Movement(MovementStrategy):
    def position_at(self, elapsed_time: float, delta_time: float) -> Vector3:
        t = elapsed_time * self.speed * 0.5
        return Vector3(
            self.start.x + math.sin(t) * self.radius,
            self.start.y,
            self.start.z + math.sin(2 * t) * self.radius * 0.5,
        )


class RandomWalkMovement(MovementStrategy):
    """Heads for a random target and picks a new one every ``change_interval``."""

    change_interval = 2.0

    def __init__(
        self,
        start: Vector3,
        speed: float = 1.0,
        radius: float = 3.0,
        rng: random.Random | None = None,
    ):
        super().__init__(start, speed, radius)
        self._rng = rng or random.Random()
        self._timer = 0.0
        self.target = start

    def position_at(self, elapsed_time: float, delta_time: float) -> Vector3:
        self._timer += delta_time
        if self._timer >= self.change_interval:
            self._timer = 0.0
            angle = self._rng.uniform(0, 2 * math.pi)
            distance = self._rng.uniform(1.0, self.radius)
            self.target = Vector3(
                self.start.x + math.cos(angle) * distance,
                self.start.y,
                self.start.z + math.sin(angle) * distance,
            )

        current = self.current_position
        dx = self.target.x - current.x
        dz = self.target.z - current.z
        length = math.sqrt(dx * dx + dz * dz)
        step = self.speed * delta_time
        if length <= step:
            return Vector3(self.target.x, current.y, self.target.z)
        return Vector3(current.x + dx / length * step, current.y, current.z + dz / length * step)


class StillMovement(MovementStrategy):
    def position_at(self, elapsed_time: float, delta_time: float) -> Vector3:
        return self.start


_STRATEGIES: dict[MovementPattern, type[MovementStrategy]] = {
    MovementPattern.CIRCLE: CircleMovement,
    MovementPattern.FIGURE8: Figure8Movement,
    MovementPattern.RANDOM_WALK: RandomWalkMovement,
    MovementPattern.STILL: StillMovement,
}


def create_movement(
    pattern: MovementPattern | str,
    start: Vector3 | None = None,
    speed: float = 1.0,
    radius: float = 3.0,
) -> MovementStrategy:
    """Create a movement strategy for the given pattern."""
    pattern = MovementPattern(pattern)
    return _STRATEGIES[pattern](start or Vector3(), speed, radius)
