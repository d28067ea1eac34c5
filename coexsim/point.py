import math

from numpy import sqrt


class Point:
    """
    Position of a radio in 3D euclidean space, all 3 coordinates floats
    """
    def __init__(self, x: float, y: float, z: float):
        self.x = x
        self.y = y
        self.z = z

    @classmethod
    def on_circle(cls, index: int, count: int, radius: float, z: float):
        """
        The index-th of count points spread evenly on a circle of the
        given radius around the origin, starting on the positive x axis.
        """
        angle = 2 * math.pi * index / count
        return cls(radius * math.cos(angle), radius * math.sin(angle), z)

    def euclidean_distance(self, p2) -> float:
        x_diff = self.x - p2.x
        y_diff = self.y - p2.y
        z_diff = self.z - p2.z
        return float(sqrt(x_diff ** 2 + y_diff ** 2 + z_diff ** 2))

    def as_tuple(self):
        return (self.x, self.y, self.z)

    def __repr__(self):
        return f"Point(x={self.x}, y={self.y}, z={self.z})"
