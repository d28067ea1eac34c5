import math
import unittest

import coexsim.point


class TestPointClass(unittest.TestCase):

    def test_constructor(self):
        p = coexsim.point.Point(1, 2, 3)

        self.assertEqual(p.x, 1, "sanity check constructor")
        self.assertEqual(p.y, 2, "sanity check constructor")
        self.assertEqual(p.z, 3, "sanity check constructor")
        self.assertEqual(p.as_tuple(), (1, 2, 3))

    def test_euclidean_distance(self):
        message = "sanity-checking our euclidean distance calculation"
        # pythagorean triple (3, 4, 5)
        p1 = coexsim.point.Point(-1, -1, 0)
        p2 = coexsim.point.Point(2, 3, 0)
        self.assertEqual(p1.euclidean_distance(p2), 5.0, message)
        self.assertEqual(p2.euclidean_distance(p1), 5.0, message+", and commutativity")

        # pythagorean quadruple (2, 3, 6, 7)
        p1 = coexsim.point.Point(-1, -1, -1)
        p2 = coexsim.point.Point(1, 2, 5)
        self.assertEqual(p1.euclidean_distance(p2), 7.0, message)
        self.assertEqual(p2.euclidean_distance(p1), 7.0, message+", and commutativity")

    def test_on_circle(self):
        # five Zigbee devices on a 10 m ring, as in the reference scenario
        points = [coexsim.point.Point.on_circle(i, 5, 10.0, 1.0) for i in range(5)]

        self.assertAlmostEqual(points[0].x, 10.0)
        self.assertAlmostEqual(points[0].y, 0.0)
        for p in points:
            self.assertAlmostEqual(math.hypot(p.x, p.y), 10.0, msg="every point lies on the ring")
            self.assertEqual(p.z, 1.0)

        # neighbours on a regular pentagon are 2 r sin(36 deg) apart
        side = 2 * 10.0 * math.sin(math.pi / 5)
        self.assertAlmostEqual(points[0].euclidean_distance(points[1]), side)
        self.assertAlmostEqual(points[4].euclidean_distance(points[0]), side)


if __name__ == '__main__':
    unittest.main()
