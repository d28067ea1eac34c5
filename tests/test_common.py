import io
import os
import tempfile
import unittest
from contextlib import redirect_stdout

import coexsim.common
from coexsim.config import Config
from coexsim.packet import format_ext_address, parse_ext_address


class TestCommonFunctions(unittest.TestCase):

    def test_gen_scenario(self):
        conf = Config()
        positions = coexsim.common.gen_scenario(conf)

        self.assertEqual(positions["ap"].as_tuple(), (0.0, 0.0, 1.5))
        expected = [(5.0, 0.0, 1.2), (-5.0, 0.0, 1.2)]
        self.assertEqual(len(positions["stations"]), 2)
        for p, (x, y, z) in zip(positions["stations"], expected):
            self.assertAlmostEqual(p.x, x)
            self.assertAlmostEqual(p.y, y)
            self.assertAlmostEqual(p.z, z)
        self.assertEqual(len(positions["zigbee"]), conf.NR_ZIGBEE)
        for p in positions["zigbee"]:
            self.assertAlmostEqual(positions["ap"].euclidean_distance(p) ** 2, conf.ZIGBEE_RING_RADIUS ** 2 + 0.5 ** 2)

    def test_extra_stations(self):
        conf = Config()
        conf.NR_WIFI_STATIONS = 4
        stations = coexsim.common.gen_scenario(conf)["stations"]
        self.assertEqual(len(stations), 4)
        self.assertEqual(len({p.as_tuple() for p in stations}), 4, "no two stations share a position")

    def test_allocate_ext_addresses(self):
        conf = Config()
        addresses = coexsim.common.allocate_ext_addresses(conf)

        self.assertEqual(len(addresses), conf.NR_ZIGBEE)
        self.assertEqual(format_ext_address(addresses[0]), "00:00:00:00:00:00:ca:fe")
        self.assertEqual(addresses[1:], [1, 2, 3, 4])
        self.assertEqual(parse_ext_address("00:00:00:00:00:00:CA:FE"), 0xCAFE)

    def test_make_verboseprint(self):
        out = io.StringIO()
        with redirect_stdout(out):
            coexsim.common.make_verboseprint(False)("hidden")
            coexsim.common.make_verboseprint(True)("shown")
        self.assertEqual(out.getvalue(), "shown\n")

    def test_plot_qos(self):
        rows = [
            {"id": 0, "sent": 10, "received": 9, "pdr": 0.9, "avgDelay": 0.004, "avgLqi": 180.0},
            {"id": 4, "sent": 10, "received": 10, "pdr": 1.0, "avgDelay": 0.003, "avgLqi": 200.0},
        ]
        with tempfile.TemporaryDirectory() as outdir:
            fname = coexsim.common.plot_qos(rows, outdir)
            self.assertTrue(os.path.exists(fname))


if __name__ == '__main__':
    unittest.main()
