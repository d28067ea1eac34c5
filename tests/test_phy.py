import math
import unittest

import coexsim.phy
from coexsim.config import Config


class TestPhy(unittest.TestCase):

    def test_rootFinder(self):
        # double-check we can find the roots of some polynomials
        message = "sanity-check Newton-Raphson root-finding implementation"
        tolerance = 0.0000001

        def poly1(x):
            ''' roots at x=-3, 0, 2.5 '''
            return (x+3)*(x-2.5)*x

        res = coexsim.phy.rootFinder(poly1, -3.5, tol=tolerance)
        self.assertLess(abs(res - -3), tolerance, message)

        res = coexsim.phy.rootFinder(poly1, -1, tol=tolerance)
        self.assertLess(abs(res - 0), tolerance, message)

        res = coexsim.phy.rootFinder(poly1, 3, tol=tolerance)
        self.assertLess(abs(res - 2.5), tolerance, message)

    def test_max_range_matches_link_budget(self):
        conf = Config()
        dist = coexsim.phy.estimate_max_range(conf)
        # at the maximum range the received power sits at the sensitivity
        self.assertAlmostEqual(conf.ZB_PTX - coexsim.phy.estimate_path_loss(conf, dist), conf.ZB_SENSITIVITY, places=2)

    def test_channel_frequencies(self):
        self.assertEqual(coexsim.phy.zigbee_channel_freq(11), 2405.0)
        self.assertEqual(coexsim.phy.zigbee_channel_freq(26), 2480.0)
        self.assertEqual(coexsim.phy.wifi_channel_freq(1), 2412.0)
        with self.assertRaises(ValueError):
            coexsim.phy.zigbee_channel_freq(10)

    def test_channels_in_mask(self):
        self.assertEqual(coexsim.phy.channels_in_mask(0x00007800), [11, 12, 13, 14])
        self.assertEqual(coexsim.phy.channels_in_mask(0x07FFF800), list(range(11, 27)))
        self.assertEqual(coexsim.phy.channels_in_mask(0), [])

    def test_spectral_overlap(self):
        wifi = coexsim.phy.wifi_channel_freq(1)
        # Zigbee channel 11 sits entirely inside WiFi channel 1: a tenth of the WiFi power lands in it
        self.assertAlmostEqual(coexsim.phy.spectral_overlap(2405.0, 2.0, wifi, 20.0), 0.1)
        # channel 26 is far away from WiFi channel 1
        self.assertEqual(coexsim.phy.spectral_overlap(2480.0, 2.0, wifi, 20.0), 0.0)
        # the whole Zigbee signal falls into the WiFi band
        self.assertAlmostEqual(coexsim.phy.spectral_overlap(wifi, 20.0, 2405.0, 2.0), 1.0)

    def test_power_collision(self):
        self.assertFalse(coexsim.phy.power_collision(-70, -math.inf), "no interference never collides")
        self.assertFalse(coexsim.phy.power_collision(-70, -80))
        self.assertTrue(coexsim.phy.power_collision(-70, -74), "less than 6 dB of capture margin")
        self.assertTrue(coexsim.phy.power_collision(-70, -60))

    def test_lqi_range(self):
        conf = Config()
        self.assertEqual(coexsim.phy.sinr_to_lqi(conf, conf.ZB_NOISE_FLOOR), 0)
        self.assertEqual(coexsim.phy.sinr_to_lqi(conf, conf.ZB_NOISE_FLOOR + 60), 255)
        strong = coexsim.phy.sinr_to_lqi(conf, -70)
        jammed = coexsim.phy.sinr_to_lqi(conf, -70, -80)
        self.assertGreater(strong, jammed)

    def test_airtime(self):
        # 250 kbps: 32 us per byte plus the 6-byte PHY header
        self.assertAlmostEqual(coexsim.phy.zigbee_airtime(10), 16 * 32e-6)
        self.assertLess(coexsim.phy.wifi_airtime("80211ax", 1472), coexsim.phy.wifi_airtime("80211n", 1472))

    def test_scan_time(self):
        # four channels, scan duration 2: 960 * (2^2 + 1) symbols of 16 us each
        self.assertAlmostEqual(coexsim.phy.scan_time(0x00007800, 2), 4 * 960 * 5 * 16e-6)


if __name__ == '__main__':
    unittest.main()
