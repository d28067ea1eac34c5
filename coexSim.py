#!/usr/bin/env python3
""" WiFi / Zigbee coexistence simulation.
    Usage: python3 coexSim.py [--n-zigbee N] [--wifi-standard 80211n] [--wifi-data-rate 20Mbps] [--from-file conf.yaml] [--plot]
    A Zigbee network forms and its routers join, then heartbeats measure delay, LQI and
    packet delivery while WiFi stations load the same channel.
"""
import argparse
import sys

from coexsim.common import plot_qos
from coexsim.config import Config, ConfigError, WIFI_STANDARDS
from coexsim.scenario import CoexSimulation


def parse_params(args=None):
	parser = argparse.ArgumentParser(prog='coexSim', description='WiFi / Zigbee coexistence QoS simulation')
	parser.add_argument('--from-file', type=str, default=None, help='YAML file with configuration values')
	parser.add_argument('--wifi-standard', type=str, choices=WIFI_STANDARDS, help='Choose standard to use')
	parser.add_argument('--wifi-data-rate', type=str, help='Data rate for WiFi devices, e.g. 20Mbps (0 disables WiFi traffic)')
	parser.add_argument('--wifi-packet-size', type=int, help='WiFi packet size')
	parser.add_argument('--simulation-time', type=float, help='How long simulation should run (s)')
	parser.add_argument('--n-zigbee', type=int, help='Number of ZigBee devices')
	parser.add_argument('--interval', type=float, help='Heartbeat interval (s)')
	parser.add_argument('--payload-size', type=int, help='Heartbeat payload size (bytes, at least 16)')
	parser.add_argument('--join-retries', type=int, help='Discovery/join retries per device')
	parser.add_argument('--seed', type=int, help='Random seed')
	parser.add_argument('--plot', action='store_true', help='Save a plot of the Zigbee QoS')
	parser.add_argument('--quiet', action='store_true', help='Only print configuration and reports')
	return parser.parse_args(args)


def build_config(args):
	conf = Config.from_yaml(args.from_file) if args.from_file else Config()
	overrides = {
		"WIFI_STANDARD": args.wifi_standard,
		"WIFI_DATA_RATE": args.wifi_data_rate,
		"WIFI_PACKET_SIZE": args.wifi_packet_size,
		"SIMTIME": args.simulation_time,
		"NR_ZIGBEE": args.n_zigbee,
		"HEARTBEAT_INTERVAL": args.interval,
		"HEARTBEAT_PAYLOAD_SIZE": args.payload_size,
		"JOIN_MAX_RETRIES": args.join_retries,
		"SEED": args.seed,
	}
	conf.update({key: value for key, value in overrides.items() if value is not None})
	if args.quiet:
		conf.VERBOSE = False
	return conf.validate()


def main(argv=None):
	args = parse_params(argv)
	try:
		conf = build_config(args)
	except ConfigError as e:
		print(f"Invalid configuration: {e}")
		return 1

	sim = CoexSimulation(conf)
	sim.print_configuration()

	print("\n====== START OF SIMULATION ======")
	sim.run()
	print("\n====== END OF SIMULATION ======")
	sim.print_reports()

	for fname in sim.save_reports():
		print(f"Report saved to {fname}")
	if args.plot and sim.qos_report():
		print(f"Plot saved to {plot_qos(sim.qos_report())}")
	return 0


if __name__ == "__main__":
	sys.exit(main())
