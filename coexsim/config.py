import re

import yaml


class ConfigError(ValueError):
	pass


ALL_CHANNELS = 0x07FFF800  # channels 11~26
HEARTBEAT_HEADER_SIZE = 16

WIFI_STANDARDS = ("80211n", "80211ac", "80211ax")

_RATE_UNITS = {
	"": 1,
	"bps": 1,
	"b/s": 1,
	"kbps": 1e3,
	"kb/s": 1e3,
	"mbps": 1e6,
	"mb/s": 1e6,
	"gbps": 1e9,
	"gb/s": 1e9,
}


def parse_data_rate(value):
	""" Convert a data rate such as "5kbps", "60Mbps" or 0 to bits per second. """
	if isinstance(value, (int, float)):
		rate = float(value)
	else:
		match = re.fullmatch(r"\s*([0-9]*\.?[0-9]+)\s*([A-Za-z/]*)\s*", str(value))
		if match is None or match.group(2).lower() not in _RATE_UNITS:
			raise ConfigError(f"Invalid data rate: {value!r}")
		rate = float(match.group(1)) * _RATE_UNITS[match.group(2).lower()]
	if rate < 0:
		raise ConfigError(f"Data rate must not be negative: {value!r}")
	return rate


class Config:
	def __init__(self):
		self.SEED = 1
		self.VERBOSE = True

		# simulation
		self.SIMTIME = 60.0  # s

		# Zigbee network
		self.NR_ZIGBEE = 5
		self.ZIGBEE_RING_RADIUS = 10.0  # m
		self.ZIGBEE_HEIGHT = 1.0  # m
		self.COORDINATOR_EXT_ADDR = "00:00:00:00:00:00:CA:FE"
		self.STREAM_STRIDE = 10  # device i uses random stream i * STREAM_STRIDE
		self.FORMATION_TIME = 1.0  # s
		self.FORMATION_CHANNEL_MASK = ALL_CHANNELS
		self.FORMATION_SCAN_DURATION = 0
		self.DISCOVERY_START = 3.0  # s
		self.DISCOVERY_STAGGER = 1.0  # s
		self.DISCOVERY_CHANNEL_MASK = 0x00007800  # channels 11~14
		self.DISCOVERY_SCAN_DURATION = 2
		self.JOIN_MAX_RETRIES = 0
		self.JOIN_RETRY_DELAY = 2.0  # s
		self.LINK_STATUS_PERIOD = 15.0  # s

		# Zigbee radio
		self.ZB_PTX = 0.0  # dBm
		self.ZB_SENSITIVITY = -100.0  # dBm
		self.ZB_CCA_THRESHOLD = -85.0  # dBm
		self.ZB_NOISE_FLOOR = -100.0  # dBm
		self.ZB_FADING_SIGMA = 4.0  # dB

		# heartbeat traffic
		self.HEARTBEAT_START = 16.0  # s
		self.HEARTBEAT_INTERVAL = 0.5  # s
		self.HEARTBEAT_PAYLOAD_SIZE = 32  # bytes
		self.HEARTBEAT_FLOWS = None  # list of [src, dst]; None means [[0, NR_ZIGBEE - 1]]
		self.TRACE_DELAY = 3.0  # s after the first heartbeat

		# WiFi network
		self.WIFI_STANDARD = "80211n"
		self.WIFI_DATA_RATE = "20Mbps"
		self.WIFI_PACKET_SIZE = 1472  # bytes
		self.NR_WIFI_STATIONS = 2
		self.WIFI_CHANNEL = 1
		self.WIFI_PTX = 16.0  # dBm
		self.WIFI_SIR_THRESHOLD = 10.0  # dB
		self.WIFI_QUEUE_SIZE = 100  # packets
		self.WIFI_START = 0.0  # s

		# propagation (log-distance)
		self.LPLD0 = 40.05  # dB at D0 for 2.4 GHz
		self.D0 = 1.0  # m
		self.GAMMA = 3.0

	@property
	def heartbeat_flows(self):
		if self.HEARTBEAT_FLOWS is None:
			return [[0, self.NR_ZIGBEE - 1]]
		return [list(flow) for flow in self.HEARTBEAT_FLOWS]

	@property
	def wifi_rate_bps(self):
		return parse_data_rate(self.WIFI_DATA_RATE)

	def update(self, values):
		for key, value in values.items():
			attr = key.upper()
			if not hasattr(self, attr) or attr.startswith("_"):
				raise ConfigError(f"Unknown configuration key: {key}")
			setattr(self, attr, value)
		return self

	@classmethod
	def from_yaml(cls, path):
		conf = cls()
		with open(path, 'r') as file:
			values = yaml.safe_load(file) or {}
		if not isinstance(values, dict):
			raise ConfigError(f"{path}: expected a mapping of configuration values")
		conf.update(values)
		conf.validate()
		return conf

	def validate(self):
		if self.NR_ZIGBEE < 2:
			raise ConfigError("Need at least two Zigbee devices.")
		if self.SIMTIME <= 0:
			raise ConfigError("Simulation time must be positive.")
		if self.HEARTBEAT_INTERVAL <= 0:
			raise ConfigError("Heartbeat interval must be positive.")
		if self.HEARTBEAT_PAYLOAD_SIZE < HEARTBEAT_HEADER_SIZE:
			raise ConfigError(f"Heartbeat payload size {self.HEARTBEAT_PAYLOAD_SIZE} is smaller than the {HEARTBEAT_HEADER_SIZE}-byte header")
		for src, dst in self.heartbeat_flows:
			if not (0 <= src < self.NR_ZIGBEE and 0 <= dst < self.NR_ZIGBEE) or src == dst:
				raise ConfigError(f"Invalid heartbeat flow {src} -> {dst}")
		if self.WIFI_STANDARD not in WIFI_STANDARDS:
			raise ConfigError(f"Choose standard to use: {' | '.join(WIFI_STANDARDS)}")
		if self.WIFI_PACKET_SIZE <= 0:
			raise ConfigError("WiFi packet size must be positive.")
		if self.NR_WIFI_STATIONS < 0:
			raise ConfigError("Number of WiFi stations must not be negative.")
		if self.JOIN_MAX_RETRIES < 0:
			raise ConfigError("Join retries must not be negative.")
		parse_data_rate(self.WIFI_DATA_RATE)
		return self
