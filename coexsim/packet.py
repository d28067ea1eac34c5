import struct
from collections import namedtuple

from coexsim.config import HEARTBEAT_HEADER_SIZE
from coexsim.mac import MAC_HEADER, ACK_LENGTH
from coexsim.phy import ZB_BANDWIDTH, WIFI_BANDWIDTH, zigbee_airtime, wifi_airtime

COORDINATOR_ADDR = 0x0000
NWK_UNREACHABLE = 0xFFFF  # also the all-devices broadcast address
NWK_RESERVED_MIN = 0xFFF8
NWK_HEADER = 8

HEARTBEAT_FORMAT = '<IId'

HeartbeatRecord = namedtuple("HeartbeatRecord", ["sourceId", "seq", "sendTime"])


def encode_heartbeat(sourceId, seq, sendTime, size):
	if size < HEARTBEAT_HEADER_SIZE:
		raise ValueError(f"Heartbeat payload of {size} bytes cannot hold the {HEARTBEAT_HEADER_SIZE}-byte header")
	header = struct.pack(HEARTBEAT_FORMAT, sourceId, seq, sendTime)
	return header + bytes(size - len(header))


def decode_heartbeat(payload):
	if len(payload) < HEARTBEAT_HEADER_SIZE:
		raise ValueError(f"Heartbeat payload of {len(payload)} bytes is shorter than the header")
	return HeartbeatRecord(*struct.unpack(HEARTBEAT_FORMAT, payload[:HEARTBEAT_HEADER_SIZE]))


def is_reserved_address(addr):
	return addr is None or addr >= NWK_RESERVED_MIN


def format_short_address(addr):
	if addr is None:
		return "--:--"
	return f"{addr >> 8:02x}:{addr & 0xFF:02x}"


def parse_ext_address(text):
	return int(text.replace(":", ""), 16)


def format_ext_address(addr):
	return ":".join(f"{(addr >> shift) & 0xFF:02x}" for shift in range(56, -8, -8))


class ZigbeeFrame:
	""" One 802.15.4 transmission: an NWK data frame on a single hop, or its ACK. """
	def __init__(self, conf, txNode, macDst, nwkSrc, nwkDst, payload, macSeq, freq, isAck=False, hops=0):
		self.conf = conf
		self.txNodeId = txNode.nodeid
		self.txPos = txNode.position
		self.txPower = conf.ZB_PTX
		self.macDst = macDst
		self.nwkSrc = nwkSrc
		self.nwkDst = nwkDst
		self.payload = payload
		self.macSeq = macSeq
		self.isAck = isAck
		self.isWifi = False
		self.hops = hops
		self.freq = freq
		self.bw = ZB_BANDWIDTH
		if isAck:
			self.packetLen = ACK_LENGTH
		else:
			self.packetLen = MAC_HEADER + NWK_HEADER + len(payload)
		self.timeOnAir = zigbee_airtime(self.packetLen)
		self.startTime = 0
		self.endTime = 0


class WifiFrame:
	def __init__(self, conf, station, genTime):
		self.txNodeId = station.nodeid
		self.txPos = station.position
		self.txPower = conf.WIFI_PTX
		self.genTime = genTime
		self.isWifi = True
		self.freq = station.freq
		self.bw = WIFI_BANDWIDTH
		self.packetLen = conf.WIFI_PACKET_SIZE
		self.timeOnAir = wifi_airtime(conf.WIFI_STANDARD, self.packetLen)
		self.startTime = 0
		self.endTime = 0
