import random
from collections import deque
from enum import Enum

import simpy

from coexsim.nwk import ZigbeeNwk
from coexsim.packet import WifiFrame, format_ext_address
from coexsim.phy import (WIFI_BANDWIDTH, WIFI_DIFS, WIFI_SIFS, WIFI_SLOT, WIFI_ACK_TIME, WIFI_CW_MIN,
						 interference_power, power_collision, received_power, wifi_channel_freq)

WIFI_RETRY_LIMIT = 7
WIFI_CW_MAX = 1023


class Role(Enum):
	COORDINATOR = "Coordinator"
	ROUTER = "Router"
	UNJOINED = "Unjoined"


class MeshDevice:
	""" A Zigbee device: identity, position, random stream and its network layer. """
	def __init__(self, conf, env, scheduler, channel, peers, nodeid, position, extAddr, isCoordinator=False, verboseprint=None):
		self.conf = conf
		self.env = env
		self.nodeid = nodeid
		self.position = position
		self.extAddr = extAddr
		self.role = Role.COORDINATOR if isCoordinator else Role.UNJOINED
		self.streamSeed = nodeid * conf.STREAM_STRIDE
		self.rng = random.Random(conf.SEED * 1000003 + self.streamSeed)
		self.joinState = None
		self.nwk = ZigbeeNwk(self, env, scheduler, channel, peers, conf, verboseprint)

	@property
	def isCoordinator(self):
		return self.role == Role.COORDINATOR

	@property
	def networkAddress(self):
		return self.nwk.networkAddress

	def __repr__(self):
		return f"MeshDevice({self.nodeid}, {format_ext_address(self.extAddr)}, {self.role.value})"


class WifiAccessPoint:
	def __init__(self, conf, channel, position, nodeid="AP", address="10.0.0.1"):
		self.conf = conf
		self.channel = channel
		self.nodeid = nodeid
		self.position = position
		self.address = address
		self.freq = wifi_channel_freq(conf.WIFI_CHANNEL)

	def receive(self, frame):
		""" True if the frame survives Zigbee interference at the AP. """
		signal = received_power(self.conf, frame.txPower, frame.txPos, self.position)
		interferers = self.channel.overlapping_zigbee(frame)
		interference = interference_power(self.conf, interferers, self.position, frame.freq, WIFI_BANDWIDTH)
		return not power_collision(signal, interference, self.conf.WIFI_SIR_THRESHOLD)


class WifiStation:
	""" Constant bit rate sender towards the AP, with a bounded drop-tail queue. """
	def __init__(self, conf, env, channel, medium, ap, nodeid, position, address, rng, verboseprint=None):
		self.conf = conf
		self.env = env
		self.channel = channel
		self.medium = medium
		self.ap = ap
		self.nodeid = nodeid
		self.position = position
		self.address = address
		self.rng = rng
		self.verboseprint = verboseprint or (lambda *args, **kwargs: None)
		self.freq = wifi_channel_freq(conf.WIFI_CHANNEL)

		self.rate = conf.wifi_rate_bps
		self.interArrival = conf.WIFI_PACKET_SIZE * 8 / self.rate if self.rate > 0 else None
		self.nextArrival = conf.WIFI_START
		self.queue = deque()

		self.txPackets = 0
		self.rxPackets = 0
		self.rxBytes = 0
		self.queueDrops = 0
		self.retryDrops = 0
		self.collisions = 0
		self.timeFirstTx = None
		self.timeLastRx = None
		self.delaySum = 0.0
		self.jitterSum = 0.0
		self.lastDelay = None

		if self.interArrival is not None:
			env.process(self.run())

	@property
	def lostPackets(self):
		return self.queueDrops + self.retryDrops

	def _enqueue_arrivals(self):
		while self.nextArrival <= self.env.now:
			self.txPackets += 1
			if self.timeFirstTx is None:
				self.timeFirstTx = self.nextArrival
			if len(self.queue) < self.conf.WIFI_QUEUE_SIZE:
				self.queue.append(self.nextArrival)
			else:
				self.queueDrops += 1
			self.nextArrival += self.interArrival

	def run(self):
		while True:
			self._enqueue_arrivals()
			if not self.queue:
				yield self.env.timeout(self.nextArrival - self.env.now)
				continue
			genTime = self.queue.popleft()
			delivered = yield from self._transmit(genTime)
			if not delivered:
				self.retryDrops += 1

	def _transmit(self, genTime):
		cw = WIFI_CW_MIN
		for attempt in range(WIFI_RETRY_LIMIT + 1):
			with self.medium.request() as req:
				yield req
				yield self.env.timeout(WIFI_DIFS + self.rng.randint(0, cw) * WIFI_SLOT)
				frame = WifiFrame(self.conf, self, genTime)
				yield self.channel.transmit(frame)
				if self.ap.receive(frame):
					yield self.env.timeout(WIFI_SIFS + WIFI_ACK_TIME)
					self._record_rx(frame)
					return True
				self.collisions += 1
				yield self.env.timeout(WIFI_SIFS + WIFI_ACK_TIME)
			cw = min(2 * cw + 1, WIFI_CW_MAX)
		self.verboseprint(f"{round(self.env.now, 6)} s {self.nodeid} | frame dropped after {WIFI_RETRY_LIMIT} retries")
		return False

	def _record_rx(self, frame):
		delay = self.env.now - frame.genTime
		self.rxPackets += 1
		self.rxBytes += frame.packetLen
		self.timeLastRx = self.env.now
		if self.lastDelay is not None:
			self.jitterSum += abs(delay - self.lastDelay)
		self.lastDelay = delay
		self.delaySum += delay

	def flow_stats(self):
		if self.rxPackets and self.timeLastRx > self.timeFirstTx:
			throughput = self.rxBytes * 8.0 / ((self.timeLastRx - self.timeFirstTx) * 1e6)
		else:
			throughput = 0.0
		return {
			"source": self.address,
			"destination": self.ap.address,
			"txPackets": self.txPackets,
			"rxPackets": self.rxPackets,
			"lostPackets": self.lostPackets,
			"throughputMbps": throughput,
			"avgDelayMs": self.delaySum / self.rxPackets * 1000 if self.rxPackets else 0.0,
			"jitterMs": self.jitterSum / (self.rxPackets - 1) * 1000 if self.rxPackets > 1 else 0.0,
		}


def make_wifi_medium(env):
	# stations contend through one idealised DCF: a single frame exchange at a time
	return simpy.Resource(env, capacity=1)
