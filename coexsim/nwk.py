"""
Zigbee-like network layer used as the device's primitive layer.

Every management request completes later by invoking the confirm callback
registered for it, mirroring the NLME request/confirm pairs of a real
Zigbee stack. Data requests are forwarded hop by hop over the shared
channel with CSMA-CA, per-hop acknowledgements and retransmissions, so a
lost acknowledgement delivers the same payload twice.
"""
import sys
from collections import Counter, namedtuple, deque
from enum import Enum

from coexsim.mac import MAC_MAX_FRAME_RETRIES, TURNAROUND_TIME, ACK_WAIT_TIME, UNIT_BACKOFF_PERIOD, csma_ca
from coexsim.packet import (COORDINATOR_ADDR, NWK_UNREACHABLE, NWK_RESERVED_MIN, ZigbeeFrame,
							format_short_address, format_ext_address, is_reserved_address)
from coexsim.phy import (ZB_BANDWIDTH, ZB_SYMBOL_TIME, channels_in_mask, interference_power, power_collision,
						 received_power, scan_time, sinr_to_lqi, zigbee_airtime, zigbee_channel_freq)


class NwkStatus(Enum):
	SUCCESS = 0x00
	INVALID_PARAMETER = 0xC1
	INVALID_REQUEST = 0xC2
	NOT_PERMITTED = 0xC3
	STARTUP_FAILURE = 0xC4
	NO_NETWORKS = 0xCA
	ROUTE_DISCOVERY_FAILED = 0xD0
	ROUTE_ERROR = 0xD1


class Relationship(Enum):
	PARENT = 0
	CHILD = 1
	SIBLING = 2
	NONE = 3


# capability information bits
CAP_ROUTER = 0x02
CAP_RX_ON_WHEN_IDLE = 0x08
CAP_ALLOCATE_ADDRESS = 0x80

STACK_PROFILE_PRO = 2
NWK_MAX_RADIUS = 10
MAX_BROADCAST_JITTER = 0.064  # s
RREQ_LENGTH = 8 + 8 + 11  # command + NWK header + MAC header
RESPONSE_WAIT_TIME = 32 * 960 * ZB_SYMBOL_TIME  # macResponseWaitTime
MAX_STOCHASTIC_ATTEMPTS = 64

NetworkDescriptor = namedtuple("NetworkDescriptor", ["extPanId", "panId", "logCh", "stackProfile", "permitJoining"])
FormationConfirm = namedtuple("FormationConfirm", ["status", "handle"])
DiscoveryConfirm = namedtuple("DiscoveryConfirm", ["status", "networks", "handle"])
JoinConfirm = namedtuple("JoinConfirm", ["status", "networkAddress", "extPanId", "handle"])
StartRouterConfirm = namedtuple("StartRouterConfirm", ["status", "handle"])
DataIndication = namedtuple("DataIndication", ["srcAddr", "dstAddr", "linkQuality", "payload"])


class NeighborEntry:
	def __init__(self, device, nwkAddr, extPanId, relationship, lqi, depth, permitJoining, lastSeen):
		self.device = device
		self.extAddr = device.extAddr
		self.nwkAddr = nwkAddr
		self.extPanId = extPanId
		self.relationship = relationship
		self.lqi = lqi
		self.depth = depth
		self.permitJoining = permitJoining
		self.lastSeen = lastSeen


class RoutingEntry:
	def __init__(self, dstAddr, nextHop, status="ACTIVE"):
		self.dstAddr = dstAddr
		self.nextHop = nextHop
		self.status = status


class ZigbeeNwk:
	def __init__(self, device, env, scheduler, channel, peers, conf, verboseprint=None):
		self.device = device
		self.env = env
		self.scheduler = scheduler
		self.channel = channel
		self.peers = peers
		self.conf = conf
		self.verboseprint = verboseprint or (lambda *args, **kwargs: None)

		self.networkAddress = None
		self.panId = None
		self.extPanId = None
		self.logicalChannel = None
		self.depth = None
		self.routerActive = False
		self.permitJoining = False
		self.pending = None

		self.neighbors = {}
		self.routingTable = {}
		self.routeDiscoveryTable = []
		self.macSeq = 0
		self.routeRequestId = 0
		self.linkStatusStarted = False
		self.stats = Counter()

		self.formationConfirm = None
		self.discoveryConfirm = None
		self.joinConfirm = None
		self.startRouterConfirm = None
		self.dataIndication = None

	def set_formation_confirm_callback(self, callback):
		self.formationConfirm = callback

	def set_discovery_confirm_callback(self, callback):
		self.discoveryConfirm = callback

	def set_join_confirm_callback(self, callback):
		self.joinConfirm = callback

	def set_start_router_confirm_callback(self, callback):
		self.startRouterConfirm = callback

	def set_data_indication_callback(self, callback):
		self.dataIndication = callback

	@property
	def freq(self):
		return zigbee_channel_freq(self.logicalChannel)

	@property
	def joined(self):
		return self.networkAddress is not None

	def log(self, msg):
		self.verboseprint(f"{self.scheduler.stamp(self.device.nodeid)} | {msg}")

	def _begin(self, kind):
		if self.pending is not None:
			raise RuntimeError(f"Node {self.device.nodeid}: {kind} requested while {self.pending} is pending")
		self.pending = kind

	def _confirm(self, callback, params):
		self.pending = None
		if callback is not None:
			callback(params)

	def _link_rssi(self, other, fading=True):
		rssi = received_power(self.conf, self.conf.ZB_PTX, other.position, self.device.position)
		if fading and self.conf.ZB_FADING_SIGMA > 0:
			rssi += self.device.rng.gauss(0, self.conf.ZB_FADING_SIGMA)
		return rssi

	def _in_range(self, other):
		return self._link_rssi(other, fading=False) >= self.conf.ZB_SENSITIVITY

	def _network_members(self):
		return [peer for peer in self.peers
				if peer.nwk.joined and peer.nwk.extPanId == self.extPanId]

	def device_by_address(self, addr):
		for peer in self._network_members():
			if peer.nwk.networkAddress == addr:
				return peer
		return None

	### network formation
	def network_formation_request(self, channelMask, scanDuration, handle=None):
		self._begin("formation")
		# energy detection scan followed by an active scan
		delay = 2 * scan_time(channelMask, scanDuration)
		self.scheduler.schedule_after(delay, self._complete_formation, channelMask, handle, context=self.device.nodeid)

	def _complete_formation(self, channelMask, handle):
		channels = channels_in_mask(channelMask)
		if self.joined:
			status = NwkStatus.INVALID_REQUEST
		elif not channels:
			status = NwkStatus.INVALID_PARAMETER
		else:
			self.logicalChannel = channels[0]
			self.networkAddress = COORDINATOR_ADDR
			self.panId = self.device.rng.randint(0x0001, 0xFFFE)
			self.extPanId = self.device.extAddr
			self.depth = 0
			self.routerActive = True
			self.permitJoining = True
			self._start_link_status()
			status = NwkStatus.SUCCESS
			self.log(f"Network formed on channel {self.logicalChannel}, PAN id 0x{self.panId:04x}")
		self._confirm(self.formationConfirm, FormationConfirm(status, handle))

	### network discovery
	def network_discovery_request(self, channelMask, scanDuration, handle=None):
		self._begin("discovery")
		delay = scan_time(channelMask, scanDuration)
		self.scheduler.schedule_after(delay, self._complete_discovery, channelMask, handle, context=self.device.nodeid)

	def _complete_discovery(self, channelMask, handle):
		channels = channels_in_mask(channelMask)
		networks = []
		seen = set()
		for peer in self.peers:
			nwk = peer.nwk
			if peer is self.device or not nwk.routerActive or nwk.logicalChannel not in channels:
				continue
			rssi = self._link_rssi(peer)
			if rssi < self.conf.ZB_SENSITIVITY:
				continue
			self.neighbors[nwk.networkAddress] = NeighborEntry(
				peer, nwk.networkAddress, nwk.extPanId, Relationship.NONE,
				sinr_to_lqi(self.conf, rssi), nwk.depth, nwk.permitJoining, self.env.now)
			if nwk.extPanId not in seen:
				seen.add(nwk.extPanId)
				networks.append(NetworkDescriptor(nwk.extPanId, nwk.panId, nwk.logicalChannel, STACK_PROFILE_PRO, nwk.permitJoining))
		status = NwkStatus.SUCCESS if networks else NwkStatus.NO_NETWORKS
		self._confirm(self.discoveryConfirm, DiscoveryConfirm(status, networks, handle))

	### join (association)
	def join_request(self, extPanId, capabilityInfo, handle=None):
		self._begin("join")
		if self.joined:
			self.scheduler.schedule_now(self._fail_join, NwkStatus.INVALID_REQUEST, extPanId, handle, context=self.device.nodeid)
			return
		candidates = [entry for entry in self.neighbors.values()
					  if entry.extPanId == extPanId and entry.permitJoining and entry.device.nwk.routerActive]
		if not candidates:
			self.scheduler.schedule_after(RESPONSE_WAIT_TIME, self._fail_join, NwkStatus.NOT_PERMITTED, extPanId, handle, context=self.device.nodeid)
			return
		parent = max(candidates, key=lambda entry: (entry.lqi, -entry.depth))
		self.log(f"Association request to {format_short_address(parent.nwkAddr)} (LQI {parent.lqi})")
		self.scheduler.schedule_after(RESPONSE_WAIT_TIME, self._complete_join, parent, capabilityInfo, handle, context=self.device.nodeid)

	def _fail_join(self, status, extPanId, handle):
		self._confirm(self.joinConfirm, JoinConfirm(status, None, extPanId, handle))

	def _complete_join(self, parentEntry, capabilityInfo, handle):
		parent = parentEntry.device
		if not parent.nwk.permitJoining or parent.nwk.extPanId != parentEntry.extPanId:
			self._fail_join(NwkStatus.NOT_PERMITTED, parentEntry.extPanId, handle)
			return
		address = parent.nwk.allocate_address()
		if address is None:
			self._fail_join(NwkStatus.NOT_PERMITTED, parentEntry.extPanId, handle)
			return
		self.networkAddress = address
		self.extPanId = parent.nwk.extPanId
		self.panId = parent.nwk.panId
		self.logicalChannel = parent.nwk.logicalChannel
		self.depth = parent.nwk.depth + 1
		self.neighbors = {addr: entry for addr, entry in self.neighbors.items() if entry.extPanId == self.extPanId}
		parentEntry.relationship = Relationship.PARENT
		self.neighbors[parentEntry.nwkAddr] = parentEntry
		lqi = sinr_to_lqi(self.conf, parent.nwk._link_rssi(self.device))
		parent.nwk.neighbors[address] = NeighborEntry(
			self.device, address, self.extPanId, Relationship.CHILD, lqi, self.depth,
			bool(capabilityInfo & CAP_ROUTER), self.env.now)
		self._confirm(self.joinConfirm, JoinConfirm(NwkStatus.SUCCESS, address, self.extPanId, handle))

	def allocate_address(self):
		""" Stochastic address assignment, unique within this network. """
		used = {peer.nwk.networkAddress for peer in self._network_members()}
		for _ in range(MAX_STOCHASTIC_ATTEMPTS):
			address = self.device.rng.randint(0x0001, NWK_RESERVED_MIN - 1)
			if address not in used:
				return address
		return None

	### router start
	def start_router_request(self, handle=None):
		self._begin("start-router")
		self.scheduler.schedule_after(UNIT_BACKOFF_PERIOD, self._complete_start_router, handle, context=self.device.nodeid)

	def _complete_start_router(self, handle):
		if not self.joined:
			status = NwkStatus.INVALID_REQUEST
		else:
			self.routerActive = True
			self.permitJoining = True
			self._start_link_status()
			status = NwkStatus.SUCCESS
		self._confirm(self.startRouterConfirm, StartRouterConfirm(status, handle))

	def _start_link_status(self):
		if not self.linkStatusStarted:
			self.linkStatusStarted = True
			self.env.process(self._link_status_loop())

	def _link_status_loop(self):
		while True:
			for peer in self._network_members():
				if peer is not self.device and peer.nwk.routerActive and peer.nwk._in_range(self.device):
					peer.nwk.on_link_status(self.device)
			yield self.env.timeout(self.conf.LINK_STATUS_PERIOD + self.device.rng.uniform(0, MAX_BROADCAST_JITTER))

	def on_link_status(self, sender):
		nwk = sender.nwk
		lqi = sinr_to_lqi(self.conf, self._link_rssi(sender))
		entry = self.neighbors.get(nwk.networkAddress)
		if entry is not None and entry.device is sender:
			entry.lqi = lqi
			entry.lastSeen = self.env.now
			entry.permitJoining = nwk.permitJoining
		else:
			self.neighbors[nwk.networkAddress] = NeighborEntry(
				sender, nwk.networkAddress, nwk.extPanId, Relationship.SIBLING, lqi, nwk.depth, nwk.permitJoining, self.env.now)

	### routing
	def find_route(self, dstAddr):
		""" Next hop toward dstAddr and whether that next hop is dstAddr as a direct neighbor. """
		if dstAddr == self.networkAddress:
			return dstAddr, False
		if dstAddr in self.neighbors:
			return dstAddr, True
		entry = self.routingTable.get(dstAddr)
		if entry is not None and entry.status == "ACTIVE":
			return entry.nextHop, False
		return NWK_UNREACHABLE, False

	def _route_discovery(self, dstAddr):
		self.routeRequestId = (self.routeRequestId + 1) % 256
		requestId = self.routeRequestId
		path = self._shortest_path(dstAddr)
		hops = len(path) - 1 if path else NWK_MAX_RADIUS
		# route request flood and unicast route reply
		delay = 2 * sum(zigbee_airtime(RREQ_LENGTH) + self.device.rng.uniform(0, MAX_BROADCAST_JITTER) for _ in range(hops))
		yield self.env.timeout(delay)
		if not path:
			status = NwkStatus.ROUTE_DISCOVERY_FAILED
		else:
			for here, there in zip(path, path[1:]):
				here.nwk.routingTable[dstAddr] = RoutingEntry(dstAddr, there.nwk.networkAddress)
				there.nwk.routingTable[self.networkAddress] = RoutingEntry(self.networkAddress, here.nwk.networkAddress)
			status = NwkStatus.SUCCESS
		self.routeDiscoveryTable.append({
			"requestId": requestId, "src": self.networkAddress, "dst": dstAddr,
			"time": self.env.now, "status": status.name,
		})
		self.log(f"Route discovery {requestId} to {format_short_address(dstAddr)}: {status.name}")
		return status

	def _shortest_path(self, dstAddr):
		members = [peer for peer in self._network_members() if peer.nwk.routerActive]
		queue = deque([self.device])
		previous = {self.device.nodeid: None}
		while queue:
			node = queue.popleft()
			if node.nwk.networkAddress == dstAddr:
				path = [node]
				while previous[path[-1].nodeid] is not None:
					path.append(previous[path[-1].nodeid])
				return list(reversed(path))
			for peer in members:
				if peer.nodeid not in previous and peer.nwk._in_range(node):
					previous[peer.nodeid] = node
					queue.append(peer)
		return None

	### data
	def data_request(self, dstAddr, payload, discoverRoute=True):
		if not self.joined:
			self.log("Data request dropped: device has not joined a network")
			self.stats["dropped"] += 1
			return NwkStatus.INVALID_REQUEST
		if is_reserved_address(dstAddr):
			self.stats["dropped"] += 1
			return NwkStatus.INVALID_PARAMETER
		self.env.process(self._originate(dstAddr, bytes(payload), discoverRoute))
		return NwkStatus.SUCCESS

	def _originate(self, dstAddr, payload, discoverRoute):
		nextHop, _ = self.find_route(dstAddr)
		if nextHop == NWK_UNREACHABLE and discoverRoute:
			yield from self._route_discovery(dstAddr)
			nextHop, _ = self.find_route(dstAddr)
		if nextHop == NWK_UNREACHABLE:
			self.log(f"No route to {format_short_address(dstAddr)}, frame dropped")
			self.stats["noRoute"] += 1
			return
		yield from self._relay(self.networkAddress, dstAddr, payload, 0)

	def _relay(self, nwkSrc, nwkDst, payload, hops):
		if hops >= NWK_MAX_RADIUS:
			self.stats["radiusExceeded"] += 1
			return
		nextHop, _ = self.find_route(nwkDst)
		receiver = self.device_by_address(nextHop) if nextHop != NWK_UNREACHABLE else None
		if receiver is None:
			self.log(f"No route to {format_short_address(nwkDst)} while relaying, frame dropped")
			self.stats["noRoute"] += 1
			return
		yield from self._mac_transmit(receiver, nwkSrc, nwkDst, payload, hops)

	def _channel_idle(self):
		return not self.channel.busy(self.device.position, self.freq, ZB_BANDWIDTH, self.conf.ZB_CCA_THRESHOLD)

	def _mac_transmit(self, receiver, nwkSrc, nwkDst, payload, hops):
		self.macSeq = (self.macSeq + 1) % 256
		for attempt in range(MAC_MAX_FRAME_RETRIES + 1):
			if attempt:
				self.stats["retries"] += 1
			idle = yield from csma_ca(self.env, self.device.rng, self._channel_idle)
			if not idle:
				self.log("Channel access failure, frame dropped")
				self.stats["channelAccessFailure"] += 1
				return False
			frame = ZigbeeFrame(self.conf, self.device, receiver.nwk.networkAddress, nwkSrc, nwkDst, payload, self.macSeq, self.freq, hops=hops)
			self.stats["framesSent"] += 1
			yield self.channel.transmit(frame)
			received, lqi = receiver.nwk.receive(frame)
			if not received:
				yield self.env.timeout(ACK_WAIT_TIME)
				continue
			receiver.nwk.on_frame(frame, lqi)
			yield self.env.timeout(TURNAROUND_TIME)
			ack = ZigbeeFrame(self.conf, receiver, self.networkAddress, None, None, b"", self.macSeq, self.freq, isAck=True)
			yield self.channel.transmit(ack)
			if self.receive(ack)[0]:
				return True
		self.log(f"No ACK from {format_short_address(receiver.nwk.networkAddress)}, frame dropped")
		self.stats["noAck"] += 1
		return False

	def receive(self, frame):
		""" Decide at the end of a frame whether this device decoded it; returns (received, lqi). """
		signal = received_power(self.conf, frame.txPower, frame.txPos, self.device.position)
		if self.conf.ZB_FADING_SIGMA > 0:
			signal += self.device.rng.gauss(0, self.conf.ZB_FADING_SIGMA)
		if signal < self.conf.ZB_SENSITIVITY:
			return False, 0
		others = self.channel.overlapping(frame)
		if any(not f.isWifi and f.txNodeId == self.device.nodeid for f in others):
			# half duplex: we were transmitting ourselves
			return False, 0
		interference = interference_power(self.conf, others, self.device.position, frame.freq, frame.bw)
		if power_collision(signal, interference):
			self.stats["collisions"] += 1
			return False, 0
		return True, sinr_to_lqi(self.conf, signal, interference)

	def on_frame(self, frame, lqi):
		if frame.nwkDst == self.networkAddress:
			self.stats["delivered"] += 1
			if self.dataIndication is not None:
				self.dataIndication(DataIndication(frame.nwkSrc, frame.nwkDst, lqi, frame.payload))
		else:
			self.stats["relayed"] += 1
			self.env.process(self._relay(frame.nwkSrc, frame.nwkDst, frame.payload, frame.hops + 1))

	### tables
	def _table_title(self, name, stream):
		print(f"{name} (Node {self.device.nodeid} | {format_short_address(self.networkAddress)}) "
			  f"| Time {round(self.env.now, 3)} s", file=stream)

	def print_neighbor_table(self, stream=sys.stdout):
		self._table_title("Neighbor Table", stream)
		print(f"{'Nwk Addr':<10}{'IEEE Addr':<26}{'Relationship':<14}{'LQI':<6}{'Depth':<7}{'Permit Join':<12}", file=stream)
		for addr, entry in sorted(self.neighbors.items()):
			print(f"{format_short_address(addr):<10}{format_ext_address(entry.extAddr):<26}{entry.relationship.name:<14}"
				  f"{entry.lqi:<6}{entry.depth:<7}{str(entry.permitJoining):<12}", file=stream)
		print(file=stream)

	def print_routing_table(self, stream=sys.stdout):
		self._table_title("Routing Table", stream)
		print(f"{'Dest Addr':<12}{'Next Hop':<12}{'Status':<10}", file=stream)
		for addr, entry in sorted(self.routingTable.items()):
			print(f"{format_short_address(addr):<12}{format_short_address(entry.nextHop):<12}{entry.status:<10}", file=stream)
		print(file=stream)

	def print_route_discovery_table(self, stream=sys.stdout):
		self._table_title("Route Discovery Table", stream)
		print(f"{'Request':<10}{'Source':<10}{'Dest':<10}{'Time':<12}{'Status':<24}", file=stream)
		for entry in self.routeDiscoveryTable:
			print(f"{entry['requestId']:<10}{format_short_address(entry['src']):<10}{format_short_address(entry['dst']):<10}"
				  f"{round(entry['time'], 3):<12}{entry['status']:<24}", file=stream)
		print(file=stream)
