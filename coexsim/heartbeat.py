"""
Heartbeat traffic and QoS accounting.

Sources send fixed-layout heartbeats (source id, sequence number, send
time, padding) on a fixed period once the network is ready. Destinations
count each (source, sequence) once, however many copies the mesh delivers,
and accumulate delay and link quality per destination.
"""
import sys

from coexsim.config import ConfigError, HEARTBEAT_HEADER_SIZE
from coexsim.join import ROUTABLE_PHASES
from coexsim.packet import decode_heartbeat, encode_heartbeat, format_short_address


class HeartbeatEngine:
	def __init__(self, conf, scheduler, ctx, verboseprint=None, stream=sys.stdout):
		if conf.HEARTBEAT_PAYLOAD_SIZE < HEARTBEAT_HEADER_SIZE:
			raise ConfigError(f"Heartbeat payload size {conf.HEARTBEAT_PAYLOAD_SIZE} is smaller than the "
							  f"{HEARTBEAT_HEADER_SIZE}-byte header")
		self.conf = conf
		self.stream = stream
		self.scheduler = scheduler
		self.ctx = ctx
		self.payloadSize = conf.HEARTBEAT_PAYLOAD_SIZE
		self.verboseprint = verboseprint or (lambda *args, **kwargs: None)

	def log(self, nodeid, msg):
		self.verboseprint(f"{self.scheduler.stamp(nodeid)} | {msg}")

	def schedule_heartbeat(self, src, dst, interval):
		""" Send one heartbeat from src to dst if the network is ready, then run again after interval. """
		if self._may_send(src):
			self.send_heartbeat(src, dst)
		else:
			self.ctx.skippedTicks += 1
			self.verboseprint(f"{self.scheduler.stamp()} | Heartbeat to Node {dst.nodeid} skipped, source not ready")
		self.scheduler.schedule_after(interval, self.schedule_heartbeat, src, dst, interval, context=src.nodeid)

	def _may_send(self, src):
		if not self.ctx.networkReady:
			return False
		return src.joinState is None or src.joinState.phase in ROUTABLE_PHASES

	def send_heartbeat(self, src, dst):
		seq = self.ctx.next_sequence(src.nodeid)
		payload = encode_heartbeat(src.nodeid, seq, self.scheduler.now(), self.payloadSize)
		self.ctx.accumulators[dst.nodeid].sentPackets += 1
		# the destination address is only known once it has joined, so look it up per send
		dstAddr = dst.nwk.networkAddress
		self.log(src.nodeid, f"Heartbeat {seq} to Node {dst.nodeid} [{format_short_address(dstAddr)}]")
		src.nwk.data_request(dstAddr, payload, discoverRoute=True)
		return seq

	def on_data_received(self, dst, payload, linkQuality):
		if len(payload) < HEARTBEAT_HEADER_SIZE:
			self.ctx.undersizedDropped += 1
			self.log(dst.nodeid, f"Dropped undersized payload of {len(payload)} bytes")
			return False
		record = decode_heartbeat(payload)
		if not self.ctx.duplicates.check_and_insert(dst.nodeid, record.sourceId, record.seq):
			self.ctx.duplicatesDropped += 1
			self.log(dst.nodeid, f"Dropped duplicate heartbeat {record.seq} from Node {record.sourceId}")
			return False
		delay = self.scheduler.now() - record.sendTime
		if delay < 0:
			self.ctx.clockAnomalies += 1
			print(f"{self.scheduler.stamp(dst.nodeid)} | WARNING: heartbeat {record.seq} from "
				  f"Node {record.sourceId} arrived {-delay:.6f} s before it was sent", file=self.stream)
			return False
		acc = self.ctx.accumulators[dst.nodeid]
		acc.receivedPackets += 1
		acc.cumulativeDelay += delay
		acc.cumulativeLinkQuality += linkQuality
		return True

	def summarize(self):
		rows = []
		for nodeid in sorted(self.ctx.accumulators):
			acc = self.ctx.accumulators[nodeid]
			if acc.sentPackets == 0:
				continue
			rows.append({
				"id": nodeid,
				"sent": acc.sentPackets,
				"received": acc.receivedPackets,
				"pdr": acc.pdr(),
				"avgDelay": acc.average_delay(),
				"avgLqi": acc.average_link_quality(),
			})
		return rows
