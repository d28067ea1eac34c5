"""
Wires one coexistence simulation together: WiFi AP and stations, the
Zigbee devices on a ring around them, the join orchestrator, heartbeat
flows and the scheduled traceroutes. Each CoexSimulation owns its own simpy
environment and SimulationContext.
"""
import sys
import random
import time

import pandas as pd
import simpy

from coexsim.common import allocate_ext_addresses, gen_scenario, make_verboseprint, print_node_positions
from coexsim.context import SimulationContext
from coexsim.discrete_event import EventScheduler, SharedChannel, sim_report
from coexsim.heartbeat import HeartbeatEngine
from coexsim.join import JoinOrchestrator
from coexsim.node import MeshDevice, WifiAccessPoint, WifiStation, make_wifi_medium
from coexsim.phy import estimate_max_range
from coexsim.route import print_trace, trace_route


class CoexSimulation:
	def __init__(self, conf, stream=sys.stdout):
		conf.validate()
		self.conf = conf
		self.stream = stream
		self.verboseprint = make_verboseprint(conf.VERBOSE)
		self.env = simpy.Environment()
		self.scheduler = EventScheduler(self.env)
		self.channel = SharedChannel(self.env, conf)
		self.ctx = SimulationContext(conf.NR_ZIGBEE)
		self.rng = random.Random(conf.SEED)
		self.traces = []
		self.wallTime = None

		positions = gen_scenario(conf)
		self.ap = WifiAccessPoint(conf, self.channel, positions["ap"])
		medium = make_wifi_medium(self.env)
		self.stations = [
			WifiStation(conf, self.env, self.channel, medium, self.ap, f"STA{i}", pos, f"10.0.0.{i + 2}",
						random.Random(self.rng.random()), self.verboseprint)
			for i, pos in enumerate(positions["stations"])
		]

		self.devices = []
		for i, (pos, extAddr) in enumerate(zip(positions["zigbee"], allocate_ext_addresses(conf))):
			device = MeshDevice(conf, self.env, self.scheduler, self.channel, self.devices, i, pos, extAddr,
								isCoordinator=(i == 0), verboseprint=self.verboseprint)
			self.devices.append(device)

		self.orchestrator = JoinOrchestrator(conf, self.scheduler, self.ctx, self.devices, self.verboseprint, self.stream)
		self.heartbeat = HeartbeatEngine(conf, self.scheduler, self.ctx, self.verboseprint, self.stream)
		for device in self.devices:
			device.nwk.set_data_indication_callback(
				lambda params, device=device: self.heartbeat.on_data_received(device, params.payload, params.linkQuality))

		self.orchestrator.start()
		self._schedule_traffic()

	def _schedule_traffic(self):
		conf = self.conf
		for src, dst in conf.heartbeat_flows:
			self.scheduler.schedule_at(conf.HEARTBEAT_START, self.heartbeat.schedule_heartbeat,
									   self.devices[src], self.devices[dst], conf.HEARTBEAT_INTERVAL, context=src)
		src, dst = conf.heartbeat_flows[0]
		traceTime = conf.HEARTBEAT_START + conf.TRACE_DELAY
		if traceTime < conf.SIMTIME:
			self.scheduler.schedule_at(traceTime, self.trace_and_print, self.devices[src], self.devices[dst])
		if traceTime + 1 < conf.SIMTIME:
			self.scheduler.schedule_at(traceTime + 1, self.print_tables, self.devices[src])

	def trace_route(self, src, dst, maxHops=None):
		return trace_route(self.devices, src, dst, self.env.now, maxHops)

	def trace_and_print(self, src, dst):
		trace = self.trace_route(src, dst)
		self.traces.append(trace)
		print_trace(trace, self.stream)
		return trace

	def print_tables(self, device):
		device.nwk.print_neighbor_table(self.stream)
		device.nwk.print_routing_table(self.stream)
		device.nwk.print_route_discovery_table(self.stream)

	def print_configuration(self):
		conf = self.conf
		print("wifi-zigbee-coex - configuration:", file=self.stream)
		print(f"> wifiStandard: {conf.WIFI_STANDARD}", file=self.stream)
		print(f"> wifiDataRate: {conf.WIFI_DATA_RATE}", file=self.stream)
		print(f"> wifiPacketSize: {conf.WIFI_PACKET_SIZE}", file=self.stream)
		print(f"> simulationTime: {conf.SIMTIME}", file=self.stream)
		print(f"> nZigbee: {conf.NR_ZIGBEE}", file=self.stream)
		print(f"> heartbeat: every {conf.HEARTBEAT_INTERVAL} s from {conf.HEARTBEAT_START} s, "
			  f"{conf.HEARTBEAT_PAYLOAD_SIZE} bytes, flows {conf.heartbeat_flows}", file=self.stream)
		print(f"> estimated Zigbee range: {round(estimate_max_range(conf), 1)} m", file=self.stream)
		print_node_positions("AP", [self.ap], self.stream)
		print_node_positions("STA", self.stations, self.stream)
		print_node_positions("ZB", self.devices, self.stream)

	def run(self, until=None):
		t0 = time.perf_counter()
		self.env.run(until=until if until is not None else self.conf.SIMTIME)
		self.wallTime = time.perf_counter() - t0
		return self

	def qos_report(self):
		return self.heartbeat.summarize()

	def wifi_report(self):
		return [station.flow_stats() for station in self.stations]

	def join_report(self):
		return [{
			"id": device.nodeid,
			"role": device.role.value,
			"phase": device.joinState.phase.value,
			"address": device.nwk.networkAddress,
			"retries": device.joinState.retries,
		} for device in self.devices]

	def print_reports(self):
		out = self.stream
		print("\n===== Zigbee Join Summary =====", file=out)
		print(pd.DataFrame(self.join_report()).to_string(index=False), file=out)
		print(f"Joined devices: {self.ctx.joinedCount}/{self.ctx.joinTarget}, network ready: {self.ctx.networkReady}"
			  + (f" at {round(self.ctx.readyTime, 3)} s" if self.ctx.readyTime is not None else ""), file=out)

		print("\n===== Zigbee Heartbeat QoS =====", file=out)
		rows = self.qos_report()
		if rows:
			df = pd.DataFrame(rows)
			df["avgDelay"] = (df["avgDelay"] * 1000).round(3)
			df["pdr"] = df["pdr"].round(4)
			df["avgLqi"] = df["avgLqi"].round(1)
			print(df.rename(columns={"avgDelay": "avgDelay(ms)"}).to_string(index=False), file=out)
		else:
			print("No heartbeats sent.", file=out)
		print(f"Duplicates dropped: {self.ctx.duplicatesDropped}, undersized dropped: {self.ctx.undersizedDropped}, "
			  f"clock anomalies: {self.ctx.clockAnomalies}", file=out)

		print("\n===== WiFi Flow Statistics =====", file=out)
		flows = self.wifi_report()
		if flows and any(flow["txPackets"] for flow in flows):
			df = pd.DataFrame(flows).round(3)
			print(df.to_string(index=False), file=out)
		else:
			print("No WiFi traffic.", file=out)
		print("===============================", file=out)
		if self.wallTime is not None:
			print(f"Simulation finished in {round(self.wallTime, 2)} s", file=out)

	def save_reports(self, outdir="out", subdir=None):
		subdir = subdir or f"{self.conf.WIFI_STANDARD}_{self.conf.NR_ZIGBEE}"
		return [
			sim_report(self.qos_report(), subdir, "zigbee_qos", outdir),
			sim_report(self.wifi_report(), subdir, "wifi_flows", outdir),
			sim_report(self.join_report(), subdir, "zigbee_join", outdir),
		]
