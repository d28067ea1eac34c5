import io
import unittest
from contextlib import redirect_stdout

import simpy

from coexsim.config import Config
from coexsim.context import SimulationContext
from coexsim.discrete_event import EventScheduler
from coexsim.join import JoinOrchestrator, JoinPhase, JoinStateError, NetworkFormationError, ROUTER_CAPABILITY
from coexsim.node import Role
from coexsim.nwk import (DiscoveryConfirm, FormationConfirm, JoinConfirm, NetworkDescriptor, NwkStatus,
						 StartRouterConfirm)

NETWORK = NetworkDescriptor(extPanId=0xCAFE, panId=0x1a2b, logCh=11, stackProfile=2, permitJoining=True)


class ScriptedNwk:
	""" Records requests; the test delivers the confirmations. """
	def __init__(self):
		self.requests = []
		self.callbacks = {}
		self.networkAddress = None
		self.extPanId = None

	def set_formation_confirm_callback(self, callback):
		self.callbacks["formation"] = callback

	def set_discovery_confirm_callback(self, callback):
		self.callbacks["discovery"] = callback

	def set_join_confirm_callback(self, callback):
		self.callbacks["join"] = callback

	def set_start_router_confirm_callback(self, callback):
		self.callbacks["start_router"] = callback

	def network_formation_request(self, channelMask, scanDuration, handle=None):
		self.requests.append(("formation", channelMask, scanDuration, handle))

	def network_discovery_request(self, channelMask, scanDuration, handle=None):
		self.requests.append(("discovery", channelMask, scanDuration, handle))

	def join_request(self, extPanId, capabilityInfo, handle=None):
		self.requests.append(("join", extPanId, capabilityInfo, handle))

	def start_router_request(self, handle=None):
		self.requests.append(("start_router", handle))

	@property
	def handle(self):
		return self.requests[-1][-1]

	def confirm_formation(self, status=NwkStatus.SUCCESS):
		self.callbacks["formation"](FormationConfirm(status, self.handle))

	def confirm_discovery(self, networks=(NETWORK,), status=NwkStatus.SUCCESS):
		self.callbacks["discovery"](DiscoveryConfirm(status, list(networks), self.handle))

	def confirm_join(self, address, status=NwkStatus.SUCCESS):
		if status == NwkStatus.SUCCESS:
			self.networkAddress = address
			self.extPanId = NETWORK.extPanId
		self.callbacks["join"](JoinConfirm(status, address, self.extPanId, self.handle))

	def confirm_start_router(self):
		self.callbacks["start_router"](StartRouterConfirm(NwkStatus.SUCCESS, self.handle))


class FakeDevice:
	def __init__(self, nodeid, isCoordinator=False):
		self.nodeid = nodeid
		self.isCoordinator = isCoordinator
		self.role = Role.COORDINATOR if isCoordinator else Role.UNJOINED
		self.nwk = ScriptedNwk()
		self.joinState = None


class TestJoinOrchestrator(unittest.TestCase):

	def setUp(self):
		self.conf = Config()
		self.conf.NR_ZIGBEE = 3
		self.env = simpy.Environment()
		self.scheduler = EventScheduler(self.env)
		self.ctx = SimulationContext(3)
		self.devices = [FakeDevice(0, isCoordinator=True), FakeDevice(1), FakeDevice(2)]
		self.out = io.StringIO()
		self.orchestrator = JoinOrchestrator(self.conf, self.scheduler, self.ctx, self.devices, stream=self.out)

	def join(self, device, address):
		self.orchestrator.discover_networks(device)
		device.nwk.confirm_discovery()
		device.nwk.confirm_join(address)
		device.nwk.confirm_start_router()

	def test_start_schedules_formation_and_staggered_discovery(self):
		self.orchestrator.start()
		self.env.run(until=4.5)

		coordinator, first, second = self.devices
		self.assertEqual(coordinator.nwk.requests[0][:3], ("formation", 0x07FFF800, 0))
		self.assertEqual(first.nwk.requests[0][:3], ("discovery", 0x00007800, 2))
		self.assertEqual(second.nwk.requests, [], "second router starts discovery one stagger later")
		self.assertEqual(first.joinState.phase, JoinPhase.DISCOVERING)
		self.assertIsNotNone(first.joinState.pendingRequest)

		self.env.run(until=5.5)
		self.assertEqual(second.joinState.phase, JoinPhase.DISCOVERING)

	def test_formation(self):
		coordinator = self.devices[0]
		self.orchestrator.form_network(coordinator)
		self.assertEqual(coordinator.joinState.phase, JoinPhase.FORMING_NETWORK)
		coordinator.nwk.confirm_formation()
		self.assertEqual(coordinator.joinState.phase, JoinPhase.NETWORK_FORMED)
		self.assertIsNone(coordinator.joinState.pendingRequest)
		self.assertIn("Network formation confirm status = SUCCESS", self.out.getvalue())

	def test_formation_failure_is_fatal(self):
		coordinator = self.devices[0]
		self.orchestrator.form_network(coordinator)
		with self.assertRaises(NetworkFormationError):
			coordinator.nwk.confirm_formation(NwkStatus.STARTUP_FAILURE)
		self.assertEqual(coordinator.joinState.phase, JoinPhase.FAILED)

	def test_router_walks_through_every_phase(self):
		device = self.devices[1]
		self.orchestrator.discover_networks(device)
		self.assertEqual(device.joinState.phase, JoinPhase.DISCOVERING)

		device.nwk.confirm_discovery(networks=[NETWORK, NETWORK._replace(extPanId=0xBEEF)])
		self.assertEqual(device.joinState.phase, JoinPhase.JOINING)
		self.assertEqual(device.joinState.candidateNetwork.extPanId, 0xCAFE, "first network found is used")
		self.assertEqual(device.nwk.requests[-1][:3], ("join", 0xCAFE, ROUTER_CAPABILITY))

		device.nwk.confirm_join(0x0001)
		self.assertEqual(device.joinState.phase, JoinPhase.PROMOTING_TO_ROUTER)
		self.assertEqual(device.nwk.requests[-1][0], "start_router")
		self.assertEqual(self.ctx.joinedCount, 1)
		self.assertIn("joined the network SUCCESSFULLY with short address 00:01", self.out.getvalue())

		device.nwk.confirm_start_router()
		self.assertEqual(device.joinState.phase, JoinPhase.ROUTER)
		self.assertEqual(device.role, Role.ROUTER)
		self.assertIsNone(device.joinState.pendingRequest)

	def test_network_ready_exactly_once(self):
		self.join(self.devices[1], 0x0001)
		self.assertFalse(self.ctx.networkReady)

		self.env.run(until=7.0)
		self.join(self.devices[2], 0x0002)
		self.assertTrue(self.ctx.networkReady)
		self.assertEqual(self.ctx.joinedCount, 2)
		self.assertEqual(self.ctx.readyTime, 7.0)
		self.assertEqual(self.out.getvalue().count("network ready"), 1)

		with self.assertRaises(RuntimeError):
			self.ctx.mark_joined(8.0)
		self.assertEqual(self.ctx.readyTime, 7.0)

	def test_progress_is_written_to_the_stream(self):
		stdout = io.StringIO()
		with redirect_stdout(stdout):
			self.join(self.devices[1], 0x0001)
			self.join(self.devices[2], 0x0002)
		self.assertEqual(stdout.getvalue(), "")
		self.assertIn("network ready", self.out.getvalue())

	def test_discovery_failure_does_not_stop_other_devices(self):
		failing, healthy = self.devices[1], self.devices[2]
		self.orchestrator.discover_networks(failing)
		failing.nwk.confirm_discovery(networks=(), status=NwkStatus.NO_NETWORKS)

		self.assertEqual(failing.joinState.phase, JoinPhase.FAILED)
		self.assertIsNone(failing.joinState.pendingRequest)
		self.assertEqual(len(self.ctx.joinFailures), 1)
		self.assertEqual(self.ctx.joinFailures[0]["phase"], "Discovering")
		self.assertIn("ERROR: Unable to discover networks", self.out.getvalue())

		self.join(healthy, 0x0001)
		self.assertEqual(healthy.joinState.phase, JoinPhase.ROUTER)
		self.assertEqual(self.ctx.joinedCount, 1)
		self.assertFalse(self.ctx.networkReady)

	def test_empty_discovery_result_is_a_failure(self):
		device = self.devices[1]
		self.orchestrator.discover_networks(device)
		device.nwk.confirm_discovery(networks=())
		self.assertEqual(device.joinState.phase, JoinPhase.FAILED)

	def test_join_failure(self):
		device = self.devices[1]
		self.orchestrator.discover_networks(device)
		device.nwk.confirm_discovery()
		device.nwk.confirm_join(None, status=NwkStatus.NOT_PERMITTED)

		self.assertEqual(device.joinState.phase, JoinPhase.FAILED)
		self.assertEqual(self.ctx.joinedCount, 0)
		self.assertEqual(self.ctx.joinFailures[0]["phase"], "Joining")

	def test_reserved_address_is_a_failure(self):
		device = self.devices[1]
		self.orchestrator.discover_networks(device)
		device.nwk.confirm_discovery()
		device.nwk.confirm_join(0xFFF8)

		self.assertEqual(device.joinState.phase, JoinPhase.FAILED)
		self.assertEqual(self.ctx.joinedCount, 0)

	def test_retry_after_failure(self):
		self.conf.JOIN_MAX_RETRIES = 1
		device = self.devices[1]
		self.orchestrator.discover_networks(device)
		firstHandle = device.nwk.handle
		device.nwk.confirm_discovery(networks=(), status=NwkStatus.NO_NETWORKS)
		self.assertEqual(device.joinState.phase, JoinPhase.IDLE)
		self.assertEqual(device.joinState.retries, 1)

		self.env.run(until=self.conf.JOIN_RETRY_DELAY + 0.1)
		self.assertEqual(device.joinState.phase, JoinPhase.DISCOVERING)
		self.assertEqual(len(device.nwk.requests), 2)
		self.assertNotEqual(device.nwk.handle, firstHandle)

		# the retry budget is spent: the next failure is final
		device.nwk.confirm_discovery(networks=(), status=NwkStatus.NO_NETWORKS)
		self.assertEqual(device.joinState.phase, JoinPhase.FAILED)
		self.assertEqual(len(self.ctx.joinFailures), 2)

	def test_one_request_at_a_time(self):
		device = self.devices[1]
		self.orchestrator.discover_networks(device)
		with self.assertRaises(JoinStateError):
			self.orchestrator.discover_networks(device)
		self.assertEqual(len(device.nwk.requests), 1)

	def test_confirmation_out_of_phase(self):
		device = self.devices[1]
		with self.assertRaises(JoinStateError):
			device.nwk.callbacks["discovery"](DiscoveryConfirm(NwkStatus.SUCCESS, [NETWORK], 1))
		with self.assertRaises(JoinStateError):
			self.orchestrator.on_join_confirm(device, NwkStatus.SUCCESS, 0x0001)
		self.assertEqual(device.joinState.phase, JoinPhase.IDLE)

	def test_confirmation_with_stale_handle(self):
		device = self.devices[1]
		self.orchestrator.discover_networks(device)
		with self.assertRaises(JoinStateError):
			device.nwk.callbacks["discovery"](DiscoveryConfirm(NwkStatus.SUCCESS, [NETWORK], device.nwk.handle + 100))

	def test_roles_are_enforced(self):
		with self.assertRaises(JoinStateError):
			self.orchestrator.form_network(self.devices[1])
		with self.assertRaises(JoinStateError):
			self.orchestrator.discover_networks(self.devices[0])


if __name__ == '__main__':
	unittest.main()
