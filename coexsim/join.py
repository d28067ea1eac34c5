"""
Network join orchestration.

Stands in for the application layer that would normally bring Zigbee
devices into a network. The coordinator forms the network; every other
device runs

    Idle -> Discovering -> Joining -> Joined -> PromotingToRouter -> Router

where each arrow is taken in response to a confirmation delivered by the
device's network layer. Failures end in Failed. Each device has at most one
request outstanding, correlated with its confirmation by a handle.
"""
import itertools
import sys
from enum import Enum

from coexsim.node import Role
from coexsim.nwk import CAP_ALLOCATE_ADDRESS, CAP_ROUTER, CAP_RX_ON_WHEN_IDLE, NwkStatus
from coexsim.packet import format_ext_address, format_short_address, is_reserved_address


class JoinPhase(Enum):
	IDLE = "Idle"
	FORMING_NETWORK = "FormingNetwork"
	NETWORK_FORMED = "NetworkFormed"
	DISCOVERING = "Discovering"
	JOINING = "Joining"
	JOINED = "Joined"
	PROMOTING_TO_ROUTER = "PromotingToRouter"
	ROUTER = "Router"
	FAILED = "Failed"


ROUTABLE_PHASES = (JoinPhase.ROUTER, JoinPhase.NETWORK_FORMED)
ROUTER_CAPABILITY = CAP_ROUTER | CAP_RX_ON_WHEN_IDLE | CAP_ALLOCATE_ADDRESS


class JoinStateError(RuntimeError):
	pass


class NetworkFormationError(RuntimeError):
	pass


class JoinState:
	def __init__(self):
		self.phase = JoinPhase.IDLE
		self.pendingRequest = None
		self.candidateNetwork = None
		self.retries = 0

	def __repr__(self):
		return f"JoinState({self.phase.value}, pending={self.pendingRequest})"


class JoinOrchestrator:
	def __init__(self, conf, scheduler, ctx, devices, verboseprint=None, stream=sys.stdout):
		self.conf = conf
		self.stream = stream
		self.scheduler = scheduler
		self.ctx = ctx
		self.devices = devices
		self.verboseprint = verboseprint or (lambda *args, **kwargs: None)
		self._handles = itertools.count(1)
		for device in devices:
			device.joinState = JoinState()
			nwk = device.nwk
			nwk.set_formation_confirm_callback(lambda params, device=device: self.on_formation_confirm(device, params))
			nwk.set_discovery_confirm_callback(lambda params, device=device: self.on_discovery_confirm(device, params))
			nwk.set_join_confirm_callback(lambda params, device=device: self.on_join_confirm(device, params.status, params.networkAddress, params.handle))
			nwk.set_start_router_confirm_callback(lambda params, device=device: self.on_router_promotion_done(device, params.handle))

	def log(self, device, msg):
		self.verboseprint(f"{self.scheduler.stamp(device.nodeid)} | {msg}")

	def start(self):
		""" Schedule formation on the coordinator and staggered discovery on every other device. """
		for i, device in enumerate(self.devices):
			if device.isCoordinator:
				self.scheduler.schedule_at(self.conf.FORMATION_TIME, self.form_network, device, context=device.nodeid)
			else:
				when = self.conf.DISCOVERY_START + i * self.conf.DISCOVERY_STAGGER
				self.scheduler.schedule_at(when, self.discover_networks, device, context=device.nodeid)

	def _expect(self, device, *phases):
		state = device.joinState
		if state.phase not in phases:
			expected = " or ".join(phase.value for phase in phases)
			raise JoinStateError(f"Node {device.nodeid} is {state.phase.value}, expected {expected}")
		return state

	def _issue(self, device, phase):
		state = device.joinState
		if state.pendingRequest is not None:
			raise JoinStateError(f"Node {device.nodeid} already has request {state.pendingRequest} outstanding")
		state.pendingRequest = next(self._handles)
		state.phase = phase
		return state.pendingRequest

	def _settle(self, device, handle):
		state = device.joinState
		if handle != state.pendingRequest:
			raise JoinStateError(f"Node {device.nodeid} got a confirmation for request {handle}, "
								 f"outstanding is {state.pendingRequest}")
		state.pendingRequest = None
		return state

	### coordinator
	def form_network(self, device):
		if not device.isCoordinator:
			raise JoinStateError(f"Node {device.nodeid} is not the coordinator and cannot form a network")
		self._expect(device, JoinPhase.IDLE)
		handle = self._issue(device, JoinPhase.FORMING_NETWORK)
		self.log(device, "Network formation request")
		device.nwk.network_formation_request(self.conf.FORMATION_CHANNEL_MASK, self.conf.FORMATION_SCAN_DURATION, handle)

	def on_formation_confirm(self, device, params):
		self._expect(device, JoinPhase.FORMING_NETWORK)
		state = self._settle(device, params.handle)
		if params.status != NwkStatus.SUCCESS:
			state.phase = JoinPhase.FAILED
			raise NetworkFormationError(f"Node {device.nodeid} could not form a network | status: {params.status.name}")
		state.phase = JoinPhase.NETWORK_FORMED
		print(f"{round(self.scheduler.now(), 3)} s Node {device.nodeid} | Network formation confirm status = {params.status.name}", file=self.stream)

	### routers
	def discover_networks(self, device):
		if device.isCoordinator:
			raise JoinStateError(f"Node {device.nodeid} is the coordinator and does not discover networks")
		self._expect(device, JoinPhase.IDLE)
		handle = self._issue(device, JoinPhase.DISCOVERING)
		self.log(device, "Network discovery request")
		device.nwk.network_discovery_request(self.conf.DISCOVERY_CHANNEL_MASK, self.conf.DISCOVERY_SCAN_DURATION, handle)

	def on_discovery_confirm(self, device, params):
		self._expect(device, JoinPhase.DISCOVERING)
		state = self._settle(device, params.handle)
		if params.status != NwkStatus.SUCCESS or not params.networks:
			self._fail(device, f"Unable to discover networks | status: {params.status.name}")
			return
		self.log(device, f"Network discovery confirm received. Networks found ({len(params.networks)}):")
		for network in params.networks:
			self.log(device, f"  ExtPanID: {format_ext_address(network.extPanId)} CH: {network.logCh} "
							 f"Pan ID: 0x{network.panId:04x} Stack profile: {network.stackProfile}")
		# first found, no ranking
		state.candidateNetwork = params.networks[0]
		handle = self._issue(device, JoinPhase.JOINING)
		device.nwk.join_request(state.candidateNetwork.extPanId, ROUTER_CAPABILITY, handle)

	def on_join_confirm(self, device, status, assignedAddress, handle=None):
		state = self._expect(device, JoinPhase.JOINING)
		if handle is not None:
			self._settle(device, handle)
		else:
			state.pendingRequest = None
		if status != NwkStatus.SUCCESS:
			self._fail(device, f"The device FAILED to join the network with status {status.name}")
			return
		if is_reserved_address(assignedAddress):
			self._fail(device, f"The device was assigned reserved address {format_short_address(assignedAddress)}")
			return
		state.phase = JoinPhase.JOINED
		print(f"{round(self.scheduler.now(), 3)} s Node {device.nodeid} | The device joined the network SUCCESSFULLY "
			  f"with short address {format_short_address(assignedAddress)} on the Extended PAN Id: "
			  f"{format_ext_address(device.nwk.extPanId) if device.nwk.extPanId is not None else '-'}", file=self.stream)
		if self.ctx.mark_joined(self.scheduler.now()):
			print(f"{round(self.scheduler.now(), 3)} s | All {self.ctx.joinedCount} devices joined, network ready", file=self.stream)
		# a joined device must become a router before it accepts joins of its own
		handle = self._issue(device, JoinPhase.PROMOTING_TO_ROUTER)
		device.nwk.start_router_request(handle)

	def on_router_promotion_done(self, device, handle=None):
		state = self._expect(device, JoinPhase.JOINED, JoinPhase.PROMOTING_TO_ROUTER)
		if handle is not None:
			self._settle(device, handle)
		else:
			state.pendingRequest = None
		state.phase = JoinPhase.ROUTER
		device.role = Role.ROUTER
		self.log(device, "Started as router")

	def _fail(self, device, reason):
		state = device.joinState
		failedIn = state.phase
		state.phase = JoinPhase.FAILED
		state.pendingRequest = None
		self.ctx.record_failure(self.scheduler.now(), device.nodeid, failedIn.value, reason)
		print(f"{round(self.scheduler.now(), 3)} s Node {device.nodeid} | ERROR: {reason}", file=self.stream)
		if state.retries < self.conf.JOIN_MAX_RETRIES:
			state.retries += 1
			state.phase = JoinPhase.IDLE
			state.candidateNetwork = None
			self.log(device, f"Retrying discovery ({state.retries}/{self.conf.JOIN_MAX_RETRIES}) in {self.conf.JOIN_RETRY_DELAY} s")
			self.scheduler.schedule_after(self.conf.JOIN_RETRY_DELAY, self.discover_networks, device, context=device.nodeid)
