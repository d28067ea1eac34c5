import sys
from collections import namedtuple

from coexsim.packet import NWK_UNREACHABLE, format_ext_address, format_short_address

RouteHop = namedtuple("RouteHop", ["device", "address", "nextHop", "isNeighbor"])


class RouteTrace:
    def __init__(self, src, dst, dstAddr, time):
        self.src = src
        self.dst = dst
        self.dstAddr = dstAddr
        self.time = time
        self.hops = []
        self.reached = False
        self.truncated = False

    @property
    def unreachable(self):
        return not self.reached

    def __repr__(self):
        state = "reached" if self.reached else "unreachable"
        return f"RouteTrace({self.src.nodeid} -> {self.dst.nodeid}, {len(self.hops)} hops, {state})"


def find_device_by_address(devices, addr):
    for device in devices:
        if device.nwk.networkAddress == addr:
            return device
    return None


def trace_route(devices, src, dst, now=0.0, maxHops=None):
    """
    Follow next hops from src toward dst, asking each device on the way
    for its own next hop.

    Stops when the destination address is reached, when a device answers
    with the unreachable address, when no device owns the address being
    followed, or after maxHops steps (default: one per device), so that a
    routing loop still ends as unreachable.
    """
    dstAddr = dst.nwk.networkAddress
    trace = RouteTrace(src, dst, dstAddr, now)
    limit = len(devices) if maxHops is None else maxHops
    target = src.nwk.networkAddress
    if target is None or dstAddr is None:
        return trace
    while target != NWK_UNREACHABLE and target != dstAddr:
        if len(trace.hops) >= limit:
            trace.truncated = True
            return trace
        device = find_device_by_address(devices, target)
        if device is None:
            trace.hops.append(RouteHop(None, target, NWK_UNREACHABLE, False))
            return trace
        nextHop, neighbor = device.nwk.find_route(dstAddr)
        trace.hops.append(RouteHop(device, target, nextHop, neighbor))
        target = nextHop
    trace.reached = target == dstAddr
    return trace


def print_trace(trace, stream=sys.stdout):
    print(f"\nTime {round(trace.time, 3)} s | Traceroute to destination [{format_short_address(trace.dstAddr)}]:", file=stream)
    for count, hop in enumerate(trace.hops, start=1):
        if hop.device is None:
            print(f"{count}. [{format_short_address(hop.address)}]: No such device, Destination Unreachable", file=stream)
            continue
        where = f"{count}. Node {hop.device.nodeid} [{format_short_address(hop.address)} | {format_ext_address(hop.device.extAddr)}]: "
        if hop.nextHop == NWK_UNREACHABLE:
            print(where + "Destination Unreachable", file=stream)
        else:
            print(where + f"NextHop [{format_short_address(hop.nextHop)}]" + (" (*Neighbor)" if hop.isNeighbor else ""), file=stream)
    if trace.truncated:
        print(f"Destination Unreachable: gave up after {len(trace.hops)} hops", file=stream)
    elif trace.reached and not trace.hops:
        print("Destination reached (source is the destination)", file=stream)
    elif trace.src.nwk.networkAddress is None or trace.dstAddr is None:
        print("Destination Unreachable: device has not joined", file=stream)
    print(file=stream)
