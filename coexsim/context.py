"""
Per-simulation shared state.

Everything the join orchestrator and the heartbeat engine share lives on a
SimulationContext instance, so several simulations can run in one process
without seeing each other's counters.
"""
from collections import defaultdict


class QoSAccumulator:
    """ Additive per-destination counters, never decremented. """
    def __init__(self):
        self.sentPackets = 0
        self.receivedPackets = 0
        self.cumulativeDelay = 0.0
        self.cumulativeLinkQuality = 0

    def pdr(self):
        if self.sentPackets == 0:
            return 0.0
        return self.receivedPackets / self.sentPackets

    def average_delay(self):
        if self.receivedPackets == 0:
            return 0.0
        return self.cumulativeDelay / self.receivedPackets

    def average_link_quality(self):
        if self.receivedPackets == 0:
            return 0.0
        return self.cumulativeLinkQuality / self.receivedPackets


class DuplicateTracker:
    """ Sequence numbers already counted, per (destination, source) pair. """
    def __init__(self):
        self.seen = defaultdict(set)

    def check_and_insert(self, dst, src, seq):
        """ Record seq for the pair; False if it was already recorded. """
        seen = self.seen[(dst, src)]
        if seq in seen:
            return False
        seen.add(seq)
        return True

    def sequences(self, dst, src):
        return sorted(self.seen.get((dst, src), ()))


class SimulationContext:
    def __init__(self, totalMeshDevices):
        self.totalMeshDevices = totalMeshDevices
        self.joinedCount = 0
        self.networkReady = False
        self.readyTime = None
        self.joinFailures = []
        self.sequenceCounters = defaultdict(int)
        self.accumulators = defaultdict(QoSAccumulator)
        self.duplicates = DuplicateTracker()
        self.duplicatesDropped = 0
        self.undersizedDropped = 0
        self.clockAnomalies = 0
        self.skippedTicks = 0

    @property
    def joinTarget(self):
        return self.totalMeshDevices - 1

    def mark_joined(self, now):
        """ Count one more joined device; True if this join made the network ready. """
        if self.joinedCount >= self.joinTarget:
            raise RuntimeError(f"More than {self.joinTarget} devices reported joining")
        self.joinedCount += 1
        if self.joinedCount == self.joinTarget and not self.networkReady:
            self.networkReady = True
            self.readyTime = now
            return True
        return False

    def next_sequence(self, src):
        seq = self.sequenceCounters[src]
        self.sequenceCounters[src] = seq + 1
        return seq

    def record_failure(self, now, nodeid, phase, reason):
        self.joinFailures.append({"time": now, "node": nodeid, "phase": phase, "reason": reason})
