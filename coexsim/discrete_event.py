import os
from collections import deque

import pandas as pd

from coexsim.phy import interference_power


def sim_report(data, subdir, name, outdir="out"):
	os.makedirs(os.path.join(outdir, "report", subdir), exist_ok=True)
	fname = os.path.join(outdir, "report", subdir, f"{name}.csv")
	df_new = pd.DataFrame(data)
	df_new.to_csv(fname, index=False)
	return fname


class EventScheduler:
	""" Callback scheduling on top of a simpy environment.

	Each scheduled callback runs inside its own simpy process, so an
	exception raised by a callback propagates out of env.run().
	"""
	def __init__(self, env):
		self.env = env
		self.context = None

	def now(self):
		return self.env.now

	def stamp(self, nodeid=None):
		""" Log prefix: virtual time and the node a message is about.

		Without nodeid, the context tag of the callback currently running is used.
		"""
		if nodeid is None:
			nodeid = self.context
		if nodeid is None:
			return f"{round(self.env.now, 6)} s"
		return f"{round(self.env.now, 6)} s Node {nodeid}"

	def schedule_after(self, delay, callback, *args, context=None):
		if delay < 0:
			raise ValueError(f'Cannot schedule {delay} s in the past')
		return self.env.process(self._fire(delay, callback, args, context))

	def schedule_at(self, time, callback, *args, context=None):
		return self.schedule_after(time - self.env.now, callback, *args, context=context)

	def schedule_now(self, callback, *args, context=None):
		return self.schedule_after(0, callback, *args, context=context)

	def _fire(self, delay, callback, args, context):
		yield self.env.timeout(delay)
		previous = self.context
		self.context = context
		try:
			callback(*args)
		finally:
			self.context = previous


class SharedChannel:
	""" Frames of every technology currently or recently on the air. """
	def __init__(self, env, conf, horizon=0.05):
		self.env = env
		self.conf = conf
		self.horizon = horizon
		self.zigbee = deque()
		self.wifi = deque()

	def _queue(self, frame):
		return self.wifi if frame.isWifi else self.zigbee

	def transmit(self, frame):
		frame.startTime = self.env.now
		frame.endTime = self.env.now + frame.timeOnAir
		self._prune(self.zigbee)
		self._prune(self.wifi)
		self._queue(frame).append(frame)
		return self.env.timeout(frame.timeOnAir)

	def _prune(self, frames):
		cutoff = self.env.now - self.horizon
		while frames and frames[0].endTime < cutoff:
			frames.popleft()

	def on_air(self, exclude=None):
		now = self.env.now
		return [f for queue in (self.zigbee, self.wifi) for f in queue
				if f is not exclude and f.startTime <= now < f.endTime]

	def overlapping(self, frame):
		return [f for queue in (self.zigbee, self.wifi) for f in queue
				if f is not frame and f.startTime < frame.endTime and f.endTime > frame.startTime]

	def overlapping_zigbee(self, frame):
		return [f for f in self.zigbee
				if f is not frame and f.startTime < frame.endTime and f.endTime > frame.startTime]

	def energy_at(self, pos, freq, bw, exclude=None):
		return interference_power(self.conf, self.on_air(exclude), pos, freq, bw)

	def busy(self, pos, freq, bw, threshold, exclude=None):
		return self.energy_at(pos, freq, bw, exclude) >= threshold
