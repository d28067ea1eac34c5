import os
import sys

from coexsim.packet import parse_ext_address
from coexsim.point import Point


def make_verboseprint(verbose):
	def verboseprint(*args, **kwargs):
		if verbose:
			print(*args, **kwargs)
	return verboseprint


def gen_scenario(conf):
	""" Positions of the AP, the WiFi stations and the Zigbee ring. """
	ap = Point(0.0, 0.0, 1.5)
	# two stations sit at (5, 0) and (-5, 0)
	stations = [Point.on_circle(i, conf.NR_WIFI_STATIONS, 5.0, 1.2) for i in range(conf.NR_WIFI_STATIONS)]
	zigbee = [Point.on_circle(i, conf.NR_ZIGBEE, conf.ZIGBEE_RING_RADIUS, conf.ZIGBEE_HEIGHT)
			  for i in range(conf.NR_ZIGBEE)]
	return {"ap": ap, "stations": stations, "zigbee": zigbee}


def allocate_ext_addresses(conf):
	""" Coordinator gets the configured address, the others 00:..:01, 00:..:02, ... """
	addresses = [parse_ext_address(conf.COORDINATOR_EXT_ADDR)]
	nextAddr = 1
	while len(addresses) < conf.NR_ZIGBEE:
		if nextAddr != addresses[0]:
			addresses.append(nextAddr)
		nextAddr += 1
	return addresses


def print_node_positions(tag, nodes, stream=sys.stdout):
	for node in nodes:
		pos = node.position
		print(f"[{tag}] Node {node.nodeid} position: x={round(pos.x, 3)} y={round(pos.y, 3)} z={round(pos.z, 3)}", file=stream)


def plot_qos(rows, outdir="out"):
	""" Bar chart of PDR and average delay per heartbeat destination. """
	import matplotlib
	matplotlib.use("Agg")
	import matplotlib.pyplot as plt

	os.makedirs(os.path.join(outdir, "graphics"), exist_ok=True)
	ids = [str(row["id"]) for row in rows]
	fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(10, 4))
	ax1.bar(ids, [row["pdr"] for row in rows], color="tab:blue")
	ax1.set_ylim(0, 1.05)
	ax1.set_xlabel("Destination node")
	ax1.set_ylabel("Packet delivery ratio")
	ax2.bar(ids, [row["avgDelay"] * 1000 for row in rows], color="tab:orange")
	ax2.set_xlabel("Destination node")
	ax2.set_ylabel("Average delay (ms)")
	fig.tight_layout()
	fname = os.path.join(outdir, "graphics", "zigbee_qos.png")
	fig.savefig(fname)
	plt.close(fig)
	return fname
