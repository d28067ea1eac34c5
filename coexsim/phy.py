import math

VERBOSE = False


def verboseprint(*args, **kwargs):
    if VERBOSE:
        print(*args, **kwargs)


ZB_BANDWIDTH = 2.0  # MHz
WIFI_BANDWIDTH = 20.0  # MHz
ZB_BYTE_TIME = 32e-6  # s, 250 kbps
ZB_PHY_HEADER = 6  # SHR + PHR bytes
ZB_SYMBOL_TIME = 16e-6  # s
ZB_CAPTURE_THRESHOLD = 6  # dB

WIFI_PHY_RATE = {  # Mbps, single stream 20 MHz, highest MCS
    "80211n": 65.0,
    "80211ac": 78.0,
    "80211ax": 143.4,
}
WIFI_PREAMBLE = {  # s
    "80211n": 36e-6,
    "80211ac": 40e-6,
    "80211ax": 48e-6,
}
WIFI_MAC_OVERHEAD = 36 + 8 + 20  # MAC header/FCS + LLC + IP/UDP bytes
WIFI_SLOT = 9e-6
WIFI_SIFS = 16e-6
WIFI_DIFS = WIFI_SIFS + 2 * WIFI_SLOT
WIFI_ACK_TIME = 44e-6
WIFI_CW_MIN = 15


def zigbee_channel_freq(channel):
    """ Centre frequency in MHz of an 802.15.4 channel on page 0 (11~26). """
    if not 11 <= channel <= 26:
        raise ValueError(f"Not a 2.4 GHz 802.15.4 channel: {channel}")
    return 2405.0 + 5.0 * (channel - 11)


def wifi_channel_freq(channel):
    if not 1 <= channel <= 13:
        raise ValueError(f"Not a 2.4 GHz WiFi channel: {channel}")
    return 2407.0 + 5.0 * channel


def channels_in_mask(mask):
    return [ch for ch in range(11, 27) if mask & (1 << ch)]


def spectral_overlap(victim_freq, victim_bw, interferer_freq, interferer_bw):
    """ Fraction of the interferer's power that falls inside the victim's band. """
    low = max(victim_freq - victim_bw / 2, interferer_freq - interferer_bw / 2)
    high = min(victim_freq + victim_bw / 2, interferer_freq + interferer_bw / 2)
    if high <= low:
        return 0.0
    return (high - low) / interferer_bw


def estimate_path_loss(conf, dist):
    # Co-located radios would make log(dist) blow up
    dist = max(dist, .001)
    # Log-Distance model
    return conf.LPLD0 + 10 * conf.GAMMA * math.log10(dist / conf.D0)


def dbm_to_mw(dbm):
    return 10 ** (dbm / 10.0)


def mw_to_dbm(mw):
    if mw <= 0:
        return -math.inf
    return 10 * math.log10(mw)


def received_power(conf, ptx, tx_pos, rx_pos):
    return ptx - estimate_path_loss(conf, tx_pos.euclidean_distance(rx_pos))


def interference_power(conf, frames, rx_pos, freq, bw):
    """ Total in-band power (dBm) of the given frames at rx_pos. """
    total = 0.0
    for other in frames:
        overlap = spectral_overlap(freq, bw, other.freq, other.bw)
        if overlap == 0:
            continue
        total += dbm_to_mw(received_power(conf, other.txPower, other.txPos, rx_pos)) * overlap
    return mw_to_dbm(total)


def power_collision(signal, interference, threshold=ZB_CAPTURE_THRESHOLD):
    """ True if the wanted signal does not capture the receiver over the interference. """
    if interference == -math.inf:
        return False
    return signal - interference < threshold


def sinr_to_lqi(conf, signal, interference=-math.inf):
    """ Map the SINR onto the 0~255 LQI range of 802.15.4 (0 dB -> 0, 40 dB -> 255). """
    noise = mw_to_dbm(dbm_to_mw(conf.ZB_NOISE_FLOOR) + (dbm_to_mw(interference) if interference != -math.inf else 0.0))
    sinr = signal - noise
    lqi = int(round(sinr * 255 / 40.0))
    return max(0, min(255, lqi))


def zigbee_airtime(nbytes):
    return (ZB_PHY_HEADER + nbytes) * ZB_BYTE_TIME


def wifi_airtime(standard, nbytes):
    return WIFI_PREAMBLE[standard] + (nbytes + WIFI_MAC_OVERHEAD) * 8 / (WIFI_PHY_RATE[standard] * 1e6)


def scan_time(channel_mask, scan_duration):
    """ Duration of one MAC scan: aBaseSuperframeDuration * (2^n + 1) symbols per channel. """
    per_channel = 960 * (2 ** scan_duration + 1) * ZB_SYMBOL_TIME
    return per_channel * len(channels_in_mask(channel_mask))


def rootFinder(func, x0, args=(), tol=1, maxiter=100):
    """Newton-Raphson root finder."""
    x = x0
    for _ in range(maxiter):
        fx = func(x, *args)
        dfx = (func(x + 1e-6, *args) - fx) / 1e-6
        if dfx == 0:
            verboseprint("Warning: could not estimate max. range")
            return x
        x_new = x - fx / dfx
        if abs(x_new - x) < tol:
            return x_new
        x = x_new
    verboseprint("Warning: could not estimate max. range")
    return x


def zero_link_budget(dist, conf):
    return conf.ZB_PTX - estimate_path_loss(conf, dist) - conf.ZB_SENSITIVITY


def estimate_max_range(conf):
    return rootFinder(zero_link_budget, 10, args=(conf,), tol=1e-3)
