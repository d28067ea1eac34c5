from coexsim.phy import ZB_SYMBOL_TIME, zigbee_airtime


VERBOSE = False
MAC_MIN_BE = 3
MAC_MAX_BE = 5
MAC_MAX_CSMA_BACKOFFS = 4
MAC_MAX_FRAME_RETRIES = 3
UNIT_BACKOFF_PERIOD = 20 * ZB_SYMBOL_TIME  # 320 us
CCA_TIME = 8 * ZB_SYMBOL_TIME
TURNAROUND_TIME = 12 * ZB_SYMBOL_TIME
MAC_HEADER = 11  # frame control, seq, PAN id, short addresses, FCS
ACK_LENGTH = 5
ACK_WAIT_TIME = 54 * ZB_SYMBOL_TIME + zigbee_airtime(ACK_LENGTH)


def verboseprint(*args, **kwargs):
    if VERBOSE:
        print(*args, **kwargs)


def random_backoff(rng, be):
    """ Random backoff of 0 .. 2^BE - 1 unit backoff periods, in seconds. """
    return rng.randint(0, 2 ** be - 1) * UNIT_BACKOFF_PERIOD


def csma_ca(env, rng, channel_idle):
    """ Unslotted CSMA-CA as a simpy process.

    channel_idle() is evaluated after every backoff; the process returns
    True once a clear channel assessment succeeds and False after
    macMaxCSMABackoffs busy assessments (channel access failure).
    """
    nb = 0
    be = MAC_MIN_BE
    while True:
        yield env.timeout(random_backoff(rng, be) + CCA_TIME)
        if channel_idle():
            return True
        nb += 1
        be = min(be + 1, MAC_MAX_BE)
        verboseprint(f'{round(env.now, 6)} CCA busy, NB={nb} BE={be}')
        if nb > MAC_MAX_CSMA_BACKOFFS:
            return False
