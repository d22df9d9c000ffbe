"""
Bit-exact software model of the XTEA core.

XTEAState steps exactly like the gateware: one call to step() is one clock
edge. XTEARegisters puts the register map in front of it, and
encrypt_block()/decrypt_block() run a whole transaction in one call.
"""

import logging
import random
import unittest
from enum import IntEnum

logger = logging.getLogger(__name__)


DELTA = 0x9E3779B9
MASK = 0xffffffff

DEFAULT_ROUNDS = 32
MAX_ROUNDS = 63

# Register words
CORE_NAME0 = 0x78746561 # xtea
CORE_NAME1 = 0x2d313238 # -128
CORE_VERSION = 0x302e3130 # 0.10

CTRL_NEXT_BIT = 1
STATUS_READY_BIT = 0
CONFIG_ENCDEC_BIT = 0


class XTEAAddr(IntEnum):
    NAME0   = 0x00
    NAME1   = 0x01
    VERSION = 0x02
    CTRL    = 0x08
    STATUS  = 0x09
    CONFIG  = 0x0a
    ROUNDS  = 0x0b
    KEY0    = 0x10
    KEY3    = 0x13
    BLOCK0  = 0x20
    BLOCK1  = 0x21
    RESULT0 = 0x30
    RESULT1 = 0x31


class CtrlState(IntEnum):
    IDLE    = 0
    INIT    = 1
    ROUNDS0 = 2
    ROUNDS1 = 3


class XTEAConfigError(ValueError):
    pass


def v0_subkey_index(sum):
    """Subkey used when updating v0: sum[1:0]"""
    return sum & 0b11


def v1_subkey_index(sum):
    """Subkey used when updating v1: sum[12:11]"""
    return (sum >> 11) & 0b11


def half_round(active, other, sum, key, selector, encrypt=True):
    """
    One Feistel half-round. Returns the new value of the `active` half.

    `selector` is v0_subkey_index or v1_subkey_index, depending on which half
    is being updated.
    """
    mix = ((((other << 4) & MASK) ^ (other >> 5)) + other) & MASK
    keyterm = (sum + key[selector(sum)]) & MASK
    delta = mix ^ keyterm
    if encrypt:
        return (active + delta) & MASK
    return (active - delta) & MASK


def next_sum(sum, encrypt=True):
    if encrypt:
        return (sum + DELTA) & MASK
    return (sum - DELTA) & MASK


def split_key(key):
    """128-bit key -> [k0, k1, k2, k3], most significant word first"""
    return [(key >> (32 * (3 - i))) & MASK for i in range(4)]


def split_block(block):
    return [(block >> 32) & MASK, block & MASK]


def join_block(v0, v1):
    return ((v0 & MASK) << 32) | (v1 & MASK)


def check_config(block, key, rounds):
    if not 0 <= key < (1 << 128):
        raise XTEAConfigError(f"key does not fit in 128 bits: {key:#x}")
    if not 0 <= block < (1 << 64):
        raise XTEAConfigError(f"block does not fit in 64 bits: {block:#x}")
    if not 1 <= rounds <= MAX_ROUNDS:
        raise XTEAConfigError(f"rounds must be in 1..{MAX_ROUNDS}, got {rounds}")


class XTEAState:
    """
    Cycle-accurate model of the core registers and control state machine.

    Inputs are plain attributes (next, encdec, rounds, key, block), sampled
    by step() the way the gateware samples its ports on a clock edge.
    """

    def __init__(self):
        self.next = False
        self.encdec = True
        self.rounds = DEFAULT_ROUNDS
        self.key = [0, 0, 0, 0]
        self.block = [0, 0]
        self.reset()

    def reset(self):
        self.state = CtrlState.IDLE
        self.ready = True
        self.v0 = 0
        self.v1 = 0
        self.sum = 0
        self.round_ctr = 0
        self.encdec_reg = True
        self.rounds_reg = DEFAULT_ROUNDS

    @property
    def result(self):
        return [self.v0, self.v1]

    def step(self):
        state = self.state

        if state == CtrlState.IDLE:
            if self.next:
                if self.rounds == 0:
                    logger.warning("xtea: start ignored, rounds is 0")
                    return
                logger.debug("xtea: start %s, %d rounds",
                    "encrypt" if self.encdec else "decrypt", self.rounds)
                self.encdec_reg = bool(self.encdec)
                self.rounds_reg = self.rounds
                self.ready = False
                self.state = CtrlState.INIT

        elif state == CtrlState.INIT:
            self.v0, self.v1 = self.block
            self.round_ctr = 0
            self.sum = 0 if self.encdec_reg else (DELTA * self.rounds_reg) & MASK
            self.state = CtrlState.ROUNDS0

        elif state == CtrlState.ROUNDS0:
            if self.encdec_reg:
                self.v0 = half_round(self.v0, self.v1, self.sum, self.key, v0_subkey_index, True)
            else:
                self.v1 = half_round(self.v1, self.v0, self.sum, self.key, v1_subkey_index, False)
            self.sum = next_sum(self.sum, self.encdec_reg)
            self.state = CtrlState.ROUNDS1

        elif state == CtrlState.ROUNDS1:
            if self.encdec_reg:
                self.v1 = half_round(self.v1, self.v0, self.sum, self.key, v1_subkey_index, True)
            else:
                self.v0 = half_round(self.v0, self.v1, self.sum, self.key, v0_subkey_index, False)
            if self.round_ctr == self.rounds_reg - 1:
                logger.debug("xtea: done, result %08x %08x", self.v0, self.v1)
                self.ready = True
                self.state = CtrlState.IDLE
            else:
                self.round_ctr += 1
                self.state = CtrlState.ROUNDS0


class XTEARegisters:
    """
    Register map in front of an XTEAState.

    write() lands immediately, tick() advances the core by one clock edge.
    ctrl is a pulse: the next bit is seen by exactly one tick().
    """

    def __init__(self, core=None):
        self.core = core if core is not None else XTEAState()
        self.ctrl = 0

    @property
    def ready(self):
        return self.core.ready

    def write(self, addr, data):
        core = self.core
        data &= MASK

        if addr == XTEAAddr.CONFIG:
            core.encdec = bool((data >> CONFIG_ENCDEC_BIT) & 1)
        elif addr == XTEAAddr.ROUNDS:
            core.rounds = data & MAX_ROUNDS
        elif addr == XTEAAddr.CTRL or XTEAAddr.KEY0 <= addr <= XTEAAddr.KEY3 or \
                XTEAAddr.BLOCK0 <= addr <= XTEAAddr.BLOCK1:
            if not core.ready:
                logger.debug("xtea: write to %#04x dropped, core busy", addr)
                return
            if addr == XTEAAddr.CTRL:
                self.ctrl = data
            elif addr <= XTEAAddr.KEY3:
                core.key[addr - XTEAAddr.KEY0] = data
            else:
                core.block[addr - XTEAAddr.BLOCK0] = data

    def read(self, addr):
        core = self.core
        if addr == XTEAAddr.NAME0:
            return CORE_NAME0
        if addr == XTEAAddr.NAME1:
            return CORE_NAME1
        if addr == XTEAAddr.VERSION:
            return CORE_VERSION
        if addr == XTEAAddr.STATUS:
            return int(core.ready) << STATUS_READY_BIT
        if addr == XTEAAddr.RESULT0:
            return core.v0
        if addr == XTEAAddr.RESULT1:
            return core.v1
        return 0

    def tick(self):
        self.core.next = bool((self.ctrl >> CTRL_NEXT_BIT) & 1)
        self.ctrl = 0
        self.core.step()
        self.core.next = False


def run_block(block, key, rounds=DEFAULT_ROUNDS, encrypt=True):
    check_config(block, key, rounds)

    core = XTEAState()
    core.key = split_key(key)
    core.block = split_block(block)
    core.rounds = rounds
    core.encdec = encrypt

    core.next = True
    core.step()
    core.next = False
    while not core.ready:
        core.step()

    return join_block(*core.result)


def encrypt_block(block, key, rounds=DEFAULT_ROUNDS):
    return run_block(block, key, rounds, encrypt=True)


def decrypt_block(block, key, rounds=DEFAULT_ROUNDS):
    return run_block(block, key, rounds, encrypt=False)


KEY = 0x000102030405060708090a0b0c0d0e0f
PLAINTEXT = 0x4142434445464748
CIPHERTEXT = 0x497df3d072612cb5


def reference_encrypt(v0, v1, key, rounds):
    sum = 0
    for _ in range(rounds):
        v0 = (v0 + ((((v1 << 4) ^ (v1 >> 5)) + v1) ^ (sum + key[sum & 3]))) & MASK
        sum = (sum + DELTA) & MASK
        v1 = (v1 + ((((v0 << 4) ^ (v0 >> 5)) + v0) ^ (sum + key[(sum >> 11) & 3]))) & MASK
    return v0, v1


class XTEAModelTest(unittest.TestCase):
    def test_subkey_selectors(self):
        self.assertEqual(v0_subkey_index(0x00001803), 3)
        self.assertEqual(v1_subkey_index(0x00001803), 3)
        self.assertEqual(v0_subkey_index(0x00000800), 0)
        self.assertEqual(v1_subkey_index(0x00000800), 1)
        self.assertEqual(v1_subkey_index(0x00001000), 2)
        self.assertEqual(v1_subkey_index(0x00000003), 0)

    def test_known_vector(self):
        self.assertEqual(encrypt_block(PLAINTEXT, KEY), CIPHERTEXT)
        self.assertEqual(decrypt_block(CIPHERTEXT, KEY), PLAINTEXT)

    def test_matches_reference_loop(self):
        rng = random.Random(1)
        for _ in range(20):
            key = rng.getrandbits(128)
            block = rng.getrandbits(64)
            rounds = rng.randint(1, MAX_ROUNDS)
            expected = reference_encrypt(*split_block(block), split_key(key), rounds)
            self.assertEqual(encrypt_block(block, key, rounds), join_block(*expected))

    def test_round_trip(self):
        rng = random.Random(0x9e37)
        for _ in range(50):
            key = rng.getrandbits(128)
            block = rng.getrandbits(64)
            rounds = rng.randint(1, MAX_ROUNDS)
            ct = encrypt_block(block, key, rounds)
            self.assertEqual(decrypt_block(ct, key, rounds), block)

    def test_deterministic(self):
        results = {encrypt_block(PLAINTEXT, KEY, 7) for _ in range(4)}
        self.assertEqual(len(results), 1)

    def test_round_count_sensitivity(self):
        self.assertNotEqual(encrypt_block(PLAINTEXT, KEY, 1), encrypt_block(PLAINTEXT, KEY, 32))
        self.assertNotEqual(encrypt_block(PLAINTEXT, KEY, 1), encrypt_block(PLAINTEXT, KEY, 2))

    def test_bad_config(self):
        with self.assertRaises(XTEAConfigError):
            encrypt_block(PLAINTEXT, KEY, 0)
        with self.assertRaises(XTEAConfigError):
            encrypt_block(PLAINTEXT, KEY, 64)
        with self.assertRaises(XTEAConfigError):
            encrypt_block(1 << 64, KEY)
        with self.assertRaises(XTEAConfigError):
            decrypt_block(PLAINTEXT, 1 << 128)

    def test_status_lifecycle(self):
        core = XTEAState()
        core.key = split_key(KEY)
        core.block = split_block(PLAINTEXT)
        core.rounds = 5
        self.assertTrue(core.ready)

        core.next = True
        core.step()
        core.next = False
        self.assertFalse(core.ready)
        self.assertEqual(core.state, CtrlState.INIT)

        core.step()
        self.assertEqual(core.state, CtrlState.ROUNDS0)

        half_rounds = 0
        while not core.ready:
            core.step()
            half_rounds += 1
        self.assertEqual(half_rounds, 2 * 5)
        self.assertEqual(core.state, CtrlState.IDLE)
        self.assertEqual(join_block(*core.result), encrypt_block(PLAINTEXT, KEY, 5))

    def test_zero_rounds_start_ignored(self):
        core = XTEAState()
        core.rounds = 0
        core.next = True
        core.step()
        self.assertTrue(core.ready)
        self.assertEqual(core.state, CtrlState.IDLE)

    def test_start_ignored_while_busy(self):
        core = XTEAState()
        core.key = split_key(KEY)
        core.block = split_block(PLAINTEXT)
        core.next = True
        core.step()
        # next held high and inputs changed for the whole transaction
        core.encdec = False
        core.rounds = 3
        while not core.ready:
            core.step()
        self.assertEqual(join_block(*core.result), CIPHERTEXT)


class XTEARegistersTest(unittest.TestCase):
    def run_regs(self, regs, block, key, rounds=DEFAULT_ROUNDS, encrypt=True):
        for i, word in enumerate(split_key(key)):
            regs.write(XTEAAddr.KEY0 + i, word)
        for i, word in enumerate(split_block(block)):
            regs.write(XTEAAddr.BLOCK0 + i, word)
        regs.write(XTEAAddr.CONFIG, int(encrypt))
        regs.write(XTEAAddr.ROUNDS, rounds)
        regs.write(XTEAAddr.CTRL, 1 << CTRL_NEXT_BIT)
        cycles = 0
        regs.tick()
        while not regs.read(XTEAAddr.STATUS) & 1:
            regs.tick()
            cycles += 1
        return join_block(regs.read(XTEAAddr.RESULT0), regs.read(XTEAAddr.RESULT1)), cycles

    def test_identification(self):
        regs = XTEARegisters()
        self.assertEqual(regs.read(XTEAAddr.NAME0), CORE_NAME0)
        self.assertEqual(regs.read(XTEAAddr.NAME1), CORE_NAME1)
        self.assertEqual(regs.read(XTEAAddr.VERSION), CORE_VERSION)
        self.assertEqual(regs.read(XTEAAddr.STATUS), 1)

    def test_undefined_reads(self):
        regs = XTEARegisters()
        for addr in (0x03, 0x08, 0x0a, 0x10, 0x20, 0x40, 0xff):
            self.assertEqual(regs.read(addr), 0)

    def test_known_vector(self):
        regs = XTEARegisters()
        result, cycles = self.run_regs(regs, PLAINTEXT, KEY)
        self.assertEqual(result, CIPHERTEXT)
        self.assertEqual(cycles, 1 + 2 * 32)
        result, _ = self.run_regs(regs, CIPHERTEXT, KEY, encrypt=False)
        self.assertEqual(result, PLAINTEXT)

    def test_ctrl_bit0_does_not_start(self):
        regs = XTEARegisters()
        regs.write(XTEAAddr.CTRL, 1)
        regs.tick()
        self.assertTrue(regs.ready)

    def test_gated_writes_while_busy(self):
        regs = XTEARegisters()
        for i, word in enumerate(split_key(KEY)):
            regs.write(XTEAAddr.KEY0 + i, word)
        for i, word in enumerate(split_block(PLAINTEXT)):
            regs.write(XTEAAddr.BLOCK0 + i, word)
        regs.write(XTEAAddr.CONFIG, 1)
        regs.write(XTEAAddr.CTRL, 1 << CTRL_NEXT_BIT)
        regs.tick()
        self.assertFalse(regs.ready)

        regs.write(XTEAAddr.KEY0, 0xdeadbeef)
        regs.write(XTEAAddr.BLOCK0, 0xdeadbeef)
        regs.write(XTEAAddr.CONFIG, 0)
        regs.write(XTEAAddr.ROUNDS, 1)
        regs.write(XTEAAddr.CTRL, 1 << CTRL_NEXT_BIT)
        self.assertEqual(regs.core.key[0], 0x00010203)
        self.assertEqual(regs.core.rounds, 1)

        while not regs.ready:
            regs.tick()
        self.assertEqual(join_block(*regs.core.result), CIPHERTEXT)
        # the busy-time start request was dropped, not queued
        regs.tick()
        self.assertTrue(regs.ready)
