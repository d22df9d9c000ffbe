import random

from nmigen import *
from nmigen.back.pysim import Settle

from ..bus.buswrapper import AccessFlags, BusWrapper
from ...model import xtea as model
from ...model.xtea import DELTA, DEFAULT_ROUNDS, XTEAAddr
from ...util.sim import tick, reg_read, reg_write, xtea_transaction
from ...util.test import FHDLTestCase


def v0_subkey_select(sum):
    """Subkey index used when updating v0"""
    return sum[0:2]


def v1_subkey_select(sum):
    """Subkey index used when updating v1"""
    return sum[11:13]


class XTEARoundEngine(Elaboratable):
    """
    Combinational XTEA half-round.

    o_active = i_active +/- ((((i_other << 4) ^ (i_other >> 5)) + i_other) ^ (i_sum + key[selector(i_sum)]))

    The selector decides which bits of the sum pick the subkey, so the engine
    updating v0 and the one updating v1 differ only in `selector`.
    """
    def __init__(self, selector):
        self.selector = selector

        self.i_active = Signal(32)
        self.i_other = Signal(32)
        self.i_sum = Signal(32)
        self.i_key = [Signal(32, name=f"i_key{i}") for i in range(4)]
        self.i_encdec = Signal()
        self.o_active = Signal(32)

    def elaborate(self, platform):
        m = Module()

        other = self.i_other
        sum = self.i_sum
        key = Array(self.i_key)

        mix = Signal(32)
        keyterm = Signal(32)
        delta = Signal(32)

        m.d.comb += [
            mix.eq(((other << 4) ^ (other >> 5)) + other),
            keyterm.eq(sum + key[self.selector(sum)]),
            delta.eq(mix ^ keyterm),
        ]

        with m.If(self.i_encdec):
            m.d.comb += self.o_active.eq(self.i_active + delta)
        with m.Else():
            m.d.comb += self.o_active.eq(self.i_active - delta)

        return m


class XTEACore(Elaboratable):
    """
    Iterative XTEA core.
    Each half-round takes a single cycle, so a block with N rounds takes
    2 * N + 2 clock cycles from the accepted next pulse to o_ready.

    rounds and encdec are latched when a transaction starts. A next pulse
    while busy, or while i_rounds is 0, is ignored.
    """

    def __init__(self):
        self.i_key = [Signal(32, name=f"i_key{i}") for i in range(4)]
        self.i_block = [Signal(32, name=f"i_block{i}") for i in range(2)]
        self.i_encdec = Signal(reset=1)
        self.i_rounds = Signal(6, reset=DEFAULT_ROUNDS)
        self.i_next = Signal()
        self.o_ready = Signal(reset=1)
        self.o_result = [Signal(32, name=f"o_result{i}") for i in range(2)]

        self.v0 = Signal(32)
        self.v1 = Signal(32)
        self.sum = Signal(32)
        self.round = Signal(6)
        self.encdec = Signal(reset=1)
        self.rounds = Signal(6, reset=DEFAULT_ROUNDS)

    def elaborate(self, platform):
        m = Module()

        v0 = self.v0
        v1 = self.v1
        sum = self.sum
        round = self.round
        encdec = self.encdec
        rounds = self.rounds

        m.submodules.engine_v0 = engine_v0 = XTEARoundEngine(v0_subkey_select)
        m.submodules.engine_v1 = engine_v1 = XTEARoundEngine(v1_subkey_select)

        for engine, active, other in ((engine_v0, v0, v1), (engine_v1, v1, v0)):
            m.d.comb += [
                engine.i_active.eq(active),
                engine.i_other.eq(other),
                engine.i_sum.eq(sum),
                engine.i_encdec.eq(encdec),
                [engine.i_key[i].eq(k) for i, k in enumerate(self.i_key)],
            ]

        m.d.comb += [
            self.o_result[0].eq(v0),
            self.o_result[1].eq(v1),
        ]

        with m.FSM():
            with m.State("IDLE"):
                with m.If(self.i_next & (self.i_rounds != 0)):
                    m.d.sync += [
                        encdec.eq(self.i_encdec),
                        rounds.eq(self.i_rounds),
                        self.o_ready.eq(0),
                    ]
                    m.next = "INIT"
            with m.State("INIT"):
                m.d.sync += [
                    v0.eq(self.i_block[0]),
                    v1.eq(self.i_block[1]),
                    round.eq(0),
                ]
                with m.If(encdec):
                    m.d.sync += sum.eq(0)
                with m.Else():
                    m.d.sync += sum.eq(rounds * DELTA)
                m.next = "ROUNDS0"
            with m.State("ROUNDS0"):
                # First half uses the sum from before this round's update
                with m.If(encdec):
                    m.d.sync += [
                        v0.eq(engine_v0.o_active),
                        sum.eq(sum + DELTA),
                    ]
                with m.Else():
                    m.d.sync += [
                        v1.eq(engine_v1.o_active),
                        sum.eq(sum - DELTA),
                    ]
                m.next = "ROUNDS1"
            with m.State("ROUNDS1"):
                with m.If(encdec):
                    m.d.sync += v1.eq(engine_v1.o_active)
                with m.Else():
                    m.d.sync += v0.eq(engine_v0.o_active)
                with m.If(round == rounds - 1):
                    m.d.sync += self.o_ready.eq(1)
                    m.next = "IDLE"
                with m.Else():
                    m.d.sync += round.eq(round + 1)
                    m.next = "ROUNDS0"

        return m


class XTEA(Elaboratable):
    """
    XTEA core behind a register file. See XTEAAddr for the map.

    ctrl, key and block writes are dropped while the core is busy.
    config and rounds always take the write, the core latches them at start.
    """
    def __init__(self, address_width=8):
        self.core = core = XTEACore()

        self.ctrl = Signal(2)
        self.config = Signal(reset=1)
        self.rounds = Signal(6, reset=DEFAULT_ROUNDS)
        self.key = [Signal(32, name=f"key{i}") for i in range(4)]
        self.block = [Signal(32, name=f"block{i}") for i in range(2)]

        self.bus = bus = BusWrapper(address_width=address_width, io_width=32)

        bus.add_endpoints(AccessFlags.R, [
            Const(model.CORE_NAME0, 32),
            Const(model.CORE_NAME1, 32),
            Const(model.CORE_VERSION, 32),
        ], start=XTEAAddr.NAME0)
        bus.add_endpoints(AccessFlags.R, [core.o_ready], start=XTEAAddr.STATUS)
        bus.add_endpoints(AccessFlags.R, core.o_result, start=XTEAAddr.RESULT0)

        bus.add_endpoints(AccessFlags.W, [self.ctrl], start=XTEAAddr.CTRL, enable=core.o_ready, strobe=True)
        bus.add_endpoints(AccessFlags.W, [self.config, self.rounds], start=XTEAAddr.CONFIG)
        bus.add_endpoints(AccessFlags.W, self.key, start=XTEAAddr.KEY0, enable=core.o_ready)
        bus.add_endpoints(AccessFlags.W, self.block, start=XTEAAddr.BLOCK0, enable=core.o_ready)

    def ports(self):
        bus = self.bus
        return [bus.cs, bus.we, bus.addr, bus.write_data, bus.read_data]

    def elaborate(self, platform):
        m = Module()

        core = self.core
        m.submodules.core = core
        m.submodules.bus = self.bus

        m.d.comb += [
            core.i_next.eq(self.ctrl[model.CTRL_NEXT_BIT]),
            core.i_encdec.eq(self.config[model.CONFIG_ENCDEC_BIT]),
            core.i_rounds.eq(self.rounds),
            [core.i_key[i].eq(k) for i, k in enumerate(self.key)],
            [core.i_block[i].eq(b) for i, b in enumerate(self.block)],
        ]

        return m


KEY = model.split_key(model.KEY)
PLAINTEXT = model.split_block(model.PLAINTEXT)
CIPHERTEXT = model.split_block(model.CIPHERTEXT)


class XTEARoundEngineTest(FHDLTestCase):
    def check_engine(self, selector, model_selector):
        engine = XTEARoundEngine(selector)
        rng = random.Random(11)

        def process():
            for _ in range(32):
                key = [rng.getrandbits(32) for _ in range(4)]
                active, other, sum = (rng.getrandbits(32) for _ in range(3))
                encdec = rng.getrandbits(1)

                yield engine.i_active.eq(active)
                yield engine.i_other.eq(other)
                yield engine.i_sum.eq(sum)
                yield engine.i_encdec.eq(encdec)
                for i, k in enumerate(key):
                    yield engine.i_key[i].eq(k)
                yield Settle()

                expected = model.half_round(active, other, sum, key, model_selector, bool(encdec))
                self.assertEqual((yield engine.o_active), expected)

        self.simulate(engine, process, clock=None)

    def test_v0_engine(self):
        self.check_engine(v0_subkey_select, model.v0_subkey_index)

    def test_v1_engine(self):
        self.check_engine(v1_subkey_select, model.v1_subkey_index)


class XTEACoreTest(FHDLTestCase):
    def setUp(self):
        self.core = XTEACore()

    def load(self, key, block, encdec=1, rounds=DEFAULT_ROUNDS):
        core = self.core
        for i, k in enumerate(key):
            yield core.i_key[i].eq(k)
        for i, b in enumerate(block):
            yield core.i_block[i].eq(b)
        yield core.i_encdec.eq(encdec)
        yield core.i_rounds.eq(rounds)
        yield Settle()

    def start(self):
        yield self.core.i_next.eq(1)
        yield from tick()
        yield self.core.i_next.eq(0)
        yield Settle()

    def wait_ready(self, timeout=200):
        for cycles in range(timeout):
            if (yield self.core.o_ready):
                return cycles
            yield from tick()
        self.fail("core never became ready")

    def result(self):
        v0 = yield self.core.o_result[0]
        v1 = yield self.core.o_result[1]
        return [v0, v1]

    def test_known_vector(self):
        def process():
            yield from self.load(KEY, PLAINTEXT, encdec=1)
            yield from self.start()
            yield from self.wait_ready()
            self.assertEqual((yield from self.result()), CIPHERTEXT)

            yield from self.load(KEY, CIPHERTEXT, encdec=0)
            yield from self.start()
            yield from self.wait_ready()
            self.assertEqual((yield from self.result()), PLAINTEXT)

        self.simulate(self.core, process)

    def test_status_lifecycle(self):
        def process():
            self.assertEqual((yield self.core.o_ready), 1)
            yield from self.load(KEY, PLAINTEXT, rounds=5)
            yield from self.start()
            self.assertEqual((yield self.core.o_ready), 0)
            # INIT, then one cycle per half-round
            cycles = yield from self.wait_ready()
            self.assertEqual(cycles, 1 + 2 * 5)
            expected = model.split_block(model.encrypt_block(model.PLAINTEXT, model.KEY, 5))
            self.assertEqual((yield from self.result()), expected)

        self.simulate(self.core, process)

    def test_matches_model(self):
        rng = random.Random(5)

        def process():
            for _ in range(6):
                key = rng.getrandbits(128)
                block = rng.getrandbits(64)
                rounds = rng.randint(1, 63)
                encdec = rng.getrandbits(1)

                yield from self.load(model.split_key(key), model.split_block(block), encdec, rounds)
                yield from self.start()
                yield from self.wait_ready()

                expected = model.run_block(block, key, rounds, bool(encdec))
                self.assertEqual(model.join_block(*(yield from self.result())), expected)

        self.simulate(self.core, process)

    def test_round_count_sensitivity(self):
        def process():
            results = []
            for rounds in (1, 32):
                yield from self.load(KEY, PLAINTEXT, rounds=rounds)
                yield from self.start()
                yield from self.wait_ready()
                results.append((yield from self.result()))
            self.assertNotEqual(results[0], results[1])
            self.assertEqual(results[1], CIPHERTEXT)

        self.simulate(self.core, process)

    def test_busy_inputs_ignored(self):
        def process():
            yield from self.load(KEY, PLAINTEXT, encdec=1, rounds=32)
            yield from self.start()
            yield from tick()
            # block is already loaded, config is latched
            yield from self.load(KEY, [0, 0], encdec=0, rounds=1)
            yield self.core.i_next.eq(1)
            yield from self.wait_ready()
            self.assertEqual((yield from self.result()), CIPHERTEXT)

        self.simulate(self.core, process)

    def test_zero_rounds_ignored(self):
        def process():
            yield from self.load(KEY, PLAINTEXT, rounds=0)
            yield from self.start()
            yield from tick(4)
            self.assertEqual((yield self.core.o_ready), 1)

        self.simulate(self.core, process)


class XTEATest(FHDLTestCase):
    def setUp(self):
        self.dut = XTEA()

    def write(self, addr, data):
        yield from reg_write(self.dut.bus, addr, data)

    def read(self, addr):
        return (yield from reg_read(self.dut.bus, addr))

    def test_identification(self):
        def process():
            self.assertEqual((yield from self.read(XTEAAddr.NAME0)), model.CORE_NAME0)
            self.assertEqual((yield from self.read(XTEAAddr.NAME1)), model.CORE_NAME1)
            self.assertEqual((yield from self.read(XTEAAddr.VERSION)), model.CORE_VERSION)
            self.assertEqual((yield from self.read(XTEAAddr.STATUS)), 1)
            for addr in (0x03, XTEAAddr.CTRL, XTEAAddr.CONFIG, XTEAAddr.KEY0, 0x40, 0xff):
                self.assertEqual((yield from self.read(addr)), 0)

        self.simulate(self.dut, process)

    def test_default_config(self):
        dut = self.dut

        def process():
            self.assertEqual((yield dut.rounds), DEFAULT_ROUNDS)
            self.assertEqual((yield dut.config), 1)
            yield from self.write(XTEAAddr.CTRL, 1 << model.CTRL_NEXT_BIT)
            yield from tick()
            self.assertEqual((yield dut.core.o_ready), 0)
            self.assertEqual((yield dut.core.rounds), DEFAULT_ROUNDS)
            self.assertEqual((yield dut.core.encdec), 1)

        self.simulate(self.dut, process)

    def test_known_vector(self):
        def process():
            result, _ = yield from xtea_transaction(self.write, self.read, model.PLAINTEXT, model.KEY)
            self.assertEqual(result, model.CIPHERTEXT)
            result, _ = yield from xtea_transaction(self.write, self.read, model.CIPHERTEXT, model.KEY,
                encrypt=False)
            self.assertEqual(result, model.PLAINTEXT)

        self.simulate(self.dut, process)

    def test_gated_writes(self):
        dut = self.dut

        def process():
            for i, k in enumerate(KEY):
                yield from self.write(XTEAAddr.KEY0 + i, k)
            for i, b in enumerate(PLAINTEXT):
                yield from self.write(XTEAAddr.BLOCK0 + i, b)
            yield from self.write(XTEAAddr.CTRL, 1 << model.CTRL_NEXT_BIT)
            yield from tick()
            self.assertEqual((yield from self.read(XTEAAddr.STATUS)), 0)

            yield from self.write(XTEAAddr.KEY0, 0xdeadbeef)
            yield from self.write(XTEAAddr.BLOCK1, 0xdeadbeef)
            yield from self.write(XTEAAddr.CONFIG, 0)
            yield from self.write(XTEAAddr.ROUNDS, 1)
            yield from self.write(XTEAAddr.CTRL, 1 << model.CTRL_NEXT_BIT)
            self.assertEqual((yield dut.key[0]), KEY[0])
            self.assertEqual((yield dut.block[1]), PLAINTEXT[1])
            self.assertEqual((yield dut.ctrl), 0)
            self.assertEqual((yield dut.rounds), 1)

            while not (yield from self.read(XTEAAddr.STATUS)):
                yield from tick()
            self.assertEqual((yield from self.read(XTEAAddr.RESULT0)), CIPHERTEXT[0])
            self.assertEqual((yield from self.read(XTEAAddr.RESULT1)), CIPHERTEXT[1])

            # the start request issued while busy was not queued
            yield from tick(2)
            self.assertEqual((yield from self.read(XTEAAddr.STATUS)), 1)

        self.simulate(self.dut, process)

    def test_ctrl_pulse(self):
        dut = self.dut

        def process():
            yield from self.write(XTEAAddr.CTRL, 0b01)
            self.assertEqual((yield dut.ctrl), 0b01)
            yield from tick()
            self.assertEqual((yield dut.ctrl), 0)
            self.assertEqual((yield dut.core.o_ready), 1)

        self.simulate(self.dut, process)

    def test_converts(self):
        self.assertConverts(self.dut, ports=self.dut.ports())
