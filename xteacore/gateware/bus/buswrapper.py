from nmigen import *
from enum import IntEnum

from ...util.test import FHDLTestCase
from ...util.sim import tick, reg_write, reg_read

class AccessFlags(IntEnum):
    R  = 1 << 0
    W  = 1 << 1

class BusWrapper(Elaboratable):
    """
    Register file behind a chip-select port.

    Reads are combinational and return 0 for unmapped addresses.
    Writes land on the clock edge. A write endpoint may be gated by an
    `enable` signal, and may be a strobe that clears itself every cycle.
    """

    def __init__(self, address_width=8, io_width=32, signals_r=[], signals_w=[]):
        self.address_width = address_width
        self.io_width = io_width

        self.cs         = Signal()
        self.we         = Signal()
        self.addr       = Signal(address_width)
        self.write_data = Signal(io_width)
        self.read_data  = Signal(io_width)

        self.endpoints_r = dict()
        self.endpoints_w = dict()
        self.enables_w = dict()
        self.strobes_w = set()
        self.add_endpoints(AccessFlags.R, signals_r)
        self.add_endpoints(AccessFlags.W, signals_w)

    def add_endpoints(self, flags: AccessFlags, signals: list, start=None, enable=None, strobe=False):
        endpoints = self.endpoints_r if flags == AccessFlags.R else self.endpoints_w
        assert flags == AccessFlags.W or (enable is None and not strobe)

        if start == None:
            start = len(endpoints)

        for s in signals:
            if not isinstance(s, (Array, list)):
                assert(self.io_width >= len(s))

        offset = 0
        for v in signals:
            assert((start + offset) not in endpoints)
            assert((start + offset) < 2**self.address_width)

            if isinstance(v, (Array, list)):
                offset += self.add_endpoints(flags, v, start + offset, enable, strobe)
            else:
                endpoints.update({start + offset : v})
                if enable is not None:
                    self.enables_w[start + offset] = enable
                if strobe:
                    self.strobes_w.add(start + offset)
                offset += 1
        return offset

    def __repr__(self):
        lines = [f"Addr\tFlags\tName"]
        def print_endpoints(endpoints, type):
            l = []
            for i, v in sorted(endpoints.items()):
                if isinstance(v, Signal):
                    name = v.name
                elif isinstance(v, Const):
                    name = f"0x{v.value:08x}"
                elif isinstance(v, Cat):
                    name = "_".join([part.name for part in v.parts])
                else:
                    # Create a name from a Slice()
                    name = f"{v.value.name}_{v.start}_{v.stop - 1}"
                flags = type
                if i in self.enables_w and type == "W":
                    flags += "g"
                if i in self.strobes_w and type == "W":
                    flags += "s"
                l.append(f"{i:02x}\t{flags}\t{name}")
            return l
        lines += print_endpoints(self.endpoints_r, "R")
        lines += print_endpoints(self.endpoints_w, "W")
        return "\n".join(lines)

    def elaborate(self, platform):
        m = Module()

        addr = self.addr
        read_data = self.read_data
        write_data = self.write_data

        for k in self.strobes_w:
            m.d.sync += self.endpoints_w[k].eq(0)

        with m.If(self.cs):
            with m.If(self.we):
                with m.Switch(addr):
                    for k, v in self.endpoints_w.items():
                        with m.Case(k):
                            enable = self.enables_w.get(k)
                            if enable is None:
                                m.d.sync += v.eq(write_data)
                            else:
                                with m.If(enable):
                                    m.d.sync += v.eq(write_data)
            with m.Else(): # ~we
                with m.Switch(addr):
                    for k, v in self.endpoints_r.items():
                        with m.Case(k):
                            m.d.comb += read_data.eq(v)

        return m


class BusWrapperTest(FHDLTestCase):
    def test_endpoints(self):
        a = Signal(8, name="a")
        b = Signal(32, name="b")
        c = Signal(32, name="c")
        wrapper = BusWrapper(signals_r=[a, Const(0x1234, 32)], signals_w=[b])
        n = wrapper.add_endpoints(AccessFlags.W, [Array([c, a])], start=0x10)

        self.assertEqual(n, 2)
        self.assertEqual(sorted(wrapper.endpoints_r), [0, 1])
        self.assertEqual(sorted(wrapper.endpoints_w), [0, 0x10, 0x11])
        self.assertIs(wrapper.endpoints_w[0x10], c)
        self.assertIs(wrapper.endpoints_w[0x11], a)
        self.assertEqual(repr(wrapper).splitlines(), [
            "Addr\tFlags\tName",
            "00\tR\ta",
            "01\tR\t0x00001234",
            "00\tW\tb",
            "10\tW\tc",
            "11\tW\ta",
        ])

    def test_overlap(self):
        wrapper = BusWrapper(signals_w=[Signal(8)])
        with self.assertRaises(AssertionError):
            wrapper.add_endpoints(AccessFlags.W, [Signal(8)], start=0)
        with self.assertRaises(AssertionError):
            wrapper.add_endpoints(AccessFlags.W, [Signal(33)], start=1)

    def test_access(self):
        enable = Signal(reset=1)
        plain = Signal(32)
        gated = Signal(32)
        pulse = Signal(2)

        wrapper = BusWrapper(signals_r=[plain, gated, Const(0xcafe, 16)], signals_w=[plain])
        wrapper.add_endpoints(AccessFlags.W, [gated], start=1, enable=enable)
        wrapper.add_endpoints(AccessFlags.W, [pulse], start=2, strobe=True)

        m = Module()
        m.submodules.wrapper = wrapper
        sync_enable = Signal(reset=1)
        m.d.sync += enable.eq(sync_enable)

        def process():
            yield from reg_write(wrapper, 0, 0x11111111)
            yield from reg_write(wrapper, 1, 0x22222222)
            self.assertEqual((yield from reg_read(wrapper, 0)), 0x11111111)
            self.assertEqual((yield from reg_read(wrapper, 1)), 0x22222222)
            self.assertEqual((yield from reg_read(wrapper, 2)), 0xcafe)
            self.assertEqual((yield from reg_read(wrapper, 3)), 0)

            yield sync_enable.eq(0)
            yield from tick()
            yield from reg_write(wrapper, 1, 0x33333333)
            yield from reg_write(wrapper, 0, 0x44444444)
            self.assertEqual((yield from reg_read(wrapper, 1)), 0x22222222)
            self.assertEqual((yield from reg_read(wrapper, 0)), 0x44444444)

            yield from reg_write(wrapper, 2, 0b10)
            self.assertEqual((yield pulse), 0b10)
            yield from tick()
            self.assertEqual((yield pulse), 0)

        self.simulate(m, process)
