'''
Simple wishbone slave/target in front of a BusWrapper
'''

from nmigen import *
from nmigen.hdl.rec import Direction

from ...util.test import FHDLTestCase
from ...util.sim import wb_read, wb_write
from .buswrapper import AccessFlags, BusWrapper


def get_layout(addr_width=30, data_width=32, granularity=32):
    return [
        ("adr",   addr_width, Direction.FANOUT),
        ("dat_w", data_width, Direction.FANOUT),
        ("dat_r", data_width, Direction.FANIN),
        ("sel",   data_width // granularity, Direction.FANOUT),
        ("cyc",   1, Direction.FANOUT),
        ("stb",   1, Direction.FANOUT),
        ("we",    1, Direction.FANOUT),
        ("ack",   1, Direction.FANIN),
    ]


class WishboneBridge(Elaboratable):
    """
    Turns each classic wishbone cycle that hits `base` into exactly one
    register access on `wrapper`. Addresses are in words.
    ack is asserted for one cycle, with the read data registered alongside.
    """
    def __init__(self, wrapper, base=0, addr_width=30):
        assert addr_width >= wrapper.address_width
        assert base % (1 << wrapper.address_width) == 0

        self.wrapper = wrapper
        self.base = base
        self.addr_width = addr_width

        self.bus = Record(get_layout(addr_width, wrapper.io_width, wrapper.io_width))

    def elaborate(self, platform):
        m = Module()

        wb = self.bus
        wrapper = self.wrapper
        page = wrapper.address_width

        hit = Signal()
        if page < self.addr_width:
            m.d.comb += hit.eq(wb.cyc & wb.stb & ~wb.ack & (wb.adr[page:] == (self.base >> page)))
        else:
            m.d.comb += hit.eq(wb.cyc & wb.stb & ~wb.ack)

        m.d.comb += [
            wrapper.cs.eq(hit),
            wrapper.we.eq(wb.we),
            wrapper.addr.eq(wb.adr[:page]),
            wrapper.write_data.eq(wb.dat_w),
        ]

        m.d.sync += wb.ack.eq(hit)
        with m.If(hit & ~wb.we):
            m.d.sync += wb.dat_r.eq(wrapper.read_data)

        return m


class WishboneBridgeTest(FHDLTestCase):
    def setUp(self):
        self.reg = Signal(32, name="reg")
        self.wrapper = BusWrapper(address_width=4, signals_r=[Const(0x5a5a5a5a, 32), self.reg])
        self.wrapper.add_endpoints(AccessFlags.W, [self.reg], start=1)
        self.bridge = WishboneBridge(self.wrapper, base=0x100, addr_width=12)

        self.m = Module()
        self.m.submodules.wrapper = self.wrapper
        self.m.submodules.bridge = self.bridge

    def test_read_write(self):
        bus = self.bridge.bus

        def process():
            self.assertEqual((yield from wb_read(bus, 0x100)), 0x5a5a5a5a)
            yield from wb_write(bus, 0x101, 0xfeedf00d)
            self.assertEqual((yield self.reg), 0xfeedf00d)
            self.assertEqual((yield from wb_read(bus, 0x101)), 0xfeedf00d)
            self.assertEqual((yield from wb_read(bus, 0x10f)), 0)

        self.simulate(self.m, process)

    def test_single_access_per_cycle(self):
        bus = self.bridge.bus

        def process():
            yield bus.cyc.eq(1)
            yield bus.stb.eq(1)
            yield bus.adr.eq(0x100)
            yield
            yield
            yield
            yield
            # stb held: ack toggles, one access every other cycle
            acks = []
            for _ in range(6):
                yield
                acks.append((yield bus.ack))
            self.assertEqual(sum(acks), 3)

        self.simulate(self.m, process)

    def test_other_page_not_acked(self):
        bus = self.bridge.bus

        def process():
            yield from wb_read(bus, 0x200)

        with self.assertRaises(TimeoutError):
            self.simulate(self.m, process)

    def test_converts(self):
        self.assertConverts(self.m, ports=list(self.bridge.bus.fields.values()))
