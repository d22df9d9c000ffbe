import argparse
import logging
from contextlib import nullcontext

from nmigen import *
from nmigen.back.pysim import Simulator

from .. import Applet
from ...gateware.bus.wishbone import WishboneBridge
from ...gateware.crypto.xtea import XTEA
from ...model.xtea import DEFAULT_ROUNDS, check_config, run_block
from ...util.sim import reg_read, reg_write, wb_read, wb_write, xtea_transaction
from ...util.test import FHDLTestCase

logger = logging.getLogger(__name__)


def hex_int(value):
    return int(value.replace(" ", "").replace("_", ""), 16)


class XTEAApplet(Applet, applet_name="xtea"):
    help = "XTEA block cipher core"
    description = """
    XTEA core behind its register file, either on a plain chip-select port
    or on a wishbone slave.

    `sim` runs one block through the core in the nMigen simulator and checks
    the result against the software model.
    """
    bus_map = {
        "regs": None,
        "wishbone": WishboneBridge,
    }

    @classmethod
    def add_build_arguments(cls, parser):
        parser.add_argument(
            "--bus", default="regs", type=str,
            choices=XTEAApplet.bus_map.keys(),
            help="register access port (default: %(default)s)")

    @classmethod
    def add_run_arguments(cls, parser):
        parser.add_argument(
            "--key", default=0, type=hex_int,
            help="128-bit key in hex, most significant word first")
        parser.add_argument(
            "--block", default=0, type=hex_int,
            help="64-bit block in hex, most significant word first")
        parser.add_argument(
            "--rounds", default=DEFAULT_ROUNDS, type=int,
            help="number of rounds (default: %(default)s)")
        parser.add_argument(
            "--decrypt", default=False, action="store_true",
            help="decrypt instead of encrypt")
        parser.add_argument(
            "--vcd", default=None, type=str,
            help="write a waveform of the simulation to this file")

    def __init__(self, args):
        self.xtea = XTEA()

        bridge_cls = self.bus_map[args.bus]
        if bridge_cls is None:
            self.bridge = None
        else:
            self.bridge = bridge_cls(self.xtea.bus)

    def ports(self):
        if self.bridge is None:
            return self.xtea.ports()
        return list(self.bridge.bus.fields.values())

    def elaborate(self, platform):
        m = Module()

        m.submodules.xtea = self.xtea
        if self.bridge is not None:
            m.submodules.bridge = self.bridge

        return m

    def run(self, args):
        key = args.key
        block = args.block
        rounds = args.rounds
        encrypt = not args.decrypt

        check_config(block, key, rounds)
        expected = run_block(block, key, rounds, encrypt)

        if self.bridge is None:
            port = self.xtea.bus
            write = lambda addr, data: reg_write(port, addr, data)
            read = lambda addr: reg_read(port, addr)
        else:
            bus = self.bridge.bus
            base = self.bridge.base
            write = lambda addr, data: wb_write(bus, base + addr, data)
            read = lambda addr: wb_read(bus, base + addr)

        results = []
        def process():
            result, polls = yield from xtea_transaction(write, read, block, key, rounds, encrypt)
            results.append(result)
            logger.debug("xtea: ready after %d status polls", polls)

        sim = Simulator(self)
        sim.add_clock(1e-6)
        sim.add_sync_process(process)
        with sim.write_vcd(args.vcd) if args.vcd else nullcontext():
            sim.run()

        result, = results
        if result != expected:
            raise RuntimeError(f"gateware result {result:016x} does not match model {expected:016x}")
        logger.info("%s %016x -> %016x", "encrypt" if encrypt else "decrypt", block, result)

        return result


class XTEAAppletTest(FHDLTestCase):
    def get_args(self, **kwargs):
        parser = argparse.ArgumentParser()
        XTEAApplet.add_build_arguments(parser)
        XTEAApplet.add_run_arguments(parser)
        args = parser.parse_args([])
        for k, v in kwargs.items():
            setattr(args, k, v)
        return args

    def test_registered(self):
        self.assertIs(Applet.all["xtea"], XTEAApplet)
        with self.assertRaises(ValueError, msg="Applet 'xtea' already exists"):
            class Duplicate(Applet, applet_name="xtea"):
                pass

    def test_hex_int(self):
        self.assertEqual(hex_int("00010203 04050607"), 0x0001020304050607)
        self.assertEqual(hex_int("dead_beef"), 0xdeadbeef)

    def test_run_regs(self):
        args = self.get_args(key=0x000102030405060708090a0b0c0d0e0f, block=0x4142434445464748)
        self.assertEqual(XTEAApplet(args).run(args), 0x497df3d072612cb5)

    def test_run_wishbone(self):
        args = self.get_args(bus="wishbone", key=0x000102030405060708090a0b0c0d0e0f,
            block=0x497df3d072612cb5, decrypt=True)
        self.assertEqual(XTEAApplet(args).run(args), 0x4142434445464748)

    def test_ports(self):
        for bus in XTEAApplet.bus_map:
            applet = XTEAApplet(self.get_args(bus=bus))
            self.assertConverts(applet, ports=applet.ports())
