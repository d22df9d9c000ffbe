"""
Generator helpers for driving the XTEA gateware from nmigen sync processes.

All helpers are used with `yield from`. After every clock edge they settle the
design, so values read afterwards are the ones registered on that edge.
"""

from nmigen.back.pysim import Settle

from ..model.xtea import XTEAAddr, CTRL_NEXT_BIT, STATUS_READY_BIT, split_block, split_key, join_block


def tick(cycles=1):
    for _ in range(cycles):
        yield
        yield Settle()


def reg_write(port, addr, data):
    """Single write on a BusWrapper-style port (cs, we, addr, write_data)"""
    yield port.cs.eq(1)
    yield port.we.eq(1)
    yield port.addr.eq(addr)
    yield port.write_data.eq(data)
    yield from tick()
    yield port.cs.eq(0)
    yield port.we.eq(0)
    yield Settle()


def reg_read(port, addr):
    yield port.cs.eq(1)
    yield port.we.eq(0)
    yield port.addr.eq(addr)
    yield Settle()
    data = yield port.read_data
    yield port.cs.eq(0)
    yield Settle()
    return data


def wb_write(bus, adr, data, timeout=16):
    yield bus.cyc.eq(1)
    yield bus.stb.eq(1)
    yield bus.we.eq(1)
    yield bus.sel.eq(0b1111)
    yield bus.adr.eq(adr)
    yield bus.dat_w.eq(data)
    for _ in range(timeout):
        yield from tick()
        if (yield bus.ack):
            break
    else:
        raise TimeoutError(f"no wishbone ack for write to {adr:#x}")
    yield bus.cyc.eq(0)
    yield bus.stb.eq(0)
    yield bus.we.eq(0)
    yield Settle()


def wb_read(bus, adr, timeout=16):
    yield bus.cyc.eq(1)
    yield bus.stb.eq(1)
    yield bus.we.eq(0)
    yield bus.sel.eq(0b1111)
    yield bus.adr.eq(adr)
    for _ in range(timeout):
        yield from tick()
        if (yield bus.ack):
            break
    else:
        raise TimeoutError(f"no wishbone ack for read from {adr:#x}")
    data = yield bus.dat_r
    yield bus.cyc.eq(0)
    yield bus.stb.eq(0)
    yield Settle()
    return data


def xtea_transaction(write, read, block, key, rounds=32, encrypt=True, timeout=1000):
    """
    Runs one transaction through a register map, given `write(addr, data)` and
    `read(addr)` generator functions. Returns (result, polls).
    """
    for i, word in enumerate(split_key(key)):
        yield from write(XTEAAddr.KEY0 + i, word)
    for i, word in enumerate(split_block(block)):
        yield from write(XTEAAddr.BLOCK0 + i, word)
    yield from write(XTEAAddr.CONFIG, int(encrypt))
    yield from write(XTEAAddr.ROUNDS, rounds)
    yield from write(XTEAAddr.CTRL, 1 << CTRL_NEXT_BIT)
    # the core samples the next pulse one edge after the register write
    yield from tick()

    for polls in range(timeout):
        status = yield from read(XTEAAddr.STATUS)
        if status & (1 << STATUS_READY_BIT):
            break
        yield from tick()
    else:
        raise TimeoutError("xtea core never became ready")

    v0 = yield from read(XTEAAddr.RESULT0)
    v1 = yield from read(XTEAAddr.RESULT1)
    return join_block(v0, v1), polls
