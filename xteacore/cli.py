import io
import logging
import argparse
import tempfile
from argparse import RawTextHelpFormatter
from contextlib import redirect_stdout
from nmigen.back import rtlil, verilog
from .applets import Applet
from .model.xtea import XTEAConfigError
from .util.test import FHDLTestCase

logger = logging.getLogger(__name__)

def add_generate_parsers(parser):
    parser.add_argument(
        "-f", "--format", default="rtlil", choices=("rtlil", "verilog"),
        help="netlist format (default: %(default)s)")

    parser.add_argument(
        "-o", "--output", default=None, type=str,
        help="write the netlist to this file instead of stdout")

def get_parser():
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "-v", "--verbose", default=0, action="count",
        help="increase logging verbosity")

    subparsers = parser.add_subparsers(dest="action", metavar="COMMAND")
    subparsers.required = True

    p_sim = subparsers.add_parser(
        "sim",
        description="Runs an applet in the simulator",
        help="runs an applet in the simulator")

    p_generate = subparsers.add_parser(
        "generate",
        description="Generates a netlist for an applet",
        help="generates a netlist for an applet")
    add_generate_parsers(p_generate)

    for action_parser in [p_sim, p_generate]:
        p_action_applet = action_parser.add_subparsers(dest="applet", metavar="APPLET")
        p_action_applet.required = True
        for applet in Applet.all.values():
            subparser = p_action_applet.add_parser(
                applet.applet_name,
                description=applet.description,
                help=applet.help,
                formatter_class=RawTextHelpFormatter)
            applet.add_build_arguments(subparser)
            if action_parser is p_sim:
                applet.add_run_arguments(subparser)

    return parser

def main(argv=None):
    parser = get_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(message)s')

    applet_cls = Applet.all[args.applet]
    applet = applet_cls(args=args)

    if args.action == "sim":
        try:
            result = applet.run(args)
        except XTEAConfigError as e:
            parser.error(str(e))
        print(f"{result:016x}")

    elif args.action == "generate":
        backend = rtlil if args.format == "rtlil" else verilog
        output = backend.convert(applet, name=args.applet, ports=applet.ports())
        if args.output is None:
            print(output)
        else:
            logger.debug("writing %s netlist to %s", args.format, args.output)
            with open(args.output, "w") as f:
                f.write(output)


class CLITest(FHDLTestCase):
    def run_main(self, argv):
        stdout = io.StringIO()
        with redirect_stdout(stdout):
            main(argv)
        return stdout.getvalue()

    def test_sim(self):
        output = self.run_main([
            "sim", "xtea",
            "--key", "00010203 04050607 08090a0b 0c0d0e0f",
            "--block", "41424344 45464748",
        ])
        self.assertEqual(output.strip(), "497df3d072612cb5")

    def test_sim_bad_rounds(self):
        with self.assertRaises(SystemExit):
            with redirect_stdout(io.StringIO()):
                main(["sim", "xtea", "--rounds", "0"])

    def test_generate(self):
        with tempfile.TemporaryDirectory() as d:
            path = f"{d}/xtea.il"
            main(["generate", "-o", path, "xtea", "--bus", "wishbone"])
            with open(path) as f:
                self.assertIn("module", f.read())


if __name__ == "__main__":
    main()
