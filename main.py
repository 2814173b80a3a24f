#!/usr/bin/env python3
"""CHIP8-VM Command Line Interface.

Run CHIP-8 program images with the CHIP8-VM interpreter.

Usage:
    python main.py --rom roms/IBM_Logo.ch8
    python main.py --rom roms/pong.ch8 --cycles 5000 --key 1 --trace
    python main.py --rom roms/pong.ch8 --disassemble
"""

import argparse
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from chip8_vm import Chip8VM, VMError
from chip8_vm.decoder import disassemble_image


DEFAULT_CYCLES = 1000
DEFAULT_CYCLES_PER_FRAME = 10


def parse_key(value: str) -> int:
    """argparse type for a hex key index 0-F."""
    try:
        key = int(value, 16)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid key: {value!r}")
    if not 0 <= key <= 0xF:
        raise argparse.ArgumentTypeError(f"key out of range 0-F: {value!r}")
    return key


def main():
    parser = argparse.ArgumentParser(
        description="CHIP8-VM: CHIP-8 Virtual CPU",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run a ROM for the default number of instructions
    python main.py --rom roms/IBM_Logo.ch8

    # Hold key 5 down and print the full trace
    python main.py --rom roms/game.ch8 --key 5 --trace

    # List the ROM as assembly instead of running it
    python main.py --rom roms/game.ch8 --disassemble
        """
    )

    parser.add_argument(
        "--rom", "-r",
        type=str,
        required=True,
        help="Path to program image (.ch8)"
    )
    parser.add_argument(
        "--cycles", "-c",
        type=int,
        default=DEFAULT_CYCLES,
        help=f"Instructions to execute. Default: {DEFAULT_CYCLES}"
    )
    parser.add_argument(
        "--cycles-per-frame",
        type=int,
        default=DEFAULT_CYCLES_PER_FRAME,
        help=f"Instructions per 60 Hz timer tick. Default: {DEFAULT_CYCLES_PER_FRAME}"
    )
    parser.add_argument(
        "--seed",
        type=int,
        help="Seed for the RND instruction"
    )
    parser.add_argument(
        "--key", "-k",
        type=parse_key,
        action="append",
        default=[],
        help="Hex key (0-F) held down for the whole run; repeatable"
    )
    parser.add_argument(
        "--disassemble", "-d",
        action="store_true",
        help="Print the ROM as assembly and exit"
    )
    parser.add_argument(
        "--trace", "-t",
        action="store_true",
        help="Print full execution trace"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Minimal output (display only)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Logging level. Default: WARNING"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cycles < 0:
        parser.error("--cycles must be non-negative")
    if args.cycles_per_frame < 1:
        parser.error("--cycles-per-frame must be at least 1")

    rom_path = Path(args.rom)
    if not rom_path.exists():
        print(f"Error: ROM file not found: {args.rom}")
        return 1
    image = rom_path.read_bytes()

    if args.disassemble:
        for address, word, text in disassemble_image(image):
            print(f"0x{address:03X}  {word:04X}  {text}")
        return 0

    vm = Chip8VM(seed=args.seed, trace=args.trace)
    try:
        vm.load(image)
    except VMError as e:
        print(f"Load error: {e}")
        return 1

    for key in args.key:
        vm.set_key(key, True)

    if not args.quiet:
        print(f"Loading program: {args.rom} ({len(image)} bytes)")
        print("-" * 64)

    # Run, interleaving timer ticks at the configured instruction rate
    exit_code = 0
    tone_heard = False
    try:
        for cycle in range(1, args.cycles + 1):
            vm.tick()
            tone_heard = tone_heard or vm.sound_active
            if cycle % args.cycles_per_frame == 0:
                vm.tick_timers()
    except VMError as e:
        print(f"Execution error: {e}")
        exit_code = 1

    # Output
    print(vm.render_display())

    if args.trace:
        vm.print_trace()
    elif not args.quiet:
        print("-" * 64)
        summary = vm.get_summary()
        print(f"Cycles: {summary['cycles']}")
        print(f"PC: 0x{summary['pc']:03X}  I: 0x{summary['index_register']:03X}")
        print(f"Registers: {summary['registers']}")
        print(f"Timers: DT={summary['delay_timer']} ST={summary['sound_timer']}")
        print(f"Tone played: {tone_heard}")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
