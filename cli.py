#!/usr/bin/env python3
"""
CHIP-8 Runner / Monitor CLI
============================
Command-line front end for the CHIP-8 virtual machine.

Provides:
  - ROM loading (binary images or .asm sources)
  - A pygame window at a configurable instruction rate
  - Headless runs for a fixed number of instructions
  - An interactive debug monitor (step / run / regs / dump / disasm)
  - Assembly to a ROM file and ROM disassembly

Usage:
  python cli.py ROM [--ips N] [--scale N] [--seed N] [--trace]
  python cli.py ROM --headless [--steps N]
  python cli.py [ROM] --monitor
  python cli.py --assemble SRC.asm OUT.ch8 [--listing]
  python cli.py ROM --disasm
"""

from __future__ import annotations
import argparse
import cmd
import readline  # noqa: F401  (line editing for the monitor)
import shlex
import sys
from typing import Optional

from asm import assemble, AsmError
from chip8 import Chip8Error, MEM_SIZE
from decoder import Instruction, disassemble, disassemble_range
from system import Chip8System, DEFAULT_IPS, RunState, steps_per_tick

DEFAULT_HEADLESS_STEPS = 10_000


def trace_line(pc: int, ins: Instruction, i: int) -> str:
    """One ``--trace`` line for the instruction about to execute."""
    return (f"Executing 0x{ins.word:04X} at PC = 0x{pc:04X}, "
            f"I = 0x{i:04X}  {disassemble(ins)}")


def load_source(system: Chip8System, path: str) -> int:
    """Load *path* into *system*: .asm files are assembled first.

    Returns the image size in bytes.
    """
    if path.endswith(".asm"):
        with open(path, "r") as f:
            code = assemble(f.read())
        system.load_program(code)
        return len(code)
    return system.load_program_file(path)

# ---------------------------------------------------------------------------
#  Interactive monitor
# ---------------------------------------------------------------------------

class Chip8CLI(cmd.Cmd):
    """Interactive monitor for the CHIP-8 VM."""

    intro = (
        "\n"
        "╔══════════════════════════════════════════════════════════╗\n"
        "║              CHIP-8 Monitor                              ║\n"
        "║   Type 'help' for commands.  'quit' to exit.             ║\n"
        "╚══════════════════════════════════════════════════════════╝\n"
    )
    prompt = "CHIP8> "

    def __init__(self, system: Chip8System, stdout=None):
        super().__init__(stdout=stdout)
        self.sys = system
        self.sys.on_tone = lambda: self._print("  [tone]")

    def _print(self, text: str = ""):
        print(text, file=self.stdout)

    # -- Parsing helpers --

    def _parse_int(self, s: str) -> int:
        return int(s.strip(), 0)

    def _parse_addr(self, s: str) -> int:
        """Parse an address: a number, or 'pc' / 'i'."""
        s = s.strip().lower()
        if s == "pc":
            return self.sys.regs.pc
        if s == "i":
            return self.sys.regs.i
        return int(s, 0)

    # ================================================================
    #  Commands
    # ================================================================

    # -- Loading --

    def do_load(self, arg):
        """Load a ROM (or assemble a .asm file) at 0x200: load <file>"""
        parts = shlex.split(arg)
        if not parts:
            self._print("Usage: load <file>")
            return
        try:
            size = load_source(self.sys, parts[0])
        except (OSError, AsmError, Chip8Error) as e:
            self._print(f"Error: {e}")
            return
        self._print(f"Loaded {size} bytes from '{parts[0]}' at 0x200")

    def do_reset(self, arg):
        """Reset the VM, keeping the loaded program."""
        image = self.sys.memory.dump(0x200, self.sys.program_size)
        self.sys.load_program(image)
        self._print("VM reset.")

    # -- Execution --

    def do_step(self, arg):
        """Step N instructions: step [count]"""
        count = self._parse_int(arg) if arg.strip() else 1
        for _ in range(count):
            if self.sys.halted:
                self._print("VM is halted.")
                break
            try:
                result = self.sys.step()
            except Chip8Error as e:
                self._print(f"Fatal: {e}")
                break
            if result.instruction is None:
                self._print(f"  {result.pc:#06x}: waiting for key")
                continue
            self._print(f"  {result.pc:#06x}: {result.instruction.word:04x}  "
                        f"{disassemble(result.instruction)}")

    def do_run(self, arg):
        """Run until halt or key-wait: run [max_steps]"""
        max_steps = self._parse_int(arg) if arg.strip() else 1_000_000
        before = self.sys.step_count
        try:
            self.sys.run(max_steps)
        except Chip8Error as e:
            self._print(f"Fatal: {e}")
            return
        taken = self.sys.step_count - before
        if self.sys.state is RunState.AWAITING_KEY:
            self._print(f"Waiting for key into V{self.sys.wait_register:X} "
                        f"after {taken} steps.  Use 'key <n>' then 'step'.")
        else:
            self._print(f"Stopped after {taken} steps.")

    def do_tick(self, arg):
        """Issue N 60 Hz timer ticks: tick [count]"""
        count = self._parse_int(arg) if arg.strip() else 1
        for _ in range(count):
            self.sys.tick()
        t = self.sys.timers
        self._print(f"  DT = {t.delay}  ST = {t.sound}")

    # -- Inspection --

    def do_regs(self, arg):
        """Show registers, timers and run state."""
        self._print(self.sys.dump_state())

    def do_stack(self, arg):
        """Show the call stack (bottom to top)."""
        entries = self.sys.stack.entries()
        if not entries:
            self._print("  <empty>")
        for depth, addr in enumerate(entries):
            self._print(f"  [{depth:2d}] {addr:#06x}")

    def do_dump(self, arg):
        """Hex dump memory: dump <address> [count]
        Count defaults to 64 bytes."""
        parts = shlex.split(arg)
        if not parts:
            self._print("Usage: dump <address> [count]")
            return
        addr = self._parse_addr(parts[0])
        count = self._parse_int(parts[1]) if len(parts) > 1 else 64
        count = max(0, min(count, MEM_SIZE - addr))
        try:
            data = self.sys.memory.dump(addr, count)
        except Chip8Error as e:
            self._print(f"Error: {e}")
            return
        for off in range(0, len(data), 16):
            row = data[off:off + 16]
            hex_bytes = [f"{b:02x}" for b in row] + ["  "] * (16 - len(row))
            hex_str = " ".join(hex_bytes[:8]) + "  " + " ".join(hex_bytes[8:])
            ascii_chars = "".join(chr(b) if 0x20 <= b < 0x7F else "." for b in row)
            self._print(f"  {addr + off:#06x}: {hex_str}  |{ascii_chars}|")

    def do_disasm(self, arg):
        """Disassemble: disasm [address] [count]
        Defaults to current PC, 16 instructions."""
        parts = shlex.split(arg)
        addr = self._parse_addr(parts[0]) if parts else self.sys.regs.pc
        count = self._parse_int(parts[1]) if len(parts) > 1 else 16
        for a, word, text in disassemble_range(self.sys.memory.data, addr, count):
            marker = ">>>" if a == self.sys.regs.pc else "   "
            self._print(f"  {marker} {a:#06x}: {word:04x}  {text}")

    def do_screen(self, arg):
        """Print the framebuffer as text."""
        self._print(self.sys.fb.render_text())

    # -- Keypad --

    def do_key(self, arg):
        """Press or release a key: key <0-F> [up]"""
        parts = shlex.split(arg)
        if not parts:
            self._print(f"  {self.sys.keypad!r}")
            return
        try:
            k = int(parts[0], 16)
        except ValueError:
            self._print(f"Bad key: {parts[0]!r}")
            return
        if not 0 <= k <= 0xF:
            self._print("Key must be 0-F.")
            return
        if len(parts) > 1 and parts[1].lower() == "up":
            self.sys.keypad.release(k)
        else:
            self.sys.keypad.press(k)
        self._print(f"  {self.sys.keypad!r}")

    # -- Exit --

    def do_quit(self, arg):
        """Exit the monitor."""
        self._print("Goodbye.")
        return True
    do_exit = do_quit
    do_q = do_quit

    def do_EOF(self, arg):
        self._print()
        return self.do_quit(arg)

    def default(self, line):
        """Handle unknown commands gracefully."""
        self._print(f"Unknown command: {line.split()[0]!r}. "
                    "Type 'help' for available commands.")

    def emptyline(self):
        """Don't repeat the last command on empty input."""
        pass


# ---------------------------------------------------------------------------
#  Main
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CHIP-8 virtual machine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python cli.py pong.ch8\n"
               "  python cli.py pong.ch8 --ips 1000 --scale 12\n"
               "  python cli.py game.asm --trace --headless --steps 200\n"
               "  python cli.py pong.ch8 --monitor\n"
               "  python cli.py --assemble game.asm game.ch8 --listing\n"
    )
    parser.add_argument("rom", nargs="?", default=None,
                        help="ROM image (or .asm source) to load at 0x200")
    parser.add_argument("--ips", type=int, default=DEFAULT_IPS,
                        help=f"Instructions per second (default: {DEFAULT_IPS})")
    parser.add_argument("--scale", type=int, default=10, metavar="N",
                        help="Pixel scale factor for the window (default: 10)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the RND instruction")
    parser.add_argument("--no-index-flag", action="store_true",
                        help="ADD I, Vx leaves VF untouched")
    parser.add_argument("--trace", action="store_true",
                        help="Print every executed instruction")
    parser.add_argument("--headless", action="store_true",
                        help="Run without a window and print the final screen")
    parser.add_argument("--steps", type=int, default=DEFAULT_HEADLESS_STEPS,
                        help="Instructions to run with --headless "
                             f"(default: {DEFAULT_HEADLESS_STEPS})")
    parser.add_argument("--monitor", action="store_true",
                        help="Enter the interactive debug monitor")
    parser.add_argument("--assemble", nargs=2, metavar=("SRC", "OUT"),
                        help="Assemble SRC.asm to OUT and exit")
    parser.add_argument("--listing", "-l", action="store_true",
                        help="Print assembly listing (with --assemble)")
    parser.add_argument("--disasm", action="store_true",
                        help="Disassemble the ROM and exit")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # ---- Assemble-only mode -------------------------------------------
    if args.assemble:
        src_path, out_path = args.assemble
        with open(src_path, "r") as f:
            source = f.read()
        try:
            code = assemble(source, listing=args.listing)
        except AsmError as e:
            print(f"Assembly error: {e}", file=sys.stderr)
            return 1
        with open(out_path, "wb") as f:
            f.write(code)
        print(f"Assembled {src_path} → {out_path} ({len(code)} bytes)")
        return 0

    if args.rom is None and not args.monitor:
        parser.error("a ROM is required unless --monitor or --assemble is given")

    system = Chip8System(seed=args.seed,
                         index_overflow_flag=not args.no_index_flag)
    if args.trace:
        system.on_trace = lambda pc, ins: print(trace_line(pc, ins, system.regs.i))

    try:
        if args.rom is not None:
            try:
                size = load_source(system, args.rom)
            except AsmError as e:
                print(f"Assembly error: {e}", file=sys.stderr)
                return 1
            except OSError as e:
                print(f"Cannot read ROM: {e}", file=sys.stderr)
                return 1

            if args.disasm:
                count = (size + 1) // 2
                for a, word, text in disassemble_range(system.memory.data, 0x200, count):
                    print(f"  {a:#06x}: {word:04x}  {text}")
                return 0

        if args.monitor:
            cli = Chip8CLI(system)
            try:
                cli.cmdloop()
            except KeyboardInterrupt:
                print("\nInterrupted. Goodbye.")
            return 0

        if args.headless:
            from display import HeadlessDisplay
            disp = HeadlessDisplay()
            spt = steps_per_tick(args.ips)
            frames = max(1, -(-args.steps // spt))
            disp.run(system, frames, ips=args.ips, max_steps=args.steps)
            print(system.fb.render_text())
            print(f"{system.step_count} steps, {system.tick_count} ticks, "
                  f"{disp.tones} tones")
            return 0

        from display import Chip8Display
        display = Chip8Display(scale=args.scale, title=f"CHIP-8: {args.rom}")
        try:
            display.run(system, ips=args.ips)
        except ImportError as e:
            print(f"[display] pygame not available: {e}", file=sys.stderr)
            print("[display] Install with: pip install pygame", file=sys.stderr)
            return 1
    except Chip8Error as e:
        print(f"Fatal: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
