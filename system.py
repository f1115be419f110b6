"""
CHIP-8 System Emulator
=======================
Wires together:
  - the ``Machine`` aggregate (memory, registers, stack, timers, keypad,
    framebuffer) from chip8.py
  - the instruction decoder (decoder.py) and ``Executor``
  - the run state: Running, AwaitingKey(register) or Halted

and exposes the two entry points a host drives independently:

  step()   fetch → decode → execute one instruction
  tick()   one 60 Hz timer decrement

The host talks to the VM only through the keypad, the framebuffer, the
tone callback and the three small protocols below; nothing here knows
about windows, keyboards or speakers.
"""

from __future__ import annotations
import enum
import random
from typing import Callable, NamedTuple, Optional, Protocol, Sequence

from chip8 import (
    Machine, Executor, Chip8Error, HaltError, ProgramTooLarge, PROGRAM_CAPACITY,
)
from decoder import Instruction, decode, disassemble

# Reference host schedule: instructions per second and timer rate
DEFAULT_IPS = 600
TICKS_PER_SECOND = 60


class RunState(enum.Enum):
    RUNNING = "running"
    AWAITING_KEY = "awaiting_key"
    HALTED = "halted"


class StepResult(NamedTuple):
    """Outcome of one ``step()``.

    ``instruction`` is None when the step only polled the keypad while
    waiting for a key.  ``dirty`` is True if this step changed the
    framebuffer.
    """
    pc: int
    instruction: Optional[Instruction]
    dirty: bool

# ---------------------------------------------------------------------------
#  Host collaborator interfaces
# ---------------------------------------------------------------------------

class FrameSink(Protocol):
    def render(self, frame: bytes, width: int, height: int) -> None: ...


class KeySource(Protocol):
    def poll_keys(self) -> Optional[Sequence[bool]]: ...


class ToneSink(Protocol):
    def tone(self) -> None: ...

# ---------------------------------------------------------------------------
#  System
# ---------------------------------------------------------------------------

class Chip8System:
    """A complete CHIP-8 machine plus its run state.

    *seed* fixes the ``RND`` random source (None: seeded from the OS).
    *index_overflow_flag* selects the ``ADD I, Vx`` VF quirk.
    """

    def __init__(self, seed: Optional[int] = None,
                 index_overflow_flag: bool = True):
        self.machine = Machine()
        self.executor = Executor(rng=random.Random(seed),
                                 index_overflow_flag=index_overflow_flag)
        self.state = RunState.RUNNING
        self.wait_register: Optional[int] = None
        self.fault: Optional[Chip8Error] = None
        self.step_count: int = 0
        self.tick_count: int = 0
        self.program_size: int = 0

        # Callbacks
        self.on_trace: Optional[Callable[[int, Instruction], None]] = None
        self.on_tone: Optional[Callable[[], None]] = None
        self.on_halt: Optional[Callable[[Chip8Error], None]] = None

    # -- shortcuts --

    @property
    def memory(self):
        return self.machine.memory

    @property
    def regs(self):
        return self.machine.regs

    @property
    def stack(self):
        return self.machine.stack

    @property
    def timers(self):
        return self.machine.timers

    @property
    def keypad(self):
        return self.machine.keypad

    @property
    def fb(self):
        return self.machine.fb

    @property
    def halted(self) -> bool:
        return self.state is RunState.HALTED

    @property
    def awaiting_key(self) -> bool:
        return self.state is RunState.AWAITING_KEY

    # -----------------------------------------------------------------
    #  Lifecycle
    # -----------------------------------------------------------------

    def reset(self):
        """Power-on state: memory cleared, glyphs loaded, PC = 0x200."""
        self.machine.reset()
        self.state = RunState.RUNNING
        self.wait_register = None
        self.fault = None
        self.step_count = 0
        self.tick_count = 0
        self.program_size = 0

    def load_program(self, program: bytes | bytearray):
        """Reset and load a program image at 0x200.

        An oversized image is rejected before the reset, so the VM keeps
        its current program.
        """
        if len(program) > PROGRAM_CAPACITY:
            raise ProgramTooLarge(len(program))
        self.reset()
        self.memory.load_program(program)
        self.program_size = len(program)

    def load_program_file(self, path: str) -> int:
        """Reset and load a ROM file.  Returns its size in bytes."""
        with open(path, "rb") as f:
            data = f.read()
        self.load_program(data)
        return len(data)

    # -----------------------------------------------------------------
    #  Execution
    # -----------------------------------------------------------------

    def step(self) -> StepResult:
        """Run one step.

        Fatal faults halt the VM, are stored in ``fault`` (with the
        faulting PC and instruction word attached) and are re-raised.
        """
        if self.state is RunState.HALTED:
            raise HaltError("VM is halted")

        m = self.machine
        if self.state is RunState.AWAITING_KEY:
            key = m.keypad.first_pressed()
            if key is not None:
                m.regs[self.wait_register] = key
                self.wait_register = None
                self.state = RunState.RUNNING
            self.step_count += 1
            return StepResult(m.regs.pc, None, False)

        pc = m.regs.pc
        word = None
        version = m.fb.version
        try:
            word = m.memory.read_word(pc)
            m.regs.pc = pc + 2
            ins = decode(word, pc)
            if self.on_trace is not None:
                self.on_trace(pc, ins)
            wait_reg = self.executor.execute(m, ins)
        except Chip8Error as e:
            self._halt(e, pc, word)
            raise
        if wait_reg is not None:
            self.wait_register = wait_reg
            self.state = RunState.AWAITING_KEY
        self.step_count += 1
        return StepResult(pc, ins, m.fb.version != version)

    def _halt(self, error: Chip8Error, pc: int, word: Optional[int]):
        if error.pc is None:
            error.pc = pc
        if error.word is None:
            error.word = word
        self.fault = error
        self.state = RunState.HALTED
        if self.on_halt is not None:
            self.on_halt(error)

    def tick(self) -> bool:
        """One 60 Hz timer tick.  Returns True if a tone event fired."""
        self.tick_count += 1
        tone = self.timers.tick()
        if tone and self.on_tone is not None:
            self.on_tone()
        return tone

    def run(self, max_steps: int = 1_000_000) -> int:
        """Step until halted, waiting for a key, or *max_steps*.

        Returns the number of steps taken.  No timer ticks are issued.
        """
        taken = 0
        while taken < max_steps:
            if self.state is not RunState.RUNNING:
                break
            self.step()
            taken += 1
        return taken

    def run_frame(self, steps: int, keys: Optional[KeySource] = None,
                  frames: Optional[FrameSink] = None,
                  tone: Optional[ToneSink] = None) -> int:
        """One host iteration: keys in, *steps* steps, one tick, frame out.

        Returns the number of steps executed (fewer than *steps* only if
        the VM halted).  Fatal faults propagate.
        """
        if keys is not None:
            state = keys.poll_keys()
            if state is not None:
                self.keypad.set_state(state)

        done = 0
        for _ in range(steps):
            if self.halted:
                break
            self.step()
            done += 1

        if self.tick() and tone is not None:
            tone.tone()

        if frames is not None and self.fb.dirty:
            frames.render(self.fb.consume(), self.fb.width, self.fb.height)
        return done

    # -----------------------------------------------------------------
    #  Introspection
    # -----------------------------------------------------------------

    def current_instruction(self) -> str:
        pc = self.regs.pc
        try:
            word = self.memory.read_word(pc)
        except Chip8Error:
            return "<out of bounds>"
        return disassemble(decode(word, pc))

    def dump_state(self) -> str:
        lines = [f"State: {self.state.value}"
                 + (f" (V{self.wait_register:X})" if self.awaiting_key else "")]
        lines.append(self.machine.dump_regs())
        stack = self.stack.entries()
        lines.append("  Stack: " + (" ".join(f"{a:#06x}" for a in stack)
                                    if stack else "<empty>"))
        lines.append(f"  {self.keypad!r}")
        lines.append(f"  Steps = {self.step_count}  Ticks = {self.tick_count}")
        if self.fault is not None:
            lines.append(f"  Fault: {self.fault}")
        elif not self.halted:
            lines.append(f"  Next: {self.current_instruction()}")
        return "\n".join(lines)


def steps_per_tick(ips: int, ticks_per_second: int = TICKS_PER_SECOND) -> int:
    """How many instructions to run between 60 Hz ticks for *ips*."""
    return max(1, round(ips / ticks_per_second))
