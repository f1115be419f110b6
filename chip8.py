"""
CHIP-8 Interpreter Core
========================
Memory, registers, call stack and the instruction executor for the CHIP-8
virtual machine.

Memory map (4 KiB):

  0x000 - 0x04F   built-in hex digit glyphs (16 × 5 bytes)
  0x050 - 0x1FF   unused (historically the interpreter itself)
  0x200 - 0xE9F   program image (3232 bytes)
  0xEA0 - 0xEBF   call stack (16 × 16-bit return addresses)
  0xEC0 - 0xEFF   unused
  0xF00 - 0xFFF   display refresh area (reserved)

The executor never fetches: it is handed an already-decoded
``Instruction`` (see decoder.py) plus the ``Machine`` it acts on, and the
fetch/decode/execute loop lives in system.py.  VF is written *after* the
destination register by every flag-producing instruction, so the flag
always wins when the destination is VF itself.
"""

from __future__ import annotations
import random
from typing import Callable, Optional

from decoder import Instruction, Op
from devices import Framebuffer, Keypad, TimerPair

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

MEM_SIZE = 4096

GLYPH_BASE = 0x000
GLYPH_SIZE = 5           # bytes per digit glyph
NUM_GLYPHS = 16

PROGRAM_START = 0x200
STACK_BASE    = 0xEA0    # lowest stack slot
STACK_DEPTH   = 16
STACK_END     = STACK_BASE + 2 * STACK_DEPTH   # exclusive, 0xEC0
DISPLAY_AREA  = 0xF00

PROGRAM_CAPACITY = STACK_BASE - PROGRAM_START  # 0xCA0 == 3232

NUM_REGS = 16
VF = 0xF

INDEX_LIMIT = 0xFFF      # ADD I,Vx sets VF when I+Vx exceeds this

GLYPHS = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])

# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class Chip8Error(Exception):
    """Base for every fault raised by the interpreter.

    ``pc`` and ``word`` are filled in by the VM when the fault happens
    while executing an instruction (None for load-time errors).
    """

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.pc: Optional[int] = None
        self.word: Optional[int] = None

    def __str__(self):
        msg = super().__str__()
        if self.pc is not None:
            where = f"PC = {self.pc:#06x}"
            if self.word is not None:
                where += f", instruction {self.word:#06x}"
            msg += f" ({where})"
        return msg


class StackOverflow(Chip8Error):
    pass


class StackUnderflow(Chip8Error):
    pass


class OutOfBounds(Chip8Error):
    def __init__(self, addr: int):
        self.addr = addr
        super().__init__(f"Memory access out of bounds @ {addr:#06x}")


class UnknownInstruction(Chip8Error):
    def __init__(self, word: int, pc: int):
        super().__init__(f"Unknown instruction {word:#06x} at {pc:#06x}")
        self.word = word
        self.pc = pc


class UnknownOperand(Chip8Error):
    def __init__(self, word: int, pc: int, value: int):
        self.value = value
        super().__init__(f"Operand {value:#04x} out of range for {word:#06x}")
        self.word = word
        self.pc = pc


class ProgramTooLarge(Chip8Error):
    def __init__(self, size: int, capacity: int = PROGRAM_CAPACITY):
        self.size = size
        self.capacity = capacity
        super().__init__(f"Program is {size} bytes; at most {capacity} fit")


class HaltError(Chip8Error):
    pass

# ---------------------------------------------------------------------------
#  Memory
# ---------------------------------------------------------------------------

class Memory:
    """Flat 4 KiB byte store.  Out-of-range access raises, never wraps."""

    def __init__(self, size: int = MEM_SIZE):
        self.size = size
        self.data = bytearray(size)

    def _check(self, addr: int):
        if not 0 <= addr < self.size:
            raise OutOfBounds(addr)

    def read_byte(self, addr: int) -> int:
        self._check(addr)
        return self.data[addr]

    def write_byte(self, addr: int, value: int):
        self._check(addr)
        self.data[addr] = value & 0xFF

    def read_word(self, addr: int) -> int:
        """Big-endian 16-bit read (high byte first)."""
        self._check(addr)
        self._check(addr + 1)
        return (self.data[addr] << 8) | self.data[addr + 1]

    def write_word(self, addr: int, value: int):
        self._check(addr)
        self._check(addr + 1)
        self.data[addr] = (value >> 8) & 0xFF
        self.data[addr + 1] = value & 0xFF

    def clear(self):
        self.data[:] = bytes(self.size)

    def load_glyphs(self):
        self.data[GLYPH_BASE:GLYPH_BASE + len(GLYPHS)] = GLYPHS

    def load_program(self, program: bytes | bytearray):
        """Copy a program image to 0x200."""
        if len(program) > PROGRAM_CAPACITY:
            raise ProgramTooLarge(len(program))
        self.data[PROGRAM_START:PROGRAM_START + len(program)] = program

    def check_range(self, addr: int, length: int):
        """Raise OutOfBounds unless addr..addr+length-1 is all in memory."""
        self._check(addr)
        if length > 0:
            self._check(addr + length - 1)

    def dump(self, addr: int, length: int) -> bytes:
        self.check_range(addr, length)
        return bytes(self.data[addr:addr + length])

# ---------------------------------------------------------------------------
#  Registers
# ---------------------------------------------------------------------------

class RegisterFile:
    """V0..VF (8-bit), I and PC (16-bit)."""

    def __init__(self):
        self.v = bytearray(NUM_REGS)
        self._i: int = 0
        self._pc: int = PROGRAM_START

    def __getitem__(self, reg: int) -> int:
        return self.v[reg & 0xF]

    def __setitem__(self, reg: int, value: int):
        self.v[reg & 0xF] = value & 0xFF

    @property
    def i(self) -> int:
        return self._i

    @i.setter
    def i(self, value: int):
        self._i = value & 0xFFFF

    @property
    def pc(self) -> int:
        return self._pc

    @pc.setter
    def pc(self, value: int):
        self._pc = value & 0xFFFF

    def reset(self):
        self.v = bytearray(NUM_REGS)
        self._i = 0
        self._pc = PROGRAM_START

# ---------------------------------------------------------------------------
#  Call stack
# ---------------------------------------------------------------------------

class CallStack:
    """16-level return-address stack kept in the reserved memory region.

    Slot *n* lives at ``STACK_BASE + 2 * n`` (big-endian); ``depth`` is the
    number of occupied slots and always points at the next free one.
    """

    def __init__(self, memory: Memory, base: int = STACK_BASE,
                 capacity: int = STACK_DEPTH):
        self.mem = memory
        self.base = base
        self.capacity = capacity
        self.depth: int = 0

    def push(self, address: int):
        if self.depth >= self.capacity:
            raise StackOverflow(f"Call stack overflow ({self.capacity} levels)")
        self.mem.write_word(self.base + 2 * self.depth, address)
        self.depth += 1

    def pop(self) -> int:
        if self.depth == 0:
            raise StackUnderflow("Return with empty call stack")
        self.depth -= 1
        return self.mem.read_word(self.base + 2 * self.depth)

    def entries(self) -> list[int]:
        """Return addresses bottom → top."""
        return [self.mem.read_word(self.base + 2 * n) for n in range(self.depth)]

    def reset(self):
        self.depth = 0

    def __len__(self):
        return self.depth

# ---------------------------------------------------------------------------
#  Machine aggregate
# ---------------------------------------------------------------------------

class Machine:
    """Everything an instruction can touch, owned in one place."""

    def __init__(self):
        self.memory = Memory()
        self.regs = RegisterFile()
        self.stack = CallStack(self.memory)
        self.timers = TimerPair()
        self.keypad = Keypad()
        self.fb = Framebuffer()
        self.reset()

    def reset(self):
        self.memory.clear()
        self.memory.load_glyphs()
        self.regs.reset()
        self.stack.reset()
        self.timers.reset()
        self.keypad.reset()
        self.fb.reset()

    def dump_regs(self) -> str:
        lines = []
        for row in range(0, NUM_REGS, 4):
            lines.append("  " + "  ".join(
                f"V{r:X} = {self.regs[r]:#04x}" for r in range(row, row + 4)))
        lines.append(f"  I  = {self.regs.i:#06x}  PC = {self.regs.pc:#06x}  "
                     f"SP = {self.stack.depth}")
        lines.append(f"  DT = {self.timers.delay}  ST = {self.timers.sound}")
        return "\n".join(lines)

# ---------------------------------------------------------------------------
#  Executor
# ---------------------------------------------------------------------------

class Executor:
    """Applies decoded instructions to a ``Machine``.

    ``execute`` returns None, except for ``LD Vx, K`` where it returns the
    register that should receive the next key press; suspending the VM
    is the caller's business.

    *index_overflow_flag* controls the ``ADD I, Vx`` quirk: when True, VF
    is set to 1 if I + Vx exceeds 0xFFF and to 0 otherwise; when False,
    VF is left alone.
    """

    def __init__(self, rng: Optional[random.Random] = None,
                 index_overflow_flag: bool = True):
        self.rng = rng if rng is not None else random.Random()
        self.index_overflow_flag = index_overflow_flag

        self._handlers: dict[Op, Callable[[Machine, Instruction], Optional[int]]] = {
            Op.CLS:       self._exec_cls,
            Op.RET:       self._exec_ret,
            Op.JP:        self._exec_jp,
            Op.CALL:      self._exec_call,
            Op.SE_BYTE:   self._exec_se_byte,
            Op.SNE_BYTE:  self._exec_sne_byte,
            Op.SE_REG:    self._exec_se_reg,
            Op.LD_BYTE:   self._exec_ld_byte,
            Op.ADD_BYTE:  self._exec_add_byte,
            Op.LD_REG:    self._exec_ld_reg,
            Op.OR:        self._exec_or,
            Op.AND:       self._exec_and,
            Op.XOR:       self._exec_xor,
            Op.ADD_REG:   self._exec_add_reg,
            Op.SUB:       self._exec_sub,
            Op.SHR:       self._exec_shr,
            Op.SUBN:      self._exec_subn,
            Op.SHL:       self._exec_shl,
            Op.SNE_REG:   self._exec_sne_reg,
            Op.LD_I:      self._exec_ld_i,
            Op.JP_V0:     self._exec_jp_v0,
            Op.RND:       self._exec_rnd,
            Op.DRW:       self._exec_drw,
            Op.SKP:       self._exec_skp,
            Op.SKNP:      self._exec_sknp,
            Op.LD_VX_DT:  self._exec_ld_vx_dt,
            Op.LD_KEY:    self._exec_ld_key,
            Op.LD_DT_VX:  self._exec_ld_dt_vx,
            Op.LD_ST_VX:  self._exec_ld_st_vx,
            Op.ADD_I:     self._exec_add_i,
            Op.LD_F:      self._exec_ld_f,
            Op.LD_B:      self._exec_ld_b,
            Op.LD_MEM_VX: self._exec_ld_mem_vx,
            Op.LD_VX_MEM: self._exec_ld_vx_mem,
        }
        missing = set(Op) - set(self._handlers) - {Op.UNKNOWN}
        assert not missing, f"no handler for {sorted(o.name for o in missing)}"

    def execute(self, m: Machine, ins: Instruction) -> Optional[int]:
        """Execute one instruction.  PC must already point past it."""
        handler = self._handlers.get(ins.op)
        if handler is None:
            raise UnknownInstruction(ins.word, ins.addr)
        return handler(m, ins)

    # -- helpers --

    @staticmethod
    def _skip_if(m: Machine, cond: bool):
        if cond:
            m.regs.pc += 2

    # -- 0x0: system --

    def _exec_cls(self, m: Machine, ins: Instruction):
        m.fb.clear()

    def _exec_ret(self, m: Machine, ins: Instruction):
        m.regs.pc = m.stack.pop()

    # -- 0x1 / 0x2 / 0xB: flow --

    def _exec_jp(self, m: Machine, ins: Instruction):
        m.regs.pc = ins.nnn

    def _exec_call(self, m: Machine, ins: Instruction):
        m.stack.push(m.regs.pc)   # already past the CALL
        m.regs.pc = ins.nnn

    def _exec_jp_v0(self, m: Machine, ins: Instruction):
        m.regs.pc = ins.nnn + m.regs[0]

    # -- 0x3 / 0x4 / 0x5 / 0x9: skips --

    def _exec_se_byte(self, m: Machine, ins: Instruction):
        self._skip_if(m, m.regs[ins.x] == ins.kk)

    def _exec_sne_byte(self, m: Machine, ins: Instruction):
        self._skip_if(m, m.regs[ins.x] != ins.kk)

    def _exec_se_reg(self, m: Machine, ins: Instruction):
        self._skip_if(m, m.regs[ins.x] == m.regs[ins.y])

    def _exec_sne_reg(self, m: Machine, ins: Instruction):
        self._skip_if(m, m.regs[ins.x] != m.regs[ins.y])

    # -- 0x6 / 0x7: immediates --

    def _exec_ld_byte(self, m: Machine, ins: Instruction):
        m.regs[ins.x] = ins.kk

    def _exec_add_byte(self, m: Machine, ins: Instruction):
        m.regs[ins.x] = m.regs[ins.x] + ins.kk   # no carry flag

    # -- 0x8: ALU --

    def _exec_ld_reg(self, m: Machine, ins: Instruction):
        m.regs[ins.x] = m.regs[ins.y]

    def _exec_or(self, m: Machine, ins: Instruction):
        m.regs[ins.x] = m.regs[ins.x] | m.regs[ins.y]

    def _exec_and(self, m: Machine, ins: Instruction):
        m.regs[ins.x] = m.regs[ins.x] & m.regs[ins.y]

    def _exec_xor(self, m: Machine, ins: Instruction):
        m.regs[ins.x] = m.regs[ins.x] ^ m.regs[ins.y]

    def _exec_add_reg(self, m: Machine, ins: Instruction):
        total = m.regs[ins.x] + m.regs[ins.y]
        m.regs[ins.x] = total
        m.regs[VF] = 1 if total > 0xFF else 0

    def _exec_sub(self, m: Machine, ins: Instruction):
        a, b = m.regs[ins.x], m.regs[ins.y]
        m.regs[ins.x] = a - b
        m.regs[VF] = 1 if a >= b else 0

    def _exec_shr(self, m: Machine, ins: Instruction):
        a = m.regs[ins.x]
        m.regs[ins.x] = a >> 1
        m.regs[VF] = a & 0x01

    def _exec_subn(self, m: Machine, ins: Instruction):
        a, b = m.regs[ins.x], m.regs[ins.y]
        m.regs[ins.x] = b - a
        m.regs[VF] = 1 if b >= a else 0

    def _exec_shl(self, m: Machine, ins: Instruction):
        a = m.regs[ins.x]
        m.regs[ins.x] = a << 1
        m.regs[VF] = (a >> 7) & 0x01

    # -- 0xA / 0xC / 0xD --

    def _exec_ld_i(self, m: Machine, ins: Instruction):
        m.regs.i = ins.nnn

    def _exec_rnd(self, m: Machine, ins: Instruction):
        m.regs[ins.x] = self.rng.randrange(256) & ins.kk

    def _exec_drw(self, m: Machine, ins: Instruction):
        base = m.regs.i
        sprite = bytes(m.memory.read_byte(base + row) for row in range(ins.n))
        collision = m.fb.draw_sprite(m.regs[ins.x], m.regs[ins.y], sprite)
        m.regs[VF] = 1 if collision else 0

    # -- 0xE: keys --

    def _exec_skp(self, m: Machine, ins: Instruction):
        self._skip_if(m, m.keypad.is_pressed(m.regs[ins.x] & 0xF))

    def _exec_sknp(self, m: Machine, ins: Instruction):
        self._skip_if(m, not m.keypad.is_pressed(m.regs[ins.x] & 0xF))

    # -- 0xF: timers, index, memory --

    def _exec_ld_vx_dt(self, m: Machine, ins: Instruction):
        m.regs[ins.x] = m.timers.delay

    def _exec_ld_key(self, m: Machine, ins: Instruction) -> int:
        return ins.x

    def _exec_ld_dt_vx(self, m: Machine, ins: Instruction):
        m.timers.set_delay(m.regs[ins.x])

    def _exec_ld_st_vx(self, m: Machine, ins: Instruction):
        m.timers.set_sound(m.regs[ins.x])

    def _exec_add_i(self, m: Machine, ins: Instruction):
        total = m.regs.i + m.regs[ins.x]
        m.regs.i = total
        if self.index_overflow_flag:
            m.regs[VF] = 1 if total > INDEX_LIMIT else 0

    def _exec_ld_f(self, m: Machine, ins: Instruction):
        digit = m.regs[ins.x]
        if digit >= NUM_GLYPHS:
            raise UnknownOperand(ins.word, ins.addr, digit)
        m.regs.i = GLYPH_BASE + digit * GLYPH_SIZE

    def _exec_ld_b(self, m: Machine, ins: Instruction):
        value = m.regs[ins.x]
        i = m.regs.i
        m.memory.check_range(i, 3)
        m.memory.write_byte(i, value // 100)
        m.memory.write_byte(i + 1, (value // 10) % 10)
        m.memory.write_byte(i + 2, value % 10)

    def _exec_ld_mem_vx(self, m: Machine, ins: Instruction):
        i = m.regs.i
        m.memory.check_range(i, ins.x + 1)
        for r in range(ins.x + 1):
            m.memory.write_byte(i + r, m.regs[r])

    def _exec_ld_vx_mem(self, m: Machine, ins: Instruction):
        i = m.regs.i
        m.memory.check_range(i, ins.x + 1)
        for r in range(ins.x + 1):
            m.regs[r] = m.memory.read_byte(i + r)
