"""
CHIP-8 Instruction Decoder
===========================
Turns a 16-bit instruction word into a tagged ``Instruction`` record.

CHIP-8 has no separate opcode field: the whole word is the opcode.  Most
instructions are told apart by the most significant nibble, and the
families that share one (0x0, 0x8, 0xE, 0xF) are split again on the low
nibble or low byte.  Decoding is pure: the same word always yields the
same ``Instruction``, and machine state is never touched.

Usage:
    from decoder import decode, disassemble
    ins = decode(0xD125, addr=0x200)
    print(disassemble(ins))       # DRW V1, V2, 5
"""

from __future__ import annotations

import enum
from typing import NamedTuple

# ---------------------------------------------------------------------------
#  Field extraction
# ---------------------------------------------------------------------------

def msn(word: int) -> int:
    """Most significant nibble (bits 12-15)."""
    return (word >> 12) & 0xF

def lsn(word: int) -> int:
    """Least significant nibble (bits 0-3)."""
    return word & 0xF

def lsb(word: int) -> int:
    """Least significant byte (bits 0-7)."""
    return word & 0xFF

def reg_x(word: int) -> int:
    """First register selector (bits 8-11)."""
    return (word >> 8) & 0xF

def reg_y(word: int) -> int:
    """Second register selector (bits 4-7)."""
    return (word >> 4) & 0xF

def addr12(word: int) -> int:
    """12-bit address field (bits 0-11)."""
    return word & 0xFFF

# ---------------------------------------------------------------------------
#  Operation variants
# ---------------------------------------------------------------------------

class Op(enum.Enum):
    CLS       = "CLS"
    RET       = "RET"
    JP        = "JP"
    CALL      = "CALL"
    SE_BYTE   = "SE_BYTE"     # 3xkk
    SNE_BYTE  = "SNE_BYTE"    # 4xkk
    SE_REG    = "SE_REG"      # 5xy0
    LD_BYTE   = "LD_BYTE"     # 6xkk
    ADD_BYTE  = "ADD_BYTE"    # 7xkk
    LD_REG    = "LD_REG"      # 8xy0
    OR        = "OR"          # 8xy1
    AND       = "AND"         # 8xy2
    XOR       = "XOR"         # 8xy3
    ADD_REG   = "ADD_REG"     # 8xy4
    SUB       = "SUB"         # 8xy5
    SHR       = "SHR"         # 8xy6
    SUBN      = "SUBN"        # 8xy7
    SHL       = "SHL"         # 8xyE
    SNE_REG   = "SNE_REG"     # 9xy0
    LD_I      = "LD_I"        # Annn
    JP_V0     = "JP_V0"       # Bnnn
    RND       = "RND"         # Cxkk
    DRW       = "DRW"         # Dxyn
    SKP       = "SKP"         # Ex9E
    SKNP      = "SKNP"        # ExA1
    LD_VX_DT  = "LD_VX_DT"    # Fx07
    LD_KEY    = "LD_KEY"      # Fx0A
    LD_DT_VX  = "LD_DT_VX"    # Fx15
    LD_ST_VX  = "LD_ST_VX"    # Fx18
    ADD_I     = "ADD_I"       # Fx1E
    LD_F      = "LD_F"        # Fx29
    LD_B      = "LD_B"        # Fx33
    LD_MEM_VX = "LD_MEM_VX"   # Fx55
    LD_VX_MEM = "LD_VX_MEM"   # Fx65
    UNKNOWN   = "UNKNOWN"


class Instruction(NamedTuple):
    """One decoded instruction word.

    Every field is filled in regardless of the variant so that handlers
    can pick what they need; ``addr`` is where the word was fetched from.
    """
    op: Op
    word: int
    addr: int
    x: int
    y: int
    kk: int
    nnn: int
    n: int


# Sub-tables for the families that share a most significant nibble
_ZERO_OPS = {0x00E0: Op.CLS, 0x00EE: Op.RET}

_ALU_OPS = {
    0x0: Op.LD_REG, 0x1: Op.OR,  0x2: Op.AND, 0x3: Op.XOR,
    0x4: Op.ADD_REG, 0x5: Op.SUB, 0x6: Op.SHR, 0x7: Op.SUBN,
    0xE: Op.SHL,
}

_KEY_OPS = {0x9E: Op.SKP, 0xA1: Op.SKNP}

_MISC_OPS = {
    0x07: Op.LD_VX_DT, 0x0A: Op.LD_KEY,   0x15: Op.LD_DT_VX,
    0x18: Op.LD_ST_VX, 0x1E: Op.ADD_I,    0x29: Op.LD_F,
    0x33: Op.LD_B,     0x55: Op.LD_MEM_VX, 0x65: Op.LD_VX_MEM,
}

# Families whose whole word is described by the top nibble alone
_SIMPLE_OPS = {
    0x1: Op.JP, 0x2: Op.CALL, 0x3: Op.SE_BYTE, 0x4: Op.SNE_BYTE,
    0x6: Op.LD_BYTE, 0x7: Op.ADD_BYTE, 0xA: Op.LD_I, 0xB: Op.JP_V0,
    0xC: Op.RND, 0xD: Op.DRW,
}


def classify(word: int) -> Op:
    """Return the ``Op`` variant for *word* (``Op.UNKNOWN`` if none)."""
    word &= 0xFFFF
    f = msn(word)
    if f in _SIMPLE_OPS:
        return _SIMPLE_OPS[f]
    if f == 0x0:
        return _ZERO_OPS.get(word, Op.UNKNOWN)
    if f == 0x5:
        return Op.SE_REG if lsn(word) == 0 else Op.UNKNOWN
    if f == 0x8:
        return _ALU_OPS.get(lsn(word), Op.UNKNOWN)
    if f == 0x9:
        return Op.SNE_REG if lsn(word) == 0 else Op.UNKNOWN
    if f == 0xE:
        return _KEY_OPS.get(lsb(word), Op.UNKNOWN)
    # f == 0xF
    return _MISC_OPS.get(lsb(word), Op.UNKNOWN)


def decode(word: int, addr: int = 0) -> Instruction:
    """Decode a 16-bit instruction word fetched from *addr*."""
    word &= 0xFFFF
    return Instruction(
        op=classify(word),
        word=word,
        addr=addr,
        x=reg_x(word),
        y=reg_y(word),
        kk=lsb(word),
        nnn=addr12(word),
        n=lsn(word),
    )

# ---------------------------------------------------------------------------
#  Disassembly
# ---------------------------------------------------------------------------

def disassemble(ins: Instruction) -> str:
    """Render *ins* as a Cowgod-style mnemonic line."""
    op, x, y, kk, nnn = ins.op, ins.x, ins.y, ins.kk, ins.nnn
    if op is Op.CLS:       return "CLS"
    if op is Op.RET:       return "RET"
    if op is Op.JP:        return f"JP {nnn:#05x}"
    if op is Op.CALL:      return f"CALL {nnn:#05x}"
    if op is Op.SE_BYTE:   return f"SE V{x:X}, {kk:#04x}"
    if op is Op.SNE_BYTE:  return f"SNE V{x:X}, {kk:#04x}"
    if op is Op.SE_REG:    return f"SE V{x:X}, V{y:X}"
    if op is Op.LD_BYTE:   return f"LD V{x:X}, {kk:#04x}"
    if op is Op.ADD_BYTE:  return f"ADD V{x:X}, {kk:#04x}"
    if op is Op.LD_REG:    return f"LD V{x:X}, V{y:X}"
    if op is Op.OR:        return f"OR V{x:X}, V{y:X}"
    if op is Op.AND:       return f"AND V{x:X}, V{y:X}"
    if op is Op.XOR:       return f"XOR V{x:X}, V{y:X}"
    if op is Op.ADD_REG:   return f"ADD V{x:X}, V{y:X}"
    if op is Op.SUB:       return f"SUB V{x:X}, V{y:X}"
    if op is Op.SHR:       return f"SHR V{x:X}"
    if op is Op.SUBN:      return f"SUBN V{x:X}, V{y:X}"
    if op is Op.SHL:       return f"SHL V{x:X}"
    if op is Op.SNE_REG:   return f"SNE V{x:X}, V{y:X}"
    if op is Op.LD_I:      return f"LD I, {nnn:#05x}"
    if op is Op.JP_V0:     return f"JP V0, {nnn:#05x}"
    if op is Op.RND:       return f"RND V{x:X}, {kk:#04x}"
    if op is Op.DRW:       return f"DRW V{x:X}, V{y:X}, {ins.n}"
    if op is Op.SKP:       return f"SKP V{x:X}"
    if op is Op.SKNP:      return f"SKNP V{x:X}"
    if op is Op.LD_VX_DT:  return f"LD V{x:X}, DT"
    if op is Op.LD_KEY:    return f"LD V{x:X}, K"
    if op is Op.LD_DT_VX:  return f"LD DT, V{x:X}"
    if op is Op.LD_ST_VX:  return f"LD ST, V{x:X}"
    if op is Op.ADD_I:     return f"ADD I, V{x:X}"
    if op is Op.LD_F:      return f"LD F, V{x:X}"
    if op is Op.LD_B:      return f"LD B, V{x:X}"
    if op is Op.LD_MEM_VX: return f"LD [I], V{x:X}"
    if op is Op.LD_VX_MEM: return f"LD V{x:X}, [I]"
    return f"DW {ins.word:#06x}"


def disassemble_range(mem: bytes | bytearray, start: int,
                      count: int) -> list[tuple[int, int, str]]:
    """Disassemble *count* words from *mem* starting at *start*.

    Returns a list of ``(address, word, text)``.  Stops early at the end
    of *mem*; a trailing odd byte is not decoded.
    """
    out = []
    addr = start
    for _ in range(count):
        if addr + 1 >= len(mem):
            break
        word = (mem[addr] << 8) | mem[addr + 1]
        out.append((addr, word, disassemble(decode(word, addr))))
        addr += 2
    return out
