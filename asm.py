"""
CHIP-8 Assembler
=================
Translates Cowgod-style CHIP-8 assembly into a program image.

Supports:
  - Labels (``name:`` on its own line or in front of an instruction)
  - The full base instruction set (CLS … LD Vx, [I])
  - Immediate literals: decimal, ``0x``/``#`` hex, ``0b`` binary
  - Comments (';' to end of line)
  - .org, .db, .dw directives (.dw is big-endian, like instructions)

The image starts at *base_addr* (0x200 by default), so the first byte of
the returned bytes lands at that address when loaded.

Usage:
  from asm import assemble
  rom = assemble(source_text)
"""

from __future__ import annotations

from chip8 import PROGRAM_START

# ---------------------------------------------------------------------------
#  Operand tables
# ---------------------------------------------------------------------------

# 8xyN register-register ALU ops
ALU_SUB = {
    "or": 0x1, "and": 0x2, "xor": 0x3, "sub": 0x5, "subn": 0x7,
}

# FxNN forms of LD with a special first operand: LD <special>, Vx
LD_TO_SPECIAL = {
    "dt": 0x15, "st": 0x18, "f": 0x29, "b": 0x33, "[i]": 0x55,
}

# FxNN forms of LD with a special second operand: LD Vx, <special>
LD_FROM_SPECIAL = {
    "dt": 0x07, "k": 0x0A, "[i]": 0x65,
}

# ---------------------------------------------------------------------------
#  Parser helpers
# ---------------------------------------------------------------------------

class AsmError(Exception):
    def __init__(self, line: int, msg: str):
        self.line = line
        super().__init__(f"Line {line}: {msg}")


def _is_reg(tok: str) -> bool:
    tok = tok.strip().lower()
    return (len(tok) == 2 and tok[0] == "v"
            and tok[1] in "0123456789abcdef")


def _parse_reg(lineno: int, tok: str) -> int:
    """Parse 'V0'-'VF' (any case). Returns register index."""
    if not _is_reg(tok):
        raise AsmError(lineno, f"Invalid register: {tok.strip()!r}")
    return int(tok.strip()[1], 16)


def _parse_imm(tok: str) -> int:
    """Parse an immediate value (decimal, 0x / # hex, 0b binary)."""
    tok = tok.strip()
    if tok.startswith("#"):
        return int(tok[1:], 16)
    return int(tok, 0)


def _split_ops(rest: str) -> list[str]:
    """Split operand string by comma, trimming whitespace."""
    return [s.strip() for s in rest.split(",") if s.strip()]


def _split_mnemonic(text: str) -> tuple[str, str]:
    """Split 'MNEM operands' → (mnem, operands_str)."""
    parts = text.split(None, 1)
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[1]


def _value(lineno: int, tok: str, labels: dict[str, int], bits: int) -> int:
    """Resolve a label or immediate and range-check it to *bits* bits."""
    tok = tok.strip()
    if tok in labels:
        val = labels[tok]
    else:
        try:
            val = _parse_imm(tok)
        except ValueError:
            raise AsmError(lineno, f"Unknown label or bad number: {tok!r}") from None
    if not 0 <= val < (1 << bits):
        raise AsmError(lineno, f"Value {tok} out of range for {bits}-bit field")
    return val


def _expect(lineno: int, mnem: str, ops: list[str], *counts: int):
    if len(ops) not in counts:
        want = " or ".join(str(c) for c in counts)
        raise AsmError(lineno, f"{mnem.upper()} takes {want} operand(s), got {len(ops)}")

# ---------------------------------------------------------------------------
#  Assembler
# ---------------------------------------------------------------------------

def assemble(source: str, base_addr: int = PROGRAM_START,
             listing: bool = False) -> bytearray:
    """
    Two-pass assembler.
    Pass 1: collect labels and compute addresses.
    Pass 2: emit bytes with resolved addresses.
    If listing=True, print an address/hex/source listing to stdout.
    """
    cleaned: list[tuple[int, str]] = []
    for i, raw in enumerate(source.split("\n"), 1):
        stripped = raw.split(";", 1)[0].strip()
        if stripped:
            cleaned.append((i, stripped))

    # ---- Pass 1: label collection and size computation ----
    labels: dict[str, int] = {}
    sizes: list[tuple[int, str, int]] = []  # (line_no, text, size_bytes)
    pc = base_addr

    for lineno, text in cleaned:
        # Leading label, optionally followed by an instruction
        head = text.split(None, 1)[0]
        if head.endswith(":"):
            lbl = head[:-1]
            if not lbl:
                raise AsmError(lineno, "Empty label")
            if lbl in labels:
                raise AsmError(lineno, f"Duplicate label: {lbl}")
            labels[lbl] = pc
            text = text[len(head):].strip()
            if not text:
                continue

        lower = text.lower()
        if lower.startswith(".org"):
            target = _parse_imm(text[4:])
            if target < pc:
                raise AsmError(lineno, f".org {target:#x} moves backwards from {pc:#x}")
            sizes.append((lineno, text, target - pc))
            pc = target
            continue
        if lower.startswith(".db"):
            n = len(_split_ops(text[3:]))
            sizes.append((lineno, text, n))
            pc += n
            continue
        if lower.startswith(".dw"):
            n = 2 * len(_split_ops(text[3:]))
            sizes.append((lineno, text, n))
            pc += n
            continue
        if lower.startswith("."):
            raise AsmError(lineno, f"Unknown directive: {text.split()[0]}")

        sizes.append((lineno, text, 2))
        pc += 2

    # ---- Pass 2: emit bytes ----
    code = bytearray()
    pc = base_addr
    listing_lines = []  # (addr, hex_bytes, source_text)

    for lineno, text, sz in sizes:
        start_pc = pc
        lower = text.lower()

        if lower.startswith(".org"):
            code.extend(bytes(sz))
            pc += sz
            if listing:
                listing_lines.append((start_pc, "", text))
            continue

        if lower.startswith(".db"):
            emitted = bytearray(
                _value(lineno, tok, labels, 8) for tok in _split_ops(text[3:]))
        elif lower.startswith(".dw"):
            emitted = bytearray()
            for tok in _split_ops(text[3:]):
                v = _value(lineno, tok, labels, 16)
                emitted += bytes([(v >> 8) & 0xFF, v & 0xFF])
        else:
            word = _emit_instruction(lineno, text, labels)
            emitted = bytearray([(word >> 8) & 0xFF, word & 0xFF])

        assert len(emitted) == sz, f"Size mismatch line {lineno}: expected {sz}, got {len(emitted)}"
        if listing:
            hexstr = " ".join(f"{b:02X}" for b in emitted[:8])
            if len(emitted) > 8:
                hexstr += " ..."
            listing_lines.append((start_pc, hexstr, text))
        code.extend(emitted)
        pc += sz

    if listing:
        addr_labels: dict[int, list[str]] = {}
        for lbl, addr in labels.items():
            addr_labels.setdefault(addr, []).append(lbl)
        for addr, hexstr, src in listing_lines:
            for lbl in addr_labels.pop(addr, []):
                print(f"                    {lbl}:")
            print(f"  {addr:04X}  {hexstr:<24s}  {src}")
        for addr in sorted(addr_labels):
            for lbl in addr_labels[addr]:
                print(f"                    {lbl}:")

    return code


# ---------------------------------------------------------------------------
#  Instruction encoding (pass 2)
# ---------------------------------------------------------------------------

def _emit_instruction(lineno: int, text: str, labels: dict[str, int]) -> int:
    """Encode one instruction line into a 16-bit word."""
    mnem, rest = _split_mnemonic(text)
    m = mnem.lower()
    ops = _split_ops(rest)
    low = [o.lower() for o in ops]

    def reg(i: int) -> int:
        return _parse_reg(lineno, ops[i])

    def byte(i: int) -> int:
        return _value(lineno, ops[i], labels, 8)

    def addr(i: int) -> int:
        return _value(lineno, ops[i], labels, 12)

    if m == "cls":
        _expect(lineno, m, ops, 0)
        return 0x00E0
    if m == "ret":
        _expect(lineno, m, ops, 0)
        return 0x00EE

    if m == "jp":
        _expect(lineno, m, ops, 1, 2)
        if len(ops) == 2:
            if low[0] != "v0":
                raise AsmError(lineno, "JP with two operands must be JP V0, addr")
            return 0xB000 | addr(1)
        return 0x1000 | addr(0)

    if m == "call":
        _expect(lineno, m, ops, 1)
        return 0x2000 | addr(0)

    if m in ("se", "sne"):
        _expect(lineno, m, ops, 2)
        x = reg(0)
        if _is_reg(ops[1]):
            base = 0x5000 if m == "se" else 0x9000
            return base | (x << 8) | (reg(1) << 4)
        base = 0x3000 if m == "se" else 0x4000
        return base | (x << 8) | byte(1)

    if m == "ld":
        _expect(lineno, m, ops, 2)
        if low[0] == "i":
            return 0xA000 | addr(1)
        if low[0] in LD_TO_SPECIAL:
            return 0xF000 | (reg(1) << 8) | LD_TO_SPECIAL[low[0]]
        x = reg(0)
        if low[1] in LD_FROM_SPECIAL:
            return 0xF000 | (x << 8) | LD_FROM_SPECIAL[low[1]]
        if _is_reg(ops[1]):
            return 0x8000 | (x << 8) | (reg(1) << 4)
        return 0x6000 | (x << 8) | byte(1)

    if m == "add":
        _expect(lineno, m, ops, 2)
        if low[0] == "i":
            return 0xF01E | (reg(1) << 8)
        x = reg(0)
        if _is_reg(ops[1]):
            return 0x8004 | (x << 8) | (reg(1) << 4)
        return 0x7000 | (x << 8) | byte(1)

    if m in ALU_SUB:
        _expect(lineno, m, ops, 2)
        return 0x8000 | (reg(0) << 8) | (reg(1) << 4) | ALU_SUB[m]

    if m in ("shr", "shl"):
        _expect(lineno, m, ops, 1, 2)
        y = reg(1) if len(ops) == 2 else 0
        return 0x8000 | (reg(0) << 8) | (y << 4) | (0x6 if m == "shr" else 0xE)

    if m == "rnd":
        _expect(lineno, m, ops, 2)
        return 0xC000 | (reg(0) << 8) | byte(1)

    if m == "drw":
        _expect(lineno, m, ops, 3)
        n = _value(lineno, ops[2], labels, 4)
        return 0xD000 | (reg(0) << 8) | (reg(1) << 4) | n

    if m in ("skp", "sknp"):
        _expect(lineno, m, ops, 1)
        return 0xE000 | (reg(0) << 8) | (0x9E if m == "skp" else 0xA1)

    raise AsmError(lineno, f"Unknown mnemonic: {mnem}")
