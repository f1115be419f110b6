#!/usr/bin/env python3
"""
Tests for the instruction decoder and disassembler.
"""
import unittest

from decoder import (
    Op, Instruction, decode, classify, disassemble, disassemble_range,
    msn, lsn, lsb, reg_x, reg_y, addr12,
)


class TestFields(unittest.TestCase):
    def test_field_helpers(self):
        w = 0xD125
        self.assertEqual(msn(w), 0xD)
        self.assertEqual(reg_x(w), 0x1)
        self.assertEqual(reg_y(w), 0x2)
        self.assertEqual(lsn(w), 0x5)
        self.assertEqual(lsb(w), 0x25)
        self.assertEqual(addr12(w), 0x125)

    def test_decode_fills_every_field(self):
        ins = decode(0x8AB4, addr=0x210)
        self.assertIsInstance(ins, Instruction)
        self.assertEqual(ins.op, Op.ADD_REG)
        self.assertEqual((ins.word, ins.addr), (0x8AB4, 0x210))
        self.assertEqual((ins.x, ins.y, ins.kk, ins.nnn, ins.n),
                         (0xA, 0xB, 0xB4, 0xAB4, 0x4))


class TestClassify(unittest.TestCase):
    KNOWN = {
        0x00E0: Op.CLS, 0x00EE: Op.RET, 0x1234: Op.JP, 0x2345: Op.CALL,
        0x3012: Op.SE_BYTE, 0x4012: Op.SNE_BYTE, 0x5120: Op.SE_REG,
        0x6012: Op.LD_BYTE, 0x7012: Op.ADD_BYTE, 0x8120: Op.LD_REG,
        0x8121: Op.OR, 0x8122: Op.AND, 0x8123: Op.XOR, 0x8124: Op.ADD_REG,
        0x8125: Op.SUB, 0x8126: Op.SHR, 0x8127: Op.SUBN, 0x812E: Op.SHL,
        0x9120: Op.SNE_REG, 0xA123: Op.LD_I, 0xB123: Op.JP_V0,
        0xC1FF: Op.RND, 0xD125: Op.DRW, 0xE19E: Op.SKP, 0xE1A1: Op.SKNP,
        0xF107: Op.LD_VX_DT, 0xF10A: Op.LD_KEY, 0xF115: Op.LD_DT_VX,
        0xF118: Op.LD_ST_VX, 0xF11E: Op.ADD_I, 0xF129: Op.LD_F,
        0xF133: Op.LD_B, 0xF155: Op.LD_MEM_VX, 0xF165: Op.LD_VX_MEM,
    }

    def test_every_op_has_an_encoding(self):
        self.assertEqual(set(self.KNOWN.values()), set(Op) - {Op.UNKNOWN})

    def test_known_words(self):
        for word, op in self.KNOWN.items():
            self.assertEqual(classify(word), op, f"{word:#06x}")

    def test_unknown_words(self):
        for word in (0x0000, 0x0123, 0x00E1, 0x5121, 0x8128, 0x812F,
                     0x9121, 0xE19F, 0xE100, 0xF100, 0xF1FF):
            self.assertEqual(classify(word), Op.UNKNOWN, f"{word:#06x}")

    def test_decode_is_total(self):
        for word in range(0x10000):
            ins = decode(word)
            self.assertIsInstance(ins.op, Op)

    def test_decode_is_pure(self):
        self.assertEqual(decode(0x6A05, 0x200), decode(0x6A05, 0x200))


class TestDisassemble(unittest.TestCase):
    def _dis(self, word):
        return disassemble(decode(word))

    def test_mnemonics(self):
        self.assertEqual(self._dis(0x00E0), "CLS")
        self.assertEqual(self._dis(0x00EE), "RET")
        self.assertEqual(self._dis(0x1200), "JP 0x200")
        self.assertEqual(self._dis(0x2ABC), "CALL 0xabc")
        self.assertEqual(self._dis(0x6005), "LD V0, 0x05")
        self.assertEqual(self._dis(0x8014), "ADD V0, V1")
        self.assertEqual(self._dis(0xB300), "JP V0, 0x300")
        self.assertEqual(self._dis(0xD125), "DRW V1, V2, 5")
        self.assertEqual(self._dis(0xF00A), "LD V0, K")
        self.assertEqual(self._dis(0xF355), "LD [I], V3")
        self.assertEqual(self._dis(0xF365), "LD V3, [I]")
        self.assertEqual(self._dis(0xFA1E), "ADD I, VA")

    def test_every_defined_op_names_its_mnemonic(self):
        for word, op in TestClassify.KNOWN.items():
            text = self._dis(word)
            self.assertFalse(text.startswith("DW"), f"{word:#06x}: {text}")
            head = op.name.split("_")[0]
            self.assertTrue(text.startswith(head), f"{op.name}: {text}")

    def test_unknown_is_data_word(self):
        self.assertEqual(self._dis(0x0123), "DW 0x0123")

    def test_disassemble_range(self):
        mem = bytearray(0x210)
        mem[0x200:0x206] = bytes([0x60, 0x05, 0x61, 0x03, 0x80, 0x14])
        out = disassemble_range(mem, 0x200, 3)
        self.assertEqual(out, [
            (0x200, 0x6005, "LD V0, 0x05"),
            (0x202, 0x6103, "LD V1, 0x03"),
            (0x204, 0x8014, "ADD V0, V1"),
        ])

    def test_disassemble_range_stops_at_end(self):
        mem = bytes([0x00, 0xE0, 0x12])
        self.assertEqual(len(disassemble_range(mem, 0, 10)), 1)


if __name__ == "__main__":
    unittest.main()
