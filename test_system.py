#!/usr/bin/env python3
"""
Integration tests for the CHIP-8 system: fetch/decode/execute through
``Chip8System.step()``, key-wait suspension, timers and tone events,
fatal halts and the host frame loop.
"""
import os
import tempfile
import unittest

from asm import assemble
from chip8 import (
    HaltError, OutOfBounds, ProgramTooLarge, StackUnderflow,
    UnknownInstruction, PROGRAM_START, PROGRAM_CAPACITY, VF,
)
from decoder import Op
from system import Chip8System, RunState, StepResult, steps_per_tick


# ---------------------------------------------------------------------------
#  Helpers
# ---------------------------------------------------------------------------

def make_system(program: bytes = b"", **kwargs) -> Chip8System:
    s = Chip8System(seed=0, **kwargs)
    s.load_program(program)
    return s


def make_asm_system(source: str, **kwargs) -> Chip8System:
    return make_system(bytes(assemble(source)), **kwargs)


def run_steps(s: Chip8System, n: int):
    for _ in range(n):
        s.step()


class RecordingHost:
    """Collects frames and tones; hands out a fixed key state."""

    def __init__(self, keys=None):
        self.frames = []
        self.tones = 0
        self.keys = keys

    def poll_keys(self):
        return self.keys

    def render(self, frame, width, height):
        self.frames.append((bytes(frame), width, height))

    def tone(self):
        self.tones += 1


# ---------------------------------------------------------------------------
#  Fetch / execute
# ---------------------------------------------------------------------------

class TestStep(unittest.TestCase):
    def test_add_scenario(self):
        s = make_system(bytes([0x60, 0x05, 0x61, 0x03, 0x80, 0x14]))
        run_steps(s, 3)
        self.assertEqual(s.regs[0], 8)
        self.assertEqual(s.regs[VF], 0)
        self.assertEqual(s.regs.pc, PROGRAM_START + 6)

    def test_step_result(self):
        s = make_system(bytes([0x60, 0x05]))
        r = s.step()
        self.assertIsInstance(r, StepResult)
        self.assertEqual(r.pc, PROGRAM_START)
        self.assertEqual(r.instruction.op, Op.LD_BYTE)
        self.assertFalse(r.dirty)

    def test_dirty_on_draw(self):
        s = make_asm_system("""
            LD I, 0
            DRW V0, V0, 5
        """)
        self.assertFalse(s.step().dirty)
        self.assertTrue(s.step().dirty)
        self.assertTrue(s.fb.dirty)
        s.fb.consume()
        self.assertFalse(s.fb.dirty)

    def test_call_ret_returns_after_call(self):
        s = make_asm_system("""
                CALL sub
                LD V1, 1
            sub:
                RET
        """)
        s.step()
        self.assertEqual(s.regs.pc, 0x204)
        s.step()
        self.assertEqual(s.regs.pc, 0x202)
        s.step()
        self.assertEqual(s.regs[1], 1)

    def test_draw_twice_restores_pixels(self):
        s = make_asm_system("""
            LD I, 0
            DRW V0, V0, 5
            DRW V0, V0, 5
        """)
        run_steps(s, 2)
        self.assertEqual(s.regs[VF], 0)
        self.assertGreater(s.fb.lit_count(), 0)
        s.step()
        self.assertEqual(s.fb.lit_count(), 0)
        self.assertEqual(s.regs[VF], 1)

    def test_glyph_for_digit(self):
        s = make_asm_system("""
            LD V0, 7
            LD F, V0
            DRW V1, V1, 5
        """)
        run_steps(s, 3)
        self.assertEqual(s.regs.i, 7 * 5)
        # glyph 7: F0 10 20 40 40
        self.assertEqual([s.fb.pixel(x, 0) for x in range(4)], [1, 1, 1, 1])
        self.assertEqual(s.fb.pixel(1, 4), 1)

    def test_rnd_seed_reproducible(self):
        prog = bytes([0xC0, 0xFF, 0xC1, 0xFF])
        a, b = make_system(prog), make_system(prog)
        run_steps(a, 2)
        run_steps(b, 2)
        self.assertEqual((a.regs[0], a.regs[1]), (b.regs[0], b.regs[1]))

    def test_trace_callback(self):
        s = make_system(bytes([0x60, 0x05, 0x61, 0x03]))
        seen = []
        s.on_trace = lambda pc, ins: seen.append((pc, ins.word))
        run_steps(s, 2)
        self.assertEqual(seen, [(0x200, 0x6005), (0x202, 0x6103)])

    def test_run_stops_at_max_steps(self):
        s = make_asm_system("loop: JP loop")
        self.assertEqual(s.run(50), 50)
        self.assertEqual(s.regs.pc, 0x200)
        self.assertEqual(s.step_count, 50)

    def test_index_flag_configurable(self):
        src = """
            LD I, 0xFFF
            LD V0, 2
            ADD I, V0
        """
        on = make_asm_system(src)
        off = make_asm_system(src, index_overflow_flag=False)
        run_steps(on, 3)
        run_steps(off, 3)
        self.assertEqual(on.regs[VF], 1)
        self.assertEqual(off.regs[VF], 0)
        self.assertEqual(on.regs.i, off.regs.i)


# ---------------------------------------------------------------------------
#  Key-wait
# ---------------------------------------------------------------------------

class TestKeyWait(unittest.TestCase):
    def setUp(self):
        self.s = make_asm_system("""
            LD V3, K
            LD V4, 1
        """)

    def test_waits_without_rollback(self):
        s = self.s
        s.step()
        self.assertEqual(s.state, RunState.AWAITING_KEY)
        self.assertEqual(s.wait_register, 3)
        pc = s.regs.pc
        for _ in range(5):
            r = s.step()
            self.assertIsNone(r.instruction)
            self.assertEqual(s.regs.pc, pc)
        self.assertEqual(s.regs[4], 0)

    def test_key_press_resumes(self):
        s = self.s
        s.step()
        s.keypad.press(0xB)
        s.step()                              # stores the key
        self.assertEqual(s.regs[3], 0xB)
        self.assertEqual(s.state, RunState.RUNNING)
        self.assertEqual(s.regs[4], 0)
        s.step()                              # normal fetch again
        self.assertEqual(s.regs[4], 1)

    def test_lowest_key_wins(self):
        s = self.s
        s.step()
        s.keypad.press(0xE)
        s.keypad.press(0x2)
        s.step()
        self.assertEqual(s.regs[3], 0x2)

    def test_run_stops_when_waiting(self):
        s = self.s
        self.assertEqual(s.run(100), 1)
        self.assertTrue(s.awaiting_key)


# ---------------------------------------------------------------------------
#  Timers and tone
# ---------------------------------------------------------------------------

class TestTimers(unittest.TestCase):
    def test_single_tone_event(self):
        s = make_system()
        tones = []
        s.on_tone = lambda: tones.append(1)
        s.timers.set_sound(1)
        self.assertTrue(s.tick())
        self.assertEqual(s.timers.sound, 0)
        self.assertFalse(s.tick())
        self.assertEqual(s.timers.sound, 0)
        self.assertEqual(len(tones), 1)
        self.assertEqual(s.timers.tone_count, 1)

    def test_delay_counts_down_and_stops(self):
        s = make_system()
        s.timers.set_delay(3)
        for _ in range(5):
            s.tick()
        self.assertEqual(s.timers.delay, 0)
        self.assertEqual(s.tick_count, 5)

    def test_steps_do_not_tick(self):
        s = make_asm_system("""
            LD V0, 10
            LD DT, V0
            LD V1, DT
            LD V1, DT
        """)
        run_steps(s, 4)
        self.assertEqual(s.regs[1], 10)


# ---------------------------------------------------------------------------
#  Fatal errors
# ---------------------------------------------------------------------------

class TestFaults(unittest.TestCase):
    def test_unknown_instruction_halts(self):
        s = make_system(bytes([0x60, 0x01, 0x01, 0x23]))
        halted = []
        s.on_halt = halted.append
        s.step()
        with self.assertRaises(UnknownInstruction) as cm:
            s.step()
        self.assertEqual(cm.exception.pc, 0x202)
        self.assertEqual(cm.exception.word, 0x0123)
        self.assertIn("0x0202", str(cm.exception))
        self.assertTrue(s.halted)
        self.assertIs(s.fault, cm.exception)
        self.assertEqual(halted, [cm.exception])

    def test_step_after_halt_raises(self):
        s = make_system(bytes([0x00, 0xEE]))
        with self.assertRaises(StackUnderflow):
            s.step()
        with self.assertRaises(HaltError):
            s.step()

    def test_reset_clears_halt(self):
        s = make_system(bytes([0x00, 0xEE]))
        with self.assertRaises(StackUnderflow):
            s.step()
        s.reset()
        self.assertEqual(s.state, RunState.RUNNING)
        self.assertIsNone(s.fault)

    def test_fetch_out_of_bounds(self):
        s = make_asm_system("JP 0xFFF")
        s.step()
        with self.assertRaises(OutOfBounds) as cm:
            s.step()
        self.assertEqual(cm.exception.pc, 0xFFF)
        self.assertIsNone(cm.exception.word)
        self.assertTrue(s.halted)
        self.assertIn("PC = 0x0fff", str(cm.exception))

    def test_program_too_large(self):
        s = Chip8System()
        with self.assertRaises(ProgramTooLarge):
            s.load_program(bytes(PROGRAM_CAPACITY + 1))
        self.assertFalse(s.halted)


# ---------------------------------------------------------------------------
#  Loading / introspection
# ---------------------------------------------------------------------------

class TestLoad(unittest.TestCase):
    def test_load_program_file(self):
        with tempfile.NamedTemporaryFile(suffix=".ch8", delete=False) as f:
            f.write(bytes([0x60, 0x2A]))
            path = f.name
        try:
            s = Chip8System()
            self.assertEqual(s.load_program_file(path), 2)
            self.assertEqual(s.program_size, 2)
            s.step()
            self.assertEqual(s.regs[0], 0x2A)
        finally:
            os.unlink(path)

    def test_missing_file(self):
        with self.assertRaises(OSError):
            Chip8System().load_program_file("/nonexistent/rom.ch8")

    def test_load_resets(self):
        s = make_system(bytes([0x60, 0x2A]))
        s.step()
        s.load_program(bytes([0x61, 0x01]))
        self.assertEqual(s.regs[0], 0)
        self.assertEqual(s.regs.pc, PROGRAM_START)
        self.assertEqual(s.step_count, 0)

    def test_rejected_load_keeps_program(self):
        s = make_system(bytes([0x60, 0x05, 0x12, 0x02]))
        s.step()
        with self.assertRaises(ProgramTooLarge):
            s.load_program(bytes(PROGRAM_CAPACITY + 1))
        self.assertEqual(s.program_size, 4)
        self.assertEqual(s.regs[0], 5)
        self.assertEqual(s.regs.pc, 0x202)
        self.assertEqual(s.memory.dump(PROGRAM_START, 4),
                         bytes([0x60, 0x05, 0x12, 0x02]))
        self.assertFalse(s.halted)

    def test_dump_state(self):
        s = make_system(bytes([0x60, 0x2A]))
        text = s.dump_state()
        self.assertIn("State: running", text)
        self.assertIn("Next: LD V0, 0x2a", text)


# ---------------------------------------------------------------------------
#  Host loop
# ---------------------------------------------------------------------------

class TestRunFrame(unittest.TestCase):
    def test_frame_rendered_when_dirty(self):
        s = make_asm_system("""
                LD I, 0
                DRW V0, V0, 5
            loop:
                JP loop
        """)
        host = RecordingHost()
        self.assertEqual(s.run_frame(10, keys=host, frames=host, tone=host), 10)
        self.assertEqual(len(host.frames), 1)
        frame, w, h = host.frames[0]
        self.assertEqual((w, h, len(frame)), (64, 32, 64 * 32))
        self.assertEqual(frame[0], 1)
        s.run_frame(10, keys=host, frames=host, tone=host)
        self.assertEqual(len(host.frames), 1)       # nothing new drawn
        self.assertEqual(s.tick_count, 2)

    def test_keys_applied_before_steps(self):
        s = make_asm_system("""
            LD V0, 5
            SKP V0
            LD V1, 1
            LD V2, 2
        """)
        keys = [False] * 16
        keys[5] = True
        s.run_frame(3, keys=RecordingHost(keys=keys))
        self.assertEqual(s.regs[1], 0)
        self.assertEqual(s.regs[2], 2)

    def test_tone_forwarded(self):
        s = make_asm_system("""
                LD V0, 1
                LD ST, V0
            loop:
                JP loop
        """)
        host = RecordingHost()
        s.run_frame(3, tone=host)
        s.run_frame(3, tone=host)
        self.assertEqual(host.tones, 1)

    def test_stops_early_on_halt(self):
        s = make_system(bytes([0x60, 0x01, 0x00, 0xEE]))
        with self.assertRaises(StackUnderflow):
            s.run_frame(10)
        self.assertEqual(s.step_count, 1)

    def test_steps_per_tick(self):
        self.assertEqual(steps_per_tick(600), 10)
        self.assertEqual(steps_per_tick(700), 12)
        self.assertEqual(steps_per_tick(1), 1)


if __name__ == "__main__":
    unittest.main()
