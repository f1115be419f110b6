"""
CHIP-8 Peripheral / Device Layer
=================================
The state the CPU shares with the outside world:

  TimerPair    : delay and sound counters, decremented at 60 Hz
  Keypad       : 16 key-pressed flags, written by the host
  Framebuffer  : 64×32 one-bit display, mutated only by CLS / DRW

None of these are memory-mapped: the executor reaches them directly
through the ``Machine`` aggregate in chip8.py.

Keypad layout (hex key → position):

    1 2 3 C
    4 5 6 D
    7 8 9 E
    A 0 B F
"""

from __future__ import annotations
from typing import Iterable

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

TIMER_HZ = 60          # logical tick rate of both timers
NUM_KEYS = 16

DISPLAY_WIDTH  = 64
DISPLAY_HEIGHT = 32


class Device:
    """Base class for a peripheral that is reset with the machine."""

    def __init__(self, name: str):
        self.name = name

    def reset(self):
        """Return the device to its power-on state."""
        pass

    def tick(self) -> bool:
        """Advance one 60 Hz tick.  Returns True if an event was raised."""
        return False

# ---------------------------------------------------------------------------
#  Timers
# ---------------------------------------------------------------------------

class TimerPair(Device):
    """Delay and sound counters.

    Both count down toward zero by one per ``tick()`` and stop there.
    The sound counter reaching zero from one raises a tone event (the
    return value of ``tick()``), which the host turns into a beep.
    """

    def __init__(self):
        super().__init__("Timers")
        self.delay: int = 0
        self.sound: int = 0
        self.tone_count: int = 0   # tone events raised since reset

    def reset(self):
        self.delay = 0
        self.sound = 0
        self.tone_count = 0

    def set_delay(self, value: int):
        self.delay = value & 0xFF

    def set_sound(self, value: int):
        self.sound = value & 0xFF

    @property
    def sound_active(self) -> bool:
        return self.sound > 0

    def tick(self) -> bool:
        if self.delay > 0:
            self.delay -= 1
        tone = False
        if self.sound > 0:
            if self.sound == 1:
                tone = True
                self.tone_count += 1
            self.sound -= 1
        return tone

# ---------------------------------------------------------------------------
#  Keypad
# ---------------------------------------------------------------------------

class Keypad(Device):
    """Sixteen logical keys.  The host writes, the executor only reads."""

    def __init__(self):
        super().__init__("Keypad")
        self.keys: list[bool] = [False] * NUM_KEYS

    def reset(self):
        self.keys = [False] * NUM_KEYS

    def press(self, key: int):
        self.keys[key & 0xF] = True

    def release(self, key: int):
        self.keys[key & 0xF] = False

    def set_state(self, state: Iterable[bool]):
        """Replace the whole key state (one entry per key, 0x0..0xF)."""
        state = [bool(s) for s in state]
        if len(state) != NUM_KEYS:
            raise ValueError(f"Expected {NUM_KEYS} key states, got {len(state)}")
        self.keys = state

    def is_pressed(self, key: int) -> bool:
        return self.keys[key & 0xF]

    def first_pressed(self) -> int | None:
        """Lowest-numbered key currently held, or None."""
        for k, down in enumerate(self.keys):
            if down:
                return k
        return None

    def __repr__(self):
        held = [f"{k:X}" for k, down in enumerate(self.keys) if down]
        return f"Keypad(held=[{', '.join(held)}])"

# ---------------------------------------------------------------------------
#  Framebuffer
# ---------------------------------------------------------------------------

class Framebuffer(Device):
    """64×32 monochrome display, one byte (0/1) per pixel, row-major.

    ``dirty`` is raised by every mutation and cleared by ``consume()``.
    ``version`` counts mutations so a caller can tell whether a given step
    changed the picture even when nobody consumed the previous frame.
    """

    def __init__(self, width: int = DISPLAY_WIDTH, height: int = DISPLAY_HEIGHT):
        super().__init__("Framebuffer")
        self.width = width
        self.height = height
        self.pixels = bytearray(width * height)
        self.dirty: bool = False
        self.version: int = 0

    def reset(self):
        self.pixels = bytearray(self.width * self.height)
        self.dirty = False
        self.version = 0

    def _touch(self):
        self.dirty = True
        self.version += 1

    def clear(self):
        for i in range(len(self.pixels)):
            self.pixels[i] = 0
        self._touch()

    def draw_sprite(self, x: int, y: int, rows: bytes | bytearray) -> bool:
        """XOR *rows* (8 pixels each, MSB leftmost) onto the display.

        The origin and every pixel wrap around both edges.  Returns True
        if any lit pixel was turned off (collision).
        """
        collision = False
        w, h = self.width, self.height
        for dy, bits in enumerate(rows):
            py = (y + dy) % h
            row_off = py * w
            for dx in range(8):
                if not bits & (0x80 >> dx):
                    continue
                idx = row_off + (x + dx) % w
                if self.pixels[idx]:
                    collision = True
                self.pixels[idx] ^= 1
        self._touch()
        return collision

    def pixel(self, x: int, y: int) -> int:
        return self.pixels[(y % self.height) * self.width + (x % self.width)]

    def rows(self) -> list[list[int]]:
        """The display as a list of rows of 0/1 ints (a copy)."""
        w = self.width
        return [list(self.pixels[r * w:(r + 1) * w]) for r in range(self.height)]

    def snapshot(self) -> bytes:
        """Copy of the raw pixel bytes; safe to hand to another thread."""
        return bytes(self.pixels)

    def consume(self) -> bytes:
        """Take a frame for rendering and clear the dirty flag."""
        self.dirty = False
        return self.snapshot()

    def lit_count(self) -> int:
        return sum(self.pixels)

    def render_text(self, on: str = "#", off: str = ".") -> str:
        """ASCII rendering, one line per row (monitor / tests)."""
        return "\n".join(
            "".join(on if p else off for p in row) for row in self.rows()
        )
