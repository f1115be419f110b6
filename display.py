"""
CHIP-8 Display / Input Front End
=================================
Host-side collaborators for the VM: a pygame window that renders the
64×32 framebuffer, maps the PC keyboard onto the 16-key hex keypad and
beeps when the sound timer expires.

The VM core never imports this module.  It reaches the front end only
through the ``FrameSink`` / ``KeySource`` / ``ToneSink`` protocols in
system.py, so ``HeadlessDisplay`` can stand in for tests and ``--headless``
runs.

Keyboard layout (PC key → CHIP-8 key):

    1 2 3 4        1 2 3 C
    Q W E R   →    4 5 6 D
    A S D F        7 8 9 E
    Z X C V        A 0 B F

Escape or closing the window quits.

Usage (programmatic):
    from display import Chip8Display
    disp = Chip8Display(scale=10)
    disp.run(system, ips=600)     # blocks until the window closes
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Optional, Sequence

from devices import DISPLAY_WIDTH, DISPLAY_HEIGHT, NUM_KEYS
from system import DEFAULT_IPS, TICKS_PER_SECOND, steps_per_tick

if TYPE_CHECKING:
    from system import Chip8System

# PC key character → CHIP-8 key index
KEYMAP = {
    "1": 0x1, "2": 0x2, "3": 0x3, "4": 0xC,
    "q": 0x4, "w": 0x5, "e": 0x6, "r": 0xD,
    "a": 0x7, "s": 0x8, "d": 0x9, "f": 0xE,
    "z": 0xA, "x": 0x0, "c": 0xB, "v": 0xF,
}

FG_COLOR = (255, 255, 255)
BG_COLOR = (0, 0, 0)

TONE_HZ = 440
TONE_MS = 120
SAMPLE_RATE = 44100


# ── Pixel / sample helpers ───────────────────────────────────────────


def frame_to_rgb(frame: bytes, width: int = DISPLAY_WIDTH,
                 height: int = DISPLAY_HEIGHT, fg=FG_COLOR, bg=BG_COLOR):
    """Convert a row-major 0/1 frame into a (width, height, 3) uint8 array.

    The axis order matches ``pygame.surfarray`` (x first).
    """
    import numpy as np

    bits = np.frombuffer(frame, dtype=np.uint8, count=width * height)
    lit = bits.reshape(height, width).T.astype(bool)
    rgb = np.empty((width, height, 3), dtype=np.uint8)
    rgb[:, :] = bg
    rgb[lit] = fg
    return rgb


def square_wave(hz: int = TONE_HZ, ms: int = TONE_MS,
                rate: int = SAMPLE_RATE, amplitude: int = 8000):
    """Signed 16-bit mono square wave samples."""
    import numpy as np

    n = int(rate * ms / 1000)
    t = np.arange(n)
    period = rate / hz
    wave = np.where((t % period) < period / 2, amplitude, -amplitude)
    return wave.astype(np.int16)


# ── pygame front end ─────────────────────────────────────────────────


class Chip8Display:
    """pygame window acting as FrameSink, KeySource and ToneSink."""

    def __init__(self, scale: int = 10, title: str = "CHIP-8",
                 fg=FG_COLOR, bg=BG_COLOR, fps: int = TICKS_PER_SECOND):
        self.scale = max(1, scale)
        self.title = title
        self.fg = fg
        self.bg = bg
        self.fps = fps
        self.quit_requested = False
        self.frames_rendered = 0

        self._pygame = None
        self._screen = None
        self._surface = None
        self._clock = None
        self._sound = None
        self._keycodes: dict[int, int] = {}
        self._keys = [False] * NUM_KEYS

    # -- lifecycle --------------------------------------------------------

    def open(self):
        """Create the window and audio output."""
        import pygame

        self._pygame = pygame
        pygame.init()
        pygame.display.set_caption(self.title)
        self._screen = pygame.display.set_mode(
            (DISPLAY_WIDTH * self.scale, DISPLAY_HEIGHT * self.scale))
        self._surface = pygame.Surface((DISPLAY_WIDTH, DISPLAY_HEIGHT))
        self._surface.fill(self.bg)
        self._clock = pygame.time.Clock()
        self._keycodes = {pygame.key.key_code(ch): k for ch, k in KEYMAP.items()}
        self._sound = self._make_sound()
        self._present()

    def close(self):
        if self._pygame is not None:
            self._pygame.quit()
            self._pygame = None

    def _make_sound(self):
        pygame = self._pygame
        try:
            if not pygame.mixer.get_init():
                pygame.mixer.init(frequency=SAMPLE_RATE, size=-16, channels=1)
            _, _, channels = pygame.mixer.get_init()
        except pygame.error as e:
            print(f"[display] audio unavailable ({e}); using terminal bell",
                  file=sys.stderr)
            return None
        import numpy as np
        samples = square_wave()
        if channels > 1:
            samples = np.repeat(samples[:, None], channels, axis=1)
        return pygame.sndarray.make_sound(samples)

    # -- KeySource --------------------------------------------------------

    def poll_keys(self) -> Optional[Sequence[bool]]:
        """Drain pygame events and return the current key state."""
        pygame = self._pygame
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self.quit_requested = True
            elif event.type in (pygame.KEYDOWN, pygame.KEYUP):
                if event.key == pygame.K_ESCAPE:
                    self.quit_requested = True
                    continue
                k = self._keycodes.get(event.key)
                if k is not None:
                    self._keys[k] = event.type == pygame.KEYDOWN
        return list(self._keys)

    # -- FrameSink --------------------------------------------------------

    def render(self, frame: bytes, width: int, height: int):
        pygame = self._pygame
        if self._surface.get_size() != (width, height):
            self._surface = pygame.Surface((width, height))
        pygame.surfarray.blit_array(
            self._surface, frame_to_rgb(frame, width, height, self.fg, self.bg))
        self._present()
        self.frames_rendered += 1

    def _present(self):
        pygame = self._pygame
        scaled = pygame.transform.scale(self._surface, self._screen.get_size())
        self._screen.blit(scaled, (0, 0))
        pygame.display.flip()

    # -- ToneSink ---------------------------------------------------------

    def tone(self):
        if self._sound is not None:
            self._sound.play()
        else:
            print("\a", end="", flush=True)

    # -- main loop --------------------------------------------------------

    def run(self, system: "Chip8System", ips: int = DEFAULT_IPS):
        """Drive *system* at *ips* instructions/s until quit or halt.

        Fatal VM faults propagate to the caller after the window closes.
        """
        steps = steps_per_tick(ips, self.fps)
        self.open()
        try:
            while not self.quit_requested and not system.halted:
                system.run_frame(steps, keys=self, frames=self, tone=self)
                self._clock.tick(self.fps)
        finally:
            self.close()


class HeadlessDisplay:
    """Windowless front end that records frames, tones and key polls.

    *key_script* is an optional list of key states (16 bools each) handed
    out one per ``poll_keys()`` call; after it runs out the last state is
    repeated (or None if the script was empty).
    """

    def __init__(self, key_script: Optional[list[Sequence[bool]]] = None):
        self.snapshots: list[bytes] = []
        self.tones: int = 0
        self.polls: int = 0
        self._script = list(key_script or [])
        self._last: Optional[Sequence[bool]] = None

    def poll_keys(self) -> Optional[Sequence[bool]]:
        self.polls += 1
        if self._script:
            self._last = self._script.pop(0)
        return self._last

    def render(self, frame: bytes, width: int, height: int):
        self.snapshots.append(bytes(frame))

    def tone(self):
        self.tones += 1

    def run(self, system: "Chip8System", frames: int,
            ips: int = DEFAULT_IPS, max_steps: Optional[int] = None) -> int:
        """Run *frames* host iterations without a window.

        With *max_steps* the run stops after that many instructions; the
        last frame is shortened to fit.  Returns the number of
        instructions executed.
        """
        steps = steps_per_tick(ips)
        total = 0
        for _ in range(frames):
            if system.halted:
                break
            n = steps
            if max_steps is not None:
                n = min(n, max_steps - total)
                if n <= 0:
                    break
            total += system.run_frame(n, keys=self, frames=self, tone=self)
        return total

    @property
    def last_frame(self) -> Optional[bytes]:
        return self.snapshots[-1] if self.snapshots else None
