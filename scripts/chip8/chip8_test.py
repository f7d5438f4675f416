import os
import tempfile
import unittest

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")   # no real window during tests
import pygame

from chip8 import (COSMAC_KEY_MAPPINGS, CYCLES_PER_FRAME, FPS, HEX_KEY_MAPPINGS, SCALE,
                   Screen, get_args, keypad_states, main, read_rom, run)
from chip8_interpreter import Chip8


class TestKeypadStates(unittest.TestCase):
    def test_nothing_pressed(self):
        self.assertEqual(keypad_states(set()),
                         [False] * 16)

    def test_hex_layout(self):
        states = keypad_states({pygame.K_a, pygame.K_3})
        self.assertEqual([key for key, pressed in enumerate(states) if pressed],
                         [0x3, 0xA])

    def test_cosmac_layout(self):
        states = keypad_states({pygame.K_x, pygame.K_v, pygame.K_4}, COSMAC_KEY_MAPPINGS)
        self.assertEqual([key for key, pressed in enumerate(states) if pressed],
                         [0x0, 0xC, 0xF])

    def test_unmapped_keys_are_ignored(self):
        self.assertEqual(keypad_states({pygame.K_SPACE, pygame.K_RETURN}),
                         [False] * 16)

    def test_layouts_cover_the_keypad(self):
        self.assertEqual(sorted(HEX_KEY_MAPPINGS.values()), list(range(16)))
        self.assertEqual(sorted(COSMAC_KEY_MAPPINGS.values()), list(range(16)))


class TestArguments(unittest.TestCase):
    def test_defaults(self):
        args = get_args(["-f", "pong.ch8"])
        self.assertEqual(args.file, "pong.ch8")
        self.assertEqual((args.scale, args.fps, args.cycles_per_frame), (SCALE, FPS, CYCLES_PER_FRAME))
        self.assertEqual(args.layout, "hex")
        self.assertFalse(args.strict)
        self.assertIsNone(args.seed)

    def test_options(self):
        args = get_args(["--file", "pong.ch8", "--scale", "8", "--cycles-per-frame", "12",
                         "--layout", "cosmac", "--strict", "--seed", "3"])
        self.assertEqual((args.scale, args.cycles_per_frame, args.layout, args.strict, args.seed),
                         (8, 12, "cosmac", True, 3))

    def test_file_is_required(self):
        with self.assertRaises(SystemExit):
            get_args([])

    def test_positive_numbers(self):
        with self.assertRaises(SystemExit):
            get_args(["-f", "pong.ch8", "--fps", "0"])


class TestRom(unittest.TestCase):
    def test_read_rom(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "test.ch8")
            with open(path, mode='wb') as f:
                f.write(b"\x00\xE0\x12\x00")
            self.assertEqual(read_rom(path),
                             b"\x00\xE0\x12\x00")

    def test_missing_rom(self):
        with self.assertRaises(OSError):
            read_rom("/this/rom/does/not/exist.ch8")

    def test_main_exits_on_missing_rom(self):
        with self.assertRaises(SystemExit):
            main(["-f", "/this/rom/does/not/exist.ch8"])


class TestScreen(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        pygame.display.init()

    @classmethod
    def tearDownClass(cls):
        pygame.quit()

    def test_draw(self):
        screen = Screen(4, 2, 2)
        screen.draw(bytes([1, 0, 0, 0,
                           0, 0, 0, 1]))
        self.assertEqual(screen.surface.get_size(), (8, 4))
        # compare through the surface pixel format, the dummy driver may not be 32 bit
        fg = screen.surface.unmap_rgb(screen.surface.map_rgb(screen.foreground))
        bg = screen.surface.unmap_rgb(screen.surface.map_rgb(screen.background))
        self.assertEqual(screen.surface.get_at((0, 0)), fg)
        self.assertEqual(screen.surface.get_at((1, 1)), fg)
        self.assertEqual(screen.surface.get_at((2, 0)), bg)
        self.assertEqual(screen.surface.get_at((7, 3)), fg)
        self.assertEqual(screen.surface.get_at((0, 3)), bg)

class CountingChip(Chip8):
    """Chip8 that counts its steps and closes the window after quit_after of them"""

    def __init__(self, quit_after, **kwargs):
        super().__init__(**kwargs)
        self.quit_after = quit_after
        self.steps = 0

    def step(self):
        super().step()
        self.steps += 1
        if self.steps == self.quit_after:
            pygame.event.post(pygame.event.Event(pygame.QUIT))


class RecordingScreen:
    def __init__(self):
        self.frames = []

    def draw(self, framebuffer):
        self.frames.append(framebuffer)


class TestRun(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        pygame.display.init()

    @classmethod
    def tearDownClass(cls):
        pygame.quit()

    def setUp(self):
        pygame.event.clear()

    def test_one_frame(self):
        # LD V1, 1 | LD ST, V1 | LD I, 0 | DRW V0, V0, 1 | JP 0x208
        chip = CountingChip(5)
        chip.load_program(bytes([0x61, 0x01, 0xF1, 0x18, 0xA0, 0x00, 0xD0, 0x01, 0x12, 0x08]))
        screen = RecordingScreen()
        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_5))
        with self.assertLogs("chip8", level="INFO") as logs:
            run(chip, screen, HEX_KEY_MAPPINGS, cycles_per_frame=5, fps=1000)
        self.assertEqual(chip.steps, 5)
        self.assertEqual(chip.pc, 0x208)
        self.assertTrue(chip.keypad[0x5])
        self.assertEqual(len(screen.frames), 1)
        self.assertEqual(screen.frames[0][:8], bytes([1, 1, 1, 1, 0, 0, 0, 0]))
        self.assertFalse(chip.redraw_requested)
        self.assertIn("BEEP!", logs.output[0])

    def test_escape_stops_before_stepping(self):
        chip = CountingChip(1)
        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_ESCAPE))
        run(chip, RecordingScreen(), HEX_KEY_MAPPINGS)
        self.assertEqual(chip.steps, 0)


if __name__ == "__main__":
    unittest.main()
