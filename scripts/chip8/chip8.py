# CHIP-8 INFO
# https://chip-8.github.io/extensions/#chip-8
# https://chip-8.github.io/links/
#
# TEST SUITE
# https://github.com/Timendus/chip8-test-suite
#
# pygame front end: window, keyboard, frame pacing and ROM files.
# Every bit of emulation happens in chip8_interpreter.py


import argparse
import logging
import random
import sys

import os
os.environ["PYGAME_HIDE_SUPPORT_PROMPT"] = "no welcome message"   # this env var disable pygame's welcome message when imported
import pygame
from pygame.locals import (
    K_0, K_1, K_2, K_3,
    K_4, K_5, K_6, K_7,
    K_8, K_9, K_a, K_b,
    K_c, K_d, K_e, K_f,
    K_q, K_r, K_s, K_v,
    K_w, K_x, K_z,
)

from chip8_interpreter import DEBUG, KEY_COUNT, SCREEN_HEIGHT, SCREEN_WIDTH, Chip8, CoreFault, ProgramTooLarge


logger = logging.getLogger(__name__)


# ******************** STATIC SECTION
# keys 0-9 and A-F stand for themselves
HEX_KEY_MAPPINGS = {
    K_0: 0x0,
    K_1: 0x1,
    K_2: 0x2,
    K_3: 0x3,
    K_4: 0x4,
    K_5: 0x5,
    K_6: 0x6,
    K_7: 0x7,
    K_8: 0x8,
    K_9: 0x9,
    K_a: 0xA,
    K_b: 0xB,
    K_c: 0xC,
    K_d: 0xD,
    K_e: 0xE,
    K_f: 0xF,
}

# the COSMAC VIP keypad laid over the left side of a QWERTY keyboard
#   1 2 3 C        1 2 3 4
#   4 5 6 D   ->   Q W E R
#   7 8 9 E        A S D F
#   A 0 B F        Z X C V
COSMAC_KEY_MAPPINGS = {
    K_1: 0x1, K_2: 0x2, K_3: 0x3, K_4: 0xC,
    K_q: 0x4, K_w: 0x5, K_e: 0x6, K_r: 0xD,
    K_a: 0x7, K_s: 0x8, K_d: 0x9, K_f: 0xE,
    K_z: 0xA, K_x: 0x0, K_c: 0xB, K_v: 0xF,
}

KEY_LAYOUTS = {
    "hex": HEX_KEY_MAPPINGS,
    "cosmac": COSMAC_KEY_MAPPINGS,
}

SCALE = 15
FPS = 60
CYCLES_PER_FRAME = 7            # ~420 instructions per second at 60 FPS
BLUE = pygame.Color(80,69,155,255)
LIGHT_BLUE = pygame.Color(136,126,203,255)


# ******************** UTILITIES SECTION
def get_args(argv=None):
    parser = argparse.ArgumentParser(description="CHIP-8 interpreter")
    parser.add_argument("-f", "--file", required=True, help="input rom file")
    parser.add_argument("--scale", type=int, default=SCALE, help="size in pixels of a CHIP-8 pixel")
    parser.add_argument("--fps", type=int, default=FPS, help="frames rendered per second")
    parser.add_argument("--cycles-per-frame", type=int, default=CYCLES_PER_FRAME,
                        help="instructions executed between two frames")
    parser.add_argument("--layout", choices=sorted(KEY_LAYOUTS), default="hex",
                        help="keyboard to keypad mapping")
    parser.add_argument("--strict", action="store_true", help="halt on unknown opcodes instead of skipping them")
    parser.add_argument("--seed", type=int, default=None, help="seed of the random generator used by RND")
    args = parser.parse_args(argv)
    for name in ("scale", "fps", "cycles_per_frame"):
        if getattr(args, name) <= 0:
            parser.error(f"--{name.replace('_', '-')} must be a positive number")
    return args

def read_rom(path):
    """read the ROM file at path, raise OSError if it can't be read"""
    with open(path, mode='rb') as f:
        rom = f.read()
    logger.info("The ROM at path %s has been read (%d bytes)", path, len(rom))
    return rom

def keypad_states(pressed, mappings=HEX_KEY_MAPPINGS):
    """turn the set of host keys being held down into the 16 states of the CHIP-8 keypad"""
    states = [False] * KEY_COUNT
    for key in pressed:
        if key in mappings:
            states[mappings[key]] = True
    return states


# ******************** I/O SECTION
class Screen:
    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT, s=SCALE, bg_color=BLUE, fg_color=LIGHT_BLUE):
        self.w, self.h, self.scale = w, h, s
        self.background = bg_color
        self.foreground = fg_color
        self.surface = pygame.display.set_mode(
            (w * self.scale, h * self.scale),
        )
        self.surface.fill(self.background)

    def draw(self, framebuffer):
        """paint a framebuffer snapshot, one scale x scale box per CHIP-8 pixel"""
        self.surface.fill(self.background)
        for offset, pixel in enumerate(framebuffer):
            if pixel:
                y, x = divmod(offset, self.w)
                pygame.draw.rect(
                    self.surface,
                    self.foreground,
                    (x * self.scale, y * self.scale, self.scale, self.scale)
                )
        self.refresh()

    @staticmethod
    def refresh():
        pygame.display.flip()


# ******************** ENTRY POINT SECTION
def run(chip, screen, mappings, cycles_per_frame=CYCLES_PER_FRAME, fps=FPS):
    """emulation loop, returns when the window gets closed or ESC is pressed"""
    clock = pygame.time.Clock()
    pressed = set()
    while True:
        # process user input
        # loop throught the event queue
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                return
            if event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    return
                pressed.add(event.key)
            elif event.type == pygame.KEYUP:
                pressed.discard(event.key)
        chip.set_keypad(keypad_states(pressed, mappings))
        for _ in range(cycles_per_frame):
            chip.step()
        if chip.take_redraw_flag():
            screen.draw(chip.framebuffer())
        if chip.pending_beep():
            logger.info("BEEP!")
        # frames per second
        clock.tick(fps)

def main(argv=None):
    logging.basicConfig(
        level=logging.DEBUG if DEBUG else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s",
    )
    args = get_args(argv)
    try:
        rom = read_rom(args.file)
    except OSError as e:
        sys.exit(f"Unable to read the ROM at path {args.file}: {e}")
    # CPU
    rng = random.Random(args.seed)
    chip = Chip8(rng=rng, strict=args.strict)
    try:
        chip.load_program(rom)
    except ProgramTooLarge as e:
        sys.exit(f"Unable to load the ROM at path {args.file}: {e}")
    # pygame initialization
    pygame.init()
    try:
        pygame.display.set_caption(os.path.basename(args.file))
        screen = Screen(chip.width, chip.height, args.scale)
        run(chip, screen, KEY_LAYOUTS[args.layout], args.cycles_per_frame, args.fps)
    except CoreFault as fault:
        sys.exit(f"********** THE EMULATOR CRASHED: {fault}\n{chip}")
    finally:
        pygame.quit()


if __name__ == "__main__":
    main()
