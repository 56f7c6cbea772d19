import argparse
import array
import sys

import os
os.environ["PYGAME_HIDE_SUPPORT_PROMPT"] = "no welcome message"   # this env var disable pygame's welcome message when imported
import pygame
from pygame.locals import (
    K_0, K_1, K_2, K_3,
    K_4, K_5, K_6, K_7,
    K_8, K_9, K_a, K_b,
    K_c, K_d, K_e, K_f,
)

from chip8 import DEBUG, INSTRUCTIONS_PER_FRAME, Chip8, Chip8Error
from framebuffer import SCREEN_HEIGHT, SCREEN_WIDTH, Framebuffer


# ******************** STATIC SECTION
KEY_MAPPINGS = {
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

SCALE = 15
FPS = 60        # one CPU cycle per frame, timers tick at 60Hz
SAMPLE_RATE = 44100
BLUE = pygame.Color(80,69,155,255)
LIGHT_BLUE = pygame.Color(136,126,203,255)


# ******************** UTILITIES SECTION
def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="CHIP-8 emulator")
    parser.add_argument("-f", "--file", required=True, help="input rom file")
    parser.add_argument("-s", "--speed", type=int, default=INSTRUCTIONS_PER_FRAME, help="instructions executed per frame")
    parser.add_argument("--scale", type=int, default=SCALE, help="size in pixels of a CHIP-8 pixel")
    parser.add_argument("--fps", type=int, default=FPS, help="frames emulated per second")
    return parser.parse_args(argv)

def read_rom(path):
    """read a ROM file from the user specified path"""
    with open(path, mode='rb') as f:
        rom = f.read()
    if DEBUG: print(f"The ROM at path {path} has been read successfully")
    return rom


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

    def render(self, snapshot):
        """paint every ON cell of the framebuffer snapshot as a scale x scale block"""
        self.surface.fill(self.background)
        for y, row in enumerate(snapshot):
            for x, pixel in enumerate(row):
                if pixel:
                    pygame.draw.rect(
                        self.surface,
                        self.foreground,
                        (x * self.scale, y * self.scale, self.scale, self.scale)
                    )
        pygame.display.flip()

class Keypad:
    """keeps track of the hex keys currently held down"""
    def __init__(self):
        self.held = set()

    def handle_event(self, event):
        """update the held keys from a pygame event, return True if the event was a keypad one"""
        if event.type not in (pygame.KEYDOWN, pygame.KEYUP) or event.key not in KEY_MAPPINGS:
            return False
        key = KEY_MAPPINGS[event.key]
        if event.type == pygame.KEYDOWN:
            self.held.add(key)
        else:
            self.held.discard(key)
        return True

    def is_key_pressed(self, key):
        return key in self.held

class Speaker:
    """square wave tone played in a loop while the sound timer is active"""
    def __init__(self, volume=0.2):
        self.tones = {}
        self.channel = None
        self.volume = volume
        try:
            pygame.mixer.init(SAMPLE_RATE, -16, 1, 512)     # ignored when pygame.init already started the mixer
            self.enabled = True
        except pygame.error as e:
            print(f"sound disabled: {e}", file=sys.stderr)
            self.enabled = False

    def _tone(self, frequency):
        """one period of a 16-bit square wave at the given frequency"""
        if frequency not in self.tones:
            sample_rate, _, channels = pygame.mixer.get_init()
            period = max(2, round(sample_rate / frequency))
            amplitude = int(32767 * self.volume)
            samples = array.array("h")
            for i in range(period):
                samples.extend([amplitude if i < period // 2 else -amplitude] * channels)
            self.tones[frequency] = pygame.mixer.Sound(buffer=samples.tobytes())
        return self.tones[frequency]

    def start(self, frequency):
        if not self.enabled or (self.channel is not None and self.channel.get_busy()):
            return
        self.channel = self._tone(frequency).play(loops=-1)

    def stop(self):
        if self.channel is not None:
            self.channel.stop()
            self.channel = None


# ******************** ENTRY POINT SECTION
def main(argv=None):
    args = parse_args(argv)
    rom = read_rom(args.file)
    # pygame initialization, the mixer plays 16-bit mono samples
    pygame.mixer.pre_init(SAMPLE_RATE, -16, 1, 512)
    pygame.init()
    clock = pygame.time.Clock()
    pygame.display.set_caption(os.path.basename(args.file))
    # IO
    s = Screen(s=args.scale)
    k = Keypad()
    sp = Speaker()
    # CPU
    chip = Chip8(Framebuffer(), keypad=k, speaker=sp, screen=s, speed=args.speed)
    chip.load_font()
    # emulation loop
    run = True
    try:
        chip.load(rom)
        while run:
            # frames per second
            clock.tick(args.fps)
            # process user input
            # loop throught the event queue
            for event in pygame.event.get():
                if event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
                    run = False
                elif event.type == pygame.QUIT:
                    run = False
                else:
                    k.handle_event(event)
            chip.cycle()        # emulate one frame (instructions batch, timers, sound, screen refresh)
    except Chip8Error as e:
        sp.stop()
        pygame.quit()
        sys.exit(f"********** THE EMULATOR CRASHED: {e}\n********** WITH THE FOLLOWING STATE\n{chip}")
    sp.stop()
    pygame.quit()


if __name__ == "__main__":
    main()
