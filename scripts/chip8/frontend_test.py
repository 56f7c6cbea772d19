import contextlib
import io
import os
import tempfile
import unittest
from unittest import mock

# run pygame headless
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")

import pygame
from frontend import BLUE, LIGHT_BLUE, Keypad, Screen, Speaker, parse_args, read_rom
from framebuffer import Framebuffer


class TestKeypad(unittest.TestCase):
    def test_press_and_release(self):
        keypad = Keypad()
        self.assertTrue(keypad.handle_event(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_a)))
        self.assertTrue(keypad.is_key_pressed(0xA))
        self.assertFalse(keypad.is_key_pressed(0x1))
        keypad.handle_event(pygame.event.Event(pygame.KEYUP, key=pygame.K_a))
        self.assertFalse(keypad.is_key_pressed(0xA))

    def test_ignores_other_events(self):
        keypad = Keypad()
        self.assertFalse(keypad.handle_event(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_z)))
        self.assertFalse(keypad.handle_event(pygame.event.Event(pygame.QUIT)))
        self.assertEqual(keypad.held, set())


class TestScreen(unittest.TestCase):
    def setUp(self):
        pygame.display.init()

    def tearDown(self):
        pygame.display.quit()

    def test_render_paints_on_cells(self):
        screen = Screen(s=2)
        fb = Framebuffer()
        fb.toggle_pixel(3, 1)
        screen.render(fb.snapshot())
        self.assertEqual(screen.surface.get_size(), (128, 64))
        self.assertEqual(tuple(screen.surface.get_at((6, 2)))[:3], tuple(LIGHT_BLUE)[:3])
        self.assertEqual(tuple(screen.surface.get_at((7, 3)))[:3], tuple(LIGHT_BLUE)[:3])
        self.assertEqual(tuple(screen.surface.get_at((8, 2)))[:3], tuple(BLUE)[:3])
        self.assertEqual(tuple(screen.surface.get_at((0, 0)))[:3], tuple(BLUE)[:3])

    def test_render_repaints_the_whole_frame(self):
        screen = Screen(s=1)
        fb = Framebuffer()
        fb.toggle_pixel(0, 0)
        screen.render(fb.snapshot())
        fb.clear()
        screen.render(fb.snapshot())
        self.assertEqual(tuple(screen.surface.get_at((0, 0)))[:3], tuple(BLUE)[:3])


class TestSpeaker(unittest.TestCase):
    def tearDown(self):
        pygame.mixer.quit()

    def test_start_and_stop(self):
        speaker = Speaker()
        if not speaker.enabled:
            self.skipTest("no audio device, even a dummy one")
        speaker.start(440)
        channel = speaker.channel
        self.assertIsNotNone(channel)
        # a tone already playing is left alone
        speaker.start(440)
        self.assertIs(speaker.channel, channel)
        speaker.stop()
        self.assertIsNone(speaker.channel)

    def test_tone_is_one_square_wave_period(self):
        speaker = Speaker()
        if not speaker.enabled:
            self.skipTest("no audio device, even a dummy one")
        sample_rate, _, channels = pygame.mixer.get_init()
        raw = speaker._tone(440).get_raw()
        self.assertEqual(len(raw), round(sample_rate / 440) * channels * 2)
        self.assertIs(speaker._tone(440), speaker._tone(440))

    def test_no_audio_device(self):
        with mock.patch("pygame.mixer.init", side_effect=pygame.error("no audio")), \
                contextlib.redirect_stderr(io.StringIO()) as err:
            speaker = Speaker()
        self.assertFalse(speaker.enabled)
        self.assertIn("sound disabled", err.getvalue())
        speaker.start(440)
        self.assertIsNone(speaker.channel)
        speaker.stop()


class TestConfig(unittest.TestCase):
    def test_defaults(self):
        args = parse_args(["-f", "pong.ch8"])
        self.assertEqual((args.file, args.speed, args.scale, args.fps), ("pong.ch8", 10, 15, 60))

    def test_overrides(self):
        args = parse_args(["--file", "pong.ch8", "--speed", "20", "--scale", "5", "--fps", "30"])
        self.assertEqual((args.speed, args.scale, args.fps), (20, 5, 30))

    def test_read_rom(self):
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "test.ch8")
            with open(path, "wb") as f:
                f.write(b"\x60\x05\x00\xe0")
            self.assertEqual(read_rom(path), b"\x60\x05\x00\xe0")


if __name__ == "__main__":
    unittest.main()
