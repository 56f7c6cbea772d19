import unittest
from framebuffer import Framebuffer


class TestTogglePixel(unittest.TestCase):
    def test_toggle_twice(self):
        fb = Framebuffer()
        self.assertFalse(fb.toggle_pixel(10, 20))
        self.assertEqual(fb.pixel(10, 20), 1)
        self.assertTrue(fb.toggle_pixel(10, 20))
        self.assertEqual(fb.pixel(10, 20), 0)

    def test_wraparound(self):
        fb = Framebuffer()
        fb.toggle_pixel(64, 0)
        self.assertEqual(fb.pixel(0, 0), 1)
        self.assertTrue(fb.toggle_pixel(0, 32))
        fb.toggle_pixel(-1, -1)
        self.assertEqual(fb.pixel(63, 31), 1)
        fb.toggle_pixel(130, 65)
        self.assertEqual(fb.pixel(2, 1), 1)


class TestGrid(unittest.TestCase):
    def test_clear(self):
        fb = Framebuffer()
        fb.toggle_pixel(1, 1)
        fb.toggle_pixel(63, 31)
        fb.clear()
        self.assertEqual(sum(map(sum, fb.snapshot())), 0)

    def test_snapshot(self):
        fb = Framebuffer()
        fb.toggle_pixel(3, 2)
        snap = fb.snapshot()
        self.assertEqual(len(snap), 32)
        self.assertEqual(len(snap[0]), 64)
        self.assertEqual(snap[2][3], 1)
        # later changes don't leak into an older snapshot
        fb.toggle_pixel(3, 2)
        self.assertEqual(snap[2][3], 1)
        self.assertEqual(fb.snapshot()[2][3], 0)

    def test_custom_size(self):
        fb = Framebuffer(w=8, h=4)
        fb.toggle_pixel(8, 4)
        self.assertEqual(fb.snapshot(), ((1,) + (0,) * 7,) + ((0,) * 8,) * 3)


if __name__ == "__main__":
    unittest.main()
