SCREEN_HEIGHT = 32
SCREEN_WIDTH = 64


class Framebuffer:
    """
    monochrome pixel grid the CPU draws sprites into
    it knows nothing about windows or colors, presentation happens on a snapshot of it
    """
    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT):
        self.w, self.h = w, h
        self.buffer = [0] * h * w

    def __repr__(self):
        return f"Framebuffer(w={self.w}, h={self.h}, lit={sum(self.buffer)})"

    def _offset(self, x, y):
        # coordinates wrap around both edges, 64 is 0 again and -1 is 63
        return (y % self.h) * self.w + (x % self.w)

    def pixel(self, x, y):
        """return 1 if pixel is ON, return 0 if pixel is OFF"""
        return self.buffer[self._offset(x, y)]

    def toggle_pixel(self, x, y) -> bool:
        """flip a pixel and return True if this turned an ON pixel OFF (a collision)"""
        offset = self._offset(x, y)
        was_on = self.buffer[offset] == 1
        self.buffer[offset] ^= 1
        return was_on

    def clear(self):
        self.buffer = [0] * self.h * self.w

    def snapshot(self):
        """read-only copy of the grid, one tuple per row"""
        return tuple(
            tuple(self.buffer[row * self.w:(row + 1) * self.w])
            for row in range(self.h)
        )
