import unittest

from unresponsive.data import InputBuffer


class FillTestCase(unittest.TestCase):
    def setUp(self):
        self.buffer = InputBuffer(8)

    def test_default_capacity_001(self):
        """Default capacity must be 4096 bytes."""
        self.assertEqual(InputBuffer().capacity, 4096)

    def test_capacity_001(self):
        """Must refuse non-positive capacity."""
        self.assertRaises(ValueError, InputBuffer, 0)

    def test_free_space_001(self):
        """Fresh buffer must hand out all of its real space."""
        space, real = self.buffer.free_space()
        self.assertTrue(real)
        self.assertEqual(len(space), 8)

    def test_commit_001(self):
        """Committed bytes must be held."""
        space, _real = self.buffer.free_space()
        space[:3] = b"abc"
        self.buffer.commit(3)
        self.assertEqual(self.buffer.held(), b"abc")
        self.assertEqual(len(self.buffer), 3)

        space, real = self.buffer.free_space()
        self.assertTrue(real)
        self.assertEqual(len(space), 5)

    def test_commit_002(self):
        """Must not commit past capacity."""
        self.buffer.commit(6)
        self.assertRaises(ValueError, self.buffer.commit, 3)
        self.assertEqual(len(self.buffer), 6)


class OverflowTestCase(unittest.TestCase):
    def setUp(self):
        self.buffer = InputBuffer(4)
        space, _real = self.buffer.free_space()
        space[:] = b"GET "
        self.buffer.commit(4)

    def test_full_001(self):
        self.assertTrue(self.buffer.full())

    def test_scratch_001(self):
        """Full buffer must hand out scratch space of full capacity."""
        space, real = self.buffer.free_space()
        self.assertFalse(real)
        self.assertEqual(len(space), 4)

    def test_scratch_002(self):
        """Writes to scratch space must not change held bytes."""
        space, _real = self.buffer.free_space()
        space[:] = b"/ HT"
        self.assertEqual(self.buffer.held(), b"GET ")
        self.assertEqual(len(self.buffer), 4)
