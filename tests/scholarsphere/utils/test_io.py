import os, json, tempfile, threading
import unittest as test
from collections import OrderedDict

from scholarsphere.utils import io
from scholarsphere import StateException

tmpdir = tempfile.TemporaryDirectory(prefix="_test_io.", dir=".")

def tearDownModule():
    tmpdir.cleanup()

class TestLockedFile(test.TestCase):

    def setUp(self):
        self.fname = os.path.join(tmpdir.name, "locked.txt")

    def tearDown(self):
        if os.path.exists(self.fname):
            os.remove(self.fname)

    def test_write_read(self):
        lf = io.LockedFile(self.fname, 'w')
        self.assertIsNone(lf.fo)
        with lf as fd:
            self.assertIsNotNone(lf.fo)
            fd.write("hello")
        self.assertIsNone(lf.fo)

        with io.LockedFile(self.fname) as fd:
            self.assertEqual(fd.read(), "hello")

    def test_double_open(self):
        with open(self.fname, 'w') as fd:
            fd.write("x")
        lf = io.LockedFile(self.fname)
        lf.open()
        try:
            with self.assertRaises(StateException):
                lf.open()
        finally:
            lf.close()
        lf.close()

    def test_open_missing(self):
        lf = io.LockedFile(os.path.join(tmpdir.name, "goob", "missing.txt"))
        with self.assertRaises(IOError):
            lf.open()
        self.assertIsNone(lf.fo)

    def test_shared_readers(self):
        with open(self.fname, 'w') as fd:
            fd.write("shared")
        out = []
        def read():
            with io.LockedFile(self.fname) as fd:
                out.append(fd.read())
        threads = [threading.Thread(target=read) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(out, ["shared"]*4)

class TestJSON(test.TestCase):

    def test_read(self):
        data = OrderedDict([("id", "ss:abc"), ("metadata", {"title": ["A Title"]}), ("rev", 2)])
        fname = os.path.join(tmpdir.name, "rec.json")
        with open(fname, 'w') as fd:
            json.dump(data, fd)

        back = io.read_json(fname)
        self.assertEqual(back, data)
        self.assertEqual(list(back.keys()), ["id", "metadata", "rev"])

    def test_read_bad(self):
        fname = os.path.join(tmpdir.name, "bad.json")
        with open(fname, 'w') as fd:
            fd.write("{ goob")
        with self.assertRaises(ValueError):
            io.read_json(fname)

class TestWriteBytes(test.TestCase):

    def test_write(self):
        fname = os.path.join(tmpdir.name, "content.0")
        io.write_bytes_atomically(b"hello world", fname)
        with open(fname, 'rb') as fd:
            self.assertEqual(fd.read(), b"hello world")

        io.write_bytes_atomically(b"bye", fname)
        with open(fname, 'rb') as fd:
            self.assertEqual(fd.read(), b"bye")
        self.assertEqual([f for f in os.listdir(tmpdir.name) if f.startswith("._")], [])

    def test_write_fail(self):
        with self.assertRaises(StateException):
            io.write_bytes_atomically(b"x", os.path.join(tmpdir.name, "goob", "content.0"))


if __name__ == '__main__':
    test.main()
