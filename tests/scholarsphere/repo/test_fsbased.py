import os, json, tempfile, shutil, logging
from pathlib import Path
import unittest as test

from scholarsphere.repo import fsbased, base
from scholarsphere.config import ConfigurationException
from scholarsphere.utils.prov import Agent

tmpdir = tempfile.TemporaryDirectory(prefix="_test_fsbased.", dir=".")
loghdlr = None
rootlog = None

def setUpModule():
    global loghdlr
    global rootlog
    rootlog = logging.getLogger()
    loghdlr = logging.FileHandler(os.path.join(tmpdir.name, "test_fsbased.log"))
    loghdlr.setLevel(logging.DEBUG)
    rootlog.addHandler(loghdlr)

def tearDownModule():
    global loghdlr
    if loghdlr:
        if rootlog:
            rootlog.removeHandler(loghdlr)
            loghdlr.flush()
            loghdlr.close()
        loghdlr = None
    tmpdir.cleanup()

jdoe = Agent("web", Agent.USER, "jdoe")

class TestFSBasedObjectStoreFactory(test.TestCase):

    def setUp(self):
        self.outdir = os.path.join(tmpdir.name, "fact")
        os.mkdir(self.outdir)
        self.cfg = {"root_dir": self.outdir, "reject_unknown_fields": False}

    def tearDown(self):
        shutil.rmtree(self.outdir)

    def test_ctor(self):
        fact = fsbased.FSBasedObjectStoreFactory(self.cfg)
        self.assertEqual(fact._rootdir, self.outdir)
        fact = fsbased.FSBasedObjectStoreFactory({}, self.outdir)
        self.assertEqual(fact._rootdir, self.outdir)

        with self.assertRaises(ConfigurationException):
            fsbased.FSBasedObjectStoreFactory({})
        with self.assertRaises(base.StorageUnavailable):
            fsbased.FSBasedObjectStoreFactory({}, os.path.join(self.outdir, "goob"))

    def test_create_store(self):
        store = fsbased.FSBasedObjectStoreFactory(self.cfg).create_store()
        self.assertIsInstance(store, fsbased.FSBasedObjectStore)
        self.assertFalse(store.reject_unknown_fields)
        self.assertEqual(store._root, Path(self.outdir))

class TestFSBasedObjectStore(test.TestCase):

    def setUp(self):
        self.outdir = os.path.join(tmpdir.name, "store")
        os.mkdir(self.outdir)
        self.store = fsbased.FSBasedObjectStoreFactory({}, self.outdir).create_store()

    def tearDown(self):
        shutil.rmtree(self.outdir)

    def test_ctor(self):
        with self.assertRaises(base.StorageUnavailable):
            fsbased.FSBasedObjectStore(os.path.join(self.outdir, "goob"), {})

    def test_create(self):
        obj = self.store.create("ark:/12345/a1", {"title": "Data"}, b"hello", "jdoe", "hello.txt",
                                "text/plain", who=jdoe)
        self.assertEqual(obj.rev, 1)

        recf = Path(self.outdir) / "objects" / "ark%3A%2F12345%2Fa1.json"
        self.assertTrue(recf.is_file())
        with open(recf) as fd:
            rec = json.load(fd)
        self.assertEqual(rec['id'], "ark:/12345/a1")
        self.assertEqual(rec['depositor'], "jdoe")
        self.assertEqual(rec['metadata'], {"title": ["Data"]})
        self.assertEqual(rec['content'][0]['label'], "hello.txt")

        self.assertTrue(rec['content'][0]['key'].startswith("content.0-"))
        cf = Path(self.outdir) / "content" / "ark%3A%2F12345%2Fa1" / rec['content'][0]['key']
        self.assertTrue(cf.is_file())
        self.assertEqual(cf.read_bytes(), b"hello")
        self.assertTrue((Path(self.outdir) / "audit_log" / "ark%3A%2F12345%2Fa1.lis").is_file())

        obj = self.store.get("ark:/12345/a1")
        self.assertEqual(obj.depositor, "jdoe")
        self.assertEqual(obj.label, "hello.txt")
        self.assertEqual(self.store.get_version("ark:/12345/a1"), b"hello")

        with self.assertRaises(base.AlreadyExists):
            self.store.create("ark:/12345/a1", {}, b"x", "jane")

    def test_add_version(self):
        self.store.create("ss:a1", {}, b"v0", "jdoe", "a.bin")
        self.assertEqual(self.store.add_version("ss:a1", b"v1"), "content.1")
        self.assertEqual(self.store.add_version("ss:a1", b"v2", "b.bin"), "content.2")

        obj = self.store.get("ss:a1")
        self.assertEqual(obj.rev, 3)
        self.assertEqual(obj.label, "b.bin")
        self.assertEqual(self.store.get_version("ss:a1", "content.0"), b"v0")
        self.assertEqual(self.store.get_version("ss:a1", "content.1"), b"v1")
        self.assertEqual(self.store.get_version("ss:a1"), b"v2")
        self.assertEqual(sorted(os.listdir(os.path.join(self.outdir, "content", "ss%3Aa1"))),
                         sorted(v.key for v in obj.versions))

        with self.assertRaises(base.ObjectNotFound):
            self.store.get_version("ss:a1", "content.3")

    def test_update_and_save(self):
        self.store.create("ss:a1", {"title": "T", "tag": "x"}, b"v0", "jdoe")
        obj = self.store.update("ss:a1", {"tag": [], "subject": ["Math"]}, jdoe)
        self.assertEqual(obj.metadata, {"title": ["T"], "subject": ["Math"]})
        self.assertEqual(self.store.get("ss:a1").metadata, obj.metadata)

        stale = self.store.get("ss:a1")
        fresh = self.store.get("ss:a1")
        fresh.acls.grant_perm_to("read", "group:public")
        self.store.save(fresh)
        self.assertIn("group:public", list(self.store.get("ss:a1").acls.iter_perm_granted("read")))

        stale.add_relationship("isPartOf", "info:fedora/b2")
        with self.assertRaises(base.ConcurrentModification):
            self.store.save(stale)
        self.assertEqual(self.store.get("ss:a1").related("isPartOf"), [])

    def test_delete(self):
        self.store.create("ss:a1", {}, b"v0", "jdoe")
        self.store.add_version("ss:a1", b"v1")
        self.store.delete("ss:a1")
        self.assertFalse(self.store.exists("ss:a1"))
        self.assertFalse(os.path.exists(os.path.join(self.outdir, "objects", "ss%3Aa1.json")))
        self.assertFalse(os.path.exists(os.path.join(self.outdir, "content", "ss%3Aa1")))
        self.assertFalse(os.path.exists(os.path.join(self.outdir, "audit_log", "ss%3Aa1.lis")))
        with self.assertRaises(base.ObjectNotFound):
            self.store.delete("ss:a1")

    def test_iter_objects(self):
        self.assertEqual(list(self.store.iter_objects()), [])
        self.store.create("ss:a2", {}, b"x", "jane")
        self.store.create("ss:a1", {}, b"x", "jdoe")
        self.store.create("ss:c1", {}, None, "jdoe", model=base.COLLECTION)
        self.assertEqual([o.id for o in self.store.iter_objects()], ["ss:a1", "ss:a2", "ss:c1"])
        self.assertEqual([o.id for o in self.store.iter_objects(base.GENERIC_FILE, "jdoe")], ["ss:a1"])

        # a corrupted record is skipped
        with open(os.path.join(self.outdir, "objects", "ss%3Abad.json"), 'w') as fd:
            fd.write("{ goob")
        self.assertEqual(len(list(self.store.iter_objects())), 3)

    def test_corrupted_record(self):
        os.makedirs(os.path.join(self.outdir, "objects"))
        with open(os.path.join(self.outdir, "objects", "ss%3Abad.json"), 'w') as fd:
            fd.write("{ goob")
        with self.assertRaises(base.StorageUnavailable):
            self.store.get("ss:bad")

    def test_audit(self):
        self.store.create("ss:a1", {"title": "T"}, b"v0", "jdoe", who=jdoe)
        self.store.add_version("ss:a1", b"v1", who=jdoe)
        self.store.update("ss:a1", {"title": "U"}, jdoe)
        log = self.store.audit("ss:a1")
        self.assertEqual([a['type'] for a in log], ["CREATE", "PUT", "PATCH"])
        self.assertEqual(log[1]['object']['id'], "content.1")

    def test_verify_fixity(self):
        self.store.create("ss:a1", {}, b"v0", "jdoe")
        self.store.add_version("ss:a1", b"v1")
        self.assertTrue(all(r['verified'] for r in self.store.verify_fixity("ss:a1")))

        key = self.store.get("ss:a1").version("content.0").key
        with open(os.path.join(self.outdir, "content", "ss%3Aa1", key), 'wb') as fd:
            fd.write(b"tampered")
        report = self.store.verify_fixity("ss:a1")
        self.assertFalse(report[0]['verified'])
        self.assertTrue(report[1]['verified'])

    def test_persists_across_stores(self):
        self.store.create("ss:a1", {"title": "T"}, b"v0", "jdoe")
        other = fsbased.FSBasedObjectStore(self.outdir, {})
        self.assertEqual(other.get("ss:a1").values("title"), ["T"])
        self.assertEqual(other.get_version("ss:a1"), b"v0")

    def test_entries(self):
        self.store.put_entry("widgets", "gid://w/1", {"name": "one"}, create=True)
        path = Path(self.outdir) / "widgets" / "gid%3A%2F%2Fw%2F1.json"
        self.assertTrue(path.is_file())
        with self.assertRaises(base.AlreadyExists):
            self.store.put_entry("widgets", "gid://w/1", {"name": "uno"}, create=True)

        other = fsbased.FSBasedObjectStoreFactory({}, self.outdir).create_store()
        self.assertEqual(other.get_entry("widgets", "gid://w/1"), {"name": "one"})
        other.put_entry("widgets", "gid://w/2", {"name": "two"})
        self.assertEqual([e['name'] for e in self.store.iter_entries("widgets")], ["one", "two"])

        self.assertTrue(self.store.delete_entry("widgets", "gid://w/1"))
        self.assertFalse(path.exists())
        self.assertFalse(other.delete_entry("widgets", "gid://w/1"))
        self.assertEqual(list(self.store.iter_objects()), [])

    def interleave(self, writer):
        # run writer() after this store saves content bytes but before it writes the record
        orig = self.store._store_content
        def store_then_write(id, key, data):
            orig(id, key, data)
            self.store._store_content = orig
            writer()
        self.store._store_content = store_then_write

    def test_add_version_race_keeps_winner_content(self):
        self.store.create("ss:a1", {}, b"zero", "jdoe")
        other = fsbased.FSBasedObjectStoreFactory({}, self.outdir).create_store()
        self.interleave(lambda: other.add_version("ss:a1", b"two", who=jdoe))

        with self.assertRaises(base.ConcurrentModification):
            self.store.add_version("ss:a1", b"one")

        obj = other.get("ss:a1")
        self.assertEqual([v.id for v in obj.versions], ["content.0", "content.1"])
        self.assertEqual(self.store.get_version("ss:a1", "content.1"), b"two")
        report = self.store.verify_fixity("ss:a1")
        self.assertEqual([r['actual'] is not None for r in report], [True, True])
        self.assertTrue(all(r['verified'] for r in report))
        self.assertEqual(sorted(os.listdir(os.path.join(self.outdir, "content", "ss%3Aa1"))),
                         sorted(v.key for v in obj.versions))

    def test_create_race_keeps_winner_content(self):
        other = fsbased.FSBasedObjectStoreFactory({}, self.outdir).create_store()
        self.interleave(lambda: other.create("ss:a2", {}, b"two", "jane"))

        with self.assertRaises(base.AlreadyExists):
            self.store.create("ss:a2", {}, b"one", "jdoe")

        obj = self.store.get("ss:a2")
        self.assertEqual(obj.depositor, "jane")
        self.assertEqual(self.store.get_version("ss:a2"), b"two")
        self.assertTrue(all(r['verified'] for r in self.store.verify_fixity("ss:a2")))
        self.assertEqual(os.listdir(os.path.join(self.outdir, "content", "ss%3Aa2")),
                         [obj.latest_version.key])


if __name__ == '__main__':
    test.main()
