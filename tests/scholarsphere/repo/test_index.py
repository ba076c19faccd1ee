import os, json, logging
import unittest as test
from unittest.mock import patch, Mock

import requests

from scholarsphere.repo import index, base, inmem
from scholarsphere.repo.collections import PermissionTemplate
from scholarsphere.utils.prov import Agent
from scholarsphere.config import ConfigurationException

class TestProject(test.TestCase):

    def setUp(self):
        self.obj = base.StoredObject({
            "id": "ss:a1",
            "depositor": "jdoe",
            "acls": {"read": ["jdoe", "group:public"], "edit": ["jdoe"]},
            "metadata": {"title": ["A Title"], "tag": ["x", "y"], "subject": []},
            "relationships": [["isPartOf", "info:fedora/b1"]],
            "content": [
                {"id": "content.0", "size": 3, "checksum": "sha256:x", "label": "a.txt",
                 "mime_type": "text/plain", "created": 0.0},
                {"id": "content.1", "size": 5, "checksum": "sha256:y", "label": "b.csv",
                 "mime_type": "text/csv", "created": 1.5}
            ],
            "date_uploaded": 0.0,
            "date_modified": 1.5
        })

    def test_format_date(self):
        self.assertEqual(index.format_date(0), "1970-01-01T00:00:00.000Z")
        self.assertEqual(index.format_date(1.5), "1970-01-01T00:00:01.500Z")

    def test_project_file(self):
        doc = index.project(self.obj)
        self.assertIsInstance(doc, index.SearchDocument)
        self.assertEqual(doc.id, "ss:a1")
        self.assertEqual(doc.model, base.GENERIC_FILE)
        self.assertEqual(doc['depositor_ssim'], ["jdoe"])
        self.assertEqual(doc['edit_access_person_ssim'], ["jdoe"])
        self.assertEqual(doc['read_access_person_ssim'], ["jdoe"])
        self.assertEqual(doc['edit_access_group_ssim'], [])
        self.assertEqual(doc['read_access_group_ssim'], ["public"])
        self.assertEqual(doc['date_uploaded_dtsi'], "1970-01-01T00:00:00.000Z")
        self.assertEqual(doc['date_modified_dtsi'], "1970-01-01T00:00:01.500Z")
        self.assertEqual(doc['title_tesim'], ["A Title"])
        self.assertEqual(doc['tag_tesim'], ["x", "y"])
        self.assertNotIn('subject_tesim', doc)
        self.assertEqual(doc['isPartOf_ssim'], ["info:fedora/b1"])
        self.assertEqual(doc['label_tesim'], ["b.csv"])
        self.assertEqual(doc['mime_type_ssi'], "text/csv")
        self.assertEqual(doc['file_size_lts'], 5)
        self.assertEqual(doc['version_count_isi'], 2)

        # projection is deterministic
        self.assertEqual(index.project(self.obj), doc)

    def test_project_collection(self):
        obj = base.StoredObject({
            "id": "ss:c1", "model": base.COLLECTION, "depositor": "jdoe",
            "acls": {"read": ["jdoe"], "edit": ["jdoe"]},
            "relationships": [["hasCollectionType", "gid://scholarsphere/CollectionType/1"]]
        })
        tmpl = PermissionTemplate("ss:c1")
        tmpl.grant("user", "jane", "manage")
        tmpl.grant("group", "staff", "deposit")
        tmpl.grant("user", "jdoe", "view")

        doc = index.project(obj, tmpl)
        self.assertEqual(doc.model, base.COLLECTION)
        self.assertEqual(doc['collection_type_gid_ssim'], ["gid://scholarsphere/CollectionType/1"])
        self.assertNotIn('hasCollectionType_ssim', doc)
        self.assertEqual(doc['edit_access_person_ssim'], ["jdoe", "jane"])
        self.assertEqual(doc['read_access_person_ssim'], ["jdoe"])
        self.assertEqual(doc['read_access_group_ssim'], ["staff"])
        self.assertNotIn('mime_type_ssi', doc)
        self.assertEqual(doc['version_count_isi'], 0)

class TestInMemoryIndex(test.TestCase):

    def test_add_get_delete(self):
        idx = index.InMemoryIndex()
        self.assertEqual(len(idx), 0)
        self.assertIsNone(idx.get("ss:a1"))

        idx.add({"id": "ss:a1", "has_model_ssim": ["GenericFile"], "depositor_ssim": ["jdoe"]})
        idx.add({"id": "ss:a2", "has_model_ssim": ["GenericFile"], "depositor_ssim": ["jane"]})
        idx.add({"id": "ss:c1", "has_model_ssim": ["Collection"], "depositor_ssim": ["jdoe"]})
        self.assertEqual(len(idx), 3)
        self.assertEqual(idx.get("ss:a1").model, "GenericFile")

        idx.add({"id": "ss:a1", "has_model_ssim": ["GenericFile"], "depositor_ssim": ["bob"]})
        self.assertEqual(len(idx), 3)
        self.assertEqual(idx.get("ss:a1")['depositor_ssim'], ["bob"])

        self.assertEqual([d.id for d in idx.select(has_model_ssim="GenericFile")], ["ss:a1", "ss:a2"])
        self.assertEqual([d.id for d in idx.select(depositor_ssim="jdoe")], ["ss:c1"])
        self.assertEqual(len(idx.select()), 3)

        idx.delete("ss:a1")
        idx.delete("ss:a1")
        self.assertEqual(len(idx), 2)
        self.assertIsNone(idx.get("ss:a1"))

    def test_isolation(self):
        doc = {"id": "ss:a1", "tag_tesim": ["x"]}
        idx = index.InMemoryIndex()
        idx.add(doc)
        doc['tag_tesim'].append("y")
        self.assertEqual(idx.get("ss:a1")['tag_tesim'], ["x"])

class TestSolrIndex(test.TestCase):

    def setUp(self):
        self.idx = index.SolrIndex({"solr_url": "http://solr.example.org/solr/ss/", "timeout": 2})

    def resp(self, status=200, data=None):
        out = Mock()
        out.status_code = status
        out.reason = "OK" if status < 300 else "Server Error"
        out.json.return_value = data if data is not None else {}
        return out

    def test_ctor(self):
        self.assertEqual(self.idx.baseurl, "http://solr.example.org/solr/ss")
        self.assertEqual(self.idx.timeout, 2)
        with self.assertRaises(ConfigurationException):
            index.SolrIndex({})

    @patch('requests.request')
    def test_add_delete(self, req):
        req.return_value = self.resp()
        self.idx.add({"id": "ss:a1"})
        req.assert_called_with("POST", "http://solr.example.org/solr/ss/update", timeout=2,
                               params={"commit": "true"}, json=[{"id": "ss:a1"}])

        self.idx.delete("ss:a1")
        req.assert_called_with("POST", "http://solr.example.org/solr/ss/update", timeout=2,
                               params={"commit": "true"}, json={"delete": {"id": "ss:a1"}})

    @patch('requests.request')
    def test_get_select(self, req):
        req.return_value = self.resp(data={"doc": {"id": "ss:a1", "has_model_ssim": ["GenericFile"]}})
        doc = self.idx.get("ss:a1")
        self.assertEqual(doc.id, "ss:a1")
        self.assertEqual(doc.model, "GenericFile")

        req.return_value = self.resp(data={"doc": None})
        self.assertIsNone(self.idx.get("ss:a1"))

        req.return_value = self.resp(data={"response": {"docs": [{"id": "ss:a1"}, {"id": "ss:a2"}]}})
        docs = self.idx.select(depositor_ssim="jdoe")
        self.assertEqual([d.id for d in docs], ["ss:a1", "ss:a2"])
        self.assertEqual(req.call_args[1]['params'], {"q": 'depositor_ssim:"jdoe"', "wt": "json"})

        self.idx.select()
        self.assertEqual(req.call_args[1]['params']['q'], "*:*")

    @patch('requests.request')
    def test_failures(self, req):
        req.return_value = self.resp(500)
        with self.assertRaises(index.IndexUnavailable):
            self.idx.add({"id": "ss:a1"})

        req.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(index.IndexUnavailable):
            self.idx.get("ss:a1")

        req.side_effect = None
        bad = self.resp()
        bad.json.side_effect = ValueError("not json")
        req.return_value = bad
        with self.assertRaises(index.IndexUnavailable):
            self.idx.select()

    def test_create_index_client(self):
        self.assertIsInstance(index.create_index_client({}), index.InMemoryIndex)
        self.assertIsInstance(index.create_index_client({"factory": "solr", "solr_url": "http://x/solr"}),
                              index.SolrIndex)
        with self.assertRaises(ConfigurationException):
            index.create_index_client({"factory": "goob"})

class FlakyIndex(index.InMemoryIndex):

    def __init__(self, failures):
        super(FlakyIndex, self).__init__()
        self.failures = failures
        self.attempts = 0

    def add(self, doc):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise index.IndexUnavailable("solr is down")
        super(FlakyIndex, self).add(doc)

    def delete(self, id):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise index.IndexUnavailable("solr is down")
        super(FlakyIndex, self).delete(id)

class TestIndexProjector(test.TestCase):

    def setUp(self):
        self.store = inmem.InMemoryObjectStoreFactory({}).create_store()
        self.obj = self.store.create("ss:a1", {"title": "T"}, b"data", "jdoe", "a.txt")
        self.log = Mock()

    def test_publish_retract(self):
        idx = index.InMemoryIndex()
        prj = index.IndexProjector(idx, {"retry_delay": 0})
        self.assertEqual(prj.retries, 2)
        doc = prj.publish(self.obj)
        self.assertEqual(doc.id, "ss:a1")
        self.assertEqual(idx.get("ss:a1"), doc)

        prj.retract("ss:a1")
        self.assertIsNone(idx.get("ss:a1"))

    def test_retries(self):
        idx = FlakyIndex(2)
        prj = index.IndexProjector(idx, {"retries": 2, "retry_delay": 0}, self.log)
        prj.publish(self.obj)
        self.assertEqual(idx.attempts, 3)
        self.assertIsNotNone(idx.get("ss:a1"))
        self.assertEqual(self.log.warning.call_count, 2)
        self.log.error.assert_not_called()

    def test_out_of_sync(self):
        idx = FlakyIndex(10)
        prj = index.IndexProjector(idx, {"retries": 1, "retry_delay": 0}, self.log)
        with self.assertRaises(base.IndexOutOfSync) as cm:
            prj.publish(self.obj)
        self.assertEqual(cm.exception.object_id, "ss:a1")
        self.assertEqual(idx.attempts, 2)
        self.assertTrue(self.log.error.call_args[0][0].startswith("ALERT: "))

        with self.assertRaises(base.IndexOutOfSync):
            prj.retract("ss:a1")

    def test_reindex(self):
        self.store.create("ss:a2", {}, b"data", "jane")
        idx = index.InMemoryIndex()
        idx.add({"id": "ss:gone"})
        prj = index.IndexProjector(idx, {"retry_delay": 0})

        self.assertEqual(prj.reindex(self.store), ["ss:a1", "ss:a2"])
        self.assertEqual(len(idx), 3)

        self.assertEqual(prj.reindex(self.store, ["ss:a2", "ss:gone"]), ["ss:a2"])
        self.assertIsNone(idx.get("ss:gone"))
        self.assertEqual(len(idx), 2)


if __name__ == '__main__':
    test.main()
