import os, json, logging, tempfile
import unittest as test
from urllib.parse import parse_qs
from collections import OrderedDict

from scholarsphere.web.rest import Handler, jsonerr

tmpdir = tempfile.TemporaryDirectory(prefix="_test_jsonerr.", dir=".")
loghdlr = None
rootlog = None
def setUpModule():
    global loghdlr
    global rootlog
    rootlog = logging.getLogger()
    loghdlr = logging.FileHandler(os.path.join(tmpdir.name, "test_jsonerr.log"))
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

class PoorHandler(Handler, jsonerr.ErrorHandling):

    def do_GET(self, path, ashead=False):
        params = {}
        qstr = self._env.get('QUERY_STRING')
        if qstr:
            params = parse_qs(qstr)
            for key in params:
                params[key] = params[key][-1]

        code = int(params.pop('code', 550))
        reason = params.pop('reason', "Not specified")
        message = params.pop('message', None)
        ct = params.pop('ct', "application/json")

        return self.send_error_obj(code, reason, message, params, ashead, ct)

class TestMessages(test.TestCase):

    def test_make_message(self):
        msg = jsonerr.make_message(404, "Not Found")
        self.assertEqual(list(msg.keys()), ["http:status", "http:reason", "ss:message"])
        self.assertEqual(msg["ss:message"], "Not Found")

        msg = jsonerr.make_message(404, "Not Found", "No such file", {"ss:id": "ss:x"})
        self.assertEqual(msg["ss:message"], "No such file")
        self.assertEqual(msg["ss:id"], "ss:x")

    def test_is_error_msg(self):
        self.assertTrue(jsonerr.is_error_msg(jsonerr.make_message(400, "Bad")))
        self.assertFalse(jsonerr.is_error_msg({"http:status": 400}))
        self.assertFalse(jsonerr.is_error_msg("Bad"))

    def test_fatal_error(self):
        ex = jsonerr.FatalError(403, "Forbidden")
        self.assertEqual(str(ex), "Forbidden")
        self.assertEqual(ex.explain, "Forbidden")
        self.assertIsNone(ex.data)

        ex.data_update({"ss:id": "ss:a1"})
        data = json.loads(ex.to_json())
        self.assertEqual(data, {"http:status": 403, "http:reason": "Forbidden",
                                "ss:message": "Forbidden", "ss:id": "ss:a1"})

        ex = jsonerr.FatalError(503, "Unavailable", "Store is down")
        self.assertEqual(ex.to_dict()["ss:message"], "Store is down")

class TestErrorHandling(test.TestCase):

    def start(self, status, headers=None, extup=None):
        self.resp.append(status)
        for head in headers:
            self.resp.append("{0}: {1}".format(head[0], head[1]))

    def body2data(self, body):
        return json.loads("\n".join(self.tostr(body)), object_pairs_hook=OrderedDict)

    def tostr(self, resplist):
        return [e.decode() for e in resplist]

    def setUp(self):
        self.resp = []

    def test_send_error_obj(self):
        req = {
            'REQUEST_METHOD': "GET",
            'QUERY_STRING': "code=409&reason=Conflict&message=Already+there&ss:id=ss:a1"
        }
        body = PoorHandler("", req, self.start).handle()
        self.assertEqual(self.resp[0], "409 Conflict")
        self.assertIn("Content-Type: application/json", self.resp)
        data = self.body2data(body)
        self.assertEqual(data["http:status"], 409)
        self.assertEqual(data["http:reason"], "Conflict")
        self.assertEqual(data["ss:message"], "Already there")
        self.assertEqual(data["ss:id"], "ss:a1")

    def test_defaults(self):
        body = PoorHandler("", {'REQUEST_METHOD': "GET"}, self.start).handle()
        self.assertEqual(self.resp[0], "550 Not specified")
        data = self.body2data(body)
        self.assertEqual(data["ss:message"], "Not specified")
        self.assertEqual(len(data), 3)

    def test_head(self):
        body = PoorHandler("", {'REQUEST_METHOD': "HEAD", 'QUERY_STRING': "code=404"},
                           self.start).handle()
        self.assertEqual(self.resp[0], "404 Not specified")
        self.assertEqual(body, [])
        self.assertTrue(any(h.startswith("Content-Length: ") for h in self.resp))

    def test_handler_with_json(self):
        hdlr = jsonerr.HandlerWithJSON("", {'REQUEST_METHOD': "GET"}, self.start, log=rootlog)
        body = hdlr.send_fatal_error(jsonerr.FatalError(400, "Bad Input", "title is required"))
        self.assertEqual(self.resp[0], "400 Bad Input")
        self.assertEqual(self.body2data(body)["ss:message"], "title is required")


if __name__ == '__main__':
    test.main()
