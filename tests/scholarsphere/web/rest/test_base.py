import os, json, logging, tempfile, time
import unittest as test

import jwt

from scholarsphere.web.rest import base
from scholarsphere.web.rest.base import Unauthenticated, Agent
from scholarsphere.config import ConfigurationException

tmpdir = tempfile.TemporaryDirectory(prefix="_test_rest.", dir=".")
loghdlr = None
rootlog = None
def setUpModule():
    global loghdlr
    global rootlog
    rootlog = logging.getLogger()
    loghdlr = logging.FileHandler(os.path.join(tmpdir.name, "test_rest.log"))
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

class EchoHandler(base.Handler):

    def do_GET(self, path, ashead=False):
        return self.send_json({"path": path, "who": self.who.actor}, ashead=ashead)

    def do_PUT(self, path):
        raise RuntimeError("oops")

    def do_OPTIONS(self, path):
        return self.send_options(["GET", "PUT"], "http://example.org")

class EchoApp(base.ServiceApp):

    def __init__(self, log, config=None):
        super(EchoApp, self).__init__("echo", log, config)

    def create_handler(self, env, start_resp, path, who):
        return EchoHandler(path, env, start_resp, who, self.cfg, self.log, self)

class TestHandler(test.TestCase):

    def start(self, status, headers=None, extup=None):
        self.resp.append(status)
        for head in headers:
            self.resp.append("{0}: {1}".format(head[0], head[1]))

    def body2dict(self, body):
        return json.loads("\n".join(self.tostr(body)))

    def tostr(self, resplist):
        return [e.decode() for e in resplist]

    def setUp(self):
        self.resp = []

    def test_ctor(self):
        req = {'REQUEST_METHOD': "GET", 'PATH_INFO': "/echo"}
        hdlr = base.Handler("goob", req, self.start)
        self.assertEqual(hdlr.path, "goob")
        self.assertIsNone(hdlr.app)
        self.assertTrue(hdlr.who.is_anonymous)
        self.assertEqual(hdlr.who.vehicle, "scholarsphere")

        app = EchoApp(rootlog)
        hdlr = base.Handler("goob", req, self.start, app=app)
        self.assertEqual(hdlr.who.vehicle, "echo")

    def test_send_ok(self):
        req = {'REQUEST_METHOD': "GET", 'PATH_INFO': "/echo"}
        hdlr = base.Handler("", req, self.start)
        body = hdlr.send_ok("hello")
        self.assertEqual(self.resp[0], "200 OK")
        self.assertIn("Content-Type: text/plain", self.resp)
        self.assertIn("Content-Length: 5", self.resp)
        self.assertEqual(body, [b"hello"])

    def test_send_ok_head(self):
        req = {'REQUEST_METHOD': "HEAD", 'PATH_INFO': "/echo"}
        hdlr = base.Handler("", req, self.start)
        body = hdlr.send_ok(b"hello", "application/octet-stream")
        self.assertEqual(self.resp[0], "200 OK")
        self.assertIn("Content-Length: 5", self.resp)
        self.assertEqual(body, [])

    def test_send_redirect(self):
        req = {'REQUEST_METHOD': "PUT", 'PATH_INFO': "/echo"}
        hdlr = base.Handler("", req, self.start)
        body = hdlr.send_redirect("/dashboard", content='{"notice": "done"}',
                                  contenttype="application/json")
        self.assertEqual(self.resp[0], "303 See Other")
        self.assertIn("Location: /dashboard", self.resp)
        self.assertIn("Content-Type: application/json", self.resp)
        self.assertEqual(self.body2dict(body), {"notice": "done"})

    def test_handle(self):
        app = EchoApp(rootlog)
        req = {'REQUEST_METHOD': "GET", 'PATH_INFO': "/echo/a/b"}
        who = Agent("test", Agent.USER, "jdoe")
        body = app.create_handler(req, self.start, "a/b", who).handle()
        self.assertIn("200 ", self.resp[0])
        self.assertEqual(self.body2dict(body), {"path": "a/b", "who": "jdoe"})

        self.resp = []
        req['REQUEST_METHOD'] = "HEAD"
        body = app.create_handler(req, self.start, "a/b", who).handle()
        self.assertIn("200 ", self.resp[0])
        self.assertEqual(body, [])

        self.resp = []
        req['REQUEST_METHOD'] = "DELETE"
        app.create_handler(req, self.start, "a/b", who).handle()
        self.assertIn("405 ", self.resp[0])

        self.resp = []
        req['REQUEST_METHOD'] = "PUT"
        app.create_handler(req, self.start, "a/b", who).handle()
        self.assertIn("500 ", self.resp[0])

        self.resp = []
        req['REQUEST_METHOD'] = "POST"
        req['HTTP_X_HTTP_METHOD_OVERRIDE'] = "GET"
        app.create_handler(req, self.start, "a/b", who).handle()
        self.assertIn("200 ", self.resp[0])

    def test_options(self):
        app = EchoApp(rootlog)
        req = {'REQUEST_METHOD': "OPTIONS", 'PATH_INFO': "/echo"}
        app.create_handler(req, self.start, "", None).handle()
        self.assertIn("200 ", self.resp[0])
        self.assertIn("Access-Control-Allow-Methods: GET, PUT, OPTIONS", self.resp)
        self.assertIn("Access-Control-Allow-Origin: http://example.org", self.resp)

    def test_include_headers(self):
        app = EchoApp(rootlog, {"include_headers": {"Access-Control-Allow-Origin": "*"}})
        req = {'REQUEST_METHOD': "GET", 'PATH_INFO': "/echo"}
        app.create_handler(req, self.start, "", None).handle()
        self.assertIn("Access-Control-Allow-Origin: *", self.resp)

        with self.assertRaises(ConfigurationException):
            EchoApp(rootlog, {"include_headers": "goob"})

    def test_prefers_html(self):
        req = {'REQUEST_METHOD': "GET", 'PATH_INFO': "/echo",
               'HTTP_ACCEPT': "text/html, application/json;q=0.9"}
        self.assertTrue(base.Handler("", req, self.start).prefers_html())
        req['HTTP_ACCEPT'] = "application/json, text/html;q=0.5"
        self.assertFalse(base.Handler("", req, self.start).prefers_html())
        del req['HTTP_ACCEPT']
        self.assertFalse(base.Handler("", req, self.start).prefers_html())

    def test_not_found(self):
        req = {'REQUEST_METHOD': "GET", 'PATH_INFO': "/goob"}
        base.NotFoundHandler("goob", req, self.start).handle()
        self.assertIn("404 ", self.resp[0])

class TestAuthFuncs(test.TestCase):

    def setUp(self):
        self.authcfg = {
            "authorized": [
                {"auth_key": "secret", "user": "jdoe", "groups": ["staff"]},
                {"auth_key": "other", "user": "jane", "client": "psu"}
            ]
        }

    def test_authenticate_via_authkey(self):
        env = {"HTTP_AUTHORIZATION": "Bearer secret"}
        who = base.authenticate_via_authkey("ss", env, self.authcfg, rootlog, ["portal"])
        self.assertEqual(who.vehicle, "ss")
        self.assertEqual(who.actor, "jdoe")
        self.assertEqual(who.actor_type, Agent.USER)
        self.assertTrue(who.is_in_group("staff"))
        self.assertEqual(who.delegated, ("portal",))
        self.assertFalse(who.is_anonymous)

        env = {"HTTP_AUTHORIZATION": "Bearer other"}
        who = base.authenticate_via_authkey("ss", env, self.authcfg, rootlog)
        self.assertEqual(who.actor, "jane")
        self.assertEqual(who.agent_class, "psu")

    def test_authkey_anonymous(self):
        who = base.authenticate_via_authkey("ss", {}, self.authcfg, rootlog)
        self.assertTrue(who.is_anonymous)
        self.assertEqual(who.agent_class, Agent.PUBLIC)

        who = base.authenticate_via_authkey("ss", {"HTTP_AUTHORIZATION": "Basic secret"},
                                            self.authcfg, rootlog)
        self.assertTrue(who.is_anonymous)

        self.authcfg['raise_on_anonymous'] = True
        with self.assertRaises(Unauthenticated):
            base.authenticate_via_authkey("ss", {}, self.authcfg, rootlog)

    def test_authkey_invalid(self):
        env = {"HTTP_AUTHORIZATION": "Bearer goob"}
        who = base.authenticate_via_authkey("ss", env, self.authcfg, rootlog)
        self.assertTrue(who.is_anonymous)
        self.assertEqual(who.agent_class, Agent.INVALID)

        self.authcfg['raise_on_invalid'] = True
        with self.assertRaises(Unauthenticated):
            base.authenticate_via_authkey("ss", env, self.authcfg, rootlog)

    def test_authenticate_via_jwt(self):
        config = {"key": "tokensecret"}
        token = jwt.encode({"sub": "jdoe", "exp": int(time.time())+600, "groups": "staff admins",
                            "email": "jdoe@psu.edu"}, config['key'], algorithm="HS256")
        who = base.authenticate_via_jwt("ss", {"HTTP_AUTHORIZATION": "Bearer "+token}, config,
                                        rootlog, ["portal"])
        self.assertEqual(who.vehicle, "ss")
        self.assertEqual(who.actor, "jdoe")
        self.assertTrue(who.is_in_group("staff"))
        self.assertTrue(who.is_in_group("admins"))
        self.assertEqual(who.get_prop("email"), "jdoe@psu.edu")
        self.assertIsNone(who.get_prop("exp"))
        self.assertEqual(who.delegated, ("portal",))

    def test_jwt_invalid(self):
        config = {"key": "tokensecret"}

        # no expiration
        token = jwt.encode({"sub": "jdoe"}, config['key'], algorithm="HS256")
        who = base.authenticate_via_jwt("ss", {"HTTP_AUTHORIZATION": "Bearer "+token}, config,
                                        rootlog, [])
        self.assertEqual(who.agent_class, Agent.INVALID)

        config['require_expiration'] = False
        who = base.authenticate_via_jwt("ss", {"HTTP_AUTHORIZATION": "Bearer "+token}, config,
                                        rootlog, [])
        self.assertEqual(who.actor, "jdoe")

        # expired
        token = jwt.encode({"sub": "jdoe", "exp": int(time.time())-600}, config['key'],
                           algorithm="HS256")
        who = base.authenticate_via_jwt("ss", {"HTTP_AUTHORIZATION": "Bearer "+token}, config,
                                        rootlog, [])
        self.assertEqual(who.agent_class, Agent.INVALID)

        # wrong key
        token = jwt.encode({"sub": "jdoe", "exp": int(time.time())+600}, "badsecret",
                           algorithm="HS256")
        who = base.authenticate_via_jwt("ss", {"HTTP_AUTHORIZATION": "Bearer "+token}, config,
                                        rootlog, [])
        self.assertTrue(who.is_anonymous)

        config['raise_on_invalid'] = True
        with self.assertRaises(Unauthenticated):
            base.authenticate_via_jwt("ss", {"HTTP_AUTHORIZATION": "Bearer "+token}, config,
                                      rootlog, [])

        who = base.authenticate_via_jwt("ss", {}, config, rootlog, [])
        self.assertTrue(who.is_anonymous)
        self.assertEqual(who.agent_class, Agent.PUBLIC)

    def test_make_agent_from_claimset(self):
        who = base.make_agent_from_claimset("ss", {"sub": "jdoe", "groups": ["staff"]}, rootlog)
        self.assertEqual(who.actor, "jdoe")
        self.assertTrue(who.is_in_group("staff"))

        who = base.make_agent_from_claimset("ss", {"subject": "jdoe"}, rootlog, ["portal"])
        self.assertTrue(who.is_anonymous)
        self.assertEqual(who.delegated, ("portal",))

class TestWSGIAppSuite(test.TestCase):

    def start(self, status, headers=None, extup=None):
        self.resp.append(status)
        for head in headers:
            self.resp.append("{0}: {1}".format(head[0], head[1]))

    def body2dict(self, body):
        return json.loads("\n".join([e.decode() for e in body]))

    def setUp(self):
        self.resp = []
        self.config = {
            "name": "testsuite",
            "base_ep": "/ss",
            "authentication": {
                "type": "authkey",
                "authorized": [{"auth_key": "secret", "user": "jdoe"}]
            }
        }
        self.app = base.WSGIAppSuite(self.config, {"svc/echo": EchoApp(rootlog)}, rootlog)

    def request(self, path, **headers):
        env = {'REQUEST_METHOD': "GET", 'PATH_INFO': path}
        env.update(headers)
        self.resp = []
        return self.app(env, self.start)

    def test_ctor(self):
        self.assertEqual(self.app.name, "testsuite")
        self.assertEqual(self.app.base_ep, "/ss/")
        app = base.WSGIAppSuite(self.config, {}, rootlog, "/other/")
        self.assertEqual(app.base_ep, "/other/")

    def test_routing(self):
        body = self.request("/ss/svc/echo/a/b", HTTP_AUTHORIZATION="Bearer secret")
        self.assertIn("200 ", self.resp[0])
        self.assertEqual(self.body2dict(body), {"path": "a/b", "who": "jdoe"})

        body = self.request("/ss//svc/echo/")
        self.assertIn("200 ", self.resp[0])
        self.assertEqual(self.body2dict(body), {"path": "", "who": "anonymous"})

    def test_not_found(self):
        self.request("/ss/goob")
        self.assertIn("404 ", self.resp[0])
        self.request("/goob/svc/echo")
        self.assertIn("404 ", self.resp[0])

    def test_parents_forbidden(self):
        self.request("/ss/svc")
        self.assertIn("403 ", self.resp[0])
        self.request("/")
        self.assertIn("403 ", self.resp[0])

    def test_unauthenticated(self):
        self.config['authentication']['raise_on_invalid'] = True
        self.request("/ss/svc/echo", HTTP_AUTHORIZATION="Bearer goob")
        self.assertIn("401 ", self.resp[0])

    def test_allowed_clients(self):
        self.config['authentication']['allowed_clients'] = ["portal"]
        body = self.request("/ss/svc/echo", HTTP_AUTHORIZATION="Bearer secret",
                            HTTP_SS_CLIENT_ID="portal")
        self.assertEqual(self.body2dict(body)['who'], "jdoe")

        body = self.request("/ss/svc/echo", HTTP_AUTHORIZATION="Bearer secret",
                            HTTP_SS_CLIENT_ID="goob")
        self.assertEqual(self.body2dict(body)['who'], "anonymous")

    def test_bad_auth_type(self):
        self.config['authentication']['type'] = "goob"
        self.request("/ss/svc/echo")
        self.assertIn("500 ", self.resp[0])

    def test_service_app(self):
        app = base.WSGIServiceApp(EchoApp(rootlog), rootlog, "/echo")
        self.resp = []
        body = app({'REQUEST_METHOD': "GET", 'PATH_INFO': "/echo/x"}, self.start)
        self.assertIn("200 ", self.resp[0])
        self.assertEqual(self.body2dict(body)['path'], "x")


if __name__ == '__main__':
    test.main()
