import os, json, time
import unittest as test

from jsonpatch import JsonPatch

from scholarsphere.utils import prov

class TestAgent(test.TestCase):

    def test_ctor(self):
        agent = prov.Agent("ssadm", prov.Agent.AUTO)
        self.assertEqual(agent.vehicle, "ssadm")
        self.assertEqual(agent.actor_type, "auto")
        self.assertIsNone(agent.actor)
        self.assertEqual(agent.agent_class, prov.Agent.PUBLIC)
        self.assertEqual(agent.groups, ("public",))
        self.assertEqual(agent.delegated, ())
        self.assertTrue(agent.is_anonymous)

        agent = prov.Agent("web", prov.Agent.USER, "jdoe", "psu", ["uploader"], ["staff", "admins"])
        self.assertEqual(agent.actor, "jdoe")
        self.assertEqual(agent.id, "web/jdoe")
        self.assertEqual(agent.agent_class, "psu")
        self.assertEqual(agent.groups, ("psu", "admins", "staff"))
        self.assertEqual(agent.delegated, ("uploader",))
        self.assertFalse(agent.is_anonymous)
        self.assertTrue(agent.is_in_group("staff"))
        self.assertFalse(agent.is_in_group("goob"))

        with self.assertRaises(ValueError):
            prov.Agent("web", "goob", "jdoe")

    def test_anonymous(self):
        self.assertTrue(prov.Agent("web", prov.Agent.UNKN, prov.Agent.ANONYMOUS).is_anonymous)
        self.assertTrue(prov.Agent("web", prov.Agent.USER, "jdoe", prov.Agent.INVALID).is_anonymous)
        self.assertFalse(prov.Agent("web", prov.Agent.USER, "jdoe").is_anonymous)

    def test_props(self):
        agent = prov.Agent("web", prov.Agent.USER, "jdoe", email="jdoe@psu.edu", name=None)
        self.assertEqual(agent.get_prop("email"), "jdoe@psu.edu")
        self.assertIsNone(agent.get_prop("name"))
        self.assertEqual(agent.get_prop("name", "J"), "J")

    def test_to_dict(self):
        agent = prov.Agent("web", prov.Agent.USER, "jdoe", "psu", ["cli"], ["staff"], email="j@psu.edu")
        data = agent.to_dict()
        self.assertEqual(data['vehicle'], "web")
        self.assertEqual(data['actor'], "jdoe")
        self.assertEqual(data['type'], "user")
        self.assertEqual(data['class'], "psu")
        self.assertEqual(data['groups'], ["staff"])
        self.assertEqual(data['delegated'], ["cli"])
        self.assertNotIn('actor_md', data)
        self.assertNotIn('email', data)
        self.assertEqual(json.loads(json.dumps(data)), data)

class TestAction(test.TestCase):

    def setUp(self):
        self.agent = prov.Agent("web", prov.Agent.USER, "jdoe")

    def test_ctor(self):
        act = prov.Action(prov.Action.CREATE, "ss:x1", self.agent, "created")
        self.assertEqual(act.type, "CREATE")
        self.assertEqual(act.subject, "ss:x1")
        self.assertIs(act.agent, self.agent)
        self.assertEqual(act.message, "created")
        self.assertIsNone(act.object)
        self.assertGreater(act.timestamp, time.time() - 60)
        self.assertTrue(act.date.endswith("Z"))

        act = prov.Action(prov.Action.COMMENT, "ss:x1", self.agent, timestamp=None)
        self.assertIsNone(act.timestamp)
        self.assertEqual(act.date, "")

        with self.assertRaises(ValueError):
            prov.Action("GOOB", "ss:x1", self.agent)

    def test_subactions(self):
        act = prov.Action(prov.Action.CREATE, "ss:x1", self.agent, "created", {"title": ["A"]})
        act.add_subaction(prov.Action(prov.Action.PUT, "ss:x1#content.0", self.agent, "uploaded",
                                      {"size": 3}, None))
        self.assertEqual(len(act.subactions), 1)
        with self.assertRaises(TypeError):
            act.add_subaction({"type": "PUT"})

        data = act.to_dict()
        self.assertEqual(data['type'], "CREATE")
        self.assertEqual(data['object'], {"title": ["A"]})
        self.assertEqual(data['agent']['actor'], "jdoe")
        self.assertIn('timestamp', data)
        self.assertEqual(len(data['subactions']), 1)
        self.assertEqual(data['subactions'][0]['subject'], "ss:x1#content.0")
        self.assertNotIn('timestamp', data['subactions'][0])

        # the audit log stores it as JSON
        self.assertEqual(json.loads(json.dumps(data)), data)

    def test_patch_object(self):
        patch = JsonPatch.from_diff({"title": ["A"]}, {"title": ["B"], "tag": ["x"]})
        act = prov.Action(prov.Action.PATCH, "ss:x1", self.agent, "updated", patch)
        data = act.to_dict()
        self.assertIsInstance(data['object'], list)
        ops = sorted(op['op'] for op in data['object'])
        self.assertIn("add", ops)

        act = prov.Action(prov.Action.PATCH, "ss:x1", self.agent, "updated", JsonPatch([]))
        self.assertNotIn('object', act.to_dict())


if __name__ == '__main__':
    test.main()
