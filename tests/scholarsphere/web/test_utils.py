import unittest as test

from scholarsphere.web import utils

class TestAccepts(test.TestCase):

    def test_order_accepts(self):
        self.assertEqual(utils.order_accepts("text/html"), ["text/html"])
        self.assertEqual(utils.order_accepts("application/json;q=0.5, text/html"),
                         ["text/html", "application/json"])
        self.assertEqual(utils.order_accepts(["text/plain;q=0.2", "text/html; q=0.9, */*;q=0"]),
                         ["text/html", "text/plain"])
        self.assertEqual(utils.order_accepts("text/html, application/json"),
                         ["text/html", "application/json"])
        self.assertEqual(utils.order_accepts(""), [])

    def test_prefers(self):
        self.assertTrue(utils.prefers(["text/html", "application/json"], "text/html", "application/json"))
        self.assertFalse(utils.prefers(["application/json", "text/html"], "text/html", "application/json"))
        self.assertTrue(utils.prefers(["*/*", "text/html"], "text/html", "application/json"))
        self.assertFalse(utils.prefers(["*/*"], "text/html", "application/json"))
        self.assertFalse(utils.prefers([], "text/html", "application/json"))


if __name__ == '__main__':
    test.main()
