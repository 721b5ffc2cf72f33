import os
import stat
import tempfile
import unittest

from ipc_engine import Operation, Outbox, Request, Response, SharedInbox
from protocol_config import ProtocolConfig
from protocol_errors import MalformedMessageError


class TestRequestWireFormat(unittest.TestCase):
    def test_serialize_is_space_delimited(self):
        req = Request(1234, 5, Operation.ADD, -3)
        self.assertEqual(req.serialize(), "1234 5 1 -3")

    def test_parse(self):
        req = Request.parse("1234 10 4 2")
        self.assertEqual(req, Request(1234, 10, 4, 2))

    def test_parse_keeps_unknown_operation(self):
        self.assertEqual(Request.parse("7 1 9 1").operation, 9)

    def test_parse_rejects_wrong_field_count(self):
        with self.assertRaises(MalformedMessageError) as cm:
            Request.parse("1234 10 4")
        self.assertEqual(cm.exception.kind, "corrupt-request")

    def test_parse_rejects_non_integer(self):
        with self.assertRaises(MalformedMessageError):
            Request.parse("1234 ten 1 2")

    def test_parse_rejects_bad_identity(self):
        with self.assertRaises(MalformedMessageError):
            Request.parse("0 1 1 1")


class TestResponseWireFormat(unittest.TestCase):
    def test_result(self):
        self.assertEqual(Response(result=-42).serialize(), "-42")
        self.assertEqual(Response.parse("-42").result, -42)
        self.assertEqual(Response.parse("8\n").result, 8)

    def test_error_marker(self):
        resp = Response.parse(Response(error="divide-by-zero").serialize())
        self.assertFalse(resp.ok)
        self.assertEqual(resp.error, "divide-by-zero")

    def test_corrupt(self):
        for text in ("", "12abc", "ERROR", "ERROR ", "ERRORfoo", "ERROR a b", "+8", "1_000", "1 2"):
            with self.subTest(text=text):
                with self.assertRaises(MalformedMessageError) as cm:
                    Response.parse(text)
                self.assertEqual(cm.exception.kind, "corrupt-response")


class SlotTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.config = ProtocolConfig(directory=self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()


class TestSharedInbox(SlotTestCase):
    def test_exclusive_create(self):
        first = SharedInbox(self.config)
        second = SharedInbox(self.config)
        self.assertTrue(first.try_post(Request(100, 1, 1, 1)))
        # The loser sees failure and the winner's request is untouched.
        self.assertFalse(second.try_post(Request(200, 2, 2, 2)))
        with open(self.config.inbox_path) as f:
            self.assertEqual(f.read(), "100 1 1 1")

    def test_drain_frees_slot(self):
        inbox = SharedInbox(self.config)
        inbox.try_post(Request(100, 6, 3, 7))
        self.assertEqual(inbox.drain(), "100 6 3 7")
        self.assertFalse(inbox.exists())
        self.assertTrue(inbox.try_post(Request(200, 1, 1, 1)))

    def test_drain_empty(self):
        self.assertIsNone(SharedInbox(self.config).drain())

    def test_drain_non_ascii(self):
        with open(self.config.inbox_path, "wb") as f:
            f.write("1 2 3 é".encode("utf-8"))
        inbox = SharedInbox(self.config)
        with self.assertRaises(MalformedMessageError):
            inbox.drain()
        self.assertFalse(inbox.exists())

    def test_status(self):
        inbox = SharedInbox(self.config)
        self.assertEqual(inbox.status(), "SharedInbox: empty")
        inbox.try_post(Request(1, 1, 1, 1))
        self.assertEqual(inbox.status(), "SharedInbox: occupied")


class TestOutbox(SlotTestCase):
    def test_name_derived_from_requester(self):
        outbox = Outbox(self.config, 4321)
        self.assertEqual(os.path.basename(outbox.path), "4321_toClient.txt")

    def test_deliver_owner_only_and_truncates(self):
        outbox = Outbox(self.config, 4321)
        with open(outbox.path, "w") as f:
            f.write("stale leftover content")
        os.chmod(outbox.path, 0o644)
        outbox.deliver(Response(result=8))
        with open(outbox.path) as f:
            self.assertEqual(f.read(), "8")
        mode = stat.S_IMODE(os.stat(outbox.path).st_mode)
        self.assertEqual(mode & 0o077, 0)

    def test_deliver_new_outbox_owner_only(self):
        outbox = Outbox(self.config, 4321)
        outbox.deliver(Response(result=8))
        mode = stat.S_IMODE(os.stat(outbox.path).st_mode)
        self.assertEqual(mode & 0o077, 0)

    def test_collect_reads_and_deletes(self):
        outbox = Outbox(self.config, 4321)
        outbox.deliver(Response(result=56))
        self.assertEqual(outbox.collect().result, 56)
        self.assertFalse(outbox.exists())

    def test_collect_corrupt(self):
        outbox = Outbox(self.config, 4321)
        with open(outbox.path, "w") as f:
            f.write("5x")
        with self.assertRaises(MalformedMessageError):
            outbox.collect()


if __name__ == "__main__":
    unittest.main()
