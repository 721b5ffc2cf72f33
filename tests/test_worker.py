import os
import tempfile
import unittest
from unittest import mock

import worker
from ipc_engine import Operation, Outbox, Request
from protocol_config import ProtocolConfig
from protocol_errors import BadOperationError, DivisionByZeroError, UnreachableTargetError


class TestApplyOperation(unittest.TestCase):
    def test_basic_operations(self):
        self.assertEqual(worker.apply_operation(5, Operation.ADD, 3), 8)
        self.assertEqual(worker.apply_operation(5, Operation.SUB, 8), -3)
        self.assertEqual(worker.apply_operation(7, Operation.MUL, 8), 56)
        self.assertEqual(worker.apply_operation(10, Operation.DIV, 2), 5)

    def test_division_truncates_toward_zero(self):
        cases = [(7, 2, 3), (-7, 2, -3), (7, -2, -3), (-7, -2, 3), (0, -5, 0), (1, 3, 0)]
        for a, b, expected in cases:
            with self.subTest(a=a, b=b):
                self.assertEqual(worker.apply_operation(a, Operation.DIV, b), expected)

    def test_divide_by_zero(self):
        with self.assertRaises(DivisionByZeroError) as cm:
            worker.apply_operation(1, Operation.DIV, 0)
        self.assertIsInstance(cm.exception, ArithmeticError)
        self.assertEqual(cm.exception.kind, "divide-by-zero")

    def test_bad_operation(self):
        for op in (0, 5, -1):
            with self.subTest(op=op):
                with self.assertRaises(BadOperationError):
                    worker.apply_operation(1, op, 1)


class TestCompute(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.config = ProtocolConfig(directory=self._tmp.name)
        self.requester = os.getpid()
        patcher = mock.patch.object(worker, "notify")
        self.notify = patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        self._tmp.cleanup()

    def outbox(self):
        return Outbox(self.config, self.requester)

    def test_delivers_and_notifies(self):
        code = worker.compute(Request(self.requester, 10, Operation.DIV, 2), self.config)
        self.assertEqual(code, worker.EXIT_DELIVERED)
        with open(self.outbox().path) as f:
            self.assertEqual(f.read(), "5")
        self.notify.assert_called_once_with(self.requester, kind="requester-unreachable")

    def test_divide_by_zero_is_silent(self):
        code = worker.compute(Request(self.requester, 1, Operation.DIV, 0), self.config)
        self.assertEqual(code, worker.EXIT_NOT_DELIVERED)
        self.assertFalse(self.outbox().exists())
        self.notify.assert_not_called()

    def test_bad_operation_is_silent(self):
        code = worker.compute(Request(self.requester, 1, 9, 1), self.config)
        self.assertEqual(code, worker.EXIT_NOT_DELIVERED)
        self.assertFalse(self.outbox().exists())
        self.notify.assert_not_called()

    def test_explicit_errors_deliver_error_response(self):
        config = self.config.with_overrides(explicit_errors=True)
        code = worker.compute(Request(self.requester, 1, Operation.DIV, 0), config)
        self.assertEqual(code, worker.EXIT_DELIVERED)
        with open(self.outbox().path) as f:
            self.assertEqual(f.read(), "ERROR divide-by-zero")
        self.notify.assert_called_once()

    def test_dead_requester_is_logged_not_retried(self):
        self.notify.side_effect = UnreachableTargetError("gone", kind="requester-unreachable")
        with self.assertLogs("worker", level="WARNING"):
            code = worker.compute(Request(self.requester, 2, Operation.MUL, 3), self.config)
        self.assertEqual(code, worker.EXIT_UNREACHABLE)
        self.assertEqual(self.notify.call_count, 1)


if __name__ == "__main__":
    unittest.main()
