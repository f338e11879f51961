import unittest
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from epoch_sniper.execution.clob_service import (
    ClobExecutionService,
    ExecutionServiceError,
    condition_id_bytes32
)


class FakeClobClient:
    def __init__(self, response=None, derive_error=None):
        self.response = response
        self.derive_error = derive_error
        self.creds = None
        self.orders = []

    def derive_api_key(self):
        if self.derive_error:
            raise self.derive_error
        return "derived"

    def create_api_key(self):
        return "created"

    def set_api_creds(self, creds):
        self.creds = creds

    def create_order(self, order_args):
        self.orders.append(order_args)
        return "signed"

    def post_order(self, signed_order, order_type):
        return self.response


def make_service(client):
    service = ClobExecutionService.__new__(ClobExecutionService)
    service.client = client
    service.address = "0xsigner"
    service.initialized = False
    return service


class TestConditionId(unittest.TestCase):
    def test_pads_to_32_bytes(self):
        self.assertEqual(condition_id_bytes32("0x01"), bytes(31) + b"\x01")
        self.assertEqual(condition_id_bytes32("ab" * 32), bytes.fromhex("ab" * 32))

    def test_rejects_bad_ids(self):
        for bad in ("", "0x", "0x" + "ab" * 33, "0xzz"):
            with self.assertRaises(ValueError):
                condition_id_bytes32(bad)


class TestClobExecutionService(unittest.TestCase):
    def test_initialize_derives_key(self):
        client = FakeClobClient()
        service = make_service(client)

        service.initialize()

        self.assertEqual(client.creds, "derived")
        self.assertTrue(service.initialized)

    def test_initialize_creates_key_when_derive_fails(self):
        client = FakeClobClient(derive_error=RuntimeError("no key"))
        service = make_service(client)

        service.initialize()

        self.assertEqual(client.creds, "created")

    def test_buy_returns_order_id(self):
        client = FakeClobClient(response={"success": True, "orderID": "0xabc"})
        service = make_service(client)

        order_id = service.place_buy_order("tok", 0.07, 14.29, 1000)

        self.assertEqual(order_id, "0xabc")
        args = client.orders[0]
        self.assertEqual(args.token_id, "tok")
        self.assertEqual(args.size, 14.29)
        self.assertEqual(args.fee_rate_bps, 1000)

    def test_rejected_order_raises(self):
        client = FakeClobClient(response={"success": False, "errorMsg": "not enough balance"})
        service = make_service(client)

        with self.assertRaises(ExecutionServiceError) as ctx:
            service.place_buy_order("tok", 0.07, 14.29, 1000)
        self.assertIn("not enough balance", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
