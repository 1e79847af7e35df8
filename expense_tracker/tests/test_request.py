import unittest

from expense_tracker.errors import RequestBodyError
from expense_tracker.request import parse_json_body


class ParseJsonBodyTests(unittest.TestCase):
    def assertRejected(self, raw, code: str, status_code: int = 400, content_length=None) -> None:
        with self.assertRaises(RequestBodyError) as ctx:
            parse_json_body(raw, content_length)
        self.assertEqual(ctx.exception.code, code)
        self.assertEqual(ctx.exception.status_code, status_code)

    def test_returns_parsed_object(self) -> None:
        self.assertEqual(parse_json_body(b'{"name": "Wallet"}', "18"), {"name": "Wallet"})

    def test_declared_length_over_limit_is_rejected_before_parsing(self) -> None:
        self.assertRejected(b"not even json", "PAYLOAD_TOO_LARGE", 413, content_length="10001")

    def test_declared_length_at_limit_is_accepted(self) -> None:
        self.assertEqual(parse_json_body(b"{}", "10000"), {})

    def test_empty_and_whitespace_bodies(self) -> None:
        self.assertRejected(b"", "EMPTY_BODY")
        self.assertRejected(b"   \n\t", "EMPTY_BODY")

    def test_malformed_json(self) -> None:
        self.assertRejected(b'{"name": ', "INVALID_JSON")

    def test_undecodable_bytes_are_invalid_json(self) -> None:
        self.assertRejected(b"\xff\xfe{", "INVALID_JSON")

    def test_non_object_payloads(self) -> None:
        for raw in (b"null", b"[1, 2]", b'"text"', b"42"):
            with self.subTest(raw=raw):
                self.assertRejected(raw, "INVALID_REQUEST_STRUCTURE")

    def test_messages(self) -> None:
        with self.assertRaises(RequestBodyError) as ctx:
            parse_json_body("")
        self.assertEqual(ctx.exception.message, "Request body cannot be empty")
        with self.assertRaises(RequestBodyError) as ctx:
            parse_json_body("{", None)
        self.assertEqual(ctx.exception.message, "Request body must be valid JSON")


if __name__ == "__main__":
    unittest.main()
