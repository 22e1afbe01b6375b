"""
Single charter lookup: validation, response handling and the CLI.
"""

import io
import json
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest.mock import MagicMock, patch

import requests

import get_cu_website as lookup
from get_cu_website import (
    UNKNOWN,
    ApiError,
    FetchError,
    get_cu_website,
    normalize_website,
    validate_charter_number,
)


def _response(payload=None, text=None, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.text = json.dumps(payload) if text is None else text
    resp.json.side_effect = lambda: json.loads(resp.text)
    return resp


def _session(resp):
    session = MagicMock()
    session.get.return_value = resp
    return session


class TestValidateCharterNumber(unittest.TestCase):
    def test_accepts_int_and_digit_strings(self):
        self.assertEqual(validate_charter_number(7), 7)
        self.assertEqual(validate_charter_number("971"), 971)
        self.assertEqual(validate_charter_number(" 42\n"), 42)

    def test_rejects_non_positive_and_non_numeric(self):
        for bad in ["", "abc", "12a", "-5", "3.5", 0, -1, True, None, "０７"]:
            with self.subTest(value=bad):
                with self.assertRaises(ValueError):
                    validate_charter_number(bad)

    def test_invalid_input_makes_no_request(self):
        session = MagicMock()
        with self.assertRaises(ValueError):
            get_cu_website("nope", session=session)
        session.get.assert_not_called()


class TestNormalizeWebsite(unittest.TestCase):
    def test_lowercases(self):
        self.assertEqual(normalize_website("HTTP://Example.ORG"), "http://example.org")

    def test_missing_values_are_unknown(self):
        for value in [None, "", "   ", "null", "NULL"]:
            with self.subTest(value=value):
                self.assertEqual(normalize_website(value), UNKNOWN)


class TestGetCuWebsite(unittest.TestCase):
    def test_returns_lowercased_website(self):
        session = _session(_response({"isError": False, "creditUnionWebsite": "HTTP://Example.ORG"}))

        self.assertEqual(get_cu_website(7, session=session), "http://example.org")

        url = session.get.call_args.args[0]
        self.assertTrue(url.endswith("/GetCreditUnionDetails/7"))
        self.assertEqual(session.get.call_count, 1)

    def test_null_website_is_unknown(self):
        session = _session(_response({"isError": False, "creditUnionWebsite": None}))
        self.assertEqual(get_cu_website(7, session=session), UNKNOWN)

    def test_absent_website_is_unknown(self):
        session = _session(_response({"isError": False, "creditUnionName": "Some CU"}))
        self.assertEqual(get_cu_website(7, session=session), UNKNOWN)

    def test_api_error_surfaces_message(self):
        session = _session(_response({"isError": True, "errorMessage": "Credit union not found"}))

        with self.assertRaises(ApiError) as cm:
            get_cu_website(99999, session=session)

        self.assertEqual(str(cm.exception), "Credit union not found")

    def test_api_error_without_message(self):
        session = _session(_response({"isError": True}))
        with self.assertRaises(ApiError) as cm:
            get_cu_website(1, session=session)
        self.assertEqual(str(cm.exception), "Unknown API error")

    def test_empty_body_is_fetch_error(self):
        session = _session(_response(text=""))
        with self.assertRaises(FetchError) as cm:
            get_cu_website(1, session=session)
        self.assertEqual(str(cm.exception), lookup.FETCH_FAILED_MSG)

    def test_network_failure_is_fetch_error(self):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.ConnectionError("boom")

        with self.assertRaises(FetchError) as cm:
            get_cu_website(1, session=session)

        self.assertIsInstance(cm.exception.__cause__, requests.exceptions.ConnectionError)

    def test_malformed_json(self):
        session = _session(_response(text="<html>Service Unavailable</html>", status=503))
        with self.assertRaises(FetchError):
            get_cu_website(1, session=session)

    def test_non_object_json(self):
        session = _session(_response(["not", "an", "object"]))
        with self.assertRaises(FetchError):
            get_cu_website(1, session=session)

    def test_http_error_without_error_flag(self):
        session = _session(_response({"message": "Internal error"}, status=500))
        with self.assertRaises(FetchError) as cm:
            get_cu_website(1, session=session)
        self.assertIn("500", str(cm.exception))

    def test_base_url_from_environment(self):
        session = _session(_response({"isError": False, "creditUnionWebsite": None}))

        with patch.dict(lookup.os.environ, {"NCUA_API_BASE": "http://localhost:8080/cu/"}):
            get_cu_website(42, session=session)

        self.assertEqual(session.get.call_args.args[0], "http://localhost:8080/cu/42")

    def test_default_base_url(self):
        session = _session(_response({"isError": False, "creditUnionWebsite": None}))

        with patch.dict(lookup.os.environ, clear=False) as env:
            env.pop("NCUA_API_BASE", None)
            get_cu_website(42, session=session)

        self.assertEqual(session.get.call_args.args[0], f"{lookup.DEFAULT_API_BASE}/42")

    def test_api_error_is_a_fetch_error(self):
        self.assertTrue(issubclass(ApiError, FetchError))


class TestCli(unittest.TestCase):
    def _run(self, argv):
        out, err = io.StringIO(), io.StringIO()
        code = 0
        with redirect_stdout(out), redirect_stderr(err):
            try:
                lookup.main(argv)
            except SystemExit as e:
                code = e.code
        return code, out.getvalue(), err.getvalue()

    def test_prints_website(self):
        with patch.object(lookup, "get_cu_website", return_value="https://www.navyfederal.org"):
            code, out, err = self._run(["5536"])
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), "https://www.navyfederal.org")

    def test_prints_unknown(self):
        with patch.object(lookup, "get_cu_website", return_value=UNKNOWN):
            code, out, _ = self._run(["7"])
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), "UNKNOWN")

    def test_api_error_exits_non_zero(self):
        with patch.object(lookup, "get_cu_website", side_effect=ApiError("Credit union not found")):
            code, out, err = self._run(["7"])
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertIn("Error: Credit union not found", err)

    def test_invalid_charter_exits_non_zero(self):
        code, out, err = self._run(["abc"])
        self.assertEqual(code, 1)
        self.assertIn(lookup.INVALID_CHARTER_MSG, err)

    def test_missing_argument_exits_non_zero(self):
        code, _, err = self._run([])
        self.assertNotEqual(code, 0)
        self.assertIn("usage", err.lower())


if __name__ == "__main__":
    unittest.main()
