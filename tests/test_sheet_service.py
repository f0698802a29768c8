import json
import unittest
from unittest import mock

import requests

from pocketledger import sheet_service
from pocketledger.categories_config import DEFAULT_GID, DEFAULT_SHEET_ID
from pocketledger.errors import SheetError
from pocketledger.models import Transaction

SCRIPT_URL = "https://script.google.com/macros/s/abc/exec"

FORM_CSV = (
    '"Timestamp","Date","Amount","Category","Note"\n'
    '"3/15/2024 10:12:01","2024-03-15 00:00:00","$12.50","Lunch","Noodles"\n'
    '"x"\n'
    '"","2024-03-16","20","Employment","Pay"\n'
)


def response(text="", ok=True, status_code=200, reason="OK"):
    res = mock.Mock()
    res.ok = ok
    res.status_code = status_code
    res.reason = reason
    res.text = text
    res.json.side_effect = lambda: json.loads(text)
    return res


class TestUrls(unittest.TestCase):
    def test_read_only_sources(self):
        self.assertTrue(sheet_service.is_read_only(""))
        self.assertTrue(sheet_service.is_read_only(DEFAULT_SHEET_ID))
        self.assertTrue(sheet_service.is_read_only("https://docs.google.com/spreadsheets/d/x/edit"))
        self.assertFalse(sheet_service.is_read_only(SCRIPT_URL))

    def test_sheet_links_become_gviz_csv(self):
        url, is_csv = sheet_service.build_fetch_url("https://docs.google.com/spreadsheets/d/ABC-123_x/edit#gid=42")
        self.assertTrue(is_csv)
        self.assertEqual(url, "https://docs.google.com/spreadsheets/d/ABC-123_x/gviz/tq?tqx=out:csv&gid=42")

    def test_default_id_uses_default_gid(self):
        url, is_csv = sheet_service.build_fetch_url(DEFAULT_SHEET_ID)
        self.assertTrue(is_csv)
        self.assertIn(f"/d/{DEFAULT_SHEET_ID}/", url)
        self.assertTrue(url.endswith(f"gid={DEFAULT_GID}"))

    def test_script_urls_pass_through(self):
        self.assertEqual(sheet_service.build_fetch_url(SCRIPT_URL), (SCRIPT_URL, False))


class TestParseCsv(unittest.TestCase):
    def test_form_export(self):
        txs = sheet_service.parse_sheet_csv(FORM_CSV, ["Employment"], ["SPY"])
        self.assertEqual(len(txs), 2)
        lunch, pay = txs
        self.assertEqual(lunch.id, "form-3152024101201")
        self.assertEqual(lunch.date, "2024-03-15")
        self.assertEqual(lunch.amount, 12.5)
        self.assertEqual(lunch.category, "Lunch")
        self.assertEqual(lunch.note, "Noodles")
        self.assertEqual(lunch.type, "expense")
        self.assertEqual(lunch.source, "IOS shortcut")
        self.assertEqual(pay.id, "csv-2-2024-03-16-20")
        self.assertEqual(pay.type, "income")

    def test_header_only_is_empty(self):
        self.assertEqual(sheet_service.parse_sheet_csv("Date,Amount\n", [], []), [])

    def test_positional_columns_without_headers(self):
        text = "a,b,c,d,e\nstamp,2024-01-02,-7.25,SPY,ETF buy\n"
        (tx,) = sheet_service.parse_sheet_csv(text, [], ["SPY"])
        self.assertEqual(tx.amount, -7.25)
        self.assertEqual(tx.date, "2024-01-02")
        self.assertEqual(tx.category, "SPY")
        self.assertEqual(tx.note, "ETF buy")
        self.assertEqual(tx.type, "investment")


class TestParseJson(unittest.TestCase):
    def test_envelope_and_types(self):
        data = {"data": [
            {"id": "r1", "date": "2024-02-01", "amount": 100, "category": "Employment"},
            {"date": "2024-02-02", "amount": -4, "category": "Snacks and Coffee", "source": "app input"},
            "junk",
        ]}
        txs = sheet_service.parse_sheet_json(data, ["Employment"], [])
        self.assertEqual([t.type for t in txs], ["income", "expense"])
        self.assertEqual(txs[0].source, "IOS shortcut")
        self.assertEqual(txs[1].source, "app input")
        self.assertTrue(txs[1].id)


class TestFetch(unittest.TestCase):
    @mock.patch("pocketledger.sheet_service.requests.get")
    def test_csv_fetch(self, get):
        get.return_value = response(FORM_CSV)
        txs = sheet_service.fetch_transactions(DEFAULT_SHEET_ID, ["Employment"], [])
        self.assertEqual(len(txs), 2)
        self.assertIn("tqx=out:csv", get.call_args[0][0])

    @mock.patch("pocketledger.sheet_service.requests.get")
    def test_json_fetch(self, get):
        get.return_value = response(json.dumps([{"id": "a", "date": "2024-01-01", "amount": 3, "category": "Lunch"}]))
        (tx,) = sheet_service.fetch_transactions(SCRIPT_URL, [], [])
        self.assertEqual(tx.id, "a")

    @mock.patch("pocketledger.sheet_service.requests.get")
    def test_http_failure_raises(self, get):
        get.return_value = response(ok=False, status_code=403, reason="Forbidden")
        with self.assertRaises(SheetError):
            sheet_service.fetch_transactions(DEFAULT_SHEET_ID, [], [])

    @mock.patch("pocketledger.sheet_service.requests.get")
    def test_network_failure_raises(self, get):
        get.side_effect = requests.ConnectionError("down")
        with self.assertRaises(SheetError):
            sheet_service.fetch_transactions(SCRIPT_URL, [], [])


class TestCheckConnection(unittest.TestCase):
    def test_rejects_non_script_urls(self):
        result = sheet_service.check_connection("https://example.com")
        self.assertFalse(result["success"])

    @mock.patch("pocketledger.sheet_service.requests.get")
    def test_html_response(self, get):
        get.return_value = response("<html>login</html>")
        result = sheet_service.check_connection(SCRIPT_URL)
        self.assertFalse(result["success"])
        self.assertIn("HTML", result["message"])

    @mock.patch("pocketledger.sheet_service.requests.get")
    def test_success(self, get):
        get.return_value = response('{"status": "success"}')
        self.assertEqual(sheet_service.check_connection(SCRIPT_URL)["message"], "Connection successful!")


def make_txs(n):
    return [Transaction(id=f"t{i}", date="2024-01-01", amount=-1.0, category="Lunch") for i in range(n)]


class TestWrites(unittest.TestCase):
    @mock.patch("pocketledger.sheet_service.requests.post")
    def test_read_only_target_is_mocked(self, post):
        self.assertTrue(sheet_service.save_transaction(DEFAULT_SHEET_ID, make_txs(1)[0]))
        result = sheet_service.save_bulk_transactions("https://docs.google.com/spreadsheets/d/x", make_txs(3))
        self.assertEqual(result.to_dict(), {"success": True, "count": 3})
        post.assert_not_called()

    @mock.patch("pocketledger.sheet_service.requests.post")
    def test_single_add_posts_plain_text_json(self, post):
        post.return_value = response('{"status": "success"}')
        self.assertTrue(sheet_service.save_transaction(SCRIPT_URL, make_txs(1)[0]))
        kwargs = post.call_args[1]
        self.assertEqual(json.loads(kwargs["data"])["action"], "add")
        self.assertTrue(kwargs["headers"]["Content-Type"].startswith("text/plain"))

    @mock.patch("pocketledger.sheet_service.requests.post")
    def test_single_add_network_error(self, post):
        post.side_effect = requests.Timeout("slow")
        self.assertFalse(sheet_service.save_transaction(SCRIPT_URL, make_txs(1)[0]))

    @mock.patch("pocketledger.sheet_service.requests.post")
    def test_bulk_batches_of_fifty(self, post):
        post.return_value = response('{"status": "success", "targetSheet": "2024"}')
        result = sheet_service.save_bulk_transactions(SCRIPT_URL, make_txs(120))
        self.assertEqual(post.call_count, 3)
        sizes = [len(json.loads(c[1]["data"])["data"]) for c in post.call_args_list]
        self.assertEqual(sizes, [50, 50, 20])
        self.assertEqual(result.to_dict(), {"success": True, "count": 120, "sheetName": "2024"})

    @mock.patch("pocketledger.sheet_service.requests.post")
    def test_bulk_stops_on_http_error(self, post):
        post.side_effect = [response('{"status": "success"}'), response(ok=False, status_code=500)]
        result = sheet_service.save_bulk_transactions(SCRIPT_URL, make_txs(80))
        self.assertFalse(result.success)
        self.assertEqual(result.count, 50)
        self.assertEqual(result.error, "HTTP Error 500")

    @mock.patch("pocketledger.sheet_service.requests.post")
    def test_bulk_script_error(self, post):
        post.return_value = response('{"status": "error", "message": "Sheet locked"}')
        result = sheet_service.save_bulk_transactions(SCRIPT_URL, make_txs(2))
        self.assertEqual(result.to_dict(), {"success": False, "count": 0, "error": "Sheet locked"})

    @mock.patch("pocketledger.sheet_service.requests.post")
    def test_bulk_invalid_json(self, post):
        post.return_value = response("<html>")
        result = sheet_service.save_bulk_transactions(SCRIPT_URL, make_txs(2))
        self.assertFalse(result.success)
        self.assertIn("New Deployment", result.error)


class TestCli(unittest.TestCase):
    def test_connection_check_exit_code(self):
        self.assertEqual(sheet_service.main(["test", "https://example.com"]), 1)

    @mock.patch("pocketledger.sheet_service.requests.get")
    def test_sync_into_data_dir(self, get):
        import tempfile
        from pocketledger.store import JsonStore

        get.return_value = response(FORM_CSV)
        with tempfile.TemporaryDirectory() as tmp, mock.patch.dict("os.environ", {"SHEET_DB_URL": ""}):
            self.assertEqual(sheet_service.main(["sync", "--data-dir", tmp]), 0)
            self.assertEqual(len(JsonStore(tmp).load("transactions")), 2)


if __name__ == "__main__":
    unittest.main()
