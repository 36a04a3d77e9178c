import json
import os
import unittest
from unittest import mock

import app as app_module
from app import app as flask_app

from pdf_console.shared.batch_runner import BatchSummary
from pdf_console.shared.errors import FailureNotFoundError
from pdf_console.shared.generator import GenerationResult

from support import (
    FlakyStorage,
    MutableClock,
    RecordingRenderer,
    TempDatabaseTestCase,
    make_pipeline,
    seed_account,
    seed_invoice,
    transient_error,
)


def _ok(document_id="INV-1"):
    return GenerationResult(
        document_type="invoice",
        document_id=document_id,
        success=True,
        status="generated",
        url=f"/api/pdf/files/Invoices/{document_id}.pdf",
        storage_key=f"Invoices/{document_id}.pdf",
    )


class PdfServiceSmokeTests(unittest.TestCase):
    """Routing, parameter parsing and status codes against a mocked pipeline."""

    def setUp(self):
        self.client = flask_app.test_client()
        self.pipeline = mock.Mock()
        patcher = mock.patch("app.get_pipeline", return_value=self.pipeline)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["status"], "ok")

    def test_generate_success(self):
        self.pipeline.generate_document.return_value = _ok()

        response = self.client.post(
            "/api/pdf/generate",
            json={"documentType": "invoice", "documentId": "INV-1", "forceRegenerate": "true"},
        )

        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["url"], "/api/pdf/files/Invoices/INV-1.pdf")
        self.assertEqual(payload["status"], "generated")
        self.pipeline.generate_document.assert_called_once_with(
            "invoice", "INV-1", force_regenerate=True, overwrite_existing=False
        )

    def test_generate_requires_type_and_id(self):
        response = self.client.post("/api/pdf/generate", json={"documentType": "invoice"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["errorType"], "validation_error")
        self.pipeline.generate_document.assert_not_called()

    def test_generate_bad_boolean(self):
        response = self.client.post(
            "/api/pdf/generate",
            json={"documentType": "invoice", "documentId": "1", "forceRegenerate": "maybe"},
        )
        self.assertEqual(response.status_code, 400)

    def test_generate_failure_status_codes(self):
        for error_type, status in (("not_found", 404), ("validation_error", 400), ("storage_error", 500)):
            with self.subTest(error_type=error_type):
                self.pipeline.generate_document.return_value = GenerationResult(
                    document_type="invoice",
                    document_id="X",
                    success=False,
                    status="failed",
                    error="nope",
                    error_type=error_type,
                )
                response = self.client.post("/api/pdf/generate", json={"type": "invoice", "id": "X"})
                self.assertEqual(response.status_code, status)
                self.assertEqual(response.get_json()["errorType"], error_type)

    def test_batch_accepts_document_ids_shape(self):
        self.pipeline.batch_generate.return_value = BatchSummary(
            run_id="run-1", trigger="batch", results=[_ok("A"), _ok("B")]
        )

        response = self.client.post(
            "/api/pdf/batch",
            data=json.dumps({"documentType": "invoice", "documentIds": ["A", "B"]}),
            content_type="application/json",
        )

        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["runId"], "run-1")
        self.assertEqual(payload["successCount"], 2)
        items = self.pipeline.batch_generate.call_args[0][0]
        self.assertEqual([(i.document_type, i.document_id) for i in items], [("invoice", "A"), ("invoice", "B")])

    def test_batch_rejects_bad_bodies(self):
        for body in ({}, {"items": []}, {"items": "x"}):
            with self.subTest(body=body):
                response = self.client.post("/api/pdf/batch", json=body)
                self.assertEqual(response.status_code, 400)

    def test_batch_rejects_oversized(self):
        ids = [str(n) for n in range(app_module.MAX_BATCH_ITEMS + 1)]
        response = self.client.post("/api/pdf/batch", json={"documentType": "invoice", "documentIds": ids})
        self.assertEqual(response.status_code, 400)
        self.pipeline.batch_generate.assert_not_called()

    def test_scan_reports_counts(self):
        failed = GenerationResult("invoice", "B", False, "failed", error="x", error_type="render_error")
        self.pipeline.scan_for_missing.return_value = BatchSummary(
            run_id="run-2", trigger="scan", results=[_ok("A"), failed]
        )

        response = self.client.post("/api/pdf/scan", json={"batchSize": 10, "documentTypes": ["invoice"]})

        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["successful"], 1)
        self.assertEqual(payload["failed"], 1)
        self.pipeline.scan_for_missing.assert_called_once_with(
            force_regenerate=False, batch_size=10, document_types=["invoice"]
        )

    def test_scan_rejects_bad_batch_size(self):
        response = self.client.post("/api/pdf/scan", json={"batchSize": 0})
        self.assertEqual(response.status_code, 400)

    def test_failures_filter_shorthand(self):
        self.pipeline.list_failures.return_value = []

        response = self.client.get("/api/pdf/failures?filter=manual&documentType=invoice")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {"count": 0, "failures": []})
        self.pipeline.list_failures.assert_called_once_with(
            resolved=False, requires_manual_intervention=True, document_type="invoice", limit=None
        )

    def test_failures_bad_filter(self):
        response = self.client.get("/api/pdf/failures?filter=bogus")
        self.assertEqual(response.status_code, 400)

    def test_unknown_failure_is_404(self):
        self.pipeline.get_failure.side_effect = FailureNotFoundError(99)
        response = self.client.get("/api/pdf/failures/99")
        self.assertEqual(response.status_code, 404)

    def test_unknown_run_is_404(self):
        self.pipeline.get_run.return_value = None
        response = self.client.get("/api/pdf/runs/nope")
        self.assertEqual(response.status_code, 404)

    def test_unexpected_error_is_500(self):
        self.pipeline.failure_summary.side_effect = RuntimeError("boom")
        response = self.client.get("/api/pdf/failures/summary")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json()["error"], "internal_server_error")

    def test_cors_for_allowed_origin(self):
        response = self.client.options("/api/pdf/generate", headers={"Origin": "http://localhost:5173"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers.get("Access-Control-Allow-Origin"), "http://localhost:5173")

    def test_cors_ignores_unknown_origin(self):
        response = self.client.get("/health", headers={"Origin": "https://evil.test"})
        self.assertNotIn("Access-Control-Allow-Origin", response.headers)

    def test_stats_passes_time_range(self):
        self.pipeline.stats.return_value = {"timeRange": "7d", "types": {}, "overall": {}}

        response = self.client.get("/api/pdf/stats?timeRange=7d")

        self.assertEqual(response.status_code, 200)
        self.pipeline.stats.assert_called_once_with("7d")

    def test_stats_defaults_to_one_day(self):
        self.pipeline.stats.return_value = {}
        self.client.get("/api/pdf/stats")
        self.pipeline.stats.assert_called_once_with("24h")

    def test_scheduler_skipped_in_reloader_parent(self):
        with mock.patch.object(app_module.config, "DEBUG", True):
            with mock.patch.dict(os.environ, {}, clear=False):
                os.environ.pop("WERKZEUG_RUN_MAIN", None)
                self.assertTrue(app_module._is_reloader_parent())
            with mock.patch.dict(os.environ, {"WERKZEUG_RUN_MAIN": "true"}):
                self.assertFalse(app_module._is_reloader_parent())
        with mock.patch.object(app_module.config, "DEBUG", False):
            self.assertFalse(app_module._is_reloader_parent())

    @mock.patch("jobs.run_continuously")
    @mock.patch("jobs.init")
    def test_start_scheduler_registers_sweeps(self, mock_init, mock_run):
        stop = app_module.start_scheduler()

        mock_init.assert_called_once_with(self.pipeline, app_module.config)
        self.assertIs(stop, mock_run.return_value)


class PdfServiceIntegrationTests(TempDatabaseTestCase):
    """End-to-end through the real pipeline with a fake renderer and local storage."""

    def setUp(self):
        super().setUp()
        seed_account()
        self.clock = MutableClock()
        self.storage = FlakyStorage(f"{self.tmpdir}/pdfs")
        self.pipeline = make_pipeline(
            self.tmpdir, renderer=RecordingRenderer(), storage=self.storage, clock=self.clock, PDF_MAX_RETRIES=2
        )
        app_module.set_pipeline(self.pipeline)
        self.addCleanup(app_module.set_pipeline, None)
        self.client = flask_app.test_client()

    def tearDown(self):
        self.pipeline.shutdown()
        super().tearDown()

    def test_generate_then_download(self):
        seed_invoice("INV-9")

        response = self.client.post("/api/pdf/generate", json={"documentType": "invoice", "documentId": "INV-9"})
        self.assertEqual(response.status_code, 200)
        url = response.get_json()["url"]

        download = self.client.get(url)
        self.assertEqual(download.status_code, 200)
        self.assertEqual(download.mimetype, "application/pdf")
        self.assertTrue(download.data.startswith(b"%PDF"))

    def test_download_missing_file(self):
        response = self.client.get("/api/pdf/files/Invoices/none.pdf")
        self.assertEqual(response.status_code, 404)

    def test_failure_lifecycle_over_http(self):
        seed_invoice("INV-F")
        self.storage.always_fail = transient_error()
        for _ in range(2):
            self.client.post(
                "/api/pdf/generate",
                json={"documentType": "invoice", "documentId": "INV-F", "forceRegenerate": True},
            )

        listing = self.client.get("/api/pdf/failures?filter=manual").get_json()
        self.assertEqual(listing["count"], 1)
        failure = listing["failures"][0]
        self.assertEqual(failure["state"], "manual_intervention")
        self.assertEqual(failure["retryCount"], 2)

        summary = self.client.get("/api/pdf/failures/summary").get_json()
        self.assertEqual(summary["manualIntervention"], 1)

        reset = self.client.post(f"/api/pdf/failures/{failure['id']}/reset")
        self.assertEqual(reset.status_code, 200)
        self.assertEqual(reset.get_json()["retryCount"], 0)

        self.storage.always_fail = None
        retried = self.client.post(f"/api/pdf/failures/{failure['id']}/retry")
        self.assertEqual(retried.status_code, 200)

        again = self.client.post(f"/api/pdf/failures/{failure['id']}/reset")
        self.assertEqual(again.status_code, 400)

        purge = self.client.post("/api/pdf/failures/purge", json={"olderThanDays": 0})
        self.assertEqual(purge.status_code, 200)

    def test_database_trigger_generates_pdf(self):
        seed_invoice("T1")

        response = self.client.post(
            "/api/pdf/trigger",
            json={"type": "INSERT", "table": "gl_invoices", "record": {"id": "T1"}},
        )

        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["url"], "/api/pdf/files/Invoices/T1.pdf")

    def test_database_trigger_failure_is_still_acknowledged(self):
        response = self.client.post(
            "/api/pdf/trigger",
            json={"type": "UPDATE", "table": "gl_estimates", "record": {"id": "NOPE"}},
        )

        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertFalse(payload["success"])
        self.assertEqual(payload["documentId"], "NOPE")
        self.assertEqual(payload["documentType"], "estimate")
        self.assertEqual(payload["errorType"], "not_found")

    def test_database_trigger_ignores_deletes(self):
        response = self.client.post(
            "/api/pdf/trigger",
            json={"type": "DELETE", "table": "gl_invoices", "record": {"id": "T2"}},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["message"], "Ignoring trigger of type: DELETE")

    def test_database_trigger_rejects_bad_payloads(self):
        for body in (
            {"type": "INSERT", "table": "gl_invoices"},
            {"type": "INSERT", "table": "users", "record": {"id": 1}},
        ):
            with self.subTest(body=body):
                response = self.client.post("/api/pdf/trigger", json=body)
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.get_json()["errorType"], "validation_error")

    def test_stats_over_http(self):
        seed_invoice("ST1")
        self.client.post("/api/pdf/generate", json={"documentType": "invoice", "documentId": "ST1"})

        response = self.client.get("/api/pdf/stats?timeRange=30d")

        self.assertEqual(response.status_code, 200)
        invoices = response.get_json()["types"]["invoice"]
        self.assertEqual(invoices["pdfCoverage"], 100.0)
        self.assertEqual(invoices["recentGenerations"]["successful"], 1)
        self.assertEqual(self.client.get("/api/pdf/stats?timeRange=forever").status_code, 400)

    def test_batch_run_can_be_fetched(self):
        seed_invoice("B1")
        response = self.client.post("/api/pdf/batch", json={"items": [{"type": "invoice", "id": "B1"}]})
        run_id = response.get_json()["runId"]

        run = self.client.get(f"/api/pdf/runs/{run_id}")
        self.assertEqual(run.status_code, 200)
        self.assertEqual(run.get_json()["logs"][0]["status"], "generated")


if __name__ == "__main__":
    unittest.main()
