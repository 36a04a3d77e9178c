import threading
import unittest
from unittest.mock import ANY, MagicMock, patch

import jobs
from pdf_console.shared.config import Config


class TestSafeRun(unittest.TestCase):
    def test_passes_arguments_through(self):
        job = MagicMock(__name__="job")
        jobs.safe_run(job)(1, pipeline="p")
        job.assert_called_once_with(1, pipeline="p")

    @patch("jobs.logger")
    def test_logs_and_swallows_errors(self, mock_logger):
        job = MagicMock(side_effect=RuntimeError("boom"), __name__="exploding_job")
        wrapped = jobs.safe_run(job)

        wrapped()

        self.assertEqual(wrapped.__name__, "exploding_job")
        mock_logger.error.assert_called_once_with("Error running job `exploding_job`: boom")


class TestInit(unittest.TestCase):
    @patch("jobs.schedule")
    def test_registers_three_sweeps(self, mock_schedule):
        pipeline = MagicMock()
        config = Config(environ={
            "PDF_SCAN_INTERVAL_MINUTES": "15",
            "PDF_RETRY_INTERVAL_MINUTES": "5",
            "PDF_PURGE_AT": "02:30",
        })

        jobs.init(pipeline, config)

        mock_schedule.every.assert_any_call(15)
        mock_schedule.every.assert_any_call(5)
        mock_schedule.every.return_value.minutes.do.assert_any_call(ANY, pipeline=pipeline)
        mock_schedule.every.return_value.day.at.assert_called_once_with("02:30")
        self.assertEqual(mock_schedule.every.return_value.minutes.do.call_count, 2)
        registered = [
            call.args[0].__name__ for call in mock_schedule.every.return_value.minutes.do.call_args_list
        ]
        self.assertEqual(registered, ["scan_missing_pdfs", "retry_due_failures"])


class TestSweeps(unittest.TestCase):
    def test_scan_calls_pipeline(self):
        pipeline = MagicMock()
        jobs.scan_missing_pdfs(pipeline)
        pipeline.scan_for_missing.assert_called_once_with()

    def test_retry_calls_pipeline(self):
        pipeline = MagicMock()
        jobs.retry_due_failures(pipeline)
        pipeline.process_due_retries.assert_called_once_with()

    def test_purge_calls_pipeline(self):
        pipeline = MagicMock()
        pipeline.purge_resolved.return_value = 3
        jobs.purge_resolved_failures(pipeline)
        pipeline.purge_resolved.assert_called_once_with()


class TestRunForever(unittest.TestCase):
    @patch("jobs.schedule")
    def test_registers_sweeps_and_runs_until_stopped(self, mock_schedule):
        stop = threading.Event()
        calls = []

        def run_pending():
            calls.append(1)
            if len(calls) == 3:
                stop.set()

        mock_schedule.run_pending.side_effect = run_pending

        jobs.run_forever(MagicMock(), Config(environ={}), interval=0.01, stop_event=stop)

        self.assertEqual(len(calls), 3)
        self.assertEqual(mock_schedule.every.return_value.minutes.do.call_count, 2)


class TestMain(unittest.TestCase):
    @patch("jobs.logging.basicConfig")
    @patch("jobs.run_forever", side_effect=KeyboardInterrupt)
    @patch("jobs.build_pipeline")
    @patch("jobs.init_db")
    def test_builds_pipeline_and_shuts_it_down(self, mock_init_db, mock_build, mock_run, _basic_config):
        jobs.main()

        mock_init_db.assert_called_once_with()
        pipeline = mock_build.return_value
        mock_run.assert_called_once_with(pipeline, ANY)
        pipeline.shutdown.assert_called_once_with()


class TestRunContinuously(unittest.TestCase):
    @patch("jobs.schedule")
    def test_runs_pending_until_stopped(self, mock_schedule):
        ran = threading.Event()
        mock_schedule.run_pending.side_effect = ran.set

        stop = jobs.run_continuously(interval=0.01)
        try:
            self.assertTrue(ran.wait(timeout=2))
        finally:
            stop.set()


if __name__ == "__main__":
    unittest.main()
