from __future__ import annotations

import os
import subprocess
import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest.mock import patch

from frameset import jobs
from frameset.metadata import write_metadata
from frameset.params import FrameParams
from webapp.app import app

from test_frameset import install_renderer


def ok_runner(args, *, cwd, timeout_seconds=None):
    return subprocess.CompletedProcess(args, 0, stdout="", stderr="")


def wait_for_job(job_id: str, timeout: float = 20.0):
    deadline = time.monotonic() + timeout
    while True:
        status = jobs.get_job(job_id)
        if status["status"] not in {"queued", "running"} or time.monotonic() > deadline:
            return status
        time.sleep(0.05)


class JobTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tempdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tempdir.cleanup)
        self.root = Path(self.tempdir.name)

        self._old_jobs = jobs.JOBS
        jobs.JOBS = {}
        self.addCleanup(self._restore_globals)

    def _restore_globals(self) -> None:
        jobs.JOBS = self._old_jobs

    def _job(self, **overrides) -> jobs.JobRecord:
        params = FrameParams(**{"read_max": 2, "root": str(self.root), "create_output_dir": True, **overrides})
        return jobs.JobRecord(job_id="j1", params=params, template=["-a", "x.bam"])

    def test_run_frame_job_marks_done_with_report(self):
        install_renderer(self.root)
        job = self._job()
        jobs._run_frame_job(job, runner=ok_runner)

        self.assertEqual(job.status, "done")
        self.assertEqual(job.progress, 1.0)
        self.assertEqual(job.result["frame_count"], 5)
        self.assertEqual(job.result["rendered"][-1], "dnd/4.png")
        self.assertEqual(job.result["failures"], [])

    def test_run_frame_job_reports_missing_renderer(self):
        job = self._job()
        jobs._run_frame_job(job, runner=ok_runner)
        self.assertEqual(job.status, "failed")
        self.assertIn("not found", job.error)

    def test_run_frame_job_reports_failed_frames(self):
        install_renderer(self.root)
        job = self._job(failure_policy="best_effort")

        def runner(args, *, cwd, timeout_seconds=None):
            code = 4 if "-A" in args else 0
            return subprocess.CompletedProcess(args, code, stdout="", stderr="")

        jobs._run_frame_job(job, runner=runner)
        self.assertEqual(job.status, "failed")
        self.assertEqual(job.result["failed_frames"], [4])

    def test_cancel_requested_before_start(self):
        install_renderer(self.root)
        job = self._job()
        job.cancel_requested = True
        jobs._run_frame_job(job, runner=ok_runner)
        self.assertEqual(job.status, "cancelled")

    def test_second_job_for_same_output_rejected(self):
        busy = self._job()
        busy.status = "running"
        jobs.JOBS[busy.job_id] = busy
        with self.assertRaises(ValueError):
            jobs.start_frame_job(busy.params, ["-a", "x.bam"], runner=ok_runner)

    def test_concurrent_starts_for_same_output_create_one_job(self):
        install_renderer(self.root)
        params = self._job().params
        release = threading.Event()
        self.addCleanup(release.set)

        def blocking_runner(args, *, cwd, timeout_seconds=None):
            release.wait(10)
            return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

        original = jobs._active_job_for_output
        rival_errors = []

        def rival_start():
            try:
                jobs.start_frame_job(params, ["-a", "x.bam"], runner=blocking_runner)
            except ValueError as exc:
                rival_errors.append(exc)

        rival = threading.Thread(target=rival_start)

        def check_with_rival(candidate):
            if not rival.is_alive() and rival.ident is None:
                rival.start()
                rival.join(0.2)
            return original(candidate)

        with patch.object(jobs, "_active_job_for_output", side_effect=check_with_rival):
            first = jobs.start_frame_job(params, ["-a", "x.bam"], runner=blocking_runner)
            rival.join(5)

        self.assertFalse(rival.is_alive())
        self.assertEqual(list(jobs.JOBS), [first])
        self.assertEqual(len(rival_errors), 1)
        release.set()
        self.assertEqual(wait_for_job(first)["status"], "done")

    def test_string_template_is_split_once_with_quotes(self):
        install_renderer(self.root)
        calls = []

        def runner(args, *, cwd, timeout_seconds=None):
            calls.append(list(args))
            return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

        job_id = jobs.start_frame_job(self._job().params, "-a 'my sample.bam'", runner=runner)
        self.assertEqual(wait_for_job(job_id)["status"], "done")
        self.assertEqual(jobs.get_job(job_id)["template"], ["-a", "my sample.bam"])
        self.assertTrue(calls)
        for cmd in calls:
            self.assertIn("my sample.bam", cmd)
            self.assertNotIn("'my", cmd)

    def test_unknown_job(self):
        with self.assertRaises(ValueError):
            jobs.get_job("missing")
        with self.assertRaises(ValueError):
            jobs.cancel_job("missing")

    def test_expired_jobs_are_dropped(self):
        job = self._job()
        job.status = "done"
        job.created_at = time.time() - jobs.JOB_TTL_SECONDS - 1
        jobs.JOBS[job.job_id] = job
        jobs.cleanup_expired_jobs()
        self.assertEqual(jobs.JOBS, {})


class WebAppTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tempdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tempdir.cleanup)
        self.root = Path(self.tempdir.name)
        self.client = app.test_client()

        self._old_jobs = jobs.JOBS
        self._old_root = app.config["FRAMESET_ROOT"]
        jobs.JOBS = {}
        app.config["FRAMESET_ROOT"] = str(self.root)
        self.addCleanup(self._restore_globals)

    def _restore_globals(self) -> None:
        jobs.JOBS = self._old_jobs
        app.config["FRAMESET_ROOT"] = self._old_root

    @unittest.skipIf(os.name == "nt", "fake renderer is a POSIX shell script")
    def test_start_and_poll_frame_job(self):
        install_renderer(self.root)
        resp = self.client.post(
            "/api/frames/start",
            json={"read_max": 1, "create_output_dir": True, "template": "-a x.bam"},
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertEqual(body["frame_count"], 4)

        status = wait_for_job(body["job_id"])
        self.assertEqual(status["status"], "done", status)
        self.assertEqual(status["template"], ["-a", "x.bam"])

        status_resp = self.client.get(f"/api/frames/jobs/{body['job_id']}")
        self.assertEqual(status_resp.get_json()["status"], "done")

        meta = self.client.get("/api/frames/metadata")
        self.assertEqual(meta.status_code, 200)
        self.assertEqual(meta.get_json()["read_max"], 1)

        image = self.client.get("/frames/3.png")
        self.assertEqual(image.status_code, 200)
        self.assertEqual(image.data, b"frame")
        image.close()

    def test_start_rejects_invalid_payload(self):
        resp = self.client.post("/api/frames/start", json={"read_max": "many"})
        self.assertEqual(resp.status_code, 400)
        self.assertIn("read_max", resp.get_json()["error"])

        resp = self.client.post("/api/frames/start", json={"template": 5})
        self.assertEqual(resp.status_code, 400)

    def test_start_rejects_server_only_fields(self):
        install_renderer(self.root)
        for payload in ({"binary_candidates": ["/bin/sh"]}, {"root": "/"}, {"output_dir": "../elsewhere"}):
            with self.subTest(payload=payload):
                resp = self.client.post("/api/frames/start", json={"read_max": 0, "create_output_dir": True, **payload})
                self.assertEqual(resp.status_code, 400)
        self.assertEqual(jobs.JOBS, {})
        self.assertFalse((self.root / "dnd").exists())

    def test_start_rejects_unbalanced_template_before_writing(self):
        install_renderer(self.root)
        resp = self.client.post(
            "/api/frames/start",
            json={"read_max": 0, "create_output_dir": True, "template": "-a it's.bam"},
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(jobs.JOBS, {})
        self.assertFalse((self.root / "dnd" / "reads.json").exists())

    def test_frame_routes_reject_paths_outside_root(self):
        meta = self.client.get("/api/frames/metadata", query_string={"output_dir": "../.."})
        self.assertEqual(meta.status_code, 400)
        image = self.client.get("/frames/0.png", query_string={"output_dir": "/etc"})
        self.assertEqual(image.status_code, 400)

    def test_unknown_job_endpoints(self):
        self.assertEqual(self.client.get("/api/frames/jobs/nope").status_code, 400)
        self.assertEqual(self.client.post("/api/frames/jobs/nope/cancel").status_code, 400)

    def test_metadata_and_missing_frame(self):
        frames_dir = self.root / "dnd"
        frames_dir.mkdir()
        write_metadata(FrameParams(read_max=4), frames_dir / "reads.json")

        meta = self.client.get("/api/frames/metadata")
        self.assertEqual(meta.get_json()["frame_count"], 7)

        missing = self.client.get("/frames/2.png")
        self.assertEqual(missing.status_code, 404)

    def test_metadata_missing_file_is_error(self):
        resp = self.client.get("/api/frames/metadata")
        self.assertEqual(resp.status_code, 400)


if __name__ == "__main__":
    unittest.main()
