"""Tests for the FastAPI transcription API.

WHY: The REST surface is how a browser or script drives the queue:
uploading audio, starting and retrying jobs, polling progress and
downloading results. Status codes and response shapes are the contract.

HOW: FastAPI TestClient exercises the app in-process. By default the
background runner is patched out so jobs stay processing; tests that
need a full run patch the service factory with FakeTranscriptionService
and let BackgroundTasks execute the real pipeline.

RULES:
- Gemini is never called
- The module-level job store is emptied around every test
- Saved default settings and custom dictionaries live in tmp_path
"""

from __future__ import annotations

import io
import shutil
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from srt_transcriber import config
from srt_transcriber.core.job import JobStatus, SrtSettings
from srt_transcriber.server import app as app_module
from srt_transcriber.server.app import app, job_store, settings_storage


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolated_state(tmp_path, monkeypatch):
    """Empty job store, throwaway settings file and dictionary dir for each test."""
    monkeypatch.setattr(settings_storage, "path", tmp_path / "settings.json")
    monkeypatch.setattr(config, "DICTIONARY_DIR", tmp_path / "dictionaries")
    for job in job_store.list_jobs():
        job_store.delete_job(job.id)
    yield
    for job in job_store.list_jobs():
        shutil.rmtree(job.work_dir, ignore_errors=True)
        job_store.delete_job(job.id)


@pytest.fixture
def client():
    """TestClient whose background runs do nothing."""
    with patch(
        "srt_transcriber.server.app._run_job_sync",
        new=lambda job, store: None,
    ):
        yield TestClient(app)


@pytest.fixture
def fake(service_factory):
    return service_factory()


@pytest.fixture
def running_client(fake):
    """TestClient whose background runs use the fake service."""
    with patch("srt_transcriber.server.app._make_service", return_value=fake):
        yield TestClient(app)


def _audio(name: str = "lecture.mp3", content: bytes = b"fake audio data"):
    return {"file": (name, io.BytesIO(content), "audio/mpeg")}


def _create(client, name="lecture.mp3", **form):
    data = {k: str(v).lower() if isinstance(v, bool) else str(v) for k, v in form.items()}
    return client.post("/jobs", files=_audio(name), data=data)


def _finish(job_id, **changes):
    job = job_store.begin_run(job_id)
    return job_store.update_job(job_id, run_token=job.run_token, **changes)


# ---------------------------------------------------------------------------
# POST /jobs
# ---------------------------------------------------------------------------


class TestCreateJob:
    def test_create_returns_201_idle(self, client):
        response = _create(client)
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "idle"
        assert body["filename"] == "lecture.mp3"
        assert job_store.get_job(body["id"]) is not None

    def test_upload_saved_in_work_dir(self, client):
        response = client.post("/jobs", files=_audio(content=b"RIFF data"))
        job = job_store.get_job(response.json()["id"])
        assert job.source_path.read_bytes() == b"RIFF data"

    def test_path_traversal_filename_sanitized(self, client):
        response = _create(client, name="../../etc/talk.wav")
        assert response.json()["filename"] == "talk.wav"

    def test_unsupported_extension_400(self, client):
        response = _create(client, name="notes.txt")
        assert response.status_code == 400
        assert ".txt" in response.json()["detail"]
        assert job_store.list_jobs() == []

    def test_saved_defaults_applied(self, client):
        settings_storage.save(SrtSettings(max_chars_per_subtitle=30, enable_advanced_processing=True))
        job_id = _create(client).json()["id"]
        settings = job_store.get_job(job_id).settings
        assert settings.max_chars_per_subtitle == 30
        assert settings.enable_advanced_processing is True

    def test_form_overrides_defaults(self, client):
        job_id = _create(
            client,
            max_chars_per_subtitle=15,
            enable_speaker_detection=False,
            remove_filler_words=False,
        ).json()["id"]
        settings = job_store.get_job(job_id).settings
        assert settings.max_chars_per_subtitle == 15
        assert settings.enable_speaker_detection is False
        assert settings.remove_filler_words is False

    def test_invalid_settings_400(self, client):
        response = _create(client, max_chars_per_subtitle=0)
        assert response.status_code == 400

    def test_too_many_jobs_429(self, client, monkeypatch):
        monkeypatch.setattr(job_store, "max_jobs", 1)
        assert _create(client).status_code == 201
        assert _create(client).status_code == 429

    def test_start_immediately(self, client):
        response = _create(client, start=True)
        assert response.status_code == 201
        assert response.json()["status"] == "processing"


# ---------------------------------------------------------------------------
# GET /jobs, /jobs/summary, /jobs/{id}
# ---------------------------------------------------------------------------


class TestReadJobs:
    def test_list_empty(self, client):
        assert client.get("/jobs").json() == []

    def test_list_in_creation_order(self, client):
        first = _create(client, name="a.mp3").json()["id"]
        second = _create(client, name="b.mp3").json()["id"]
        assert [j["id"] for j in client.get("/jobs").json()] == [first, second]

    def test_get_job_hides_internals(self, client):
        job_id = _create(client).json()["id"]
        body = client.get("/jobs/{}".format(job_id)).json()
        assert body["id"] == job_id
        assert body["settings"]["max_chars_per_subtitle"] == SrtSettings().max_chars_per_subtitle
        assert "work_dir" not in body
        assert "run_token" not in body

    def test_get_unknown_404(self, client):
        response = client.get("/jobs/nope")
        assert response.status_code == 404
        assert "nope" in response.json()["detail"]

    def test_summary_counts(self, client):
        _create(client)
        started = _create(client, start=True).json()["id"]
        failed = _create(client).json()["id"]
        _finish(failed, status=JobStatus.ERROR, error="boom")
        body = client.get("/jobs/summary").json()
        assert body == {"idle": 1, "processing": 1, "completed": 0, "error": 1, "total": 3}
        assert job_store.get_job(started).status == JobStatus.PROCESSING


# ---------------------------------------------------------------------------
# Start / cancel / delete
# ---------------------------------------------------------------------------


class TestJobLifecycle:
    def test_start_returns_202_processing(self, client):
        job_id = _create(client).json()["id"]
        response = client.post("/jobs/{}/start".format(job_id))
        assert response.status_code == 202
        assert response.json()["status"] == "processing"
        assert response.json()["progress"] is None

    def test_start_processing_job_409(self, client):
        job_id = _create(client, start=True).json()["id"]
        assert client.post("/jobs/{}/start".format(job_id)).status_code == 409

    def test_start_completed_job_409(self, client):
        job_id = _create(client).json()["id"]
        _finish(job_id, status=JobStatus.COMPLETED, result="1")
        assert client.post("/jobs/{}/start".format(job_id)).status_code == 409

    def test_start_unknown_404(self, client):
        assert client.post("/jobs/nope/start").status_code == 404

    def test_retry_errored_job(self, client):
        job_id = _create(client).json()["id"]
        _finish(job_id, status=JobStatus.ERROR, error="boom")
        body = client.post("/jobs/{}/start".format(job_id)).json()
        assert body["status"] == "processing"
        assert body["error"] is None

    def test_cancel_returns_to_idle(self, client):
        job_id = _create(client, start=True).json()["id"]
        response = client.post("/jobs/{}/cancel".format(job_id))
        assert response.status_code == 200
        assert response.json()["status"] == "idle"

    def test_cancel_idle_job_is_noop(self, client):
        job_id = _create(client).json()["id"]
        assert client.post("/jobs/{}/cancel".format(job_id)).json()["status"] == "idle"

    def test_cancel_unknown_404(self, client):
        assert client.post("/jobs/nope/cancel").status_code == 404

    def test_delete_removes_job_and_audio(self, client):
        job_id = _create(client).json()["id"]
        work_dir = job_store.get_job(job_id).work_dir
        assert client.delete("/jobs/{}".format(job_id)).status_code == 204
        assert job_store.get_job(job_id) is None
        assert not work_dir.exists()

    def test_delete_unknown_404(self, client):
        assert client.delete("/jobs/nope").status_code == 404


# ---------------------------------------------------------------------------
# Full background runs
# ---------------------------------------------------------------------------


class TestBackgroundRun:
    def test_basic_run_completes(self, running_client, fake, valid_srt):
        job_id = _create(running_client, start=True).json()["id"]
        body = running_client.get("/jobs/{}".format(job_id)).json()
        assert body["status"] == "completed"
        assert body["result"] == valid_srt
        assert body["validation"] == {"is_valid": True, "errors": []}
        assert [s["text"] for s in body["subtitles"]] == ["Hello world", "This is a test"]
        assert body["stages"] is None
        assert fake.operations == ["stage_file", "transcribe"]

    def test_advanced_run_reports_stages(self, running_client):
        job_id = _create(running_client, enable_advanced_processing=True, start=True).json()["id"]
        body = running_client.get("/jobs/{}".format(job_id)).json()
        assert body["status"] == "completed"
        assert list(body["stages"]) == [
            "initialTranscription",
            "topicAnalysis",
            "dictionaryCreation",
            "finalTranscription",
        ]
        assert all(s["status"] == "completed" for s in body["stages"].values())
        assert body["dictionary_path"] == "/exports/lecture_dictionary.csv"

    def test_failed_run_sets_error(self, running_client, fake):
        fake.failures["transcribe"] = RuntimeError("quota exceeded")
        job_id = _create(running_client, start=True).json()["id"]
        body = running_client.get("/jobs/{}".format(job_id)).json()
        assert body["status"] == "error"
        assert "quota exceeded" in body["error"]

    def test_missing_api_key_sets_error(self):
        with patch(
            "srt_transcriber.server.app._make_service",
            side_effect=ValueError("Gemini API key not configured."),
        ):
            client = TestClient(app)
            job_id = _create(client, start=True).json()["id"]
            body = client.get("/jobs/{}".format(job_id)).json()
        assert body["status"] == "error"
        assert body["error"] == "Gemini API key not configured."

    def test_run_job_uses_given_store(self, fake):
        job_id = app_module.job_store.create_job("talk.mp3").id
        app_module.job_store.get_job(job_id).source_path.write_bytes(b"audio")
        job = app_module.job_store.begin_run(job_id)
        with patch("srt_transcriber.server.app._make_service", return_value=fake):
            app_module._run_job_sync(job, app_module.job_store)
        assert app_module.job_store.get_job(job_id).status == JobStatus.COMPLETED


# ---------------------------------------------------------------------------
# Downloads
# ---------------------------------------------------------------------------


class TestDownloads:
    def test_subtitles_download(self, client, valid_srt):
        job_id = _create(client, name="talk.wav").json()["id"]
        _finish(job_id, status=JobStatus.COMPLETED, result=valid_srt)
        response = client.get("/jobs/{}/subtitles.srt".format(job_id))
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-subrip")
        assert 'filename="talk_subtitles.srt"' in response.headers["content-disposition"]
        assert response.text == valid_srt

    def test_subtitles_without_result_409(self, client):
        job_id = _create(client).json()["id"]
        response = client.get("/jobs/{}/subtitles.srt".format(job_id))
        assert response.status_code == 409
        assert "idle" in response.json()["detail"]

    def test_dictionary_download(self, client):
        job_id = _create(client, name="talk.wav").json()["id"]
        _finish(job_id, status=JobStatus.COMPLETED, result="1", dictionary="a,b\n")
        response = client.get("/jobs/{}/dictionary.csv".format(job_id))
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert 'filename="talk_dictionary.csv"' in response.headers["content-disposition"]
        assert response.text == "a,b\n"

    def test_dictionary_missing_409(self, client):
        job_id = _create(client).json()["id"]
        assert client.get("/jobs/{}/dictionary.csv".format(job_id)).status_code == 409

    def test_download_unknown_404(self, client):
        assert client.get("/jobs/nope/subtitles.srt").status_code == 404
        assert client.get("/jobs/nope/dictionary.csv").status_code == 404


# ---------------------------------------------------------------------------
# Bulk actions
# ---------------------------------------------------------------------------


class TestBulkActions:
    def test_clear_completed(self, client):
        done = _create(client).json()["id"]
        idle = _create(client).json()["id"]
        _finish(done, status=JobStatus.COMPLETED, result="1")
        response = client.post("/jobs/clear", params={"status": "completed"})
        assert response.json() == {"affected": 1}
        assert job_store.get_job(done) is None
        assert job_store.get_job(idle) is not None

    def test_clear_errors(self, client):
        failed = _create(client).json()["id"]
        _finish(failed, status=JobStatus.ERROR, error="x")
        assert client.post("/jobs/clear", params={"status": "error"}).json() == {"affected": 1}

    @pytest.mark.parametrize("status", ["idle", "processing", "bogus"])
    def test_clear_rejects_other_statuses(self, client, status):
        assert client.post("/jobs/clear", params={"status": status}).status_code == 400

    def test_retry_errors_resets_to_idle(self, client):
        failed = _create(client).json()["id"]
        _finish(failed, status=JobStatus.ERROR, error="x")
        assert client.post("/jobs/retry-errors").json() == {"affected": 1}
        job = job_store.get_job(failed)
        assert job.status == JobStatus.IDLE
        assert job.error is None

    def test_apply_settings_skips_processing(self, client):
        idle = _create(client).json()["id"]
        running = _create(client, start=True).json()["id"]
        payload = {
            "max_chars_per_subtitle": 12,
            "enable_speaker_detection": False,
            "remove_filler_words": True,
            "enable_advanced_processing": True,
            "custom_dictionary_path": None,
        }
        assert client.put("/jobs/settings", json=payload).json() == {"affected": 1}
        assert job_store.get_job(idle).settings.max_chars_per_subtitle == 12
        assert job_store.get_job(running).settings == SrtSettings()


# ---------------------------------------------------------------------------
# Default settings and health
# ---------------------------------------------------------------------------


class TestDefaultSettings:
    def test_get_builtin_defaults(self, client):
        body = client.get("/settings/defaults").json()
        assert body["max_chars_per_subtitle"] == SrtSettings().max_chars_per_subtitle
        assert body["enable_advanced_processing"] is False

    def test_save_and_reset(self, client):
        payload = {
            "max_chars_per_subtitle": 28,
            "enable_speaker_detection": True,
            "remove_filler_words": False,
            "enable_advanced_processing": True,
            "custom_dictionary_path": "terms.csv",
        }
        saved = dict(
            payload,
            custom_dictionary_path=str((config.DICTIONARY_DIR / "terms.csv").resolve()),
        )
        assert client.put("/settings/defaults", json=payload).json() == saved
        assert client.get("/settings/defaults").json() == saved
        assert settings_storage.path.exists()

        reset = client.delete("/settings/defaults").json()
        assert reset["max_chars_per_subtitle"] == SrtSettings().max_chars_per_subtitle
        assert not settings_storage.path.exists()

    def test_rejects_non_positive_max_chars(self, client):
        response = client.put("/settings/defaults", json={"max_chars_per_subtitle": 0})
        assert response.status_code == 422


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok", "version": "0.1.0"}

    def test_openapi_lists_routes(self, client):
        paths = client.get("/openapi.json").json()["paths"]
        assert "/jobs/{job_id}/subtitles.srt" in paths
        assert "/settings/defaults" in paths


# ---------------------------------------------------------------------------
# Custom dictionary paths
# ---------------------------------------------------------------------------


def _settings_payload(path):
    return {
        "max_chars_per_subtitle": 20,
        "enable_speaker_detection": True,
        "remove_filler_words": True,
        "enable_advanced_processing": True,
        "custom_dictionary_path": path,
    }


class TestDictionaryPaths:
    @pytest.mark.parametrize("path", ["/etc/passwd", "../secret.txt", "a/../../secret.txt"])
    def test_upload_rejects_path_outside_dictionary_dir(self, client, path):
        response = _create(client, enable_advanced_processing=True, custom_dictionary_path=path)
        assert response.status_code == 400
        assert "dictionar" in response.json()["detail"]
        assert job_store.list_jobs() == []

    @pytest.mark.parametrize("path", ["/etc/passwd", "../secret.txt"])
    def test_apply_settings_rejects_path_outside_dictionary_dir(self, client, path):
        job_id = _create(client).json()["id"]
        response = client.put("/jobs/settings", json=_settings_payload(path))
        assert response.status_code == 400
        assert job_store.get_job(job_id).settings == SrtSettings()

    @pytest.mark.parametrize("path", ["/etc/passwd", "../secret.txt"])
    def test_default_settings_reject_path_outside_dictionary_dir(self, client, path):
        response = client.put("/settings/defaults", json=_settings_payload(path))
        assert response.status_code == 400
        assert not settings_storage.path.exists()

    def test_relative_name_is_resolved_inside_dictionary_dir(self, client):
        job_id = _create(
            client, enable_advanced_processing=True, custom_dictionary_path="terms.csv"
        ).json()["id"]
        stored = job_store.get_job(job_id).settings.custom_dictionary_path
        assert stored == str((config.DICTIONARY_DIR / "terms.csv").resolve())

    def test_absolute_path_inside_dictionary_dir_is_accepted(self, client):
        inside = str((config.DICTIONARY_DIR / "sub" / "terms.csv").resolve())
        response = client.put("/jobs/settings", json=_settings_payload(inside))
        assert response.status_code == 200

    def test_custom_dictionary_is_downloadable_after_run(self, running_client, fake):
        config.DICTIONARY_DIR.mkdir(parents=True)
        (config.DICTIONARY_DIR / "terms.csv").write_text("qubit,q\n", encoding="utf-8")

        job_id = _create(
            running_client,
            enable_advanced_processing=True,
            custom_dictionary_path="terms.csv",
            start=True,
        ).json()["id"]

        assert running_client.get("/jobs/{}".format(job_id)).json()["status"] == "completed"
        response = running_client.get("/jobs/{}/dictionary.csv".format(job_id))
        assert response.status_code == 200
        assert response.text == "qubit,q\n"
        assert "create_dictionary" not in fake.operations
