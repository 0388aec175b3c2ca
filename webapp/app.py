from __future__ import annotations

import os
from pathlib import Path

from flask import Flask, jsonify, request, send_from_directory

from frameset.frames import parse_template
from frameset.jobs import cancel_job, cleanup_expired_jobs, get_job, start_frame_job
from frameset.logging_setup import init_logging
from frameset.metadata import read_metadata
from frameset.params import DEFAULT_METADATA_NAME, DEFAULT_OUTPUT_DIR, FrameParams, parse_relative_dir

app = Flask(__name__)
# Renderer builds are looked up under this directory only; requests cannot move it.
app.config["FRAMESET_ROOT"] = os.environ.get("HGB_FRAMESET_ROOT", ".")


def _frame_dir() -> Path:
    output_dir = parse_relative_dir(request.args.get("output_dir", DEFAULT_OUTPUT_DIR), name="output_dir")
    return Path(app.config["FRAMESET_ROOT"]) / output_dir


@app.post("/api/frames/start")
def api_frames_start():
    cleanup_expired_jobs()
    payload = request.get_json(silent=True) or {}
    template = payload.get("template")
    if template is not None and not isinstance(template, (list, str)):
        return jsonify({"error": "template must be a list or a string"}), 400

    try:
        params = FrameParams.from_payload(payload, root=app.config["FRAMESET_ROOT"])
        job_id = start_frame_job(params, parse_template(template))
    except Exception as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify({"job_id": job_id, "frame_count": params.frame_count})


@app.get("/api/frames/jobs/<job_id>")
def api_frames_job_status(job_id: str):
    cleanup_expired_jobs()
    try:
        status = get_job(job_id)
    except Exception as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify(status)


@app.post("/api/frames/jobs/<job_id>/cancel")
def api_frames_job_cancel(job_id: str):
    try:
        payload = cancel_job(job_id)
    except Exception as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify(payload)


@app.get("/api/frames/metadata")
def api_frames_metadata():
    try:
        payload = read_metadata(_frame_dir() / DEFAULT_METADATA_NAME)
    except Exception as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify(payload)


@app.get("/frames/<int:slot>.png")
def frame_image(slot: int):
    try:
        directory = _frame_dir()
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    return send_from_directory(directory.absolute(), f"{slot}.png", mimetype="image/png")


if __name__ == "__main__":
    init_logging()
    app.run(host="127.0.0.1", port=5000, debug=True, threaded=False)
