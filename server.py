#!/usr/bin/env python3
"""dappsmith - HTTP API for planning, building and publishing dApps."""

import os
import threading
import time
import uuid

import structlog
from flask import Flask, Response, jsonify, request

from agents.fixer import Fixer
from agents.frontend import FrontendAgent
from agents.generator import GeneratorAgent
from agents.modifier import ModifierAgent
from agents.planner import PlannerAgent
from agents.publisher import GitHubPublisher, VercelPublisher, generate_project_name, generate_repo_name
from agents.security import SecurityAnalyzer, check_size, estimate_gas
from config.defaults import DEFAULTS
from core.assembler import assemble_project
from core.codec import (
    build_request_from_wire,
    code_from_wire,
    compile_result_from_wire,
    files_from_wire,
    pages_from_wire,
    plan_from_wire,
    sources_from_wire,
    to_wire,
    warnings_from_wire,
)
from core.events import stream_build
from core.orchestrator import BuildPipeline
from utils.logging_setup import configure_logging
from utils.naming import project_name

logger = structlog.get_logger(__name__)

app = Flask(__name__)
pipeline = BuildPipeline()
planner = PlannerAgent()
generator = GeneratorAgent()
fixer = Fixer()
frontend = FrontendAgent()
modifier = ModifierAgent()
security = SecurityAnalyzer()
github = GitHubPublisher()
vercel = VercelPublisher()

# Background builds keyed by job_id: {id: {"state": {...}, "created": timestamp}}
_jobs = {}
_jobs_lock = threading.Lock()
_MAX_JOBS = 50  # prevent unbounded memory growth
_JOB_TTL = 3600  # expire jobs after 1 hour

_BUILD_DEFAULTS = {
    "max_iterations": DEFAULTS["max_iterations"],
    "timeout_ms": DEFAULTS["build_timeout_ms"],
}


def _cleanup_jobs():
    """Remove expired jobs. Called under _jobs_lock."""
    now = time.time()
    expired = [jid for jid, job in _jobs.items() if now - job["created"] > _JOB_TTL]
    for jid in expired:
        del _jobs[jid]
    # If still over limit, remove oldest
    if len(_jobs) > _MAX_JOBS:
        by_age = sorted(_jobs.items(), key=lambda x: x[1]["created"])
        for jid, _ in by_age[:len(_jobs) - _MAX_JOBS]:
            del _jobs[jid]


def _store_job(state):
    """Store a job and return its ID."""
    job_id = str(uuid.uuid4())[:8]
    with _jobs_lock:
        _cleanup_jobs()
        _jobs[job_id] = {"state": state, "created": time.time()}
    return job_id


def _get_job_state(job_id):
    """Get a snapshot of a job's state, or None if not found/expired."""
    with _jobs_lock:
        job = _jobs.get(job_id)
        if not job:
            return None
        if time.time() - job["created"] > _JOB_TTL:
            _jobs.pop(job_id, None)
            return None
        return dict(job["state"], logs=list(job["state"]["logs"]))


def _update_job(job_id, **changes):
    with _jobs_lock:
        job = _jobs.get(job_id)
        if job:
            job["state"].update(changes)


def _run_job(job_id, build_request):
    """Worker thread body for /api/builds."""
    logs = []

    def on_progress(status, message, iteration):
        logs.append(message)
        _update_job(job_id, status=status, iteration=iteration, logs=list(logs))

    result = pipeline.build(build_request, on_progress)
    _update_job(job_id, status="done" if result.success else "failed", result=to_wire(result))


def _body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _error(message, status):
    return jsonify({"error": message}), status


# ---------------------------------------------------------------------------
# Health and planning
# ---------------------------------------------------------------------------

@app.route("/health")
def health():
    return jsonify({"status": "ok"})


@app.route("/api/analyze", methods=["POST"])
def api_analyze():
    data = _body()
    prompt = (data.get("prompt") or "").strip()
    if not prompt:
        return _error("Prompt is required", 400)

    try:
        result = planner.analyze(prompt, data.get("answers"), bool(data.get("isFollowUp")))
    except Exception as e:
        logger.exception("analyze_failed")
        return _error(str(e) or "Analysis failed", 500)
    return jsonify(to_wire(result))


# ---------------------------------------------------------------------------
# Build pipeline
# ---------------------------------------------------------------------------

@app.route("/api/build", methods=["POST"])
def api_build():
    """Run a build and stream progress as Server-Sent Events."""
    try:
        build_request = build_request_from_wire(_body(), _BUILD_DEFAULTS)
    except (ValueError, TypeError) as e:
        return _error(str(e), 400)

    return Response(
        stream_build(pipeline, build_request),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.route("/api/builds", methods=["POST"])
def api_builds():
    """Start a build in the background; poll /api/status/<job_id>."""
    try:
        build_request = build_request_from_wire(_body(), _BUILD_DEFAULTS)
    except (ValueError, TypeError) as e:
        return _error(str(e), 400)

    job_id = _store_job({"status": "queued", "iteration": 0, "logs": [], "result": None})
    threading.Thread(target=_run_job, args=(job_id, build_request), daemon=True).start()
    logger.info("build_job_started", job_id=job_id, contract=build_request.plan.contract_name)
    return jsonify({"jobId": job_id}), 202


@app.route("/api/status/<job_id>")
def api_status(job_id):
    """Check pipeline status for a background job."""
    state = _get_job_state(job_id)
    if not state:
        return _error("Job not found", 404)
    state["jobId"] = job_id
    return jsonify(state)


# ---------------------------------------------------------------------------
# Individual stages
# ---------------------------------------------------------------------------

@app.route("/api/compile", methods=["POST"])
def api_compile():
    try:
        contracts = sources_from_wire(_body().get("contracts"))
    except (ValueError, TypeError, AttributeError) as e:
        return _error(str(e), 400)
    if not contracts:
        return _error("No contracts provided", 400)

    try:
        result = pipeline.compiler.compile(contracts)
    except Exception as e:
        logger.exception("compile_failed")
        return jsonify({"success": False, "errors": [str(e) or "Compilation failed"]}), 500
    return jsonify(to_wire(result))


@app.route("/api/check", methods=["POST"])
def api_check():
    data = _body()
    try:
        contracts = sources_from_wire(data.get("contracts"))
        compilation = compile_result_from_wire(data.get("compilationResult"))
    except (ValueError, TypeError, AttributeError) as e:
        return _error(str(e), 400)
    if not contracts:
        return _error("No contracts provided", 400)

    bytecode = compilation.bytecode or ""
    if bytecode:
        gas = to_wire(estimate_gas(bytecode))
    else:
        gas = {"estimated": "N/A", "costEth": "N/A", "costUsd": "N/A"}

    return jsonify({
        "compilation": {
            "success": compilation.success,
            "errors": compilation.errors,
            "warnings": compilation.warnings,
        },
        "security": {"warnings": to_wire(security.scan(contracts))},
        "gas": gas,
        "size": to_wire(check_size(bytecode)),
    })


@app.route("/api/run-tests", methods=["POST"])
def api_run_tests():
    data = _body()
    try:
        contracts = sources_from_wire(data.get("contracts"))
        tests = sources_from_wire(data.get("tests"))
    except (ValueError, TypeError, AttributeError) as e:
        return _error(str(e), 400)
    if not contracts or not tests:
        return _error("Contracts and tests are required", 400)

    try:
        result = pipeline.tester.run(contracts, tests)
    except Exception as e:
        logger.exception("run_tests_failed")
        return _error(str(e) or "Test run failed", 500)
    return jsonify(to_wire(result))


@app.route("/api/fix", methods=["POST"])
def api_fix():
    """One repair call. Compile errors, security warnings or test output select the fixer."""
    data = _body()
    try:
        contracts = sources_from_wire(data.get("contracts"))
        warnings = warnings_from_wire(data.get("warnings"))
        tests = sources_from_wire(data.get("tests"))
    except (ValueError, TypeError, AttributeError) as e:
        return _error(str(e), 400)
    errors = data.get("errors") or []
    test_output = data.get("testOutput") or ""
    if not contracts or not (errors or warnings or test_output):
        return _error("Contracts and errors are required", 400)

    try:
        if errors:
            return jsonify({"success": True, "contracts": to_wire(fixer.fix_compilation(contracts, errors))})
        if warnings:
            return jsonify({"success": True, "contracts": to_wire(fixer.fix_security(contracts, warnings))})
        fixed_contracts, fixed_tests = fixer.fix_test_failures(contracts, tests, test_output)
        return jsonify({"success": True, "contracts": to_wire(fixed_contracts), "tests": to_wire(fixed_tests)})
    except Exception as e:
        logger.exception("fix_failed")
        return _error(str(e) or "Fix failed", 500)


@app.route("/api/generate-tests", methods=["POST"])
def api_generate_tests():
    try:
        contracts = sources_from_wire(_body().get("contracts"))
    except (ValueError, TypeError, AttributeError) as e:
        return _error(str(e), 400)
    if not contracts:
        return jsonify({"success": False, "error": "No contracts provided"}), 400

    try:
        tests = generator.generate_tests(contracts)
    except Exception as e:
        logger.exception("generate_tests_failed")
        return jsonify({"success": False, "error": str(e) or "Test generation failed"}), 500
    return jsonify({"success": True, "tests": to_wire(tests)})


@app.route("/api/generate-frontend", methods=["POST"])
def api_generate_frontend():
    data = _body()
    if not data.get("contracts") or not data.get("plan"):
        return _error("Contracts and plan are required", 400)
    try:
        contracts = sources_from_wire(data["contracts"])
        plan = plan_from_wire(data["plan"])
    except (ValueError, TypeError, AttributeError) as e:
        return _error(str(e), 400)

    try:
        pages = frontend.generate(contracts, plan, data.get("prompt") or "")
    except Exception as e:
        logger.exception("generate_frontend_failed")
        return jsonify({"success": False, "error": str(e) or "Frontend generation failed"}), 500
    return jsonify({"success": True, "pages": to_wire(pages)})


@app.route("/api/modify", methods=["POST"])
def api_modify():
    data = _body()
    try:
        contracts = sources_from_wire(data.get("contracts"))
        pages = pages_from_wire(data.get("pages"))
        result = modifier.modify(data.get("prompt") or "", contracts, pages)
    except ValueError as e:
        return jsonify({"status": "error", "error": str(e)}), 400
    except Exception as e:
        logger.exception("modify_failed")
        return jsonify({"status": "error", "error": str(e) or "Modification failed"}), 500

    if result.contracts is None and result.pages is None:
        return jsonify({
            "status": "error",
            "error": "Could not apply modifications. Please try rephrasing your request.",
        })
    fixed = {k: v for k, v in to_wire(result).items() if v is not None}
    return jsonify({"status": "success", "fixedCode": fixed})


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------

def _access_token(data):
    token = data.get("accessToken")
    if token:
        return token
    header = request.headers.get("Authorization", "")
    return header[len("Bearer "):] if header.startswith("Bearer ") else ""


@app.route("/api/github", methods=["POST"])
def api_github():
    """Create a repo from generated code, or push files to an existing repo (repoUrl)."""
    data = _body()
    token = _access_token(data)
    if not token:
        return _error("GitHub access token is required", 401)

    try:
        if data.get("files"):
            files = files_from_wire(data["files"])
        else:
            code = code_from_wire(data.get("code") or data)
            if not code.contracts:
                return _error("No contracts provided", 400)
            plan = plan_from_wire(data["plan"]) if data.get("plan") else None
            name = project_name(plan, data.get("prompt") or "") if plan else "dapp"
            files = assemble_project(code, name, plan)
    except (ValueError, TypeError, AttributeError) as e:
        return _error(str(e), 400)

    if data.get("repoUrl"):
        result = github.update_repo_files(token, data["repoUrl"], files,
                                          data.get("commitMessage") or "Update from AI dApp Builder")
    else:
        repo_name = data.get("repoName") or generate_repo_name(
            (data.get("plan") or {}).get("contractName") or "project"
        )
        result = github.create_repo_and_push(token, repo_name, data.get("description") or "", files)

    return jsonify(to_wire(result)), 200 if result.success else 502


@app.route("/api/vercel", methods=["POST"])
def api_vercel():
    data = _body()
    token = _access_token(data)
    if not token:
        return _error("Vercel access token is required", 401)
    repo_url = data.get("repoUrl")
    if not repo_url:
        return _error("repoUrl is required", 400)

    name = generate_project_name(data.get("projectName") or repo_url.rstrip("/").rsplit("/", 1)[-1])
    result = vercel.deploy(token, repo_url, name)
    return jsonify(to_wire(result)), 200 if result.success else 502


if __name__ == "__main__":
    configure_logging(DEFAULTS["log_level"])
    port = int(os.environ.get("PORT", 5001))
    logger.info("server_starting", url=f"http://localhost:{port}")
    app.run(debug=False, port=port, threaded=True)
