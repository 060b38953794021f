"""
Scheduler Blueprint — list, inspect, trigger and toggle background jobs (admin only).
"""

from flask import Blueprint, jsonify, request

from taskboard.blueprints import current_actor, register_error_handlers
from taskboard.services import policy
from taskboard.services.scheduler_service import SchedulerService, get_registered_jobs
from taskboard.utils.errors import E, api_error, required

scheduler_bp = Blueprint("scheduler", __name__, url_prefix="/api/v1/scheduler")
register_error_handlers(scheduler_bp)


def _require_admin():
    policy.require(current_actor(), policy.SCHEDULER_MANAGE)


@scheduler_bp.route("/jobs", methods=["GET"])
def list_jobs():
    _require_admin()
    SchedulerService.ensure_jobs_registered()
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)}), 200


@scheduler_bp.route("/jobs/<job_name>", methods=["GET"])
def get_job(job_name):
    _require_admin()
    job = SchedulerService.get_job_status(job_name)
    if not job:
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify(job), 200


@scheduler_bp.route("/jobs/<job_name>/trigger", methods=["POST"])
def trigger_job(job_name):
    _require_admin()
    if job_name not in get_registered_jobs():
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    SchedulerService.ensure_jobs_registered()
    return jsonify(SchedulerService.run_job(job_name)), 200


@scheduler_bp.route("/jobs/<job_name>/toggle", methods=["PATCH"])
def toggle_job(job_name):
    _require_admin()
    data = request.get_json(silent=True) or {}
    if data.get("enabled") is None:
        return required("enabled")
    SchedulerService.ensure_jobs_registered()
    result = SchedulerService.toggle_job(job_name, bool(data["enabled"]))
    if not result:
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify(result), 200
