# timetable_sync/api_routes.py

import logging
from datetime import datetime
from flask import Blueprint, current_app, jsonify, request

from .services.clients import time_service
from .services.clients.upstream_client import fetch_upstream
from .services.core.fallback import get_status_message, is_permanent_failure
from .services.core.runtime import get_runtime
from .services.core.timetable_service import get_current_or_next_lesson
from .services.parsers.common_structs import TimetableResult


bp = Blueprint('api', __name__, url_prefix='/api')
log = logging.getLogger(__name__)


def _proxy(url: str, name: str):
    upstream = fetch_upstream(url)
    if not upstream.ok:
        log.warning(f"API: {name} недоступен ({upstream.status}): {upstream.error}")
        return jsonify({"error": upstream.error}), upstream.status

    log.info(f"API: {name} успешно отправлен.")
    return jsonify(upstream.body)


def _runtime():
    return get_runtime(current_app)


def _load_normalized() -> TimetableResult:
    force_refresh = request.args.get('refresh', '').lower() in ('1', 'true', 'yes')
    runtime = _runtime()
    return runtime.run(runtime.timetable.get_timetable(force_refresh=force_refresh))


@bp.route('/timetable')
def get_timetable():
    """Прокси к источнику расписания. Статус источника передается как есть."""
    return _proxy(current_app.config['TIMETABLE_UPSTREAM_URL'], "timetable")


@bp.route('/substitute-plan')
def get_substitute_plan():
    """Прокси к ленте замен."""
    return _proxy(current_app.config['SUBSTITUTION_UPSTREAM_URL'], "substitute-plan")


@bp.route('/timetable/normalized')
def get_normalized_timetable():
    """Расписание в каноническом виде с заменами. При сбое источника - демо-данные с причиной."""
    result = _load_normalized()
    payload = result.to_dict()
    payload["statusMessage"] = get_status_message(result)
    payload["isPermanentFailure"] = is_permanent_failure(result)
    return jsonify(payload)


@bp.route('/timetable/current')
def get_current_lesson():
    """Текущий или ближайший урок по сетевому времени."""
    result = _load_normalized()
    time_info = time_service.get_current_day_and_time()
    now = datetime.combine(datetime.fromisoformat(time_info.date_str_iso).date(), time_info.time_obj)

    lookup = get_current_or_next_lesson(result.week, now)
    return jsonify({
        "lesson": lookup.lesson.to_dict() if lookup.lesson else None,
        "dayName": lookup.day_key,
        "isCurrentLesson": lookup.is_current,
        "isFallback": result.is_fallback,
    })


@bp.route('/status')
def get_status():
    time_info = time_service.get_current_day_and_time()
    return jsonify({
        "day": time_info.day_key,
        "date": time_info.date_str_iso,
        "time": time_info.time_obj.strftime('%H:%M:%S'),
        "timeSource": time_info.source,
        "remoteSyncEnabled": bool(current_app.config.get('REMOTE_SYNC_ENABLED')),
    })


# --- Предметы и оценки ---

@bp.route('/subjects', methods=['GET'])
def list_subjects():
    runtime = _runtime()
    subjects = runtime.run(runtime.subjects.get_subjects())
    return jsonify([s.to_dict() for s in subjects])


@bp.route('/subjects', methods=['POST'])
def create_subject():
    data = request.get_json(silent=True) or {}
    runtime = _runtime()
    try:
        subject = runtime.run(runtime.subjects.add_subject(data.get('name')))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(subject.to_dict()), 201


@bp.route('/subjects/<subject_id>', methods=['DELETE'])
def delete_subject(subject_id):
    runtime = _runtime()
    if not runtime.run(runtime.subjects.delete_subject(subject_id)):
        return jsonify({"error": "Subject not found"}), 404
    return '', 204


@bp.route('/subjects/<subject_id>/grades', methods=['POST'])
def create_grade(subject_id):
    data = request.get_json(silent=True) or {}
    runtime = _runtime()
    grade = runtime.run(runtime.subjects.add_grade(
        subject_id,
        data.get('value'),
        grade_type=data.get('type') or '',
        grade_date=data.get('date'),
        weight=data.get('weight', 1.0),
    ))
    if grade is None:
        return jsonify({"error": "Subject not found"}), 404
    return jsonify(grade.to_dict()), 201


@bp.route('/subjects/<subject_id>/grades/<grade_id>', methods=['DELETE'])
def delete_grade(subject_id, grade_id):
    runtime = _runtime()
    if not runtime.run(runtime.subjects.delete_grade(subject_id, grade_id)):
        return jsonify({"error": "Grade not found"}), 404
    return '', 204
