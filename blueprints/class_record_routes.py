import logging

from flask import Blueprint, jsonify, request

from utils.auth_utils import login_required
from utils.grading_service import (
    CourseNotFound,
    GradingError,
    get_assessment_scores,
    get_term_configs,
    save_assessment_score,
    save_assessment_scores_bulk,
    save_term_configs,
)
from utils.live import emit_grades_updated
from utils.term_config import InvalidTermConfig

logger = logging.getLogger(__name__)


class_record_bp = Blueprint("class_record", __name__)


def _error_response(e: Exception):
    if isinstance(e, CourseNotFound):
        return jsonify({"error": str(e)}), 404
    return jsonify({"error": str(e)}), 400


# GET /api/courses/<slug>/term-configs: configs keyed by term
@class_record_bp.route(
    "/api/courses/<course_slug>/term-configs", methods=["GET"], endpoint="get_term_configs"
)
@login_required
def api_get_term_configs(course_slug):
    try:
        return jsonify(get_term_configs(course_slug)), 200
    except GradingError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Failed to fetch term configs for {course_slug}: {str(e)}")
        return jsonify({"error": "Failed to fetch term configurations"}), 500


# POST /api/courses/<slug>/term-configs: body {"termConfigs": {term: {...}}}
@class_record_bp.route(
    "/api/courses/<course_slug>/term-configs", methods=["POST"], endpoint="save_term_configs"
)
@login_required
def api_save_term_configs(course_slug):
    data = request.get_json(silent=True) or {}
    try:
        result = save_term_configs(course_slug, data.get("termConfigs"))
        return jsonify(result), 200
    except GradingError as e:
        return _error_response(e)
    except (InvalidTermConfig, ValueError, TypeError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        logger.error(f"Failed to save term configs for {course_slug}: {str(e)}")
        return (
            jsonify({"error": "Failed to save configurations", "details": str(e)}),
            500,
        )


# GET /api/courses/<slug>/assessment-scores: {"student:assessment": {...}}
@class_record_bp.route(
    "/api/courses/<course_slug>/assessment-scores",
    methods=["GET"],
    endpoint="get_assessment_scores",
)
@login_required
def api_get_assessment_scores(course_slug):
    try:
        return jsonify(get_assessment_scores(course_slug)), 200
    except GradingError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Failed to fetch scores for {course_slug}: {str(e)}")
        return jsonify({"error": "Failed to fetch scores"}), 500


# PUT /api/courses/<slug>/assessment-scores: one {studentId, assessmentId, score}
@class_record_bp.route(
    "/api/courses/<course_slug>/assessment-scores",
    methods=["PUT"],
    endpoint="save_assessment_score",
)
@login_required
def api_save_assessment_score(course_slug):
    data = request.get_json(silent=True) or {}
    try:
        result = save_assessment_score(course_slug, data)
    except GradingError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Failed to save score for {course_slug}: {str(e)}")
        return jsonify({"error": "Failed to save score"}), 500
    emit_grades_updated(course_slug, 1)
    return jsonify(result), 200


# POST /api/courses/<slug>/assessment-scores/bulk: {"scores": [...]}
@class_record_bp.route(
    "/api/courses/<course_slug>/assessment-scores/bulk",
    methods=["POST"],
    endpoint="save_assessment_scores_bulk",
)
@login_required
def api_save_assessment_scores_bulk(course_slug):
    data = request.get_json(silent=True) or {}
    scores = data.get("scores")
    if not isinstance(scores, list):
        return jsonify({"error": "scores must be an array"}), 400
    try:
        result = save_assessment_scores_bulk(course_slug, scores)
    except GradingError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Error saving bulk assessment scores for {course_slug}: {str(e)}")
        return jsonify({"error": "Failed to save scores"}), 500
    emit_grades_updated(course_slug, len(scores))
    return jsonify(result), 200
