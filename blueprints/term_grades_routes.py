import logging

from flask import Blueprint, jsonify

from utils.auth_utils import login_required
from utils.grading_service import (
    CourseNotFound,
    compute_final_grades,
    compute_term_grades,
)
from utils.term_config import InvalidTermConfig

logger = logging.getLogger(__name__)


term_grades_bp = Blueprint("term_grades", __name__)


# GET /api/courses/<slug>/term-grades/<term>: derived grades per student for one term
@term_grades_bp.route(
    "/api/courses/<course_slug>/term-grades/<term>",
    methods=["GET"],
    endpoint="get_term_grades",
)
@login_required
def api_get_term_grades(course_slug, term):
    try:
        return jsonify(compute_term_grades(course_slug, term)), 200
    except CourseNotFound as e:
        return jsonify({"error": str(e)}), 404
    except InvalidTermConfig as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        logger.error(f"Error computing {term} grades for {course_slug}: {str(e)}")
        return jsonify({"error": "Failed to fetch term grades"}), 500


# GET /api/courses/<slug>/final-grades: weighted final grade and remarks per student
@term_grades_bp.route(
    "/api/courses/<course_slug>/final-grades",
    methods=["GET"],
    endpoint="get_final_grades",
)
@login_required
def api_get_final_grades(course_slug):
    try:
        return jsonify(compute_final_grades(course_slug)), 200
    except CourseNotFound as e:
        return jsonify({"error": str(e)}), 404
    except Exception as e:
        logger.error(f"Error computing final grades for {course_slug}: {str(e)}")
        return jsonify({"error": "Failed to fetch final grades"}), 500
