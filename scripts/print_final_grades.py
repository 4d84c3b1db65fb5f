"""Print the final grade of every student in a course using the app's DB config.
Run from the repo root:

    python scripts/print_final_grades.py <course_slug>

This uses the same DB configuration as the app (DATABASE_URL or ENVIRONMENT + *_DB_* vars).
"""

import sys
import traceback

# Ensure we can import the app and utils from the repo root
sys.path.insert(0, ".")

if len(sys.argv) != 2:
    print("Usage: python scripts/print_final_grades.py <course_slug>")
    sys.exit(1)

course_slug = sys.argv[1]

try:
    from app import app
    from utils.grading_service import CourseNotFound, compute_final_grades
except Exception:
    print("Failed to import the app. Make sure you're running from the repo root.")
    traceback.print_exc()
    sys.exit(1)

try:
    with app.app_context():
        data = compute_final_grades(course_slug)
except CourseNotFound as e:
    print(str(e))
    sys.exit(2)
except Exception:
    print("Database query failed:")
    traceback.print_exc()
    sys.exit(2)

rows = data.get("students", [])
if not rows:
    print("No students found for this course.")
else:
    print(f"{'Student':<35} {' '.join(f'{t:>9}' for t in data['terms'])} {'Final':>6}  Remarks")
    for r in rows:
        fg = r["finalGrade"]
        terms = " ".join(f"{fg['terms'].get(t, '-'):>9}" for t in data["terms"])
        print(f"{r['name']:<35} {terms} {fg['grade']:>6}  {fg['remarks'] or '-'}")

print("\nDone.")
