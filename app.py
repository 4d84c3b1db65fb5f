import logging
import os
import sys
from flask import Flask, jsonify, request
from flask_socketio import SocketIO
from flask_wtf.csrf import CSRFProtect
from dotenv import load_dotenv

from utils.db_conn import DatabaseConnection, init_database_with_app
from utils.live import initialize_live, register_socketio_handlers

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

load_dotenv()

# Create Flask app
app = Flask(__name__)
app.secret_key = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")

# Initialize database (DATABASE_URL or ENVIRONMENT-selected MySQL)
db_connection = DatabaseConnection(app)

# Initialize CSRF protection
csrf = CSRFProtect(app)

# Initialize SocketIO
socketio = SocketIO(app, cors_allowed_origins="*")

# Initialize live helpers and register Socket.IO handlers
initialize_live(socketio, logger)
register_socketio_handlers(socketio)


# API: GET "/welcome"
# Used by: Health-check or quick connectivity tests
@app.route("/welcome", methods=["GET"])
def welcome():
    logger.info(f"Request received: {request.method} {request.path}")
    return jsonify({"message": "Welcome to the E-Class Record API!"})


from blueprints.class_record_routes import class_record_bp
from blueprints.term_grades_routes import term_grades_bp

# JSON APIs are called by the class-record editor with the session cookie
csrf.exempt(class_record_bp)
csrf.exempt(term_grades_bp)

app.register_blueprint(class_record_bp)
app.register_blueprint(term_grades_bp)


if __name__ == "__main__":
    logger.info("Application startup initiated")
    if not init_database_with_app(app):
        logger.error("Startup checks failed. Aborting launch.")
        sys.exit(1)

    # Only start the reloader in development
    use_reloader = os.environ.get("WERKZEUG_RUN_MAIN") != "true"

    socketio.run(
        app, host="127.0.0.1", port=5000, debug=True, use_reloader=use_reloader
    )
