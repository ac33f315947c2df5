"""
MediVision Verifier – Flask Application Factory
Serves the medication verification REST API.
"""

from typing import Optional

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from medivision.config import Config
from medivision.routes.verification import verification_bp
from medivision.services.background_scheduler import init_scheduler
from medivision.services.medication_verifier import MedicationVerifier, build_verifier

limiter = Limiter(key_func=get_remote_address, default_limits=[Config.RATE_LIMIT_DEFAULT])


def create_app(verifier: Optional[MedicationVerifier] = None) -> Flask:
    Config.validate()

    app = Flask(__name__)
    app.config["DEBUG"] = Config.APP_ENV == "development"

    # Extensions
    CORS(app, resources={r"/api/*": {"origins": "*"}})
    limiter.init_app(app)

    verifier = verifier or build_verifier()
    app.extensions["medication_verifier"] = verifier

    # Blueprints
    app.register_blueprint(verification_bp, url_prefix="/api/verification")

    # Health check
    @app.route("/api/health")
    @limiter.exempt
    def health():
        return {"status": "ok", "service": "medivision"}

    init_scheduler(app, verifier.cache)

    return app
