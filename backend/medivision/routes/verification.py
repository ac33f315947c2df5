"""
Medication verification routes.
Accepts transcribed medication lines (as produced by the vision extraction
step) and returns them with RxNorm verification verdicts attached.

This is a REVIEW AID: every verdict still requires clinician sign-off.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from medivision.models.models import Medicine

logger = logging.getLogger("medivision.api")

verification_bp = Blueprint("verification", __name__)

MAX_BATCH_SIZE = 50


def _verifier():
    return current_app.extensions["medication_verifier"]


def _parse_medicine(raw) -> Medicine | None:
    if not isinstance(raw, dict):
        return None
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        return None
    return Medicine.from_dict(raw)


@verification_bp.route("/verify", methods=["POST"])
def verify():
    """
    Verify a single medication line.

    Body: {
        "medicine": {"name": "Amoxicillin", "dosage": "500mg", "coordinates": [ymin, xmin, ymax, xmax]},
        "image_base64": "<optional prescription photo>"
    }
    """
    data = request.get_json(force=True, silent=True) or {}
    med = _parse_medicine(data.get("medicine"))
    if med is None:
        return jsonify({"error": "Provide a medicine with a non-empty text name."}), 400

    result = _verifier().verify(med, data.get("image_base64"))
    return jsonify({"medicine": med.with_verification(result).to_dict()}), 200


@verification_bp.route("/batch", methods=["POST"])
def verify_batch():
    """
    Verify every medication line of one prescription.
    Body: {"medications": [{...}, ...], "image_base64": "<optional>"}
    """
    data = request.get_json(force=True, silent=True) or {}
    raw_meds = data.get("medications")
    if not isinstance(raw_meds, list) or not raw_meds:
        return jsonify({"error": "Provide a non-empty list of medications."}), 400
    if len(raw_meds) > MAX_BATCH_SIZE:
        return jsonify({"error": f"Too many medications (max {MAX_BATCH_SIZE})."}), 400

    meds = [_parse_medicine(m) for m in raw_meds]
    if any(m is None for m in meds):
        return jsonify({"error": "Every medication needs a non-empty text name."}), 400

    verified = _verifier().verify_batch(meds, data.get("image_base64"))
    return jsonify({"medications": [m.to_dict() for m in verified]}), 200


@verification_bp.route("/interactions", methods=["POST"])
def interactions():
    """
    Pairwise interactions among verified concepts.
    Body: {"rxcuis": ["197361", "860975"]}
    """
    data = request.get_json(force=True, silent=True) or {}
    rxcuis = data.get("rxcuis")
    if not isinstance(rxcuis, list):
        return jsonify({"error": "Provide a list of rxcuis."}), 400

    found = _verifier().reference.get_interactions([str(r) for r in rxcuis])
    return jsonify({"interactions": [ix.to_dict() for ix in found]}), 200
