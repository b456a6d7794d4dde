"""
Flask web server for the Geopolitical Analyzer.

Routes
──────
GET    /                           Minimal UI
POST   /api/analyze                Run an analysis and save it to history (JSON)
GET    /api/history                List history entries, newest first (JSON)
GET    /api/history/<id>           Fetch a specific entry (JSON)
DELETE /api/history/<id>           Delete an entry (JSON)
DELETE /api/history?confirm=true   Clear the whole history (JSON)
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, render_template, request

# Allow running as `python web/app.py` from the project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

load_dotenv()

from config.settings import Settings
from core.errors import AnalysisError
from core.history import HistoryStore
from core.models import AnalysisRecord, AnalysisRequest
from core.pipeline import AnalysisPipeline, render_text
from core.storage import SqliteKeyValueStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_TIME_PERIOD = "the last month"


def _record_json(record: AnalysisRecord) -> dict:
    data = record.model_dump(mode="json", by_alias=True)
    # Entries saved before renderedText existed are rendered on the fly
    if not record.rendered_text:
        data["renderedText"] = render_text(record.analysis)
    return data


def create_app(
    settings: Optional[Settings] = None,
    pipeline: Optional[AnalysisPipeline] = None,
    store: Optional[HistoryStore] = None,
) -> Flask:
    """Build the Flask app, wiring default collaborators from *settings*."""
    settings = settings or Settings()
    if pipeline is None:
        pipeline = AnalysisPipeline(settings)
    if store is None:
        storage = SqliteKeyValueStore(settings.history_db_path)
        storage.init_db()
        store = HistoryStore(storage, capacity=settings.max_history_items)

    app = Flask(__name__)

    # ── UI ─────────────────────────────────────────────────────────────────

    @app.route("/")
    def index():
        return render_template("index.html", default_time_period=DEFAULT_TIME_PERIOD)

    # ── Analysis ───────────────────────────────────────────────────────────

    @app.route("/api/analyze", methods=["POST"])
    def analyze():
        """Run the pipeline for ``{country, timePeriod}`` and save the result."""
        body = request.get_json(silent=True) or {}
        country = str(body.get("country") or "").strip()
        time_period = str(body.get("timePeriod") or DEFAULT_TIME_PERIOD).strip()
        if not country:
            return jsonify({"error": "Please enter a country name."}), 400
        if not time_period:
            return jsonify({"error": "Please enter a time period."}), 400

        try:
            draft = pipeline.run(AnalysisRequest(country=country, time_period=time_period))
        except AnalysisError as exc:
            logger.warning("Analysis failed for country=%r: %s", country, exc)
            return jsonify({"error": str(exc), "kind": type(exc).__name__}), exc.status_code

        record = store.insert(draft)
        return jsonify(_record_json(record)), 201

    # ── History API ────────────────────────────────────────────────────────

    @app.route("/api/history")
    def list_history():
        """Return every history entry as a short summary."""
        return jsonify(
            [
                {
                    "id": r.id,
                    "country": r.request.country,
                    "timePeriod": r.request.time_period,
                    "createdAt": r.created_at.isoformat(),
                }
                for r in store.list()
            ]
        )

    @app.route("/api/history/<entry_id>")
    def get_history_entry(entry_id: str):
        """Return a full history entry."""
        record = store.load(entry_id)
        if record is None:
            return jsonify({"error": "Not found"}), 404
        return jsonify(_record_json(record))

    @app.route("/api/history/<entry_id>", methods=["DELETE"])
    def delete_history_entry(entry_id: str):
        """Delete a history entry."""
        if not store.delete(entry_id):
            return jsonify({"error": "Not found"}), 404
        return jsonify({"deleted": entry_id})

    @app.route("/api/history", methods=["DELETE"])
    def clear_history():
        """Clear all history; requires ``?confirm=true``."""
        if request.args.get("confirm") != "true":
            return jsonify({"error": "Clearing history requires confirm=true"}), 400
        store.clear()
        return jsonify({"cleared": True})

    return app


# ── Entry point ────────────────────────────────────────────────────────────

if __name__ == "__main__":
    settings = Settings()
    # One request at a time: the history store is not shared across threads
    create_app(settings).run(
        debug=settings.debug, host="0.0.0.0", port=settings.port, threaded=False
    )
