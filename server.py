"""
HTTP API for Radio Track ID.

Routes are defined on a blueprint; create_app() binds them to a
TrackIdentifier instance so nothing here holds global pipeline state.
"""
from typing import Optional

from quart import Blueprint, Quart, current_app, jsonify, redirect, request

from config import FEATURES, VERSION
from logging_config import get_logger
from settings import SettingsManager, settings as default_settings
from track_id import AlreadyInProgressError, StreamConnectionError, TrackIdentifier

logger = get_logger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")

# Reachable even when the account may not identify tracks
_UNGATED_ENDPOINTS = {"api.status", "api.get_settings"}


def _identifier() -> TrackIdentifier:
    return current_app.config["TRACK_IDENTIFIER"]


def _settings() -> SettingsManager:
    return current_app.config["SETTINGS"]


@api.before_request
async def check_access():
    """Reject pipeline routes when the access gate is closed."""
    if request.endpoint in _UNGATED_ENDPOINTS:
        return None
    if not _identifier().is_available:
        return jsonify({"error": "Track identification is not available for this account"}), 403
    return None


# --- Status ---

@api.route("/status", methods=["GET"])
async def status():
    return jsonify({"version": VERSION, **_identifier().get_status()})


# --- Player ---

@api.route("/player/play", methods=["POST"])
async def player_play():
    try:
        await _identifier().start_playback()
    except StreamConnectionError as e:
        return jsonify({"error": str(e)}), 502
    return jsonify({"status": "playing"})


@api.route("/player/stop", methods=["POST"])
async def player_stop():
    await _identifier().stop_playback()
    return jsonify({"status": "stopped"})


@api.route("/player/volume", methods=["POST"])
async def player_volume():
    """Body: {"volume": 0.0-1.0, "muted": bool} (both optional)"""
    data = await request.get_json(silent=True) or {}
    identifier = _identifier()
    try:
        if "volume" in data:
            identifier.set_volume(float(data["volume"]))
        if "muted" in data:
            identifier.set_muted(bool(data["muted"]))
    except (TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"volume": identifier.player.volume, "muted": identifier.player.muted})


# --- Identification ---

@api.route("/identify", methods=["POST"])
async def identify():
    try:
        outcome = await _identifier().identify_now()
    except AlreadyInProgressError as e:
        return jsonify({"error": e.status_message}), 409
    return jsonify(outcome.to_dict())


@api.route("/auto-identify", methods=["POST"])
async def auto_identify():
    """Body: {"enabled": bool}"""
    data = await request.get_json(silent=True) or {}
    if "enabled" not in data:
        return jsonify({"error": "Missing 'enabled'"}), 400
    identifier = _identifier()
    identifier.set_auto_identify(bool(data["enabled"]))
    return jsonify({"auto_identify": identifier.auto_identify})


# --- History ---

@api.route("/history", methods=["GET"])
async def get_history():
    return jsonify({"tracks": _identifier().history.to_list()})


@api.route("/history", methods=["DELETE"])
async def clear_history():
    _identifier().clear_history()
    return jsonify({"success": True})


@api.route("/history/<track_id>", methods=["DELETE"])
async def remove_track(track_id: str):
    if not _identifier().remove_track(track_id):
        return jsonify({"error": "Track not found"}), 404
    return jsonify({"success": True})


@api.route("/history/<track_id>/search", methods=["GET"])
async def search_track(track_id: str):
    track = _identifier().history.get(track_id)
    if track is None:
        return jsonify({"error": "Track not found"}), 404
    return redirect(track.search_url(current_app.config["SEARCH_URL_TEMPLATE"]))


# --- Settings ---

@api.route("/settings", methods=["GET"])
async def get_settings():
    return jsonify(_settings().get_all())


@api.route("/settings", methods=["POST"])
async def update_settings():
    data = await request.get_json(silent=True) or {}
    manager = _settings()
    # Reject the whole update before touching anything
    unknown = [key for key in data if not manager.is_known(key)]
    if unknown:
        return jsonify({"error": f"Unknown setting: {', '.join(unknown)}"}), 400

    needs_restart = False
    for key, value in data.items():
        needs_restart |= manager.set(key, value)
    manager.save_to_config()
    return jsonify({"success": True, "requires_restart": needs_restart})


def create_app(identifier: TrackIdentifier, settings_manager: Optional[SettingsManager] = None,
               search_url_template: str = FEATURES["search_url_template"]) -> Quart:
    app = Quart(__name__)
    app.config["TRACK_IDENTIFIER"] = identifier
    app.config["SETTINGS"] = settings_manager or default_settings
    app.config["SEARCH_URL_TEMPLATE"] = search_url_template
    app.register_blueprint(api)

    @app.after_request
    async def add_cache_headers(response):
        # API responses are live state; never cache
        response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
        return response

    return app
