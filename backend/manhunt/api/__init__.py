from flask import jsonify

from manhunt.services.game.errors import GameError


def register_error_handlers(flask_app) -> None:
    """Map game errors raised by routes to JSON responses."""

    @flask_app.errorhandler(GameError)
    def handle_game_error(exc):
        if exc.http_status >= 500:
            flask_app.logger.warning(f"[api-error] {exc.__class__.__name__}: {exc}")
        return jsonify(exc.to_dict()), exc.http_status
