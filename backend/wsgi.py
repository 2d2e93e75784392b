try:
    from backend.yahtzee.server import create_app
except ImportError:  # pragma: no cover
    from yahtzee.server import create_app

app, socketio = create_app()
