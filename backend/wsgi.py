try:
    from backend.facememory.server import create_app
except ImportError:  # pragma: no cover
    from facememory.server import create_app

app, socketio = create_app()
