"""
WSGI entry point.

    flask --app run.py --debug run      # JSON API
    flask --app run.py init-db          # tables + default company settings
    flask --app run.py worker           # snapshot reconciler + derivation poll
"""

from backoffice import create_app

app = create_app()

if __name__ == "__main__":
    # Dev server only; deploy behind a WSGI server.
    app.run(debug=True)
