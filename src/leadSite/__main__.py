"""Entry point for running the website API."""

import os

from leadSite.app import create_app

if __name__ == "__main__":
    config_name = os.environ.get("FLASK_ENV", "development")
    app = create_app(config_name)
    app.run(debug=app.config["DEBUG"], port=int(os.environ.get("PORT", 5000)), host="0.0.0.0")
