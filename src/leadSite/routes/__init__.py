"""Website API blueprints."""
