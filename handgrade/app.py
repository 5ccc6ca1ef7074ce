#!/usr/bin/env python3
"""
Handgrade - AI grading for handwritten papers
=============================================
Run: python3 -m handgrade.app
Then POST to: http://localhost:3000/api/grade
"""
import logging

from flask import Flask, jsonify
from flask_cors import CORS

from .config import DEBUG, HOST, LOG_LEVEL, PORT, config
from .routes import register_routes


def create_app(overrides: dict = None) -> Flask:
    app = Flask(__name__)
    # Allow multipart overhead on top of two maximum-size files
    app.config['MAX_CONTENT_LENGTH'] = 2 * config.max_upload_bytes + 1024 * 1024
    if overrides:
        app.config.update(overrides)
    CORS(app)

    register_routes(app)

    @app.errorhandler(413)
    def request_too_large(_error):
        return jsonify({"error": "The upload is too large. Use smaller files and try again."}), 413

    return app


def main():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app()
    app.run(host=HOST, port=PORT, debug=DEBUG)


if __name__ == '__main__':
    main()
