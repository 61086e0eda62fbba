from flask import Blueprint

extension_bp = Blueprint("extension", __name__, url_prefix="/api/v1/extension")

from lnkiq.extension import routes  # noqa: E402,F401
