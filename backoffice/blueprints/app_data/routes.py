"""
Remote snapshot store (server side).

- GET /app-data -> {data: {key: string} | null, updatedAt: string | null}
- PUT /app-data, body {data: {key: string}} -> {ok: true, updatedAt}

The whole snapshot is one AppDataRecord row; the server stamps updatedAt itself.
"""

import json
import logging

from flask import Blueprint, jsonify
from flask_login import current_user

from ...extensions import db
from ...models import AppDataRecord
from ...security import api_login_required
from ...utils import json_body, to_iso, utcnow

logger = logging.getLogger(__name__)

app_data_bp = Blueprint("app_data", __name__)


def _current_record():
    return AppDataRecord.query.order_by(AppDataRecord.id.asc()).first()


@app_data_bp.route("/app-data", methods=["GET"])
@api_login_required
def get_app_data():
    record = _current_record()
    if record is None:
        return jsonify({"data": None, "updatedAt": None})

    try:
        data = json.loads(record.data_json)
    except ValueError:
        logger.warning("Stored app data is not valid JSON; answering with no data")
        data = None

    return jsonify({"data": data, "updatedAt": to_iso(record.updated_at)})


@app_data_bp.route("/app-data", methods=["PUT"])
@api_login_required
def put_app_data():
    data = json_body().get("data")
    if not isinstance(data, dict) or not all(isinstance(v, str) for v in data.values()):
        return jsonify({"errors": {"data": "data must map keys to JSON strings"}}), 400

    now = utcnow()
    record = _current_record()
    if record is None:
        record = AppDataRecord(data_json=json.dumps(data, ensure_ascii=False), updated_at=now)
        db.session.add(record)
    else:
        record.data_json = json.dumps(data, ensure_ascii=False)
        record.updated_at = now
    record.updated_by_id = current_user.id
    db.session.commit()

    logger.info("Stored app data snapshot (%d keys) from user %s", len(data), current_user.id)
    return jsonify({"ok": True, "updatedAt": to_iso(now)})
