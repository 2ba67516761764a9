from __future__ import annotations
from flask import Blueprint, abort, g
from repairdesk.decorators.auth import require_permissions
from repairdesk.utils.validation import json_body
from repairdesk import get_db
from repairdesk.services.notifications import (
    KNOWN_TOKENS, CHANNELS, load_template_config, save_template_config,
)

settings_bp = Blueprint('settings', __name__)


def _config_json(config):
    body = config.to_json()
    body['tokens'] = sorted(KNOWN_TOKENS)
    body['channels'] = list(CHANNELS)
    return body


@settings_bp.get('/notifications')
@require_permissions('SETTINGS.MANAGE')
def get_notification_templates():
    return _config_json(load_template_config(get_db()))


@settings_bp.put('/notifications')
@require_permissions('SETTINGS.MANAGE')
def put_notification_templates():
    data = json_body()
    if 'bindings' not in data:
        abort(400, description='bindings required')
    # ConfigurationError propagates as 400 with the full problem list
    config = save_template_config(get_db(), data['bindings'], g.user_id)
    return _config_json(config)
