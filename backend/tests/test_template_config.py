import pytest
from repairdesk.errors import ConfigurationError
from repairdesk.models.notification_config import NotificationTemplateConfig
from repairdesk.services.notifications import (
    DEFAULT_BINDINGS, validate_template_config, load_template_config, save_template_config,
)


def test_default_bindings_are_valid():
    bindings = validate_template_config(DEFAULT_BINDINGS)
    assert bindings['delivery_otp'].params == ('receiptNumber', 'otp', 'validityWindow')
    for b in bindings.values():
        assert b.placeholder_count == len(b.params)


def test_params_order_alias_and_comma_string():
    bindings = validate_template_config({
        'receipt_created': {'name': 'receipt_created', 'paramsOrder': 'customerName, receiptNumber'},
    })
    assert bindings['receipt_created'].params == ('customerName', 'receiptNumber')
    assert bindings['receipt_created'].language == 'en'


def test_every_problem_is_reported():
    with pytest.raises(ConfigurationError) as exc:
        validate_template_config({
            'receipt_created': {'name': '', 'params': ['customerName', 'shoeSize'], 'placeholder_count': 3},
            'Bad Key': {'name': 'x'},
            'sms_only': {'name': 'x', 'channels': ['pigeon']},
            'text_only': {'name': 'x', 'channels': ['whatsapp_text']},
            'typo_text': {'name': 'x', 'text': 'Hi {custName}'},
        })
    problems = exc.value.problems
    joined = '\n'.join(problems)
    assert 'receipt_created: template name is required' in joined
    assert "unknown parameter tokens ['shoeSize']" in joined
    assert 'expects 3 placeholders but 2 parameters' in joined
    assert "'Bad Key': invalid event key" in joined
    assert "unknown channels ['pigeon']" in joined
    assert 'text_only: whatsapp_text channel needs a text body' in joined
    assert "unknown text placeholders ['custName']" in joined
    payload = exc.value.to_payload()
    assert payload['error']['status'] == 400
    assert payload['error']['problems'] == problems


def test_non_mapping_rejected():
    with pytest.raises(ConfigurationError):
        validate_template_config(['receipt_created'])


def test_save_increments_version_and_load_returns_latest(session):
    assert load_template_config(session).version == 0
    first = save_template_config(session, {'ready_for_delivery': {'name': 'ready_v1', 'params': ['receiptNumber']}}, actor_id=1)
    second = save_template_config(session, {'ready_for_delivery': {'name': 'ready_v2', 'params': ['receiptNumber']}}, actor_id=1)
    assert (first.version, second.version) == (1, 2)
    current = load_template_config(session)
    assert current.version == 2
    assert current.get('ready_for_delivery').name == 'ready_v2'
    assert current.get('receipt_created') is None


def test_invalid_save_writes_nothing(session):
    with pytest.raises(ConfigurationError):
        save_template_config(session, {'receipt_created': {'name': 'x', 'params': ['nope']}})
    assert load_template_config(session).version == 0


def test_stale_saved_config_falls_back_to_defaults(session):
    # stored before a token was renamed in code
    session.add(NotificationTemplateConfig(version=3, bindings={
        'receipt_created': {'name': 'receipt_created', 'params': ['custName']},
    }))
    session.commit()
    current = load_template_config(session)
    assert current.version == 3
    assert current.get('delivery_otp').name == DEFAULT_BINDINGS['delivery_otp']['name']
    assert any('custName' in p for p in current.problems)
    assert current.to_json()['problems'] == list(current.problems)
