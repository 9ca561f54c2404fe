import json

import pytest

from qrattend.modules.qr_generator import QRGenerator


@pytest.fixture
def generator(tmp_path):
    return QRGenerator(output_dir=tmp_path)


def test_payload_is_compact_json(generator):
    secret = generator.generate_secret()
    payload = generator.build_payload('abc123', secret, 7)

    assert len(secret) == 32
    assert ' ' not in payload
    assert json.loads(payload) == {'id': 'abc123', 'data': secret, 'org': 7}

    parsed = generator.parse_payload(payload)
    assert parsed == {'valid': True, 'data': {'id': 'abc123', 'data': secret, 'org': 7}}


def test_parse_accepts_decoded_objects(generator):
    parsed = generator.parse_payload({'id': 'abc', 'data': 'secret', 'org': '3'})
    assert parsed['data']['org'] == 3

    assert generator.parse_payload({'id': 'abc', 'data': 'secret'})['data']['org'] is None


@pytest.mark.parametrize('raw, error_type', [
    ('', 'invalid_format'),
    (None, 'invalid_format'),
    ('not json', 'invalid_format'),
    ('[1, 2]', 'invalid_format'),
    ('{"id": 1, "data": "x"}', 'invalid_qr'),
    ('{"id": "a"}', 'invalid_qr'),
    ('{"id": "a", "data": "x", "org": "abc"}', 'invalid_qr'),
])
def test_parse_rejects(generator, raw, error_type):
    parsed = generator.parse_payload(raw)
    assert parsed['valid'] is False
    assert parsed['error_type'] == error_type


def test_render_image(generator):
    image = generator.render_image(generator.build_payload('abc', 'secret', 1))

    assert image['data_url'].startswith('data:image/png;base64,')
    assert image['data_url'].endswith(image['image_base64'])


def test_bulk_pdf(generator, tmp_path):
    assert generator.create_bulk_qr_pdf([])['error_type'] == 'validation'

    qr_codes = [
        {'payload': generator.build_payload(f'id{n}', 'secret', 1), 'event_name': f'Lecture {n}'}
        for n in range(7)
    ]
    result = generator.create_bulk_qr_pdf(qr_codes, 'sheet.pdf')

    assert result['success'] is True
    with open(tmp_path / 'sheet.pdf', 'rb') as handle:
        assert handle.read(4) == b'%PDF'
