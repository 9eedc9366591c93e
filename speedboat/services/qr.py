"""Signed QR payloads for boarding tickets."""
import base64
import hashlib
import hmac
import json
from io import BytesIO

import qrcode
from qrcode import constants

from speedboat.utils.errors import ValidationError

QR_PREFIX = 'SPB:'
QR_VERSION = 1
SIGNATURE_LENGTH = 16


def _sign(ticket_code, booking_code, schedule_id, departure_time, version, secret):
    message = f'{ticket_code}|{booking_code}|{schedule_id}|{departure_time}|{version}'
    digest = hmac.new(secret.encode('utf-8'), message.encode('utf-8'), hashlib.sha256).digest()
    return base64.b64encode(digest).decode('ascii')[:SIGNATURE_LENGTH]


def encode_ticket_payload(ticket_code, booking_code, passenger_name, schedule_id, departure_time, secret):
    """Build the string that goes into the ticket's QR code"""
    departure = departure_time.isoformat() if hasattr(departure_time, 'isoformat') else str(departure_time)
    body = {
        't': ticket_code,
        'b': booking_code,
        'p': passenger_name,
        's': schedule_id,
        'd': departure,
        'v': QR_VERSION,
    }
    body['sig'] = _sign(ticket_code, booking_code, schedule_id, departure, QR_VERSION, secret)
    encoded = base64.b64encode(json.dumps(body, separators=(',', ':')).encode('utf-8')).decode('ascii')
    return f'{QR_PREFIX}{encoded}'


def decode_ticket_payload(qr_data, secret):
    """
    Parse and verify a QR payload.
    Raises ValidationError when the payload is malformed or its signature does not match.
    """
    if not qr_data or not qr_data.startswith(QR_PREFIX):
        raise ValidationError('Invalid QR code format')

    try:
        body = json.loads(base64.b64decode(qr_data[len(QR_PREFIX):], validate=True).decode('utf-8'))
    except (ValueError, UnicodeDecodeError):
        raise ValidationError('Invalid QR code format')

    if not isinstance(body, dict) or not all(k in body for k in ('t', 'b', 's', 'd', 'v', 'sig')):
        raise ValidationError('Invalid QR code format')

    expected = _sign(body['t'], body['b'], body['s'], body['d'], body['v'], secret)
    if not hmac.compare_digest(expected, str(body['sig'])):
        raise ValidationError('QR code signature is invalid')

    return {
        'ticket_code': body['t'],
        'booking_code': body['b'],
        'passenger_name': body.get('p'),
        'schedule_id': body['s'],
        'departure_time': body['d'],
        'version': body['v'],
    }


def is_qr_payload(value):
    return isinstance(value, str) and value.startswith(QR_PREFIX)


def render_qr_data_url(qr_data):
    """Render a payload as a base64 PNG data URL"""
    qr = qrcode.QRCode(
        version=1,
        error_correction=constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(qr_data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    img.save(buffer, format='PNG')
    return 'data:image/png;base64,' + base64.b64encode(buffer.getvalue()).decode('ascii')
