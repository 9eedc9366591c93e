"""
Midtrans payment gateway client.

Snap is used to open a payment session; the Core API is used to poll and
cancel transactions. Configuration is read from the Flask app on every call
so tests can override keys after the app is created.
"""
import base64
import hashlib
import hmac
import logging
import re
import time

import requests
from flask import current_app

from speedboat.utils.errors import GatewayError

logger = logging.getLogger(__name__)

SNAP_SANDBOX_URL = 'https://app.sandbox.midtrans.com/snap/v1/transactions'
SNAP_PRODUCTION_URL = 'https://app.midtrans.com/snap/v1/transactions'
API_SANDBOX_URL = 'https://api.sandbox.midtrans.com/v2'
API_PRODUCTION_URL = 'https://api.midtrans.com/v2'

ORDER_ID_PATTERN = re.compile(r'^SPB-(.+)-[A-Z0-9]+$')
ITEM_NAME_MAX_LENGTH = 50

_BASE36 = '0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ'


def to_base36(number):
    if number == 0:
        return '0'
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return ''.join(reversed(digits))


def generate_order_id(booking_code, timestamp_ms=None):
    """Order ids are unique per payment attempt: SPB-<booking code>-<base36 ms>"""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f'SPB-{booking_code}-{to_base36(timestamp_ms)}'


def extract_booking_code(order_id):
    match = ORDER_ID_PATTERN.match(order_id or '')
    return match.group(1) if match else None


def compute_signature(order_id, status_code, gross_amount, server_key):
    raw = f'{order_id}{status_code}{gross_amount}{server_key}'
    return hashlib.sha512(raw.encode('utf-8')).hexdigest()


def verify_signature(payload, server_key):
    """Check the signature_key Midtrans attaches to every notification"""
    signature = payload.get('signature_key')
    if not signature or not server_key:
        return False
    expected = compute_signature(
        payload.get('order_id', ''),
        payload.get('status_code', ''),
        payload.get('gross_amount', ''),
        server_key
    )
    return hmac.compare_digest(expected, str(signature))


def extract_va_details(payload):
    """Returns (va_number, bank) from a notification or status response"""
    va_numbers = payload.get('va_numbers')
    if va_numbers:
        first = va_numbers[0]
        return first.get('va_number'), first.get('bank')
    if payload.get('permata_va_number'):
        return payload['permata_va_number'], 'permata'
    if payload.get('bca_va_number'):
        return payload['bca_va_number'], 'bca'
    if payload.get('bill_key'):
        return f"{payload.get('biller_code', '')}{payload['bill_key']}", 'mandiri'
    return None, None


class MidtransClient:
    """Thin Midtrans HTTP client registered on the app like an extension"""

    def __init__(self, app=None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        app.config.setdefault('MIDTRANS_SERVER_KEY', '')
        app.config.setdefault('MIDTRANS_CLIENT_KEY', '')
        app.config.setdefault('MIDTRANS_IS_PRODUCTION', False)
        app.config.setdefault('MIDTRANS_TIMEOUT', 30)
        app.extensions['midtrans'] = self

    @property
    def server_key(self):
        return current_app.config['MIDTRANS_SERVER_KEY']

    @property
    def is_production(self):
        return bool(current_app.config['MIDTRANS_IS_PRODUCTION'])

    @property
    def snap_url(self):
        return SNAP_PRODUCTION_URL if self.is_production else SNAP_SANDBOX_URL

    @property
    def api_url(self):
        return API_PRODUCTION_URL if self.is_production else API_SANDBOX_URL

    def _headers(self):
        auth = base64.b64encode(f'{self.server_key}:'.encode('utf-8')).decode('ascii')
        return {
            'Authorization': f'Basic {auth}',
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }

    def _request(self, method, url, payload=None):
        if not self.server_key:
            raise GatewayError('Midtrans server key is not configured')

        timeout = current_app.config['MIDTRANS_TIMEOUT']
        try:
            response = requests.request(method, url, json=payload, headers=self._headers(), timeout=timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            body = e.response.text if e.response is not None else None
            status = e.response.status_code if e.response is not None else None
            logger.error('[MIDTRANS_HTTP_ERROR] %s %s status=%s body=%s', method, url, status, body)
            raise GatewayError(f'HTTP {status}', http_status=status, response_body=body) from e
        except requests.exceptions.RequestException as e:
            logger.error('[MIDTRANS_NETWORK_ERROR] %s %s error=%s', method, url, e)
            raise GatewayError(str(e)) from e

        try:
            return response.json()
        except ValueError as e:
            raise GatewayError('invalid JSON response', http_status=response.status_code,
                               response_body=response.text) from e

    def create_transaction(self, order_id, gross_amount, customer, items, expiry_minutes, finish_url=None):
        """
        Open a Snap session.
        ---
        customer: {first_name, email, phone}
        items: [{id, price, quantity, name}]
        Returns: {token, redirect_url}
        """
        payload = {
            'transaction_details': {
                'order_id': order_id,
                'gross_amount': int(gross_amount),
            },
            'customer_details': customer,
            'item_details': [
                dict(item, name=str(item['name'])[:ITEM_NAME_MAX_LENGTH]) for item in items
            ],
            'enabled_payments': current_app.config.get('MIDTRANS_ENABLED_PAYMENTS'),
            'expiry': {
                'unit': 'minutes',
                'duration': max(1, int(expiry_minutes)),
            },
        }
        if finish_url:
            payload['callbacks'] = {
                'finish': finish_url,
                'error': finish_url,
                'pending': finish_url,
            }

        logger.info('[MIDTRANS_CREATE] order_id=%s amount=%s', order_id, gross_amount)
        data = self._request('POST', self.snap_url, payload)

        if not data.get('token'):
            raise GatewayError('no token in Snap response', response_body=data)

        return {'token': data['token'], 'redirect_url': data.get('redirect_url')}

    def get_status(self, order_id):
        """Current transaction status from the Core API, or None when Midtrans has no such order"""
        data = self._request('GET', f'{self.api_url}/{order_id}/status')
        if str(data.get('status_code')) == '404':
            logger.info('[MIDTRANS_STATUS] order_id=%s not found at gateway', order_id)
            return None
        return data

    def cancel_transaction(self, order_id):
        logger.info('[MIDTRANS_CANCEL] order_id=%s', order_id)
        return self._request('POST', f'{self.api_url}/{order_id}/cancel')


midtrans = MidtransClient()
