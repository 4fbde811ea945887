"""
Send SMS through AfroMessage.
Without AFROMESSAGE_API_TOKEN in settings the client is a no-op (logged, reported as not sent).
Failures are logged and never raised: SMS is a side effect of a committed state change.
"""
import json
import logging
import urllib.error
import urllib.parse
import urllib.request

from django.conf import settings

logger = logging.getLogger(__name__)


class AfroMessageClient:
    def __init__(self, api_token=None, base_url=None, sender_name=None, identifier_id=None, timeout=None):
        self.api_token = (api_token if api_token is not None else settings.AFROMESSAGE_API_TOKEN).strip()
        self.base_url = (base_url or settings.AFROMESSAGE_BASE_URL).rstrip('/')
        self.sender_name = sender_name if sender_name is not None else settings.AFROMESSAGE_SENDER_NAME
        self.identifier_id = identifier_id if identifier_id is not None else settings.AFROMESSAGE_IDENTIFIER_ID
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS

    @property
    def enabled(self):
        return bool(self.api_token)

    def send_message(self, phone, message):
        """Returns True when the provider acknowledged the message, False otherwise."""
        if not (phone and str(phone).strip()):
            logger.info('SMS skipped: no phone number')
            return False
        if not self.enabled:
            logger.info('SMS not configured (no AFROMESSAGE_API_TOKEN); skipping message to %s', phone)
            return False
        params = {'to': str(phone).strip(), 'message': message}
        if self.identifier_id:
            params['from'] = self.identifier_id
        if self.sender_name:
            params['sender'] = self.sender_name
        url = f'{self.base_url}/send?{urllib.parse.urlencode(params)}'
        req = urllib.request.Request(
            url,
            headers={
                'Authorization': f'Bearer {self.api_token}',
                'Content-Type': 'application/json',
            },
            method='GET',
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                data = json.loads(resp.read().decode('utf-8') or '{}')
        except (urllib.error.URLError, TimeoutError, OSError, ValueError) as e:
            logger.warning('SMS send to %s failed: %s', phone, e)
            return False
        if not isinstance(data, dict):
            logger.warning('SMS provider sent an unexpected body for %s: %r', phone, data)
            return False
        if data.get('acknowledge') == 'success':
            return True
        logger.warning('SMS provider rejected message to %s: %s', phone, data.get('response'))
        return False


def get_sms_client():
    return AfroMessageClient()
