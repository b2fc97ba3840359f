import logging
from urllib.parse import quote

import requests

from core import config

logger = logging.getLogger(__name__)


class BackendError(Exception):
    '''The managed backend answered with an error or could not be reached.'''


class BackendClient:

    '''
        A small client for the managed backend that owns user accounts and binary object storage.
        It resolves bearer tokens to users, deletes accounts with the service key
        and uploads files to a storage bucket, returning their public URL.
        One instance is built per request and handed to the route through a FastAPI dependency.
    '''

    def __init__(self, base_url: str = None, service_key: str = None, timeout: float = None):
        self.base_url = (base_url if base_url is not None else config.BACKEND_URL).rstrip("/")
        self.service_key = service_key if service_key is not None else config.BACKEND_SERVICE_KEY
        self.timeout = timeout if timeout is not None else config.BACKEND_TIMEOUT
        self.session = requests.Session()

    def _headers(self, token=None, extra=None):
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {token or self.service_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    # ===============================
    # AUTH
    # ===============================

    def get_user(self, token: str):

        '''Resolve an access token to the user it belongs to. Returns None when the token is not valid.'''

        if not token:
            return None

        try:
            r = self.session.get(
                f"{self.base_url}/auth/v1/user",
                headers=self._headers(token),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise BackendError(f"Identity service unreachable: {e}") from e

        if r.status_code in (401, 403, 404):
            return None
        if r.status_code >= 400:
            raise BackendError(f"Identity service error {r.status_code}: {r.text}")

        user = r.json()
        if not user or not user.get("id"):
            return None
        return user

    def delete_user(self, user_id: str):

        '''Delete an account with the service key. A missing account is not an error.'''

        try:
            r = self.session.delete(
                f"{self.base_url}/auth/v1/admin/users/{quote(user_id, safe='')}",
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise BackendError(f"Identity service unreachable: {e}") from e

        if r.status_code == 404:
            logger.warning("Account %s not found in identity service", user_id)
            return
        if r.status_code >= 400:
            raise BackendError(f"Failed to delete user: {r.status_code} {r.text}")

    # ===============================
    # STORAGE
    # ===============================

    def upload(self, bucket: str, path: str, data: bytes, content_type: str = "application/octet-stream"):

        '''Store bytes under bucket/path. Existing objects are never overwritten.'''

        try:
            r = self.session.post(
                f"{self.base_url}/storage/v1/object/{bucket}/{quote(path)}",
                headers=self._headers(extra={
                    "Content-Type": content_type,
                    "cache-control": "max-age=3600",
                    "x-upsert": "false",
                }),
                data=data,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise BackendError(f"Storage unreachable: {e}") from e

        if r.status_code >= 400:
            raise BackendError(f"Upload failed: {r.status_code} {r.text}")

        return path

    def close(self):
        self.session.close()

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{quote(path)}"
