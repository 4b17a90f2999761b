"""imgbox.com gallery client.

The web uploader protocol: read the CSRF token from the landing page, ask
``/ajax/token/generate`` for an upload token, then post each file to
``/upload/process``. One call to :meth:`ImgboxGallery.upload` covers a whole
batch under a single upload token.
"""

from __future__ import annotations

import logging
import mimetypes
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from .errors import UploadBatchError, UploadItemRejected
from .rehost_config import IMGBOX_ROOT, IMGBOX_TOKEN_PATH, IMGBOX_UPLOAD_PATH
from .upload import UploadedImage, UploadItem, UploadOptions, UploadResponse

logger = logging.getLogger(__name__)

_CSRF_RE = re.compile(r'<meta[^>]+name="csrf-token"[^>]+content="([^"]+)"', re.IGNORECASE)
# imgbox content_type codes
CONTENT_TYPES = {"safe": "1", "adult": "2"}
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


def _cookie_header(auth_cookie: str) -> str:
    raw = auth_cookie.strip()
    if "=" in raw:
        return raw
    return f"_imgbox_session={raw}"


class ImgboxGallery:
    def __init__(
        self,
        *,
        auth_cookie: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 60,
        root: str = IMGBOX_ROOT,
    ) -> None:
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        if auth_cookie:
            self.session.headers["Cookie"] = _cookie_header(auth_cookie)
        self.timeout = timeout
        self.root = root.rstrip("/")

    def _csrf_token(self) -> str:
        try:
            resp = self.session.get(f"{self.root}/", timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise UploadBatchError(f"imgbox landing page failed: {exc}") from exc
        match = _CSRF_RE.search(resp.text or "")
        if not match:
            raise UploadBatchError("imgbox landing page has no csrf-token")
        return match.group(1)

    def _upload_token(self, csrf: str, options: UploadOptions) -> Dict[str, Any]:
        headers = {"X-CSRF-Token": csrf, "X-Requested-With": "XMLHttpRequest", "Referer": f"{self.root}/"}
        data = {
            "gallery": "false",
            "gallery_title": "",
            "comments_enabled": "1" if options.comments_enabled else "0",
        }
        try:
            resp = self.session.post(f"{self.root}{IMGBOX_TOKEN_PATH}", data=data, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            token = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise UploadBatchError(f"imgbox token request failed: {exc}") from exc
        if not isinstance(token, dict) or not token.get("token_id") or not token.get("token_secret"):
            raise UploadBatchError(f"imgbox token response malformed: {token!r}")
        return token

    def upload(self, items: Sequence[UploadItem], options: UploadOptions) -> UploadResponse:
        if options.content_type not in CONTENT_TYPES:
            raise UploadBatchError(f"unknown content type {options.content_type!r}")
        csrf = self._csrf_token()
        token = self._upload_token(csrf, options)
        headers = {"X-CSRF-Token": csrf, "X-Requested-With": "XMLHttpRequest", "Referer": f"{self.root}/"}
        data = {
            "token_id": str(token["token_id"]),
            "token_secret": str(token["token_secret"]),
            "content_type": CONTENT_TYPES[options.content_type],
            "thumbnail_size": options.thumbnail_size,
            "gallery_id": str(token.get("gallery_id") or "null"),
            "gallery_secret": str(token.get("gallery_secret") or "null"),
            "comments_enabled": "1" if options.comments_enabled else "0",
        }

        response = UploadResponse(raw=[])
        for item in items:
            try:
                image, raw = self._upload_one(item, data, headers)
            except UploadItemRejected as exc:
                logger.warning("imgbox rejected %s", exc)
                response.failed.append(item.display_name)
                response.raw.append({"display_name": item.display_name, "error": exc.reason})
                continue
            response.succeeded.append(image)
            response.raw.append(raw)
        return response

    def _upload_one(
        self,
        item: UploadItem,
        data: Dict[str, str],
        headers: Dict[str, str],
    ) -> Tuple[UploadedImage, Any]:
        mime = mimetypes.guess_type(item.display_name)[0] or "application/octet-stream"
        try:
            with item.source.open("rb") as fh:
                resp = self.session.post(
                    f"{self.root}{IMGBOX_UPLOAD_PATH}",
                    data=data,
                    files={"files[]": (item.display_name, fh, mime)},
                    headers=headers,
                    timeout=self.timeout,
                )
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise UploadItemRejected(item.display_name, str(exc)) from exc
        except OSError as exc:
            raise UploadItemRejected(item.display_name, f"unreadable file: {exc}") from exc
        files: List[Dict[str, Any]] = (payload.get("files") or []) if isinstance(payload, dict) else []
        if not files:
            raise UploadItemRejected(item.display_name, f"no file in response: {payload!r}")
        info = files[0]
        url = info.get("original_url") or info.get("url")
        thumb = info.get("thumbnail_url")
        if not url or not thumb:
            raise UploadItemRejected(item.display_name, f"response missing urls: {info!r}")
        image = UploadedImage(display_name=str(info.get("name") or item.display_name), url=url, thumbnail_url=thumb)
        logger.info("uploaded %s -> %s", item.display_name, url)
        return image, payload


__all__ = ["CONTENT_TYPES", "ImgboxGallery"]
