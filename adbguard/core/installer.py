"""
Remote APK install pipeline: allow-listed URL, download with proxy
fallback, chunked install over the device channel.

Overall progress: download is 0..0.4, install is 0.4..1.0.
"""
import logging
import time
from typing import Callable, Iterable, List, Optional, Sequence
from urllib.parse import quote, urlparse

import requests

from .audit import AuditLog
from .config import (
    ALLOWED_APK_DOMAINS, APK_EXTENSION, DOWNLOAD_CHUNK_SIZE, DOWNLOAD_PHASE_WEIGHT,
    DOWNLOAD_PROXIES, DOWNLOAD_TIMEOUT, INSTALL_BATCH_DELAY, MAX_APK_SIZE,
)
from .errors import DownloadError, SessionError, TransportError, ValidationError
from .models import BatchSummary, CancelToken, Notification, ProgressEvent
from .results import classify_transport_error, interpret_result, with_quirk_hints
from .session import Session

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]

HTML_CONTENT_TYPES = ("text/html", "application/xhtml")


def validate_apk_url(url: str, allowed_domains: Sequence[str] = ALLOWED_APK_DOMAINS) -> str:
    """HTTPS, a trusted host (or subdomain of one), and a path ending in .apk."""
    trimmed = (url or "").strip()
    if not trimmed:
        raise ValidationError("empty", "URL cannot be empty")
    parsed = urlparse(trimmed)
    if parsed.scheme != "https":
        raise ValidationError("not_allowed", "Only HTTPS download links are allowed")
    host = (parsed.hostname or "").lower()
    if not any(host == domain or host.endswith("." + domain) for domain in allowed_domains):
        raise ValidationError("not_allowed", f'Domain "{host}" is not in the trusted download list')
    if not parsed.path.lower().endswith(APK_EXTENSION):
        raise ValidationError("syntax", "The link must point directly to an .apk file")
    return trimmed


class RemoteInstaller:

    def __init__(self, session: Session, audit: AuditLog,
                 notify: Optional[Callable[[Notification], None]] = None,
                 http: Optional[requests.Session] = None,
                 proxies: Sequence[str] = DOWNLOAD_PROXIES,
                 max_size: int = MAX_APK_SIZE,
                 batch_delay: float = INSTALL_BATCH_DELAY,
                 sleep: Callable[[float], None] = time.sleep):
        self.session = session
        self.audit = audit
        self.notify = notify if notify is not None else (lambda _n: None)
        self.http = http if http is not None else requests.Session()
        self.proxies = tuple(proxies)
        self.max_size = max_size
        self.batch_delay = batch_delay
        self._sleep = sleep

    # ==================== Download ====================

    def _candidates(self, url: str) -> List[str]:
        return [url] + [proxy + quote(url, safe="") for proxy in self.proxies]

    def _open(self, url: str) -> requests.Response:
        """Direct fetch first, then each proxy in order; first OK response wins."""
        last_error = "no response"
        for candidate in self._candidates(url):
            try:
                response = self.http.get(candidate, stream=True, timeout=DOWNLOAD_TIMEOUT)
            except requests.RequestException as e:
                last_error = str(e)
                logger.info("Fetch via %s failed: %s", candidate[:60], e)
                continue
            if response.ok:
                return response
            last_error = f"HTTP error! status: {response.status_code}"
            response.close()
        raise DownloadError("unreachable", f"Download failed through all routes ({last_error})")

    def download(self, url: str, on_progress: Optional[ProgressListener] = None,
                 cancel: Optional[CancelToken] = None) -> bytes:
        response = self._open(url)
        try:
            content_type = (response.headers.get("Content-Type") or "").lower()
            if any(t in content_type for t in HTML_CONTENT_TYPES):
                raise DownloadError(
                    "wrong_content_type",
                    "The link leads to an HTML page, not an APK file. Use a direct download link.")

            total = int(response.headers.get("Content-Length") or 0)
            if total > self.max_size:
                raise DownloadError("too_large", f"APK is too large ({total} bytes, max {self.max_size})")

            buffer = bytearray()
            for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                if cancel is not None and cancel.cancelled:
                    raise DownloadError("cancelled", "Download cancelled")
                if not chunk:
                    continue
                buffer.extend(chunk)
                if len(buffer) > self.max_size:
                    raise DownloadError("too_large", f"APK exceeds the {self.max_size} byte limit")
                if total and on_progress:
                    on_progress(ProgressEvent(
                        phase="download",
                        fraction=DOWNLOAD_PHASE_WEIGHT * min(len(buffer) / total, 1.0),
                        message=f"Downloading {len(buffer)}/{total} bytes"))
            return bytes(buffer)
        finally:
            response.close()

    # ==================== Install ====================

    def install_from_url(self, url: str, label: Optional[str] = None,
                         on_progress: Optional[ProgressListener] = None,
                         cancel: Optional[CancelToken] = None) -> bool:
        """Download an allow-listed APK and install it. Returns True when installed."""
        name = label or url
        try:
            safe_url = validate_apk_url(url)
        except ValidationError as e:
            return self._fail(f"install {name}", e.message)

        if self.session.is_demo:
            self.audit.success(f"install {name} from {safe_url}", "Success (Demo Mode)")
            self.notify(Notification("success", "Install complete", f"{name} (Demo Mode)"))
            return True

        self.audit.pending(f"download {safe_url}", "Downloading...")
        try:
            channel = self.session.channel
            data = self.download(safe_url, on_progress, cancel)
            self.audit.success(f"download {safe_url}", f"Download complete ({len(data)} bytes)")
            if cancel is not None and cancel.cancelled:
                raise DownloadError("cancelled", "Install cancelled")

            self.audit.pending(f"pm install {name}", "Pushing APK to the device...")

            def install_progress(fraction: float):
                if on_progress:
                    on_progress(ProgressEvent(
                        phase="install",
                        fraction=DOWNLOAD_PHASE_WEIGHT + (1 - DOWNLOAD_PHASE_WEIGHT) * fraction,
                        message="Installing"))

            result = channel.install_binary(data, install_progress)
        except (DownloadError, ValidationError) as e:
            return self._fail(f"install {name}", e.message)
        except (TransportError, SessionError) as e:
            message = classify_transport_error(e.code)[1] if isinstance(e, TransportError) else str(e)
            return self._fail(f"install {name}", message)

        interpretation = interpret_result(result)
        if not interpretation.success:
            return self._fail(f"install {name}", with_quirk_hints(interpretation.error_text))

        self.audit.success(f"install {name}", "Installed")
        self.notify(Notification("success", "Install complete", name))
        return True

    def install_batch(self, urls: Iterable[str],
                      on_progress: Optional[ProgressListener] = None,
                      cancel: Optional[CancelToken] = None) -> BatchSummary:
        """Install several APKs one after another."""
        urls = list(urls)
        summary = BatchSummary(total=len(urls))
        for index, url in enumerate(urls, start=1):
            if cancel is not None and cancel.cancelled:
                summary.cancelled = True
                break

            def step_progress(event: ProgressEvent, index=index, url=url):
                if on_progress:
                    on_progress(ProgressEvent(
                        phase=event.phase, fraction=event.fraction, message=event.message,
                        current=index, total=len(urls), label=url))

            if self.install_from_url(url, on_progress=step_progress, cancel=cancel):
                summary.succeeded.append(url)
            else:
                summary.failed.append(url)
            if index < len(urls):
                self._sleep(self.batch_delay)
        return summary

    def _fail(self, label: str, message: str) -> bool:
        self.audit.error(label, message)
        self.notify(Notification("error", "Install error", message))
        return False
