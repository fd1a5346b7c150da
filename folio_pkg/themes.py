"""
Theme resolution for Folio.

A theme is a directory holding ``_layouts``, ``_includes`` and ``assets``.
It is either a local path (``theme``) or a GitHub repository fetched as a
zip archive (``remote_theme: owner/repo@ref``). Remote downloads go through
an SSRF-guarded requests session and are cached under ``.folio-cache``.
"""

import io
import os
import re
import shutil
import socket
import logging
import tempfile
import zipfile
import ipaddress
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple, Union
from urllib.parse import urlparse

import requests

from . import __version__
from .errors import ThemeError

REMOTE_THEME_RE = re.compile(r'^(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+)(?:@(?P<ref>[\w./-]+))?$')
CODELOAD_URL = 'https://codeload.github.com/{owner}/{repo}/zip/{ref}'
MAX_ARCHIVE_BYTES = 50 * 1024 * 1024


class URLValidator:
    """Reject URLs that would let a theme download reach internal hosts."""

    ALLOWED_SCHEMES: Set[str] = {'https'}

    ALLOWED_DOMAINS: Set[str] = {
        'codeload.github.com',
        'github.com',
    }

    BLOCKED_IP_RANGES: List[str] = [
        '0.0.0.0/8',
        '10.0.0.0/8',
        '100.64.0.0/10',
        '127.0.0.0/8',
        '169.254.0.0/16',
        '172.16.0.0/12',
        '192.168.0.0/16',
        '224.0.0.0/4',
        '240.0.0.0/4',
        '::1/128',
        '::/128',
        'fe80::/10',
        'fc00::/7',
    ]

    def __init__(self, allowed_domains: Set[str] = None):
        self.allowed_domains = allowed_domains or self.ALLOWED_DOMAINS
        self._blocked_networks = [ipaddress.ip_network(cidr) for cidr in self.BLOCKED_IP_RANGES]

    def validate_url(self, url: str) -> Tuple[bool, str]:
        """
        Validate a URL before fetching it.

        Returns:
            Tuple of (is_valid, error_message)
        """
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            return False, "Invalid URL format"
        if parsed.scheme.lower() not in self.ALLOWED_SCHEMES:
            return False, f"Unsupported URL scheme: {parsed.scheme}"
        if '@' in parsed.netloc:
            return False, "Credentials in URL are not allowed"

        hostname = (parsed.hostname or '').lower()
        if not any(hostname == d or hostname.endswith('.' + d) for d in self.allowed_domains):
            return False, f"Domain not in allowlist: {hostname}"

        try:
            for ip_str in self._resolve_hostname(hostname):
                if not self._is_ip_allowed(ip_str):
                    return False, f"Blocked IP address: {ip_str}"
        except socket.gaierror:
            return False, f"Cannot resolve hostname: {hostname}"

        return True, "URL is valid"

    def _resolve_hostname(self, hostname: str) -> List[str]:
        addr_info = socket.getaddrinfo(hostname, None, family=socket.AF_UNSPEC, type=socket.SOCK_STREAM)
        return sorted(set(info[4][0] for info in addr_info))

    def _is_ip_allowed(self, ip_str: str) -> bool:
        try:
            ip = ipaddress.ip_address(ip_str)
        except ValueError:
            return False
        return not any(ip in network for network in self._blocked_networks)


class SafeRequestor:
    """HTTP GET that validates the URL first."""

    def __init__(self, validator: URLValidator = None, session=None):
        self.validator = validator or URLValidator()
        self.session = session or requests.Session()

    def safe_get(self, url: str, **kwargs) -> Tuple[bool, Union[object, str]]:
        """
        Make a GET request after URL validation.

        Returns:
            Tuple of (success, response_or_error_message)
        """
        is_valid, error_msg = self.validator.validate_url(url)
        if not is_valid:
            return False, f"URL validation failed: {error_msg}"

        kwargs.setdefault('timeout', 30)
        kwargs.setdefault('allow_redirects', False)
        kwargs.setdefault('headers', {})
        kwargs['headers'].setdefault('User-Agent', f'Folio/{__version__} (Static Site Generator)')

        try:
            response = self.session.get(url, **kwargs)
            response.raise_for_status()
            return True, response
        except requests.exceptions.RequestException as e:
            return False, f"HTTP request failed: {e}"


@dataclass(frozen=True)
class Theme:
    name: str
    root: str

    @property
    def layouts_dir(self) -> str:
        return os.path.join(self.root, '_layouts')

    @property
    def includes_dir(self) -> str:
        return os.path.join(self.root, '_includes')

    @property
    def assets_dir(self) -> str:
        return os.path.join(self.root, 'assets')


def parse_remote_spec(spec: str) -> Tuple[str, str, str]:
    """Split ``owner/repo@ref`` into its parts; ref defaults to HEAD."""
    match = REMOTE_THEME_RE.match(str(spec).strip())
    if not match:
        raise ThemeError(f"Invalid remote_theme '{spec}', expected owner/repo[@ref]")
    return match.group('owner'), match.group('repo'), match.group('ref') or 'HEAD'


class ThemeResolver:
    def __init__(self, config, requestor: SafeRequestor = None):
        self.config = config
        self.requestor = requestor
        self.logger = logging.getLogger('folio.themes')

    def resolve(self) -> Optional[Theme]:
        if self.config.remote_theme:
            if self.config.theme:
                self.logger.warning("Both theme and remote_theme are set; using remote_theme")
            return self.fetch_remote(self.config.remote_theme)
        if self.config.theme:
            if not os.path.isdir(self.config.theme):
                raise ThemeError(f"Theme directory not found: {self.config.theme}")
            return Theme(name=os.path.basename(self.config.theme), root=self.config.theme)
        return None

    def cache_path(self, owner, repo, ref) -> str:
        safe_ref = re.sub(r'[^\w.-]+', '-', ref)
        return os.path.join(self.config.cache_dir, 'themes', f"{owner}-{repo}-{safe_ref}")

    def fetch_remote(self, spec: str) -> Theme:
        owner, repo, ref = parse_remote_spec(spec)
        target = self.cache_path(owner, repo, ref)
        name = f"{owner}/{repo}@{ref}"
        if os.path.isdir(target):
            self.logger.debug(f"Using cached remote theme {name}")
            return Theme(name=name, root=target)

        url = CODELOAD_URL.format(owner=owner, repo=repo, ref=ref)
        self.logger.info(f"Downloading remote theme {name}")
        requestor = self.requestor or SafeRequestor()
        success, result = requestor.safe_get(url, stream=True)
        if not success:
            raise ThemeError(f"Could not download remote theme {name}: {result}")

        archive = io.BytesIO()
        for chunk in result.iter_content(chunk_size=65536):
            archive.write(chunk)
            if archive.tell() > MAX_ARCHIVE_BYTES:
                raise ThemeError(f"Remote theme {name} exceeds {MAX_ARCHIVE_BYTES} bytes")
        archive.seek(0)

        self.extract(archive, target, name)
        return Theme(name=name, root=target)

    def extract(self, archive, target, name):
        """Unpack a GitHub archive into target, dropping its top-level folder."""
        parent = os.path.dirname(target)
        os.makedirs(parent, exist_ok=True)
        staging = tempfile.mkdtemp(dir=parent, prefix='.theme-')
        try:
            with zipfile.ZipFile(archive) as bundle:
                for member in bundle.infolist():
                    parts = member.filename.replace('\\', '/').split('/')[1:]
                    if not parts or not parts[-1]:
                        continue
                    if any(part in ('..', '') for part in parts) or member.filename.startswith('/'):
                        raise ThemeError(f"Path traversal attempt in theme {name}: {member.filename}")
                    destination = os.path.join(staging, *parts)
                    if not os.path.abspath(destination).startswith(os.path.abspath(staging) + os.sep):
                        raise ThemeError(f"Path traversal attempt in theme {name}: {member.filename}")
                    os.makedirs(os.path.dirname(destination), exist_ok=True)
                    with bundle.open(member) as source, open(destination, 'wb') as out:
                        shutil.copyfileobj(source, out)
            os.replace(staging, target)
        except zipfile.BadZipFile as e:
            raise ThemeError(f"Remote theme {name} is not a valid zip archive: {e}")
        except (IOError, OSError) as e:
            raise ThemeError(f"Failed to unpack remote theme {name}: {e}")
        finally:
            if os.path.isdir(staging):
                shutil.rmtree(staging, ignore_errors=True)
