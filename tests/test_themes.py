"""Tests for local and remote themes, including download safety."""

import pytest
import io
import os
import zipfile
from unittest.mock import Mock, patch

import requests

import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from folio_pkg.errors import ThemeError
from folio_pkg.layouts import LayoutResolver
from folio_pkg.themes import SafeRequestor, Theme, ThemeResolver, URLValidator, parse_remote_spec

GITHUB_IP = ['140.82.112.10']


def make_archive(members):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as bundle:
        for name, content in members.items():
            bundle.writestr(name, content)
    return buffer.getvalue()


def mock_response(payload):
    response = Mock()
    response.raise_for_status = Mock()
    response.iter_content = Mock(return_value=[payload[i:i + 1024] for i in range(0, len(payload), 1024)])
    return response


@pytest.fixture
def requestor(mock_session):
    validator = URLValidator()
    with patch.object(validator, '_resolve_hostname', return_value=GITHUB_IP):
        yield SafeRequestor(validator, mock_session)


class TestRemoteSpec:
    def test_with_ref(self):
        assert parse_remote_spec('pages-themes/minimal@v0.2.0') == ('pages-themes', 'minimal', 'v0.2.0')

    def test_default_ref(self):
        assert parse_remote_spec('owner/repo') == ('owner', 'repo', 'HEAD')

    def test_invalid(self):
        with pytest.raises(ThemeError, match="owner/repo"):
            parse_remote_spec('not a theme')


class TestURLValidator:
    """Test cases for SSRF protection on theme downloads."""

    def test_blocks_non_https(self):
        is_valid, message = URLValidator().validate_url('http://codeload.github.com/a/b/zip/HEAD')
        assert not is_valid
        assert 'scheme' in message

    def test_blocks_other_domains(self):
        is_valid, message = URLValidator().validate_url('https://evil.example.com/theme.zip')
        assert not is_valid
        assert 'allowlist' in message

    def test_blocks_credentials(self):
        is_valid, _ = URLValidator().validate_url('https://user:pw@github.com/a/b')
        assert not is_valid

    def test_blocks_private_addresses(self):
        """Test that an allowed name resolving to an internal address is refused."""
        validator = URLValidator()
        for address in ('127.0.0.1', '10.1.2.3', '192.168.0.5', '169.254.169.254', '::1'):
            with patch.object(validator, '_resolve_hostname', return_value=[address]):
                is_valid, message = validator.validate_url('https://codeload.github.com/a/b/zip/HEAD')
            assert not is_valid, address
            assert 'Blocked IP' in message

    def test_allows_public_github(self):
        validator = URLValidator()
        with patch.object(validator, '_resolve_hostname', return_value=GITHUB_IP):
            assert validator.validate_url('https://codeload.github.com/a/b/zip/HEAD') == (True, "URL is valid")

    def test_request_failure_is_reported(self, requestor, mock_session):
        mock_session.get.side_effect = requests.exceptions.ConnectionError("refused")
        success, message = requestor.safe_get('https://codeload.github.com/a/b/zip/HEAD')
        assert not success
        assert 'refused' in message

    def test_user_agent_and_timeout(self, requestor, mock_session):
        mock_session.get.return_value = mock_response(b'')
        requestor.safe_get('https://codeload.github.com/a/b/zip/HEAD')
        _, kwargs = mock_session.get.call_args
        assert kwargs['timeout'] == 30
        assert kwargs['headers']['User-Agent'].startswith('Folio/')


class TestThemeResolver:
    """Test cases for resolving themes."""

    def test_no_theme(self, config):
        assert ThemeResolver(config).resolve() is None

    def test_local_theme(self, write_file, make_config):
        write_file('themes/plain/_layouts/page.html', "THEME PAGE {{ content }}")
        theme = ThemeResolver(make_config(theme='themes/plain')).resolve()
        assert theme.name == 'plain'
        assert os.path.isdir(theme.layouts_dir)

    def test_missing_local_theme(self, make_config):
        with pytest.raises(ThemeError, match="not found"):
            ThemeResolver(make_config(theme='themes/nope')).resolve()

    def test_remote_theme_download(self, make_config, requestor, mock_session):
        """Test that a GitHub archive is fetched, unpacked and cached."""
        mock_session.get.return_value = mock_response(make_archive({
            'minimal-main/_layouts/default.html': "<html>{{ content }}</html>",
            'minimal-main/assets/css/style.css': "body{}",
        }))
        config = make_config(remote_theme='pages-themes/minimal@main')

        theme = ThemeResolver(config, requestor).resolve()

        url = mock_session.get.call_args[0][0]
        assert url == 'https://codeload.github.com/pages-themes/minimal/zip/main'
        assert theme.name == 'pages-themes/minimal@main'
        assert os.path.isfile(os.path.join(theme.layouts_dir, 'default.html'))
        assert os.path.isfile(os.path.join(theme.assets_dir, 'css', 'style.css'))
        assert theme.root.startswith(config.cache_dir)

        # second resolve is served from the cache
        mock_session.get.reset_mock()
        assert ThemeResolver(config, requestor).resolve().root == theme.root
        mock_session.get.assert_not_called()

    def test_remote_theme_path_traversal(self, make_config, requestor, mock_session):
        mock_session.get.return_value = mock_response(make_archive({
            'evil-main/../../escape.txt': "owned",
        }))
        config = make_config(remote_theme='evil/evil@main')

        with pytest.raises(ThemeError, match="traversal"):
            ThemeResolver(config, requestor).resolve()
        assert not os.path.exists(os.path.join(config.root, 'escape.txt'))
        assert not os.path.exists(ThemeResolver(config).cache_path('evil', 'evil', 'main'))

    def test_remote_theme_bad_archive(self, make_config, requestor, mock_session):
        mock_session.get.return_value = mock_response(b'not a zip file')
        with pytest.raises(ThemeError, match="zip"):
            ThemeResolver(make_config(remote_theme='a/b'), requestor).resolve()

    def test_remote_theme_blocked(self, make_config, mock_session):
        validator = URLValidator()
        with patch.object(validator, '_resolve_hostname', return_value=['10.0.0.1']):
            resolver = ThemeResolver(make_config(remote_theme='a/b'), SafeRequestor(validator, mock_session))
            with pytest.raises(ThemeError, match="Blocked IP"):
                resolver.resolve()
        mock_session.get.assert_not_called()


class TestThemeLayouts:
    """Test cases for layout lookup order with a theme."""

    def test_theme_overrides_builtin_and_site_overrides_theme(self, write_file, make_config):
        write_file('themes/plain/_layouts/page.html', "THEME PAGE")
        write_file('themes/plain/_layouts/post.html', "THEME POST")
        write_file('_layouts/post.html', "SITE POST")
        config = make_config(theme='themes/plain')
        theme = Theme(name='plain', root=config.theme)
        layouts = LayoutResolver(config, theme)

        assert layouts.render(['page'], '', {}, 'x.md') == "THEME PAGE"
        assert layouts.render(['post'], '', {}, 'x.md') == "SITE POST"
        assert layouts.exists('category')
