"""Test configuration and fixtures for Folio tests."""

import pytest
import tempfile
import shutil
import os
import logging
from pathlib import Path
from unittest.mock import Mock

import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from folio_pkg.settings import SiteConfig
from folio_pkg.models import SourceFile, POST, PAGE


@pytest.fixture(autouse=True)
def quiet_folio_logger():
    """Keep handlers installed by one test from leaking into the next."""
    logger = logging.getLogger('folio')
    handlers = list(logger.handlers)
    yield
    for handler in logger.handlers[:]:
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def site_root(temp_dir):
    """An empty site: content/_posts and _layouts under a temp root."""
    root = Path(temp_dir) / 'site'
    (root / 'content' / '_posts').mkdir(parents=True)
    (root / '_layouts').mkdir()
    return root


@pytest.fixture
def write_file(site_root):
    """Write a file below the site root, creating parent directories."""
    def _write(relative_path, text):
        path = site_root / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding='utf-8')
        return path
    return _write


@pytest.fixture
def make_config(site_root):
    """Build a SiteConfig rooted at the temp site with the given overrides."""
    def _make(**overrides):
        return SiteConfig.from_settings(overrides, str(site_root))
    return _make


@pytest.fixture
def config(make_config):
    return make_config(title='Test Blog', url='https://example.com')


@pytest.fixture
def make_source():
    """Build a SourceFile without touching the filesystem."""
    def _make(relative_path, text, kind=None, draft=False, mtime=1700000000.0):
        if kind is None:
            kind = POST if relative_path.startswith(('_posts/', '_drafts/')) else PAGE
        return SourceFile(
            path=os.path.join('/site/content', relative_path),
            relative_path=relative_path,
            raw=text.encode('utf-8'),
            kind=kind,
            draft=draft or relative_path.startswith('_drafts/'),
            mtime=mtime,
        )
    return _make


@pytest.fixture
def blog(write_file):
    """A small complete site: three posts, an about page, a home page and a stylesheet."""
    write_file('content/_posts/2023-01-01-a.md', """---
title: Post A
date: 2023-01-01
categories: [News]
tags: [python]
---

First post body.
""")
    write_file('content/_posts/2023-01-02-b.md', """---
title: Post B
date: 2023-01-02
tags: python, web
---

Second post body.
""")
    write_file('content/_posts/2023-01-02-c.md', """---
title: Post C
date: 2023-01-02
---

Third post body with a fence:

```python
print("hello")
```
""")
    write_file('content/about.md', """---
title: About
order: 1
---

About this blog.
""")
    write_file('content/index.md', """---
title: Home
---

Welcome to the blog.
""")
    write_file('assets/css/site.css', "body {  color: black; }\n")
    return write_file


@pytest.fixture
def mock_session():
    """Create a mock requests session."""
    session = Mock()
    session.timeout = 30
    session.headers = {}
    return session


@pytest.fixture
def sample_image_data():
    """Sample image data for testing."""
    # Create a minimal PNG image (1x1 pixel)
    png_data = b'\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x02\x00\x00\x00\x90wS\xde\x00\x00\x00\tpHYs\x00\x00\x0b\x13\x00\x00\x0b\x13\x01\x00\x9a\x9c\x18\x00\x00\x00\nIDATx\x9cc\xf8\x00\x00\x00\x01\x00\x01\x00\x00\x00\x00IEND\xaeB`\x82'
    return png_data
