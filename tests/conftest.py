import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from salesflow import create_app, db
from salesflow.errors import UpstreamFailure
from salesflow.integrations import EXTENSION_KEY
from salesflow.integrations.images import GeneratedImage
from salesflow.models import Profile, User

PNG_DOT = (
    'iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII='
)
SIGNATURE = f"data:image/png;base64,{PNG_DOT}"


class FakeImages:
    def __init__(self):
        self.prompts = []
        self.fail = False

    def generate(self, prompt):
        if self.fail:
            raise UpstreamFailure('image generation', 'provider unavailable')
        self.prompts.append(prompt)
        return GeneratedImage(data=b'\x89PNG fake', content_type='image/png', provider='openai-dalle3')


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, html):
        if self.fail:
            raise UpstreamFailure('email', 'HTTP 503 after 4 attempts')
        self.sent.append({'to': to, 'subject': subject, 'html': html})
        return f"msg-{len(self.sent)}"


class FakeSheets:
    def __init__(self, rows=None, configured=True, fail=False):
        self.rows = rows or []
        self.configured = configured
        self.fail = fail
        self.calls = 0

    def read_range(self, sheet_id, cell_range):
        self.calls += 1
        if self.fail:
            raise UpstreamFailure('spreadsheet', 'HTTP 500 after 4 attempts')
        return self.rows


@pytest.fixture
def app(tmp_path):
    app = create_app('testing', {'STORAGE_DIR': str(tmp_path / 'storage')})
    app.extensions[EXTENSION_KEY].update(
        images=FakeImages(),
        mailer=FakeMailer(),
        sheets=FakeSheets(configured=False),
    )
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def fakes(app):
    return app.extensions[EXTENSION_KEY]


def make_rep(email='rep@example.com', name='Sam Rep'):
    user = User(email=email, full_name=name)
    user.set_password('secret123')
    db.session.add(user)
    db.session.commit()
    profile = Profile(user_id=user.id, full_name=name)
    db.session.add(profile)
    db.session.commit()
    return profile


@pytest.fixture
def rep(app):
    return make_rep()


@pytest.fixture
def client(app):
    c = app.test_client()
    resp = c.post('/auth/dev-login')
    assert resp.status_code == 200
    return c
