"""Shared fixtures: app on an in-memory database plus helpers for authenticated users."""

import pytest
from flask_jwt_extended import decode_token

from app import create_app
from config import TestingConfig
from models import db, User

API = '/api'


class AuthUser:
    """A registered user together with its bearer token."""

    def __init__(self, id, username, email, role, token):
        self.id = id
        self.username = username
        self.email = email
        self.role = role
        self.token = token

    @property
    def headers(self):
        return {'Authorization': f'Bearer {self.token}'}


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def login(app, client):
    """Log in and return an AuthUser built from the token payload."""

    def _login(email, password):
        response = client.post(f'{API}/logInUser', json={'email': email, 'password': password})
        assert response.status_code == 200, response.get_json()
        data = response.get_json()['data']

        with app.app_context():
            user_id = int(decode_token(data['token'])['sub'])

        return AuthUser(user_id, data['username'], data['email'], data['role'], data['token'])

    return _login


@pytest.fixture
def make_user(app, client, login):
    """Register a user (optionally promoted to admin) and return it logged in."""

    def _make_user(username='alice', email=None, password='password123', secret_key='secret', role='user'):
        email = email or f'{username}@example.com'
        response = client.post(f'{API}/registerUser', json={
            'username': username,
            'email': email,
            'password': password,
            'secretKey': secret_key
        })
        assert response.status_code == 201, response.get_json()

        if role != 'user':
            with app.app_context():
                user = User.query.filter_by(email=email.lower()).first()
                user.role = role
                db.session.commit()

        return login(email, password)

    return _make_user


@pytest.fixture
def owner(make_user):
    return make_user('owner')


@pytest.fixture
def project(client, owner):
    """A project owned by `owner` with no extra members."""
    response = client.post(f'{API}/createProject', json={'title': 'Board'}, headers=owner.headers)
    assert response.status_code == 201
    return response.get_json()['data']
