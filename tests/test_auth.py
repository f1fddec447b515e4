"""Tests for registration, login, token checks and user administration."""

from datetime import timedelta

import pytest
from flask_jwt_extended import create_access_token, decode_token

from extensions import bcrypt
from models import db, User

API = '/api'

VALID_REGISTRATION = {
    'username': 'Alice',
    'email': 'Alice@Example.com',
    'password': 'password123',
    'secretKey': 'secret'
}


class TestRegister:

    def test_register_stores_lowercase_identity_and_hashes(self, app, client):
        response = client.post(f'{API}/registerUser', json=VALID_REGISTRATION)

        assert response.status_code == 201
        body = response.get_json()
        assert body['status'] == 201
        assert body['message'] == 'The user has been successfully registered and logged in'
        assert body['data']['username'] == 'alice'
        assert body['data']['email'] == 'alice@example.com'
        assert body['data']['role'] == 'user'
        assert body['data']['token']

        with app.app_context():
            user = User.query.filter_by(email='alice@example.com').one()
            assert user.password_hash != 'password123'
            assert user.secret_key_hash != 'secret'
            assert bcrypt.check_password_hash(user.password_hash, 'password123')
            assert bcrypt.check_password_hash(user.secret_key_hash, 'secret')
            assert user.projects == []

    def test_extra_fields_are_ignored(self, client):
        response = client.post(f'{API}/registerUser', json=dict(VALID_REGISTRATION, role='admin'))

        assert response.status_code == 201
        assert response.get_json()['data']['role'] == 'user'

    @pytest.mark.parametrize('missing', ['username', 'email', 'password', 'secretKey'])
    def test_missing_field_creates_no_identity(self, app, client, missing):
        payload = {key: value for key, value in VALID_REGISTRATION.items() if key != missing}

        response = client.post(f'{API}/registerUser', json=payload)

        assert response.status_code == 400
        assert missing in response.get_json()['errors']
        with app.app_context():
            assert User.query.count() == 0

    @pytest.mark.parametrize('field, value', [
        ('username', 'a'),
        ('password', 'short'),
        ('password', 'x' * 31),
        ('secretKey', 'k'),
        ('secretKey', 'k' * 11),
        ('email', 'not-an-email'),
    ])
    def test_length_and_format_constraints(self, client, field, value):
        payload = dict(VALID_REGISTRATION, **{field: value})

        response = client.post(f'{API}/registerUser', json=payload)

        assert response.status_code == 400
        assert field in response.get_json()['errors']

    def test_duplicate_email_is_conflict(self, client):
        client.post(f'{API}/registerUser', json=VALID_REGISTRATION)

        response = client.post(f'{API}/registerUser', json=dict(VALID_REGISTRATION, username='other'))

        assert response.status_code == 409

    def test_non_json_body_is_rejected(self, client):
        response = client.post(f'{API}/registerUser', data='plain text')

        assert response.status_code == 400
        assert response.get_json()['message'] == 'Request body must be JSON'


class TestLogin:

    def test_token_carries_user_id_and_role(self, app, client, make_user):
        user = make_user('bob')

        response = client.post(f'{API}/logInUser', json={'email': 'BOB@example.com', 'password': 'password123'})

        assert response.status_code == 200
        data = response.get_json()['data']
        assert set(data) == {'username', 'email', 'role', 'token'}
        with app.app_context():
            claims = decode_token(data['token'])
        assert int(claims['sub']) == user.id
        assert claims['role'] == 'user'
        assert claims['exp'] - claims['iat'] == 3600

    def test_wrong_password_issues_no_token(self, client, make_user):
        make_user('bob')

        response = client.post(f'{API}/logInUser', json={'email': 'bob@example.com', 'password': 'wrong-password'})

        assert response.status_code == 401
        body = response.get_json()
        assert body['message'] == 'Incorrect password.'
        assert 'data' not in body

    def test_unknown_email_is_not_found(self, client):
        response = client.post(f'{API}/logInUser', json={'email': 'ghost@example.com', 'password': 'password123'})

        assert response.status_code == 404

    def test_extra_fields_are_ignored(self, client, make_user):
        make_user('bob')

        response = client.post(f'{API}/logInUser', json={
            'email': 'bob@example.com', 'password': 'password123', 'username': 'bob'
        })

        assert response.status_code == 200
        assert response.get_json()['data']['token']

    def test_missing_credentials(self, client):
        response = client.post(f'{API}/logInUser', json={'email': 'bob@example.com'})

        assert response.status_code == 400
        assert 'password' in response.get_json()['errors']


class TestAuthenticate:

    def test_missing_token_is_unauthorized(self, client):
        response = client.get(f'{API}/currentUser')

        assert response.status_code == 401
        assert response.get_json()['status'] == 401
        assert response.get_json()['error'] == 'authorization_required'
        assert response.get_json()['message'] == 'No JWT token provided.'

    def test_malformed_token_is_forbidden(self, client):
        response = client.get(f'{API}/currentUser', headers={'Authorization': 'Bearer not-a-token'})

        assert response.status_code == 403
        assert response.get_json()['error'] == 'invalid_token'

    def test_expired_token_reports_expiry(self, app, client, make_user):
        user = make_user('bob')
        with app.app_context():
            token = create_access_token(
                identity=str(user.id),
                additional_claims={'role': 'user'},
                expires_delta=timedelta(seconds=-10)
            )

        response = client.get(f'{API}/currentUser', headers={'Authorization': f'Bearer {token}'})

        assert response.status_code == 403
        body = response.get_json()
        assert body['error'] == 'token_expired'
        assert body['expiredAt']

    def test_current_user_hides_hashes(self, client, make_user):
        user = make_user('bob')

        response = client.get(f'{API}/currentUser', headers=user.headers)

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['id'] == user.id
        assert data['email'] == 'bob@example.com'
        assert 'password_hash' not in data
        assert 'secret_key_hash' not in data


class TestAdminRoutes:

    def test_update_user_requires_admin(self, client, make_user):
        user = make_user('bob')

        response = client.put(f'{API}/updateUser/{user.id}', json={'username': 'robert'}, headers=user.headers)

        assert response.status_code == 403
        assert response.get_json()['message'] == 'Access denied. Admins only.'

    def test_admin_updates_whitelisted_fields(self, app, client, make_user, login):
        admin = make_user('root', role='admin')
        user = make_user('bob')

        response = client.put(f'{API}/updateUser/{user.id}', json={
            'username': 'Robert',
            'role': 'ADMIN',
            'password': 'new-password'
        }, headers=admin.headers)

        assert response.status_code == 200
        assert response.get_json()['data'] == {
            'username': 'robert',
            'email': 'bob@example.com',
            'role': 'admin'
        }
        assert login('bob@example.com', 'new-password').role == 'admin'

    def test_update_user_rejects_unknown_keys(self, app, client, make_user):
        admin = make_user('root', role='admin')
        user = make_user('bob')

        response = client.put(f'{API}/updateUser/{user.id}', json={
            'username': 'robert',
            'projects': [1, 2]
        }, headers=admin.headers)

        assert response.status_code == 400
        assert response.get_json()['message'] == 'Invalid properties: projects'
        with app.app_context():
            assert db.session.get(User, user.id).username == 'bob'

    def test_update_unknown_user(self, client, make_user):
        admin = make_user('root', role='admin')

        response = client.put(f'{API}/updateUser/999', json={'username': 'nobody'}, headers=admin.headers)

        assert response.status_code == 404

    def test_update_user_email_conflict(self, client, make_user):
        admin = make_user('root', role='admin')
        user = make_user('bob')

        response = client.put(f'{API}/updateUser/{user.id}', json={'email': 'root@example.com'}, headers=admin.headers)

        assert response.status_code == 409

    def test_list_users(self, client, make_user):
        admin = make_user('root', role='admin')
        make_user('bob')

        response = client.get(f'{API}/getUsers', headers=admin.headers)

        assert response.status_code == 200
        assert [user['username'] for user in response.get_json()['data']] == ['root', 'bob']


class TestResetPassword:

    def test_reset_with_matching_secret_and_email(self, client, make_user, login):
        user = make_user('bob')

        response = client.put(f'{API}/resetPassword', json={
            'newPassword': 'brand-new-pass',
            'secretKey': 'secret',
            'email': 'BOB@example.com'
        }, headers=user.headers)

        assert response.status_code == 200
        assert login('bob@example.com', 'brand-new-pass').id == user.id

    def test_wrong_secret_key_is_forbidden(self, client, make_user, login):
        user = make_user('bob')

        response = client.put(f'{API}/resetPassword', json={
            'newPassword': 'brand-new-pass',
            'secretKey': 'wrong',
            'email': 'bob@example.com'
        }, headers=user.headers)

        assert response.status_code == 403
        assert login('bob@example.com', 'password123').id == user.id

    def test_other_email_is_forbidden(self, client, make_user):
        user = make_user('bob')
        make_user('carol')

        response = client.put(f'{API}/resetPassword', json={
            'newPassword': 'brand-new-pass',
            'secretKey': 'secret',
            'email': 'carol@example.com'
        }, headers=user.headers)

        assert response.status_code == 403
        assert response.get_json()['message'] == 'The email does not match.'

    def test_new_password_length(self, client, make_user):
        user = make_user('bob')

        response = client.put(f'{API}/resetPassword', json={
            'newPassword': 'short',
            'secretKey': 'secret',
            'email': 'bob@example.com'
        }, headers=user.headers)

        assert response.status_code == 400
        assert 'newPassword' in response.get_json()['errors']


class TestDeleteOwnAccount:

    def test_delete_keeps_project_membership(self, app, client, make_user, owner, project):
        member = make_user('bob')
        client.put(f'{API}/updateMemberForProject/{project["id"]}', json={
            'member': member.id,
            'action': 'add'
        }, headers=owner.headers)

        response = client.delete(f'{API}/deleteCurrentUser', headers=member.headers)

        assert response.status_code == 200
        with app.app_context():
            assert db.session.get(User, member.id) is None

        # 成員清單不會同步移除,查詢時不展開已刪除的使用者並列在 danglingMembers
        fetched = client.get(f'{API}/fetchProject/{project["id"]}', headers=owner.headers).get_json()['data']
        assert [m['id'] for m in fetched['members']] == [owner.id]
        assert fetched['danglingMembers'] == [member.id]

    def test_deleted_account_token_finds_nothing(self, client, make_user):
        user = make_user('bob')
        client.delete(f'{API}/deleteCurrentUser', headers=user.headers)

        assert client.get(f'{API}/currentUser', headers=user.headers).status_code == 404
        assert client.delete(f'{API}/deleteCurrentUser', headers=user.headers).status_code == 404
