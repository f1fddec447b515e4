from collections import namedtuple
from functools import wraps
from flask import Blueprint, jsonify, g
from flask_jwt_extended import create_access_token, verify_jwt_in_request, get_jwt_identity, get_jwt
from marshmallow import Schema, fields, validate, pre_load, EXCLUDE
from sqlalchemy.exc import IntegrityError
from models import db, User, USER_ROLES
from extensions import bcrypt, limiter
from errors import InvalidCredential, Forbidden, NotFound, Conflict
from validation import get_json_body, validate_request_data, reject_unknown_keys
import logging

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

# 通過 token 驗證後附加在 request context (flask.g) 上的身分
Principal = namedtuple('Principal', ['id', 'role'])

UPDATE_USER_FIELDS = ('username', 'email', 'password', 'role')

# ============================================
# Input Validation Schemas (用 marshmallow)
# ============================================


class RegisterSchema(Schema):
    """註冊輸入驗證"""
    class Meta:
        unknown = EXCLUDE

    username = fields.Str(
        required=True,
        validate=validate.Length(min=2, error='Username must have more than one character'),
        error_messages={'required': 'Username cannot be empty'}
    )
    email = fields.Email(required=True, error_messages={
        'required': 'Email cannot be empty',
        'invalid': 'Invalid email address'
    })
    password = fields.Str(
        required=True,
        validate=validate.Length(min=8, max=30, error='Password must be 8-30 characters'),
        error_messages={'required': 'Password cannot be empty'}
    )
    secret_key = fields.Str(
        required=True,
        data_key='secretKey',
        validate=validate.Length(min=2, max=10, error='Secret key must be 2-10 characters'),
        error_messages={'required': 'Secret key cannot be empty'}
    )


class LoginSchema(Schema):
    """登入輸入驗證"""
    class Meta:
        # 多餘的欄位 (例如 username) 直接忽略
        unknown = EXCLUDE

    email = fields.Str(required=True, error_messages={'required': 'Email is required'})
    password = fields.Str(required=True, error_messages={'required': 'Password is required'})


class ResetPasswordSchema(Schema):
    """重設密碼驗證"""
    new_password = fields.Str(
        required=True,
        data_key='newPassword',
        validate=validate.Length(min=8, max=30, error='New password must be 8-30 characters'),
        error_messages={'required': 'New password cannot be empty'}
    )
    secret_key = fields.Str(
        required=True,
        data_key='secretKey',
        validate=validate.Length(min=1, error='Secret key cannot be empty'),
        error_messages={'required': 'Secret key cannot be empty'}
    )
    email = fields.Email(required=True, error_messages={
        'required': 'Email cannot be empty',
        'invalid': 'Invalid email address'
    })


class UpdateUserSchema(Schema):
    """管理員更新使用者驗證 (所有欄位都是選填)"""
    username = fields.Str(validate=validate.Length(min=2))
    email = fields.Email()
    password = fields.Str(validate=validate.Length(min=8, max=30))
    role = fields.Str(validate=validate.OneOf(USER_ROLES))

    @pre_load
    def lower_case(self, data, **kwargs):
        return {
            key: value.lower() if key in ('username', 'email', 'role') and isinstance(value, str) else value
            for key, value in data.items()
        }

# ============================================
# Helper Functions
# ============================================


def hash_secret(value):
    return bcrypt.generate_password_hash(value).decode('utf-8')


def check_secret(hashed, value):
    return bcrypt.check_password_hash(hashed, value)


def issue_token(user):
    """簽發 access token,payload 帶 id 和 role,過期時間由 JWT_ACCESS_TOKEN_EXPIRES 決定"""
    return create_access_token(
        identity=str(user.id),
        additional_claims={'role': user.role}
    )


def auth_required(fn):
    """
    驗證 Bearer token,並把 principal 放到 g.principal

    沒有 token / token 無效 / token 過期 都由 app.py 註冊的 JWT loader 處理
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        verify_jwt_in_request()
        claims = get_jwt()
        g.principal = Principal(id=int(get_jwt_identity()), role=claims.get('role', 'user'))
        return fn(*args, **kwargs)
    return wrapper


def authorize_admin(principal):
    if principal is None or principal.role != 'admin':
        raise Forbidden('Access denied. Admins only.')


def admin_required(fn):
    """先驗證 token,再檢查 role 是否為 admin"""
    @wraps(fn)
    @auth_required
    def wrapper(*args, **kwargs):
        authorize_admin(g.principal)
        return fn(*args, **kwargs)
    return wrapper


def get_current_principal():
    return g.get('principal')


def get_current_user():
    """取得當前登入的使用者,帳號已被刪除時丟出 NotFound"""
    principal = get_current_principal()
    user = db.session.get(User, principal.id) if principal else None

    if not user:
        logger.warning(f"Token valid but user not found: {principal.id if principal else None}")
        raise NotFound('User not found')

    return user


def _ensure_email_available(email, user_id=None):
    existing = User.query.filter_by(email=email).first()
    if existing and existing.id != user_id:
        raise Conflict('Email already exists')

# ============================================
# Identity & Access 操作
# ============================================


def register_user(data):
    """
    建立新使用者

    username / email 轉小寫,password 和 secret key 只存 bcrypt hash
    """
    result = validate_request_data(RegisterSchema, data)

    email = result['email'].lower()
    _ensure_email_available(email)

    user = User(
        username=result['username'].lower(),
        email=email,
        password_hash=hash_secret(result['password']),
        secret_key_hash=hash_secret(result['secret_key']),
        projects=[]
    )

    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        # 同時註冊同一個 email
        db.session.rollback()
        raise Conflict('Email already exists')

    logger.info(f"New user registered: {user.email}")
    return user


def login_user(data):
    """
    驗證 email + password 並簽發 token

    Returns:
        dict: {username, email, role, token}
    """
    result = validate_request_data(LoginSchema, data)

    email = result['email'].lower()
    user = User.query.filter_by(email=email).first()

    if not user:
        logger.warning(f"Login attempt for unknown email: {email}")
        raise NotFound('There is no user with this email.')

    if not check_secret(user.password_hash, result['password']):
        logger.warning(f"Failed login attempt for email: {email}")
        raise InvalidCredential('Incorrect password.')

    logger.info(f"User logged in: {user.email}")

    return {
        'username': user.username,
        'email': user.email,
        'role': user.role,
        'token': issue_token(user)
    }


def reset_password(principal, data):
    """secret key 和 email 都要符合才能更新密碼"""
    result = validate_request_data(ResetPasswordSchema, data)

    user = db.session.get(User, principal.id)
    if not user:
        raise NotFound('User not found')

    if not check_secret(user.secret_key_hash, result['secret_key']):
        logger.warning(f"Password reset with wrong secret key for user {user.id}")
        raise Forbidden('Secret key does not match.')

    if result['email'].lower() != user.email.lower():
        logger.warning(f"Password reset with wrong email for user {user.id}")
        raise Forbidden('The email does not match.')

    user.password_hash = hash_secret(result['new_password'])
    db.session.commit()

    logger.info(f"Password reset for user: {user.email}")
    return user


def delete_own_account(principal):
    """
    刪除自己的帳號

    不會同步把自己從各個 project.members 移除
    """
    user = db.session.get(User, principal.id)
    if not user:
        raise NotFound(f'There is no user with id: {principal.id}')

    db.session.delete(user)
    db.session.commit()

    logger.info(f"User deleted own account: {user.email}")


def update_user(user_id, data):
    """管理員更新使用者資料,只接受白名單欄位"""
    reject_unknown_keys(data, UPDATE_USER_FIELDS)
    result = validate_request_data(UpdateUserSchema, data)

    user = db.session.get(User, user_id)
    if not user:
        raise NotFound(f'There is no user with id: {user_id}')

    if 'email' in result:
        _ensure_email_available(result['email'], user_id=user.id)
        user.email = result['email']
    if 'username' in result:
        user.username = result['username']
    if 'role' in result:
        user.role = result['role']
    if 'password' in result:
        user.password_hash = hash_secret(result['password'])

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict('Email already exists')

    logger.info(f"User {user.id} updated by admin")
    return user

# ============================================
# 註冊 / 登入 API
# ============================================


@auth_bp.route('/registerUser', methods=['POST'])
@limiter.limit("5 per hour")
def register():
    """使用者註冊,成功後直接登入"""
    data = get_json_body()
    register_user(data)
    login_data = login_user({'email': data['email'], 'password': data['password']})

    return jsonify({
        'status': 201,
        'message': 'The user has been successfully registered and logged in',
        'data': login_data
    }), 201


@auth_bp.route('/logInUser', methods=['POST'])
@limiter.limit("10 per minute")
def login():
    """使用者登入"""
    data = get_json_body()

    return jsonify({
        'status': 200,
        'message': 'User logged in successfully.',
        'data': login_user(data)
    }), 200

# ============================================
# 當前使用者
# ============================================


@auth_bp.route('/currentUser', methods=['GET'])
@auth_required
def current_user():
    user = get_current_user()

    return jsonify({
        'status': 200,
        'message': 'User retrieved successfully',
        'data': user.to_dict()
    }), 200


@auth_bp.route('/deleteCurrentUser', methods=['DELETE'])
@auth_required
def delete_current_user():
    delete_own_account(get_current_principal())

    return jsonify({
        'status': 200,
        'message': 'User deleted successfully'
    }), 200


@auth_bp.route('/resetPassword', methods=['PUT'])
@auth_required
def reset_password_route():
    data = get_json_body()
    reset_password(get_current_principal(), data)

    return jsonify({
        'status': 200,
        'message': 'Password updated successfully'
    }), 200

# ============================================
# 管理員專用
# ============================================


@auth_bp.route('/getUsers', methods=['GET'])
@admin_required
def list_users():
    users = User.query.order_by(User.id).all()

    return jsonify({
        'status': 200,
        'message': 'Users retrieved successfully',
        'data': [user.to_dict() for user in users]
    }), 200


@auth_bp.route('/updateUser/<int:user_id>', methods=['PUT'])
@admin_required
def update_user_route(user_id):
    data = get_json_body()
    user = update_user(user_id, data)

    return jsonify({
        'status': 200,
        'message': 'User updated successfully',
        'data': {
            'username': user.username,
            'email': user.email,
            'role': user.role
        }
    }), 200
